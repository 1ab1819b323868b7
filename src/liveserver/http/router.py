"""
=============================================================================
URL ROUTER
=============================================================================

Maps (method, path) to handler functions.

    ┌──────────────────────────────────────────────────────────────────┐
    │  PATTERN SYNTAX                                                  │
    ├──────────────────────────────────────────────────────────────────┤
    │  /about           static segment, exact match                   │
    │  /*path           rest of the path   → path_params["path"]      │
    └──────────────────────────────────────────────────────────────────┘

The live server registers a single wildcard route per method:

    router.get("/*path")(static_handler)
    router.head("/*path")(static_handler)

so every GET and HEAD lands in the static file handler and everything else
is answered 405 with an Allow header.

Matching ignores a trailing slash; handlers that care about it (directory
redirects) read ``request.path``, which keeps it.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, Dict, List
import re

from .request import HTTPRequest
from .response import HTTPResponse, not_found, method_not_allowed


Handler = Callable[[HTTPRequest], HTTPResponse]


@dataclass
class Route:
    path: str
    method: Optional[str]           # None matches any method
    handler: Handler
    name: Optional[str] = None
    _pattern: Optional[re.Pattern] = field(default=None, repr=False)
    _param_names: List[str] = field(default_factory=list, repr=False)


@dataclass
class RouteMatch:
    route: Route
    params: Dict[str, str]


class Router:
    """
    Request router.

    Routes are tried in registration order; the first match wins.
    """

    def __init__(self):
        self._routes: List[Route] = []

    def add_route(
        self,
        path: str,
        handler: Handler,
        method: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Route:
        pattern, param_names = self._compile_pattern(path)
        route = Route(
            path=path,
            method=method.upper() if method else None,
            handler=handler,
            name=name,
            _pattern=pattern,
            _param_names=param_names,
        )
        self._routes.append(route)
        return route

    def _compile_pattern(self, path: str) -> tuple[re.Pattern, List[str]]:
        """
        "/static/*rest" → ^/static/(?P<rest>.*)$

        A wildcard consumes the remainder, so segments after it are ignored.
        """
        param_names: List[str] = []
        regex_parts = ["^"]

        for segment in path.split("/"):
            if not segment:
                continue

            regex_parts.append("/")

            if segment.startswith("*"):
                param_name = segment[1:] or "wildcard"
                param_names.append(param_name)
                regex_parts.append(f"(?P<{param_name}>.*)")
                break
            else:
                regex_parts.append(re.escape(segment))

        if len(regex_parts) == 1:
            regex_parts.append("/")
        regex_parts.append("$")
        return re.compile("".join(regex_parts)), param_names

    @staticmethod
    def _normalize(path: str) -> str:
        return "/" + path.strip("/") if path != "/" else "/"

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        path = self._normalize(path)
        for route in self._routes:
            if route.method and route.method != method.upper():
                continue
            m = route._pattern.match(path)
            if m:
                return RouteMatch(route=route, params=m.groupdict())
        return None

    def get_allowed_methods(self, path: str) -> List[str]:
        """Methods with a route matching ``path``, for the Allow header."""
        path = self._normalize(path)
        methods = set()
        for route in self._routes:
            if route._pattern.match(path):
                if route.method is None:
                    return ["GET", "HEAD", "OPTIONS"]
                methods.add(route.method)
        return sorted(methods)

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Dispatch to the matching handler; 405 or 404 otherwise."""
        match = self.match(request.method, request.path)
        if match:
            request.path_params = match.params
            return match.route.handler(request)

        allowed = self.get_allowed_methods(request.path)
        if allowed:
            return method_not_allowed(allowed)
        return not_found(f"No route matches {request.path}")

    def route(self, path: str, method: Optional[str] = None, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        """Decorator form of add_route()."""
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, method, name)
            return handler
        return decorator

    def get(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, "GET", name)

    def head(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, "HEAD", name)

    @property
    def routes(self) -> List[Route]:
        return list(self._routes)
