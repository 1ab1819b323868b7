"""
=============================================================================
BASE MIDDLEWARE INTERFACE
=============================================================================

Middleware wraps the router like layers of an onion:

    ┌─────────────────────────────────────────────────────────┐
    │  LoggingMiddleware          (outermost: times it all)   │
    │  ┌───────────────────────────────────────────────────┐  │
    │  │  StatsMiddleware        (request / error counts)  │  │
    │  │  ┌─────────────────────────────────────────────┐  │  │
    │  │  │  CORSMiddleware     (only with --cors)      │  │  │
    │  │  │  ┌─────────────────────────────────────┐    │  │  │
    │  │  │  │   router.handle → StaticFileHandler │    │  │  │
    │  │  │  └─────────────────────────────────────┘    │  │  │
    │  │  └─────────────────────────────────────────────┘  │  │
    │  └───────────────────────────────────────────────────┘  │
    └─────────────────────────────────────────────────────────┘

Requests flow inward in the order middleware was added; responses flow back
out in reverse. WebSocket upgrades never enter the pipeline.

=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, List
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)

NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    """
    A request/response filter.

        class AddHeader(Middleware):
            def __call__(self, request, next):
                response = next(request)
                response.set_header("X-Dev", "1")
                return response

    Returning without calling ``next`` short-circuits the chain.
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        pass

    @property
    def name(self) -> str:
        return self.__class__.__name__


class MiddlewarePipeline:
    """
    Ordered middleware chain around a final handler.

        pipeline = MiddlewarePipeline()
        pipeline.add(LoggingMiddleware())
        handler = pipeline.wrap(router.handle)
    """

    def __init__(self):
        self._middleware: List[Middleware] = []

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        """Append middleware; first added is outermost."""
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        # Wrap in reverse so the first-added middleware ends up outermost
        current = handler
        for middleware in reversed(self._middleware):
            current = self._create_wrapped_handler(middleware, current)
        return current

    def _create_wrapped_handler(
        self,
        middleware: Middleware,
        next_handler: NextHandler
    ) -> NextHandler:
        def wrapped(request: HTTPRequest) -> HTTPResponse:
            return middleware(request, next_handler)
        return wrapped

    def __len__(self) -> int:
        return len(self._middleware)
