"""
Unit tests for URL router.
"""

from liveserver.http.router import Router
from liveserver.http.request import HTTPRequest
from liveserver.http.response import HTTPResponse
from liveserver.http.status_codes import HTTPStatus

from conftest import text_response


def make_request(method: str, path: str) -> HTTPRequest:
    """Helper to create a request for testing."""
    return HTTPRequest(method=method, path=path)


def dummy_handler(request: HTTPRequest) -> HTTPResponse:
    """Dummy handler for testing."""
    return text_response(request.path)


class TestRouter:
    """Tests for Router class."""

    def test_add_route(self):
        """Test adding routes."""
        router = Router()
        router.add_route("/files", dummy_handler, method="get")

        assert len(router.routes) == 1
        assert router.routes[0].path == "/files"
        assert router.routes[0].method == "GET"

    def test_match_static_path(self):
        router = Router()
        router.add_route("/a", dummy_handler, method="GET")
        router.add_route("/b", dummy_handler, method="GET")

        assert router.match("GET", "/a").route.path == "/a"
        assert router.match("GET", "/b").route.path == "/b"
        assert router.match("GET", "/c") is None

    def test_prefixed_wildcard(self):
        router = Router()
        router.add_route("/files/*name", dummy_handler, method="GET")

        match = router.match("GET", "/files/docs/readme.md")
        assert match is not None
        assert match.params == {"name": "docs/readme.md"}
        assert router.match("GET", "/other/readme.md") is None

    def test_colon_segment_is_literal(self):
        router = Router()
        router.add_route("/files/:name", dummy_handler, method="GET")

        assert router.match("GET", "/files/readme") is None
        assert router.match("GET", "/files/:name").params == {}

    def test_wildcard_matches_root_and_nested(self):
        """The static catch-all route covers "/" and any depth."""
        router = Router()
        router.add_route("/*path", dummy_handler, method="GET")

        assert router.match("GET", "/").params == {"path": ""}
        assert router.match("GET", "/css/site.css").params == {"path": "css/site.css"}

    def test_root_route_only_matches_root(self):
        router = Router()
        router.add_route("/", dummy_handler, method="GET")

        assert router.match("GET", "/") is not None
        assert router.match("GET", "/other") is None

    def test_method_not_allowed(self):
        """A path with routes for other methods gets 405 and Allow."""
        router = Router()
        router.get("/*path")(dummy_handler)
        router.head("/*path")(dummy_handler)

        response = router.handle(make_request("POST", "/index.html"))

        assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
        assert response.headers["Allow"] == "GET, HEAD"

    def test_not_found(self):
        router = Router()
        router.get("/only")(dummy_handler)

        response = router.handle(make_request("GET", "/elsewhere"))
        assert response.status == HTTPStatus.NOT_FOUND

    def test_handle_sets_path_params(self):
        router = Router()
        captured = {}

        @router.get("/users/*id")
        def handler(request):
            captured.update(request.path_params)
            return text_response("")

        router.handle(make_request("GET", "/users/42"))
        assert captured == {"id": "42"}

    def test_first_registered_route_wins(self):
        router = Router()
        router.add_route("/special", lambda r: text_response("special"), method="GET")
        router.add_route("/*path", lambda r: text_response("static"), method="GET")

        assert router.handle(make_request("GET", "/special")).body == b"special"
        assert router.handle(make_request("GET", "/other")).body == b"static"
