"""
=============================================================================
HTTP PROTOCOL
=============================================================================

    request.py       raw bytes → HTTPRequest (and WebSocket upgrade detection)
    response.py      HTTPResponse / ResponseBuilder → raw bytes
    router.py        (method, path) → handler
    injection.py     reload snippet insertion for HTML pages
    status_codes.py  HTTPStatus
    mime_types.py    extension → Content-Type

=============================================================================
"""

from .request import HTTPRequest, HTTPParseError, RequestParser, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    format_http_date,
    redirect,
    not_modified,
    forbidden,
    not_found,
    method_not_allowed,
    error_response,
    internal_error,
    service_unavailable,
)
from .router import Router, Route, RouteMatch
from .status_codes import HTTPStatus
from .mime_types import get_mime_type, get_content_type, is_html
from .injection import RELOAD_SCRIPT, inject_reload_script, has_reload_script

__all__ = [
    "HTTPRequest",
    "HTTPParseError",
    "RequestParser",
    "parse_request",
    "HTTPResponse",
    "ResponseBuilder",
    "format_http_date",
    "redirect",
    "not_modified",
    "forbidden",
    "not_found",
    "method_not_allowed",
    "error_response",
    "internal_error",
    "service_unavailable",
    "Router",
    "Route",
    "RouteMatch",
    "HTTPStatus",
    "get_mime_type",
    "get_content_type",
    "is_html",
    "RELOAD_SCRIPT",
    "inject_reload_script",
    "has_reload_script",
]
