"""
=============================================================================
HTTP LAYER
=============================================================================

    request      HTTPRequest, RequestParser       head parsing
    response     ResponseStream                   outbound sink
    message      Message                          one request/response pair
    writer       write_as_json, write_not_found   response renderers
    router       Router                           exact paths + static files
    mime_types   get_mime_type                    content-type table

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import ResponseStream, ResponseFinishedError
from .mime_types import get_mime_type, get_content_type
from .message import Message
from . import writer
from .router import Router

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",
    "ResponseStream",
    "ResponseFinishedError",
    "Message",
    "writer",
    "Router",
    "get_mime_type",
    "get_content_type",
]
