"""
Middleware package for the API.
"""
from render_api.middleware.logging_middleware import (
    RequestLoggingMiddleware,
    bind_client_id,
    bind_render_context,
    get_client_id,
    get_logger,
    get_request_id,
)

__all__ = [
    "RequestLoggingMiddleware",
    "bind_client_id",
    "bind_render_context",
    "get_logger",
    "get_request_id",
    "get_client_id",
]
