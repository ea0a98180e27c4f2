"""
Request logging middleware with correlation IDs for request tracing.

IDs are bound with structlog.contextvars, so they ride along across awaits
and show up on every record logged while the request is being served.
"""
import time
import uuid
from typing import Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

CLIENT_ID_HEADER = "X-Client-Id"

logger = structlog.stdlib.get_logger(__name__)


def get_request_id() -> str:
    """Get the current request ID from context."""
    return structlog.contextvars.get_contextvars().get("request_id", "")


def get_client_id() -> str:
    """Get the current client ID from context."""
    return structlog.contextvars.get_contextvars().get("client_id", "")


def bind_client_id(client_id: str) -> None:
    """Attach a client ID discovered after dispatch (e.g. from the request body)."""
    if client_id:
        structlog.contextvars.bind_contextvars(client_id=client_id)


def bind_render_context(**values) -> None:
    """Bind render fields (cache_key, stage, ...) for the rest of the current task."""
    structlog.contextvars.bind_contextvars(**{k: v for k, v in values.items() if v is not None})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that:
    1. Assigns a short request ID to each request
    2. Logs request start/end with timing
    3. Captures the client ID from the X-Client-Id header or a /jobs/{client_id}/ path
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())[:8]
        path = request.url.path
        client_id = request.headers.get(CLIENT_ID_HEADER, "")
        if not client_id and "/jobs/" in path:
            client_id = path.split("/jobs/", 1)[1].split("/")[0]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        bind_client_id(client_id)

        start_time = time.time()
        logger.info(f"→ {request.method} {path}", method=request.method, path=path)

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(f"✗ Error: {str(e)[:100]} ({duration_ms:.0f}ms)", duration_ms=duration_ms, exc_info=True)
            raise

        duration_ms = (time.time() - start_time) * 1000
        log = logger.info if response.status_code < 400 else logger.warning
        log(f"← {response.status_code} ({duration_ms:.0f}ms)", status_code=response.status_code, duration_ms=duration_ms)

        response.headers["X-Request-ID"] = request_id
        return response


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger whose records include the bound request and render context."""
    return structlog.stdlib.get_logger(name)
