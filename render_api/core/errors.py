"""
Error taxonomy for render generation.

Only CallerError, ConfigError and exhausted upstream errors reach the caller.
Cache, job and persistence writes report through WriteResult instead of raising.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

MAX_UPSTREAM_BODY_CHARS = 800

_SECRET_PATTERNS = [
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+", re.IGNORECASE),
    re.compile(r"((?:api[_-]?key|authorization|token)[\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+", re.IGNORECASE),
    re.compile(r"\b(sk-)[A-Za-z0-9]{8,}"),
]


def scrub_secrets(text: Optional[str]) -> Optional[str]:
    """Mask bearer tokens and API keys that upstream bodies sometimes echo back."""
    if text is None:
        return None
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: f"{m.group(1)}***", text)
    return text


class RenderError(Exception):
    """Base class for every user-visible render failure."""

    error_code = "RENDER_FAILED"
    http_status = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body

    def to_payload(self) -> Dict[str, Any]:
        body = scrub_secrets(self.upstream_body)
        if body and len(body) > MAX_UPSTREAM_BODY_CHARS:
            body = body[:MAX_UPSTREAM_BODY_CHARS] + "..."
        return {
            "ok": False,
            "error": self.message,
            "error_code": self.error_code,
            "upstream_status": self.upstream_status,
            "upstream_body": body,
        }


class CallerError(RenderError):
    """Missing or invalid input, rejected before any upstream cost."""

    error_code = "INVALID_REQUEST"
    http_status = 400


class ConfigError(RenderError):
    """Missing credentials or configuration. Never retried."""

    error_code = "MISSING_KEY"
    http_status = 500


class UpstreamError(RenderError):
    error_code = "UPSTREAM_ERROR"
    http_status = 502


class UpstreamTransientError(UpstreamError):
    """429/5xx/timeout/connection failures; eligible for the fallback chain."""

    error_code = "UPSTREAM_UNAVAILABLE"
    http_status = 503


class UpstreamRateLimitedError(UpstreamTransientError):
    error_code = "RATE_LIMITED"
    http_status = 429


class UpstreamTimeoutError(UpstreamTransientError):
    error_code = "UPSTREAM_TIMEOUT"
    http_status = 504


class UpstreamEmptyResponseError(UpstreamTransientError):
    """Upstream answered 2xx but carried no image in any known field."""

    error_code = "INVALID_RESPONSE"
    http_status = 502


class UpstreamPermanentError(UpstreamError):
    """Non-retryable 4xx from upstream."""

    http_status = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None, upstream_body: Optional[str] = None):
        code = f"UPSTREAM_{upstream_status}" if upstream_status else None
        super().__init__(message, error_code=code, upstream_status=upstream_status, upstream_body=upstream_body)


class GenerationTimeoutError(RenderError):
    error_code = "GENERATION_TIMEOUT"
    http_status = 504


class GenerationCancelledError(RenderError):
    error_code = "CLIENT_DISCONNECTED"
    http_status = 499


TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})


def classify_upstream_status(status: int, body: str, context: str = "Upstream") -> UpstreamError:
    """Map an upstream HTTP failure to the matching error class."""
    message = f"{context} request failed with HTTP {status}"
    if status == 429:
        return UpstreamRateLimitedError(message, upstream_status=status, upstream_body=body)
    if status in TRANSIENT_STATUSES:
        return UpstreamTransientError(message, upstream_status=status, upstream_body=body)
    return UpstreamPermanentError(message, upstream_status=status, upstream_body=body)


@dataclass
class WriteResult:
    """Outcome of a best-effort write. Callers may discard it."""

    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "WriteResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: Any) -> "WriteResult":
        return cls(ok=False, error=str(error) or error.__class__.__name__)
