"""
Image download and data-URL helpers
"""
import asyncio
import base64
import binascii
import io
import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import aiohttp
from PIL import Image

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 20 * 1024 * 1024  # 20MB


def is_data_url(ref: Optional[str]) -> bool:
    return isinstance(ref, str) and ref.strip().startswith("data:")


def parse_data_url(ref: str) -> Tuple[str, bytes]:
    """Split ``data:<mime>;base64,<payload>`` into (mime, bytes). Raises ValueError."""
    header, sep, payload = ref.strip().partition(",")
    if not sep or not header.startswith("data:") or ";base64" not in header:
        raise ValueError("not a base64 data URL")
    mime = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    try:
        return mime, base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64 payload: {e}") from e


def sniff_mime(data: bytes, fallback: str = "image/png") -> str:
    """Detect the image MIME type from its bytes using Pillow."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return Image.MIME.get(image.format or "", fallback)
    except (OSError, ValueError):
        return fallback


def to_data_url(data: bytes, mime: Optional[str] = None) -> str:
    mime = mime or sniff_mime(data)
    return f"data:{mime};base64,{base64.b64encode(data).decode('utf-8')}"


def b64_to_data_url(b64: str) -> str:
    """Wrap a bare base64 payload from upstream in a data URL."""
    b64 = b64.strip()
    if b64.startswith("data:"):
        return b64
    try:
        head = base64.b64decode(b64[:64] + "=" * (-len(b64[:64]) % 4))
    except (binascii.Error, ValueError):
        head = b""
    mime = "image/jpeg" if head.startswith(b"\xff\xd8") else "image/png"
    return f"data:{mime};base64,{b64}"


def extension_for(mime: str) -> str:
    return {"image/jpeg": "jpg", "image/webp": "webp", "image/gif": "gif"}.get(mime, "png")


@dataclass
class ImageFetchResult:
    ok: bool
    reason: Optional[str] = None
    status: Optional[int] = None
    content_type: Optional[str] = None
    data: Optional[bytes] = None
    elapsed_ms: int = 0

    @property
    def data_url(self) -> Optional[str]:
        if not self.ok or not self.data:
            return None
        return to_data_url(self.data, self.content_type)


class ImageFetcher:
    """Fetches image bytes for URL-to-base64 fallbacks and output normalization"""

    def __init__(self, timeout_seconds: float = 30.0, max_bytes: int = MAX_IMAGE_BYTES):
        self.timeout_seconds = timeout_seconds
        self.max_bytes = max_bytes
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout)
        return self.session

    async def fetch(self, url: str) -> ImageFetchResult:
        """Download an image; data URLs are decoded locally. Never raises."""
        start = time.time()

        def done(**kwargs) -> ImageFetchResult:
            return ImageFetchResult(elapsed_ms=int((time.time() - start) * 1000), **kwargs)

        if not url:
            return done(ok=False, reason="empty_url")

        if is_data_url(url):
            try:
                mime, data = parse_data_url(url)
            except ValueError as e:
                return done(ok=False, reason=f"bad_data_url: {e}")
            return done(ok=True, content_type=mime, data=data)

        try:
            session = await self._get_session()
            async with session.get(url) as response:
                if response.status != 200:
                    logger.warning(f"Image fetch returned HTTP {response.status}: {url[:120]}")
                    return done(ok=False, reason="http_error", status=response.status)
                data = await response.read()
                if len(data) > self.max_bytes:
                    return done(ok=False, reason="too_large", status=response.status)
                content_type = (response.headers.get("Content-Type") or "").split(";")[0].strip()
                if not content_type.startswith("image/"):
                    content_type = sniff_mime(data)
                return done(ok=True, status=response.status, content_type=content_type, data=data)
        except asyncio.TimeoutError:
            logger.warning(f"Timeout fetching image: {url[:120]}")
            return done(ok=False, reason="timeout")
        except (aiohttp.ClientError, OSError) as e:
            logger.warning(f"Network error fetching image: {e}")
            return done(ok=False, reason=f"network_error: {e}")

    async def close(self):
        """Close HTTP session"""
        if self.session:
            await self.session.close()
            self.session = None
