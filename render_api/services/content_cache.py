"""
Content-addressed cache of finished renders.

Keys hash every input that can change the picture, so an identical request is
answered without spending upstream quota. Reads and writes are best-effort: a
store failure is a cache miss on read and a logged WriteResult on write.
"""
import hashlib
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from render_api.core.errors import WriteResult
from render_api.services.content_store import ContentStore

logger = logging.getLogger(__name__)


def normalize_image_identity(image_ref: str) -> str:
    """
    Stable identity for a base image reference.

    Inline data URLs hash to a short digest of the whole reference. Remote
    URLs keep scheme, host and path only; credentials, query and fragment
    (often signed, expiring tokens) are dropped.
    """
    ref = (image_ref or "").strip()
    if ref.startswith("data:"):
        return "inline:" + hashlib.sha256(ref.encode("utf-8")).hexdigest()[:16]
    parts = urlsplit(ref)
    if not parts.scheme or not parts.netloc:
        return ref
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme.lower(), host.lower(), parts.path, "", ""))


def compute_cache_key(
    prompt_version: str,
    base_image: str,
    size: str,
    render_intake: Optional[Dict[str, Any]],
    prompt: Optional[str],
    params: Dict[str, Any],
) -> str:
    """SHA-256 over a canonical JSON document of every generation input"""
    document = {
        "v": prompt_version,
        "image": normalize_image_identity(base_image),
        "size": size,
        "intake": render_intake,
        "prompt": prompt,
        "params": params,
    }
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    result_url: str
    is_temporary_url: bool = False
    debug: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        if not isinstance(data, dict) or not data.get("result_url"):
            raise ValueError("cache entry without result_url")
        return cls(
            result_url=str(data["result_url"]),
            is_temporary_url=bool(data.get("is_temporary_url", False)),
            debug=dict(data.get("debug") or {}),
            created_at=float(data.get("created_at") or 0.0),
        )


class ContentCache:
    """At most one stored result per cache key, last write wins"""

    def __init__(self, store: ContentStore, prefix: str = "cache", temporary_ttl_seconds: Optional[float] = None, clock=time.time):
        self.backend = store
        self.prefix = prefix.strip("/")
        self.temporary_ttl_seconds = temporary_ttl_seconds
        self._clock = clock

    def _path(self, key: str) -> str:
        return f"{self.prefix}/{key}.json"

    async def lookup(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self.backend.get(self._path(key))
        except Exception as e:
            logger.warning(f"Cache read failed for {key[:12]}, treating as miss: {e}")
            return None
        if raw is None:
            return None

        try:
            entry = CacheEntry.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(f"Ignoring malformed cache entry {key[:12]}: {e}")
            return None

        # Temporary upstream URLs expire on the provider side
        ttl = self.temporary_ttl_seconds
        if entry.is_temporary_url and ttl is not None and self._clock() - entry.created_at > ttl:
            logger.info(f"Cache entry {key[:12]} holds an expired temporary URL, treating as miss")
            return None
        return entry

    async def store(self, key: str, entry: CacheEntry) -> WriteResult:
        try:
            payload = json.dumps(asdict(entry), ensure_ascii=False, default=str).encode("utf-8")
            await self.backend.put(self._path(key), payload, content_type="application/json", public=False)
        except Exception as e:
            logger.warning(f"Cache write failed for {key[:12]}: {e}")
            return WriteResult.failure(e)
        return WriteResult.success()

    async def invalidate(self, key: str) -> WriteResult:
        try:
            await self.backend.delete(self._path(key))
        except Exception as e:
            logger.warning(f"Cache invalidate failed for {key[:12]}: {e}")
            return WriteResult.failure(e)
        return WriteResult.success()
