"""
Blob storage for render results, cache entries and job records.

Every backend exposes the same put/get/list/delete surface keyed by a
slash-separated path and returns a publicly fetchable URL for stored objects.
"""
import asyncio
import logging
import mimetypes
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis

logger = logging.getLogger(__name__)

FILES_ROUTE = "/api/design/files"


@dataclass
class StoredObject:
    path: str
    url: str
    uploaded_at: float
    content_type: Optional[str] = None


def clean_path(path: str) -> str:
    """Normalize a store path and refuse anything that escapes the store root."""
    parts = [p for p in str(path).replace("\\", "/").split("/") if p not in ("", ".")]
    if not parts or any(p == ".." for p in parts):
        raise ValueError(f"Invalid store path: {path!r}")
    return "/".join(parts)


def guess_content_type(path: str) -> str:
    return mimetypes.guess_type(path)[0] or "application/octet-stream"


class ContentStore(ABC):
    """Path-addressed blob store"""

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: Optional[str] = None, public: bool = True) -> StoredObject:
        ...

    @abstractmethod
    async def get(self, path: str) -> Optional[bytes]:
        ...

    @abstractmethod
    async def list(self, prefix: str = "") -> List[StoredObject]:
        ...

    @abstractmethod
    async def delete(self, path: str) -> bool:
        ...

    async def close(self):
        """Release connections; no-op for stores without any."""


class InMemoryContentStore(ContentStore):
    """Process-local store for tests and single-instance development"""

    def __init__(self, public_base_url: str = "http://localhost:8000"):
        self.public_base_url = public_base_url.rstrip("/")
        self._objects: Dict[str, Tuple[bytes, str, float]] = {}

    def url_for(self, path: str) -> str:
        return f"{self.public_base_url}{FILES_ROUTE}/{path}"

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None, public: bool = True) -> StoredObject:
        path = clean_path(path)
        content_type = content_type or guess_content_type(path)
        uploaded_at = time.time()
        self._objects[path] = (bytes(data), content_type, uploaded_at)
        return StoredObject(path=path, url=self.url_for(path), uploaded_at=uploaded_at, content_type=content_type)

    async def get(self, path: str) -> Optional[bytes]:
        entry = self._objects.get(clean_path(path))
        return entry[0] if entry else None

    async def list(self, prefix: str = "") -> List[StoredObject]:
        return [
            StoredObject(path=p, url=self.url_for(p), uploaded_at=ts, content_type=ct)
            for p, (_, ct, ts) in sorted(self._objects.items())
            if p.startswith(prefix)
        ]

    async def delete(self, path: str) -> bool:
        return self._objects.pop(clean_path(path), None) is not None


class LocalContentStore(ContentStore):
    """Filesystem store served by the app's static mount"""

    def __init__(self, root_dir: str, public_base_url: str, mount_path: str = "/files"):
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        self.mount_path = "/" + mount_path.strip("/")

    def url_for(self, path: str) -> str:
        return f"{self.public_base_url}{self.mount_path}/{path}"

    def _write(self, target: Path, data: bytes):
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.{os.getpid()}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, target)

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None, public: bool = True) -> StoredObject:
        path = clean_path(path)
        target = self.root / path
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._write, target, bytes(data))
        return StoredObject(
            path=path,
            url=self.url_for(path),
            uploaded_at=target.stat().st_mtime,
            content_type=content_type or guess_content_type(path),
        )

    async def get(self, path: str) -> Optional[bytes]:
        target = self.root / clean_path(path)
        if not target.is_file():
            return None
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, target.read_bytes)

    async def list(self, prefix: str = "") -> List[StoredObject]:
        objects = []
        for file_path in sorted(self.root.rglob("*")):
            if not file_path.is_file() or file_path.name.startswith("."):
                continue
            rel = file_path.relative_to(self.root).as_posix()
            if rel.startswith(prefix):
                objects.append(
                    StoredObject(
                        path=rel,
                        url=self.url_for(rel),
                        uploaded_at=file_path.stat().st_mtime,
                        content_type=guess_content_type(rel),
                    )
                )
        return objects

    async def delete(self, path: str) -> bool:
        target = self.root / clean_path(path)
        if not target.is_file():
            return False
        target.unlink()
        return True


class RedisContentStore(ContentStore):
    """Redis hash per object: data, content_type, uploaded_at"""

    def __init__(self, redis_url: str, key_prefix: str, public_base_url: str, client: Optional[redis.Redis] = None):
        self.client = client or redis.from_url(redis_url)
        self.key_prefix = key_prefix.rstrip(":")
        self.public_base_url = public_base_url.rstrip("/")

    def _key(self, path: str) -> str:
        return f"{self.key_prefix}:blob:{path}"

    def url_for(self, path: str) -> str:
        return f"{self.public_base_url}{FILES_ROUTE}/{path}"

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None, public: bool = True) -> StoredObject:
        path = clean_path(path)
        content_type = content_type or guess_content_type(path)
        uploaded_at = time.time()
        await self.client.hset(
            self._key(path),
            mapping={"data": bytes(data), "content_type": content_type, "uploaded_at": str(uploaded_at)},
        )
        return StoredObject(path=path, url=self.url_for(path), uploaded_at=uploaded_at, content_type=content_type)

    async def get(self, path: str) -> Optional[bytes]:
        return await self.client.hget(self._key(clean_path(path)), "data")

    async def list(self, prefix: str = "") -> List[StoredObject]:
        key_head = self._key("")
        objects = []
        async for key in self.client.scan_iter(match=f"{key_head}{prefix}*"):
            key = key.decode() if isinstance(key, bytes) else key
            path = key[len(key_head):]
            meta = await self.client.hmget(key, ["content_type", "uploaded_at"])
            content_type = meta[0].decode() if isinstance(meta[0], bytes) else meta[0]
            uploaded_at = float(meta[1]) if meta[1] else 0.0
            objects.append(StoredObject(path=path, url=self.url_for(path), uploaded_at=uploaded_at, content_type=content_type))
        return sorted(objects, key=lambda o: o.path)

    async def delete(self, path: str) -> bool:
        return bool(await self.client.delete(self._key(clean_path(path))))

    async def close(self):
        await self.client.aclose()
