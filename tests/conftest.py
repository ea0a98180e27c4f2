"""
Shared pytest fixtures and configuration for all tests
"""
import asyncio
import base64
import io
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

# Add the parent directory to the path so we can import render_api
sys.path.insert(0, str(Path(__file__).parent.parent))

from render_api.schemas.render import RenderIntake
from render_api.services.content_cache import ContentCache
from render_api.services.content_store import InMemoryContentStore
from render_api.services.generation_orchestrator import GenerationOrchestrator
from render_api.services.image_fetch import ImageFetchResult
from render_api.services.job_tracker import JobTracker
from render_api.services.upstream_image_client import UpstreamImage, UpstreamImageResponse


def make_image_bytes(color: str = "red", size=(64, 40), fmt: str = "PNG") -> bytes:
    img = Image.new("RGB", size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt)
    return buffer.getvalue()


def image_response(url: Optional[str] = None, b64: Optional[str] = None, seed: Optional[int] = None) -> UpstreamImageResponse:
    return UpstreamImageResponse(images=[UpstreamImage(url=url, b64=b64, finish_reason="success", seed=seed)])


class FakeUpstreamClient:
    """Scripted stand-in for UpstreamImageClient.

    Each entry in a script is either an UpstreamImageResponse to return or an
    exception to raise. When a script runs out, the last entry repeats.
    `delays` holds per-call sleeps in call order; after it runs out, `delay` applies.
    """

    def __init__(self, i2i_script: Optional[List[Any]] = None, t2i_script: Optional[List[Any]] = None, api_key: str = "sk-test"):
        self.api_key = api_key
        self.model = "step-1x-medium"
        self.i2i_script = list(i2i_script or [])
        self.t2i_script = list(t2i_script or [])
        self.i2i_calls: List[Dict[str, Any]] = []
        self.t2i_calls: List[Dict[str, Any]] = []
        self.delay = 0.0
        self.delays: List[float] = []
        self.closed = False

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def total_calls(self) -> int:
        return len(self.i2i_calls) + len(self.t2i_calls)

    async def _next(self, script: List[Any]):
        delay = self.delays.pop(0) if self.delays else self.delay
        if delay:
            await asyncio.sleep(delay)
        if not script:
            return UpstreamImageResponse()
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def image_to_image(self, **kwargs) -> UpstreamImageResponse:
        self.i2i_calls.append(kwargs)
        return await self._next(self.i2i_script)

    async def text_to_image(self, **kwargs) -> UpstreamImageResponse:
        self.t2i_calls.append(kwargs)
        return await self._next(self.t2i_script)

    async def close(self):
        self.closed = True


class FakeFetcher:
    """Serves image bytes for known URLs; anything else fails like a 404."""

    def __init__(self, images: Optional[Dict[str, bytes]] = None):
        self.images = dict(images or {})
        self.fetched: List[str] = []

    async def fetch(self, url: str) -> ImageFetchResult:
        self.fetched.append(url)
        data = self.images.get(url)
        if data is None:
            return ImageFetchResult(ok=False, reason="http_error", status=404)
        return ImageFetchResult(ok=True, status=200, content_type="image/png", data=data)

    async def close(self):
        pass


class FailingStore(InMemoryContentStore):
    """In-memory store whose writes (and optionally reads) raise for chosen prefixes"""

    def __init__(self, fail_put_prefixes=("",), fail_get: bool = False):
        super().__init__()
        self.fail_put_prefixes = fail_put_prefixes
        self.fail_get = fail_get

    async def put(self, path, data, content_type=None, public=True):
        if any(path.startswith(p) for p in self.fail_put_prefixes):
            raise ConnectionError("store unavailable")
        return await super().put(path, data, content_type=content_type, public=public)

    async def get(self, path):
        if self.fail_get:
            raise ConnectionError("store unavailable")
        return await super().get(path)


@pytest.fixture
def png_bytes() -> bytes:
    """Small red PNG used as upstream output"""
    return make_image_bytes("red")


@pytest.fixture
def png_b64(png_bytes) -> str:
    return base64.b64encode(png_bytes).decode()


@pytest.fixture
def room_photo_url() -> str:
    return "https://cdn.example.com/uploads/room.jpg?token=abc123"


@pytest.fixture
def sample_base64_image():
    """Sample base64 encoded image for testing"""
    # 1x1 transparent PNG
    return "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="


@pytest.fixture
def kitchen_intake() -> RenderIntake:
    """Kitchen intake as picked in the mobile client"""
    return RenderIntake(space="厨房", style="现代简约", color="纯白", requirements="")


@pytest.fixture
def memory_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def make_orchestrator(memory_store, fake_fetcher):
    """Factory building an orchestrator around a scripted client"""

    def _make(client: FakeUpstreamClient, store=None, fetcher=None, **kwargs) -> GenerationOrchestrator:
        store = store or memory_store
        options = {"refine_enabled": False}
        options.update(kwargs)
        return GenerationOrchestrator(
            client=client,
            fetcher=fetcher or fake_fetcher,
            store=store,
            cache=ContentCache(store),
            jobs=JobTracker(store),
            **options,
        )

    return _make
