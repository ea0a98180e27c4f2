"""
Service wiring. Everything is constructed once in the app lifespan and
handed to routes through request.app.state; there are no module singletons.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from render_api.core.config import Settings
from render_api.services.content_cache import ContentCache
from render_api.services.content_store import (
    ContentStore,
    InMemoryContentStore,
    LocalContentStore,
    RedisContentStore,
)
from render_api.services.generation_orchestrator import GenerationOrchestrator
from render_api.services.image_fetch import ImageFetcher
from render_api.services.job_tracker import JobTracker
from render_api.services.prompt_builder import PromptBuilder
from render_api.services.upstream_image_client import UpstreamImageClient

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    store: ContentStore
    cache: ContentCache
    jobs: JobTracker
    client: UpstreamImageClient
    fetcher: ImageFetcher
    orchestrator: GenerationOrchestrator

    async def close(self):
        await self.client.close()
        await self.fetcher.close()
        await self.store.close()


def build_content_store(settings: Settings) -> ContentStore:
    backend = settings.store_backend.lower()
    if backend == "redis":
        logger.info("Using Redis content store")
        return RedisContentStore(settings.redis_url, settings.store_key_prefix, settings.public_base_url)
    if backend == "memory":
        logger.info("Using in-memory content store")
        return InMemoryContentStore(settings.public_base_url)
    logger.info(f"Using local content store at {settings.local_store_dir}")
    return LocalContentStore(settings.local_store_dir, settings.public_base_url, settings.static_mount_path)


def build_services(
    settings: Settings,
    store: Optional[ContentStore] = None,
    client: Optional[UpstreamImageClient] = None,
) -> ServiceContainer:
    store = store or build_content_store(settings)
    client = client or UpstreamImageClient(
        api_key=settings.image_api_key,
        base_url=settings.image_api_base_url,
        model=settings.image_model,
        timeout_seconds=settings.generation_timeout_seconds,
        rate_limit_backoff_seconds=settings.rate_limit_backoff_seconds,
    )
    fetcher = ImageFetcher(timeout_seconds=settings.fetch_timeout_seconds)
    cache = ContentCache(store, prefix="cache", temporary_ttl_seconds=settings.temporary_result_ttl_seconds)
    jobs = JobTracker(store, prefix="jobs", stale_after_seconds=settings.job_stale_after_seconds)
    orchestrator = GenerationOrchestrator(
        client=client,
        fetcher=fetcher,
        store=store,
        cache=cache,
        jobs=jobs,
        prompt_builder=PromptBuilder(),
        budget_seconds=settings.generation_budget_seconds,
        refine_enabled=settings.refine_enabled,
        refine_skip_presets=tuple(settings.refine_skip_presets),
        refine_min_budget_seconds=settings.refine_min_budget_seconds,
    )
    return ServiceContainer(store=store, cache=cache, jobs=jobs, client=client, fetcher=fetcher, orchestrator=orchestrator)


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the container built at startup"""
    return request.app.state.services


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    return request.app.state.services.orchestrator
