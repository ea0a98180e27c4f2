"""
Generation orchestration for room redesign renders.

Control flow for one request:

    VALIDATING -> CACHE_CHECK -> CACHE_HIT
                              -> JOB_CHECK -> JOB_DONE | JOB_IN_PROGRESS
                                           -> GENERATING (URL -> BASE64 -> RELAXED_PARAMS)
                                           -> REFINING -> PERSISTING -> DONE | FAILED

Strategies are an ordered list driven by a loop that stops at the first
success. Cache, job and persistence writes are best-effort and never turn a
successful render into a failed response.
"""
import asyncio
import math
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from render_api.core.errors import (
    CallerError,
    ConfigError,
    GenerationCancelledError,
    GenerationTimeoutError,
    RenderError,
    UpstreamEmptyResponseError,
    UpstreamError,
    UpstreamPermanentError,
    UpstreamTransientError,
)
from render_api.middleware.logging_middleware import bind_render_context, get_logger
from render_api.schemas.render import (
    GenerationRequest,
    GenerationResponse,
    InspireRequest,
    RenderIntake,
    ResponseFormat,
)
from render_api.services.content_cache import CacheEntry, ContentCache, compute_cache_key
from render_api.services.content_store import ContentStore
from render_api.services.image_fetch import (
    ImageFetcher,
    b64_to_data_url,
    extension_for,
    is_data_url,
    parse_data_url,
    sniff_mime,
)
from render_api.services.job_tracker import JobTracker
from render_api.services.prompt_builder import (
    PROMPT_LOGIC_VERSION,
    IntensityPreset,
    PromptBuilder,
    PromptResult,
    clamp_prompt,
    detect_intake_intensity,
    prompt_hash,
)
from render_api.services.size_selector import DEFAULT_INSPIRATION_SIZE, DEFAULT_SIZE, is_allowed_size, resolve_size
from render_api.services.upstream_image_client import UpstreamImage, UpstreamImageClient

logger = get_logger(__name__)

# Statuses on the URL form that usually mean "upstream could not read the URL"
URL_ACCESS_STATUSES = frozenset({400, 403, 404, 410, 415, 422})

REFINE_INSTRUCTION = (
    "Refine this render into a magazine-quality photorealistic interior: ONLY enhance materials, cabinetry "
    "detailing and layered lighting (warm 2700-3000K cove + downlights + accents, soft shadows). Do NOT change "
    "layout or move furniture. Avoid empty room, blank walls, unfinished concrete."
)


class Stage(str, Enum):
    VALIDATING = "VALIDATING"
    CACHE_CHECK = "CACHE_CHECK"
    CACHE_HIT = "CACHE_HIT"
    JOB_CHECK = "JOB_CHECK"
    JOB_DONE = "JOB_DONE"
    JOB_IN_PROGRESS = "JOB_IN_PROGRESS"
    GENERATING = "GENERATING"
    STRATEGY_URL = "STRATEGY_URL"
    STRATEGY_BASE64 = "STRATEGY_BASE64"
    STRATEGY_RELAXED_PARAMS = "STRATEGY_RELAXED_PARAMS"
    REFINING = "REFINING"
    PERSISTING = "PERSISTING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class GenerationParameters:
    source_weight: float
    steps: int
    cfg_scale: float
    seed: Optional[int] = None
    response_format: str = ResponseFormat.B64_JSON.value

    def relaxed(self) -> "GenerationParameters":
        return replace(
            self,
            source_weight=min(0.52, self.source_weight),
            steps=min(36, self.steps),
            cfg_scale=min(7.2, self.cfg_scale),
        )

    def refined(self) -> "GenerationParameters":
        return replace(
            self,
            source_weight=min(0.32, self.source_weight),
            steps=min(36, self.steps),
            cfg_scale=min(6.8, self.cfg_scale),
            response_format=ResponseFormat.URL.value,
        )

    def with_format(self, response_format: str) -> "GenerationParameters":
        return replace(self, response_format=response_format)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "source_weight": self.source_weight,
            "steps": self.steps,
            "cfg_scale": self.cfg_scale,
            "seed": self.seed,
            "response_format": self.response_format,
        }


INTENSITY_PRESETS: Dict[IntensityPreset, GenerationParameters] = {
    IntensityPreset.LIGHT: GenerationParameters(source_weight=0.45, steps=34, cfg_scale=6.6),
    IntensityPreset.RECOMMENDED: GenerationParameters(source_weight=0.70, steps=42, cfg_scale=7.2),
    IntensityPreset.BOLD: GenerationParameters(source_weight=0.82, steps=46, cfg_scale=7.6),
}


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def resolve_parameters(
    source_weight: Any = None,
    steps: Any = None,
    cfg_scale: Any = None,
    seed: Any = None,
    response_format: Any = None,
    preset: IntensityPreset = IntensityPreset.RECOMMENDED,
    default_format: str = ResponseFormat.B64_JSON.value,
) -> GenerationParameters:
    """Use caller values when in range, otherwise the preset defaults."""
    defaults = INTENSITY_PRESETS[preset]

    sw = _number(source_weight)
    if sw is None or not 0 < sw <= 1:
        sw = defaults.source_weight

    st = _number(steps)
    if st is None or st != int(st) or not 1 <= st <= 100:
        st = defaults.steps

    cfg = _number(cfg_scale)
    if cfg is None or not 1 <= cfg <= 10:
        cfg = defaults.cfg_scale

    sd = _number(seed)
    sd = int(sd) if sd is not None and sd == int(sd) and sd > 0 else None

    fmt = str(response_format or "").strip().lower()
    if fmt not in (ResponseFormat.B64_JSON.value, ResponseFormat.URL.value):
        fmt = default_format

    return GenerationParameters(source_weight=sw, steps=int(st), cfg_scale=cfg, seed=sd, response_format=fmt)


def flip_format(response_format: str) -> str:
    if response_format == ResponseFormat.URL.value:
        return ResponseFormat.B64_JSON.value
    return ResponseFormat.URL.value


@dataclass
class GeneratedImage:
    image: UpstreamImage
    params: GenerationParameters
    strategy: Stage


@dataclass
class GenerationContext:
    """Mutable per-request state shared by the strategies"""

    prompt: str
    size: str
    base_image: str
    params: GenerationParameters
    deadline: float
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None
    inline_source: Optional[str] = None
    format_flipped: bool = False
    last_error: Optional[UpstreamError] = None
    attempts: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def best_source(self) -> str:
        return self.inline_source or self.base_image


@dataclass
class GenerationStrategy:
    """One rung of the fallback chain"""

    name: Stage
    applies: Callable[[GenerationContext], bool]
    run: Callable[[GenerationContext], Awaitable[GeneratedImage]]


def is_transient(error: Optional[BaseException]) -> bool:
    return isinstance(error, UpstreamTransientError)


def is_url_access_failure(error: Optional[BaseException]) -> bool:
    return isinstance(error, UpstreamPermanentError) and error.upstream_status in URL_ACCESS_STATUSES


class GenerationOrchestrator:
    """Runs one render request end to end"""

    def __init__(
        self,
        client: UpstreamImageClient,
        fetcher: ImageFetcher,
        store: ContentStore,
        cache: ContentCache,
        jobs: JobTracker,
        prompt_builder: Optional[PromptBuilder] = None,
        budget_seconds: float = 280.0,
        refine_enabled: bool = True,
        refine_skip_presets: Tuple[str, ...] = ("light",),
        refine_min_budget_seconds: float = 22.0,
        results_prefix: str = "results",
    ):
        self.client = client
        self.fetcher = fetcher
        self.store = store
        self.cache = cache
        self.jobs = jobs
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.budget_seconds = budget_seconds
        self.refine_enabled = refine_enabled
        self.refine_skip_presets = tuple(p.lower() for p in refine_skip_presets)
        self.refine_min_budget_seconds = refine_min_budget_seconds
        self.results_prefix = results_prefix.strip("/")
        self.strategies: List[GenerationStrategy] = [
            GenerationStrategy(Stage.STRATEGY_URL, self._url_applies, self._run_url),
            GenerationStrategy(Stage.STRATEGY_BASE64, self._base64_applies, self._run_base64),
            GenerationStrategy(Stage.STRATEGY_RELAXED_PARAMS, self._relaxed_applies, self._run_relaxed),
        ]

    # ------------------------------------------------------------------
    # Preparation shared by generate() and preview_prompt()
    # ------------------------------------------------------------------

    def _build_prompt(self, request: GenerationRequest) -> Tuple[Optional[PromptResult], str]:
        if request.prompt is not None and request.prompt.strip():
            text = clamp_prompt(request.prompt)
            return None, text
        if request.render_intake is not None:
            result = self.prompt_builder.build(request.render_intake)
            return result, result.prompt
        return None, ""

    def _preset_for(self, intake: Optional[RenderIntake]) -> IntensityPreset:
        return detect_intake_intensity(intake)

    def _output_size(self, request: GenerationRequest, base_image: Optional[str]) -> str:
        image_data = None
        # Inline photos already carry their own dimensions
        if not is_allowed_size(request.size) and is_data_url(base_image):
            try:
                _, image_data = parse_data_url(base_image)
            except ValueError as e:
                logger.warning(f"Inline base image could not be decoded for sizing: {e}")
        return resolve_size(
            request.size, request.source_width, request.source_height, default=DEFAULT_SIZE, image_data=image_data
        )

    def preview_prompt(self, request: GenerationRequest) -> Dict[str, Any]:
        """Prompt and resolved parameters for a request, without any upstream call."""
        result, prompt = self._build_prompt(request)
        if not prompt:
            raise CallerError("Either prompt or render_intake is required", error_code="EMPTY_PROMPT")
        preset = self._preset_for(request.render_intake)
        params = resolve_parameters(
            request.source_weight, request.steps, request.cfg_scale, request.seed, request.response_format, preset
        )
        size = self._output_size(request, request.base_image)
        return {
            "prompt": prompt,
            "prompt_chars": len(prompt),
            "prompt_hash": result.prompt_hash if result else prompt_hash(prompt),
            "dropped_fields": result.dropped_fields if result else [],
            "space_type": result.space_type.value if result else "literal",
            "layout_variant": result.layout_variant if result else "",
            "finish_level": result.finish_level.value if result else "",
            "intensity_preset": preset.value,
            "size": size,
            "parameters": params.as_dict(),
        }

    # ------------------------------------------------------------------
    # generate()
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: GenerationRequest,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> GenerationResponse:
        """
        Produce a redesign render for the request.

        Raises CallerError/ConfigError before any upstream call, and an
        UpstreamError, GenerationTimeoutError or GenerationCancelledError
        when every strategy is exhausted or the request is abandoned.
        """
        # VALIDATING
        base_image = (request.base_image or "").strip()
        if not base_image:
            raise CallerError("base_image is required", error_code="MISSING_BASE_IMAGE")
        prompt_result, prompt = self._build_prompt(request)
        if not prompt:
            raise CallerError("Either prompt or render_intake is required", error_code="EMPTY_PROMPT")
        if not self.client.is_configured:
            raise ConfigError("Image API key is not configured (STEPFUN_API_KEY)", error_code="MISSING_KEY")

        preset = self._preset_for(request.render_intake)
        params = resolve_parameters(
            request.source_weight, request.steps, request.cfg_scale, request.seed, request.response_format, preset
        )
        size = self._output_size(request, base_image)

        # CACHE_CHECK
        cache_key = compute_cache_key(
            PROMPT_LOGIC_VERSION,
            base_image,
            size,
            request.render_intake.model_dump(mode="json") if request.render_intake else None,
            request.prompt.strip() if request.prompt and request.prompt.strip() else None,
            {**params.as_dict(), "model": self.client.model},
        )
        base_response = {
            "job_id": request.job_id,
            "cache_key": cache_key,
            "prompt_hash": prompt_result.prompt_hash if prompt_result else prompt_hash(prompt),
            "prompt_chars": len(prompt),
            "dropped_fields": prompt_result.dropped_fields if prompt_result else [],
        }

        cached = await self.cache.lookup(cache_key)
        if cached is not None:
            logger.info(f"{Stage.CACHE_HIT.value}: {cache_key[:12]}")
            return GenerationResponse(
                result_url=cached.result_url,
                is_temporary_url=cached.is_temporary_url,
                cache_hit=True,
                debug={**cached.debug, "stage": Stage.CACHE_HIT.value},
                **base_response,
            )

        # JOB_CHECK
        track_job = bool(request.client_id and request.job_id)
        if track_job:
            check = await self.jobs.check_existing(request.client_id, request.job_id)
            if check.is_done:
                logger.info(f"{Stage.JOB_DONE.value}: {request.job_id}")
                return GenerationResponse(
                    result_url=check.record.result_url,
                    is_temporary_url=check.record.is_temporary_url,
                    debug={"stage": Stage.JOB_DONE.value},
                    **base_response,
                )
            if check.is_in_progress:
                logger.info(f"{Stage.JOB_IN_PROGRESS.value}: {request.job_id}")
                return GenerationResponse(
                    status="in_progress",
                    debug={"stage": Stage.JOB_IN_PROGRESS.value, "started_at": check.record.started_at},
                    **base_response,
                )
            await self.jobs.begin(request.client_id, request.job_id, cache_key=cache_key, upload_id=request.upload_id)

        loop = asyncio.get_event_loop()
        ctx = GenerationContext(
            prompt=prompt,
            size=size,
            base_image=base_image,
            params=params,
            deadline=loop.time() + self.budget_seconds,
            is_disconnected=is_disconnected,
            inline_source=base_image if is_data_url(base_image) else None,
        )

        started = time.time()
        bind_render_context(cache_key=cache_key[:12], job_id=request.job_id)
        try:
            # Budget covers the strategy chain; refinement gets whatever is left of it
            first = await asyncio.wait_for(self._run_strategies(ctx), timeout=self.budget_seconds)
        except asyncio.TimeoutError:
            error = GenerationTimeoutError(f"Generation exceeded {self.budget_seconds:.0f}s budget")
            await self._fail_job(request, cache_key, error, track_job)
            raise error
        except RenderError as e:
            logger.warning(f"{Stage.FAILED.value}: {e.error_code} {e.message}")
            await self._fail_job(request, cache_key, e, track_job)
            raise

        response = await self._refine_and_persist(ctx, first, preset, cache_key, base_response, started)
        if track_job:
            await self.jobs.finish(
                request.client_id,
                request.job_id,
                result_url=response.result_url,
                is_temporary_url=response.is_temporary_url,
                cache_key=cache_key,
                upload_id=request.upload_id,
            )
        return response

    async def _fail_job(self, request: GenerationRequest, cache_key: str, error: RenderError, track_job: bool):
        if track_job:
            await self.jobs.finish(
                request.client_id,
                request.job_id,
                error_message=f"{error.error_code}: {error.message}",
                cache_key=cache_key,
                upload_id=request.upload_id,
            )

    async def _refine_and_persist(
        self,
        ctx: GenerationContext,
        first: GeneratedImage,
        preset: IntensityPreset,
        cache_key: str,
        base_response: Dict[str, Any],
        started: float,
    ) -> GenerationResponse:
        final, refined = await self._maybe_refine(ctx, first, preset)

        bind_render_context(stage=Stage.PERSISTING.value)
        requested_format = ctx.params.response_format
        handle, data, mime = await self._normalize_output(final.image, requested_format)
        stored_url = await self._persist(cache_key, data, mime)
        if stored_url:
            result_url, is_temporary = stored_url, False
        else:
            result_url, is_temporary = handle, True

        debug = {
            "stage": Stage.DONE.value,
            "strategy": first.strategy.value,
            "used_fallback": first.strategy != Stage.STRATEGY_URL,
            "refined": refined,
            "size": ctx.size,
            "source_weight": first.params.source_weight,
            "steps": first.params.steps,
            "cfg_scale": first.params.cfg_scale,
            "seed": final.image.seed,
            "finish_reason": final.image.finish_reason,
            "format_flipped": ctx.format_flipped,
            "attempts": ctx.attempts,
            "ms_spent": int((time.time() - started) * 1000),
        }
        await self.cache.store(cache_key, CacheEntry(result_url=result_url, is_temporary_url=is_temporary, debug=debug))
        logger.info(f"{Stage.DONE.value}: {first.strategy.value} refined={refined} persisted={bool(stored_url)}")
        return GenerationResponse(result_url=result_url, is_temporary_url=is_temporary, debug=debug, **base_response)

    # ------------------------------------------------------------------
    # Strategy chain
    # ------------------------------------------------------------------

    async def _ensure_connected(self, ctx: GenerationContext):
        if ctx.is_disconnected is not None and await ctx.is_disconnected():
            raise GenerationCancelledError("Client disconnected; no further upstream calls issued")

    async def _run_strategies(self, ctx: GenerationContext) -> GeneratedImage:
        for strategy in self.strategies:
            if not strategy.applies(ctx):
                continue
            await self._ensure_connected(ctx)
            bind_render_context(stage=strategy.name.value)
            logger.info(f"{strategy.name.value}: attempting")
            try:
                return await strategy.run(ctx)
            except UpstreamError as e:
                ctx.last_error = e
                ctx.attempts.append(
                    {"strategy": strategy.name.value, "error_code": e.error_code, "upstream_status": e.upstream_status}
                )
                logger.warning(f"{strategy.name.value} failed: {e.error_code} {e.message}")

        if ctx.last_error is None:
            raise UpstreamEmptyResponseError("No generation strategy could run")
        raise ctx.last_error

    def _url_applies(self, ctx: GenerationContext) -> bool:
        return ctx.last_error is None

    def _base64_applies(self, ctx: GenerationContext) -> bool:
        if is_data_url(ctx.base_image):
            return False
        return is_transient(ctx.last_error) or is_url_access_failure(ctx.last_error)

    def _relaxed_applies(self, ctx: GenerationContext) -> bool:
        return is_transient(ctx.last_error)

    async def _run_url(self, ctx: GenerationContext) -> GeneratedImage:
        return await self._image_to_image(ctx, ctx.base_image, ctx.params, Stage.STRATEGY_URL)

    async def _run_base64(self, ctx: GenerationContext) -> GeneratedImage:
        fetched = await self.fetcher.fetch(ctx.base_image)
        if not fetched.ok:
            logger.warning(f"Base image re-fetch failed ({fetched.reason}), keeping URL failure")
            raise ctx.last_error
        ctx.inline_source = fetched.data_url
        return await self._image_to_image(ctx, ctx.inline_source, ctx.params, Stage.STRATEGY_BASE64)

    async def _run_relaxed(self, ctx: GenerationContext) -> GeneratedImage:
        return await self._image_to_image(ctx, ctx.best_source, ctx.params.relaxed(), Stage.STRATEGY_RELAXED_PARAMS)

    async def _image_to_image(
        self, ctx: GenerationContext, source: str, params: GenerationParameters, stage: Stage
    ) -> GeneratedImage:
        """One upstream call, plus at most one response-format flip per request on an empty payload."""

        async def call(p: GenerationParameters):
            return await self.client.image_to_image(
                prompt=ctx.prompt,
                source_image=source,
                source_weight=p.source_weight,
                size=ctx.size,
                response_format=p.response_format,
                seed=p.seed,
                steps=p.steps,
                cfg_scale=p.cfg_scale,
            )

        response = await call(params)
        if response.has_image:
            return GeneratedImage(response.first, params, stage)

        if not ctx.format_flipped:
            ctx.format_flipped = True
            flipped = params.with_format(flip_format(params.response_format))
            logger.warning(f"{stage.value}: no image payload, retrying with response_format={flipped.response_format}")
            await self._ensure_connected(ctx)
            response = await call(flipped)
            if response.has_image:
                return GeneratedImage(response.first, flipped, stage)

        raise UpstreamEmptyResponseError("Upstream returned no image payload")

    # ------------------------------------------------------------------
    # Refinement, normalization, persistence
    # ------------------------------------------------------------------

    async def _maybe_refine(
        self, ctx: GenerationContext, first: GeneratedImage, preset: IntensityPreset
    ) -> Tuple[GeneratedImage, bool]:
        """Best-effort second pass; any failure keeps the first-pass image."""
        if not self.refine_enabled or preset.value in self.refine_skip_presets:
            return first, False

        remaining = ctx.deadline - asyncio.get_event_loop().time()
        if remaining < self.refine_min_budget_seconds:
            logger.info(f"Skipping refinement, only {remaining:.0f}s of budget left")
            return first, False

        if ctx.is_disconnected is not None and await ctx.is_disconnected():
            logger.info("Skipping refinement, client disconnected")
            return first, False

        source = first.image.url or (b64_to_data_url(first.image.b64) if first.image.b64 else None)
        if not source:
            return first, False

        bind_render_context(stage=Stage.REFINING.value)
        params = first.params.refined()
        refine_call = self.client.image_to_image(
            prompt=clamp_prompt(f"{REFINE_INSTRUCTION} {ctx.prompt}"),
            source_image=source,
            source_weight=params.source_weight,
            size=ctx.size,
            response_format=params.response_format,
            seed=params.seed,
            steps=params.steps,
            cfg_scale=params.cfg_scale,
        )
        try:
            response = await asyncio.wait_for(refine_call, timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning(f"{Stage.REFINING.value} ran past the remaining {remaining:.0f}s budget, keeping first pass")
            ctx.attempts.append({"strategy": Stage.REFINING.value, "error_code": GenerationTimeoutError.error_code})
            return first, False
        except Exception as e:
            logger.warning(f"{Stage.REFINING.value} failed, keeping first pass: {e}")
            ctx.attempts.append({"strategy": Stage.REFINING.value, "error": str(e)[:200]})
            return first, False

        if not response.has_image:
            logger.warning(f"{Stage.REFINING.value} returned no image, keeping first pass")
            return first, False

        refined = response.first
        merged = UpstreamImage(
            url=refined.url,
            b64=refined.b64,
            finish_reason=refined.finish_reason or first.image.finish_reason,
            seed=refined.seed if refined.seed is not None else first.image.seed,
        )
        return GeneratedImage(merged, params, first.strategy), True

    async def _normalize_output(
        self, image: UpstreamImage, requested_format: str, fetch_bytes: bool = True
    ) -> Tuple[str, Optional[bytes], Optional[str]]:
        """
        Returns (handle in the requested form, image bytes if known, mime).

        b64_json callers get a data URL; url callers get the upstream URL, or a
        synthesized data URL when only inline data exists. With fetch_bytes, a
        URL-only result is downloaded so it can be persisted.
        """
        data: Optional[bytes] = None
        mime: Optional[str] = None
        if image.b64:
            try:
                mime, data = parse_data_url(b64_to_data_url(image.b64))
            except ValueError as e:
                logger.warning(f"Upstream base64 payload could not be decoded: {e}")

        if requested_format == ResponseFormat.URL.value:
            if not image.url:
                return b64_to_data_url(image.b64), data, mime
            if data is None and fetch_bytes:
                fetched = await self.fetcher.fetch(image.url)
                if fetched.ok:
                    return image.url, fetched.data, fetched.content_type
                logger.warning(f"Could not fetch upstream result for persisting ({fetched.reason})")
            return image.url, data, mime

        if image.b64:
            return b64_to_data_url(image.b64), data, mime

        fetched = await self.fetcher.fetch(image.url)
        if fetched.ok:
            return fetched.data_url, fetched.data, fetched.content_type
        logger.warning(f"Could not fetch upstream result for inline output ({fetched.reason}), returning URL")
        return image.url, None, None

    async def _persist(self, cache_key: str, data: Optional[bytes], mime: Optional[str]) -> Optional[str]:
        """Copy the result into the content store. Returns the durable URL or None."""
        if data is None:
            logger.warning("No image bytes available to persist, returning upstream reference")
            return None
        mime = mime or sniff_mime(data)
        path = f"{self.results_prefix}/{cache_key[:2]}/{cache_key}.{extension_for(mime)}"
        try:
            stored = await self.store.put(path, data, content_type=mime, public=True)
        except Exception as e:
            logger.warning(f"Persisting result failed, returning temporary reference: {e}")
            return None
        return stored.url

    # ------------------------------------------------------------------
    # inspire()
    # ------------------------------------------------------------------

    async def inspire(self, request: InspireRequest) -> GenerationResponse:
        """Text-to-image inspiration render; not cached or job-tracked."""
        if request.prompt is not None and request.prompt.strip():
            prompt_result, prompt = None, clamp_prompt(request.prompt)
        elif request.render_intake is not None:
            prompt_result = self.prompt_builder.build_inspiration(request.render_intake)
            prompt = prompt_result.prompt
        else:
            raise CallerError("Either prompt or render_intake is required", error_code="EMPTY_PROMPT")
        if not self.client.is_configured:
            raise ConfigError("Image API key is not configured (STEPFUN_API_KEY)", error_code="MISSING_KEY")

        preset = self._preset_for(request.render_intake)
        params = resolve_parameters(
            None, request.steps, request.cfg_scale, request.seed, request.response_format, preset,
            default_format=ResponseFormat.URL.value,
        )
        size = resolve_size(request.size, default=DEFAULT_INSPIRATION_SIZE)
        started = time.time()

        async def call(p: GenerationParameters):
            return await self.client.text_to_image(
                prompt=prompt, size=size, response_format=p.response_format, seed=p.seed, steps=p.steps, cfg_scale=p.cfg_scale
            )

        try:
            response = await asyncio.wait_for(call(params), timeout=self.budget_seconds)
            used = params
            if not response.has_image:
                used = params.with_format(flip_format(params.response_format))
                logger.warning(f"Inspiration returned no image, retrying with response_format={used.response_format}")
                response = await asyncio.wait_for(call(used), timeout=self.budget_seconds)
        except asyncio.TimeoutError:
            raise GenerationTimeoutError(f"Inspiration exceeded {self.budget_seconds:.0f}s budget")
        if not response.has_image:
            raise UpstreamEmptyResponseError("Upstream returned no image payload")

        handle, _, _ = await self._normalize_output(response.first, params.response_format, fetch_bytes=False)
        return GenerationResponse(
            result_url=handle,
            is_temporary_url=not is_data_url(handle),
            prompt_hash=prompt_result.prompt_hash if prompt_result else prompt_hash(prompt),
            prompt_chars=len(prompt),
            dropped_fields=prompt_result.dropped_fields if prompt_result else [],
            debug={
                "size": size,
                "steps": used.steps,
                "cfg_scale": used.cfg_scale,
                "seed": response.first.seed,
                "finish_reason": response.first.finish_reason,
                "format_flipped": used.response_format != params.response_format,
                "ms_spent": int((time.time() - started) * 1000),
            },
        )
