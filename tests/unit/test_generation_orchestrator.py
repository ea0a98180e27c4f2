"""
Unit tests for generation orchestration
Tests the fallback chain, caching, job suppression, refinement and persistence
"""
import base64

import pytest

from conftest import FailingStore, FakeFetcher, FakeUpstreamClient, image_response, make_image_bytes
from render_api.core.errors import (
    CallerError,
    ConfigError,
    GenerationCancelledError,
    GenerationTimeoutError,
    UpstreamEmptyResponseError,
    UpstreamPermanentError,
    UpstreamTransientError,
)
from render_api.schemas.render import GenerationRequest, InspireRequest, JobStatus, RenderIntake
from render_api.services.generation_orchestrator import (
    GenerationParameters,
    Stage,
    flip_format,
    resolve_parameters,
)
from render_api.services.prompt_builder import IntensityPreset
from render_api.services.upstream_image_client import UpstreamImageResponse

UPSTREAM_RESULT_URL = "https://upstream.example.com/out/result.png"


def transient(status=503):
    return UpstreamTransientError(f"HTTP {status}", upstream_status=status)


def permanent(status):
    return UpstreamPermanentError(f"HTTP {status}", upstream_status=status)


@pytest.fixture
def request_for(room_photo_url, kitchen_intake):
    def _make(**overrides):
        data = {"base_image": room_photo_url, "render_intake": kitchen_intake}
        data.update(overrides)
        return GenerationRequest(**data)

    return _make


class TestParameterResolution:
    @pytest.mark.unit
    def test_defaults_follow_preset(self):
        params = resolve_parameters(preset=IntensityPreset.BOLD)
        assert (params.source_weight, params.steps, params.cfg_scale) == (0.82, 46, 7.6)
        assert params.response_format == "b64_json"

    @pytest.mark.unit
    def test_out_of_range_values_fall_back(self):
        params = resolve_parameters(source_weight=1.5, steps=0, cfg_scale="loud", seed=-3, response_format="gif")
        assert (params.source_weight, params.steps, params.cfg_scale) == (0.70, 42, 7.2)
        assert params.seed is None
        assert params.response_format == "b64_json"

    @pytest.mark.unit
    def test_caller_values_in_range_are_kept(self):
        params = resolve_parameters(source_weight="0.6", steps=30, cfg_scale=5, seed=77, response_format="URL")
        assert (params.source_weight, params.steps, params.cfg_scale, params.seed) == (0.6, 30, 5.0, 77)
        assert params.response_format == "url"

    @pytest.mark.unit
    def test_relaxed_and_refined_only_lower_values(self):
        params = GenerationParameters(source_weight=0.4, steps=50, cfg_scale=8.0)
        relaxed = params.relaxed()
        assert (relaxed.source_weight, relaxed.steps, relaxed.cfg_scale) == (0.4, 36, 7.2)
        refined = params.refined()
        assert (refined.source_weight, refined.steps, refined.cfg_scale) == (0.32, 36, 6.8)
        assert refined.response_format == "url"

    @pytest.mark.unit
    def test_flip_format(self):
        assert flip_format("url") == "b64_json"
        assert flip_format("b64_json") == "url"


class TestValidation:
    """Caller and config errors surface before any upstream spend"""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_base_image(self, make_orchestrator, request_for):
        client = FakeUpstreamClient()
        with pytest.raises(CallerError) as exc:
            await make_orchestrator(client).generate(request_for(base_image="  "))
        assert exc.value.error_code == "MISSING_BASE_IMAGE"
        assert client.total_calls == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_prompt_and_intake(self, make_orchestrator, request_for):
        client = FakeUpstreamClient()
        with pytest.raises(CallerError) as exc:
            await make_orchestrator(client).generate(request_for(render_intake=None, prompt="   "))
        assert exc.value.error_code == "EMPTY_PROMPT"
        assert client.total_calls == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_key(self, make_orchestrator, request_for):
        client = FakeUpstreamClient(api_key="")
        with pytest.raises(ConfigError) as exc:
            await make_orchestrator(client).generate(request_for())
        assert exc.value.error_code == "MISSING_KEY"
        assert client.total_calls == 0


class TestHappyPath:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_url_strategy_persists_result(self, make_orchestrator, request_for, memory_store, png_bytes, png_b64, room_photo_url):
        client = FakeUpstreamClient([image_response(b64=png_b64, seed=7)])
        response = await make_orchestrator(client).generate(request_for())

        assert response.ok
        assert response.status == "done"
        assert response.cache_hit is False
        assert response.is_temporary_url is False
        assert response.result_url.startswith("http://localhost:8000/api/design/files/results/")
        assert response.debug["strategy"] == Stage.STRATEGY_URL.value
        assert response.debug["used_fallback"] is False
        assert response.debug["seed"] == 7
        assert response.debug["size"] == "1024x1024"

        # The URL form goes first, untouched
        assert len(client.i2i_calls) == 1
        call = client.i2i_calls[0]
        assert call["source_image"] == room_photo_url
        assert call["source_weight"] == 0.70
        assert "kitchen" in call["prompt"]

        stored = await memory_store.list("results/")
        assert len(stored) == 1
        assert await memory_store.get(stored[0].path) == png_bytes

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_size_follows_source_dimensions(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        response = await make_orchestrator(client).generate(request_for(source_width=4032, source_height=3024))
        assert response.debug["size"] == "1280x800"
        assert client.i2i_calls[0]["size"] == "1280x800"

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "dimensions, expected",
        [((96, 60), "1280x800"), ((60, 96), "800x1280"), ((80, 80), "1024x1024")],
    )
    async def test_inline_photo_shape_picks_size(self, make_orchestrator, request_for, png_b64, dimensions, expected):
        photo = "data:image/jpeg;base64," + base64.b64encode(make_image_bytes("gray", size=dimensions, fmt="JPEG")).decode()
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        response = await make_orchestrator(client).generate(request_for(base_image=photo))
        assert response.debug["size"] == expected
        assert client.i2i_calls[0]["size"] == expected

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_declared_dimensions_win_over_inline_photo(self, make_orchestrator, request_for, png_b64):
        photo = "data:image/png;base64," + base64.b64encode(make_image_bytes("gray", size=(96, 60))).decode()
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        response = await make_orchestrator(client).generate(
            request_for(base_image=photo, source_width=3024, source_height=4032)
        )
        assert response.debug["size"] == "800x1280"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unusable_size_and_format_fall_back(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        response = await make_orchestrator(client).generate(
            request_for(size=1024, response_format=1, source_width="wide", source_height=True)
        )
        assert response.ok
        assert response.debug["size"] == "1024x1024"
        assert client.i2i_calls[0]["response_format"] == "b64_json"
        assert response.result_url.endswith(".png")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_literal_prompt_overrides_intake(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        await make_orchestrator(client).generate(request_for(prompt="Scandinavian kitchen, white oak"))
        assert client.i2i_calls[0]["prompt"] == "Scandinavian kitchen, white oak"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_identical_request_is_served_from_cache(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        orchestrator = make_orchestrator(client)

        first = await orchestrator.generate(request_for())
        second = await orchestrator.generate(request_for())

        assert second.cache_hit is True
        assert second.result_url == first.result_url
        assert second.cache_key == first.cache_key
        assert second.debug["stage"] == Stage.CACHE_HIT.value
        assert client.total_calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rotated_signed_url_still_hits_cache(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        orchestrator = make_orchestrator(client)

        await orchestrator.generate(request_for(base_image="https://cdn.example.com/room.jpg?sig=1"))
        second = await orchestrator.generate(request_for(base_image="https://cdn.example.com/room.jpg?sig=2"))
        assert second.cache_hit is True
        assert client.total_calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_changed_parameters_miss_cache(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        orchestrator = make_orchestrator(client)

        await orchestrator.generate(request_for())
        second = await orchestrator.generate(request_for(steps=30))
        assert second.cache_hit is False
        assert client.total_calls == 2


class TestFallbackChain:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_url_access_failure_switches_to_base64(self, make_orchestrator, request_for, png_bytes, png_b64, room_photo_url):
        client = FakeUpstreamClient([permanent(403), image_response(b64=png_b64)])
        fetcher = FakeFetcher({room_photo_url: make_image_bytes("blue")})
        response = await make_orchestrator(client, fetcher=fetcher).generate(request_for())

        assert response.debug["strategy"] == Stage.STRATEGY_BASE64.value
        assert response.debug["used_fallback"] is True
        assert response.debug["attempts"][0]["upstream_status"] == 403
        assert len(client.i2i_calls) == 2
        assert client.i2i_calls[1]["source_image"].startswith("data:image/png;base64,")
        assert fetcher.fetched == [room_photo_url]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transient_failures_reach_relaxed_params(self, make_orchestrator, request_for, png_b64, room_photo_url):
        client = FakeUpstreamClient([transient(503), transient(502), image_response(b64=png_b64)])
        fetcher = FakeFetcher({room_photo_url: make_image_bytes("blue")})
        response = await make_orchestrator(client, fetcher=fetcher).generate(request_for())

        assert response.debug["strategy"] == Stage.STRATEGY_RELAXED_PARAMS.value
        assert len(client.i2i_calls) == 3
        relaxed_call = client.i2i_calls[2]
        assert relaxed_call["source_image"].startswith("data:")
        assert (relaxed_call["source_weight"], relaxed_call["steps"], relaxed_call["cfg_scale"]) == (0.52, 36, 7.2)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_inline_base_image_skips_base64_step(self, make_orchestrator, request_for, png_b64, sample_base64_image):
        client = FakeUpstreamClient([transient(500), image_response(b64=png_b64)])
        response = await make_orchestrator(client).generate(request_for(base_image=sample_base64_image))

        assert response.debug["strategy"] == Stage.STRATEGY_RELAXED_PARAMS.value
        assert len(client.i2i_calls) == 2
        assert client.i2i_calls[1]["source_image"] == sample_base64_image

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refetch_failure_keeps_url_error(self, make_orchestrator, request_for):
        client = FakeUpstreamClient([permanent(404)])
        with pytest.raises(UpstreamPermanentError) as exc:
            await make_orchestrator(client).generate(request_for())
        assert exc.value.upstream_status == 404
        assert len(client.i2i_calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_auth_failure_stops_the_chain(self, make_orchestrator, request_for):
        client = FakeUpstreamClient([permanent(401)])
        with pytest.raises(UpstreamPermanentError) as exc:
            await make_orchestrator(client).generate(request_for(client_id="c1", job_id="j1"))

        assert exc.value.error_code == "UPSTREAM_401"
        assert len(client.i2i_calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_payload_flips_format_once(self, make_orchestrator, request_for, png_bytes):
        client = FakeUpstreamClient([UpstreamImageResponse(), image_response(url=UPSTREAM_RESULT_URL)])
        fetcher = FakeFetcher({UPSTREAM_RESULT_URL: png_bytes})
        response = await make_orchestrator(client, fetcher=fetcher).generate(request_for())

        assert [c["response_format"] for c in client.i2i_calls] == ["b64_json", "url"]
        assert response.debug["format_flipped"] is True
        # b64_json was requested, so the upstream URL is downloaded and persisted
        assert fetcher.fetched == [UPSTREAM_RESULT_URL]
        assert response.is_temporary_url is False
        assert "/api/design/files/results/" in response.result_url

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_format_flip_is_not_repeated(self, make_orchestrator, request_for, sample_base64_image):
        client = FakeUpstreamClient([UpstreamImageResponse()])
        with pytest.raises(UpstreamEmptyResponseError):
            await make_orchestrator(client).generate(request_for(base_image=sample_base64_image))

        # URL call, its one flip, then relaxed params without a second flip
        assert len(client.i2i_calls) == 3
        assert [c["response_format"] for c in client.i2i_calls] == ["b64_json", "url", "b64_json"]


class TestRefinement:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refine_success_replaces_first_pass(self, make_orchestrator, request_for, png_b64, memory_store):
        refined_bytes = make_image_bytes("green")
        client = FakeUpstreamClient([image_response(b64=png_b64, seed=11), image_response(url=UPSTREAM_RESULT_URL)])
        fetcher = FakeFetcher({UPSTREAM_RESULT_URL: refined_bytes})
        response = await make_orchestrator(client, fetcher=fetcher, refine_enabled=True).generate(request_for())

        assert response.debug["refined"] is True
        assert response.debug["seed"] == 11
        refine_call = client.i2i_calls[1]
        assert refine_call["source_image"].startswith("data:image/png;base64,")
        assert refine_call["source_weight"] == 0.32
        assert refine_call["response_format"] == "url"
        assert refine_call["prompt"].startswith("Refine this render")

        stored = await memory_store.list("results/")
        assert await memory_store.get(stored[0].path) == refined_bytes

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refine_failure_keeps_first_pass(self, make_orchestrator, request_for, png_bytes, png_b64, memory_store):
        client = FakeUpstreamClient([image_response(b64=png_b64), transient(503)])
        response = await make_orchestrator(client, refine_enabled=True).generate(request_for())

        assert response.ok
        assert response.debug["refined"] is False
        assert response.debug["attempts"][-1]["strategy"] == Stage.REFINING.value
        assert len(client.i2i_calls) == 2
        stored = await memory_store.list("results/")
        assert await memory_store.get(stored[0].path) == png_bytes

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refine_running_past_budget_keeps_first_pass(
        self, make_orchestrator, request_for, png_bytes, png_b64, memory_store
    ):
        client = FakeUpstreamClient([image_response(b64=png_b64, seed=5), image_response(url=UPSTREAM_RESULT_URL)])
        client.delays = [0.0, 5.0]
        orchestrator = make_orchestrator(client, refine_enabled=True, budget_seconds=0.5, refine_min_budget_seconds=0.1)
        intake = RenderIntake(space="厨房", intensity="大改造")

        response = await orchestrator.generate(request_for(render_intake=intake, client_id="c1", job_id="j1"))

        assert response.ok
        assert response.debug["refined"] is False
        assert response.debug["seed"] == 5
        assert response.debug["attempts"][-1] == {"strategy": Stage.REFINING.value, "error_code": "GENERATION_TIMEOUT"}
        assert len(client.i2i_calls) == 2
        stored = await memory_store.list("results/")
        assert await memory_store.get(stored[0].path) == png_bytes

        record = await orchestrator.jobs.get("c1", "j1")
        assert record.status == JobStatus.DONE
        assert (await orchestrator.cache.lookup(response.cache_key)).result_url == response.result_url

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_light_preset_skips_refine(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        intake = RenderIntake(space="厨房", intensity="輕改")
        response = await make_orchestrator(client, refine_enabled=True).generate(request_for(render_intake=intake))

        assert response.debug["refined"] is False
        assert len(client.i2i_calls) == 1
        assert client.i2i_calls[0]["source_weight"] == 0.45

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_light_hint_in_requirements_skips_refine(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        intake = RenderIntake(space="厨房", requirements="只想轻改，保留现有柜体")
        response = await make_orchestrator(client, refine_enabled=True).generate(request_for(render_intake=intake))

        assert response.debug["refined"] is False
        assert len(client.i2i_calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_low_remaining_budget_skips_refine(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        orchestrator = make_orchestrator(client, refine_enabled=True, budget_seconds=30, refine_min_budget_seconds=60)
        response = await orchestrator.generate(request_for())

        assert response.debug["refined"] is False
        assert len(client.i2i_calls) == 1


class TestPersistence:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_persist_failure_returns_upstream_reference_as_temporary(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        store = FailingStore()
        response = await make_orchestrator(client, store=store).generate(request_for(client_id="c1", job_id="j1"))

        assert response.ok
        assert response.result_url.startswith("data:image/png;base64,")
        assert response.is_temporary_url is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_upstream_url_result_is_copied_to_store(self, make_orchestrator, request_for, png_bytes, memory_store):
        client = FakeUpstreamClient([image_response(url=UPSTREAM_RESULT_URL)])
        fetcher = FakeFetcher({UPSTREAM_RESULT_URL: png_bytes})
        orchestrator = make_orchestrator(client, fetcher=fetcher)
        response = await orchestrator.generate(request_for(response_format="url"))

        assert fetcher.fetched == [UPSTREAM_RESULT_URL]
        assert response.is_temporary_url is False
        assert response.result_url.startswith("http://localhost:8000/api/design/files/results/")
        stored = await memory_store.list("results/")
        assert await memory_store.get(stored[0].path) == png_bytes

        cached = await orchestrator.cache.lookup(response.cache_key)
        assert cached.result_url == response.result_url
        assert cached.is_temporary_url is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unfetchable_upstream_url_stays_temporary(self, make_orchestrator, request_for, memory_store):
        client = FakeUpstreamClient([image_response(url=UPSTREAM_RESULT_URL)])
        response = await make_orchestrator(client).generate(request_for(response_format="url"))

        assert response.result_url == UPSTREAM_RESULT_URL
        assert response.is_temporary_url is True
        assert await memory_store.list("results/") == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refined_url_result_is_persisted_for_url_callers(self, make_orchestrator, request_for, png_b64, memory_store):
        refined_bytes = make_image_bytes("green")
        client = FakeUpstreamClient([image_response(b64=png_b64), image_response(url=UPSTREAM_RESULT_URL)])
        fetcher = FakeFetcher({UPSTREAM_RESULT_URL: refined_bytes})
        response = await make_orchestrator(client, fetcher=fetcher, refine_enabled=True).generate(
            request_for(response_format="url")
        )

        assert response.debug["refined"] is True
        assert response.is_temporary_url is False
        stored = await memory_store.list("results/")
        assert await memory_store.get(stored[0].path) == refined_bytes

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_url_format_with_inline_payload_is_persisted(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        response = await make_orchestrator(client).generate(request_for(response_format="url"))
        assert "/api/design/files/results/" in response.result_url
        assert response.result_url.endswith(".png")


class TestJobs:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_successful_job_is_recorded(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        orchestrator = make_orchestrator(client)
        response = await orchestrator.generate(request_for(client_id="c1", job_id="j1", upload_id="u1"))

        record = await orchestrator.jobs.get("c1", "j1")
        assert record.status == JobStatus.DONE
        assert record.result_url == response.result_url
        assert record.upload_id == "u1"
        assert record.cache_key == response.cache_key

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_finished_job_is_returned_without_upstream_call(self, make_orchestrator, request_for):
        client = FakeUpstreamClient()
        orchestrator = make_orchestrator(client)
        await orchestrator.jobs.begin("c1", "j1")
        await orchestrator.jobs.finish("c1", "j1", result_url="https://files.example.com/done.png")

        response = await orchestrator.generate(request_for(client_id="c1", job_id="j1"))
        assert response.result_url == "https://files.example.com/done.png"
        assert response.debug["stage"] == Stage.JOB_DONE.value
        assert client.total_calls == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_running_job_reports_in_progress(self, make_orchestrator, request_for):
        client = FakeUpstreamClient()
        orchestrator = make_orchestrator(client)
        await orchestrator.jobs.begin("c1", "j1")

        response = await orchestrator.generate(request_for(client_id="c1", job_id="j1"))
        assert response.status == "in_progress"
        assert response.result_url is None
        assert client.total_calls == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_generation_marks_job_failed(self, make_orchestrator, request_for):
        client = FakeUpstreamClient([permanent(401)])
        orchestrator = make_orchestrator(client)
        with pytest.raises(UpstreamPermanentError):
            await orchestrator.generate(request_for(client_id="c1", job_id="j1"))

        record = await orchestrator.jobs.get("c1", "j1")
        assert record.status == JobStatus.FAILED
        assert record.error_message.startswith("UPSTREAM_401")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_without_job_id_nothing_is_tracked(self, make_orchestrator, request_for, png_b64, memory_store):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        await make_orchestrator(client).generate(request_for(client_id="c1"))
        assert await memory_store.list("jobs/") == []


class TestCancellationAndTimeout:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disconnected_client_issues_no_upstream_call(self, make_orchestrator, request_for):
        client = FakeUpstreamClient()

        async def disconnected():
            return True

        with pytest.raises(GenerationCancelledError):
            await make_orchestrator(client).generate(request_for(), is_disconnected=disconnected)
        assert client.total_calls == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disconnect_between_strategies_stops_the_chain(self, make_orchestrator, request_for, room_photo_url):
        client = FakeUpstreamClient([transient(503)])
        fetcher = FakeFetcher({room_photo_url: make_image_bytes("blue")})
        checks = []

        async def disconnected():
            checks.append(True)
            return len(checks) > 1

        with pytest.raises(GenerationCancelledError) as exc:
            await make_orchestrator(client, fetcher=fetcher).generate(request_for(), is_disconnected=disconnected)
        assert exc.value.error_code == "CLIENT_DISCONNECTED"
        assert len(client.i2i_calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_overall_budget_is_enforced(self, make_orchestrator, request_for, png_b64):
        client = FakeUpstreamClient([image_response(b64=png_b64)])
        client.delay = 1.0
        orchestrator = make_orchestrator(client, budget_seconds=0.05)

        with pytest.raises(GenerationTimeoutError) as exc:
            await orchestrator.generate(request_for(client_id="c1", job_id="j1"))
        assert exc.value.error_code == "GENERATION_TIMEOUT"
        record = await orchestrator.jobs.get("c1", "j1")
        assert record.status == JobStatus.FAILED


class TestPreviewAndInspire:
    @pytest.mark.unit
    def test_preview_prompt(self, make_orchestrator, request_for):
        preview = make_orchestrator(FakeUpstreamClient()).preview_prompt(request_for(size="800x1280"))
        assert preview["space_type"] == "kitchen"
        assert preview["size"] == "800x1280"
        assert preview["intensity_preset"] == "recommended"
        assert preview["parameters"]["steps"] == 42
        assert preview["prompt_chars"] == len(preview["prompt"])

    @pytest.mark.unit
    def test_preview_requires_prompt(self, make_orchestrator, request_for):
        with pytest.raises(CallerError):
            make_orchestrator(FakeUpstreamClient()).preview_prompt(request_for(render_intake=None))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_inspire_uses_text_to_image(self, make_orchestrator, kitchen_intake, memory_store):
        client = FakeUpstreamClient(t2i_script=[image_response(url=UPSTREAM_RESULT_URL, seed=3)])
        response = await make_orchestrator(client).inspire(InspireRequest(render_intake=kitchen_intake))

        assert response.result_url == UPSTREAM_RESULT_URL
        assert response.is_temporary_url is True
        assert response.debug["seed"] == 3
        call = client.t2i_calls[0]
        assert call["size"] == "1280x800"
        assert call["response_format"] == "url"
        assert "Keep the original room geometry" not in call["prompt"]
        assert client.i2i_calls == []
        assert await memory_store.list("cache/") == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_inspire_flips_format_on_empty_payload(self, make_orchestrator, png_b64):
        client = FakeUpstreamClient(t2i_script=[UpstreamImageResponse(), image_response(b64=png_b64)])
        response = await make_orchestrator(client).inspire(InspireRequest(prompt="Japandi bedroom"))

        assert [c["response_format"] for c in client.t2i_calls] == ["url", "b64_json"]
        assert response.debug["format_flipped"] is True
        assert response.result_url.startswith("data:image/png;base64,")
