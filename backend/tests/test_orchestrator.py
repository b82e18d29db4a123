"""Tests for the processing pipeline: stages, failures, fan-out and cancellation."""

import asyncio
import json

import httpx
import pytest

from conftest import EXTRACTION_JSON, SOLUTION_MARKDOWN, PipelineHarness, is_extraction
from screencoder.core.config import AppConfig
from screencoder.core.errors import (
    CancellationError,
    CredentialError,
    FailureKind,
    ProviderHTTPError,
    ProviderRequestError,
    RateLimitError,
    TransientServerError,
    UnknownProcessingError,
)
from screencoder.services.llm.models import (
    ContentType,
    DebugResult,
    EventKind,
    ImagePart,
    PipelineState,
    ProblemInfo,
)
from screencoder.services.llm.openai_chat import OpenAIChatProvider
from screencoder.services.llm.orchestrator import ProcessingPipeline, classify_failure
from screencoder.services.llm.registry import ProviderRegistry


MIXED_EXTRACTION = (
    '{"problem_statement": "Задача 1: reverse a string. Задача 2: sum the digits of n.", '
    '"constraints": "", "example_input": "", "example_output": ""}'
)


def solution_for(label: str) -> str:
    return f"```python\nprint('{label}')\n```\n\nTime complexity: O({label})\nSpace complexity: O(1)\n"


# ── Failure classification ────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "status_code,expected",
    [
        (401, CredentialError),
        (403, CredentialError),
        (429, RateLimitError),
        (500, TransientServerError),
        (503, TransientServerError),
        (400, UnknownProcessingError),
        (404, UnknownProcessingError),
    ],
)
def test_classify_failure_maps_http_status(status_code, expected):
    error = classify_failure(ProviderHTTPError(status_code, "boom", provider="fake"))
    assert isinstance(error, expected)


def test_classify_failure_other_errors():
    assert isinstance(classify_failure(asyncio.CancelledError()), CancellationError)

    unknown = classify_failure(ProviderRequestError("connection refused", "fake"))
    assert isinstance(unknown, UnknownProcessingError)
    assert unknown.kind == FailureKind.UNKNOWN
    assert "connection refused" in unknown.message

    original = RateLimitError()
    assert classify_failure(original) is original


# ── Happy path ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_process_screenshots_single_task(harness, screenshots):
    outcome = await harness.pipeline.process_screenshots(screenshots)

    assert outcome.state == PipelineState.DONE
    assert harness.pipeline.state == PipelineState.DONE
    assert outcome.extraction.problem.problem_statement == "Reverse a linked list."
    assert outcome.extraction.content.type == ContentType.CODING_TASK
    assert outcome.solution.code == "class Solution { }"
    assert outcome.solution.time_complexity == "O(n) - one pass"
    assert outcome.solution.type == ContentType.CODING_TASK

    assert [p.progress for p in harness.progress] == [20, 40, 60, 100]
    assert not any(p.is_error for p in harness.progress)
    assert harness.event_kinds == [EventKind.EXTRACTED, EventKind.SOLVED]


@pytest.mark.asyncio
async def test_extraction_request_shape(harness, screenshots):
    await harness.pipeline.process_screenshots(screenshots)

    extract_messages, extract_model, extract_options = harness.provider.calls[0]
    assert extract_model == "fake-vision"
    assert extract_options.temperature == 0.2
    assert extract_options.max_tokens == 16000
    assert [m.role for m in extract_messages] == ["system", "user"]
    assert len(extract_messages[1].images) == 1
    assert extract_messages[1].images[0].mime_type == "image/png"
    assert "java" in extract_messages[1].text

    solve_messages, solve_model, solve_options = harness.provider.calls[1]
    assert solve_model == "fake-coder"
    assert solve_options.temperature == 0.2
    assert "Reverse a linked list." in solve_messages[1].text
    assert "n <= 5000" in solve_messages[1].text


@pytest.mark.asyncio
async def test_configured_models_override_adapter_defaults(screenshots):
    h = PipelineHarness()
    h.pipeline.on_config_changed(
        AppConfig(provider_id="fake", extraction_model="vision-xl", solution_model="coder-xl")
    )

    await h.pipeline.process_screenshots(screenshots)

    models = [model for _, model, _ in h.providers[-1].calls]
    assert models == ["vision-xl", "coder-xl"]


@pytest.mark.asyncio
async def test_code_review_uses_review_prompt(screenshots):
    async def handler(messages, model_id):
        if is_extraction(messages):
            return '{"problem_statement": "Review this code:\\n@Service\\npublic class UserService {}"}'
        return SOLUTION_MARKDOWN

    h = PipelineHarness(handler=handler)
    outcome = await h.pipeline.process_screenshots(screenshots)

    assert outcome.extraction.content.type == ContentType.CODE_REVIEW
    assert outcome.solution.type == ContentType.CODE_REVIEW
    solve_prompt = h.provider.calls[1][0][1].text
    assert "code review" in solve_prompt.lower()
    assert "public class UserService" in solve_prompt


@pytest.mark.asyncio
async def test_extraction_fallback_still_solves(screenshots):
    async def handler(messages, model_id):
        if is_extraction(messages):
            return "Write a function that returns the n-th Fibonacci number."
        return SOLUTION_MARKDOWN

    h = PipelineHarness(handler=handler)
    with pytest.warns(UserWarning):
        outcome = await h.pipeline.process_screenshots(screenshots)

    assert outcome.state == PipelineState.DONE
    assert outcome.extraction.problem.parse_fallback is True
    assert "Fibonacci" in h.provider.calls[1][0][1].text


# ── Failures ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_no_screenshots(harness):
    outcome = await harness.pipeline.process_screenshots([])

    assert outcome.state == PipelineState.ERROR
    assert outcome.failure == FailureKind.NO_SCREENSHOTS.value
    assert harness.provider.calls == []
    assert harness.event_kinds == [EventKind.FAILED]


@pytest.mark.asyncio
async def test_unauthorized_extraction_stops_before_solving(screenshots):
    async def handler(messages, model_id):
        raise ProviderHTTPError(401, "Incorrect API key provided", provider="fake")

    h = PipelineHarness(handler=handler)
    outcome = await h.pipeline.process_screenshots(screenshots)

    assert outcome.state == PipelineState.ERROR
    assert h.pipeline.state == PipelineState.ERROR
    assert outcome.failure == FailureKind.INVALID_CREDENTIALS.value
    assert outcome.message == CredentialError.default_message
    assert len(h.provider.calls) == 1
    assert h.event_kinds == [EventKind.FAILED]
    assert isinstance(h.events[0].payload, CredentialError)
    assert h.progress[-1].is_error
    assert 60 not in [p.progress for p in h.progress]


@pytest.mark.asyncio
async def test_invalid_key_checked_before_extraction(screenshots):
    h = PipelineHarness(requires_key=True, key_valid=False, api_key="sk-wrong")
    outcome = await h.pipeline.process_screenshots(screenshots)

    assert outcome.failure == FailureKind.INVALID_CREDENTIALS.value
    assert h.provider.calls == []


@pytest.mark.asyncio
async def test_missing_key_for_keyed_backend(screenshots):
    h = PipelineHarness(requires_key=True, key_valid=True, api_key="")
    outcome = await h.pipeline.process_screenshots(screenshots)

    assert outcome.failure == FailureKind.INVALID_CREDENTIALS.value
    assert h.provider.calls == []


@pytest.mark.asyncio
async def test_keyless_openai_relay_runs_end_to_end(screenshots):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        body = json.loads(request.content)
        answer = EXTRACTION_JSON if len(requests) == 1 else SOLUTION_MARKDOWN
        return httpx.Response(200, json={
            "id": "chatcmpl-1",
            "object": "chat.completion",
            "created": 0,
            "model": body["model"],
            "choices": [{
                "index": 0,
                "message": {"role": "assistant", "content": answer},
                "finish_reason": "stop",
            }],
        })

    registry = ProviderRegistry({
        "openai": lambda config: OpenAIChatProvider(config, transport=httpx.MockTransport(handler)),
    })
    pipeline = ProcessingPipeline(
        AppConfig(provider_id="openai", base_url="http://127.0.0.1:9/v1"),
        registry=registry,
    )

    outcome = await pipeline.process_screenshots(screenshots)

    assert outcome.failure is None
    assert outcome.state == PipelineState.DONE
    assert outcome.solution.code == "class Solution { }"
    assert [r.url.path for r in requests] == ["/v1/chat/completions", "/v1/chat/completions"]


@pytest.mark.asyncio
async def test_rate_limited_during_solving(screenshots):
    async def handler(messages, model_id):
        if is_extraction(messages):
            return EXTRACTION_JSON
        raise ProviderHTTPError(429, "Too many requests", provider="fake")

    h = PipelineHarness(handler=handler)
    outcome = await h.pipeline.process_screenshots(screenshots)

    assert outcome.failure == FailureKind.RATE_LIMITED.value
    assert outcome.extraction is not None
    assert h.event_kinds == [EventKind.EXTRACTED, EventKind.FAILED]
    assert sum(p.is_error for p in h.progress) == 1


# ── Mixed tasks ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_mixed_tasks_fan_out_and_merge(screenshots):
    async def handler(messages, model_id):
        if is_extraction(messages):
            return MIXED_EXTRACTION
        prompt = messages[1].text
        return solution_for("a" if "reverse a string" in prompt else "b")

    h = PipelineHarness(handler=handler)
    outcome = await h.pipeline.process_screenshots(screenshots)

    assert outcome.state == PipelineState.DONE
    content = outcome.extraction.content
    assert content.type == ContentType.MIXED
    assert len(content.multiple_tasks) == 2
    assert len(h.provider.calls) == 3

    solution = outcome.solution
    assert solution.type == ContentType.MIXED
    assert len(solution.tasks) == 2
    assert solution.code.index("Task 1") < solution.code.index("print('a')")
    assert solution.code.index("Task 2") < solution.code.index("print('b')")
    assert "**Task 1:** O(a)" in solution.time_complexity
    assert "**Task 2:** O(b)" in solution.time_complexity


@pytest.mark.asyncio
async def test_mixed_tasks_fail_fast(screenshots):
    second_cancelled = asyncio.Event()

    async def handler(messages, model_id):
        if is_extraction(messages):
            return MIXED_EXTRACTION
        if "reverse a string" in messages[1].text:
            await asyncio.sleep(0)
            raise ProviderHTTPError(502, "Bad gateway", provider="fake")
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            second_cancelled.set()
            raise

    h = PipelineHarness(handler=handler)
    outcome = await asyncio.wait_for(h.pipeline.process_screenshots(screenshots), timeout=5)

    assert outcome.failure == FailureKind.SERVER_ERROR.value
    assert second_cancelled.is_set()


# ── Cancellation ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cancel_during_extraction(screenshots):
    started = asyncio.Event()
    aborted = asyncio.Event()

    async def handler(messages, model_id):
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            aborted.set()
            raise

    h = PipelineHarness(handler=handler)
    run = asyncio.create_task(h.pipeline.process_screenshots(screenshots))
    await started.wait()

    assert h.pipeline.state == PipelineState.EXTRACTING
    assert h.pipeline.cancel() is True
    assert h.pipeline.state == PipelineState.CANCELLED

    progress_before = len(h.progress)
    outcome = await run

    assert outcome.state == PipelineState.CANCELLED
    assert outcome.failure == FailureKind.CANCELLED.value
    assert aborted.is_set()
    assert h.event_kinds == [EventKind.CANCELLED]
    assert len(h.progress) == progress_before
    assert h.pipeline.state == PipelineState.CANCELLED
    assert h.pipeline.cancel() is False


@pytest.mark.asyncio
async def test_cancel_from_progress_sink_mutes_the_run(screenshots):
    h = PipelineHarness()

    def progress_sink(event):
        h.progress.append(event)
        if event.progress == 40:
            h.pipeline.cancel()

    h.pipeline._progress_sink = progress_sink
    outcome = await h.pipeline.process_screenshots(screenshots)

    assert outcome.state == PipelineState.CANCELLED
    assert [p.progress for p in h.progress] == [20, 40]
    assert h.event_kinds == [EventKind.CANCELLED]
    assert outcome.solution is None
    assert h.pipeline.state == PipelineState.CANCELLED


@pytest.mark.asyncio
async def test_new_run_cancels_previous(screenshots):
    release = asyncio.Event()
    started = asyncio.Event()

    async def handler(messages, model_id):
        if not started.is_set():
            started.set()
            await release.wait()
        return EXTRACTION_JSON if is_extraction(messages) else SOLUTION_MARKDOWN

    h = PipelineHarness(handler=handler)
    first = asyncio.create_task(h.pipeline.process_screenshots(screenshots))
    await started.wait()

    second = await h.pipeline.process_screenshots(screenshots)
    first_outcome = await first

    assert first_outcome.state == PipelineState.CANCELLED
    assert second.state == PipelineState.DONE
    assert second.run_id == first_outcome.run_id + 1
    assert [e.kind for e in h.events if e.run_id == first_outcome.run_id] == [EventKind.CANCELLED]


# ── Configuration ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_config_change_does_not_affect_run_in_flight(screenshots):
    release = asyncio.Event()
    extracting = asyncio.Event()

    async def handler(messages, model_id):
        if is_extraction(messages):
            extracting.set()
            await release.wait()
            return EXTRACTION_JSON
        return SOLUTION_MARKDOWN

    h = PipelineHarness(handler=handler)
    original = h.providers[0]
    run = asyncio.create_task(h.pipeline.process_screenshots(screenshots))
    await extracting.wait()

    h.pipeline.on_config_changed(AppConfig(provider_id="fake", solution_model="other-model"))
    release.set()
    outcome = await run

    assert outcome.state == PipelineState.DONE
    assert [model for _, model, _ in original.calls] == ["fake-vision", "fake-coder"]
    assert h.providers[1].calls == []
    assert h.pipeline.provider is h.providers[1]
    assert h.pipeline.config.solution_model == "other-model"


def test_unknown_provider_keeps_previous_pair(harness):
    from screencoder.core.errors import ConfigurationError

    before = harness.pipeline.provider
    with pytest.raises(ConfigurationError):
        harness.pipeline.on_config_changed(AppConfig(provider_id="missing"))
    assert harness.pipeline.provider is before
    assert harness.pipeline.config.provider_id == "fake"


# ── Debugging ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_debug_solution(harness, screenshots):
    problem = ProblemInfo(problem_statement="Reverse a linked list.")
    outcome = await harness.pipeline.debug_solution(screenshots, problem, "class Solution {}")

    assert outcome.state == PipelineState.DONE
    assert isinstance(outcome.debug, DebugResult)
    assert outcome.debug.code == "class Solution { }"
    assert harness.event_kinds == [EventKind.DEBUGGED]

    messages, model_id, _ = harness.provider.calls[0]
    assert model_id == "fake-debugger"
    assert "class Solution {}" in messages[1].text
    assert any(isinstance(p, ImagePart) for p in messages[1].content)


@pytest.mark.asyncio
async def test_debug_solution_requires_screenshots(harness):
    outcome = await harness.pipeline.debug_solution([], ProblemInfo(), "code")
    assert outcome.failure == FailureKind.NO_SCREENSHOTS.value
