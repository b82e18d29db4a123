"""
Processing Pipeline

Drives the screenshot -> problem -> solution flow:
- validate the queue and the credentials
- extract the problem with the extraction model (strict JSON prompt)
- classify the statement and route each task to its solve prompt
- solve, fanning out concurrently for numbered multi-task statements
- merge, normalize and report the result

The pipeline owns the selected adapter. Each run snapshots the
(config, provider) pair when it starts, so a settings change never affects a
request already in flight. Adapter errors are caught here and reclassified
into the ProcessingError taxonomy; nothing else crosses this boundary.
"""

from collections import deque
from typing import Awaitable, Callable
import asyncio
import logging
import mimetypes
import time

from screencoder.core.config import AppConfig, get_config_store, get_settings
from screencoder.core.errors import (
    CancellationError,
    CredentialError,
    NoScreenshotsError,
    ProcessingError,
    ProviderHTTPError,
    RateLimitError,
    TransientServerError,
    UnknownProcessingError,
)
from screencoder.services.llm import prompts
from screencoder.services.llm.base import LLMProvider
from screencoder.services.llm.models import (
    ChatOptions,
    ContentType,
    DebugResult,
    DefaultModels,
    EventKind,
    ExtractedContent,
    ExtractionResult,
    ImagePart,
    Message,
    PipelineEvent,
    PipelineOutcome,
    PipelineState,
    ProblemInfo,
    ProgressEvent,
    ProviderConfig,
    ScreenshotData,
    SolutionResult,
    TextPart,
)
from screencoder.services.llm.registry import ProviderRegistry, get_registry
from screencoder.services.parsing.classifier import classify
from screencoder.services.parsing.response_parser import (
    merge_solutions,
    parse_problem_info,
    parse_solution_response,
)

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], None]
ResultSink = Callable[[PipelineEvent], None]

EXTRACTION_OPTIONS = ChatOptions(temperature=0.2, max_tokens=16000)
SOLUTION_OPTIONS = ChatOptions(temperature=0.2)
DEBUG_OPTIONS = ChatOptions(temperature=0.2)

RECENT_PROGRESS_LIMIT = 20


def classify_failure(error: BaseException) -> ProcessingError:
    """Map an adapter or runtime error onto the processing failure taxonomy."""
    if isinstance(error, ProcessingError):
        return error
    if isinstance(error, asyncio.CancelledError):
        return CancellationError()
    if isinstance(error, ProviderHTTPError):
        if error.status_code in (401, 403):
            return CredentialError()
        if error.status_code == 429:
            return RateLimitError()
        if 500 <= error.status_code < 600:
            return TransientServerError()
    return UnknownProcessingError(str(error) or type(error).__name__)


class ProcessingPipeline:
    """Runs at most one screenshot-processing request at a time."""

    def __init__(
        self,
        config: AppConfig,
        registry: ProviderRegistry | None = None,
        progress_sink: ProgressSink | None = None,
        result_sink: ResultSink | None = None,
        request_timeout: float = 60.0,
        validation_timeout: float = 5.0,
        models_cache_ttl: float = 300.0,
    ):
        self._registry = registry or get_registry()
        self._progress_sink = progress_sink
        self._result_sink = result_sink
        self._request_timeout = request_timeout
        self._validation_timeout = validation_timeout
        self._models_cache_ttl = models_cache_ttl

        self._active: tuple[AppConfig, LLMProvider] = (config, self._build_provider(config))
        self._state = PipelineState.IDLE
        self._run_id = 0
        self._live_run: int | None = None
        self._task: asyncio.Task | None = None
        self.recent_progress: deque[ProgressEvent] = deque(maxlen=RECENT_PROGRESS_LIMIT)

    # ── Configuration ─────────────────────────────────────────────────────────

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def config(self) -> AppConfig:
        return self._active[0]

    @property
    def provider(self) -> LLMProvider:
        return self._active[1]

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def on_config_changed(self, config: AppConfig) -> None:
        """
        Rebuild the adapter for a new configuration.

        The (config, provider) pair is replaced in one assignment; runs that
        already started keep the pair they captured.

        Raises:
            ConfigurationError: If the provider id is unknown (old pair kept)
        """
        provider = self._build_provider(config)
        self._active = (config, provider)
        logger.info("[Pipeline] Switched to provider=%s", config.provider_id)

    def _build_provider(self, config: AppConfig) -> LLMProvider:
        provider_config = ProviderConfig(
            api_key=config.api_key,
            base_url=config.provider_base_url(),
            default_models=DefaultModels(
                extraction=config.extraction_model,
                solution=config.solution_model,
                debugging=config.debugging_model,
            ),
            request_timeout=self._request_timeout,
            validation_timeout=self._validation_timeout,
            models_cache_ttl=self._models_cache_ttl,
        )
        return self._registry.create_provider(config.provider_id, provider_config)

    # ── Public operations ─────────────────────────────────────────────────────

    async def process_screenshots(self, images: list[ScreenshotData]) -> PipelineOutcome:
        """
        Extract the problem from screenshots and generate a solution.

        Starting a run cancels the one in flight. Failures are reported via
        the outcome and the result sink rather than raised.
        """
        return await self._start(lambda run_id, snapshot: self._run_process(run_id, snapshot, images))

    async def debug_solution(
        self,
        images: list[ScreenshotData],
        problem: ProblemInfo,
        current_code: str,
    ) -> PipelineOutcome:
        """Send failing-run screenshots and the current code to the debugging model."""
        return await self._start(
            lambda run_id, snapshot: self._run_debug(run_id, snapshot, images, problem, current_code)
        )

    def cancel(self) -> bool:
        """
        Cancel the in-flight run.

        Forces the cancelled state, emits one cancelled event and mutes every
        later event of that run. Returns False when nothing is running.
        """
        if not self.is_running:
            return False
        logger.info("[Pipeline] Cancelling run %d", self._run_id)
        self._report_cancelled(self._run_id)
        self._task.cancel()
        return True

    # ── Run lifecycle ─────────────────────────────────────────────────────────

    async def _start(
        self,
        make_run: Callable[[int, tuple[AppConfig, LLMProvider]], Awaitable[PipelineOutcome]],
    ) -> PipelineOutcome:
        self.cancel()

        self._run_id += 1
        run_id = self._run_id
        self._live_run = run_id
        self.recent_progress.clear()

        task = asyncio.create_task(make_run(run_id, self._active))
        self._task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            # the caller went away; abort its run too
            if self._task is task:
                self.cancel()
            raise

        if task.cancelled():
            return self._cancelled_outcome(run_id)
        return task.result()

    async def _run_process(
        self,
        run_id: int,
        snapshot: tuple[AppConfig, LLMProvider],
        images: list[ScreenshotData],
    ) -> PipelineOutcome:
        config, provider = snapshot
        extraction = None
        try:
            await self._check_preconditions(run_id, provider, images)
            self._set_state(run_id, PipelineState.EXTRACTING)
            self._progress(run_id, "Analyzing screenshots...", 20)

            problem = await self._extract(provider, config, images)

            self._set_state(run_id, PipelineState.CLASSIFYING)
            content = classify(problem.problem_statement)
            extraction = ExtractionResult(problem=problem, content=content)
            logger.info("[Pipeline] Run %d classified as %s", run_id, content.type.value)
            self._progress(run_id, "Problem extracted successfully", 40)
            self._emit(run_id, EventKind.EXTRACTED, "Problem extracted", extraction)

            self._set_state(run_id, PipelineState.SOLVING)
            self._progress(run_id, "Generating solution...", 60)
            solution = await self._solve(provider, config, extraction)
        except asyncio.CancelledError:
            self._report_cancelled(run_id)
            return self._cancelled_outcome(run_id, extraction)
        except Exception as e:
            return self._report_failure(run_id, e, extraction)

        if not self._is_live(run_id):
            return self._cancelled_outcome(run_id, extraction)

        message = "Solution generated successfully"
        self._set_state(run_id, PipelineState.DONE)
        self._progress(run_id, message, 100)
        self._emit(run_id, EventKind.SOLVED, message, solution)
        return PipelineOutcome(
            run_id=run_id,
            state=PipelineState.DONE,
            message=message,
            extraction=extraction,
            solution=solution,
        )

    async def _run_debug(
        self,
        run_id: int,
        snapshot: tuple[AppConfig, LLMProvider],
        images: list[ScreenshotData],
        problem: ProblemInfo,
        current_code: str,
    ) -> PipelineOutcome:
        config, provider = snapshot
        try:
            await self._check_preconditions(run_id, provider, images)
            self._set_state(run_id, PipelineState.DEBUGGING)
            self._progress(run_id, "Processing debug screenshots...", 20)

            messages = [
                Message(role="system", content=prompts.DEBUG_SYSTEM_PROMPT),
                Message(
                    role="user",
                    content=[
                        TextPart(text=prompts.debug_user_prompt(
                            problem.problem_statement, current_code, config.target_language
                        )),
                        *(_image_part(shot) for shot in images),
                    ],
                ),
            ]
            self._progress(run_id, "Analyzing code and generating debug feedback...", 60)
            raw = await self._chat(provider, messages, provider.resolve_model("debugging"), DEBUG_OPTIONS)
            debug = DebugResult(**parse_solution_response(raw).model_dump())
        except asyncio.CancelledError:
            self._report_cancelled(run_id)
            return self._cancelled_outcome(run_id)
        except Exception as e:
            return self._report_failure(run_id, e)

        if not self._is_live(run_id):
            return self._cancelled_outcome(run_id)

        message = "Debug analysis complete"
        self._set_state(run_id, PipelineState.DONE)
        self._progress(run_id, message, 100)
        self._emit(run_id, EventKind.DEBUGGED, message, debug)
        return PipelineOutcome(run_id=run_id, state=PipelineState.DONE, message=message, debug=debug)

    async def _check_preconditions(
        self,
        run_id: int,
        provider: LLMProvider,
        images: list[ScreenshotData],
    ) -> None:
        if not images:
            raise NoScreenshotsError()
        if provider.requires_api_key and not await provider.validate_api_key():
            logger.warning("[Pipeline] Run %d: %s rejected the API key", run_id, provider.provider_id)
            raise CredentialError()

    # ── Stages ────────────────────────────────────────────────────────────────

    async def _extract(
        self,
        provider: LLMProvider,
        config: AppConfig,
        images: list[ScreenshotData],
    ) -> ProblemInfo:
        messages = [
            Message(role="system", content=prompts.EXTRACT_SYSTEM_PROMPT),
            Message(
                role="user",
                content=[
                    TextPart(text=prompts.extract_user_prompt(config.target_language)),
                    *(_image_part(shot) for shot in images),
                ],
            ),
        ]
        raw = await self._chat(
            provider, messages, provider.resolve_model("extraction"), EXTRACTION_OPTIONS
        )
        return parse_problem_info(raw)

    async def _solve(
        self,
        provider: LLMProvider,
        config: AppConfig,
        extraction: ExtractionResult,
    ) -> SolutionResult:
        content = extraction.content
        if content.type != ContentType.MIXED:
            return await self._solve_task(provider, config, content, extraction.problem)

        jobs = [
            asyncio.create_task(self._solve_task(provider, config, task))
            for task in content.multiple_tasks
        ]
        try:
            results = await asyncio.gather(*jobs)
        except BaseException:
            # fail fast: the first failure cancels the remaining sub-requests
            for job in jobs:
                job.cancel()
            await asyncio.gather(*jobs, return_exceptions=True)
            raise

        merged = merge_solutions(list(results))
        return merged.model_copy(update={"type": ContentType.MIXED, "tasks": content.multiple_tasks})

    async def _solve_task(
        self,
        provider: LLMProvider,
        config: AppConfig,
        content: ExtractedContent,
        problem: ProblemInfo | None = None,
    ) -> SolutionResult:
        language = config.target_language
        if content.code_review is not None:
            review = content.code_review
            user_prompt = prompts.code_review_prompt(
                review.original_code,
                review.language if review.language != "unknown" else language,
                review.context,
            )
        elif content.sql_task is not None:
            user_prompt = prompts.sql_user_prompt(
                content.sql_task.description, content.sql_task.table_schema
            )
        elif problem is not None:
            user_prompt = prompts.solution_user_prompt(
                problem.problem_statement,
                problem.constraints,
                problem.example_input,
                problem.example_output,
                language,
            )
        else:
            user_prompt = prompts.solution_user_prompt(content.raw_text, "", "", "", language)

        messages = [
            Message(role="system", content=prompts.SOLUTION_SYSTEM_PROMPT),
            Message(role="user", content=user_prompt),
        ]
        raw = await self._chat(provider, messages, provider.resolve_model("solution"), SOLUTION_OPTIONS)
        return parse_solution_response(raw).model_copy(update={"type": content.type})

    async def _chat(
        self,
        provider: LLMProvider,
        messages: list[Message],
        model_id: str,
        options: ChatOptions,
    ) -> str:
        started = time.perf_counter()
        result = await provider.chat(messages, model_id, options)
        logger.info(
            "[Pipeline] provider=%s model=%s took %.2fs",
            provider.provider_id, model_id, time.perf_counter() - started,
        )
        logger.debug("[Pipeline] Content: %s...", result.content[:200])
        return result.content

    # ── Reporting ─────────────────────────────────────────────────────────────

    def _is_live(self, run_id: int) -> bool:
        return self._live_run == run_id

    def _set_state(self, run_id: int, state: PipelineState) -> None:
        if self._is_live(run_id):
            self._state = state

    def _progress(self, run_id: int, message: str, progress: int, is_error: bool = False) -> None:
        if not self._is_live(run_id):
            return
        event = ProgressEvent(message=message, progress=progress, is_error=is_error)
        self.recent_progress.append(event)
        if self._progress_sink is not None:
            try:
                self._progress_sink(event)
            except Exception:
                logger.exception("[Pipeline] Progress sink failed")

    def _emit(self, run_id: int, kind: EventKind, message: str, payload=None) -> None:
        if not self._is_live(run_id):
            return
        if self._result_sink is not None:
            try:
                self._result_sink(PipelineEvent(kind=kind, run_id=run_id, message=message, payload=payload))
            except Exception:
                logger.exception("[Pipeline] Result sink failed")

    def _report_cancelled(self, run_id: int) -> None:
        if not self._is_live(run_id):
            return
        self._state = PipelineState.CANCELLED
        self._emit(run_id, EventKind.CANCELLED, CancellationError.default_message, CancellationError())
        self._live_run = None

    def _report_failure(
        self,
        run_id: int,
        error: BaseException,
        extraction: ExtractionResult | None = None,
    ) -> PipelineOutcome:
        failure = classify_failure(error)
        logger.error("[Pipeline] Run %d failed (%s): %s", run_id, failure.kind.value, error)
        if not self._is_live(run_id):
            return self._cancelled_outcome(run_id, extraction)

        self._set_state(run_id, PipelineState.ERROR)
        self._progress(run_id, failure.message, 100, is_error=True)
        self._emit(run_id, EventKind.FAILED, failure.message, failure)
        return PipelineOutcome(
            run_id=run_id,
            state=PipelineState.ERROR,
            message=failure.message,
            extraction=extraction,
            failure=failure.kind.value,
        )

    def _cancelled_outcome(
        self, run_id: int, extraction: ExtractionResult | None = None
    ) -> PipelineOutcome:
        error = CancellationError()
        return PipelineOutcome(
            run_id=run_id,
            state=PipelineState.CANCELLED,
            message=error.message,
            extraction=extraction,
            failure=error.kind.value,
        )


def _image_part(shot: ScreenshotData) -> ImagePart:
    data = shot.base64_data
    if data.startswith("data:"):
        header, _, data = data.partition(",")
        mime_type = header[len("data:"):].split(";")[0] or "image/png"
        return ImagePart(data=data, mime_type=mime_type)
    mime_type, _ = mimetypes.guess_type(shot.path)
    return ImagePart(data=data, mime_type=mime_type or "image/png")


# ── Singleton ─────────────────────────────────────────────────────────────────

_pipeline: ProcessingPipeline | None = None


def get_pipeline() -> ProcessingPipeline:
    """Get or create the processing pipeline bound to the config store."""
    global _pipeline
    if _pipeline is None:
        settings = get_settings()
        store = get_config_store()
        _pipeline = ProcessingPipeline(
            store.config,
            request_timeout=settings.chat_timeout,
            validation_timeout=settings.validation_timeout,
            models_cache_ttl=settings.models_cache_ttl,
        )
        store.subscribe(_pipeline.on_config_changed)
    return _pipeline
