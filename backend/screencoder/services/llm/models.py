"""
Pydantic models for the provider layer and the processing pipeline.

These are shared across all providers; adapters translate Message objects
into their wire formats, and the parsers turn raw model text into the
ProblemInfo / ExtractedContent / SolutionResult records.
"""

from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ── Provider identity and configuration ───────────────────────────────────────


class SetupInstructions(BaseModel):
    model_config = ConfigDict(frozen=True)

    signup_url: str
    keys_url: str | None = None  # None when the backend needs no key
    description: str


class ProviderDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    is_free: bool
    color_hint: str  # UI accent, e.g. "indigo", "purple"
    requires_api_key: bool = True
    setup_instructions: SetupInstructions


class DefaultModels(BaseModel):
    model_config = ConfigDict(frozen=True)

    extraction: str = ""
    solution: str = ""
    debugging: str = ""


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str = ""
    base_url: str | None = None
    default_models: DefaultModels = DefaultModels()
    request_timeout: float = 60.0
    validation_timeout: float = 5.0
    models_cache_ttl: float = 300.0


class ModelInfo(BaseModel):
    id: str
    name: str
    supports_vision: bool = False
    context_length: int | None = None
    description: str | None = None


# ── Chat messages ─────────────────────────────────────────────────────────────


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image"] = "image"
    data: str  # raw base64, no data-URL prefix
    mime_type: str = "image/png"

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


ContentPart = Union[TextPart, ImagePart]


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str | list[ContentPart]

    @model_validator(mode="after")
    def _images_only_in_user_turns(self) -> "Message":
        if self.role != "user" and isinstance(self.content, list):
            if any(isinstance(part, ImagePart) for part in self.content):
                raise ValueError(f"{self.role} messages cannot carry image parts")
        return self

    @property
    def text(self) -> str:
        """All text parts joined with newlines (images dropped)."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def images(self) -> list[ImagePart]:
        if isinstance(self.content, str):
            return []
        return [p for p in self.content if isinstance(p, ImagePart)]


class ChatOptions(BaseModel):
    temperature: float | None = None
    max_tokens: int | None = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ChatResult(BaseModel):
    content: str
    usage: Usage | None = None


# ── Extraction records ────────────────────────────────────────────────────────


class ProblemInfo(BaseModel):
    """Structured problem extracted from screenshots (stage 1)."""

    model_config = ConfigDict(extra="allow")

    problem_statement: str = ""
    constraints: str = ""
    example_input: str = ""
    example_output: str = ""
    parse_fallback: bool = False
    raw_response: str | None = None


class ContentType(str, Enum):
    CODING_TASK = "coding_task"
    CODE_REVIEW = "code_review"
    SQL_TASK = "sql_task"
    MULTITHREADING_TASK = "multithreading_task"
    MIXED = "mixed"


class CodingTask(BaseModel):
    description: str
    original_code: str | None = None
    language: str = "unknown"
    requirements: list[str] = []
    examples: list[str] = []


class CodeReview(BaseModel):
    original_code: str
    language: str = "unknown"
    context: str = ""


class SqlTask(BaseModel):
    description: str
    table_schema: str | None = None
    query: str | None = None


class ExtractedContent(BaseModel):
    type: ContentType
    raw_text: str
    coding_task: CodingTask | None = None
    code_review: CodeReview | None = None
    sql_task: SqlTask | None = None
    multiple_tasks: list["ExtractedContent"] | None = None

    @model_validator(mode="after")
    def _exactly_one_payload(self) -> "ExtractedContent":
        payloads = [self.coding_task, self.code_review, self.sql_task, self.multiple_tasks]
        if sum(p is not None for p in payloads) != 1:
            raise ValueError("ExtractedContent must carry exactly one payload")
        if self.multiple_tasks is not None:
            if not self.multiple_tasks:
                raise ValueError("multiple_tasks must not be empty")
            if any(t.type == ContentType.MIXED for t in self.multiple_tasks):
                raise ValueError("nested mixed content is not allowed")
        return self


class ExtractionResult(BaseModel):
    problem: ProblemInfo
    content: ExtractedContent


# ── Solutions ─────────────────────────────────────────────────────────────────


class SolutionResult(BaseModel):
    code: str
    thoughts: list[str]
    time_complexity: str
    space_complexity: str
    type: ContentType | None = None
    tasks: list[ExtractedContent] | None = None
    parse_fallback: bool = False


class DebugResult(SolutionResult):
    pass


class ScreenshotData(BaseModel):
    path: str
    base64_data: str


# ── Pipeline events ───────────────────────────────────────────────────────────


class PipelineState(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    CLASSIFYING = "classifying"
    SOLVING = "solving"
    DEBUGGING = "debugging"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


class ProgressEvent(BaseModel):
    message: str
    progress: int = Field(ge=0, le=100)
    is_error: bool = False


class EventKind(str, Enum):
    EXTRACTED = "extracted"
    SOLVED = "solved"
    DEBUGGED = "debugged"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PipelineEvent(BaseModel):
    kind: EventKind
    run_id: int
    message: str
    payload: Any = None


class PipelineOutcome(BaseModel):
    run_id: int
    state: PipelineState
    message: str
    extraction: ExtractionResult | None = None
    solution: SolutionResult | None = None
    debug: DebugResult | None = None
    failure: str | None = None  # FailureKind value
