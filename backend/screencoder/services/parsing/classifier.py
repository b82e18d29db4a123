"""
Content Classifier

Keyword heuristics that route an extracted problem statement to the right
solve prompt. Categories overlap on surface features, so the checks run in a
fixed order and the first match wins:

    review -> sql -> concurrency -> numbered tasks -> coding task

Numbered tasks are split on their markers and each span is classified again,
one level deep, so a `mixed` result never contains another `mixed`.
"""

import logging
import re

from screencoder.services.llm.models import (
    CodeReview,
    CodingTask,
    ContentType,
    ExtractedContent,
    SqlTask,
)

logger = logging.getLogger(__name__)

_REVIEW_MARKERS = re.compile(
    r"\b(?:review|refactor\w*|fix)\b"
    r"|ревью|рефактор|исправ"
    r"|@(?:service|autowired|component|repository|controller|transactional|inject)\b",
    re.IGNORECASE,
)
_SQL_MARKERS = re.compile(
    r"\b(?:sql|select|join|create\s+table|column\s+name)\b|таблиц",
    re.IGNORECASE,
)
_CONCURRENCY_MARKERS = re.compile(
    r"multi-?thread|\bparallel|concurren|многопоточ|потоках",
    re.IGNORECASE,
)
# Shared by detection and splitting so k markers always give k tasks
_TASK_MARKER = re.compile(
    r"(?<!\w)(?:task|problem|задача|задание)\s*№?\s*\d+\s*[:.)]?",
    re.IGNORECASE,
)

_CODE_FENCE = re.compile(r"```(?:[\w+#.-]+)?\s*([\s\S]*?)```")
_SOURCE_HINTS = ("@Service", "@Autowired", "public class", "def ", "function ", "#include")
_REQUIREMENT_WORDS = re.compile(
    r"\d|divisible by|less than|greater than|at most|at least|"
    r"делятся на|делится на|меньше|больше|не более|не менее",
    re.IGNORECASE,
)
_EXAMPLE_LINE = re.compile(r"^\s*(?:example|пример)\w*\b.*\S", re.IGNORECASE | re.MULTILINE)
_SCHEMA_LINE = re.compile(r"^\s*\w+\s*\(\s*\w+(?:\s*,\s*\w+)*\s*\)\s*$", re.MULTILINE)
_CREATE_TABLE = re.compile(r"create\s+table\b[\s\S]*?(?:;|\)\s*$)", re.IGNORECASE | re.MULTILINE)
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def classify(text: str) -> ExtractedContent:
    """
    Classify an extracted problem statement.

    Never fails: anything unrecognised becomes a `coding_task` carrying the
    full text.
    """
    if _detect_type(text) == ContentType.MIXED:
        tasks = split_into_tasks(text)
        if len(tasks) > 1:
            logger.info("[Classifier] Found %d numbered tasks", len(tasks))
            return ExtractedContent(type=ContentType.MIXED, raw_text=text, multiple_tasks=tasks)
        return tasks[0].model_copy(update={"raw_text": text})
    return _classify_single(text)


def split_into_tasks(text: str) -> list[ExtractedContent]:
    """
    Split text on numbered task markers and classify each span.

    Each marker opens a task that runs until the next marker. Without any
    marker the whole text is returned as a single task. Text before the
    first marker is shared context: it is prepended to every task's
    raw_text but does not influence the task's type.
    """
    markers = list(_TASK_MARKER.finditer(text))
    if not markers:
        return [_classify_single(text)]

    preamble = text[:markers[0].start()].strip()
    tasks = []
    for i, marker in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(text)
        span = text[marker.end():end].strip()
        task = _classify_single(span)
        if preamble:
            task = task.model_copy(update={"raw_text": f"{preamble}\n\n{span}"})
        tasks.append(task)
    return tasks


def _detect_type(text: str) -> ContentType:
    if _REVIEW_MARKERS.search(text):
        return ContentType.CODE_REVIEW
    if _SQL_MARKERS.search(text):
        return ContentType.SQL_TASK
    if _CONCURRENCY_MARKERS.search(text):
        return ContentType.MULTITHREADING_TASK
    if _TASK_MARKER.search(text):
        return ContentType.MIXED
    return ContentType.CODING_TASK


def _classify_single(text: str) -> ExtractedContent:
    """Classify without splitting; numbered markers fall through to coding_task."""
    content_type = _detect_type(text)

    if content_type == ContentType.CODE_REVIEW:
        return ExtractedContent(
            type=content_type,
            raw_text=text,
            code_review=CodeReview(
                original_code=extract_code(text) or text,
                language=detect_language(text),
                context=extract_context(text),
            ),
        )

    if content_type == ContentType.SQL_TASK:
        return ExtractedContent(
            type=content_type,
            raw_text=text,
            sql_task=SqlTask(description=text, table_schema=extract_schema(text)),
        )

    if content_type == ContentType.MIXED:
        content_type = ContentType.CODING_TASK

    return ExtractedContent(
        type=content_type,
        raw_text=text,
        coding_task=CodingTask(
            description=text,
            original_code=extract_code(text),
            language=detect_language(text),
            requirements=extract_requirements(text),
            examples=[m.group(0).strip() for m in _EXAMPLE_LINE.finditer(text)],
        ),
    )


# ── Helpers ───────────────────────────────────────────────────────────────────


def extract_requirements(text: str) -> list[str]:
    """Lines that mention a number or a comparison, collected verbatim."""
    return [
        line.strip()
        for line in text.splitlines()
        if line.strip() and _REQUIREMENT_WORDS.search(line)
    ]


def detect_language(text: str) -> str:
    if "@Service" in text or "@Autowired" in text:
        return "java"
    if "def " in text or ("import " in text and ":" in text):
        return "python"
    if "SELECT " in text or "FROM " in text:
        return "sql"
    if "public class" in text or "public static void" in text:
        return "java"
    if "fun " in text and "val " in text:
        return "kotlin"
    if "func " in text and "package " in text:
        return "go"
    if "function " in text or "const " in text:
        return "javascript"
    if "#include" in text:
        return "cpp"
    return "unknown"


def extract_code(text: str) -> str | None:
    """First fenced block, else the whole text when it already looks like source."""
    match = _CODE_FENCE.search(text)
    if match:
        return match.group(1).strip()
    if any(hint in text for hint in _SOURCE_HINTS):
        return text
    return None


def extract_context(text: str) -> str:
    """First two sentences, used as the review context."""
    prose = _CODE_FENCE.sub(" ", text).strip()
    sentences = [s for s in _SENTENCE_END.split(prose) if s.strip()]
    return " ".join(sentences[:2]).strip()


def extract_schema(text: str) -> str | None:
    """Table definitions as `name(col, ...)` lines or CREATE TABLE statements."""
    parts = [m.group(0).strip() for m in _CREATE_TABLE.finditer(text)]
    parts += [m.group(0).strip() for m in _SCHEMA_LINE.finditer(text)]
    return "\n".join(parts) or None
