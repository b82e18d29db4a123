"""
Response Normalizer

Best-effort parsers that turn raw model text into structured records.
Neither parser raises: when the expected structure is missing they fall back
to the raw text and flag the record with `parse_fallback`.
"""

from typing import Any
import json
import logging
import re
import warnings

from screencoder.core.errors import ParseFallbackWarning
from screencoder.services.llm.models import ContentType, ProblemInfo, SolutionResult

logger = logging.getLogger(__name__)

DEFAULT_TIME_COMPLEXITY = "O(n) - linear time (complexity not stated in the response)"
DEFAULT_SPACE_COMPLEXITY = "O(1) - constant extra space (complexity not stated in the response)"
DEFAULT_THOUGHTS = ["Solution optimized for readability and efficiency"]

_FENCE_MARKER = re.compile(r"```(?:json|JSON)?")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

# Optional language tag, only when a newline follows it
_CODE_BLOCK = re.compile(r"```(?:([\w+#.-]*)[ \t]*\n)?(.*?)```", re.DOTALL)

_THOUGHTS_SECTION = re.compile(
    r"(?:Размышления|Thoughts|Key insights|Ключевые (?:решения|идеи))"
    r"[ \t]*\**[ \t]*:?[ \t]*\**"
    r"(.*?)"
    r"(?=\n[ \t]*#{2,}|\n[ \t]*-{3,}|\n[ \t]*```"
    r"|\n[^\n]*(?:Временная|Пространственная|Time complexity|Space complexity)|\Z)",
    re.IGNORECASE | re.DOTALL,
)
_BULLET = re.compile(r"^[ \t]*(?:[-*•]|\d+[.)])[ \t]+(.*\S)", re.MULTILINE)

_LINE_LEAD = r"^[ \t>#*\-•]*"
_LABEL_TAIL = r"[ \t]*\**[ \t]*:?[ \t]*\**\s*([^\n]+)"
_TIME_COMPLEXITY = re.compile(
    _LINE_LEAD + r"(?:Time complexity|Временная(?:[ \t]+сложность)?)" + _LABEL_TAIL,
    re.IGNORECASE | re.MULTILINE,
)
_SPACE_COMPLEXITY = re.compile(
    _LINE_LEAD + r"(?:Space complexity|Пространственная(?:[ \t]+сложность)?)" + _LABEL_TAIL,
    re.IGNORECASE | re.MULTILINE,
)

_HASH_COMMENT_LANGUAGES = {"python", "py", "ruby", "rb", "bash", "sh", "shell", "r", "perl"}
_DASH_COMMENT_LANGUAGES = {"sql", "postgresql", "postgres", "mysql", "plsql", "tsql"}


# ── Extraction parser ─────────────────────────────────────────────────────────


def parse_problem_info(content: str) -> ProblemInfo:
    """
    Parse the extraction-stage response into a ProblemInfo.

    Strips Markdown fences, takes the outermost {...} span and parses it as
    JSON. If that fails the whole cleaned text becomes the problem statement.

    Args:
        content: Raw model response

    Returns:
        ProblemInfo; `parse_fallback` is True when JSON could not be recovered
    """
    cleaned = _FENCE_MARKER.sub("", content).strip()

    match = _JSON_OBJECT.search(cleaned)
    candidate = match.group(0) if match else cleaned

    try:
        data = json.loads(candidate)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    except ValueError as e:
        logger.warning("[Parser] Failed to parse extraction JSON, using fallback: %s", e)
        warnings.warn(
            "Extraction response was not valid JSON; using raw text as the problem statement",
            ParseFallbackWarning,
            stacklevel=2,
        )
        return ProblemInfo(
            problem_statement=cleaned,
            constraints="No specific constraints extracted",
            example_input="Not extracted",
            example_output="Not extracted",
            parse_fallback=True,
            raw_response=content,
        )

    fields = {key: _as_text(value) for key, value in data.items()
              if key in ProblemInfo.model_fields}
    extras = {key: value for key, value in data.items() if key not in ProblemInfo.model_fields}
    fields.pop("parse_fallback", None)
    fields.pop("raw_response", None)

    if not fields.get("problem_statement", "").strip():
        # JSON without a statement: the cleaned text keeps the problem in view
        logger.warning("[Parser] Extraction JSON has no problem_statement, using raw text")
        warnings.warn(
            "Extraction JSON has no problem_statement; using raw text as the problem statement",
            ParseFallbackWarning,
            stacklevel=2,
        )
        fields.update(problem_statement=cleaned, parse_fallback=True, raw_response=content)
    return ProblemInfo(**fields, **extras)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n".join(_as_text(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


# ── Solution parser ───────────────────────────────────────────────────────────


def parse_solution_response(content: str) -> SolutionResult:
    """
    Parse a Markdown solution into code, thoughts and complexity notes.

    Each part is extracted independently; a missing part never blocks the
    others. With no fenced code at all, the raw response becomes the code.
    """
    code_blocks = _CODE_BLOCK.findall(content)
    logger.debug("[Parser] Found %d code block(s)", len(code_blocks))

    if len(code_blocks) > 1:
        code = "\n\n\n".join(
            f"{_task_header(i, language)}\n\n{body.strip()}"
            for i, (language, body) in enumerate(code_blocks, start=1)
        )
    elif len(code_blocks) == 1:
        code = code_blocks[0][1].strip()
    else:
        code = content

    return SolutionResult(
        code=code,
        thoughts=_extract_thoughts(content),
        time_complexity=_extract_complexity(_TIME_COMPLEXITY, content, DEFAULT_TIME_COMPLEXITY),
        space_complexity=_extract_complexity(_SPACE_COMPLEXITY, content, DEFAULT_SPACE_COMPLEXITY),
        parse_fallback=not code_blocks,
    )


def _extract_thoughts(content: str) -> list[str]:
    sections = [
        m.group(1) for m in _THOUGHTS_SECTION.finditer(content) if m.group(1).strip()
    ]
    thoughts: list[str] = []
    for index, section in enumerate(sections, start=1):
        items = [b.strip() for b in _BULLET.findall(section)]
        if not items:
            items = [line.strip() for line in section.splitlines() if line.strip()]
        if not items:
            continue
        if len(sections) > 1:
            thoughts.append(f"**Task {index}:**")
        thoughts.extend(items)
    return thoughts or list(DEFAULT_THOUGHTS)


def _extract_complexity(pattern: re.Pattern, content: str, default: str) -> str:
    values = [_clean_value(m.group(1)) for m in pattern.finditer(content)]
    values = [v for v in values if v]
    if not values:
        return default
    if len(values) == 1:
        return values[0]
    return "\n\n".join(f"**Task {i}:** {v}" for i, v in enumerate(values, start=1))


def _clean_value(value: str) -> str:
    return value.strip().strip("*").strip()


def _comment_prefix(language: str | None) -> str:
    language = (language or "").lower()
    if language in _HASH_COMMENT_LANGUAGES:
        return "#"
    if language in _DASH_COMMENT_LANGUAGES:
        return "--"
    return "//"


def _task_header(index: int, language: str | None = None) -> str:
    return f"{_comment_prefix(language)} ========== Task {index} =========="


# ── Multi-task merge ──────────────────────────────────────────────────────────


def merge_solutions(results: list[SolutionResult]) -> SolutionResult:
    """
    Merge per-task solutions into one result.

    Code is concatenated under ordinal task headers, complexity strings are
    concatenated with task markers and thoughts are flattened.
    """
    if not results:
        raise ValueError("merge_solutions needs at least one result")
    if len(results) == 1:
        return results[0]

    code_parts, thoughts, time_parts, space_parts = [], [], [], []
    for index, result in enumerate(results, start=1):
        language = "sql" if result.type == ContentType.SQL_TASK else None
        code_parts.append(f"{_task_header(index, language)}\n\n{result.code.strip()}")
        thoughts.append(f"**Task {index}:**")
        thoughts.extend(result.thoughts)
        time_parts.append(f"**Task {index}:** {result.time_complexity}")
        space_parts.append(f"**Task {index}:** {result.space_complexity}")

    return SolutionResult(
        code="\n\n\n".join(code_parts),
        thoughts=thoughts,
        time_complexity="\n\n".join(time_parts),
        space_complexity="\n\n".join(space_parts),
        type=ContentType.MIXED,
        parse_fallback=any(r.parse_fallback for r in results),
    )
