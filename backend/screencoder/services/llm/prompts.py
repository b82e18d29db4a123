"""
Prompt templates for the three pipeline stages.

The solution and debug templates ask for the Markdown section layout that
the response parser looks for (fenced code, "Thoughts", "Time complexity",
"Space complexity"). The parser also accepts the Russian headers, so models
that answer in Russian still parse.
"""

EXTRACT_SYSTEM_PROMPT = """You are a coding challenge interpreter. Your task is to analyze screenshots and extract information in STRICT JSON format. The screenshot may have a dark background with light text; adjust your recognition accordingly.

CRITICAL: Return ONLY valid JSON without any markdown formatting, code blocks, or explanatory text.

Required JSON structure:
{
  "problem_statement": "full problem description here",
  "constraints": "any constraints mentioned",
  "example_input": "example input if provided",
  "example_output": "example output if provided"
}

Rules:
- Return ONLY the JSON object
- No markdown (no ```json)
- No explanatory text before or after
- Use empty string "" if a field is not found
- If the screenshots contain several tasks, keep their numbering ("Task 1", "Task 2", ...) inside problem_statement
- If the screenshots contain source code, copy it exactly into problem_statement
- Ensure valid JSON syntax"""


def extract_user_prompt(language: str) -> str:
    return (
        "Extract the coding problem details from these screenshots. "
        "Return in JSON format. "
        f"Preferred coding language we are going to use for this problem is {language}."
    )


SOLUTION_SYSTEM_PROMPT = (
    "You are an expert coding interview assistant. "
    "You write clean, production-ready solutions and explain them briefly."
)

_SOLUTION_FORMAT = """OUTPUT FORMAT:

### Code
```{language}
[complete solution, no inline comments]
```

### Thoughts
- [key insight 1]
- [key insight 2]

### Time complexity
O(X) - [1-2 sentences explaining why]

### Space complexity
O(X) - [1-2 sentences explaining why]"""


def solution_user_prompt(
    problem_statement: str,
    constraints: str,
    example_input: str,
    example_output: str,
    language: str,
) -> str:
    return f"""Solve the following problem in {language}.

PROBLEM:
{problem_statement}

CONSTRAINTS:
{constraints or "No specific constraints provided."}

EXAMPLE INPUT:
{example_input or "No example input provided."}

EXAMPLE OUTPUT:
{example_output or "No example output provided."}

REQUIREMENTS:
- Handle edge cases (empty input, nulls, boundaries)
- Prefer clarity first, then lower time and space complexity
- Do NOT add functionality beyond what the problem asks
- Use concurrency only if the problem asks for it

{_SOLUTION_FORMAT.format(language=language)}"""


def sql_user_prompt(description: str, schema: str | None) -> str:
    schema_block = f"\nSCHEMA:\n{schema}\n" if schema else ""
    return f"""Write the SQL query for the following task.

TASK:
{description}
{schema_block}
REQUIREMENTS:
- Use modern SQL (CTEs, window functions) only where they simplify the query
- Take indexes and performance into account
- Avoid redundant CTEs

{_SOLUTION_FORMAT.format(language="sql")}"""


def code_review_prompt(code: str, language: str, context: str) -> str:
    fence_language = language if language != "unknown" else ""
    return f"""Perform a code review as a senior developer. Find the issues and provide a CORRECTED VERSION with an explanation of every change.

CONTEXT:
{context or "No additional context."}

ORIGINAL CODE:
```{fence_language}
{code}
```

YOUR TASK:
1. Find problems in the code (N+1 queries, inefficient operations, thread-safety issues, bugs)
2. Rewrite the code with all problems fixed
3. Explain EACH change as "Before -> After -> Why"

### Code
```{fence_language}
[full corrected version]
```

### Thoughts
- [problem found: before -> after -> why]
- [next problem ...]

### Time complexity
[complexity of the corrected version and why]

### Space complexity
[complexity of the corrected version and why]"""


DEBUG_SYSTEM_PROMPT = (
    "You are a coding interview assistant helping to debug and improve a solution. "
    "The screenshots show test results, error messages or new requirements."
)


def debug_user_prompt(problem_statement: str, current_code: str, language: str) -> str:
    return f"""I'm solving this coding problem: "{problem_statement}" in {language}.

This is my current solution:
```{language}
{current_code}
```

The screenshots show what went wrong (error messages, failing tests, or incorrect output).
Identify the problems and provide the corrected solution.

{_SOLUTION_FORMAT.format(language=language)}

In the Thoughts section list each issue you found and how you fixed it."""
