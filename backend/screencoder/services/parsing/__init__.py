from screencoder.services.parsing.classifier import classify, split_into_tasks
from screencoder.services.parsing.response_parser import (
    merge_solutions,
    parse_problem_info,
    parse_solution_response,
)

__all__ = [
    "classify",
    "split_into_tasks",
    "merge_solutions",
    "parse_problem_info",
    "parse_solution_response",
]
