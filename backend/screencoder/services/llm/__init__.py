"""
LLM Provider Abstraction Layer

Provides a unified interface for multiple LLM backends (Ollama, OpenAI,
OpenRouter, Gemini, Anthropic) behind a provider registry. The processing
pipeline that drives them lives in `screencoder.services.llm.orchestrator`.
"""

from screencoder.services.llm.registry import (
    create_provider,
    get_all_providers_with_details,
    list_provider_ids,
    register_provider,
)
from screencoder.services.llm.models import ExtractedContent, SolutionResult

__all__ = [
    "create_provider",
    "get_all_providers_with_details",
    "list_provider_ids",
    "register_provider",
    "ExtractedContent",
    "SolutionResult",
]
