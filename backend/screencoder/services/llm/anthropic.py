"""
Anthropic Provider

Anthropic Messages REST API:
- POST /v1/messages with a top-level `system` field
- images as {"type": "image", "source": {"type": "base64", ...}}
- x-api-key + anthropic-version headers
- GET /v1/models for discovery and key validation
"""

import logging

from screencoder.core.errors import ProviderHTTPError, ProviderResponseError
from screencoder.services.llm.base import LLMProvider
from screencoder.services.llm.models import (
    ChatOptions,
    ChatResult,
    DefaultModels,
    Message,
    ModelInfo,
    ProviderDescriptor,
    SetupInstructions,
    TextPart,
    Usage,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"

STATIC_MODELS = [
    ModelInfo(id="claude-sonnet-4-5", name="Claude Sonnet 4.5", supports_vision=True,
              context_length=200_000, description="Best balance of intelligence and speed"),
    ModelInfo(id="claude-opus-4-1", name="Claude Opus 4.1", supports_vision=True,
              context_length=200_000, description="Most capable model for complex problems"),
    ModelInfo(id="claude-3-5-haiku-latest", name="Claude Haiku 3.5", supports_vision=True,
              context_length=200_000, description="Fastest and cheapest"),
]


class AnthropicProvider(LLMProvider):
    """Provider for the Anthropic Messages API."""

    provider_id = "anthropic"
    descriptor = ProviderDescriptor(
        id="anthropic",
        display_name="Anthropic",
        is_free=False,
        color_hint="orange",
        requires_api_key=True,
        setup_instructions=SetupInstructions(
            signup_url="https://console.anthropic.com/",
            keys_url="https://console.anthropic.com/settings/keys",
            description="Paid service. Claude models with strong code and vision capabilities.",
        ),
    )
    builtin_models = DefaultModels(
        extraction="claude-sonnet-4-5",
        solution="claude-sonnet-4-5",
        debugging="claude-sonnet-4-5",
    )

    def __init__(self, config, **kwargs):
        super().__init__(config, **kwargs)
        self.base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def get_static_models(self) -> list[ModelInfo]:
        return list(STATIC_MODELS)

    async def _fetch_models(self) -> list[ModelInfo]:
        if not self.config.api_key:
            return []
        data = await self._request_json(
            "GET", f"{self.base_url}/models", headers=self._headers(), timeout=self.config.validation_timeout
        )
        models = [
            ModelInfo(
                id=m["id"],
                name=m.get("display_name") or m["id"],
                # every Claude 3+ model accepts images
                supports_vision=True,
            )
            for m in data.get("data", [])
            if m.get("id")
        ]
        models.sort(key=lambda m: m.id)
        return models

    async def _check_credentials(self) -> bool:
        await self._request_json(
            "GET",
            f"{self.base_url}/models",
            headers=self._headers(),
            params={"limit": "1"},
            timeout=self.config.validation_timeout,
        )
        return True

    def format_image_for_provider(self, base64_image: str, mime_type: str = "image/png") -> dict:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": mime_type, "data": base64_image},
        }

    def _split_system(self, messages: list[Message]) -> tuple[str, list[dict]]:
        system_parts = []
        converted = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.text)
                continue
            if isinstance(msg.content, str):
                content = msg.content
            else:
                content = [
                    {"type": "text", "text": p.text}
                    if isinstance(p, TextPart)
                    else self.format_image_for_provider(p.data, p.mime_type)
                    for p in msg.content
                ]
            converted.append({"role": msg.role, "content": content})
        return "\n\n".join(system_parts), converted

    async def chat(
        self,
        messages: list[Message],
        model_id: str,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        options = options or ChatOptions()
        if not self.config.api_key:
            raise ProviderHTTPError(401, "Anthropic API key is required", provider=self.provider_id)

        system_prompt, converted = self._split_system(messages)
        payload = {
            "model": model_id,
            "messages": converted,
            "max_tokens": options.max_tokens or 4096,
            "temperature": options.temperature if options.temperature is not None else 0.7,
        }
        if system_prompt:
            payload["system"] = system_prompt

        logger.info("[LLM] anthropic request model=%s", model_id)
        data = await self._request_json(
            "POST", f"{self.base_url}/messages", json=payload, headers=self._headers()
        )

        text = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        if not text:
            raise ProviderResponseError("Empty response from Anthropic API", self.provider_id)

        usage = None
        if data.get("usage"):
            usage = Usage(
                prompt_tokens=data["usage"].get("input_tokens", 0),
                completion_tokens=data["usage"].get("output_tokens", 0),
            )
        return ChatResult(content=text, usage=usage)
