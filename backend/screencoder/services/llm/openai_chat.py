"""
OpenAI Chat Completions API Provider

Handles the OpenAI API and any OpenAI-compatible relay (set base_url):
- client.chat.completions.create()
- messages with text / image_url content types
- response.choices[0].message.content
- client.models.list() for discovery and key validation
"""

from typing import Callable
import logging

import httpx
import openai
from openai import AsyncOpenAI

from screencoder.core.errors import (
    ProviderHTTPError,
    ProviderRequestError,
    ProviderResponseError,
)
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

DEFAULT_BASE_URL = "https://api.openai.com/v1"

VISION_MODEL_PREFIXES = ("gpt-4o", "gpt-4.1", "gpt-4-turbo", "gpt-5", "o1", "o3", "o4")

STATIC_MODELS = [
    ModelInfo(id="gpt-4o", name="GPT-4o", supports_vision=True, context_length=128_000,
              description="Fast and reliable. Strong vision support."),
    ModelInfo(id="gpt-4o-mini", name="GPT-4o Mini", supports_vision=True, context_length=128_000,
              description="Fastest and cheapest. Good for simple problems."),
    ModelInfo(id="gpt-4-turbo", name="GPT-4 Turbo", supports_vision=True, context_length=128_000),
    ModelInfo(id="gpt-4", name="GPT-4", supports_vision=False, context_length=8_192),
    ModelInfo(id="gpt-3.5-turbo", name="GPT-3.5 Turbo", supports_vision=False, context_length=16_385),
]


# ── Shared helpers for OpenAI-protocol backends ───────────────────────────────


def to_openai_messages(
    messages: list[Message],
    format_image: Callable[[str, str], dict],
) -> list[dict]:
    """Convert Message objects to the Chat Completions `messages` array."""
    converted = []
    for msg in messages:
        if isinstance(msg.content, str):
            converted.append({"role": msg.role, "content": msg.content})
            continue
        parts = []
        for part in msg.content:
            if isinstance(part, TextPart):
                parts.append({"type": "text", "text": part.text})
            else:
                parts.append(format_image(part.data, part.mime_type))
        converted.append({"role": msg.role, "content": parts})
    return converted


async def create_chat_completion(
    client: AsyncOpenAI,
    provider_id: str,
    **request,
) -> ChatResult:
    """Call chat.completions.create and map SDK errors onto ProviderError types."""
    try:
        response = await client.chat.completions.create(**request)
    except openai.APIStatusError as e:
        raise ProviderHTTPError(e.status_code, e.message, provider=provider_id) from e
    except openai.APITimeoutError as e:
        raise ProviderRequestError(f"Request timed out: {e}", provider_id) from e
    except openai.APIConnectionError as e:
        raise ProviderRequestError(f"Request failed: {e}", provider_id) from e

    if not response.choices:
        raise ProviderResponseError(f"No choices in {provider_id} response", provider_id)
    content = response.choices[0].message.content
    if not content:
        raise ProviderResponseError(f"Empty response from {provider_id}", provider_id)

    usage = None
    if response.usage:
        usage = Usage(
            prompt_tokens=response.usage.prompt_tokens,
            completion_tokens=response.usage.completion_tokens,
        )
    return ChatResult(content=content, usage=usage)


def build_client(
    api_key: str,
    base_url: str,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
    default_headers: dict[str, str] | None = None,
) -> AsyncOpenAI:
    http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
    return AsyncOpenAI(
        api_key=api_key,
        base_url=base_url,
        timeout=timeout,
        max_retries=0,  # retries are a caller decision
        default_headers=default_headers,
        http_client=http_client,
    )


# ── Provider ──────────────────────────────────────────────────────────────────


class OpenAIChatProvider(LLMProvider):
    """Provider for the OpenAI Chat Completions API and compatible relays."""

    provider_id = "openai"
    descriptor = ProviderDescriptor(
        id="openai",
        display_name="OpenAI",
        is_free=False,
        color_hint="green",
        requires_api_key=True,
        setup_instructions=SetupInstructions(
            signup_url="https://platform.openai.com/signup",
            keys_url="https://platform.openai.com/api-keys",
            description="Paid service. Set a custom base URL to use any OpenAI-compatible relay.",
        ),
    )
    builtin_models = DefaultModels(
        extraction="gpt-4o",
        solution="gpt-4o",
        debugging="gpt-4o",
    )

    def __init__(self, config, **kwargs):
        super().__init__(config, **kwargs)
        self.base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        # A relay on a custom URL may not need a key, but the SDK wants one
        api_key = config.api_key or ("not-needed" if config.base_url else "")
        self.client = build_client(api_key, self.base_url, config.request_timeout, self._transport)

    @property
    def is_relay(self) -> bool:
        return self.base_url != DEFAULT_BASE_URL

    @property
    def requires_api_key(self) -> bool:
        # A relay reached without a key is treated as key-less
        return not self.is_relay or bool(self.config.api_key)

    async def aclose(self) -> None:
        await self.client.close()

    def get_static_models(self) -> list[ModelInfo]:
        return list(STATIC_MODELS)

    async def _fetch_models(self) -> list[ModelInfo]:
        if not self.config.api_key and not self.is_relay:
            return []
        page = await self.client.with_options(timeout=self.config.validation_timeout).models.list()
        models = [
            ModelInfo(
                id=m.id,
                name=m.id,
                supports_vision=m.id.startswith(VISION_MODEL_PREFIXES) or "vision" in m.id,
            )
            for m in page.data
        ]
        models.sort(key=lambda m: m.id)
        return models

    async def _check_credentials(self) -> bool:
        page = await self.client.with_options(timeout=self.config.validation_timeout).models.list()
        return len(page.data) > 0

    async def chat(
        self,
        messages: list[Message],
        model_id: str,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        options = options or ChatOptions()
        if not self.config.api_key and not self.is_relay:
            raise ProviderHTTPError(401, "OpenAI API key is required", provider=self.provider_id)

        request = {
            "model": model_id,
            "messages": to_openai_messages(messages, self.format_image_for_provider),
            "temperature": options.temperature if options.temperature is not None else 0.7,
        }
        # Relays generally only understand the older parameter name
        token_param = "max_tokens" if self.is_relay else "max_completion_tokens"
        request[token_param] = options.max_tokens or 4096

        logger.info("[LLM] openai request model=%s base_url=%s", model_id, self.base_url)
        return await create_chat_completion(self.client, self.provider_id, **request)
