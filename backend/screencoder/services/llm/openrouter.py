"""
OpenRouter Provider

Multi-model aggregator speaking the OpenAI protocol:
- chat through the OpenAI SDK pointed at openrouter.ai
- public GET /models listing (no key needed), filtered to an allow-list
- attribution headers on every request
"""

import logging

from screencoder.core.errors import ProviderHTTPError
from screencoder.services.llm.base import LLMProvider
from screencoder.services.llm.models import (
    ChatOptions,
    ChatResult,
    DefaultModels,
    Message,
    ModelInfo,
    ProviderDescriptor,
    SetupInstructions,
)
from screencoder.services.llm.openai_chat import (
    build_client,
    create_chat_completion,
    to_openai_messages,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"

ATTRIBUTION_HEADERS = {
    "HTTP-Referer": "https://github.com/screencoder/screencoder",
    "X-Title": "Screen Coder",
}

# Models offered in the UI; the full catalogue is several hundred entries
ALLOWED_MODEL_IDS = frozenset({
    "google/gemma-3-27b-it:free",
    "nvidia/nemotron-nano-12b-v2-vl:free",
    "mistralai/mistral-small-3.1-24b-instruct:free",
    "google/gemma-3-4b-it:free",
    "google/gemma-3-12b-it:free",
    "openrouter/free",
})

STATIC_MODELS = [
    ModelInfo(id="google/gemma-3-27b-it:free", name="Google: Gemma 3 27B (free)",
              supports_vision=True, context_length=96_000),
    ModelInfo(id="mistralai/mistral-small-3.1-24b-instruct:free",
              name="Mistral: Mistral Small 3.1 24B (free)", supports_vision=True,
              context_length=128_000),
    ModelInfo(id="nvidia/nemotron-nano-12b-v2-vl:free", name="NVIDIA: Nemotron Nano 12B 2 VL (free)",
              supports_vision=True, context_length=128_000),
    ModelInfo(id="google/gemma-3-12b-it:free", name="Google: Gemma 3 12B (free)",
              supports_vision=True, context_length=32_768),
    ModelInfo(id="google/gemma-3-4b-it:free", name="Google: Gemma 3 4B (free)",
              supports_vision=True, context_length=32_768),
    ModelInfo(id="openrouter/free", name="OpenRouter: Free router", supports_vision=False),
]


def model_supports_vision(model: dict) -> bool:
    architecture = model.get("architecture") or {}
    modality = architecture.get("modality") or ""
    input_modalities = architecture.get("input_modalities") or []
    model_id = model.get("id", "")
    return (
        "image" in modality.split("->")[0]
        or "image" in input_modalities
        or "vision" in model_id
        or "-vl" in model_id
    )


class OpenRouterProvider(LLMProvider):
    """Provider for the OpenRouter aggregator."""

    provider_id = "openrouter"
    descriptor = ProviderDescriptor(
        id="openrouter",
        display_name="OpenRouter",
        is_free=False,
        color_hint="purple",
        requires_api_key=True,
        setup_instructions=SetupInstructions(
            signup_url="https://openrouter.ai/signup",
            keys_url="https://openrouter.ai/keys",
            description="Unified API for many models. Paid service, but offers free models.",
        ),
    )
    builtin_models = DefaultModels(
        extraction="google/gemma-3-27b-it:free",
        solution="mistralai/mistral-small-3.1-24b-instruct:free",
        debugging="google/gemma-3-27b-it:free",
    )

    def __init__(self, config, **kwargs):
        super().__init__(config, **kwargs)
        self.base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        self.client = build_client(
            config.api_key,
            self.base_url,
            config.request_timeout,
            self._transport,
            default_headers=ATTRIBUTION_HEADERS,
        )

    async def aclose(self) -> None:
        await self.client.close()

    def get_static_models(self) -> list[ModelInfo]:
        return list(STATIC_MODELS)

    async def _fetch_models(self) -> list[ModelInfo]:
        data = await self._request_json(
            "GET", f"{self.base_url}/models", timeout=self.config.validation_timeout
        )
        return [
            ModelInfo(
                id=m["id"],
                name=m.get("name") or m["id"],
                supports_vision=model_supports_vision(m),
                context_length=m.get("context_length"),
                description=m.get("description"),
            )
            for m in data.get("data", [])
            if m.get("id") in ALLOWED_MODEL_IDS
        ]

    async def _check_credentials(self) -> bool:
        # /models is public; /key only answers for a valid key
        data = await self._request_json(
            "GET",
            f"{self.base_url}/key",
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            timeout=self.config.validation_timeout,
        )
        return "data" in data

    async def chat(
        self,
        messages: list[Message],
        model_id: str,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        options = options or ChatOptions()
        if not self.config.api_key:
            raise ProviderHTTPError(401, "OpenRouter API key is required", provider=self.provider_id)

        logger.info("[LLM] openrouter request model=%s", model_id)
        return await create_chat_completion(
            self.client,
            self.provider_id,
            model=model_id,
            messages=to_openai_messages(messages, self.format_image_for_provider),
            temperature=options.temperature if options.temperature is not None else 0.7,
            max_tokens=options.max_tokens or 4096,
        )
