"""
Gemini Provider

Google Generative Language REST API:
- POST models/{model}:generateContent with contents/parts
- images as inlineData {mimeType, data}
- system messages folded into the first user turn
- API key passed as the `key` query parameter
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

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

STATIC_MODELS = [
    ModelInfo(id="gemini-2.5-flash", name="Gemini 2.5 Flash", supports_vision=True,
              context_length=1_000_000, description="Fast multimodal model with vision support"),
    ModelInfo(id="gemini-2.0-flash", name="Gemini 2.0 Flash", supports_vision=True,
              context_length=1_000_000, description="Fast, efficient multimodal model"),
    ModelInfo(id="gemini-1.5-pro", name="Gemini 1.5 Pro", supports_vision=True,
              context_length=2_000_000, description="Largest and most capable multimodal model"),
    ModelInfo(id="gemini-1.5-flash", name="Gemini 1.5 Flash", supports_vision=True,
              context_length=1_000_000, description="Balanced speed and capabilities"),
    ModelInfo(id="gemini-1.0-pro", name="Gemini 1.0 Pro", supports_vision=False,
              context_length=30_000, description="Legacy text-only model"),
]


class GeminiProvider(LLMProvider):
    """Provider for the Google Gemini generateContent API."""

    provider_id = "gemini"
    descriptor = ProviderDescriptor(
        id="gemini",
        display_name="Gemini",
        is_free=False,
        color_hint="blue",
        requires_api_key=True,
        setup_instructions=SetupInstructions(
            signup_url="https://aistudio.google.com/",
            keys_url="https://aistudio.google.com/app/apikey",
            description="Paid service - requires billing setup. Offers powerful multimodal models.",
        ),
    )
    builtin_models = DefaultModels(
        extraction="gemini-2.5-flash",
        solution="gemini-2.5-flash",
        debugging="gemini-2.5-flash",
    )

    def __init__(self, config, **kwargs):
        super().__init__(config, **kwargs)
        self.base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")

    def get_static_models(self) -> list[ModelInfo]:
        return list(STATIC_MODELS)

    async def _fetch_models(self) -> list[ModelInfo]:
        if not self.config.api_key:
            return []
        data = await self._request_json(
            "GET",
            f"{self.base_url}/models",
            params={"key": self.config.api_key},
            timeout=self.config.validation_timeout,
        )
        models = []
        for m in data.get("models", []):
            if "generateContent" not in (m.get("supportedGenerationMethods") or []):
                continue
            name = m.get("name", "")
            model_id = name.removeprefix("models/")
            description = m.get("description") or ""
            input_limit = m.get("inputTokenLimit") or 0
            models.append(
                ModelInfo(
                    id=model_id,
                    name=m.get("displayName") or model_id,
                    # The listing has no modality field; large-context models are multimodal
                    supports_vision=(
                        "vision" in description.lower()
                        or "vision" in model_id
                        or input_limit > 100_000
                    ),
                    context_length=input_limit or None,
                    description=description or None,
                )
            )
        return models

    async def _check_credentials(self) -> bool:
        await self._request_json(
            "GET",
            f"{self.base_url}/models",
            params={"key": self.config.api_key},
            timeout=self.config.validation_timeout,
        )
        return True

    def format_image_for_provider(self, base64_image: str, mime_type: str = "image/png") -> dict:
        return {"inlineData": {"mimeType": mime_type, "data": base64_image}}

    def _to_contents(self, messages: list[Message]) -> list[dict]:
        contents = []
        for msg in self._fold_system_messages(messages):
            role = "user" if msg.role == "user" else "model"
            if isinstance(msg.content, str):
                parts = [{"text": msg.content}] if msg.content else []
            else:
                parts = [
                    {"text": p.text}
                    if isinstance(p, TextPart)
                    else self.format_image_for_provider(p.data, p.mime_type)
                    for p in msg.content
                ]
            if parts:
                contents.append({"role": role, "parts": parts})
        return contents

    async def chat(
        self,
        messages: list[Message],
        model_id: str,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        options = options or ChatOptions()
        if not self.config.api_key:
            raise ProviderHTTPError(401, "Gemini API key is required", provider=self.provider_id)

        payload = {
            "contents": self._to_contents(messages),
            "generationConfig": {
                "temperature": options.temperature if options.temperature is not None else 0.7,
                "maxOutputTokens": options.max_tokens or 4096,
            },
        }

        logger.info("[LLM] gemini request model=%s", model_id)
        try:
            data = await self._request_json(
                "POST",
                f"{self.base_url}/models/{model_id}:generateContent",
                json=payload,
                params={"key": self.config.api_key},
            )
        except ProviderHTTPError as e:
            # Gemini reports a bad key as 400 INVALID_ARGUMENT
            if e.status_code == 400 and "API key not valid" in str(e):
                raise ProviderHTTPError(401, "API key not valid", provider=self.provider_id) from e
            raise

        candidates = data.get("candidates") or []
        parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
        text = "".join(p.get("text", "") for p in parts)
        if not text:
            reason = candidates[0].get("finishReason") if candidates else "no candidates"
            raise ProviderResponseError(
                f"Empty response from Gemini API ({reason})", self.provider_id
            )

        usage = None
        metadata = data.get("usageMetadata")
        if metadata:
            usage = Usage(
                prompt_tokens=metadata.get("promptTokenCount", 0),
                completion_tokens=metadata.get("candidatesTokenCount", 0),
            )
        return ChatResult(content=text, usage=usage)
