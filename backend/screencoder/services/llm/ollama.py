"""
Ollama Provider

Local inference server, no API key:
- POST /api/chat (native schema, stream disabled)
- images as raw base64 strings in a per-message "images" array
- GET /api/tags for model discovery
"""

import logging
import time

from screencoder.services.llm.base import LLMProvider
from screencoder.core.errors import ProviderResponseError
from screencoder.services.llm.models import (
    ChatOptions,
    ChatResult,
    DefaultModels,
    ImagePart,
    Message,
    ModelInfo,
    ProviderDescriptor,
    SetupInstructions,
    TextPart,
    Usage,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"

VISION_MARKERS = ("vision", "llava", "bakllava", "-vl", ":vl", "moondream", "minicpm-v")

STATIC_MODELS = [
    ModelInfo(id="llama3.2-vision", name="llama3.2-vision", supports_vision=True,
              description="Meta Llama 3.2 Vision 11B"),
    ModelInfo(id="llava", name="llava", supports_vision=True,
              description="LLaVA multimodal model"),
    ModelInfo(id="qwen2.5-coder", name="qwen2.5-coder", supports_vision=False,
              description="Qwen 2.5 Coder, text only"),
]


def supports_vision(model_name: str) -> bool:
    name = model_name.lower()
    return any(marker in name for marker in VISION_MARKERS)


class OllamaProvider(LLMProvider):
    """Provider for a local Ollama server."""

    provider_id = "ollama"
    descriptor = ProviderDescriptor(
        id="ollama",
        display_name="Ollama",
        is_free=True,
        color_hint="indigo",
        requires_api_key=False,
        setup_instructions=SetupInstructions(
            signup_url="https://ollama.com",
            keys_url=None,
            description="FREE & LOCAL - Run models locally. No API key needed, but requires Ollama installation",
        ),
    )
    builtin_models = DefaultModels(
        extraction="llama3.2-vision",
        solution="qwen2.5-coder",
        debugging="llama3.2-vision",
    )

    def __init__(self, config, **kwargs):
        super().__init__(config, **kwargs)
        self.base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")

    def get_static_models(self) -> list[ModelInfo]:
        return list(STATIC_MODELS)

    async def _fetch_models(self) -> list[ModelInfo]:
        data = await self._request_json(
            "GET", f"{self.base_url}/api/tags", timeout=self.config.validation_timeout
        )
        models = []
        for item in data.get("models", []):
            name = item.get("name")
            if not name:
                continue
            size_gb = (item.get("size") or 0) / 1e9
            models.append(
                ModelInfo(
                    id=name,
                    name=name,
                    supports_vision=supports_vision(name),
                    description=f"Ollama model, size: {size_gb:.1f} GB",
                )
            )
        return models

    def format_image_for_provider(self, base64_image: str, mime_type: str = "image/png") -> str:
        # Ollama wants bare base64, no data-URL prefix
        return base64_image

    def _to_native_messages(self, messages: list[Message]) -> list[dict]:
        native = []
        for msg in messages:
            if isinstance(msg.content, str):
                native.append({"role": msg.role, "content": msg.content})
                continue

            texts = [p.text for p in msg.content if isinstance(p, TextPart)]
            images = [
                self.format_image_for_provider(p.data, p.mime_type)
                for p in msg.content
                if isinstance(p, ImagePart)
            ]
            entry = {"role": msg.role, "content": "\n".join(texts).strip()}
            if images:
                entry["images"] = images
            native.append(entry)
        return native

    async def chat(
        self,
        messages: list[Message],
        model_id: str,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        options = options or ChatOptions()
        payload = {
            "model": model_id,
            "messages": self._to_native_messages(messages),
            "stream": False,
            "keep_alive": 0,  # unload the model right after answering
            "options": {
                "temperature": options.temperature if options.temperature is not None else 0.7,
                "num_predict": options.max_tokens or 16000,
            },
        }

        logger.info("[Ollama] Request to %s/api/chat with model %s", self.base_url, model_id)
        start = time.monotonic()
        data = await self._request_json("POST", f"{self.base_url}/api/chat", json=payload)
        logger.info("[Ollama] Response received in %d ms", (time.monotonic() - start) * 1000)

        content = (data.get("message") or {}).get("content")
        if not content:
            raise ProviderResponseError("Empty response from Ollama", self.provider_id)

        usage = None
        if "prompt_eval_count" in data or "eval_count" in data:
            usage = Usage(
                prompt_tokens=data.get("prompt_eval_count", 0),
                completion_tokens=data.get("eval_count", 0),
            )
        return ChatResult(content=content, usage=usage)
