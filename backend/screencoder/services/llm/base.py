"""
Abstract base class for all LLM providers.

Each provider implements the API-specific translation layer: model discovery,
credential checks, message/image encoding and the chat call itself.
Prompting, parsing and failure classification are handled by the orchestrator.

Only `chat` is allowed to raise. Model listing and key validation degrade to a
safe default (static model table / False) on any error.
"""

from abc import ABC, abstractmethod
from typing import Any, Literal
import logging

import httpx

from screencoder.core.errors import (
    ProviderHTTPError,
    ProviderRequestError,
    ProviderResponseError,
)
from screencoder.services.llm.cache import ModelCache
from screencoder.services.llm.models import (
    ChatOptions,
    ChatResult,
    DefaultModels,
    Message,
    ModelInfo,
    ProviderConfig,
    ProviderDescriptor,
    TextPart,
)

logger = logging.getLogger(__name__)

Stage = Literal["extraction", "solution", "debugging"]


class LLMProvider(ABC):
    """Abstract base class for all LLM providers."""

    provider_id: str = "base"
    descriptor: ProviderDescriptor
    # Built-in model ids used when a ProviderConfig slot is empty
    builtin_models: DefaultModels = DefaultModels()

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        cache_ttl: float | None = None,
    ):
        self.config = config
        self._transport = transport
        self._models_cache = ModelCache(
            ttl_sec=cache_ttl if cache_ttl is not None else config.models_cache_ttl
        )

    # ── Contract ──────────────────────────────────────────────────────────────

    def get_provider_descriptor(self) -> ProviderDescriptor:
        return self.descriptor

    @property
    def requires_api_key(self) -> bool:
        """Whether this instance needs a key; adapters may decide per configuration."""
        return self.descriptor.requires_api_key

    async def get_available_models(self, refresh: bool = False) -> list[ModelInfo]:
        """
        Return the backend's models, live if possible, static otherwise.

        Args:
            refresh: Bypass the cache and replace it with a fresh result

        Returns:
            Non-empty list of ModelInfo (the static table on any failure)
        """
        try:
            models = await self._models_cache.fetch(self._fetch_models, force=refresh)
        except Exception as e:
            # failures are not cached, the next call retries discovery
            logger.warning(
                "[LLM] %s model discovery failed, using static list: %s", self.provider_id, e
            )
            return self.get_static_models()
        return models or self.get_static_models()

    async def validate_api_key(self) -> bool:
        """Cheapest authenticated round trip; never raises."""
        if not self.requires_api_key:
            return True
        if not self.config.api_key:
            return False
        try:
            return await self._check_credentials()
        except Exception as e:
            logger.info("[LLM] %s key validation failed: %s", self.provider_id, e)
            return False

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        model_id: str,
        options: ChatOptions | None = None,
    ) -> ChatResult:
        """
        Send a chat request and return the raw text response.

        Args:
            messages: Ordered conversation; only user turns may carry images
            model_id: The API model identifier, used verbatim
            options: Sampling temperature and token budget

        Returns:
            ChatResult with the response text and token usage when reported

        Raises:
            ProviderHTTPError: Non-success HTTP status (carries status_code)
            ProviderRequestError: No response (connect failure, timeout)
            ProviderResponseError: Empty or malformed response body
        """
        ...

    def format_image_for_provider(self, base64_image: str, mime_type: str = "image/png") -> Any:
        """Backend-specific content part for one image (OpenAI data-URL form by default)."""
        return {
            "type": "image_url",
            "image_url": {"url": f"data:{mime_type};base64,{base64_image}"},
        }

    def resolve_model(self, stage: Stage) -> str:
        """Configured model for a pipeline stage, or this adapter's default."""
        configured = getattr(self.config.default_models, stage)
        return configured or getattr(self.builtin_models, stage)

    # ── Hooks for subclasses ──────────────────────────────────────────────────

    @abstractmethod
    async def _fetch_models(self) -> list[ModelInfo]:
        """Live model discovery. May raise; the caller falls back."""
        ...

    @abstractmethod
    def get_static_models(self) -> list[ModelInfo]:
        """Hard-coded model table used when discovery fails."""
        ...

    async def _check_credentials(self) -> bool:
        """Authenticated probe for keyed backends. May raise."""
        return True

    async def aclose(self) -> None:
        """Release long-lived clients. Adapters that open per-request clients have none."""

    # ── Shared helpers ────────────────────────────────────────────────────────

    def _http_client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout if timeout is not None else self.config.request_timeout,
            transport=self._transport,
        )

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        json: dict | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict:
        """Perform one HTTP call and return the decoded JSON object body."""
        try:
            async with self._http_client(timeout) as client:
                response = await client.request(
                    method, url, json=json, headers=headers, params=params
                )
        except httpx.TimeoutException as e:
            raise ProviderRequestError(f"Request timed out: {e}", self.provider_id) from e
        except httpx.TransportError as e:
            raise ProviderRequestError(f"Request failed: {e}", self.provider_id) from e

        self._raise_for_status(response)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(
                f"Invalid JSON from {self.provider_id}: {response.text[:200]}", self.provider_id
            ) from e
        if not isinstance(data, dict):
            raise ProviderResponseError(
                f"Unexpected response shape from {self.provider_id}", self.provider_id
            )
        return data

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        raise ProviderHTTPError(
            response.status_code, _extract_error_message(response), provider=self.provider_id
        )

    @staticmethod
    def _fold_system_messages(messages: list[Message]) -> list[Message]:
        """
        Merge system messages into the first user turn.

        For backends without a system role. System text is prepended to the
        first following user message so the original ordering is preserved;
        a trailing system message with no user turn after it becomes a user turn.
        """
        folded: list[Message] = []
        pending: list[str] = []
        for msg in messages:
            if msg.role == "system":
                pending.append(msg.text)
                continue
            if pending and msg.role == "user":
                prefix = "\n\n".join(pending)
                if isinstance(msg.content, str):
                    content = f"{prefix}\n\n{msg.content}"
                else:
                    content = [TextPart(text=prefix), *msg.content]
                msg = Message(role="user", content=content)
                pending = []
            folded.append(msg)
        if pending:
            folded.append(Message(role="user", content="\n\n".join(pending)))
        return folded


def _extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return response.text[:200] or response.reason_phrase
