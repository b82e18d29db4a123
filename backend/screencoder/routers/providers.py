"""
Providers Router

Lists the registered LLM backends and lets the settings UI load model lists
and check API keys before saving them.
"""

from functools import lru_cache

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from screencoder.core.config import get_settings
from screencoder.core.errors import ConfigurationError
from screencoder.services.llm.base import LLMProvider
from screencoder.services.llm.models import ModelInfo, ProviderConfig
from screencoder.services.llm.registry import (
    ProviderDetails,
    create_provider,
    get_all_providers_with_details,
)

router = APIRouter()


class ProviderCredentials(BaseModel):
    api_key: str = ""
    base_url: str | None = None


class ModelsRequest(ProviderCredentials):
    refresh: bool = False


class ValidationResponse(BaseModel):
    valid: bool
    error: str | None = None


@lru_cache(maxsize=32)
def _adapter(provider_id: str, api_key: str, base_url: str | None) -> LLMProvider:
    # Adapters are reused per credential set so their model caches survive between requests
    settings = get_settings()
    config = ProviderConfig(
        api_key=api_key,
        base_url=base_url,
        request_timeout=settings.chat_timeout,
        validation_timeout=settings.validation_timeout,
        models_cache_ttl=settings.models_cache_ttl,
    )
    return create_provider(provider_id, config)


def get_adapter(provider_id: str, credentials: ProviderCredentials) -> LLMProvider:
    try:
        return _adapter(provider_id, credentials.api_key, credentials.base_url or None)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("", response_model=list[ProviderDetails])
async def list_providers():
    """Return every provider with its descriptor and model list."""
    return await get_all_providers_with_details()


@router.post("/{provider_id}/models", response_model=list[ModelInfo])
async def get_provider_models(provider_id: str, request: ModelsRequest):
    """Return the models of one provider, using the given credentials."""
    adapter = get_adapter(provider_id, request)
    return await adapter.get_available_models(refresh=request.refresh)


@router.post("/{provider_id}/validate", response_model=ValidationResponse)
async def validate_provider_key(provider_id: str, request: ProviderCredentials):
    """Check an API key with the cheapest authenticated call the backend offers."""
    adapter = get_adapter(provider_id, request)
    if adapter.requires_api_key and not request.api_key.strip():
        return ValidationResponse(valid=False, error="API key is required")
    if await adapter.validate_api_key():
        return ValidationResponse(valid=True)
    return ValidationResponse(
        valid=False,
        error=f"Invalid {adapter.descriptor.display_name} API key or the service is unreachable",
    )
