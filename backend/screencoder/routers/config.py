"""
Config Router

Reads and updates the in-memory provider configuration. Updates are pushed
to the processing pipeline through the config store subscription.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from screencoder.core.config import AppConfig, ConfigStore, get_config_store
from screencoder.services.llm.registry import list_provider_ids

router = APIRouter()


class ConfigResponse(BaseModel):
    provider_id: str
    has_api_key: bool
    base_url: str | None
    ollama_base_url: str
    extraction_model: str
    solution_model: str
    debugging_model: str
    target_language: str

    @classmethod
    def from_config(cls, config: AppConfig) -> "ConfigResponse":
        return cls(
            provider_id=config.provider_id,
            has_api_key=bool(config.api_key),
            base_url=config.base_url,
            ollama_base_url=config.ollama_base_url,
            extraction_model=config.extraction_model,
            solution_model=config.solution_model,
            debugging_model=config.debugging_model,
            target_language=config.target_language,
        )


class ConfigUpdate(BaseModel):
    provider_id: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    ollama_base_url: str | None = None
    extraction_model: str | None = None
    solution_model: str | None = None
    debugging_model: str | None = None
    target_language: str | None = None


@router.get("", response_model=ConfigResponse)
async def read_config(store: ConfigStore = Depends(get_config_store)):
    """Return the current configuration; the API key itself is never echoed."""
    return ConfigResponse.from_config(store.config)


@router.put("", response_model=ConfigResponse)
async def update_config(
    update: ConfigUpdate,
    store: ConfigStore = Depends(get_config_store),
):
    """Apply a partial update. Subscribers such as the pipeline rebuild their adapter."""
    changes = update.model_dump(exclude_unset=True)
    provider_id = changes.get("provider_id")
    if provider_id is not None and provider_id not in list_provider_ids():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown provider: {provider_id}",
        )
    if changes.get("base_url") == "":
        changes["base_url"] = None
    if "ollama_base_url" in changes and not changes["ollama_base_url"]:
        # the Ollama URL is never unset, only replaced
        del changes["ollama_base_url"]

    config = store.update(**changes)
    return ConfigResponse.from_config(config)
