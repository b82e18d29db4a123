from functools import lru_cache
from typing import Callable
import logging

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Provider selection
    api_provider: str = "ollama"
    api_key: str = ""
    base_url: str = ""
    ollama_base_url: str = "http://localhost:11434"

    # Models per pipeline stage (empty = adapter default)
    extraction_model: str = ""
    solution_model: str = ""
    debugging_model: str = ""

    # Target language for generated solutions
    language: str = "java"

    # Timeouts (seconds)
    chat_timeout: float = 60.0
    validation_timeout: float = 5.0

    # Model list cache TTL (seconds)
    models_cache_ttl: float = 300.0

    # Upload settings
    max_upload_size: int = 10 * 1024 * 1024  # 10MB
    max_screenshots: int = 5

    # URLs
    frontend_url: str = "http://localhost:5173"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    def to_app_config(self) -> "AppConfig":
        """Build the initial configuration snapshot from the environment."""
        return AppConfig(
            provider_id=self.api_provider,
            api_key=self.api_key,
            base_url=self.base_url or None,
            ollama_base_url=self.ollama_base_url,
            extraction_model=self.extraction_model,
            solution_model=self.solution_model,
            debugging_model=self.debugging_model,
            target_language=self.language,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


class AppConfig(BaseModel):
    """Snapshot of the user's provider selection, as supplied by the settings UI."""

    model_config = ConfigDict(frozen=True)

    provider_id: str
    api_key: str = ""
    # Override for the selected provider; Ollama falls back to its own URL
    base_url: str | None = None
    ollama_base_url: str = "http://localhost:11434"
    extraction_model: str = ""
    solution_model: str = ""
    debugging_model: str = ""
    target_language: str = "java"

    def provider_base_url(self) -> str | None:
        """The URL the selected provider should talk to, or None for its default."""
        if self.base_url:
            return self.base_url
        if self.provider_id == "ollama":
            return self.ollama_base_url
        return None


ConfigListener = Callable[[AppConfig], None]


class ConfigStore:
    """
    In-memory configuration source.

    Holds the current AppConfig and notifies subscribers whenever a field
    changes. Persistence is left to the caller.
    """

    def __init__(self, initial: AppConfig):
        self._config = initial
        self._listeners: list[ConfigListener] = []

    @property
    def config(self) -> AppConfig:
        return self._config

    def subscribe(self, listener: ConfigListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes) -> AppConfig:
        """
        Apply changes, replace the snapshot and notify listeners.

        Switching provider without a new base_url clears the old override,
        which belonged to the previous backend.
        """
        if (
            "base_url" not in changes
            and changes.get("provider_id", self._config.provider_id) != self._config.provider_id
        ):
            changes["base_url"] = None
        new_config = self._config.model_copy(update=changes)
        if new_config == self._config:
            return self._config
        self._config = new_config
        logger.info("[Config] updated provider=%s", new_config.provider_id)
        for listener in list(self._listeners):
            listener(new_config)
        return new_config


@lru_cache()
def get_config_store() -> ConfigStore:
    """Process-wide config store seeded from the environment."""
    return ConfigStore(get_settings().to_app_config())
