"""
Single-slot TTL cache for a provider's model list.

Each adapter instance owns one ModelCache. Entries expire by time only; a
failed fetch never populates the slot.
"""

import asyncio
import time
from typing import Awaitable, Callable

from screencoder.services.llm.models import ModelInfo

DEFAULT_TTL_SECONDS = 300.0


class ModelCache:
    """asyncio-safe single-slot cache for `list[ModelInfo]`."""

    def __init__(
        self,
        ttl_sec: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_sec
        self._clock = clock
        self._models: list[ModelInfo] | None = None
        self._fetched_at: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def is_fresh(self) -> bool:
        return self._models is not None and (self._clock() - self._fetched_at) < self._ttl

    def peek(self) -> list[ModelInfo] | None:
        """Return the cached models if still fresh, without fetching."""
        return list(self._models) if self.is_fresh() else None

    def invalidate(self) -> None:
        self._models = None
        self._fetched_at = 0.0

    async def fetch(
        self,
        fetch_fn: Callable[[], Awaitable[list[ModelInfo]]],
        force: bool = False,
    ) -> list[ModelInfo]:
        """
        Return cached models, or call fetch_fn and cache its result.

        Args:
            fetch_fn: Coroutine factory producing the model list
            force: Skip the freshness check and replace the cached value

        Returns:
            The model list (a copy; callers may mutate it freely)
        """
        async with self._lock:
            if not force and self.is_fresh():
                return list(self._models)

            # If fetch_fn raises, the slot keeps its previous contents
            models = await fetch_fn()
            self._models = list(models)
            self._fetched_at = self._clock()
            return list(self._models)
