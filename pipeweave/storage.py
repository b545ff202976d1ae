"""Persistence interface for pipe state."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Storage(ABC):
    """Stores and retrieves per-pipe state."""

    @abstractmethod
    async def store_state(self, pipe_id: int, state: Any) -> None:
        """Persist ``state`` for ``pipe_id``, replacing any earlier state."""

    @abstractmethod
    async def retrieve_state(self, pipe_id: int) -> Any | None:
        """Return the stored state for ``pipe_id``, or None when absent."""