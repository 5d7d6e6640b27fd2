"""
Store Module - Backends for the shared game record.

- GameStore: abstract read/write/subscribe/presence interface
- InMemoryGameStore: single process, compare-and-swap on version
- RedisGameStore: Redis key + pub/sub channel (imported lazily)
"""

from __future__ import annotations

from .base import GameStore, Subscriber, Unsubscribe
from .memory import InMemoryGameStore
from ..config import (
    GameConfig,
    CHAINREACTION_STORE,
    CHAINREACTION_REDIS_URL,
    CHAINREACTION_GAME_KEY,
)
from ..errors import ConfigurationError


def create_store(
    backend: str | None = None,
    config: GameConfig | None = None,
) -> GameStore:
    """Build the store named by backend (or CHAINREACTION_STORE)."""
    backend = (backend or CHAINREACTION_STORE).lower()
    if backend == "memory":
        return InMemoryGameStore(config=config)
    if backend == "redis":
        from .redis_store import RedisGameStore
        return RedisGameStore.from_url(
            CHAINREACTION_REDIS_URL, key=CHAINREACTION_GAME_KEY, config=config
        )
    raise ConfigurationError(f"Unknown store backend: {backend}")


__all__ = [
    "GameStore",
    "Subscriber",
    "Unsubscribe",
    "InMemoryGameStore",
    "create_store",
]
