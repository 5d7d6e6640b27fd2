"""
In-memory store - A single-process stand-in for a realtime database.

Records are kept serialized, so every read hands out an independent
snapshot exactly like a remote store would. Used by tests, the CLI and
single-node deployments.
"""

from __future__ import annotations
from typing import Any
import asyncio
import logging
import time

from .base import GameStore, Subscriber, Unsubscribe, notify_subscribers
from ..config import GameConfig
from ..engine_core.state import GameState
from ..errors import StoreConflictError

logger = logging.getLogger(__name__)


class InMemoryGameStore(GameStore):
    """
    Shared store backed by a dict.

    Supports compare-and-swap on version. With record_writes=True,
    write_log keeps every stored snapshot in order so tests can inspect
    the exact sequence of writes.
    """

    supports_cas = True

    def __init__(
        self,
        config: GameConfig | None = None,
        initial: GameState | None = None,
        record_writes: bool = False,
    ):
        super().__init__()
        self.config = config or GameConfig()
        self._lock = asyncio.Lock()
        self._subscribers: list[Subscriber] = []
        self.presence: dict[str, dict[str, Any]] = {}
        self.record_writes = record_writes
        self.write_log: list[GameState] = []

        state = initial or GameState.create(
            self.config.rows,
            self.config.cols,
            max_players=self.config.default_max_players,
        )
        self._record: dict[str, Any] = state.to_dict()

    @property
    def version(self) -> int:
        return int(self._record.get("version", 0))

    def _decode(self, record: dict[str, Any]) -> GameState:
        return GameState.from_dict(record, self.config.rows, self.config.cols)

    async def read(self) -> GameState:
        async with self._lock:
            return self._decode(self._record)

    async def write(
        self,
        state: GameState,
        expected_version: int | None = None,
    ) -> GameState:
        async with self._lock:
            current = self.version
            if expected_version is not None and expected_version != current:
                raise StoreConflictError(
                    "Record changed since it was read",
                    context={"expected": expected_version, "actual": current},
                )
            stored = state._copy_with(
                version=current + 1,
                last_update=state.last_update or time.time(),
            )
            self._record = stored.to_dict()
            if self.record_writes:
                self.write_log.append(stored)
            logger.debug("Stored version %d (%s)", stored.version, stored.status.value)

        await notify_subscribers(self._subscribers, stored)
        return stored

    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def set_presence(self, player_id: str, online: bool = True) -> None:
        if online:
            self.presence[player_id] = {"online": True, "last_seen": time.time()}
        else:
            self.presence.pop(player_id, None)
