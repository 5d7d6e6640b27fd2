"""
Store Interface - The shared record every client synchronizes through.

The store is the only shared mutable resource. Writes replace the whole
record (last writer wins); backends that can compare versions honor
expected_version and raise StoreConflictError on a stale write.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Callable
import inspect
import logging

from ..engine_core.state import GameState

logger = logging.getLogger(__name__)

Subscriber = Callable[[GameState], Any]
Unsubscribe = Callable[[], None]
DisconnectCleanup = Callable[[], Any]


async def maybe_await(value: Any) -> Any:
    """Await value if it is awaitable; callbacks may be sync or async."""
    if inspect.isawaitable(value):
        return await value
    return value


class GameStore(ABC):
    """
    Abstract shared-state store.

    Subclasses implement read/write/subscribe. Presence handling
    (on_disconnect/disconnect) is best effort and shared here.
    """

    supports_cas: bool = False

    def __init__(self):
        self._disconnect_handlers: dict[str, list[DisconnectCleanup]] = {}

    @abstractmethod
    async def read(self) -> GameState:
        """Return the current snapshot."""

    @abstractmethod
    async def write(
        self,
        state: GameState,
        expected_version: int | None = None,
    ) -> GameState:
        """
        Replace the record. Returns the stored state with its new version.

        expected_version is only enforced when supports_cas is True.
        """

    @abstractmethod
    def subscribe(self, callback: Subscriber) -> Unsubscribe:
        """Call callback with every new snapshot. Returns an unsubscribe."""

    async def set_presence(self, player_id: str, online: bool = True) -> None:
        """Record whether a player is connected. Optional for backends."""

    def on_disconnect(self, player_id: str, cleanup: DisconnectCleanup) -> None:
        """Register cleanup to run when the player's connection drops."""
        self._disconnect_handlers.setdefault(player_id, []).append(cleanup)

    def cancel_on_disconnect(self, player_id: str) -> None:
        self._disconnect_handlers.pop(player_id, None)

    async def disconnect(self, player_id: str) -> None:
        """Run the player's registered cleanups and mark them offline."""
        handlers = self._disconnect_handlers.pop(player_id, [])
        for cleanup in handlers:
            try:
                await maybe_await(cleanup())
            except Exception:
                # Presence cleanup is best effort; one failing handler
                # must not stop the others.
                logger.warning("Disconnect cleanup failed for %s", player_id, exc_info=True)
        await self.set_presence(player_id, online=False)

    async def close(self) -> None:
        """Release backend resources."""


async def notify_subscribers(subscribers: list[Subscriber], state: GameState) -> None:
    """Deliver a snapshot to every subscriber, isolating failures."""
    for callback in list(subscribers):
        try:
            await maybe_await(callback(state))
        except Exception:
            logger.warning("Store subscriber raised", exc_info=True)
