"""
Session Manager - Tracks the clients connected to one shared game.

A client session is one connection of one player:
- Created when a client connects (with an identity or a generated one)
- Owns that client's SyncCoordinator (and so its move guard)
- Registers a presence cleanup with the store
- Destroyed on disconnect

Sessions are EPHEMERAL. The only durable state is the shared game
record in the store.

RECONNECT:
A client that connects while the record shows a half-resolved cascade
finishes it before doing anything else.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import logging
import time
import uuid

from ..config import GameConfig
from ..engine_core.state import GameStatus, generate_player_id
from ..store.base import GameStore
from .coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """State of a client session."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass
class ClientSession:
    """One connected client."""
    session_id: str
    player_id: str
    coordinator: SyncCoordinator
    created_at: float
    state: SessionState = SessionState.CONNECTED
    metadata: dict[str, Any] = field(default_factory=dict)

    def is_active(self) -> bool:
        return self.state == SessionState.CONNECTED


class SessionManager:
    """
    Manages client sessions for one shared game record.

    No persistence - sessions are in-memory only.
    """

    def __init__(
        self,
        store: GameStore,
        config: GameConfig | None = None,
        leave_on_disconnect: bool = True,
    ):
        self.store = store
        self.config = config or GameConfig()
        self.leave_on_disconnect = leave_on_disconnect
        self._sessions: dict[str, ClientSession] = {}

    async def connect(self, player_id: str | None = None) -> ClientSession:
        """
        Open a session for player_id (generated when missing).

        If the shared record has a stalled cascade, it is resolved before
        the session is returned.
        """
        player_id = player_id or generate_player_id()
        coordinator = SyncCoordinator(self.store, self.config)
        session = ClientSession(
            session_id=str(uuid.uuid4()),
            player_id=player_id,
            coordinator=coordinator,
            created_at=time.time(),
        )
        self._sessions[session.session_id] = session

        await self.store.set_presence(player_id, online=True)
        self.store.on_disconnect(player_id, lambda: self._on_disconnect(player_id))

        state = await coordinator.refresh()
        if state.has_pending_explosion():
            logger.info("Found a stalled cascade on connect; resolving it")
            await coordinator.resume_cascade(player_id)

        logger.info("Client %s connected as %s", session.session_id, player_id)
        return session

    async def _on_disconnect(self, player_id: str) -> None:
        """Free the lobby seat of a player who dropped before the game started."""
        if not self.leave_on_disconnect:
            return
        coordinator = SyncCoordinator(self.store, self.config)
        state = await coordinator.refresh()
        if state.status == GameStatus.WAITING and state.get_player(player_id):
            await coordinator.leave(player_id)

    def get_session(self, session_id: str) -> ClientSession | None:
        """Get a session by ID."""
        return self._sessions.get(session_id)

    def find_by_player(self, player_id: str) -> ClientSession | None:
        for session in self._sessions.values():
            if session.player_id == player_id and session.is_active():
                return session
        return None

    async def end_session(self, session_id: str) -> None:
        """
        Close a session and run the player's disconnect cleanup.

        The game record is not touched beyond what the cleanup does.
        """
        session = self._sessions.pop(session_id, None)
        if session:
            session.state = SessionState.DISCONNECTED
            session.coordinator.detach()
            if not self.find_by_player(session.player_id):
                await self.store.disconnect(session.player_id)
            logger.info("Client %s disconnected", session_id)

    def list_active_sessions(self) -> list[str]:
        """List IDs of active sessions."""
        return [
            sid for sid, session in self._sessions.items()
            if session.is_active()
        ]

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.end_session(session_id)
