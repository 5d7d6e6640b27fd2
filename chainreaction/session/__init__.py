"""
Session Module - Clients synchronizing through the shared store.

- SyncCoordinator: the move protocol and lobby actions for one client
- SessionManager: connected clients, presence and reconnect handling

The engine itself is stateless between calls; everything durable lives
in the store.
"""

from .coordinator import SyncCoordinator, MoveResult, CascadeEvent, CascadeListener
from .manager import SessionManager, ClientSession, SessionState

__all__ = [
    "SyncCoordinator",
    "MoveResult",
    "CascadeEvent",
    "CascadeListener",
    "SessionManager",
    "ClientSession",
    "SessionState",
]
