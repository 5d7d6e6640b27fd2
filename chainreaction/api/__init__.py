"""
API Module - Client interface to the shared game.

Exposes the engine via REST and WebSocket. A client:
1. Joins the lobby with a player id and a name
2. Waits for the host to start the game
3. Places atoms on its turn
4. Watches cascades arrive over the WebSocket

All durable state is the shared game record in the store.
"""

from .schemas import (
    # Requests
    JoinRequest,
    PlayerRequest,
    MaxPlayersRequest,
    MoveRequest,
    ResumeRequest,
    # Responses
    ActionResponse,
    MoveResponse,
    GameStateResponse,
    ErrorResponse,
    HealthResponse,
    # Shared
    CellInfo,
    PlayerInfo,
    CascadeEventInfo,
    ErrorCode,
)
from .service import GameService, state_to_response
from .app import create_app

__all__ = [
    # Requests
    "JoinRequest",
    "PlayerRequest",
    "MaxPlayersRequest",
    "MoveRequest",
    "ResumeRequest",
    # Responses
    "ActionResponse",
    "MoveResponse",
    "GameStateResponse",
    "ErrorResponse",
    "HealthResponse",
    # Shared
    "CellInfo",
    "PlayerInfo",
    "CascadeEventInfo",
    "ErrorCode",
    # Service
    "GameService",
    "state_to_response",
    "create_app",
]
