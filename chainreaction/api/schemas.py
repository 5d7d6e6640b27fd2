"""
Pydantic Schemas for API - Request/response models for OpenAPI.

Error Codes:
- INVALID_MOVE: Cell is owned by another player or off the board
- NOT_YOUR_TURN: Another player holds the turn
- GAME_NOT_PLAYING: The game has not started or is over
- BUSY: This client already has a move in flight
- LOBBY_ERROR: Join/leave/start/player-limit request rejected
- STORE_TIMEOUT: The shared store did not answer in time
- STORE_CONFLICT: Another client changed the game first
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field


# =============================================================================
# Enums
# =============================================================================

class GameStatus(str, Enum):
    """Game status values."""
    WAITING = "WAITING"
    PLAYING = "PLAYING"
    FINISHED = "FINISHED"


class ErrorCode(str, Enum):
    """Structured error codes."""
    INVALID_MOVE = "INVALID_MOVE"
    NOT_YOUR_TURN = "NOT_YOUR_TURN"
    GAME_NOT_PLAYING = "GAME_NOT_PLAYING"
    BUSY = "BUSY"
    LOBBY_ERROR = "LOBBY_ERROR"
    CASCADE_LIMIT = "CASCADE_LIMIT"
    STORE_ERROR = "STORE_ERROR"
    STORE_TIMEOUT = "STORE_TIMEOUT"
    STORE_CONFLICT = "STORE_CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# Shared Models
# =============================================================================

class CellInfo(BaseModel):
    """One grid cell."""
    owner: Optional[str] = None
    count: int = 0


class PlayerInfo(BaseModel):
    """Player information for display."""
    player_id: str
    name: str
    color_index: int
    color: str = Field(description="Primary display color, e.g. #ff4444")
    is_host: bool = False
    is_current_turn: bool = False
    is_eliminated: bool = False
    atom_count: int = 0


class PositionInfo(BaseModel):
    row: int
    col: int


class FlightInfo(BaseModel):
    """An atom moving from an exploding cell to a neighbor."""
    source: PositionInfo
    target: PositionInfo
    color_index: Optional[int] = None


class CascadeEventInfo(BaseModel):
    """One cascade wave, pushed over the WebSocket."""
    wave_index: int
    player_id: str
    exploded_cells: list[PositionInfo] = Field(default_factory=list)
    flights: list[FlightInfo] = Field(default_factory=list)


# =============================================================================
# Request Models
# =============================================================================

class JoinRequest(BaseModel):
    """Request to take a seat in the lobby."""
    player_id: str = Field(..., min_length=1, description="Stable opaque player id")
    name: str = Field(..., description="Display name (1-12 characters)")


class PlayerRequest(BaseModel):
    """Request that only identifies the caller (leave, start, reset)."""
    player_id: str = Field(..., min_length=1)


class MaxPlayersRequest(BaseModel):
    player_id: str = Field(..., min_length=1)
    max_players: int = Field(..., ge=2, le=4, description="Seats in the game (2-4)")


class MoveRequest(BaseModel):
    """Request to place one atom."""
    player_id: str = Field(..., min_length=1)
    row: int = Field(..., ge=0)
    col: int = Field(..., ge=0)


class ResumeRequest(BaseModel):
    player_id: Optional[str] = Field(None, description="Who is asking; logging only")


# =============================================================================
# Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str = Field(..., description="Human-readable error message")
    error_code: ErrorCode = Field(..., description="Machine-readable error code")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error context")
    api_version: str = Field("v1", description="API version")


class GameStateResponse(BaseModel):
    """Complete game state for display."""
    status: GameStatus
    players: list[PlayerInfo] = Field(default_factory=list)
    host_id: Optional[str] = None
    rows: int
    cols: int
    grid: list[list[CellInfo]] = Field(default_factory=list)
    turn_index: int = 0
    current_player_id: Optional[str] = None
    winner_id: Optional[str] = None
    moves_made: int = 0
    max_players: int = 4
    pending_explosion: bool = Field(
        False, description="A cascade was interrupted and awaits /resume"
    )
    version: int = 0
    last_update: float = 0.0


class ActionResponse(BaseModel):
    """Result of a lobby action."""
    success: bool
    changes: list[str] = Field(default_factory=list)
    game_state: Optional[GameStateResponse] = None


class MoveResponse(BaseModel):
    """Result of a move or resumed cascade."""
    success: bool
    waves: int = Field(0, description="Cascade waves resolved by this request")
    winner_id: Optional[str] = None
    resumed: bool = Field(False, description="A stalled cascade was finished instead of placing")
    changes: list[str] = Field(default_factory=list)
    game_state: Optional[GameStateResponse] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    service: str = "chainreaction-engine"
    version: str = "1.0.0"
