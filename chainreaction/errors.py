"""
Chain Reaction Error Hierarchy

Every exception raised by the engine, the store backends and the
coordinator inherits from ChainReactionError, so callers can catch the
whole family in one place.

Usage:
    from chainreaction.errors import InvalidMoveError

    try:
        board = board.place(row, col, player_id)
    except InvalidMoveError as e:
        logger.info("Rejected move: %s", e.message)
"""

from __future__ import annotations
from typing import Any

__all__ = [
    "ChainReactionError",
    # Rule errors
    "RulesViolationError",
    "InvalidMoveError",
    "NotYourTurnError",
    "GameNotPlayingError",
    "BusyError",
    "LobbyError",
    # State errors
    "InvalidStateError",
    "CascadeLimitError",
    # Store errors
    "StoreError",
    "StoreTimeoutError",
    "StoreConflictError",
    # Configuration
    "ConfigurationError",
]


class ChainReactionError(Exception):
    """Base exception for all Chain Reaction errors.

    Attributes:
        code: Machine-readable error code
        message: Human-readable description
        context: Extra values for debugging (row, col, player_id, ...)
    """
    code: str = "CHAIN_REACTION_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"[{self.code}] {self.message} ({ctx})"
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Game Rules Errors
# =============================================================================


class RulesViolationError(ChainReactionError):
    """A request broke one of the game rules. Never written to the store."""
    code: str = "RULES_VIOLATION"


class InvalidMoveError(RulesViolationError):
    """Target cell is owned by another player or lies outside the board."""
    code: str = "INVALID_MOVE"


class NotYourTurnError(RulesViolationError):
    code: str = "NOT_YOUR_TURN"


class GameNotPlayingError(RulesViolationError):
    code: str = "GAME_NOT_PLAYING"


class BusyError(RulesViolationError):
    """A move is already in flight for this client."""
    code: str = "BUSY"


class LobbyError(RulesViolationError):
    """Join, leave, start or max-players request rejected."""
    code: str = "LOBBY_ERROR"


# =============================================================================
# State Errors
# =============================================================================


class InvalidStateError(ChainReactionError):
    """A board or record breaks a structural invariant."""
    code: str = "INVALID_STATE"


class CascadeLimitError(ChainReactionError):
    """A cascade did not settle within the configured number of waves.

    Attributes:
        board: The board after the last resolved wave
        waves: Number of waves resolved before giving up
    """
    code: str = "CASCADE_LIMIT"

    def __init__(self, message: str, board: Any = None, waves: int = 0):
        super().__init__(message, context={"waves": waves})
        self.board = board
        self.waves = waves


# =============================================================================
# Store Errors
# =============================================================================


class StoreError(ChainReactionError):
    """The shared store failed to read or write."""
    code: str = "STORE_ERROR"


class StoreTimeoutError(StoreError):
    code: str = "STORE_TIMEOUT"


class StoreConflictError(StoreError):
    """A conditional write saw a newer version than expected."""
    code: str = "STORE_CONFLICT"


class ConfigurationError(ChainReactionError):
    code: str = "CONFIGURATION_ERROR"
