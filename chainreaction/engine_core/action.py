"""
Action System - Actions, payloads, and results.

Actions represent:
1. Lobby actions (join, leave, start, reset, set max players)
2. Placement of a single atom

Cascades are not actions: the coordinator drives them wave by wave
after a successful placement.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActionType(Enum):
    """Types of actions in the system."""
    # Lobby
    JOIN = "join"
    LEAVE = "leave"
    START = "start"
    RESET = "reset"
    SET_MAX_PLAYERS = "set_max_players"

    # Gameplay
    PLACE = "place"


@dataclass
class ActionPayload:
    """
    Parameters of an action.

    Different action types use different fields; the reducer validates
    them.
    """
    player_id: str | None = None
    name: str | None = None
    row: int | None = None
    col: int | None = None
    max_players: int | None = None


@dataclass
class Action:
    """A complete action to be applied to the game state."""
    action_type: ActionType
    payload: ActionPayload

    @classmethod
    def join(cls, player_id: str, name: str) -> Action:
        return cls(
            action_type=ActionType.JOIN,
            payload=ActionPayload(player_id=player_id, name=name),
        )

    @classmethod
    def leave(cls, player_id: str) -> Action:
        return cls(
            action_type=ActionType.LEAVE,
            payload=ActionPayload(player_id=player_id),
        )

    @classmethod
    def start(cls, player_id: str) -> Action:
        return cls(
            action_type=ActionType.START,
            payload=ActionPayload(player_id=player_id),
        )

    @classmethod
    def reset(cls, player_id: str | None = None) -> Action:
        return cls(
            action_type=ActionType.RESET,
            payload=ActionPayload(player_id=player_id),
        )

    @classmethod
    def set_max_players(cls, player_id: str, max_players: int) -> Action:
        return cls(
            action_type=ActionType.SET_MAX_PLAYERS,
            payload=ActionPayload(player_id=player_id, max_players=max_players),
        )

    @classmethod
    def place(cls, player_id: str, row: int, col: int) -> Action:
        return cls(
            action_type=ActionType.PLACE,
            payload=ActionPayload(player_id=player_id, row=row, col=col),
        )


@dataclass
class ActionResult:
    """
    Result of applying an action.

    Contains:
    - Whether action succeeded
    - New state (if succeeded)
    - Error message and code (if failed)
    - Human-readable changes for logs and UI
    """
    success: bool
    new_state: Any | None = None  # GameState
    error: str | None = None
    error_code: str | None = None
    state_changes: list[str] = field(default_factory=list)

    @classmethod
    def failure(cls, error: str, error_code: str | None = None) -> ActionResult:
        """Create a failure result."""
        return cls(success=False, error=error, error_code=error_code)

    @classmethod
    def success_with_state(
        cls,
        state: Any,
        changes: list[str] | None = None,
    ) -> ActionResult:
        """Create a success result with new state."""
        return cls(
            success=True,
            new_state=state,
            state_changes=changes or [],
        )
