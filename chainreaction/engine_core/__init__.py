"""
Engine Core - Deterministic Chain Reaction rules.

The engine is the pure part of the system:
1. Board geometry and atom placement
2. Wave-by-wave cascade resolution
3. Turn order, elimination and victory
4. Lobby and placement transitions via the reducer

Nothing in this package performs I/O or sleeps.
"""

from .board import Board, Cell, Position, EMPTY_CELL
from .cascade import AtomFlight, WaveResult, resolve_wave, resolve_cascade, run_cascade
from .turns import (
    MoveGuard,
    MovePhase,
    alive_players,
    can_check_victory,
    decided_winner,
    is_eliminated,
    next_turn,
    winner,
)
from .state import GameState, GameStatus, Player, PLAYER_COLORS, generate_player_id
from .action import Action, ActionType, ActionPayload, ActionResult
from .reducer import Reducer, apply_action

__all__ = [
    "Board",
    "Cell",
    "Position",
    "EMPTY_CELL",
    "AtomFlight",
    "WaveResult",
    "resolve_wave",
    "resolve_cascade",
    "run_cascade",
    "MoveGuard",
    "MovePhase",
    "alive_players",
    "can_check_victory",
    "decided_winner",
    "is_eliminated",
    "next_turn",
    "winner",
    "GameState",
    "GameStatus",
    "Player",
    "PLAYER_COLORS",
    "generate_player_id",
    "Action",
    "ActionType",
    "ActionPayload",
    "ActionResult",
    "Reducer",
    "apply_action",
]
