"""
Turn & Victory Tracker - Turn order, elimination and the win condition.

Elimination only means something once every player has had a turn:
during the opening round most players own no atoms and would otherwise
look eliminated. can_check_victory() gates both skipping and winning.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from ..errors import BusyError

if TYPE_CHECKING:
    from .board import Board
    from .state import Player


def is_eliminated(board: Board, player_id: str) -> bool:
    """True iff the player owns no cell with atoms."""
    for row in board.cells:
        for cell in row:
            if cell.owner == player_id and cell.count > 0:
                return False
    return True


def alive_players(board: Board, players: Sequence[Player]) -> list[Player]:
    return [p for p in players if not is_eliminated(board, p.id)]


def winner(board: Board, players: Sequence[Player]) -> Player | None:
    """The sole surviving player, or None when zero or several remain."""
    alive = alive_players(board, players)
    if len(alive) == 1:
        return alive[0]
    return None


def can_check_victory(moves_made: int, player_count: int) -> bool:
    """Every player has placed at least once."""
    return moves_made >= player_count


def decided_winner(
    board: Board,
    players: Sequence[Player],
    moves_made: int,
) -> Player | None:
    """winner() behind the opening-round gate."""
    if not can_check_victory(moves_made, len(players)):
        return None
    return winner(board, players)


def next_turn(
    players: Sequence[Player],
    current_index: int,
    board: Board,
    moves_made: int,
) -> int:
    """
    Index of the player who moves next.

    Advances by one. Once the opening round is over, eliminated players
    are skipped, with at most len(players) skips.
    """
    count = len(players)
    if count == 0:
        return 0
    index = (current_index + 1) % count
    if not can_check_victory(moves_made, count):
        return index

    attempts = 0
    while attempts < count and is_eliminated(board, players[index].id):
        index = (index + 1) % count
        attempts += 1
    return index


# =============================================================================
# Per-client move phase
# =============================================================================


class MovePhase(Enum):
    """Where a client is inside one move."""
    IDLE = "idle"
    PLACING = "placing"
    CASCADING = "cascading"
    RESOLVING = "resolving"


@dataclass
class MoveGuard:
    """
    Non-reentrant move guard for one client.

    Usage:
        with guard.begin():
            guard.advance(MovePhase.CASCADING)
            ...

    begin() raises BusyError unless the guard is IDLE. The guard always
    returns to IDLE when the block exits, success or not.
    """
    phase: MovePhase = MovePhase.IDLE
    history: list[MovePhase] = field(default_factory=list)

    @property
    def is_busy(self) -> bool:
        return self.phase != MovePhase.IDLE

    def begin(self) -> MoveGuard:
        if self.is_busy:
            raise BusyError(
                "A move is already in progress",
                context={"phase": self.phase.value},
            )
        self.history = []
        self.advance(MovePhase.PLACING)
        return self

    def advance(self, phase: MovePhase) -> None:
        self.phase = phase
        self.history.append(phase)

    def __enter__(self) -> MoveGuard:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.phase = MovePhase.IDLE
