"""
Cascade Engine - Resolves chain reactions one wave at a time.

A wave explodes every critical cell of a single board snapshot at once.
Each source loses exactly its critical mass; every neighbor gains one
atom and is conquered by the player who caused the cascade. Atoms above
critical mass stay behind in the source, so a wave never creates or
destroys atoms.

Waves are yielded one by one so callers can persist and animate between
them. Nothing here sleeps or touches I/O.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator

from .board import Board, Cell, Position, EMPTY_CELL
from ..errors import CascadeLimitError

DEFAULT_MAX_WAVES = 1000


@dataclass(frozen=True)
class AtomFlight:
    """One atom travelling from an exploding cell to a neighbor."""
    source: Position
    target: Position
    color_index: int | None = None

    def to_dict(self) -> dict:
        return {
            "from": {"row": self.source[0], "col": self.source[1]},
            "to": {"row": self.target[0], "col": self.target[1]},
            "color_index": self.color_index,
        }


@dataclass
class WaveResult:
    """
    Outcome of one wave.

    exploded_cells is row-major; flights pair each exploded cell with
    each of its neighbors in neighbor order.
    """
    board: Board
    exploded_cells: list[Position] = field(default_factory=list)
    has_more_waves: bool = False
    flights: list[AtomFlight] = field(default_factory=list)


def resolve_wave(
    board: Board,
    triggering_player_id: str,
    color_index: int | None = None,
) -> WaveResult:
    """
    Explode every cell that is critical on the given board.

    Sources are chosen from the input snapshot before any atom moves, so
    one explosion cannot decide whether another cell explodes in the
    same wave.
    """
    sources = board.critical_cells()
    if not sources:
        return WaveResult(board=board)

    delta: dict[Position, int] = {}
    flights: list[AtomFlight] = []

    for row, col in sources:
        mass = board.critical_mass(row, col)
        delta[(row, col)] = delta.get((row, col), 0) - mass
        for neighbor in board.neighbors(row, col):
            delta[neighbor] = delta.get(neighbor, 0) + 1
            flights.append(AtomFlight((row, col), neighbor, color_index))

    # Every touched cell is a source or a neighbor of one; whatever is
    # left in it now belongs to the triggering player.
    updates: dict[Position, Cell] = {}
    for (row, col), change in delta.items():
        count = board.cells[row][col].count + change
        if count <= 0:
            updates[(row, col)] = EMPTY_CELL
        else:
            updates[(row, col)] = Cell(owner=triggering_player_id, count=count)

    new_board = board.with_cells(updates)
    return WaveResult(
        board=new_board,
        exploded_cells=sources,
        has_more_waves=new_board.has_explosion(),
        flights=flights,
    )


def resolve_cascade(
    board: Board,
    triggering_player_id: str,
    color_index: int | None = None,
    max_waves: int | None = None,
) -> Iterator[WaveResult]:
    """
    Yield wave results until the board settles.

    The next wave is only computed after the caller resumes the
    generator. Raises CascadeLimitError once max_waves waves have been
    yielded and the board is still critical.
    """
    limit = max_waves or DEFAULT_MAX_WAVES
    current = board
    waves = 0
    while current.has_explosion():
        if waves >= limit:
            raise CascadeLimitError(
                f"Cascade did not settle within {limit} waves",
                board=current,
                waves=waves,
            )
        result = resolve_wave(current, triggering_player_id, color_index)
        waves += 1
        yield result
        current = result.board


def run_cascade(
    board: Board,
    triggering_player_id: str,
    color_index: int | None = None,
    max_waves: int | None = None,
) -> tuple[Board, list[WaveResult]]:
    """Resolve a whole cascade at once. Returns (final board, waves)."""
    waves = list(resolve_cascade(board, triggering_player_id, color_index, max_waves))
    final = waves[-1].board if waves else board
    return final, waves
