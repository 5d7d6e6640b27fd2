"""
Board - Grid geometry, critical mass and atom placement.

Design principles:
- Immutable: every mutation returns a new Board
- Geometry is fixed at construction; only cell contents change
- Cell invariant: count == 0 <=> owner is None
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Iterator

from ..errors import InvalidMoveError, InvalidStateError

Position = tuple[int, int]

DEFAULT_ROWS = 9
DEFAULT_COLS = 6


@dataclass(frozen=True)
class Cell:
    """Contents of one grid cell."""
    owner: str | None = None
    count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    def to_dict(self) -> dict[str, Any]:
        return {"owner": self.owner, "count": self.count}


EMPTY_CELL = Cell()


@dataclass(frozen=True)
class Board:
    """
    An R x C grid of cells.

    Boards are values: place() and the cascade engine build new boards
    and leave the original untouched, so several in-flight simulations
    can share one snapshot.
    """
    rows: int
    cols: int
    cells: tuple[tuple[Cell, ...], ...]

    @classmethod
    def empty(cls, rows: int = DEFAULT_ROWS, cols: int = DEFAULT_COLS) -> Board:
        """Create a board with no atoms."""
        row = tuple(EMPTY_CELL for _ in range(cols))
        return cls(rows=rows, cols=cols, cells=tuple(row for _ in range(rows)))

    # =========================================================================
    # Geometry
    # =========================================================================

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.rows and 0 <= col < self.cols

    def neighbors(self, row: int, col: int) -> tuple[Position, ...]:
        """Orthogonal in-bounds neighbors, ordered up, down, left, right."""
        result = []
        if row > 0:
            result.append((row - 1, col))
        if row < self.rows - 1:
            result.append((row + 1, col))
        if col > 0:
            result.append((row, col - 1))
        if col < self.cols - 1:
            result.append((row, col + 1))
        return tuple(result)

    def critical_mass(self, row: int, col: int) -> int:
        """Atom count at which the cell explodes: 2 corner, 3 edge, 4 interior."""
        return len(self.neighbors(row, col))

    def positions(self) -> Iterator[Position]:
        """All positions in row-major order."""
        for row in range(self.rows):
            for col in range(self.cols):
                yield row, col

    # =========================================================================
    # Cell access
    # =========================================================================

    def cell(self, row: int, col: int) -> Cell:
        if not self.in_bounds(row, col):
            raise InvalidMoveError(
                "Cell is outside the board",
                context={"row": row, "col": col},
            )
        return self.cells[row][col]

    def is_valid_move(self, row: int, col: int, player_id: str) -> bool:
        """A player may place on an empty cell or one they already own."""
        if not self.in_bounds(row, col):
            return False
        owner = self.cells[row][col].owner
        return owner is None or owner == player_id

    def place(self, row: int, col: int, player_id: str) -> Board:
        """
        Return a new board with one more atom at (row, col).

        Raises InvalidMoveError if the cell belongs to another player.
        """
        current = self.cell(row, col)
        if current.owner is not None and current.owner != player_id:
            raise InvalidMoveError(
                "Cell is owned by another player",
                context={"row": row, "col": col, "owner": current.owner},
            )
        return self.with_cells({(row, col): Cell(owner=player_id, count=current.count + 1)})

    def with_cells(self, updates: dict[Position, Cell]) -> Board:
        """Return a copy with some cells replaced."""
        if not updates:
            return self
        grid = [list(row) for row in self.cells]
        for (row, col), cell in updates.items():
            grid[row][col] = cell
        return Board(rows=self.rows, cols=self.cols, cells=tuple(tuple(r) for r in grid))

    # =========================================================================
    # Queries
    # =========================================================================

    def is_critical(self, row: int, col: int) -> bool:
        return self.cells[row][col].count >= self.critical_mass(row, col)

    def critical_cells(self) -> list[Position]:
        """Cells at or above critical mass, row-major."""
        return [pos for pos in self.positions() if self.is_critical(*pos)]

    def has_explosion(self) -> bool:
        return any(self.is_critical(*pos) for pos in self.positions())

    def total_atoms(self) -> int:
        return sum(cell.count for row in self.cells for cell in row)

    def atoms_of(self, player_id: str) -> int:
        return sum(
            cell.count for row in self.cells for cell in row
            if cell.owner == player_id
        )

    def owners(self) -> set[str]:
        """Players that currently own at least one atom."""
        return {
            cell.owner for row in self.cells for cell in row
            if cell.owner is not None and cell.count > 0
        }

    def check_invariants(self) -> None:
        """Raise InvalidStateError if any cell breaks the count/owner rule."""
        if len(self.cells) != self.rows or any(len(r) != self.cols for r in self.cells):
            raise InvalidStateError(
                "Grid shape does not match board dimensions",
                context={"rows": self.rows, "cols": self.cols},
            )
        for row, col in self.positions():
            cell = self.cells[row][col]
            if cell.count < 0:
                raise InvalidStateError(
                    "Negative atom count", context={"row": row, "col": col}
                )
            if (cell.count == 0) != (cell.owner is None):
                raise InvalidStateError(
                    "Cell owner does not match atom count",
                    context={"row": row, "col": col, "owner": cell.owner, "count": cell.count},
                )

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_rows(self) -> list[list[dict[str, Any]]]:
        """Store format: a list of rows of {owner, count} records."""
        return [[cell.to_dict() for cell in row] for row in self.cells]

    @classmethod
    def from_rows(
        cls,
        data: list[list[dict[str, Any]] | None] | None,
        rows: int = DEFAULT_ROWS,
        cols: int = DEFAULT_COLS,
    ) -> Board:
        """
        Decode the store format.

        Tolerates the gaps a loosely typed store leaves behind: missing
        rows or cells decode as empty, and a cell with no atoms never
        keeps an owner.
        """
        data = data or []
        grid = []
        for r in range(rows):
            raw_row = data[r] if r < len(data) and data[r] else []
            row = []
            for c in range(cols):
                raw = raw_row[c] if c < len(raw_row) and raw_row[c] else {}
                count = int(raw.get("count") or 0)
                owner = raw.get("owner") or None
                if count <= 0:
                    row.append(EMPTY_CELL)
                else:
                    row.append(Cell(owner=owner, count=count))
            grid.append(tuple(row))
        return cls(rows=rows, cols=cols, cells=tuple(grid))

    def render(self, symbols: dict[str, str] | None = None) -> str:
        """ASCII view, one line per row: '.' for empty, else symbol+count."""
        symbols = symbols or {}
        lines = []
        for row in self.cells:
            parts = []
            for cell in row:
                if cell.is_empty:
                    parts.append(" .")
                else:
                    parts.append(f"{symbols.get(cell.owner, '?')}{cell.count}")
            lines.append(" ".join(parts))
        return "\n".join(lines)
