"""
Game State - The single shared record every client reads and writes.

Design principles:
- Immutable-friendly: all mutations return new state
- Serializable: to_dict()/from_dict() match the store record
- Tolerant decoding: a sparse record from the store decodes with defaults
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import random
import string
import time

from .board import Board, DEFAULT_ROWS, DEFAULT_COLS
from ..errors import InvalidStateError


class GameStatus(Enum):
    """High-level game status."""
    WAITING = "WAITING"
    PLAYING = "PLAYING"
    FINISHED = "FINISHED"


@dataclass(frozen=True)
class PlayerColor:
    primary: str
    glow: str
    name: str


PLAYER_COLORS = (
    PlayerColor("#ff4444", "rgba(255, 68, 68, 0.6)", "Red"),
    PlayerColor("#44ff44", "rgba(68, 255, 68, 0.6)", "Green"),
    PlayerColor("#4488ff", "rgba(68, 136, 255, 0.6)", "Blue"),
    PlayerColor("#ff8844", "rgba(255, 136, 68, 0.6)", "Orange"),
)


def generate_player_id() -> str:
    """Random 9-character id for clients without an identity provider."""
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(9))


@dataclass(frozen=True)
class Player:
    """A seated player. List position is turn order."""
    id: str
    name: str
    color_index: int = 0

    @property
    def color(self) -> PlayerColor:
        return PLAYER_COLORS[self.color_index % len(PLAYER_COLORS)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color_index": self.color_index,
            "color": self.color.primary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Player:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            color_index=int(data.get("color_index", data.get("colorIndex", 0)) or 0),
        )


def renumber_players(players: list[Player]) -> list[Player]:
    """Reassign color indices 0..k-1 in list order."""
    return [
        p if p.color_index == i else Player(id=p.id, name=p.name, color_index=i)
        for i, p in enumerate(players)
    ]


@dataclass
class GameState:
    """
    Complete game state at a point in time.

    version is owned by the store: it is bumped on every write and is
    what conditional writes compare against.
    """
    status: GameStatus = GameStatus.WAITING
    players: list[Player] = field(default_factory=list)
    host_id: str | None = None
    host_joined_at: float | None = None
    board: Board = field(default_factory=Board.empty)
    turn_index: int = 0
    winner_id: str | None = None
    moves_made: int = 0
    max_players: int = 4
    last_mover_id: str | None = None
    version: int = 0
    last_update: float = 0.0

    @classmethod
    def create(
        cls,
        rows: int = DEFAULT_ROWS,
        cols: int = DEFAULT_COLS,
        max_players: int = 4,
    ) -> GameState:
        """A fresh WAITING game with no players."""
        return cls(
            board=Board.empty(rows, cols),
            max_players=max_players,
            last_update=time.time(),
        )

    @property
    def current_player(self) -> Player | None:
        if self.status != GameStatus.PLAYING or not self.players:
            return None
        if not 0 <= self.turn_index < len(self.players):
            return None
        return self.players[self.turn_index]

    @property
    def num_players(self) -> int:
        return len(self.players)

    @property
    def winner(self) -> Player | None:
        return self.get_player(self.winner_id) if self.winner_id else None

    def get_player(self, player_id: str) -> Player | None:
        """Get player by ID."""
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def player_index(self, player_id: str) -> int | None:
        for i, p in enumerate(self.players):
            if p.id == player_id:
                return i
        return None

    def color_index_of(self, player_id: str) -> int | None:
        player = self.get_player(player_id)
        return player.color_index if player else None

    def has_pending_explosion(self) -> bool:
        """A cascade was interrupted and still needs resolving."""
        return self.status == GameStatus.PLAYING and self.board.has_explosion()

    def _copy_with(self, **kwargs) -> GameState:
        """Create a copy with some fields replaced."""
        return GameState(
            status=kwargs.get("status", self.status),
            players=kwargs.get("players", self.players),
            host_id=kwargs.get("host_id", self.host_id),
            host_joined_at=kwargs.get("host_joined_at", self.host_joined_at),
            board=kwargs.get("board", self.board),
            turn_index=kwargs.get("turn_index", self.turn_index),
            winner_id=kwargs.get("winner_id", self.winner_id),
            moves_made=kwargs.get("moves_made", self.moves_made),
            max_players=kwargs.get("max_players", self.max_players),
            last_mover_id=kwargs.get("last_mover_id", self.last_mover_id),
            version=kwargs.get("version", self.version),
            last_update=kwargs.get("last_update", self.last_update),
        )

    def touched(self, **kwargs) -> GameState:
        """_copy_with() that also stamps last_update."""
        kwargs.setdefault("last_update", time.time())
        return self._copy_with(**kwargs)

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "players": [p.to_dict() for p in self.players],
            "host_id": self.host_id,
            "host_joined_at": self.host_joined_at,
            "rows": self.board.rows,
            "cols": self.board.cols,
            "grid": self.board.to_rows(),
            "turn_index": self.turn_index,
            "winner": self.winner_id,
            "moves_made": self.moves_made,
            "max_players": self.max_players,
            "last_mover_id": self.last_mover_id,
            "version": self.version,
            "last_update": self.last_update,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any] | None,
        rows: int = DEFAULT_ROWS,
        cols: int = DEFAULT_COLS,
    ) -> GameState:
        """
        Decode a store record, filling gaps with defaults.

        A record with players but no host_joined_at falls back to its
        last_update, as older records never stored the join time.
        """
        if not data:
            return cls.create(rows, cols)

        rows = int(data.get("rows") or rows)
        cols = int(data.get("cols") or cols)
        players = [Player.from_dict(p) for p in (data.get("players") or []) if p]
        last_update = float(data.get("last_update") or time.time())
        host_joined_at = data.get("host_joined_at")
        if host_joined_at is None and players:
            host_joined_at = last_update

        try:
            status = GameStatus(data.get("status") or GameStatus.WAITING.value)
        except ValueError:
            raise InvalidStateError(
                "Unknown game status", context={"status": data.get("status")}
            )

        return cls(
            status=status,
            players=players,
            host_id=data.get("host_id") or None,
            host_joined_at=host_joined_at,
            board=Board.from_rows(data.get("grid"), rows, cols),
            turn_index=int(data.get("turn_index") or 0),
            winner_id=data.get("winner") or None,
            moves_made=int(data.get("moves_made") or 0),
            max_players=int(data.get("max_players") or 4),
            last_mover_id=data.get("last_mover_id") or None,
            version=int(data.get("version") or 0),
            last_update=last_update,
        )
