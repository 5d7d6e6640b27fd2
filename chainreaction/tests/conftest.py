"""
Pytest fixtures for Chain Reaction tests.
"""

import pytest

from ..config import GameConfig
from ..engine_core.board import Board, Cell
from ..engine_core.state import GameState, GameStatus, Player
from ..store.memory import InMemoryGameStore


@pytest.fixture
def config() -> GameConfig:
    """Default 9x6 config with pacing switched off."""
    return GameConfig(wave_delay=0.0, settle_delay=0.0, store_timeout=1.0)


@pytest.fixture
def empty_board() -> Board:
    return Board.empty(9, 6)


@pytest.fixture
def alice() -> Player:
    return Player(id="alice", name="Alice", color_index=0)


@pytest.fixture
def bob() -> Player:
    return Player(id="bob", name="Bob", color_index=1)


@pytest.fixture
def carol() -> Player:
    return Player(id="carol", name="Carol", color_index=2)


@pytest.fixture
def waiting_state(alice, bob) -> GameState:
    """Lobby with Alice (host) and Bob seated."""
    return GameState(
        status=GameStatus.WAITING,
        players=[alice, bob],
        host_id="alice",
        host_joined_at=1000.0,
        board=Board.empty(9, 6),
        last_update=1000.0,
    )


@pytest.fixture
def playing_state(alice, bob) -> GameState:
    """
    Two-player game past the opening round, Alice to move.

    Alice owns one atom at (0, 0); Bob owns one at (8, 5).
    """
    board = Board.empty(9, 6).with_cells({
        (0, 0): Cell(owner="alice", count=1),
        (8, 5): Cell(owner="bob", count=1),
    })
    return GameState(
        status=GameStatus.PLAYING,
        players=[alice, bob],
        host_id="alice",
        host_joined_at=1000.0,
        board=board,
        turn_index=0,
        moves_made=2,
        last_mover_id="bob",
        last_update=1000.0,
    )


@pytest.fixture
def opening_state(alice, bob) -> GameState:
    """Freshly started two-player game."""
    return GameState(
        status=GameStatus.PLAYING,
        players=[alice, bob],
        host_id="alice",
        host_joined_at=1000.0,
        board=Board.empty(9, 6),
        last_update=1000.0,
    )


@pytest.fixture
def store(config) -> InMemoryGameStore:
    """Empty WAITING game."""
    return InMemoryGameStore(config=config, record_writes=True)


@pytest.fixture
def playing_store(config, playing_state) -> InMemoryGameStore:
    return InMemoryGameStore(config=config, initial=playing_state, record_writes=True)
