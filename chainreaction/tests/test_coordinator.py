"""
Tests for the sync coordinator (move protocol over a shared store).

Tests:
- Write sequence: checkpoint, one write per wave, final write
- Rejections never write
- Victory, concurrent finish and reset during a cascade
- Stalled cascades are resumed
- Store timeouts and conflicts
- Lobby actions and the session manager
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from ..config import GameConfig
from ..engine_core.board import Board, Cell, EMPTY_CELL
from ..engine_core.state import GameState, GameStatus
from ..engine_core.turns import MovePhase
from ..errors import StoreConflictError
from ..session import SessionManager, SyncCoordinator
from ..store.memory import InMemoryGameStore


class SlowStore(InMemoryGameStore):
    """Store whose reads never answer in time."""

    async def read(self) -> GameState:
        await asyncio.sleep(0.5)
        return await super().read()


class FlakyStore(InMemoryGameStore):
    """Store that reports a conflict on the first few writes."""

    def __init__(self, *args, conflicts: int = 1, **kwargs):
        super().__init__(*args, **kwargs)
        self.conflicts = conflicts

    async def write(self, state, expected_version=None):
        if self.conflicts:
            self.conflicts -= 1
            raise StoreConflictError("Simulated conflict")
        return await super().write(state, expected_version)


@pytest.fixture
def coordinator(playing_store, config) -> SyncCoordinator:
    return SyncCoordinator(playing_store, config)


@pytest.fixture
def pending_state(playing_state) -> GameState:
    """Alice placed a second corner atom but never resolved the cascade."""
    return playing_state.touched(
        board=playing_state.board.place(0, 0, "alice"),
        moves_made=3,
        last_mover_id="alice",
    )


class TestMoveProtocol:

    @pytest.mark.asyncio
    async def test_simple_move_writes_checkpoint_and_final(self, coordinator, playing_store):
        result = await coordinator.apply_move("alice", 4, 3)

        assert result.success
        assert result.waves == 0
        assert len(playing_store.write_log) == 2

        checkpoint, final = playing_store.write_log
        assert checkpoint.board.cell(4, 3) == Cell("alice", 1)
        assert checkpoint.moves_made == 3
        assert checkpoint.turn_index == 0
        assert final.turn_index == 1
        assert final.current_player.id == "bob"
        assert coordinator.phase == MovePhase.IDLE

    @pytest.mark.asyncio
    async def test_one_write_per_wave(self, coordinator, playing_store):
        result = await coordinator.apply_move("alice", 0, 0)

        assert result.success
        assert result.waves == 1
        assert len(playing_store.write_log) == 3

        checkpoint, wave, final = playing_store.write_log
        assert checkpoint.board.cell(0, 0) == Cell("alice", 2)
        assert checkpoint.has_pending_explosion()
        assert wave.board.cell(0, 0) == EMPTY_CELL
        assert wave.board.cell(0, 1) == Cell("alice", 1)
        assert wave.board.cell(1, 0) == Cell("alice", 1)
        assert wave.turn_index == 0
        assert final.turn_index == 1
        assert final.board == wave.board

    @pytest.mark.asyncio
    async def test_chained_cascade(self, config, playing_state):
        state = playing_state.touched(
            board=playing_state.board.with_cells({(0, 1): Cell("alice", 2)})
        )
        store = InMemoryGameStore(config=config, initial=state, record_writes=True)
        coordinator = SyncCoordinator(store, config)
        events = []
        coordinator.add_cascade_listener(events.append)

        result = await coordinator.apply_move("alice", 0, 0)

        assert result.waves == 2
        assert len(store.write_log) == 4
        assert [e.wave_index for e in events] == [1, 2]
        assert events[0].exploded_cells == [(0, 0)]
        assert events[1].exploded_cells == [(0, 1)]
        assert len(events[1].flights) == 3
        assert events[0].to_dict()["exploded_cells"] == [{"row": 0, "col": 0}]

        board = store.write_log[-1].board
        assert board.atoms_of("alice") == 4
        assert board.atoms_of("bob") == 1

    @pytest.mark.asyncio
    async def test_pacing_delays(self, playing_state):
        config = GameConfig(wave_delay=0.4, settle_delay=0.1)
        store = InMemoryGameStore(config=config, initial=playing_state, record_writes=True)
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        coordinator = SyncCoordinator(store, config, sleep=fake_sleep)
        await coordinator.apply_move("alice", 0, 0)
        assert delays == [0.4, 0.1]

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_stop_the_move(self, coordinator, playing_store):
        def broken(event):
            raise ValueError("animation failed")

        coordinator.add_cascade_listener(broken)
        result = await coordinator.apply_move("alice", 0, 0)
        assert result.success
        assert len(playing_store.write_log) == 3


class TestRejections:
    """Invalid moves are rejected before anything is written."""

    @pytest.mark.asyncio
    async def test_not_your_turn(self, coordinator, playing_store):
        result = await coordinator.apply_move("bob", 4, 3)
        assert not result.success
        assert result.error_code == "NOT_YOUR_TURN"
        assert playing_store.write_log == []

    @pytest.mark.asyncio
    async def test_cell_owned_by_opponent(self, coordinator, playing_store):
        result = await coordinator.apply_move("alice", 8, 5)
        assert result.error_code == "INVALID_MOVE"
        assert playing_store.write_log == []

    @pytest.mark.asyncio
    async def test_game_not_started(self, store, config):
        coordinator = SyncCoordinator(store, config)
        result = await coordinator.apply_move("alice", 0, 0)
        assert result.error_code == "GAME_NOT_PLAYING"
        assert store.write_log == []

    @pytest.mark.asyncio
    async def test_rejected_locally_after_observing(self, coordinator, playing_store):
        await coordinator.refresh()
        playing_store.read = AsyncMock(side_effect=AssertionError("should not read"))

        result = await coordinator.apply_move("bob", 4, 3)
        assert result.error_code == "NOT_YOUR_TURN"

    @pytest.mark.asyncio
    async def test_busy(self, coordinator, playing_store):
        coordinator.guard.advance(MovePhase.CASCADING)

        result = await coordinator.apply_move("alice", 4, 3)
        assert not result.success
        assert result.error_code == "BUSY"
        assert playing_store.write_log == []


class TestVictory:

    @pytest.mark.asyncio
    async def test_victory_ends_cascade_early(self, config, playing_state):
        # Bob's only cell is an edge cell one below critical; conquering
        # it leaves it critical but Bob is already out
        state = playing_state.touched(board=Board.empty(9, 6).with_cells({
            (0, 0): Cell("alice", 1),
            (0, 1): Cell("bob", 2),
        }))
        store = InMemoryGameStore(config=config, initial=state, record_writes=True)
        coordinator = SyncCoordinator(store, config)

        result = await coordinator.apply_move("alice", 0, 0)

        assert result.success
        assert result.winner_id == "alice"
        assert result.waves == 1
        assert len(store.write_log) == 2

        final = await store.read()
        assert final.status == GameStatus.FINISHED
        assert final.winner_id == "alice"
        assert final.board.cell(0, 1) == Cell("alice", 3)
        assert not final.has_pending_explosion()

    @pytest.mark.asyncio
    async def test_no_victory_in_opening_round(self, config, opening_state):
        store = InMemoryGameStore(config=config, initial=opening_state, record_writes=True)
        coordinator = SyncCoordinator(store, config)

        result = await coordinator.apply_move("alice", 4, 3)

        final = await store.read()
        assert result.winner_id is None
        assert final.status == GameStatus.PLAYING
        assert final.current_player.id == "bob"

    @pytest.mark.asyncio
    async def test_game_finished_elsewhere(self, playing_state):
        config = GameConfig(wave_delay=0.01, settle_delay=0.0)
        store = InMemoryGameStore(config=config, initial=playing_state, record_writes=True)

        async def finish_elsewhere(seconds):
            state = await store.read()
            await store.write(state.touched(status=GameStatus.FINISHED, winner_id="bob"))

        coordinator = SyncCoordinator(store, config, sleep=finish_elsewhere)
        result = await coordinator.apply_move("alice", 0, 0)

        assert result.success
        assert result.winner_id == "bob"
        # Checkpoint plus the other client's write, nothing after
        assert len(store.write_log) == 2
        assert (await store.read()).winner_id == "bob"

    @pytest.mark.asyncio
    async def test_reset_during_cascade(self, playing_state):
        config = GameConfig(wave_delay=0.01, settle_delay=0.0)
        store = InMemoryGameStore(config=config, initial=playing_state, record_writes=True)

        async def reset_elsewhere(seconds):
            state = await store.read()
            await store.write(GameState.create()._copy_with(version=state.version))

        coordinator = SyncCoordinator(store, config, sleep=reset_elsewhere)
        result = await coordinator.apply_move("alice", 0, 0)

        assert not result.success
        assert result.error_code == "GAME_NOT_PLAYING"
        assert (await store.read()).status == GameStatus.WAITING
        assert coordinator.phase == MovePhase.IDLE


class TestResume:

    @pytest.mark.asyncio
    async def test_resume_cascade(self, config, pending_state):
        store = InMemoryGameStore(config=config, initial=pending_state, record_writes=True)
        coordinator = SyncCoordinator(store, config)

        result = await coordinator.resume_cascade("bob")

        assert result.success
        assert result.resumed
        assert result.waves == 1
        final = await store.read()
        assert not final.has_pending_explosion()
        assert final.board.cell(0, 1) == Cell("alice", 1)
        assert final.current_player.id == "bob"
        assert final.moves_made == 3

    @pytest.mark.asyncio
    async def test_resume_without_pending_cascade(self, coordinator, playing_store):
        result = await coordinator.resume_cascade()
        assert result.success
        assert not result.resumed
        assert playing_store.write_log == []

    @pytest.mark.asyncio
    async def test_move_on_pending_board_resumes(self, config, pending_state):
        store = InMemoryGameStore(config=config, initial=pending_state, record_writes=True)
        coordinator = SyncCoordinator(store, config)

        result = await coordinator.apply_move("alice", 4, 3)

        assert result.success
        assert result.resumed
        final = await store.read()
        assert final.board.cell(4, 3) == EMPTY_CELL
        assert final.moves_made == 3

    @pytest.mark.asyncio
    async def test_other_player_waits_for_pending_cascade(self, config, pending_state):
        store = InMemoryGameStore(config=config, initial=pending_state, record_writes=True)
        coordinator = SyncCoordinator(store, config)

        result = await coordinator.apply_move("bob", 4, 3)

        assert not result.success
        assert result.error_code == "GAME_NOT_PLAYING"
        assert store.write_log == []


class TestStoreFailures:

    @pytest.mark.asyncio
    async def test_read_timeout(self, playing_state):
        config = GameConfig(wave_delay=0.0, settle_delay=0.0, store_timeout=0.05)
        store = SlowStore(config=config, initial=playing_state)
        coordinator = SyncCoordinator(store, config)

        result = await coordinator.apply_move("alice", 4, 3)

        assert not result.success
        assert result.error_code == "STORE_TIMEOUT"
        assert coordinator.phase == MovePhase.IDLE

    @pytest.mark.asyncio
    async def test_checkpoint_conflict(self, coordinator, playing_store):
        stale = await playing_store.read()
        await playing_store.write(stale.touched())
        playing_store.read = AsyncMock(return_value=stale)

        result = await coordinator.apply_move("alice", 4, 3)

        assert not result.success
        assert result.error_code == "STORE_CONFLICT"
        assert len(playing_store.write_log) == 1


class TestLobby:

    @pytest.mark.asyncio
    async def test_join_and_start(self, store, config):
        coordinator = SyncCoordinator(store, config)

        assert (await coordinator.join("alice", "Alice")).success
        assert (await coordinator.join("bob", "Bob")).success
        result = await coordinator.start("alice")

        assert result.success
        assert result.new_state.status == GameStatus.PLAYING
        assert result.new_state.version == 3
        assert coordinator.cached_state.version == 3

    @pytest.mark.asyncio
    async def test_rejected_action_does_not_write(self, store, config):
        coordinator = SyncCoordinator(store, config)
        result = await coordinator.start("alice")
        assert not result.success
        assert store.write_log == []

    @pytest.mark.asyncio
    async def test_rejoin_does_not_write(self, config, waiting_state):
        store = InMemoryGameStore(config=config, initial=waiting_state, record_writes=True)
        coordinator = SyncCoordinator(store, config)
        result = await coordinator.join("alice", "Alice")
        assert result.success
        assert store.write_log == []

    @pytest.mark.asyncio
    async def test_conflict_is_retried(self, config):
        store = FlakyStore(config=config, conflicts=2, record_writes=True)
        coordinator = SyncCoordinator(store, config)

        result = await coordinator.join("alice", "Alice")

        assert result.success
        assert len(store.write_log) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_conflicts(self, config):
        store = FlakyStore(config=config, conflicts=10, record_writes=True)
        coordinator = SyncCoordinator(store, config)

        result = await coordinator.join("alice", "Alice")

        assert not result.success
        assert result.error_code == "STORE_CONFLICT"


class TestSessionManager:

    @pytest.mark.asyncio
    async def test_connect_resolves_stalled_cascade(self, config, pending_state):
        store = InMemoryGameStore(config=config, initial=pending_state, record_writes=True)
        manager = SessionManager(store, config)

        session = await manager.connect("bob")

        assert session.player_id == "bob"
        assert store.presence["bob"]["online"]
        final = await store.read()
        assert not final.has_pending_explosion()
        assert final.current_player.id == "bob"

    @pytest.mark.asyncio
    async def test_disconnect_frees_lobby_seat(self, config, waiting_state):
        store = InMemoryGameStore(config=config, initial=waiting_state, record_writes=True)
        manager = SessionManager(store, config)

        session = await manager.connect("alice")
        await manager.end_session(session.session_id)

        state = await store.read()
        assert [p.id for p in state.players] == ["bob"]
        assert state.host_id == "bob"
        assert "alice" not in store.presence
        assert manager.list_active_sessions() == []

    @pytest.mark.asyncio
    async def test_disconnect_keeps_seat_while_playing(self, playing_store, config):
        manager = SessionManager(playing_store, config)

        session = await manager.connect("bob")
        await manager.end_session(session.session_id)

        state = await playing_store.read()
        assert [p.id for p in state.players] == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_second_session_keeps_player_seated(self, config, waiting_state):
        store = InMemoryGameStore(config=config, initial=waiting_state, record_writes=True)
        manager = SessionManager(store, config)

        first = await manager.connect("alice")
        second = await manager.connect("alice")
        await manager.end_session(first.session_id)

        assert manager.find_by_player("alice") is second
        state = await store.read()
        assert state.get_player("alice") is not None
