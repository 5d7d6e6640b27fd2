"""
Sync Coordinator - Advances the shared game record one move at a time.

There is no central authority: every client runs the same protocol
against the shared store.

MOVE PROTOCOL:
1. Reject locally (cached snapshot) or after a fresh read if the game is
   not playing, it is not the caller's turn, or the cell is taken.
   Nothing is written.
2. Place the atom and write the board with moves_made + 1 at once, so a
   crash mid-cascade leaves a resumable board. On stores with
   compare-and-swap this write is conditional on the version just read.
3. For each cascade wave: notify listeners, wait the pacing delay,
   re-read the store, overwrite only the board on the fresh snapshot
   and write it back. Victory ends the cascade early.
4. Re-read. If another client already finished the game, keep its
   result. Otherwise write the winner or the next turn.

Between two re-reads another client can still overwrite the record;
the window is one wave long. That is accepted: writes are
last-writer-wins.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
import asyncio
import logging

from ..config import GameConfig
from ..engine_core.action import Action, ActionResult
from ..engine_core.board import Board, Position
from ..engine_core.cascade import AtomFlight, resolve_cascade
from ..engine_core.reducer import Reducer
from ..engine_core.state import GameState, GameStatus
from ..engine_core.turns import MoveGuard, MovePhase, decided_winner, next_turn
from ..errors import (
    BusyError,
    CascadeLimitError,
    ChainReactionError,
    GameNotPlayingError,
    RulesViolationError,
    StoreConflictError,
    StoreError,
    StoreTimeoutError,
)
from ..store.base import GameStore, maybe_await

logger = logging.getLogger(__name__)

LOBBY_RETRIES = 3


@dataclass
class CascadeEvent:
    """One wave, as handed to the animation layer."""
    wave_index: int
    player_id: str
    exploded_cells: list[Position]
    flights: list[AtomFlight]
    board: Board

    def to_dict(self) -> dict[str, Any]:
        return {
            "wave_index": self.wave_index,
            "player_id": self.player_id,
            "exploded_cells": [{"row": r, "col": c} for r, c in self.exploded_cells],
            "flights": [f.to_dict() for f in self.flights],
        }


CascadeListener = Callable[[CascadeEvent], Any]


@dataclass
class MoveResult:
    """
    Result of a move or a resumed cascade.

    state is the last snapshot this client wrote or observed.
    """
    success: bool
    state: GameState | None = None
    error: str | None = None
    error_code: str | None = None
    waves: int = 0
    winner_id: str | None = None
    resumed: bool = False
    changes: list[str] = field(default_factory=list)

    @classmethod
    def failure(cls, error: ChainReactionError, state: GameState | None = None) -> MoveResult:
        return cls(success=False, state=state, error=error.message, error_code=error.code)

    @classmethod
    def rejected(cls, result: ActionResult, state: GameState | None = None) -> MoveResult:
        return cls(success=False, state=state, error=result.error, error_code=result.error_code)


class SyncCoordinator:
    """
    Runs moves and lobby actions against a shared store for one client.

    Usage:
        coordinator = SyncCoordinator(store, config)
        coordinator.add_cascade_listener(animate)
        result = await coordinator.apply_move(player_id, row, col)
    """

    def __init__(
        self,
        store: GameStore,
        config: GameConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.config = config or GameConfig()
        self.reducer = Reducer(config=self.config)
        self.guard = MoveGuard()
        self.cached_state: GameState | None = None
        self._sleep = sleep
        self._listeners: list[CascadeListener] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def phase(self) -> MovePhase:
        return self.guard.phase

    def attach(self) -> None:
        """Keep cached_state current from store notifications."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self.observe)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def add_cascade_listener(self, listener: CascadeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def observe(self, state: GameState) -> None:
        """Update the cached snapshot (fed by store subscriptions)."""
        if self.cached_state is None or state.version >= self.cached_state.version:
            self.cached_state = state

    # =========================================================================
    # Store access
    # =========================================================================

    async def _read(self) -> GameState:
        try:
            state = await asyncio.wait_for(self.store.read(), self.config.store_timeout)
        except asyncio.TimeoutError:
            raise StoreTimeoutError(
                "Store read timed out", context={"timeout": self.config.store_timeout}
            )
        self.observe(state)
        return state

    async def _write(self, state: GameState, expected_version: int | None = None) -> GameState:
        try:
            stored = await asyncio.wait_for(
                self.store.write(state, expected_version=expected_version),
                self.config.store_timeout,
            )
        except asyncio.TimeoutError:
            raise StoreTimeoutError(
                "Store write timed out", context={"timeout": self.config.store_timeout}
            )
        self.observe(stored)
        return stored

    def _expected(self, state: GameState) -> int | None:
        return state.version if self.store.supports_cas else None

    async def _emit(self, event: CascadeEvent) -> None:
        for listener in list(self._listeners):
            try:
                await maybe_await(listener(event))
            except Exception:
                logger.warning("Cascade listener raised", exc_info=True)

    # =========================================================================
    # Moves
    # =========================================================================

    async def apply_move(self, player_id: str, row: int, col: int) -> MoveResult:
        """
        Place an atom for player_id and resolve everything it triggers.

        Once started the protocol runs to completion even if the caller
        is cancelled; a half-applied cascade would not match moves_made.
        """
        self.attach()
        try:
            self.guard.begin()
        except BusyError as e:
            logger.info("Move by %s rejected: %s", player_id, e.message)
            return MoveResult.failure(e, self.cached_state)

        return await asyncio.shield(self._guarded(self._move(player_id, row, col)))

    async def resume_cascade(self, player_id: str | None = None) -> MoveResult:
        """
        Finish a cascade left behind by a client that stalled mid-move.

        The cascade is resolved for the player who placed the last atom;
        no atom is placed.
        """
        self.attach()
        try:
            self.guard.begin()
        except BusyError as e:
            return MoveResult.failure(e, self.cached_state)

        return await asyncio.shield(self._guarded(self._resume(player_id)))

    async def _guarded(self, protocol: Awaitable[MoveResult]) -> MoveResult:
        with self.guard:
            try:
                return await protocol
            except RulesViolationError as e:
                logger.info("Move rejected: %s", e)
                return MoveResult.failure(e, self.cached_state)
            except CascadeLimitError as e:
                logger.error("Cascade abandoned: %s", e)
                return MoveResult.failure(e, self.cached_state)
            except StoreError as e:
                logger.warning("Store failure during move: %s", e, exc_info=True)
                return MoveResult.failure(e, self.cached_state)

    async def _move(self, player_id: str, row: int, col: int) -> MoveResult:
        action = Action.place(player_id, row, col)

        # Cheap rejection against what this client last saw
        if self.cached_state is not None:
            local = self.reducer.apply(self.cached_state, action)
            if not local.success and not self.cached_state.has_pending_explosion():
                logger.info("Move by %s rejected locally: %s", player_id, local.error)
                return MoveResult.rejected(local, self.cached_state)

        state = await self._read()

        if state.has_pending_explosion():
            current = state.current_player
            if current is None or current.id != player_id:
                raise GameNotPlayingError(
                    "A cascade is still being resolved",
                    context={"last_mover": state.last_mover_id},
                )
            logger.info("Resuming stalled cascade instead of placing for %s", player_id)
            result = await self._cascade_and_resolve(state, state.last_mover_id or player_id)
            result.resumed = True
            return result

        placed = self.reducer.apply(state, action)
        if not placed.success:
            logger.info("Move by %s rejected: %s", player_id, placed.error)
            return MoveResult.rejected(placed, state)

        try:
            checkpoint = await self._write(placed.new_state, self._expected(state))
        except StoreConflictError as e:
            logger.info("Move by %s lost a race: %s", player_id, e)
            return MoveResult.failure(e, self.cached_state)

        logger.debug("Placed (%d, %d) for %s, version %d", row, col, player_id, checkpoint.version)
        result = await self._cascade_and_resolve(checkpoint, player_id)
        result.changes = placed.state_changes + result.changes
        return result

    async def _resume(self, player_id: str | None) -> MoveResult:
        state = await self._read()
        if not state.has_pending_explosion():
            return MoveResult(success=True, state=state)
        mover = state.last_mover_id or (state.current_player.id if state.current_player else None)
        if mover is None:
            raise GameNotPlayingError("No player to resolve the cascade for")
        logger.info("Resuming cascade for %s (requested by %s)", mover, player_id)
        result = await self._cascade_and_resolve(state, mover)
        result.resumed = True
        return result

    async def _cascade_and_resolve(self, state: GameState, player_id: str) -> MoveResult:
        """Steps 3 and 4: drive the cascade, then settle the turn."""
        self.guard.advance(MovePhase.CASCADING)
        moves_made = state.moves_made
        board = state.board
        color_index = state.color_index_of(player_id)
        waves = 0

        for wave in resolve_cascade(board, player_id, color_index, self.config.max_waves):
            waves += 1
            await self._emit(CascadeEvent(
                wave_index=waves,
                player_id=player_id,
                exploded_cells=wave.exploded_cells,
                flights=wave.flights,
                board=wave.board,
            ))
            if self.config.wave_delay:
                await self._sleep(self.config.wave_delay)

            fresh = await self._read()
            if fresh.status == GameStatus.FINISHED:
                logger.info("Game finished by another client during cascade")
                return MoveResult(
                    success=True, state=fresh, waves=waves, winner_id=fresh.winner_id
                )
            if fresh.status != GameStatus.PLAYING:
                raise GameNotPlayingError(
                    "Game was reset during the cascade", context={"waves": waves}
                )

            board = wave.board
            champion = decided_winner(board, fresh.players, moves_made)
            if champion:
                stored = await self._write(fresh.touched(
                    board=board,
                    status=GameStatus.FINISHED,
                    winner_id=champion.id,
                    moves_made=moves_made,
                ))
                logger.info("%s wins after %d waves", champion.name, waves)
                return MoveResult(
                    success=True,
                    state=stored,
                    waves=waves,
                    winner_id=champion.id,
                    changes=[f"{champion.name} wins"],
                )

            await self._write(fresh.touched(board=board))
            logger.debug("Wave %d: %d cells exploded", waves, len(wave.exploded_cells))
            if self.config.settle_delay:
                await self._sleep(self.config.settle_delay)

        self.guard.advance(MovePhase.RESOLVING)
        final = await self._read()
        if final.status == GameStatus.FINISHED:
            return MoveResult(success=True, state=final, waves=waves, winner_id=final.winner_id)
        if final.status != GameStatus.PLAYING or not final.players:
            raise GameNotPlayingError("Game was reset before the move settled")

        champion = decided_winner(board, final.players, moves_made)
        if champion:
            stored = await self._write(final.touched(
                board=board,
                status=GameStatus.FINISHED,
                winner_id=champion.id,
                moves_made=moves_made,
            ))
            return MoveResult(
                success=True,
                state=stored,
                waves=waves,
                winner_id=champion.id,
                changes=[f"{champion.name} wins"],
            )

        mover_index = final.player_index(player_id)
        if mover_index is None:
            # The mover left mid-cascade; leaving already moved the turn on
            turn_index = final.turn_index % len(final.players)
        else:
            turn_index = next_turn(final.players, mover_index, board, moves_made)

        stored = await self._write(final.touched(
            board=board,
            turn_index=turn_index,
            moves_made=moves_made,
        ))
        return MoveResult(
            success=True,
            state=stored,
            waves=waves,
            changes=[f"Next turn: {stored.players[turn_index].name}"],
        )

    # =========================================================================
    # Lobby
    # =========================================================================

    async def perform(self, action: Action) -> ActionResult:
        """
        Read, validate and write one lobby action.

        On stores with compare-and-swap a conflicting write is retried
        against a fresh snapshot a few times.
        """
        self.attach()
        for attempt in range(1, LOBBY_RETRIES + 1):
            try:
                state = await self._read()
                result = self.reducer.apply(state, action)
                if not result.success:
                    logger.info(
                        "%s rejected: %s", action.action_type.value, result.error
                    )
                    return result
                if result.new_state is state:
                    return result
                stored = await self._write(result.new_state, self._expected(state))
                result.new_state = stored
                for change in result.state_changes:
                    logger.info(change)
                return result
            except StoreConflictError:
                logger.info(
                    "%s conflicted (attempt %d)", action.action_type.value, attempt
                )
                continue
            except StoreError as e:
                logger.warning("%s failed: %s", action.action_type.value, e, exc_info=True)
                return ActionResult.failure(e.message, error_code=e.code)

        return ActionResult.failure(
            "Game changed too often; try again",
            error_code=StoreConflictError.code,
        )

    async def join(self, player_id: str, name: str) -> ActionResult:
        return await self.perform(Action.join(player_id, name))

    async def leave(self, player_id: str) -> ActionResult:
        return await self.perform(Action.leave(player_id))

    async def start(self, player_id: str) -> ActionResult:
        return await self.perform(Action.start(player_id))

    async def reset(self, player_id: str | None = None) -> ActionResult:
        return await self.perform(Action.reset(player_id))

    async def set_max_players(self, player_id: str, max_players: int) -> ActionResult:
        return await self.perform(Action.set_max_players(player_id, max_players))

    async def refresh(self) -> GameState:
        """Re-read the authoritative snapshot."""
        return await self._read()
