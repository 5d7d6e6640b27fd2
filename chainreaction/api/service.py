"""
API Service - Business logic layer between API and engine.

The service:
1. Translates API requests to coordinator calls
2. Keeps one coordinator (and so one move guard) per player
3. Formats game state for clients

This layer is framework-agnostic (can be used with FastAPI, Flask, etc.)
Every method returns either a response model or an ErrorResponse.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Union
import logging

from .schemas import (
    # Requests
    JoinRequest,
    PlayerRequest,
    MaxPlayersRequest,
    MoveRequest,
    ResumeRequest,
    # Responses
    ActionResponse,
    MoveResponse,
    GameStateResponse,
    ErrorResponse,
    # Shared
    CellInfo,
    PlayerInfo,
    PositionInfo,
    FlightInfo,
    CascadeEventInfo,
    # Enums
    ErrorCode,
)
from ..config import GameConfig
from ..engine_core.action import ActionResult
from ..engine_core.state import GameState
from ..engine_core.turns import can_check_victory, is_eliminated
from ..errors import StoreError
from ..session import CascadeEvent, MoveResult, SyncCoordinator
from ..store import GameStore, InMemoryGameStore
from ..store.base import maybe_await

logger = logging.getLogger(__name__)


def to_error_code(code: str | None) -> ErrorCode:
    """Map an engine error code onto the API enum."""
    try:
        return ErrorCode(code)
    except ValueError:
        return ErrorCode.INTERNAL_ERROR


def state_to_response(state: GameState) -> GameStateResponse:
    """Convert a GameState into its client view."""
    current = state.current_player
    opening_done = can_check_victory(state.moves_made, state.num_players)
    return GameStateResponse(
        status=state.status.value,
        players=[
            PlayerInfo(
                player_id=p.id,
                name=p.name,
                color_index=p.color_index,
                color=p.color.primary,
                is_host=p.id == state.host_id,
                is_current_turn=current is not None and current.id == p.id,
                is_eliminated=opening_done and is_eliminated(state.board, p.id),
                atom_count=state.board.atoms_of(p.id),
            )
            for p in state.players
        ],
        host_id=state.host_id,
        rows=state.board.rows,
        cols=state.board.cols,
        grid=[
            [CellInfo(owner=cell.owner, count=cell.count) for cell in row]
            for row in state.board.cells
        ],
        turn_index=state.turn_index,
        current_player_id=current.id if current else None,
        winner_id=state.winner_id,
        moves_made=state.moves_made,
        max_players=state.max_players,
        pending_explosion=state.has_pending_explosion(),
        version=state.version,
        last_update=state.last_update,
    )


def event_to_info(event: CascadeEvent) -> CascadeEventInfo:
    return CascadeEventInfo(
        wave_index=event.wave_index,
        player_id=event.player_id,
        exploded_cells=[PositionInfo(row=r, col=c) for r, c in event.exploded_cells],
        flights=[
            FlightInfo(
                source=PositionInfo(row=f.source[0], col=f.source[1]),
                target=PositionInfo(row=f.target[0], col=f.target[1]),
                color_index=f.color_index,
            )
            for f in event.flights
        ],
    )


@dataclass
class GameService:
    """
    Main API service for the shared game.

    Usage:
        service = GameService(store=InMemoryGameStore())

        response = await service.join(JoinRequest(player_id="p1", name="Ann"))
        response = await service.move(MoveRequest(player_id="p1", row=0, col=0))
    """
    store: GameStore = field(default_factory=InMemoryGameStore)
    config: GameConfig = field(default_factory=GameConfig)

    # One coordinator per player so a player cannot run two moves at once
    _coordinators: dict[str, SyncCoordinator] = field(default_factory=dict)
    _cascade_listeners: list[Callable[[CascadeEventInfo], Any]] = field(default_factory=list)

    def coordinator_for(self, player_id: str) -> SyncCoordinator:
        coordinator = self._coordinators.get(player_id)
        if coordinator is None:
            coordinator = SyncCoordinator(self.store, self.config)
            coordinator.add_cascade_listener(self._forward_cascade)
            self._coordinators[player_id] = coordinator
            logger.debug("Created coordinator for %s", player_id)
        return coordinator

    def release(self, player_id: str) -> None:
        """Drop a player's coordinator and its store subscription."""
        coordinator = self._coordinators.pop(player_id, None)
        if coordinator is not None:
            coordinator.detach()
            logger.debug("Released coordinator for %s", player_id)

    def _release_if_unseated(self, player_id: str) -> None:
        """Only seated players keep a coordinator between requests."""
        coordinator = self._coordinators.get(player_id)
        state = coordinator.cached_state if coordinator else None
        if state is None or state.get_player(player_id) is None:
            self.release(player_id)

    async def release_if_unseated(self, player_id: str) -> None:
        """Re-read the record and release player_id if they hold no seat."""
        try:
            state = await self.store.read()
        except StoreError:
            logger.warning("Could not check seat of %s", player_id, exc_info=True)
            return
        if state.get_player(player_id) is None:
            self.release(player_id)

    def add_cascade_listener(self, listener: Callable[[CascadeEventInfo], Any]) -> None:
        """Receive every cascade wave run by any coordinator of this service."""
        self._cascade_listeners.append(listener)

    async def _forward_cascade(self, event: CascadeEvent) -> None:
        info = event_to_info(event)
        for listener in list(self._cascade_listeners):
            await maybe_await(listener(info))

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_state(self) -> Union[GameStateResponse, ErrorResponse]:
        try:
            state = await self.store.read()
        except StoreError as e:
            return ErrorResponse(error=e.message, error_code=to_error_code(e.code))
        return state_to_response(state)

    # =========================================================================
    # Lobby
    # =========================================================================

    def _action_response(self, result: ActionResult) -> Union[ActionResponse, ErrorResponse]:
        if not result.success:
            return ErrorResponse(
                error=result.error or "Action failed",
                error_code=to_error_code(result.error_code),
            )
        return ActionResponse(
            success=True,
            changes=result.state_changes,
            game_state=state_to_response(result.new_state) if result.new_state else None,
        )

    async def join(self, request: JoinRequest) -> Union[ActionResponse, ErrorResponse]:
        coordinator = self.coordinator_for(request.player_id)
        result = await coordinator.join(request.player_id, request.name)
        self._release_if_unseated(request.player_id)
        return self._action_response(result)

    async def leave(self, request: PlayerRequest) -> Union[ActionResponse, ErrorResponse]:
        coordinator = self.coordinator_for(request.player_id)
        result = await coordinator.leave(request.player_id)
        self._release_if_unseated(request.player_id)
        return self._action_response(result)

    async def start(self, request: PlayerRequest) -> Union[ActionResponse, ErrorResponse]:
        coordinator = self.coordinator_for(request.player_id)
        result = await coordinator.start(request.player_id)
        self._release_if_unseated(request.player_id)
        return self._action_response(result)

    async def reset(self, request: PlayerRequest) -> Union[ActionResponse, ErrorResponse]:
        coordinator = self.coordinator_for(request.player_id)
        result = await coordinator.reset(request.player_id)
        if result.success:
            # Nobody is seated after a reset
            for player_id in list(self._coordinators):
                self.release(player_id)
        else:
            self._release_if_unseated(request.player_id)
        return self._action_response(result)

    async def set_max_players(
        self, request: MaxPlayersRequest
    ) -> Union[ActionResponse, ErrorResponse]:
        coordinator = self.coordinator_for(request.player_id)
        result = await coordinator.set_max_players(request.player_id, request.max_players)
        self._release_if_unseated(request.player_id)
        return self._action_response(result)

    # =========================================================================
    # Moves
    # =========================================================================

    def _move_response(self, result: MoveResult) -> Union[MoveResponse, ErrorResponse]:
        if not result.success:
            details = None
            if result.state is not None:
                details = {"version": result.state.version}
            return ErrorResponse(
                error=result.error or "Move failed",
                error_code=to_error_code(result.error_code),
                details=details,
            )
        return MoveResponse(
            success=True,
            waves=result.waves,
            winner_id=result.winner_id,
            resumed=result.resumed,
            changes=result.changes,
            game_state=state_to_response(result.state) if result.state else None,
        )

    async def move(self, request: MoveRequest) -> Union[MoveResponse, ErrorResponse]:
        coordinator = self.coordinator_for(request.player_id)
        result = await coordinator.apply_move(request.player_id, request.row, request.col)
        self._release_if_unseated(request.player_id)
        return self._move_response(result)

    async def resume(self, request: ResumeRequest) -> Union[MoveResponse, ErrorResponse]:
        """Finish a stalled cascade, if there is one."""
        key = request.player_id or "_resume"
        coordinator = self.coordinator_for(key)
        result = await coordinator.resume_cascade(request.player_id)
        self._release_if_unseated(key)
        return self._move_response(result)

    async def close(self) -> None:
        for player_id in list(self._coordinators):
            self.release(player_id)
        await self.store.close()
