"""
Reducer - Applies lobby and placement actions to game state.

The reducer is the single point where the rules decide whether a
transition is legal. The coordinator reads the store, runs the reducer
on the fresh snapshot and only writes if the result is a success.

Design principles:
- Pure function: (state, action) -> ActionResult
- Rule violations become failure results, never partial states
- Cascades are driven by the coordinator, not here
"""

from __future__ import annotations
from dataclasses import dataclass, field

from .state import GameState, GameStatus, Player, renumber_players
from .action import Action, ActionType, ActionResult
from .board import Board, Cell, EMPTY_CELL
from .turns import decided_winner, next_turn
from ..config import GameConfig
from ..errors import (
    RulesViolationError,
    GameNotPlayingError,
    NotYourTurnError,
    LobbyError,
)


@dataclass
class Reducer:
    """
    Reducer applies actions to game state.

    Stateless - all state is in GameState.
    Config provides board size and lobby limits.
    """
    config: GameConfig = field(default_factory=GameConfig)

    def apply(self, state: GameState, action: Action) -> ActionResult:
        """
        Apply an action to the game state.

        Returns ActionResult with new state or error.
        """
        handler = self._get_handler(action.action_type)
        try:
            return handler(state, action)
        except RulesViolationError as e:
            return ActionResult.failure(e.message, error_code=e.code)

    def _get_handler(self, action_type: ActionType):
        """Get the handler function for an action type."""
        handlers = {
            ActionType.JOIN: self._handle_join,
            ActionType.LEAVE: self._handle_leave,
            ActionType.START: self._handle_start,
            ActionType.RESET: self._handle_reset,
            ActionType.SET_MAX_PLAYERS: self._handle_set_max_players,
            ActionType.PLACE: self._handle_place,
        }
        return handlers[action_type]

    # =========================================================================
    # Lobby
    # =========================================================================

    def _handle_join(self, state: GameState, action: Action) -> ActionResult:
        player_id = action.payload.player_id
        name = (action.payload.name or "").strip()

        if not player_id:
            raise LobbyError("Player id is required")
        if not name:
            raise LobbyError("Name cannot be empty")
        if state.status != GameStatus.WAITING:
            raise LobbyError("Game is not accepting players", context={"status": state.status.value})
        if state.num_players >= state.max_players:
            raise LobbyError("Game is full", context={"max_players": state.max_players})
        if state.get_player(player_id):
            # Rejoining with the same identity is a no-op
            return ActionResult.success_with_state(
                state, changes=[f"{player_id} is already seated"]
            )
        if len(name) > self.config.max_name_length:
            raise LobbyError(
                f"Name longer than {self.config.max_name_length} characters",
                context={"name": name},
            )

        player = Player(id=player_id, name=name, color_index=state.num_players)
        new_state = state.touched(
            players=[*state.players, player],
            host_id=state.host_id or player_id,
        )
        if state.host_id is None:
            new_state = new_state._copy_with(host_joined_at=new_state.last_update)

        return ActionResult.success_with_state(
            new_state,
            changes=[f"{name} joined as {player.color.name}"],
        )

    def _handle_leave(self, state: GameState, action: Action) -> ActionResult:
        player_id = action.payload.player_id
        index = state.player_index(player_id) if player_id else None
        if index is None:
            raise LobbyError("Player is not in the game", context={"player_id": player_id})

        remaining = renumber_players(
            [p for p in state.players if p.id != player_id]
        )
        if state.host_id in {p.id for p in remaining}:
            host_id = state.host_id
        else:
            host_id = remaining[0].id if remaining else None

        changes = [f"{state.players[index].name} left"]
        updates = dict(
            players=remaining,
            host_id=host_id,
            host_joined_at=state.host_joined_at if remaining else None,
        )

        if state.status == GameStatus.PLAYING:
            board = _without_player(state.board, player_id)
            updates["board"] = board
            if len(remaining) == 0:
                return ActionResult.success_with_state(
                    self._fresh_state(state), changes=changes + ["Game emptied"]
                )
            if len(remaining) == 1:
                updates.update(
                    status=GameStatus.FINISHED,
                    winner_id=remaining[0].id,
                    turn_index=0,
                )
                changes.append(f"{remaining[0].name} wins by default")
            else:
                turn_index = state.turn_index
                if index < turn_index:
                    turn_index -= 1
                elif index == turn_index:
                    turn_index = next_turn(
                        remaining,
                        (index - 1) % len(remaining),
                        board,
                        state.moves_made,
                    )
                updates["turn_index"] = turn_index % len(remaining)
                # Clearing the leaver's atoms can leave a single survivor
                survivor = decided_winner(board, remaining, state.moves_made)
                if survivor is not None:
                    updates.update(status=GameStatus.FINISHED, winner_id=survivor.id)
                    changes.append(f"{survivor.name} wins")

        return ActionResult.success_with_state(state.touched(**updates), changes=changes)

    def _handle_start(self, state: GameState, action: Action) -> ActionResult:
        player_id = action.payload.player_id
        if state.host_id != player_id:
            raise LobbyError("Only the host can start the game")
        if state.status != GameStatus.WAITING:
            raise LobbyError("Game already started", context={"status": state.status.value})
        if state.num_players < self.config.min_players:
            raise LobbyError(
                f"Need at least {self.config.min_players} players",
                context={"players": state.num_players},
            )

        new_state = state.touched(
            status=GameStatus.PLAYING,
            board=Board.empty(self.config.rows, self.config.cols),
            turn_index=0,
            winner_id=None,
            moves_made=0,
            last_mover_id=None,
        )
        return ActionResult.success_with_state(
            new_state,
            changes=[f"Game started with {state.num_players} players"],
        )

    def _handle_reset(self, state: GameState, action: Action) -> ActionResult:
        return ActionResult.success_with_state(
            self._fresh_state(state), changes=["Game reset"]
        )

    def _handle_set_max_players(self, state: GameState, action: Action) -> ActionResult:
        player_id = action.payload.player_id
        count = action.payload.max_players
        if state.host_id != player_id:
            raise LobbyError("Only the host can change the player limit")
        if state.status != GameStatus.WAITING:
            raise LobbyError("Player limit can only change before the game starts")
        if count is None or not (
            self.config.min_players <= count <= self.config.max_players_limit
        ):
            raise LobbyError(
                f"Player limit must be between {self.config.min_players} "
                f"and {self.config.max_players_limit}",
                context={"max_players": count},
            )
        if count < state.num_players:
            raise LobbyError(
                "Player limit is below the number of seated players",
                context={"max_players": count, "players": state.num_players},
            )

        return ActionResult.success_with_state(
            state.touched(max_players=count),
            changes=[f"Player limit set to {count}"],
        )

    # =========================================================================
    # Placement
    # =========================================================================

    def _handle_place(self, state: GameState, action: Action) -> ActionResult:
        """
        Place one atom. The resulting board may be critical; resolving it
        is the coordinator's job.
        """
        player_id = action.payload.player_id
        row, col = action.payload.row, action.payload.col

        if state.status != GameStatus.PLAYING:
            raise GameNotPlayingError(
                "Game is not in progress", context={"status": state.status.value}
            )
        current = state.current_player
        if current is None or current.id != player_id:
            raise NotYourTurnError(
                f"Not {player_id}'s turn",
                context={"current": current.id if current else None},
            )

        board = state.board.place(row, col, player_id)
        new_state = state.touched(
            board=board,
            moves_made=state.moves_made + 1,
            last_mover_id=player_id,
        )
        return ActionResult.success_with_state(
            new_state,
            changes=[f"{current.name} placed an atom at ({row}, {col})"],
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _fresh_state(self, state: GameState) -> GameState:
        """Empty WAITING game that keeps the store's version counter."""
        fresh = GameState.create(
            self.config.rows,
            self.config.cols,
            max_players=self.config.default_max_players,
        )
        return fresh._copy_with(version=state.version)


def _without_player(board: Board, player_id: str) -> Board:
    """Remove a departed player's atoms so their cells become playable."""
    updates: dict[tuple[int, int], Cell] = {}
    for row, col in board.positions():
        if board.cells[row][col].owner == player_id:
            updates[(row, col)] = EMPTY_CELL
    return board.with_cells(updates)


def apply_action(state: GameState, action: Action, config: GameConfig | None = None) -> ActionResult:
    """
    Convenience function to apply an action.

    Creates a Reducer and applies the action.
    """
    reducer = Reducer(config=config or GameConfig())
    return reducer.apply(state, action)
