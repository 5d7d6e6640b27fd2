"""
FastAPI Application - REST and WebSocket API for game clients.

Endpoints:
    GET    /api/v1/game                 Get the shared game state
    POST   /api/v1/game/join            Take a seat in the lobby
    POST   /api/v1/game/leave           Leave the game
    POST   /api/v1/game/start           Start the game (host only)
    POST   /api/v1/game/reset           Reset to an empty lobby
    POST   /api/v1/game/max-players     Change the seat count (host only)
    POST   /api/v1/game/moves           Place an atom
    POST   /api/v1/game/resume          Finish a stalled cascade
    WS     /api/v1/game/ws              Real-time updates (?player_id= opens a session)

Move Flow:
    1. POST /moves places the atom and checkpoints the board
    2. Every cascade wave is pushed over the WebSocket as a `cascade`
       message, followed by a `state_update` once the wave is stored
    3. The response arrives after the move has settled: the winner is
       set or the turn has passed on

All responses are JSON with explicit Pydantic schemas.
"""

from contextlib import asynccontextmanager
from typing import Optional, Union
import json
import logging

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import ALLOWED_ORIGINS, load_config
from ..engine_core.state import GameState
from ..errors import ChainReactionError
from ..session import SessionManager
from ..store import create_store
from .service import GameService, state_to_response
from .schemas import (
    # Request models
    JoinRequest,
    PlayerRequest,
    MaxPlayersRequest,
    MoveRequest,
    ResumeRequest,
    # Response models
    ActionResponse,
    MoveResponse,
    GameStateResponse,
    ErrorResponse,
    HealthResponse,
    CascadeEventInfo,
    # Enums
    ErrorCode,
)

logger = logging.getLogger(__name__)

# HTTP status per error code
STATUS_BY_CODE = {
    ErrorCode.INVALID_MOVE: 400,
    ErrorCode.LOBBY_ERROR: 400,
    ErrorCode.NOT_YOUR_TURN: 409,
    ErrorCode.GAME_NOT_PLAYING: 409,
    ErrorCode.BUSY: 409,
    ErrorCode.STORE_CONFLICT: 409,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.CASCADE_LIMIT: 500,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.STORE_ERROR: 503,
    ErrorCode.STORE_TIMEOUT: 504,
}


def create_app(service: Optional[GameService] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        service: Optional GameService instance (built from the environment
            if not provided)

    Returns:
        FastAPI application instance
    """
    if service is None:
        config = load_config()
        service = GameService(store=create_store(config=config), config=config)
    api_service = service

    # WebSocket connections
    ws_connections: list[WebSocket] = []

    # Client sessions opened by WebSocket connections that name a player
    sessions = SessionManager(api_service.store, api_service.config)

    # =========================================================================
    # Broadcast helpers
    # =========================================================================

    async def broadcast(message: dict):
        """Send a message to every connected WebSocket."""
        dead_connections = []
        for ws in list(ws_connections):
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                dead_connections.append(ws)
        for ws in dead_connections:
            if ws in ws_connections:
                ws_connections.remove(ws)

    async def on_state_change(state: GameState):
        await broadcast({
            "type": "state_update",
            "payload": state_to_response(state).model_dump(mode="json"),
        })

    async def on_cascade(info: CascadeEventInfo):
        await broadcast({"type": "cascade", "payload": info.model_dump(mode="json")})

    api_service.add_cascade_listener(on_cascade)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        unsubscribe = api_service.store.subscribe(on_state_change)
        logger.info("Chain Reaction API started")
        try:
            yield
        finally:
            unsubscribe()
            await sessions.close_all()
            await api_service.close()
            logger.info("Chain Reaction API stopped")

    app = FastAPI(
        title="Chain Reaction API",
        description="""
Multiplayer Chain Reaction over a shared game record.

## Move Flow

`POST /moves` returns once the move has fully settled. Connect to
`/api/v1/game/ws` to receive each cascade wave as it happens.

## Error Codes

| Code | HTTP | Description |
|------|------|-------------|
| `INVALID_MOVE` | 400 | Cell owned by another player or off the board |
| `LOBBY_ERROR` | 400 | Join/leave/start/max-players rejected |
| `NOT_YOUR_TURN` | 409 | Another player holds the turn |
| `GAME_NOT_PLAYING` | 409 | Game not started, finished or reset |
| `BUSY` | 409 | This player already has a move in flight |
| `STORE_CONFLICT` | 409 | Another client changed the game first |
| `STORE_TIMEOUT` | 504 | Shared store did not answer in time |
        """,
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # =========================================================================
    # Error helpers
    # =========================================================================

    def make_error_response(
        error_code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ) -> JSONResponse:
        """Create a standardized error response."""
        return JSONResponse(
            status_code=status_code or STATUS_BY_CODE.get(error_code, 400),
            content=ErrorResponse(
                error=message,
                error_code=error_code,
                details=details,
            ).model_dump(mode="json"),
        )

    def respond(response):
        if isinstance(response, ErrorResponse):
            return make_error_response(response.error_code, response.error, details=response.details)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return make_error_response(
            ErrorCode.VALIDATION_ERROR,
            "Invalid request",
            details={"errors": json.loads(json.dumps(exc.errors(), default=str))},
        )

    @app.exception_handler(ChainReactionError)
    async def engine_error_handler(request: Request, exc: ChainReactionError):
        logger.error("Unhandled engine error on %s: %s", request.url.path, exc)
        return make_error_response(
            ErrorCode.INTERNAL_ERROR,
            exc.message,
            status_code=500,
            details=exc.to_dict(),
        )

    # =========================================================================
    # Game State
    # =========================================================================

    @app.get(
        "/api/v1/game",
        response_model=GameStateResponse,
        responses={503: {"model": ErrorResponse}},
        tags=["Game"],
        summary="Get current game state",
    )
    async def get_game_state() -> Union[GameStateResponse, JSONResponse]:
        """Get the complete shared game state for display."""
        return respond(await api_service.get_state())

    # =========================================================================
    # Lobby Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/game/join",
        response_model=ActionResponse,
        responses={400: {"model": ErrorResponse, "description": "Lobby full or game started"}},
        tags=["Lobby"],
        summary="Join the lobby",
    )
    async def join_game(body: JoinRequest) -> Union[ActionResponse, JSONResponse]:
        """
        Take a seat in the waiting lobby.

        Joining again with the same `player_id` is a no-op. The first
        player to join becomes the host.
        """
        return respond(await api_service.join(body))

    @app.post(
        "/api/v1/game/leave",
        response_model=ActionResponse,
        responses={400: {"model": ErrorResponse}},
        tags=["Lobby"],
        summary="Leave the game",
    )
    async def leave_game(body: PlayerRequest) -> Union[ActionResponse, JSONResponse]:
        """
        Leave the game.

        Leaving during play removes the player's atoms. If only one player
        remains they win.
        """
        return respond(await api_service.leave(body))

    @app.post(
        "/api/v1/game/start",
        response_model=ActionResponse,
        responses={400: {"model": ErrorResponse, "description": "Not host or too few players"}},
        tags=["Lobby"],
        summary="Start the game",
    )
    async def start_game(body: PlayerRequest) -> Union[ActionResponse, JSONResponse]:
        """Start the game. Only the host can start, with at least two players."""
        return respond(await api_service.start(body))

    @app.post(
        "/api/v1/game/reset",
        response_model=ActionResponse,
        tags=["Lobby"],
        summary="Reset to an empty lobby",
    )
    async def reset_game(body: PlayerRequest) -> Union[ActionResponse, JSONResponse]:
        return respond(await api_service.reset(body))

    @app.post(
        "/api/v1/game/max-players",
        response_model=ActionResponse,
        responses={400: {"model": ErrorResponse}},
        tags=["Lobby"],
        summary="Set the number of seats",
    )
    async def set_max_players(body: MaxPlayersRequest) -> Union[ActionResponse, JSONResponse]:
        """Change the seat count (2-4). Host only, while waiting."""
        return respond(await api_service.set_max_players(body))

    # =========================================================================
    # Move Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/game/moves",
        response_model=MoveResponse,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid move"},
            409: {"model": ErrorResponse, "description": "Not your turn, busy or conflict"},
            504: {"model": ErrorResponse, "description": "Store timeout"},
        },
        tags=["Moves"],
        summary="Place an atom",
    )
    async def make_move(body: MoveRequest) -> Union[MoveResponse, JSONResponse]:
        """
        Place one atom and resolve every explosion it triggers.

        **Request Body:**
        ```json
        {"player_id": "k3j9x0a1b", "row": 4, "col": 2}
        ```

        If an earlier cascade was left unresolved, it is finished first
        and `resumed` is true; no atom is placed in that case.
        """
        return respond(await api_service.move(body))

    @app.post(
        "/api/v1/game/resume",
        response_model=MoveResponse,
        responses={409: {"model": ErrorResponse}},
        tags=["Moves"],
        summary="Finish a stalled cascade",
    )
    async def resume_cascade(body: ResumeRequest) -> Union[MoveResponse, JSONResponse]:
        """Resolve a cascade that a disconnected client left behind."""
        return respond(await api_service.resume(body))

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    @app.websocket("/api/v1/game/ws")
    async def websocket_endpoint(websocket: WebSocket, player_id: Optional[str] = None):
        """
        WebSocket for real-time updates.

        Connecting with ?player_id=... opens a client session for that
        player: presence is recorded, a stalled cascade is finished, and
        on disconnect a seat in a lobby that has not started is freed.

        Messages from server:
        - state_update: The shared record changed
        - cascade: One explosion wave (cells and atom flights)
        - error: Error occurred

        Messages from client:
        - ping: Keep-alive
        """
        await websocket.accept()
        session = None
        if player_id:
            try:
                session = await sessions.connect(player_id)
            except ChainReactionError as e:
                logger.warning("Could not open session for %s: %s", player_id, e)
                await websocket.send_json({"type": "error", "payload": e.to_dict()})
                await websocket.close()
                return
        ws_connections.append(websocket)

        try:
            response = await api_service.get_state()
            if isinstance(response, GameStateResponse):
                await websocket.send_json({
                    "type": "state_update",
                    "payload": response.model_dump(mode="json"),
                })

            while True:
                data = await websocket.receive_text()
                try:
                    message = json.loads(data)
                    if message.get("type") == "ping":
                        await websocket.send_json({"type": "pong"})
                except (json.JSONDecodeError, AttributeError):
                    await websocket.send_json({
                        "type": "error",
                        "payload": {"message": "Invalid JSON"},
                    })

        except WebSocketDisconnect:
            logger.debug("WebSocket client disconnected")
        finally:
            if websocket in ws_connections:
                ws_connections.remove(websocket)
            if session is not None:
                await sessions.end_session(session.session_id)
                await api_service.release_if_unseated(session.player_id)

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint for load balancers."""
        return HealthResponse(
            status="healthy",
            service="chainreaction-engine",
            version=__version__,
        )

    @app.get("/", tags=["System"])
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "Chain Reaction API",
            "version": __version__,
            "docs": "/api/docs",
            "health": "/health",
        }

    return app


# For running directly: uvicorn chainreaction.api.app:app
app = create_app()
