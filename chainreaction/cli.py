"""
Chain Reaction CLI - Command-line interface for the engine.

Usage:
    chainreaction serve [--host H] [--port P]     Run the REST/WebSocket API
    chainreaction play [--players N] [--rows R]   Hot-seat game in the terminal
"""

import argparse
import asyncio
import logging
import sys

from .config import CHAINREACTION_LOG_LEVEL, GameConfig
from .errors import ConfigurationError


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Chain Reaction - Multiplayer atom-placement game",
        prog="chainreaction",
    )
    parser.add_argument(
        "--log-level", default=CHAINREACTION_LOG_LEVEL, help="Logging level (default: INFO)"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")
    serve_parser.add_argument("--reload", action="store_true", help="Auto-reload on changes")

    # Play command
    play_parser = subparsers.add_parser("play", help="Hot-seat game in the terminal")
    play_parser.add_argument("--players", type=int, default=2, help="Number of players (2-4)")
    play_parser.add_argument("--rows", type=int, default=9, help="Board rows")
    play_parser.add_argument("--cols", type=int, default=6, help="Board columns")
    play_parser.add_argument(
        "--animate", action="store_true", help="Print the board after every wave"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "play":
        cmd_play(args)
    else:
        parser.print_help()
        sys.exit(1)


def cmd_serve(args):
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "chainreaction.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


def cmd_play(args):
    """Play a local game, all players sharing one terminal."""
    if not 2 <= args.players <= 4:
        print("Error: --players must be between 2 and 4")
        sys.exit(1)
    try:
        config = GameConfig(
            rows=args.rows,
            cols=args.cols,
            default_max_players=args.players,
            wave_delay=0.0,
            settle_delay=0.0,
        )
    except ConfigurationError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    try:
        asyncio.run(_play(config, args.players, args.animate))
    except (KeyboardInterrupt, EOFError):
        print("\nGame abandoned.")


def _read_move(prompt: str):
    raw = input(prompt).strip()
    if raw in ("q", "quit", "exit"):
        raise EOFError
    parts = raw.replace(",", " ").split()
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


async def _play(config: GameConfig, num_players: int, animate: bool):
    from .engine_core.state import GameStatus
    from .session import SyncCoordinator
    from .store import InMemoryGameStore

    store = InMemoryGameStore(config=config)
    coordinator = SyncCoordinator(store, config)

    ids = []
    for i in range(num_players):
        name = input(f"Name for player {i + 1}: ").strip() or f"Player{i + 1}"
        player_id = f"p{i + 1}"
        result = await coordinator.join(player_id, name)
        if not result.success:
            print(f"Error: {result.error}")
            return
        ids.append(player_id)

    result = await coordinator.start(ids[0])
    if not result.success:
        print(f"Error: {result.error}")
        return

    state = await coordinator.refresh()
    symbols = {p.id: p.color.name[0] for p in state.players}
    if animate:
        def show_wave(event):
            print(f"-- wave {event.wave_index}: {len(event.exploded_cells)} explosion(s)")
            print(event.board.render(symbols))
        coordinator.add_cascade_listener(show_wave)

    while state.status == GameStatus.PLAYING:
        player = state.current_player
        print()
        print(state.board.render(symbols))
        move = _read_move(f"{player.name} ({player.color.name}) row col> ")
        if move is None:
            print("Enter a row and a column, e.g. '3 2' (q to quit)")
            continue
        outcome = await coordinator.apply_move(player.id, *move)
        if not outcome.success:
            print(f"Rejected: {outcome.error}")
        elif outcome.waves:
            print(f"{outcome.waves} wave(s) of explosions")
        state = await coordinator.refresh()

    print()
    print(state.board.render(symbols))
    if state.winner:
        print(f"\n{state.winner.name} wins after {state.moves_made} moves!")


if __name__ == "__main__":
    main()
