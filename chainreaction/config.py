"""
Configuration - Game dimensions, pacing and store settings.

All values can be overridden with CHAINREACTION_* environment variables.
The defaults reproduce the reference game: a 9x6 board, up to four
players, 400ms between cascade waves.
"""

from __future__ import annotations
from dataclasses import dataclass
import os

from .errors import ConfigurationError

CHAINREACTION_ENV = os.getenv("CHAINREACTION_ENV", "development")
CHAINREACTION_STORE = os.getenv("CHAINREACTION_STORE", "memory")
CHAINREACTION_REDIS_URL = os.getenv("CHAINREACTION_REDIS_URL", "redis://localhost:6379/0")
CHAINREACTION_GAME_KEY = os.getenv("CHAINREACTION_GAME_KEY", "chainreaction:game")
CHAINREACTION_LOG_LEVEL = os.getenv("CHAINREACTION_LOG_LEVEL", "INFO")
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")


@dataclass(frozen=True)
class GameConfig:
    """
    Settings shared by the engine, the coordinator and the API.

    wave_delay and settle_delay are presentation pacing only; the
    simulation result never depends on them.
    """
    rows: int = 9
    cols: int = 6
    min_players: int = 2
    max_players_limit: int = 4
    default_max_players: int = 4
    max_name_length: int = 12

    # Pacing (seconds)
    wave_delay: float = 0.4
    settle_delay: float = 0.1

    # Store access
    store_timeout: float = 5.0

    # Cascade safeguard; None means the engine default
    max_waves: int | None = None

    def __post_init__(self):
        if self.rows < 2 or self.cols < 2:
            raise ConfigurationError(
                f"Board must be at least 2x2, got {self.rows}x{self.cols}"
            )
        if not 2 <= self.min_players <= self.max_players_limit:
            raise ConfigurationError(
                f"Invalid player limits: {self.min_players}..{self.max_players_limit}"
            )
        if not self.min_players <= self.default_max_players <= self.max_players_limit:
            raise ConfigurationError(
                f"default_max_players must be within {self.min_players}..{self.max_players_limit}"
            )
        if self.wave_delay < 0 or self.settle_delay < 0:
            raise ConfigurationError("Pacing delays cannot be negative")
        if self.store_timeout <= 0:
            raise ConfigurationError("store_timeout must be positive")
        if self.max_waves is not None and self.max_waves < 1:
            raise ConfigurationError("max_waves must be at least 1")


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def load_config() -> GameConfig:
    """Build a GameConfig from the environment."""
    defaults = GameConfig()
    return GameConfig(
        rows=_env_int("CHAINREACTION_ROWS", defaults.rows),
        cols=_env_int("CHAINREACTION_COLS", defaults.cols),
        default_max_players=_env_int(
            "CHAINREACTION_MAX_PLAYERS", defaults.default_max_players
        ),
        wave_delay=_env_float("CHAINREACTION_WAVE_DELAY", defaults.wave_delay),
        settle_delay=_env_float("CHAINREACTION_SETTLE_DELAY", defaults.settle_delay),
        store_timeout=_env_float("CHAINREACTION_STORE_TIMEOUT", defaults.store_timeout),
        max_waves=_env_int("CHAINREACTION_MAX_WAVES", defaults.max_waves),
    )
