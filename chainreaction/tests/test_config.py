"""
Tests for configuration, the error hierarchy and the CLI.
"""

import pytest

from ..cli import main
from ..config import GameConfig, load_config
from ..errors import (
    ChainReactionError,
    ConfigurationError,
    InvalidMoveError,
    RulesViolationError,
    StoreError,
    StoreTimeoutError,
)


class TestGameConfig:

    def test_defaults(self):
        config = GameConfig()
        assert (config.rows, config.cols) == (9, 6)
        assert config.default_max_players == 4
        assert config.wave_delay == 0.4
        assert config.max_name_length == 12

    @pytest.mark.parametrize("kwargs", [
        {"rows": 1},
        {"cols": 0},
        {"default_max_players": 5},
        {"wave_delay": -1.0},
        {"store_timeout": 0},
        {"max_waves": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            GameConfig(**kwargs)

    def test_load_from_environment(self, monkeypatch):
        monkeypatch.setenv("CHAINREACTION_ROWS", "5")
        monkeypatch.setenv("CHAINREACTION_COLS", "5")
        monkeypatch.setenv("CHAINREACTION_WAVE_DELAY", "0")
        monkeypatch.setenv("CHAINREACTION_MAX_WAVES", "200")

        config = load_config()
        assert (config.rows, config.cols) == (5, 5)
        assert config.wave_delay == 0.0
        assert config.max_waves == 200

    def test_bad_environment_value(self, monkeypatch):
        monkeypatch.setenv("CHAINREACTION_ROWS", "nine")
        with pytest.raises(ConfigurationError):
            load_config()


class TestErrors:

    def test_hierarchy(self):
        assert issubclass(InvalidMoveError, RulesViolationError)
        assert issubclass(StoreTimeoutError, StoreError)
        assert issubclass(StoreError, ChainReactionError)

    def test_str_and_dict(self):
        error = InvalidMoveError("Cell is owned", context={"row": 1, "col": 2})
        assert str(error) == "[INVALID_MOVE] Cell is owned (row=1, col=2)"
        assert error.to_dict() == {
            "code": "INVALID_MOVE",
            "message": "Cell is owned",
            "context": {"row": 1, "col": 2},
        }

    def test_code_override(self):
        assert ChainReactionError("x", code="CUSTOM").code == "CUSTOM"
        assert str(StoreError("down")) == "[STORE_ERROR] down"


class TestCLI:

    def test_no_command(self):
        with pytest.raises(SystemExit):
            main([])

    def test_hot_seat_game(self, monkeypatch, capsys):
        answers = iter(["Ann", "Ben", "0 0", "0 1", "oops", "0 1", "0 0"])
        monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))

        main(["play", "--players", "2"])

        out = capsys.readouterr().out
        assert "Rejected" in out
        assert "Enter a row and a column" in out
        assert "Ann wins" in out

    def test_bad_player_count(self):
        with pytest.raises(SystemExit):
            main(["play", "--players", "5"])
