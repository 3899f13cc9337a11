"""Tests for configuration management."""

import pytest
import yaml
from pydantic import ValidationError

from termpilot import config as config_module
from termpilot.config import (
    InputTimingConfig,
    ServerConfig,
    TermPilotConfig,
    TerminalConfig,
    load_config,
    load_yaml,
    save_default_config,
)
from termpilot.models import TerminalSize


class TestTermPilotConfig:
    def test_defaults(self):
        config = TermPilotConfig()
        assert config.default_timeout == 30.0
        assert config.server.port == 9484
        assert config.server.bind == "127.0.0.1"
        assert config.terminal.terminal_type == "xterm-256color"
        assert (config.terminal.size.cols, config.terminal.size.rows) == (80, 24)
        assert config.session.kill_grace_period == 1.0
        assert config.logging.level == "INFO"
        assert config.key_mappings == {}

    def test_input_timing_defaults(self):
        timing = InputTimingConfig()
        assert timing.keystroke_delay == 0.05
        assert timing.response_delay == 0.1
        assert timing.stabilization_timeout == 2.0
        assert timing.poll_interval == 0.1
        assert timing.stable_polls == 5

    def test_custom_values(self):
        config = TermPilotConfig(
            server=ServerConfig(port=8080),
            terminal=TerminalConfig(size=TerminalSize(cols=132, rows=43)),
        )
        assert config.server.port == 8080
        assert config.terminal.size.cols == 132

    def test_serialization_roundtrip(self):
        config = TermPilotConfig()
        restored = TermPilotConfig(**config.model_dump())
        assert restored == config

    def test_rejects_bad_terminal_size(self):
        with pytest.raises(ValidationError):
            TerminalConfig(size={"cols": 0, "rows": 24})


class TestTerminalConfig:
    def test_default_environment(self):
        env = TerminalConfig(terminal_type="vt100", size=TerminalSize(cols=100, rows=30)).default_environment()
        assert env == {"TERM": "vt100", "COLUMNS": "100", "LINES": "30"}


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")
        assert config == TermPilotConfig()

    def test_partial_file_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "default_timeout: 5\n"
            "input_timing:\n"
            "  keystroke_delay: 0\n"
            "key_mappings:\n"
            "  linux:\n"
            "    F1: \"\\eOP\"\n"
        )
        config = load_config(path)
        assert config.default_timeout == 5.0
        assert config.input_timing.keystroke_delay == 0
        assert config.input_timing.stable_polls == 5
        assert config.key_mappings == {"linux": {"F1": "\x1bOP"}}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_yaml(path) == {}


class TestSaveDefaultConfig:
    def test_writes_loadable_yaml(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config_module, "TERMPILOT_DIR", tmp_path)
        monkeypatch.setattr(config_module, "LOG_DIR", tmp_path / "logs")
        monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "config.yaml")

        path = save_default_config()

        assert path == tmp_path / "config.yaml"
        assert (tmp_path / "logs").is_dir()
        with open(path) as f:
            data = yaml.safe_load(f)
        assert data["server"]["port"] == 9484
        assert TermPilotConfig(**data) == TermPilotConfig()
