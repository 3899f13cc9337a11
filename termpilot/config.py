"""Configuration management for termpilot."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from termpilot.models import TerminalSize

TERMPILOT_DIR = Path.home() / ".termpilot"
CONFIG_FILE = TERMPILOT_DIR / "config.yaml"
LOG_DIR = TERMPILOT_DIR / "logs"


class TerminalConfig(BaseModel):
    """Environment handed to spawned programs."""

    terminal_type: str = "xterm-256color"
    size: TerminalSize = Field(default_factory=TerminalSize)
    working_directory: str | None = None  # None -> current directory
    environment: dict[str, str] = Field(default_factory=dict)

    def default_environment(self) -> dict[str, str]:
        """Variables derived from the terminal type and size."""
        return {
            "TERM": self.terminal_type,
            "COLUMNS": str(self.size.cols),
            "LINES": str(self.size.rows),
        }


class InputTimingConfig(BaseModel):
    """Keystroke cadence and settle detection, in seconds."""

    keystroke_delay: float = 0.05
    response_delay: float = 0.1
    stabilization_timeout: float = 2.0
    poll_interval: float = 0.1
    stable_polls: int = 5


class SessionConfig(BaseModel):
    """Process supervision settings."""

    kill_grace_period: float = 1.0
    read_chunk_size: int = 4096


class LogConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    log_inputs: bool = True
    log_outputs: bool = True
    file: str | None = None


class ServerConfig(BaseModel):
    """Control server settings."""

    port: int = 9484
    bind: str = "127.0.0.1"


class TermPilotConfig(BaseModel):
    """Root configuration model."""

    default_timeout: float = 30.0
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    input_timing: InputTimingConfig = Field(default_factory=InputTimingConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LogConfig = Field(default_factory=LogConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    # platform -> key name -> sequence, layered over the built-in table
    key_mappings: dict[str, dict[str, str]] = Field(default_factory=dict)


def ensure_dirs() -> None:
    """Create termpilot directories if they don't exist."""
    TERMPILOT_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> TermPilotConfig:
    """Load configuration from ~/.termpilot/config.yaml, falling back to defaults."""
    raw = load_yaml(path or CONFIG_FILE)
    return TermPilotConfig(**raw)


def save_default_config() -> Path:
    """Write default config to ~/.termpilot/config.yaml."""
    ensure_dirs()
    config = TermPilotConfig()
    with open(CONFIG_FILE, "w") as f:
        yaml.dump(config.model_dump(), f, default_flow_style=False, sort_keys=False)
    return CONFIG_FILE


def load_yaml(path: Path) -> dict[str, Any]:
    """Safely load a YAML mapping, returning an empty dict when the file is missing."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}
