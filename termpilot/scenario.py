"""Scenario files: a named list of steps plus the environment they run in."""

from __future__ import annotations

from pathlib import Path

import pydantic
import yaml
from pydantic import BaseModel, Field

from termpilot.config import load_yaml
from termpilot.errors import ValidationError
from termpilot.models import TestStep


class Scenario(BaseModel):
    """A scripted test scenario for the TUI agent."""

    id: str
    name: str = ""
    description: str = ""
    environment: dict[str, str] = Field(default_factory=dict)
    steps: list[TestStep] = Field(default_factory=list)
    cleanup: list[TestStep] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    enabled: bool = True


def load_scenario(path: Path) -> Scenario:
    """
    Load a scenario from YAML. The id defaults to the file stem.

    Every way a file can fail to load (missing, unparsable YAML, wrong
    shape, invalid steps) surfaces as ValidationError.
    """
    if not path.exists():
        raise ValidationError(f"Scenario file not found: {path}")
    try:
        raw = load_yaml(path)
    except yaml.YAMLError as exc:
        raise ValidationError(f"Invalid YAML in scenario file {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValidationError(f"Scenario file must contain a mapping: {path}")
    raw.setdefault("id", path.stem)
    try:
        return Scenario(**raw)
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid scenario {path}: {problems}") from exc
