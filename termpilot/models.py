"""Shared data models for termpilot."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    """Lifecycle state of a supervised terminal program."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    KILLED = "killed"


class StreamType(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class TerminalSize(BaseModel):
    cols: int = Field(default=80, gt=0)
    rows: int = Field(default=24, gt=0)


class SpanPosition(BaseModel):
    """Offsets of a styled run inside the decoded text of one chunk."""

    start: int
    end: int


class ColorSpan(BaseModel):
    """One styled run of text extracted from SGR escape sequences."""

    text: str
    fg: str | None = None
    bg: str | None = None
    styles: list[str] = Field(default_factory=list)
    position: SpanPosition = Field(default_factory=lambda: SpanPosition(start=0, end=0))

    def same_style(self, other: ColorSpan) -> bool:
        """Compare text, colors and styles, ignoring position."""
        return (
            self.text == other.text
            and self.fg == other.fg
            and self.bg == other.bg
            and list(self.styles) == list(other.styles)
        )


class OutputEvent(BaseModel):
    """One decoded chunk of output from a session."""

    stream: StreamType
    raw: str
    text: str
    color_spans: list[ColorSpan] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)


class Session(BaseModel):
    """One spawned terminal program and its buffered output."""

    session_id: str
    pid: int
    command: str
    args: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    status: SessionStatus = SessionStatus.RUNNING
    terminal_size: TerminalSize = Field(default_factory=TerminalSize)
    output_buffer: list[OutputEvent] = Field(default_factory=list)
    events_received: int = 0
    exit_code: int | None = None
    error: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status == SessionStatus.RUNNING

    def latest_output(self) -> OutputEvent | None:
        if not self.output_buffer:
            return None
        return self.output_buffer[-1]

    def to_info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_id,
            pid=self.pid,
            command=self.command,
            args=list(self.args),
            status=self.status,
            started_at=self.started_at,
            output_events=len(self.output_buffer),
            exit_code=self.exit_code,
        )


class SessionInfo(BaseModel):
    """Summary of a session for reports and listings."""

    session_id: str
    pid: int
    command: str
    args: list[str] = Field(default_factory=list)
    status: SessionStatus
    started_at: datetime
    output_events: int = 0
    exit_code: int | None = None


class MenuContext(BaseModel):
    """Navigation state for the active menu."""

    level: int = 0
    items: list[str] = Field(default_factory=list)
    selected_index: int = 0
    history: list[str] = Field(default_factory=list)


class SessionEvent(BaseModel):
    """Notification delivered to supervisor listeners."""

    type: str  # "session_started" | "output" | "session_closed" | "session_error" | ...
    session_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    data: dict[str, Any] = Field(default_factory=dict)


class TestStep(BaseModel):
    """One step of the external action vocabulary, as written in scenario files."""

    __test__ = False  # not a pytest class

    action: str
    target: str = ""  # command line for spawn, session id otherwise
    value: str | list[str] | None = None
    expected: str | dict[str, Any] | list[Any] | None = None
    timeout: int | None = None  # milliseconds
    description: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def _scalar_to_str(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class StepStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"


class StepResult(BaseModel):
    """Outcome of one dispatched step."""

    step_index: int
    action: str
    status: StepStatus
    duration: float = 0.0
    error: str | None = None
    actual_result: str | None = None

    @property
    def passed(self) -> bool:
        return self.status == StepStatus.PASSED


class ScenarioResult(BaseModel):
    """Outcome of a whole scenario run."""

    scenario_id: str
    status: StepStatus
    duration: float = 0.0
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime = Field(default_factory=_utcnow)
    error: str | None = None
    step_results: list[StepResult] = Field(default_factory=list)
    logs: list[str] = Field(default_factory=list)
    sessions: dict[str, SessionInfo] = Field(default_factory=dict)
