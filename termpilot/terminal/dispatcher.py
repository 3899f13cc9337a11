"""Step dispatcher: resolves loosely typed steps into actions and runs them."""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from pydantic import ValidationError as PydanticValidationError

from termpilot.errors import TermPilotError, ValidationError
from termpilot.models import ColorSpan, StepResult, StepStatus, TestStep
from termpilot.terminal.input import InputRequest

if TYPE_CHECKING:
    from termpilot.terminal.agent import TUIAgent

logger = logging.getLogger(__name__)


# ── Actions ─────────────────────────────────────────────────
# session_id None means "the most recently spawned live session".


@dataclass(frozen=True)
class Spawn:
    command: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class SendInput:
    session_id: str | None
    keys: str
    timeout: float | None = None


@dataclass(frozen=True)
class NavigateMenu:
    session_id: str | None
    path: tuple[str, ...]


@dataclass(frozen=True)
class ValidateOutput:
    session_id: str | None
    expected: Any


@dataclass(frozen=True)
class ValidateColors:
    session_id: str | None
    spans: tuple[ColorSpan, ...]


@dataclass(frozen=True)
class CaptureOutput:
    session_id: str | None


@dataclass(frozen=True)
class WaitForOutput:
    session_id: str | None
    pattern: str
    timeout: float | None = None


@dataclass(frozen=True)
class ResizeTerminal:
    session_id: str | None
    cols: int
    rows: int


@dataclass(frozen=True)
class KillSession:
    session_id: str | None


@dataclass(frozen=True)
class Wait:
    duration: float


Action = Union[
    Spawn,
    SendInput,
    NavigateMenu,
    ValidateOutput,
    ValidateColors,
    CaptureOutput,
    WaitForOutput,
    ResizeTerminal,
    KillSession,
    Wait,
]


# ── Parsing ─────────────────────────────────────────────────


def _seconds(milliseconds: int | None) -> float | None:
    return None if milliseconds is None else milliseconds / 1000


def _text_value(step: TestStep) -> str:
    if step.value is None:
        return ""
    if isinstance(step.value, list):
        return ",".join(step.value)
    return step.value


def _menu_path(step: TestStep) -> tuple[str, ...]:
    if isinstance(step.value, list):
        parts = step.value
    else:
        parts = (step.value or "").split(",")
    return tuple(part.strip() for part in parts if part.strip())


def _color_spans(step: TestStep) -> tuple[ColorSpan, ...]:
    raw: Any = step.expected if isinstance(step.expected, list) else None
    if raw is None:
        try:
            raw = json.loads(_text_value(step) or "[]")
        except json.JSONDecodeError as exc:
            raise ValidationError(
                "Invalid color validation format. Expected JSON array of color spans."
            ) from exc
    if not isinstance(raw, list):
        raise ValidationError("Invalid color validation format. Expected JSON array of color spans.")
    try:
        return tuple(ColorSpan.model_validate(item) for item in raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid color span: {exc.errors()[0]['msg']}") from exc


def _terminal_size(step: TestStep) -> tuple[int, int]:
    raw = _text_value(step) or "80,24"
    parts = raw.replace("x", ",").split(",")
    try:
        cols, rows = (int(part.strip()) for part in parts)
    except ValueError as exc:
        raise ValidationError(f"Invalid terminal size {raw!r}; expected 'cols,rows'") from exc
    return cols, rows


def _wait_duration(step: TestStep) -> float:
    raw = _text_value(step) or "1000"
    try:
        millis = int(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid wait duration {raw!r}; expected milliseconds") from exc
    if millis < 0:
        raise ValidationError(f"Invalid wait duration {raw!r}; must not be negative")
    return millis / 1000


def parse_step(step: TestStep) -> Action:
    """Resolve a step into its typed action. Raises ValidationError for unknown or malformed steps."""
    action = step.action.strip().lower()
    session_id = step.target.strip() or None

    if action in ("spawn", "spawn_tui"):
        try:
            parts = shlex.split(step.target)
        except ValueError as exc:
            raise ValidationError(f"Invalid command line {step.target!r}: {exc}") from exc
        if not parts:
            raise ValidationError("spawn needs a command in 'target'")
        return Spawn(command=parts[0], args=tuple(parts[1:]))
    if action in ("send_input", "input"):
        return SendInput(session_id=session_id, keys=_text_value(step), timeout=_seconds(step.timeout))
    if action == "navigate_menu":
        return NavigateMenu(session_id=session_id, path=_menu_path(step))
    if action == "validate_output":
        expected = step.expected if step.expected is not None else step.value
        if expected is None:
            raise ValidationError("validate_output needs 'expected' or 'value'")
        return ValidateOutput(session_id=session_id, expected=expected)
    if action in ("validate_colors", "validate_formatting"):
        return ValidateColors(session_id=session_id, spans=_color_spans(step))
    if action == "capture_output":
        return CaptureOutput(session_id=session_id)
    if action == "wait_for_output":
        return WaitForOutput(session_id=session_id, pattern=_text_value(step), timeout=_seconds(step.timeout))
    if action == "resize_terminal":
        cols, rows = _terminal_size(step)
        return ResizeTerminal(session_id=session_id, cols=cols, rows=rows)
    if action == "kill_session":
        return KillSession(session_id=session_id)
    if action == "wait":
        return Wait(duration=_wait_duration(step))
    raise ValidationError(f"Unsupported TUI action: {step.action}")


# ── Dispatch ────────────────────────────────────────────────


class StepDispatcher:
    """Runs steps against a TUIAgent and reports uniform StepResults. Never retries."""

    def __init__(self, agent: TUIAgent):
        self.agent = agent
        self._handlers: dict[type, Callable[[Any], Awaitable[Any]]] = {
            Spawn: self._spawn,
            SendInput: self._send_input,
            NavigateMenu: self._navigate_menu,
            ValidateOutput: self._validate_output,
            ValidateColors: self._validate_colors,
            CaptureOutput: self._capture_output,
            WaitForOutput: self._wait_for_output,
            ResizeTerminal: self._resize_terminal,
            KillSession: self._kill_session,
            Wait: self._wait,
        }

    async def dispatch(self, step: TestStep, step_index: int = 0) -> StepResult:
        started = time.monotonic()
        logger.info("Step %d: %s %s", step_index, step.action, step.target)
        target = step.target or "<most recent>"

        try:
            action = parse_step(step)
            if not isinstance(action, Spawn):
                target = action.session_id or target
            result = await self.execute(action)
        except TermPilotError as exc:
            duration = time.monotonic() - started
            message = (
                f"{step.action} failed on session {target} after {duration * 1000:.0f}ms: {exc}"
            )
            logger.warning("Step %d failed: %s", step_index, message)
            return StepResult(
                step_index=step_index,
                action=step.action,
                status=StepStatus.FAILED,
                duration=duration,
                error=message,
            )

        duration = time.monotonic() - started
        logger.info("Step %d passed in %.0fms", step_index, duration * 1000)
        return StepResult(
            step_index=step_index,
            action=step.action,
            status=StepStatus.PASSED,
            duration=duration,
            actual_result=result if isinstance(result, str) else json.dumps(result, default=str),
        )

    async def execute(self, action: Action) -> Any:
        handler = self._handlers.get(type(action))
        if handler is None:
            raise ValidationError(f"Unsupported TUI action: {type(action).__name__}")
        return await handler(action)

    def _session(self, session_id: str | None) -> str:
        return session_id or self.agent.most_recent_session_id()

    async def _spawn(self, action: Spawn) -> str:
        return await self.agent.spawn(action.command, list(action.args))

    async def _send_input(self, action: SendInput) -> str:
        request = InputRequest(keys=action.keys, wait_for_stabilization=True, timeout=action.timeout)
        await self.agent.send_input(self._session(action.session_id), request)
        return "Input sent successfully"

    async def _navigate_menu(self, action: NavigateMenu) -> dict[str, Any]:
        context = await self.agent.navigate_menu(self._session(action.session_id), list(action.path))
        return context.model_dump()

    async def _validate_output(self, action: ValidateOutput) -> str:
        session_id = self._session(action.session_id)
        if not self.agent.validate_output(session_id, action.expected):
            latest = self.agent.capture_output(session_id)
            seen = latest.text if latest else "<no output>"
            raise ValidationError(
                f"Output validation failed: expected {action.expected!r}, got {seen!r}"
            )
        return "true"

    async def _validate_colors(self, action: ValidateColors) -> str:
        session_id = self._session(action.session_id)
        if not self.agent.validate_formatting(session_id, list(action.spans)):
            raise ValidationError(
                "Color validation failed: expected spans "
                f"{[span.model_dump(exclude={'position'}) for span in action.spans]!r} not found"
            )
        return "true"

    async def _capture_output(self, action: CaptureOutput) -> str:
        latest = self.agent.capture_output(self._session(action.session_id))
        return latest.model_dump_json() if latest else "null"

    async def _wait_for_output(self, action: WaitForOutput) -> str:
        timeout = self.agent.config.default_timeout if action.timeout is None else action.timeout
        await self.agent.wait_for_output_pattern(self._session(action.session_id), action.pattern, timeout)
        return "Pattern found"

    async def _resize_terminal(self, action: ResizeTerminal) -> str:
        self.agent.resize_terminal(self._session(action.session_id), action.cols, action.rows)
        return "Terminal resized successfully"

    async def _kill_session(self, action: KillSession) -> str:
        await self.agent.kill_session(self._session(action.session_id))
        return "Session killed successfully"

    async def _wait(self, action: Wait) -> str:
        await asyncio.sleep(action.duration)
        return f"Waited {action.duration * 1000:.0f}ms"
