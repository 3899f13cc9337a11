"""TUI agent: the public face of the terminal automation engine."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from termpilot.config import TermPilotConfig
from termpilot.models import (
    ColorSpan,
    MenuContext,
    OutputEvent,
    ScenarioResult,
    SessionInfo,
    StepResult,
    StepStatus,
    TestStep,
)
from termpilot.scenario import Scenario
from termpilot.terminal.dispatcher import StepDispatcher
from termpilot.terminal.input import InputRequest, InputSimulator
from termpilot.terminal.keys import KeyMapping
from termpilot.terminal.menu import MenuNavigator
from termpilot.terminal.supervisor import SessionListener, SessionSupervisor
from termpilot.terminal.validation import matches, missing_spans

logger = logging.getLogger(__name__)


class TUIAgent:
    """
    Drives interactive terminal programs through scripted steps.

    Composes the supervisor (process lifecycle and buffers), the input
    simulator (keystrokes and waits), the menu navigator and the step
    dispatcher. Use as an async context manager to guarantee cleanup.
    """

    def __init__(
        self,
        config: TermPilotConfig | None = None,
        *,
        key_mapping: KeyMapping | None = None,
        supervisor: SessionSupervisor | None = None,
    ):
        self.config = config or TermPilotConfig()
        self.supervisor = supervisor or SessionSupervisor(self.config)
        self.inputs = InputSimulator(self.supervisor, key_mapping, self.config)
        self.menu = MenuNavigator(self.supervisor, self.inputs)
        self.dispatcher = StepDispatcher(self)

    async def __aenter__(self) -> TUIAgent:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cleanup()

    # ── Sessions ────────────────────────────────────────────

    def add_listener(self, listener: SessionListener) -> None:
        self.supervisor.add_listener(listener)

    def set_environment(self, variables: Mapping[str, str]) -> None:
        """Scenario variables for later spawns; os.environ is never touched."""
        for name, value in variables.items():
            self.supervisor.scenario_environment[name] = str(value)
            logger.debug("Set environment variable: %s", name)

    async def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> str:
        return await self.supervisor.spawn(command, args, env=env, cwd=cwd)

    async def kill_session(self, session_id: str) -> None:
        await self.supervisor.kill(session_id)

    async def kill_all(self) -> list[Exception]:
        return await self.supervisor.kill_all()

    def resize_terminal(self, session_id: str, cols: int, rows: int) -> None:
        self.supervisor.resize(session_id, cols, rows)

    def most_recent_session_id(self) -> str:
        return self.supervisor.most_recent_session_id()

    def session_info(self) -> dict[str, SessionInfo]:
        return self.supervisor.session_info()

    # ── Input and waiting ───────────────────────────────────

    async def send_input(self, session_id: str, data: str | InputRequest) -> None:
        await self.inputs.send_input(session_id, data)

    async def wait_for_stabilization(self, session_id: str, timeout: float | None = None) -> float:
        return await self.inputs.wait_for_stabilization(session_id, timeout)

    async def wait_for_output_pattern(self, session_id: str, pattern: str, timeout: float | None = None) -> float:
        limit = self.config.default_timeout if timeout is None else timeout
        return await self.inputs.wait_for_pattern(session_id, pattern, limit)

    async def navigate_menu(self, session_id: str, path: list[str]) -> MenuContext:
        return await self.menu.navigate(session_id, path)

    # ── Output ──────────────────────────────────────────────

    def capture_output(self, session_id: str) -> OutputEvent | None:
        """Most recent output event, or None for unknown or silent sessions."""
        return self.supervisor.latest_output(session_id)

    def all_output(self, session_id: str) -> list[OutputEvent]:
        return self.supervisor.output(session_id)

    def validate_output(self, session_id: str, expected: str | Mapping[str, Any]) -> bool:
        output = self.capture_output(session_id)
        if output is None:
            return False
        return matches(output.text, expected)

    def validate_formatting(self, session_id: str, expected: Sequence[ColorSpan]) -> bool:
        output = self.capture_output(session_id)
        if output is None:
            return False
        missing = missing_spans(output.color_spans, expected)
        if missing:
            logger.debug(
                "Expected color spans not found on %s: %s (available: %s)",
                session_id,
                [span.model_dump(exclude={"position"}) for span in missing],
                [span.model_dump(exclude={"position"}) for span in output.color_spans],
            )
            return False
        return True

    def scenario_logs(self) -> list[str]:
        """One line per non-empty output event across all known sessions."""
        logs = []
        for session in self.supervisor.all_sessions():
            for event in session.output_buffer:
                text = event.text.strip()
                if text:
                    logs.append(f"[{session.session_id}:{event.stream.value.upper()}] {text}")
        return logs

    # ── Steps and scenarios ─────────────────────────────────

    async def execute_step(self, step: TestStep, step_index: int = 0) -> StepResult:
        return await self.dispatcher.dispatch(step, step_index)

    async def execute(self, scenario: Scenario) -> ScenarioResult:
        """
        Run a scenario's steps in order, stopping at the first failure.

        Cleanup steps always run, and every session is killed before returning.
        """
        logger.info("Scenario start: %s (%s)", scenario.id, scenario.name or scenario.id)
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        previous_environment = dict(self.supervisor.scenario_environment)
        self.set_environment(scenario.environment)

        results: list[StepResult] = []
        status = StepStatus.PASSED
        error: str | None = None
        try:
            for index, step in enumerate(scenario.steps):
                result = await self.execute_step(step, index)
                results.append(result)
                if not result.passed:
                    status = StepStatus.FAILED
                    error = result.error
                    break

            for offset, step in enumerate(scenario.cleanup, start=len(scenario.steps)):
                result = await self.execute_step(step, offset)
                if not result.passed:
                    logger.warning("Cleanup step %d failed: %s", offset, result.error)

            logs = self.scenario_logs()
            sessions = self.session_info()
        finally:
            failures = await self.kill_all()
            for failure in failures:
                logger.warning("Session cleanup failure: %s", failure)
            self.menu.reset()
            self.supervisor.scenario_environment = previous_environment

        duration = time.monotonic() - started
        logger.info("Scenario end: %s %s in %.0fms", scenario.id, status.value, duration * 1000)
        return ScenarioResult(
            scenario_id=scenario.id,
            status=status,
            duration=duration,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            error=error,
            step_results=results,
            logs=logs,
            sessions=sessions,
        )

    async def cleanup(self) -> None:
        """Kill every session, drop retired buffers and forget menu state."""
        logger.info("Cleaning up TUI agent resources")
        for failure in await self.kill_all():
            logger.error("Error during cleanup: %s", failure)
        self.supervisor.clear_retired()
        self.menu.reset()
