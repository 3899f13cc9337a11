"""Input simulator: types into a session at a human cadence."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from termpilot.config import TermPilotConfig
from termpilot.terminal.keys import KeyMapping
from termpilot.terminal.quiescence import wait_for_pattern, wait_for_stabilization
from termpilot.terminal.supervisor import SessionSupervisor

logger = logging.getLogger(__name__)


@dataclass
class InputRequest:
    """Structured input with timing and post-conditions."""

    keys: str
    timing: float | None = None  # seconds between keystrokes
    wait_for_stabilization: bool = False
    wait_for_pattern: str | None = None
    timeout: float | None = None


class InputSimulator:
    """Sends keystrokes one at a time and optionally waits for the screen to react."""

    def __init__(
        self,
        supervisor: SessionSupervisor,
        key_mapping: KeyMapping | None = None,
        config: TermPilotConfig | None = None,
    ):
        self.supervisor = supervisor
        self.config = config or supervisor.config
        self.key_mapping = key_mapping or KeyMapping.for_platform(
            overrides=self.config.key_mappings
        )

    def key(self, name: str) -> str:
        """Sequence for a symbolic key such as 'Enter' or 'ArrowDown'."""
        return self.key_mapping.lookup(name)

    async def send_input(self, session_id: str, data: str | InputRequest) -> str:
        """
        Write input to a running session.

        A plain string is typed with the default cadence and no post-conditions.
        Returns the processed text that was written.
        """
        request = data if isinstance(data, InputRequest) else InputRequest(keys=data)
        self.supervisor.require_running(session_id)

        timing = self.config.input_timing.keystroke_delay if request.timing is None else request.timing
        processed = self.key_mapping.substitute(request.keys)

        logger.debug(
            "Sending input to session %s: %r (timing %.3fs)",
            session_id,
            processed if self.config.logging.log_inputs else "[HIDDEN]",
            timing,
        )

        try:
            for char in processed:
                await self.supervisor.write(session_id, char)
                if timing > 0:
                    await asyncio.sleep(timing)

            await asyncio.sleep(self.config.input_timing.response_delay)

            if request.wait_for_stabilization:
                await self.wait_for_stabilization(session_id)

            if request.wait_for_pattern:
                timeout = self.config.default_timeout if request.timeout is None else request.timeout
                await self.wait_for_pattern(session_id, request.wait_for_pattern, timeout)
        except Exception as exc:
            logger.error("Failed to send input to session %s: %s", session_id, exc)
            raise

        self.supervisor.notify("input_sent", session_id, input=request.keys)
        return processed

    async def wait_for_stabilization(self, session_id: str, timeout: float | None = None) -> float:
        timing = self.config.input_timing
        self.supervisor.require(session_id)
        return await wait_for_stabilization(
            lambda: self.supervisor.event_count(session_id),
            poll_interval=timing.poll_interval,
            required_polls=timing.stable_polls,
            timeout=timing.stabilization_timeout if timeout is None else timeout,
            check=lambda: self.supervisor.check_healthy(session_id),
        )

    async def wait_for_pattern(self, session_id: str, pattern: str, timeout: float) -> float:
        self.supervisor.require(session_id)

        def latest_text() -> str | None:
            latest = self.supervisor.latest_output(session_id)
            return latest.text if latest else None

        return await wait_for_pattern(
            latest_text,
            pattern,
            timeout=timeout,
            poll_interval=self.config.input_timing.poll_interval,
            check=lambda: self.supervisor.check_healthy(session_id),
        )
