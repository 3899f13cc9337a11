"""Session supervisor: spawns terminal programs, pumps their output and kills them."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import random
import string
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from termpilot.config import TermPilotConfig
from termpilot.errors import ProcessError, SessionNotFoundError, SpawnError, ValidationError
from termpilot.models import (
    OutputEvent,
    Session,
    SessionEvent,
    SessionInfo,
    SessionStatus,
    StreamType,
    TerminalSize,
)
from termpilot.terminal.decoder import decode

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionEvent], None]

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_session_id(prefix: str = "tui") -> str:
    """Opaque id of the form <prefix>_<millis>_<9 base-36 chars>."""
    millis = int(time.time() * 1000)
    token = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}_{millis}_{token}"


@dataclass
class _ProcessHandle:
    """OS-level state the supervisor keeps beside each Session model."""

    process: asyncio.subprocess.Process
    readers: list[asyncio.Task] = field(default_factory=list)
    watcher: asyncio.Task | None = None
    kill_task: asyncio.Task | None = None


class SessionSupervisor:
    """
    Owns the session registry.

    Sessions live in the live table while their process is supervised and
    move to the retired table once a kill or a natural exit is processed.
    Retired buffers stay readable until clear_retired().
    """

    def __init__(self, config: TermPilotConfig | None = None):
        self.config = config or TermPilotConfig()
        self.scenario_environment: dict[str, str] = {}
        self._live: dict[str, Session] = {}
        self._retired: dict[str, Session] = {}
        self._handles: dict[str, _ProcessHandle] = {}
        self._listeners: list[SessionListener] = []

    # ── Observers ───────────────────────────────────────────

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify(self, event_type: str, session_id: str, **data: Any) -> None:
        """Deliver an event to every listener; listener errors never reach the session."""
        event = SessionEvent(type=event_type, session_id=session_id, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed on %s for %s", event_type, session_id)

    # ── Lifecycle ───────────────────────────────────────────

    def build_environment(self, env: Mapping[str, str] | None = None) -> dict[str, str]:
        """Inherited environment < terminal defaults < configured < scenario < per-call."""
        merged = dict(os.environ)
        merged.update(self.config.terminal.default_environment())
        merged.update(self.config.terminal.environment)
        merged.update(self.scenario_environment)
        if env:
            merged.update(env)
        return merged

    async def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> str:
        """Start a program and register a running session. Returns the session id."""
        session_id = generate_session_id()
        args = [str(a) for a in args]
        logger.info("Spawning TUI application: %s %s (session %s)", command, " ".join(args), session_id)

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_environment(env),
                cwd=cwd or self.config.terminal.working_directory or None,
            )
        except (OSError, ValueError) as exc:
            logger.error("Failed to spawn TUI application %s: %s", command, exc)
            raise SpawnError(command, str(exc)) from exc

        session = Session(
            session_id=session_id,
            pid=process.pid,
            command=command,
            args=args,
            terminal_size=self.config.terminal.size.model_copy(),
        )
        handle = _ProcessHandle(process=process)
        self._live[session_id] = session
        self._handles[session_id] = handle

        handle.readers = [
            asyncio.create_task(self._pump(session, process.stdout, StreamType.STDOUT)),
            asyncio.create_task(self._pump(session, process.stderr, StreamType.STDERR)),
        ]
        handle.watcher = asyncio.create_task(self._watch_exit(session, handle))

        logger.info("TUI application spawned (session %s, pid %s)", session_id, process.pid)
        self.notify("session_started", session_id, pid=process.pid, command=command, args=args)
        return session_id

    async def kill(self, session_id: str) -> None:
        """
        SIGTERM, wait out the grace period, then SIGKILL.

        A session whose process already exited is marked killed without
        signalling. Unknown sessions are a logged no-op, and concurrent calls
        for the same session share one termination.
        """
        handle = self._handles.get(session_id)
        if session_id not in self._live or handle is None:
            retired = self._retired.get(session_id)
            if retired is None:
                logger.warning("Session not found: %s", session_id)
            elif retired.status != SessionStatus.KILLED:
                logger.info("Session %s already exited, marking it killed", session_id)
                retired.status = SessionStatus.KILLED
                self.notify("session_killed", session_id, exit_code=retired.exit_code)
            return

        if handle.kill_task is None:
            handle.kill_task = asyncio.create_task(self._terminate(self._live[session_id], handle))
        await asyncio.shield(handle.kill_task)

    async def kill_all(self) -> list[Exception]:
        """Kill every live session concurrently; failures are logged and returned, never raised."""
        session_ids = list(self._live)
        if not session_ids:
            return []

        logger.info("Killing %d sessions", len(session_ids))
        results = await asyncio.gather(
            *(self.kill(session_id) for session_id in session_ids),
            return_exceptions=True,
        )
        failures: list[Exception] = []
        for session_id, result in zip(session_ids, results):
            if isinstance(result, Exception):
                logger.warning("Failed to kill session %s: %s", session_id, result)
                failures.append(result)
        return failures

    async def _terminate(self, session: Session, handle: _ProcessHandle) -> None:
        session_id = session.session_id
        process = handle.process
        grace = self.config.session.kill_grace_period
        logger.info("Killing session: %s (PID: %s)", session_id, session.pid)

        try:
            if process.returncode is None:
                _send_signal(process.terminate)
                try:
                    await asyncio.wait_for(process.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    logger.debug("Session %s ignored SIGTERM, sending SIGKILL", session_id)
                    _send_signal(process.kill)
                    await asyncio.wait_for(process.wait(), timeout=grace)
        except (OSError, asyncio.TimeoutError) as exc:
            logger.error("Failed to kill session %s: %s", session_id, exc)
            raise ProcessError(session_id, f"kill failed: {exc}") from exc

        await _settle(handle.readers, grace)
        if handle.watcher is not None and not handle.watcher.done():
            handle.watcher.cancel()
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        session.exit_code = process.returncode
        session.status = SessionStatus.KILLED
        self._retire(session_id)
        self.notify("session_killed", session_id, exit_code=process.returncode)

    async def _watch_exit(self, session: Session, handle: _ProcessHandle) -> None:
        returncode = await handle.process.wait()
        await _settle(handle.readers, self.config.session.kill_grace_period)
        if handle.kill_task is not None:
            return  # kill() owns the final state

        session.exit_code = returncode
        if session.status == SessionStatus.RUNNING:
            session.status = SessionStatus.COMPLETED if returncode == 0 else SessionStatus.FAILED
        logger.info("Session %s closed with code %s", session.session_id, returncode)
        self._retire(session.session_id)
        self.notify("session_closed", session.session_id, exit_code=returncode)

    async def _pump(
        self,
        session: Session,
        stream: asyncio.StreamReader | None,
        stream_type: StreamType,
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        chunk_size = self.config.session.read_chunk_size
        while True:
            try:
                data = await stream.read(chunk_size)
            except OSError as exc:
                self._fail(session, f"{stream_type.value} read failed: {exc}")
                return
            if not data:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self._append(session, tail, stream_type)
                return
            text = decoder.decode(data)
            if text:
                self._append(session, text, stream_type)

    def _append(self, session: Session, raw: str, stream_type: StreamType) -> None:
        text, spans = decode(raw)
        timestamp = datetime.now(timezone.utc)
        previous = session.latest_output()
        if previous is not None and timestamp < previous.timestamp:
            # wall clock stepped backwards; keep buffer order and time order aligned
            timestamp = previous.timestamp
        event = OutputEvent(
            stream=stream_type,
            raw=raw,
            text=text,
            color_spans=spans,
            timestamp=timestamp,
        )
        session.output_buffer.append(event)
        session.events_received += 1

        if self.config.logging.log_outputs:
            logger.debug("[%s %s] %s", stream_type.value.upper(), session.session_id, text.strip())
        self.notify("output", session.session_id, stream=stream_type.value, text=text)

    def _fail(self, session: Session, reason: str) -> None:
        session.status = SessionStatus.FAILED
        session.error = reason
        logger.error("Session %s error: %s", session.session_id, reason)
        self.notify("session_error", session.session_id, error=reason)

    def _retire(self, session_id: str) -> None:
        session = self._live.pop(session_id, None)
        self._handles.pop(session_id, None)
        if session is not None:
            self._retired[session_id] = session

    # ── I/O owned by the supervisor ─────────────────────────

    async def write(self, session_id: str, data: str) -> None:
        """Write to a running session's stdin and wait for the pipe to drain."""
        session = self.require_running(session_id)
        stdin = self._handles[session_id].process.stdin
        if stdin is None:
            raise ProcessError(session_id, "stdin is not piped")
        try:
            stdin.write(data.encode("utf-8"))
            await stdin.drain()
        except (ConnectionResetError, BrokenPipeError, OSError) as exc:
            self._fail(session, f"stdin write failed: {exc}")
            raise ProcessError(session_id, f"stdin write failed: {exc}") from exc

    def resize(self, session_id: str, cols: int, rows: int) -> TerminalSize:
        """Record a new terminal size. The OS pipe is not resized."""
        if cols <= 0 or rows <= 0:
            raise ValidationError(f"Invalid terminal size: {cols}x{rows}")
        session = self._live.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.terminal_size = TerminalSize(cols=cols, rows=rows)
        logger.debug("Terminal resized (session %s, %dx%d)", session_id, cols, rows)
        return session.terminal_size

    def clear_retired(self) -> None:
        self._retired.clear()

    # ── Read-only accessors ─────────────────────────────────

    def get(self, session_id: str) -> Session | None:
        return self._live.get(session_id) or self._retired.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def require_running(self, session_id: str) -> Session:
        session = self._live.get(session_id)
        if session is None:
            retired = self._retired.get(session_id)
            raise SessionNotFoundError(session_id, retired.status.value if retired else None)
        if session.status != SessionStatus.RUNNING:
            raise SessionNotFoundError(session_id, session.status.value)
        return session

    def check_healthy(self, session_id: str) -> None:
        """Raise ProcessError if the session failed at OS level."""
        session = self.get(session_id)
        if session is not None and session.error:
            raise ProcessError(session_id, session.error)

    def live_ids(self) -> list[str]:
        return list(self._live)

    def latest_output(self, session_id: str) -> OutputEvent | None:
        session = self.get(session_id)
        return session.latest_output() if session else None

    def output(self, session_id: str) -> list[OutputEvent]:
        session = self.get(session_id)
        return list(session.output_buffer) if session else []

    def event_count(self, session_id: str) -> int:
        return self.require(session_id).events_received

    def most_recent_session_id(self) -> str:
        if not self._live:
            raise SessionNotFoundError("")
        return next(reversed(self._live))

    def session_info(self) -> dict[str, SessionInfo]:
        sessions = {**self._retired, **self._live}
        return {session_id: session.to_info() for session_id, session in sessions.items()}

    def all_sessions(self) -> list[Session]:
        return [*self._retired.values(), *self._live.values()]


def _send_signal(send: Callable[[], None]) -> None:
    try:
        send()
    except ProcessLookupError:
        pass  # already gone


async def _settle(tasks: Sequence[asyncio.Task], timeout: float) -> None:
    """Give reader tasks a bounded chance to drain, then cancel stragglers."""
    pending = [task for task in tasks if not task.done()]
    if not pending:
        return
    _, still_running = await asyncio.wait(pending, timeout=timeout)
    for task in still_running:
        task.cancel()
