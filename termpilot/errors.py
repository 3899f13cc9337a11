"""Error taxonomy for terminal automation."""

from __future__ import annotations

from collections.abc import Sequence


class TermPilotError(Exception):
    """Base class for every error raised by termpilot."""


class SpawnError(TermPilotError):
    """The OS refused to create the process."""

    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to spawn TUI application '{command}': {reason}")


class SessionNotFoundError(TermPilotError):
    """The session is unknown or no longer running."""

    def __init__(self, session_id: str, status: str | None = None):
        self.session_id = session_id
        self.status = status
        if not session_id:
            message = "No active TUI sessions"
        elif status is None:
            message = f"Session not found: {session_id}"
        else:
            message = f"Session {session_id} is not running (status: {status})"
        super().__init__(message)


class OperationTimeoutError(TermPilotError, TimeoutError):
    """A bounded wait exceeded its limit."""

    def __init__(self, operation: str, limit: float, elapsed: float):
        self.operation = operation
        self.limit = limit
        self.elapsed = elapsed
        super().__init__(
            f"{operation} timed out after {elapsed * 1000:.0f}ms (limit {limit * 1000:.0f}ms)"
        )


class MenuItemNotFoundError(TermPilotError):
    """No parsed menu item contains the requested label."""

    def __init__(self, label: str, available: Sequence[str]):
        self.label = label
        self.available = list(available)
        listing = ", ".join(self.available) if self.available else "<none>"
        super().__init__(f"Menu item not found: {label}. Available: {listing}")


class ValidationError(TermPilotError):
    """A step or predicate could not be interpreted."""


class ProcessError(TermPilotError):
    """The child process failed at OS level after it was spawned."""

    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Session {session_id} failed: {reason}")
