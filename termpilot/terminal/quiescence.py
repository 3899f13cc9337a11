"""Quiescence detection: decides when a terminal program has finished rendering."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable

from termpilot.errors import OperationTimeoutError, ValidationError

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_REQUIRED_POLLS = 5


async def wait_for_stabilization(
    count: Callable[[], int],
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    required_polls: int = DEFAULT_REQUIRED_POLLS,
    timeout: float = 2.0,
    check: Callable[[], None] | None = None,
) -> float:
    """
    Wait until the buffered event count stops changing.

    Terminal programs never announce that they are done drawing, so settlement
    is inferred from `required_polls` consecutive polls seeing the same count.
    The comparison is length based, not content based: a redraw that appends
    a new event resets the counter even if its bytes repeat.

    Args:
        count: Returns the session's monotonic event counter.
        check: Called on every poll; may raise to abort the wait.

    Returns the elapsed time in seconds.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    last = count()
    stable = 0

    while True:
        await asyncio.sleep(poll_interval)
        if check is not None:
            check()

        current = count()
        if current == last:
            stable += 1
            if stable >= required_polls:
                return loop.time() - started
        else:
            stable = 0
            last = current

        elapsed = loop.time() - started
        if elapsed > timeout:
            raise OperationTimeoutError("Output stabilization", timeout, elapsed)


async def wait_for_pattern(
    latest_text: Callable[[], str | None],
    pattern: str,
    *,
    timeout: float,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    check: Callable[[], None] | None = None,
) -> float:
    """Poll the latest output until it matches `pattern` (case-insensitive)."""
    try:
        regex = re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        raise ValidationError(f"Invalid output pattern {pattern!r}: {exc}") from exc

    loop = asyncio.get_running_loop()
    started = loop.time()

    while True:
        if check is not None:
            check()
        text = latest_text()
        if text is not None and regex.search(text):
            return loop.time() - started

        elapsed = loop.time() - started
        if elapsed > timeout:
            raise OperationTimeoutError(f"Waiting for pattern {pattern!r}", timeout, elapsed)
        await asyncio.sleep(poll_interval)
