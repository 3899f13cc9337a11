"""Tests for stabilization and pattern waits."""

import pytest

from termpilot.errors import OperationTimeoutError, ProcessError, ValidationError
from termpilot.terminal.quiescence import wait_for_pattern, wait_for_stabilization

# ── Helpers ─────────────────────────────────────────────────


class Counter:
    """Event counter that grows for the first `grow_for` reads, then stays put."""

    def __init__(self, grow_for: int = 0):
        self.grow_for = grow_for
        self.reads = 0

    def __call__(self) -> int:
        value = min(self.reads, self.grow_for)
        self.reads += 1
        return value


# ── Tests: wait_for_stabilization ───────────────────────────


class TestStabilization:
    @pytest.mark.asyncio
    async def test_quiet_session_settles_after_required_polls(self):
        counter = Counter()
        elapsed = await wait_for_stabilization(counter, poll_interval=0.01, required_polls=5)
        # one initial read plus five polls
        assert counter.reads == 6
        assert elapsed >= 0.05 - 0.005

    @pytest.mark.asyncio
    async def test_settles_between_five_and_six_intervals(self):
        interval = 0.05
        elapsed = await wait_for_stabilization(Counter(), poll_interval=interval, required_polls=5)
        assert 5 * interval - 0.005 <= elapsed <= 6 * interval + 0.01

    @pytest.mark.asyncio
    async def test_new_events_reset_the_streak(self):
        counter = Counter(grow_for=3)
        await wait_for_stabilization(counter, poll_interval=0.01, required_polls=5)
        # three growing polls, then five stable ones
        assert counter.reads == 9

    @pytest.mark.asyncio
    async def test_busy_session_times_out(self):
        counter = Counter(grow_for=10_000)
        with pytest.raises(OperationTimeoutError) as exc_info:
            await wait_for_stabilization(counter, poll_interval=0.01, timeout=0.05)
        assert isinstance(exc_info.value, TimeoutError)
        assert "Output stabilization timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_check_failure_aborts(self):
        def check():
            raise ProcessError("tui_1", "stdout read failed")

        with pytest.raises(ProcessError):
            await wait_for_stabilization(Counter(), poll_interval=0.01, check=check)


# ── Tests: wait_for_pattern ─────────────────────────────────


class TestPattern:
    @pytest.mark.asyncio
    async def test_immediate_match(self):
        elapsed = await wait_for_pattern(lambda: "ready>", "ready", timeout=1.0, poll_interval=0.01)
        assert elapsed < 0.5

    @pytest.mark.asyncio
    async def test_case_insensitive(self):
        await wait_for_pattern(lambda: "Ready>", "READY", timeout=1.0, poll_interval=0.01)

    @pytest.mark.asyncio
    async def test_waits_for_output_to_appear(self):
        screens = iter([None, None, "Loading", "Main Menu"])
        last = {"text": None}

        def latest():
            last["text"] = next(screens, last["text"])
            return last["text"]

        await wait_for_pattern(latest, r"main\s+menu", timeout=1.0, poll_interval=0.01)
        assert last["text"] == "Main Menu"

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(OperationTimeoutError, match="Waiting for pattern"):
            await wait_for_pattern(lambda: "nothing", "never", timeout=0.05, poll_interval=0.01)

    @pytest.mark.asyncio
    async def test_invalid_pattern(self):
        with pytest.raises(ValidationError):
            await wait_for_pattern(lambda: "x", "(unclosed", timeout=0.05)
