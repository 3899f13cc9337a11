"""Tests for the input simulator against a recording supervisor."""

import pytest

from termpilot.config import TermPilotConfig
from termpilot.errors import OperationTimeoutError, SessionNotFoundError
from termpilot.models import OutputEvent, StreamType
from termpilot.terminal.input import InputRequest, InputSimulator
from termpilot.terminal.keys import KeyMapping

# ── Helpers ─────────────────────────────────────────────────


class RecordingSupervisor:
    """Implements the slice of SessionSupervisor the simulator relies on."""

    def __init__(self, config: TermPilotConfig):
        self.config = config
        self.running = True
        self.writes: list[str] = []
        self.events: list[tuple[str, dict]] = []
        self.count = 0
        self.screen: str | None = None

    def require_running(self, session_id):
        if not self.running:
            raise SessionNotFoundError(session_id, "completed")

    def require(self, session_id):
        pass

    async def write(self, session_id, data):
        self.writes.append(data)

    def notify(self, event_type, session_id, **data):
        self.events.append((event_type, data))

    def event_count(self, session_id):
        return self.count

    def check_healthy(self, session_id):
        pass

    def latest_output(self, session_id):
        if self.screen is None:
            return None
        return OutputEvent(stream=StreamType.STDOUT, raw=self.screen, text=self.screen)


@pytest.fixture
def recorder(fast_config):
    return RecordingSupervisor(fast_config)


def simulator(recorder, platform="linux") -> InputSimulator:
    return InputSimulator(recorder, KeyMapping.for_platform(platform))


# ── Tests: send_input ───────────────────────────────────────


class TestSendInput:
    @pytest.mark.asyncio
    async def test_writes_one_character_at_a_time(self, recorder):
        processed = await simulator(recorder).send_input("tui_1", "ab{Enter}")
        assert processed == "ab\n"
        assert recorder.writes == ["a", "b", "\n"]

    @pytest.mark.asyncio
    async def test_windows_enter(self, recorder):
        await simulator(recorder, "win32").send_input("tui_1", "ok{Enter}")
        assert "".join(recorder.writes) == "ok\r\n"

    @pytest.mark.asyncio
    async def test_arrow_key_sequence(self, recorder):
        await simulator(recorder).send_input("tui_1", "{ArrowDown}")
        assert "".join(recorder.writes) == "\x1b[B"

    @pytest.mark.asyncio
    async def test_notifies_with_original_keys(self, recorder):
        await simulator(recorder).send_input("tui_1", "q{Enter}")
        assert recorder.events == [("input_sent", {"input": "q{Enter}"})]

    @pytest.mark.asyncio
    async def test_rejects_finished_session(self, recorder):
        recorder.running = False
        with pytest.raises(SessionNotFoundError, match="not running"):
            await simulator(recorder).send_input("tui_1", "x")
        assert recorder.writes == []

    @pytest.mark.asyncio
    async def test_custom_timing(self, recorder):
        request = InputRequest(keys="xyz", timing=0.001)
        await simulator(recorder).send_input("tui_1", request)
        assert recorder.writes == ["x", "y", "z"]

    @pytest.mark.asyncio
    async def test_waits_for_stabilization(self, recorder):
        request = InputRequest(keys="x", wait_for_stabilization=True)
        await simulator(recorder).send_input("tui_1", request)
        assert recorder.writes == ["x"]

    @pytest.mark.asyncio
    async def test_waits_for_pattern(self, recorder):
        recorder.screen = "Main Menu"
        request = InputRequest(keys="x", wait_for_pattern="main menu", timeout=1.0)
        await simulator(recorder).send_input("tui_1", request)

    @pytest.mark.asyncio
    async def test_pattern_timeout(self, recorder):
        request = InputRequest(keys="x", wait_for_pattern="never", timeout=0.05)
        with pytest.raises(OperationTimeoutError):
            await simulator(recorder).send_input("tui_1", request)
        assert recorder.events == []


class TestKeys:
    def test_key_lookup(self, recorder):
        assert simulator(recorder).key("Enter") == "\n"

    def test_config_overrides_default_mapping(self, fast_config):
        fast_config.key_mappings = {"linux": {"Enter": "\r"}, "darwin": {"Enter": "\r"}, "win32": {"Enter": "\r"}}
        inputs = InputSimulator(RecordingSupervisor(fast_config))
        assert inputs.key("Enter") == "\r"
