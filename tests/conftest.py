"""Shared fixtures for termpilot tests."""

import pytest
import pytest_asyncio

from termpilot.config import InputTimingConfig, SessionConfig, TermPilotConfig
from termpilot.terminal.supervisor import SessionSupervisor


@pytest.fixture
def fast_config() -> TermPilotConfig:
    """Config with timings shrunk so real child processes settle quickly."""
    return TermPilotConfig(
        default_timeout=5.0,
        input_timing=InputTimingConfig(
            keystroke_delay=0,
            response_delay=0.01,
            stabilization_timeout=3.0,
            poll_interval=0.02,
            stable_polls=5,
        ),
        session=SessionConfig(kill_grace_period=0.5),
    )


@pytest_asyncio.fixture
async def supervisor(fast_config):
    sup = SessionSupervisor(fast_config)
    yield sup
    await sup.kill_all()
