"""Tests for the control server."""

import asyncio
import shlex
import sys

import pytest
from fastapi.testclient import TestClient

from termpilot import __version__
from termpilot.models import SessionEvent
from termpilot.server import app as server_app
from termpilot.server.app import create_app
from termpilot.server.events import MAX_HISTORY, EventBroadcaster

SLEEPER = f"{shlex.quote(sys.executable)} -u -c " + shlex.quote(
    "import time; print('ready', flush=True); time.sleep(30)"
)


@pytest.fixture
def client(fast_config):
    with TestClient(create_app(fast_config)) as test_client:
        yield test_client


def run_step(client, **step):
    response = client.post("/api/steps", json=step)
    assert response.status_code == 200
    return response.json()


class TestRestApi:
    def test_health(self, client):
        data = client.get("/api/health").json()
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert data["sessions"] == 0

    def test_no_sessions(self, client):
        assert client.get("/api/sessions").json() == {"sessions": []}

    def test_unknown_session_output(self, client):
        assert client.get("/api/sessions/tui_missing/output").status_code == 404

    def test_wait_step(self, client):
        result = run_step(client, action="wait", value="10")
        assert result["status"] == "passed"
        assert result["actual_result"] == "Waited 10ms"

    def test_failed_step(self, client):
        result = run_step(client, action="teleport")
        assert result["status"] == "failed"
        assert "Unsupported TUI action: teleport" in result["error"]

    def test_malformed_step(self, client):
        assert client.post("/api/steps", json={"target": "x"}).status_code == 422

    def test_session_lifecycle(self, client):
        spawned = run_step(client, action="spawn", target=SLEEPER)
        assert spawned["status"] == "passed"
        session_id = spawned["actual_result"]

        found = run_step(client, action="wait_for_output", target=session_id, value="ready", timeout=5000)
        assert found["status"] == "passed"

        sessions = client.get("/api/sessions").json()["sessions"]
        assert [s["session_id"] for s in sessions] == [session_id]
        assert sessions[0]["status"] == "running"

        output = client.get(f"/api/sessions/{session_id}/output").json()["output"]
        assert "ready" in "".join(event["text"] for event in output)

        assert client.delete(f"/api/sessions/{session_id}").json() == {"status": "ok"}
        sessions = client.get("/api/sessions").json()["sessions"]
        assert sessions[0]["status"] == "killed"

        types = [event["type"] for event in client.get("/api/events?limit=100").json()["events"]]
        assert types[0] == "session_started"
        assert "session_killed" in types

    def test_events_limit(self, client):
        run_step(client, action="spawn", target=SLEEPER)
        events = client.get("/api/events?limit=1").json()["events"]
        assert len(events) == 1
        assert MAX_HISTORY == 100


class TestWebSocket:
    def test_connected_message(self, client):
        with client.websocket_connect("/ws") as ws:
            data = ws.receive_json()
            assert data["type"] == "connected"
            assert data["server_version"] == __version__
            assert data["sessions"] == []

    def test_client_count(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            assert client.get("/api/health").json()["clients"] == 1

    def test_receives_session_events(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            run_step(client, action="spawn", target=SLEEPER)
            event = ws.receive_json()
            assert event["type"] == "session_started"
            assert "server_time" in event

    def test_following_a_session(self, client):
        with client.websocket_connect("/ws?session=tui_42") as ws:
            assert ws.receive_json()["following"] == "tui_42"


# ── Tests: EventBroadcaster ─────────────────────────────────


class RecordingSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def event(session_id: str, event_type: str = "output") -> SessionEvent:
    return SessionEvent(type=event_type, session_id=session_id, data={"text": "hi"})


class TestEventBroadcaster:
    @pytest.mark.asyncio
    async def test_filters_by_session(self):
        broadcaster = EventBroadcaster()
        everyone, follower = RecordingSocket(), RecordingSocket()
        await broadcaster.attach(everyone)
        await broadcaster.attach(follower, "tui_1")

        assert await broadcaster.publish(event("tui_1")) == 2
        assert await broadcaster.publish(event("tui_2")) == 1
        assert [m["session_id"] for m in everyone.sent] == ["tui_1", "tui_2"]
        assert [m["session_id"] for m in follower.sent] == ["tui_1"]
        assert everyone.accepted and follower.accepted

    @pytest.mark.asyncio
    async def test_drops_failing_observers(self):
        broadcaster = EventBroadcaster()
        await broadcaster.attach(RecordingSocket(fail=True))
        await broadcaster.attach(RecordingSocket())
        assert await broadcaster.publish(event("tui_1")) == 1
        assert broadcaster.observer_count == 1

    @pytest.mark.asyncio
    async def test_detach(self):
        broadcaster = EventBroadcaster()
        observer = await broadcaster.attach(RecordingSocket())
        await broadcaster.detach(observer)
        assert broadcaster.observer_count == 0

    def test_history_is_bounded(self):
        broadcaster = EventBroadcaster(history_size=3)
        for index in range(5):
            broadcaster.record(event(f"tui_{index}"))
        assert [e["session_id"] for e in broadcaster.recent(10)] == ["tui_2", "tui_3", "tui_4"]
        assert [e["session_id"] for e in broadcaster.recent(1)] == ["tui_4"]
        assert broadcaster.recent(0) == []


# ── Tests: heartbeat ────────────────────────────────────────


class SilentSocket(RecordingSocket):
    """Never sends anything; every send after the greeting fails."""

    async def receive_text(self):
        await asyncio.sleep(3600)

    async def send_json(self, data):
        if self.sent:
            raise RuntimeError("Cannot call send once a close message has been sent")
        self.sent.append(data)


def websocket_handler(app):
    return next(route.endpoint for route in app.routes if getattr(route, "path", None) == "/ws")


class TestHeartbeat:
    @pytest.mark.asyncio
    async def test_failed_heartbeat_ends_connection(self, fast_config, monkeypatch):
        monkeypatch.setattr(server_app, "HEARTBEAT_SECONDS", 0.01)
        app = create_app(fast_config)
        socket = SilentSocket()

        await asyncio.wait_for(websocket_handler(app)(socket, None), timeout=5.0)

        assert [m["type"] for m in socket.sent] == ["connected"]
        assert app.state.broadcaster.observer_count == 0
