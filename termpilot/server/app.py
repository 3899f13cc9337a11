"""FastAPI control server: runs steps on a hosted TUI agent and streams its events."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from termpilot import __version__
from termpilot.config import TermPilotConfig
from termpilot.models import SessionEvent, StepResult, TestStep
from termpilot.server.events import EventBroadcaster
from termpilot.terminal.agent import TUIAgent

HEARTBEAT_SECONDS = 30.0


def create_app(config: TermPilotConfig | None = None) -> FastAPI:
    """Build an app hosting its own agent and observer registry."""
    agent = TUIAgent(config)
    broadcaster = EventBroadcaster()
    deliveries: set[asyncio.Task] = set()

    def forward(event: SessionEvent) -> None:
        # listeners run inside the event loop, from supervisor tasks
        payload = broadcaster.record(event)
        task = asyncio.get_running_loop().create_task(broadcaster.publish(event, payload))
        deliveries.add(task)
        task.add_done_callback(deliveries.discard)

    agent.add_listener(forward)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await agent.cleanup()

    app = FastAPI(
        title="termpilot",
        description="Remote control for scripted terminal sessions",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.agent = agent
    app.state.broadcaster = broadcaster

    def sessions_payload() -> list[dict]:
        return [info.model_dump(mode="json") for info in agent.session_info().values()]

    # ── REST Endpoints ──────────────────────────────────────

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "version": __version__,
            "clients": broadcaster.observer_count,
            "sessions": len(agent.supervisor.live_ids()),
        }

    @app.get("/api/sessions")
    async def list_sessions():
        return {"sessions": sessions_payload()}

    @app.get("/api/sessions/{session_id}/output")
    async def session_output(session_id: str):
        if agent.supervisor.get(session_id) is None:
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        events = agent.all_output(session_id)
        return {"session_id": session_id, "output": [e.model_dump(mode="json") for e in events]}

    @app.delete("/api/sessions/{session_id}")
    async def kill_session(session_id: str):
        await agent.kill_session(session_id)
        return {"status": "ok"}

    @app.post("/api/steps", response_model=StepResult)
    async def run_step(step: TestStep):
        return await agent.execute_step(step)

    @app.get("/api/events")
    async def list_events(limit: int = 20):
        return {"events": broadcaster.recent(limit)}

    # ── WebSocket Endpoint ──────────────────────────────────

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, session: Optional[str] = None):
        observer = await broadcaster.attach(websocket, session)
        try:
            await websocket.send_json({
                "type": "connected",
                "following": session,
                "sessions": sessions_payload(),
                "server_version": __version__,
            })
            while True:
                try:
                    await asyncio.wait_for(websocket.receive_text(), timeout=HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    try:
                        await websocket.send_json({"type": "heartbeat"})
                    except Exception:
                        break  # socket already closed
        except WebSocketDisconnect:
            pass
        finally:
            await broadcaster.detach(observer)

    return app
