"""Fan-out of session events to WebSocket observers."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from termpilot.models import SessionEvent

logger = logging.getLogger(__name__)

MAX_HISTORY = 100


@dataclass(eq=False)
class Observer:
    websocket: WebSocket
    session_id: str | None = None  # None follows every session

    def wants(self, event: SessionEvent) -> bool:
        return self.session_id is None or self.session_id == event.session_id


class EventBroadcaster:
    """
    Observers attached over /ws plus a bounded history of recent events.

    An observer may follow one session; events for other sessions are not
    sent to it. Observers whose socket fails are detached on the next publish.
    """

    def __init__(self, history_size: int = MAX_HISTORY):
        self._observers: list[Observer] = []
        self._lock = asyncio.Lock()
        self._history: deque[dict[str, Any]] = deque(maxlen=history_size)

    async def attach(self, websocket: WebSocket, session_id: str | None = None) -> Observer:
        await websocket.accept()
        observer = Observer(websocket, session_id)
        async with self._lock:
            self._observers.append(observer)
        logger.debug("Observer attached (following %s)", session_id or "all sessions")
        return observer

    async def detach(self, observer: Observer) -> None:
        async with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def record(self, event: SessionEvent) -> dict[str, Any]:
        payload = event.model_dump(mode="json")
        self._history.append(payload)
        return payload

    async def publish(self, event: SessionEvent, payload: dict[str, Any] | None = None) -> int:
        """Send an event to interested observers. Returns how many received it."""
        message = {
            **(payload or event.model_dump(mode="json")),
            "server_time": datetime.now(timezone.utc).isoformat(),
        }
        delivered = 0
        async with self._lock:
            for observer in list(self._observers):
                if not observer.wants(event):
                    continue
                try:
                    await observer.websocket.send_json(message)
                except Exception as exc:
                    logger.debug("Detaching observer after send failure: %s", exc)
                    self._observers.remove(observer)
                else:
                    delivered += 1
        return delivered

    def recent(self, limit: int) -> list[dict[str, Any]]:
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    @property
    def observer_count(self) -> int:
        return len(self._observers)
