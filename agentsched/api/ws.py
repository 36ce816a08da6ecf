"""WebSocket routes — run status push to observers."""

from __future__ import annotations

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from loguru import logger

router = APIRouter()

ALL_SCHEDULES = "*"


# ── Connection Registry ──────────────────────────────────────


class ConnectionManager:
    """In-memory WebSocket connection registry.

    Connections subscribe either to one schedule (key = schedule id) or to
    every schedule (key = ``"*"``). Thread-safe via asyncio (single event loop).
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}

    def connect(self, key: str, ws: WebSocket) -> None:
        """Register a WebSocket connection under a subscription key."""
        if key not in self._connections:
            self._connections[key] = set()
        self._connections[key].add(ws)
        logger.debug(f"WS connected: key={key}, total={len(self._connections[key])}")

    def disconnect(self, key: str, ws: WebSocket) -> None:
        """Unregister a WebSocket connection."""
        if key in self._connections:
            self._connections[key].discard(ws)
            if not self._connections[key]:
                del self._connections[key]
        logger.debug(f"WS disconnected: key={key}")

    def is_connected(self, key: str) -> bool:
        """Check if any connection is subscribed under ``key``."""
        return bool(self._connections.get(key))

    async def send_event(self, key: str, event: dict) -> bool:
        """Push an event to all connections subscribed under ``key``.

        Returns True if at least one connection received the event.
        Silently removes broken connections.
        """
        conns = self._connections.get(key)
        if not conns:
            return False

        sent = False
        broken: list[WebSocket] = []
        for ws in list(conns):
            try:
                await ws.send_json(event)
                sent = True
            except Exception:
                broken.append(ws)

        for ws in broken:
            conns.discard(ws)
        if not conns:
            self._connections.pop(key, None)

        return sent

    async def publish(self, schedule_id: int, event: dict) -> bool:
        """Deliver a run event to the schedule's subscribers and to ``"*"``."""
        scoped = await self.send_event(str(schedule_id), event)
        broadcast = await self.send_event(ALL_SCHEDULES, event)
        return scoped or broadcast


# ── WebSocket Endpoint ───────────────────────────────────────


@router.websocket("/ws/runs")
async def ws_runs(ws: WebSocket, schedule_id: int | None = Query(None)):
    """Run status stream.

    Server event: {"type": "event", "event_type": "schedule_run",
                   "schedule_id": 1, "payload": {...run...}}

    Subscribe to one schedule with /ws/runs?schedule_id=<id>; omit for all.
    Incoming client messages are ignored (keep-alive only).
    """
    manager: ConnectionManager = ws.app.state.ws_manager
    key = str(schedule_id) if schedule_id is not None else ALL_SCHEDULES

    await ws.accept()
    manager.connect(key, ws)
    try:
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(key, ws)
        logger.debug(f"WebSocket client disconnected: {key}")
