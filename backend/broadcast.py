"""
Realtime fan-out of session updates.

The game engine only needs ``publish``; the WebSocket hub below is the
in-process transport. Every published message is also appended to a bounded
per-room event list so clients behind proxies that block WebSockets can poll
``/events?since_id=``.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from fastapi import WebSocket

from logger import get_logger

logger = get_logger("QuizRoom.broadcast")

MAX_EVENTS_PER_SESSION = 100


class Broadcaster(ABC):
    @abstractmethod
    async def publish(self, room_code: str, message: dict, host_only: bool = False) -> None: ...

    async def close_room(self, room_code: str) -> None:
        """Forget everything held for a torn-down room"""


class WebSocketHub(Broadcaster):
    def __init__(self, max_events: int = MAX_EVENTS_PER_SESSION):
        self.max_events = max_events
        # room code -> { connection_id -> (websocket, role, id) }
        # role can be 'host', 'player', or 'observer'
        self.connections: dict[str, dict[str, tuple[WebSocket, str, str]]] = {}
        self.events: dict[str, list[dict]] = {}
        self._next_event_id: dict[str, int] = {}

    def register(self, room_code: str, conn_id: str, websocket: WebSocket, role: str, identifier: str) -> None:
        self.connections.setdefault(room_code, {})[conn_id] = (websocket, role, identifier)

    def unregister(self, room_code: str, conn_id: str) -> Optional[tuple[WebSocket, str, str]]:
        return self.connections.get(room_code, {}).pop(conn_id, None)

    def add_event(self, room_code: str, event: dict) -> dict:
        """Add an event to the room's event queue for polling clients"""
        event_id = self._next_event_id.get(room_code, 0) + 1
        self._next_event_id[room_code] = event_id
        stored = {
            **event,
            '_eventId': event_id,
            '_timestamp': time.time(),
        }
        queue = self.events.setdefault(room_code, [])
        queue.append(stored)
        # Keep only last N events
        if len(queue) > self.max_events:
            self.events[room_code] = queue[-self.max_events:]
        return stored

    def events_since(self, room_code: str, since_id: int = 0, include_host_only: bool = False) -> tuple[list[dict], int]:
        events = self.events.get(room_code, [])
        new_events = [
            e for e in events
            if e['_eventId'] > since_id and (include_host_only or not e.get('_hostOnly'))
        ]
        return new_events, self._next_event_id.get(room_code, 0)

    async def publish(self, room_code: str, message: dict, host_only: bool = False) -> None:
        """Broadcast a message to all connections in a room"""
        self.add_event(room_code, {**message, '_hostOnly': host_only})

        dead_connections = []
        for conn_id, (ws, role, _identifier) in list(self.connections.get(room_code, {}).items()):
            if host_only and role != 'host':
                continue
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"Send to {conn_id} in room {room_code} failed: {e}")
                dead_connections.append(conn_id)

        for conn_id in dead_connections:
            self.unregister(room_code, conn_id)
        if dead_connections:
            logger.debug(f"🧹 Cleaned {len(dead_connections)} dead connection(s) in room {room_code}")

    async def close_room(self, room_code: str) -> None:
        for ws, _role, _identifier in list(self.connections.pop(room_code, {}).values()):
            try:
                await ws.close(code=4010, reason="Session closed")
            except Exception as e:
                logger.debug(f"Close in room {room_code} failed: {e}")
        self.events.pop(room_code, None)
        self._next_event_id.pop(room_code, None)

    def connection_count(self, room_code: str) -> int:
        return len(self.connections.get(room_code, {}))


def message(kind: str, **payload: Any) -> dict:
    return {'type': kind, **payload}
