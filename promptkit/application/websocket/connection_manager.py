from typing import Dict, Optional, Set
from dataclasses import dataclass, field
from fastapi import WebSocket
import asyncio
from datetime import datetime
import structlog

from .schema.events import BaseEvent, ConnectionEvent, ErrorEvent

logger = structlog.get_logger(__name__)


@dataclass
class SessionConnection:
    """An accepted socket and its activity timestamps"""
    websocket: WebSocket
    connected_at: datetime = field(default_factory=datetime.utcnow)
    last_activity: datetime = field(default_factory=datetime.utcnow)
    events_sent: int = 0

    def idle_seconds(self, now: datetime) -> float:
        return (now - self.last_activity).total_seconds()


class ConnectionManager:
    """Tracks one WebSocket per session and delivers events to it"""

    def __init__(self, stale_after_seconds: int = 300):
        self.stale_after_seconds = stale_after_seconds
        self.connections: Dict[str, SessionConnection] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str):
        await websocket.accept()

        async with self._lock:
            previous = self.connections.get(session_id)
            self.connections[session_id] = SessionConnection(websocket=websocket)

        if previous is not None:
            # A reconnect replaces the older socket for the same session
            logger.info("Replacing existing connection", session_id=session_id)
            await self._close(previous.websocket)

        await self.send_event(session_id, ConnectionEvent(status="connected"))
        logger.info("WebSocket connected", session_id=session_id)

    async def disconnect(self, session_id: str, websocket: Optional[WebSocket] = None):
        """Drop the session's connection; with a websocket, only if it is still the current one"""

        async with self._lock:
            connection = self.connections.get(session_id)
            if connection is None:
                return
            if websocket is not None and connection.websocket is not websocket:
                # Replaced by a reconnect, the newer socket stays registered
                return
            del self.connections[session_id]

        await self._close(connection.websocket)
        logger.info("WebSocket disconnected", session_id=session_id, events_sent=connection.events_sent)

    async def _close(self, websocket: WebSocket):
        try:
            await websocket.close()
        except RuntimeError:
            # The client already closed the socket
            pass

    async def send_event(self, session_id: str, event: BaseEvent) -> bool:
        """Deliver an event; a failed send drops the connection"""

        connection = self.connections.get(session_id)
        if connection is None:
            logger.warning("No connection for session", session_id=session_id, event_type=event.type.value)
            return False

        if event.session_id is None:
            event.session_id = session_id

        try:
            await connection.websocket.send_json(event.model_dump(mode="json"))
        except Exception as e:
            logger.error("Failed to send event", session_id=session_id, error=str(e))
            await self.disconnect(session_id)
            return False

        connection.last_activity = datetime.utcnow()
        connection.events_sent += 1
        return True

    async def send_error(self, session_id: str, error_message: str, error_code: Optional[str] = None):
        await self.send_event(
            session_id,
            ErrorEvent(payload={"message": error_message}, error_code=error_code)
        )

    def touch(self, session_id: str):
        """Mark inbound traffic so the session is not reaped as stale"""
        connection = self.connections.get(session_id)
        if connection is not None:
            connection.last_activity = datetime.utcnow()

    def get_active_sessions(self) -> Set[str]:
        return set(self.connections)

    async def disconnect_stale(self) -> int:
        """Close sessions idle for longer than stale_after_seconds"""

        now = datetime.utcnow()
        stale = [
            session_id
            for session_id, connection in list(self.connections.items())
            if connection.idle_seconds(now) > self.stale_after_seconds
        ]
        for session_id in stale:
            logger.warning("Disconnecting stale session", session_id=session_id)
            await self.disconnect(session_id)
        return len(stale)

    async def health_check(self, interval_seconds: int = 60):
        """Background loop for the server lifespan"""
        while True:
            await asyncio.sleep(interval_seconds)
            await self.disconnect_stale()
