"""
app/services/inventory_room_service.py

Live inventory rooms: every client watching one (location, month, year)
period joins that period's room over a WebSocket and receives scan and
completion events as they happen.

Broadcasts may come from synchronous request handlers running in worker
threads, so each connection remembers the event loop that owns its socket and
sends are scheduled onto that loop. Messages use the camelCase field names the
scanning clients already read (``userId``, ``scanData``, ``completedBy``).
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Callable, Iterable

from fastapi import WebSocket, WebSocketDisconnect, status

from app.config import (
    CollaborationSettings,
    InventorySettings,
    get_collaboration_settings,
    get_inventory_settings,
)
from app.domain.inventory import SessionKey, format_timestamp
from app.validators.inventory_validator import parse_location, parse_month, parse_year

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class RoomConnection:
    websocket: WebSocket
    loop: asyncio.AbstractEventLoop
    room: SessionKey
    connected_at: datetime
    user_id: str | None = None
    user_name: str | None = None
    recent_messages: dict[str, deque] = field(default_factory=dict)


@dataclass
class RoomMetrics:
    connections_opened: int = 0
    messages_sent: int = 0
    errors: int = 0


class InventoryRoomManager:
    """
    Tracks room membership and fans events out to the members of a room.
    """

    def __init__(
        self,
        *,
        settings: CollaborationSettings | None = None,
        inventory_settings: InventorySettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or CollaborationSettings()
        self._locations = (inventory_settings or InventorySettings()).locations
        self._clock = clock
        self._monotonic = monotonic
        self._rooms: dict[SessionKey, set[RoomConnection]] = {}
        self._lock = threading.Lock()
        self.metrics = RoomMetrics()

    # -----------------------------------------------------------------------
    # Membership
    # -----------------------------------------------------------------------

    def room_key(self, location: Any, month: Any, year: Any) -> SessionKey:
        """
        Canonical room for a period; raises ValidationError for a malformed one.
        """

        name = parse_location(location)
        canonical = next((known for known in self._locations if known.lower() == name.lower()), name)
        return SessionKey(canonical, parse_month(month), parse_year(year, now=self._clock()))

    def join(self, room: SessionKey, websocket: WebSocket, loop: asyncio.AbstractEventLoop) -> RoomConnection | None:
        """
        Add a socket to ``room``; returns None when the room is full.
        """

        with self._lock:
            members = self._rooms.setdefault(room, set())
            if len(members) >= self._settings.max_connections_per_room:
                if not members:
                    del self._rooms[room]
                logger.warning("Inventory room full room=%s limit=%s", room, self._settings.max_connections_per_room)
                return None
            connection = RoomConnection(websocket=websocket, loop=loop, room=room, connected_at=self._clock())
            members.add(connection)
            self.metrics.connections_opened += 1
            size = len(members)
        logger.info("Joined inventory room room=%s members=%s", room, size)
        return connection

    def leave(self, connection: RoomConnection) -> None:
        with self._lock:
            members = self._rooms.get(connection.room)
            if members is None or connection not in members:
                return
            members.discard(connection)
            if not members:
                del self._rooms[connection.room]
        logger.info("Left inventory room room=%s user_id=%s", connection.room, connection.user_id)

    def members(self, room: SessionKey) -> list[RoomConnection]:
        with self._lock:
            return list(self._rooms.get(room, ()))

    def room_stats(self) -> dict[str, Any]:
        with self._lock:
            rooms = {
                str(room): {
                    "user_count": len(members),
                    "users": [
                        {
                            "user_id": member.user_id,
                            "user_name": member.user_name,
                            "connected_at": format_timestamp(member.connected_at),
                        }
                        for member in sorted(members, key=lambda item: item.connected_at)
                    ],
                }
                for room, members in self._rooms.items()
            }
        return {
            "active_rooms": len(rooms),
            "connections_opened": self.metrics.connections_opened,
            "messages_sent": self.metrics.messages_sent,
            "errors": self.metrics.errors,
            "rooms": rooms,
        }

    # -----------------------------------------------------------------------
    # Server-side notifications
    # -----------------------------------------------------------------------

    def notify_scan_added(self, room: SessionKey, *, user: str, user_name: str, identifier: str) -> int:
        return self._broadcast(
            room,
            self._scan_event("scan_added", room, user=user, user_name=user_name, identifiers=[identifier]),
        )

    def notify_scan_removed(
        self,
        room: SessionKey,
        *,
        identifiers: Iterable[str],
        user: str | None = None,
        user_name: str | None = None,
    ) -> int:
        codes = sorted({code.strip().upper() for code in identifiers if code.strip()})
        if not codes:
            return 0
        return self._broadcast(
            room,
            self._scan_event("scan_removed", room, user=user, user_name=user_name, identifiers=codes),
        )

    def notify_inventory_completed(self, room: SessionKey, *, completed_by: str, session_id: str) -> int:
        """
        Tell the room the session is over; members get ``inventory_completed``
        then ``session_terminated``.
        """

        base = {**self._period(room), "completedBy": completed_by}
        sent = self._broadcast(
            room,
            {
                "type": "inventory_completed",
                "data": {
                    **base,
                    "inventoryId": session_id,
                    "message": f"The inventory was completed by {completed_by}.",
                },
            },
        )
        self._broadcast(
            room,
            {
                "type": "session_terminated",
                "data": {
                    **base,
                    "message": f"Your session ended because {completed_by} completed the inventory.",
                },
            },
        )
        return sent

    def close_all(self) -> None:
        """
        Close every open room socket; used on application shutdown.
        """

        with self._lock:
            connections = [member for members in self._rooms.values() for member in members]
            self._rooms.clear()
        for connection in connections:
            self._schedule(connection, connection.websocket.close(code=status.WS_1001_GOING_AWAY))
        logger.info("Closed inventory rooms connections=%s", len(connections))

    # -----------------------------------------------------------------------
    # Connection loop
    # -----------------------------------------------------------------------

    async def serve(self, connection: RoomConnection) -> None:
        """
        Read client messages until the socket closes.

        A silent client gets a ``heartbeat`` after one interval and is
        disconnected after a second silent interval.
        """

        websocket = connection.websocket
        awaiting_reply = False
        while True:
            try:
                received = await asyncio.wait_for(
                    websocket.receive(),
                    timeout=self._settings.heartbeat_interval_seconds,
                )
            except asyncio.TimeoutError:
                if awaiting_reply:
                    logger.info("Closing silent room connection room=%s user_id=%s", connection.room, connection.user_id)
                    await websocket.close(code=status.WS_1001_GOING_AWAY)
                    return
                awaiting_reply = True
                await self._send(connection, {"type": "heartbeat", "data": {"timestamp": self._now()}})
                continue
            if received["type"] == "websocket.disconnect":
                return

            awaiting_reply = False
            raw = received.get("text")
            if raw is None:
                raw = (received.get("bytes") or b"").decode("utf-8", errors="replace")
            await self._handle_message(connection, raw)

    async def _handle_message(self, connection: RoomConnection, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            message = None
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            await self._send_error(connection, "Invalid message format.")
            return

        message_type = message["type"]
        if not self._within_rate_limit(connection, message_type):
            await self._send_error(connection, "Rate limit exceeded.")
            return

        data = message.get("data") if isinstance(message.get("data"), dict) else {}
        if message_type == "ping":
            await self._send(connection, {"type": "pong", "data": {"timestamp": self._now()}})
        elif message_type == "user_joined":
            connection.user_id = str(data.get("userId") or "") or None
            connection.user_name = str(data.get("userName") or "") or None
            logger.info("User joined inventory room room=%s user_id=%s", connection.room, connection.user_id)
            self._broadcast(
                connection.room,
                {
                    "type": "user_joined",
                    "data": {
                        **self._period(connection.room),
                        "userId": connection.user_id,
                        "userName": connection.user_name,
                    },
                },
                exclude=connection,
            )
        else:
            await self._send_error(connection, f"Unknown message type: {message_type}")

    def _within_rate_limit(self, connection: RoomConnection, message_type: str) -> bool:
        now = self._monotonic()
        window = connection.recent_messages.setdefault(message_type, deque())
        while window and now - window[0] >= RATE_LIMIT_WINDOW_SECONDS:
            window.popleft()
        if len(window) >= self._settings.max_messages_per_minute:
            return False
        window.append(now)
        return True

    # -----------------------------------------------------------------------
    # Delivery
    # -----------------------------------------------------------------------

    def _broadcast(self, room: SessionKey, message: dict, *, exclude: RoomConnection | None = None) -> int:
        message["data"]["timestamp"] = self._now()
        recipients = [member for member in self.members(room) if member is not exclude]
        for connection in recipients:
            self._schedule(connection, self._send(connection, message))
        if recipients:
            logger.info("Room broadcast room=%s type=%s recipients=%s", room, message["type"], len(recipients))
        return len(recipients)

    def _schedule(self, connection: RoomConnection, coroutine) -> None:
        try:
            asyncio.run_coroutine_threadsafe(coroutine, connection.loop)
        except RuntimeError:
            coroutine.close()
            self.metrics.errors += 1
            logger.warning("Room connection loop closed room=%s", connection.room)
            self.leave(connection)

    async def _send(self, connection: RoomConnection, message: dict) -> None:
        try:
            await connection.websocket.send_json(message)
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            self.metrics.errors += 1
            logger.warning(
                "Room send failed room=%s type=%s error_type=%s",
                connection.room,
                message.get("type"),
                type(exc).__name__,
            )
            self.leave(connection)
            return
        self.metrics.messages_sent += 1

    async def _send_error(self, connection: RoomConnection, text: str) -> None:
        await self._send(connection, {"type": "error", "data": {"message": text, "timestamp": self._now()}})

    def _scan_event(
        self,
        event_type: str,
        room: SessionKey,
        *,
        user: str | None,
        user_name: str | None,
        identifiers: list[str],
    ) -> dict:
        scan_data: dict[str, Any] = {"user": user or user_name, "timestamp": self._now()}
        if len(identifiers) == 1:
            scan_data["code"] = identifiers[0]
        else:
            scan_data["codes"] = identifiers
        return {
            "type": event_type,
            "data": {
                **self._period(room),
                "userId": user,
                "userName": user_name,
                "scanData": scan_data,
            },
        }

    @staticmethod
    def _period(room: SessionKey) -> dict[str, Any]:
        return {"location": room.location, "month": room.month, "year": room.year}

    def _now(self) -> str:
        return format_timestamp(self._clock())


@lru_cache(maxsize=1)
def get_inventory_room_manager() -> InventoryRoomManager:
    return InventoryRoomManager(
        settings=get_collaboration_settings(),
        inventory_settings=get_inventory_settings(),
    )
