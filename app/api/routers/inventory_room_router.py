"""
app/api/routers/inventory_room_router.py

Live inventory rooms over WebSocket: ``/ws/inventory/{location}/{month}/{year}``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, WebSocket, status

from app.domain.errors import ValidationError
from app.services.inventory_room_service import InventoryRoomManager, get_inventory_room_manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["inventory-rooms"])


@router.websocket("/ws/inventory/{location}/{month}/{year}")
async def inventory_room(
    websocket: WebSocket,
    location: str,
    month: str,
    year: str,
    rooms: InventoryRoomManager = Depends(get_inventory_room_manager),
) -> None:
    """
    Join the period's room and stay connected until the client leaves.

    A malformed period is refused before the handshake; a full room is closed
    with a policy violation right after it.
    """

    try:
        room = rooms.room_key(location, month, year)
    except ValidationError as exc:
        logger.info("Rejected inventory room path location=%s month=%s year=%s error=%s", location, month, year, exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid inventory room.")
        return

    await websocket.accept()
    connection = rooms.join(room, websocket, asyncio.get_running_loop())
    if connection is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Room is full.")
        return

    try:
        await rooms.serve(connection)
    finally:
        rooms.leave(connection)


@router.get("/ws/rooms")
def room_stats(
    rooms: InventoryRoomManager = Depends(get_inventory_room_manager),
) -> dict[str, Any]:
    return rooms.room_stats()
