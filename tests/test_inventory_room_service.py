"""
tests/test_inventory_room_service.py

Pytest unit tests for InventoryRoomManager membership bookkeeping.

Coverage
--------
- Room keys canonicalize the location and reject malformed periods
- Full rooms refuse new members
- Empty rooms are dropped when their last member leaves
- Notifications to an empty room reach nobody
"""

from __future__ import annotations

import pytest

from app.config import CollaborationSettings
from app.domain.errors import ValidationError
from app.domain.inventory import SessionKey
from app.services.inventory_room_service import InventoryRoomManager


@pytest.fixture()
def rooms(clock) -> InventoryRoomManager:
    return InventoryRoomManager(settings=CollaborationSettings(max_connections_per_room=2), clock=clock)


class TestRoomKeys:
    def test_location_and_month_are_canonical(self, rooms: InventoryRoomManager) -> None:
        assert rooms.room_key("suzuki", "August", "2025") == SessionKey("Suzuki", 8, 2025)
        assert str(rooms.room_key("Bodega  Coyote", "8", 2025)) == "Bodega Coyote/08/2025"

    @pytest.mark.parametrize("location,month,year", [("", "08", "2025"), ("Suzuki", "13", "2025"), ("Suzuki", "08", "1999")])
    def test_malformed_period_is_rejected(self, rooms: InventoryRoomManager, location, month, year) -> None:
        with pytest.raises(ValidationError):
            rooms.room_key(location, month, year)


class TestMembership:
    def test_full_room_refuses_new_members(self, rooms: InventoryRoomManager) -> None:
        room = SessionKey("Suzuki", 8, 2025)

        first = rooms.join(room, object(), None)
        second = rooms.join(room, object(), None)
        third = rooms.join(room, object(), None)

        assert first is not None and second is not None
        assert third is None
        assert len(rooms.members(room)) == 2

    def test_last_member_leaving_drops_the_room(self, rooms: InventoryRoomManager) -> None:
        room = SessionKey("Suzuki", 8, 2025)
        connection = rooms.join(room, object(), None)
        assert rooms.room_stats()["active_rooms"] == 1

        rooms.leave(connection)
        rooms.leave(connection)

        stats = rooms.room_stats()
        assert stats["active_rooms"] == 0
        assert stats["rooms"] == {}
        assert stats["connections_opened"] == 1

    def test_notifications_without_members_reach_nobody(self, rooms: InventoryRoomManager) -> None:
        room = SessionKey("Suzuki", 8, 2025)

        assert rooms.notify_scan_added(room, user="ana.lopez@example.com", user_name="Ana", identifier="ABC12345") == 0
        assert rooms.notify_scan_removed(room, identifiers=[" ", ""]) == 0
        assert rooms.notify_inventory_completed(room, completed_by="ana.lopez@example.com", session_id="inv_1") == 0
