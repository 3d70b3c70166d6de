"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import time
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from core import realtime
from reservations.models import Reservation
from spaces.models import Space, Vehicle, VehicleType

User = get_user_model()

DEADLINE_STATUSES = (
    Reservation.Status.ACEPTADA,
    Reservation.Status.CHECKIN_SOLICITADO,
    Reservation.Status.EN_CURSO,
    Reservation.Status.FINALIZADA,
    Reservation.Status.EXPIRADA,
)


class RecordingGateway(realtime.RealtimeGateway):
    """In-memory gateway: keeps every emitted event and serves reads from memory."""

    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def emit(self, room, event_type, payload, *, origin=None):
        entry_id = f"{len(self.events) + 1}-0"
        self.events.append(
            {
                "id": entry_id,
                "room": room,
                "type": event_type,
                "payload": dict(payload),
                "origin": origin or "",
            }
        )
        return entry_id

    def current_cursor(self, room) -> str:
        ids = [int(e["id"].split("-")[0]) for e in self.events if e["room"] == room]
        return f"{max(ids, default=0)}-0"

    def read(self, cursors, *, block_ms, count=100):
        snapshot = list(self.events)
        next_cursors = dict(cursors)
        found = []
        for room, cursor in cursors.items():
            seen = len(snapshot) if cursor == "$" else int(cursor.split("-")[0])
            matching = [
                e for e in snapshot if e["room"] == room and int(e["id"].split("-")[0]) > seen
            ][:count]
            if matching:
                next_cursors[room] = matching[-1]["id"]
            elif cursor == "$":
                next_cursors[room] = f"{seen}-0"
            found.extend(matching)
        if not found and block_ms:
            time.sleep(min(block_ms, 50) / 1000)
        return next_cursors, found

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["type"] == event_type]

    def rooms_for(self, event_type: str) -> List[str]:
        return sorted(e["room"] for e in self.of_type(event_type))


@pytest.fixture(autouse=True)
def gateway(monkeypatch):
    """Replace the process gateway so no test needs Redis."""
    recorder = RecordingGateway()
    monkeypatch.setattr(realtime, "get_gateway", lambda: recorder)
    return recorder


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


def _create_user(*, username: str, can_list: bool, can_rent: bool, is_staff: bool = False) -> User:
    return User.objects.create_user(
        username=username,
        password="testpass",
        can_list=can_list,
        can_rent=can_rent,
        is_staff=is_staff,
    )


@pytest.fixture
def owner_user():
    return _create_user(username="owner", can_list=True, can_rent=False)


@pytest.fixture
def renter_user():
    return _create_user(username="renter", can_list=False, can_rent=True)


@pytest.fixture
def second_renter():
    return _create_user(username="renter2", can_list=False, can_rent=True)


@pytest.fixture
def other_user():
    return _create_user(username="other", can_list=True, can_rent=True)


@pytest.fixture
def admin_user():
    return _create_user(username="admin", can_list=False, can_rent=False, is_staff=True)


@pytest.fixture
def space(owner_user):
    return Space.objects.create(
        owner=owner_user,
        title="Covered spot downtown",
        address="Av. Reforma 100",
        price_per_hour=Decimal("10.00"),
        price_per_day=Decimal("100.00"),
        capacity=1,
        is_active=True,
    )


@pytest.fixture
def vehicle(renter_user):
    return Vehicle.objects.create(owner=renter_user, type=VehicleType.COCHE, plate="ABC-123")


@pytest.fixture
def second_vehicle(second_renter):
    return Vehicle.objects.create(owner=second_renter, type=VehicleType.COCHE, plate="XYZ-987")


@pytest.fixture
def reservation_factory(space, renter_user, vehicle) -> Callable[..., Reservation]:
    """Create reservations directly, bypassing the state machine."""

    def _factory(**overrides) -> Reservation:
        start_at = overrides.pop("start_at", timezone.now() + timedelta(hours=2))
        defaults = {
            "space": space,
            "occupant": renter_user,
            "provider": space.owner,
            "vehicle": vehicle,
            "start_at": start_at,
            "end_at": start_at + timedelta(hours=1),
            "status": Reservation.Status.PENDIENTE,
            "billing_mode": Reservation.BillingMode.HORA,
            "total_price": Decimal("10.00"),
        }
        defaults.update(overrides)
        if defaults["status"] in DEADLINE_STATUSES:
            defaults.setdefault("check_in_deadline", defaults["start_at"] + timedelta(minutes=15))
        return Reservation.objects.create(**defaults)

    return _factory
