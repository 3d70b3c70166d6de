"""Lifecycle notifications pushed to reservation participants."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from django.db import transaction

from core.realtime import RealtimeGateway

CREATED = "reservation.created"
ACCEPTED = "reservation.accepted"
REJECTED = "reservation.rejected"
CANCELLED = "reservation.cancelled"
CHECKIN_REQUESTED = "reservation.checkin_requested"
STARTED = "reservation.started"
FINISHED = "reservation.finished"
EXPIRED = "reservation.expired"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def notify_participants(
    gateway: RealtimeGateway,
    *,
    occupant_id: int,
    provider_id: int,
    event_type: str,
    reservation_id: int,
    **fields: Any,
) -> None:
    """Notify both participants once the surrounding transaction commits."""
    payload: Dict[str, Any] = {"reservation_id": reservation_id}
    payload.update({key: _jsonable(value) for key, value in fields.items()})

    def _send() -> None:
        gateway.notify_users((occupant_id, provider_id), event_type, payload)

    transaction.on_commit(_send)
