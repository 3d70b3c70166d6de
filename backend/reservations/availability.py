"""Capacity checks for overlapping reservations on a space."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from django.conf import settings

from core.errors import CapacityExceeded

from .models import Reservation

# Statuses that hold a slot of the space's capacity.
CAPACITY_STATUSES = (
    Reservation.Status.ACEPTADA,
    Reservation.Status.CHECKIN_SOLICITADO,
    Reservation.Status.EN_CURSO,
)

# Statuses of reservations that are still open, pending requests included.
ACTIVE_STATUSES = (Reservation.Status.PENDIENTE,) + CAPACITY_STATUSES


def create_time_statuses() -> tuple:
    """Return the statuses counted when a new request is created."""
    if getattr(settings, "RESERVATION_CREATE_COUNTS_PENDING", True):
        return ACTIVE_STATUSES
    return CAPACITY_STATUSES


def overlapping(
    space_id: int,
    start_at: datetime,
    end_at: datetime,
    *,
    statuses: Iterable[str],
    exclude_reservation_id: Optional[int] = None,
):
    """Reservations on the space whose half-open span overlaps [start_at, end_at)."""
    qs = Reservation.objects.filter(
        space_id=space_id,
        status__in=list(statuses),
        start_at__lt=end_at,
        end_at__gt=start_at,
    )
    if exclude_reservation_id is not None:
        qs = qs.exclude(pk=exclude_reservation_id)
    return qs


def count_overlapping(
    space_id: int,
    start_at: datetime,
    end_at: datetime,
    *,
    statuses: Iterable[str] = CAPACITY_STATUSES,
    exclude_reservation_id: Optional[int] = None,
) -> int:
    return overlapping(
        space_id,
        start_at,
        end_at,
        statuses=statuses,
        exclude_reservation_id=exclude_reservation_id,
    ).count()


def ensure_capacity_available(
    space_id: int,
    start_at: datetime,
    end_at: datetime,
    capacity: int,
    *,
    statuses: Iterable[str] = CAPACITY_STATUSES,
    exclude_reservation_id: Optional[int] = None,
) -> int:
    """
    Raise CapacityExceeded when the space is full over the interval.

    Counts are always recomputed from the current rows. Returns the number of
    overlapping reservations found.
    """
    taken = count_overlapping(
        space_id,
        start_at,
        end_at,
        statuses=statuses,
        exclude_reservation_id=exclude_reservation_id,
    )
    if taken >= capacity:
        raise CapacityExceeded(
            "No capacity left on this space for the requested span.",
            capacity=capacity,
            taken=taken,
        )
    return taken
