"""Celery tasks for reservations."""

from __future__ import annotations

import logging

from celery import shared_task

from core import realtime

from .sweeper import expire_overdue_reservations

logger = logging.getLogger(__name__)


@shared_task(name="reservations.expire_overdue")
def expire_overdue() -> int:
    """
    Periodic sweep over every overdue reservation.

    Returns the number of reservations expired.
    """
    gateway = realtime.get_gateway()
    expired = expire_overdue_reservations(gateway=gateway)
    if expired:
        gateway.notify_admins(
            "reservations.swept",
            {"expired": len(expired), "reservation_ids": expired},
        )
    return len(expired)
