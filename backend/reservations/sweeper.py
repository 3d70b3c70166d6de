"""Lazy expiry of accepted reservations whose check-in window elapsed."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from django.db import transaction
from django.utils import timezone

from core.realtime import RealtimeGateway

from . import events
from .domain import DEADLINE_EXPIRED_REASON
from .models import Reservation

logger = logging.getLogger(__name__)


def overdue_queryset(now: datetime):
    return Reservation.objects.filter(
        status=Reservation.Status.ACEPTADA,
        check_in_at__isnull=True,
        check_in_deadline__isnull=False,
        check_in_deadline__lt=now,
    )


def expire_overdue_reservations(
    *,
    gateway: RealtimeGateway,
    occupant_id: Optional[int] = None,
    provider_id: Optional[int] = None,
    reservation_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[int]:
    """
    Move overdue ACEPTADA reservations in scope to EXPIRADA.

    Scope filters combine; with none given every overdue reservation is
    swept. Both participants are notified per row after commit. Returns the
    ids that were expired by this call, so a second run returns [].
    """
    now = now or timezone.now()
    qs = overdue_queryset(now)
    if occupant_id is not None:
        qs = qs.filter(occupant_id=occupant_id)
    if provider_id is not None:
        qs = qs.filter(provider_id=provider_id)
    if reservation_id is not None:
        qs = qs.filter(pk=reservation_id)

    with transaction.atomic():
        rows = list(qs.select_for_update().values_list("pk", "occupant_id", "provider_id"))
        if not rows:
            return []
        ids = [row[0] for row in rows]
        Reservation.objects.filter(pk__in=ids, status=Reservation.Status.ACEPTADA).update(
            status=Reservation.Status.EXPIRADA,
            updated_at=now,
        )
        for pk, occupant, provider in rows:
            events.notify_participants(
                gateway,
                occupant_id=occupant,
                provider_id=provider,
                event_type=events.EXPIRED,
                reservation_id=pk,
                reason=DEADLINE_EXPIRED_REASON,
            )

    logger.info("reservations: expired %s overdue reservation(s): %s", len(ids), ids)
    return ids
