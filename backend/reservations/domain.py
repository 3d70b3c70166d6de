"""Reservation lifecycle: validation, state transitions and their side effects."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.errors import (
    DeadlineExceeded,
    DomainConflict,
    DomainIntegrityError,
    DomainNotFound,
    DomainPermissionError,
    DomainValidationError,
)
from core.realtime import RealtimeGateway
from spaces.models import Space, Vehicle

from . import events
from .availability import create_time_statuses, ensure_capacity_available, overlapping
from .models import Reservation
from .pricing import BILLING_AUTO, BILLING_MODES, compute_stay_price

logger = logging.getLogger(__name__)

Status = Reservation.Status

CAPACITY_REACHED_REASON = "capacity reached"
DEADLINE_EXPIRED_REASON = "check-in tolerance elapsed"

# Allowed source states for each transition.
CANCELLABLE_STATUSES = (Status.PENDIENTE, Status.ACEPTADA)


def tolerance_minutes() -> int:
    return int(getattr(settings, "RESERVATION_CHECKIN_TOLERANCE_MINUTES", 15))


def compute_deadline(start_at: datetime, minutes: Optional[int] = None) -> datetime:
    """Return the last instant the occupant may still check in."""
    if minutes is None or minutes <= 0:
        minutes = tolerance_minutes()
    return start_at + timedelta(minutes=minutes)


def validate_span(start_at: datetime | None, end_at: datetime | None, now: datetime) -> None:
    if not start_at or not end_at:
        raise DomainValidationError("start_at and end_at are required.", code="INVALID_SPAN")
    if start_at >= end_at:
        raise DomainValidationError("end_at must be after start_at.", code="INVALID_SPAN")
    if start_at < now:
        raise DomainValidationError("Cannot book a span in the past.", code="START_IN_PAST")


def _get(reservation_id: int, *, lock: bool = False) -> Reservation:
    qs = Reservation.objects.all()
    if lock:
        qs = qs.select_for_update()
    reservation = qs.filter(pk=reservation_id).first()
    if reservation is None:
        raise DomainNotFound("Reservation not found.", code="RESERVATION_NOT_FOUND")
    return reservation


def _require_occupant(reservation: Reservation, occupant_id: int) -> None:
    if reservation.occupant_id != occupant_id:
        raise DomainPermissionError("Only the occupant of this reservation can do that.")


def _require_provider(reservation: Reservation, provider_id: int) -> None:
    if reservation.provider_id != provider_id:
        raise DomainPermissionError("Only the provider of this reservation can do that.")


def _require_status(reservation: Reservation, allowed: Iterable[str]) -> None:
    allowed = tuple(allowed)
    if reservation.status not in allowed:
        raise DomainConflict(
            f"Reservation is {reservation.status}; expected {' or '.join(allowed)}.",
            status=reservation.status,
        )


def _transition(
    reservation: Reservation,
    expected: Iterable[str],
    now: datetime,
    **fields,
) -> None:
    """
    Apply ``fields`` only if the row still holds one of ``expected`` statuses.

    Raises DomainConflict when another action already moved the reservation.
    """
    expected = tuple(expected)
    updated = Reservation.objects.filter(pk=reservation.pk, status__in=expected).update(
        updated_at=now, **fields
    )
    if updated != 1:
        raise DomainConflict("Reservation was already resolved by another action.")
    logger.info(
        "reservations: #%s %s -> %s",
        reservation.pk,
        reservation.status,
        fields.get("status", reservation.status),
    )
    for name, value in fields.items():
        setattr(reservation, name, value)
    reservation.updated_at = now


def _expire(
    reservation: Reservation,
    expected: str,
    now: datetime,
    gateway: RealtimeGateway,
    *,
    deadline: datetime,
) -> None:
    with transaction.atomic():
        _transition(reservation, (expected,), now, status=Status.EXPIRADA, check_in_deadline=deadline)
        events.notify_participants(
            gateway,
            occupant_id=reservation.occupant_id,
            provider_id=reservation.provider_id,
            event_type=events.EXPIRED,
            reservation_id=reservation.pk,
            reason=DEADLINE_EXPIRED_REASON,
        )


def create_reservation(
    *,
    occupant_id: int,
    space_id: int,
    start_at: datetime,
    end_at: datetime,
    vehicle_id: Optional[int],
    billing_mode: str = BILLING_AUTO,
    gateway: RealtimeGateway,
    now: Optional[datetime] = None,
) -> Reservation:
    """Validate a booking request and persist it as PENDIENTE with a price estimate."""
    now = now or timezone.now()
    validate_span(start_at, end_at, now)
    if vehicle_id is None:
        raise DomainValidationError(
            "Select the vehicle you are booking with.", code="VEHICLE_REQUIRED"
        )
    if billing_mode not in BILLING_MODES:
        raise DomainValidationError(
            f"billing_mode must be one of {', '.join(BILLING_MODES)}.", code="INVALID_BILLING_MODE"
        )

    with transaction.atomic():
        space = Space.objects.select_for_update().filter(pk=space_id, is_active=True).first()
        if space is None:
            raise DomainNotFound("Space is not available.", code="SPACE_NOT_FOUND")
        if space.owner_id == occupant_id:
            raise DomainValidationError("You cannot book your own space.", code="OWN_SPACE")

        vehicle = Vehicle.objects.filter(pk=vehicle_id, owner_id=occupant_id).first()
        if vehicle is None:
            raise DomainNotFound(
                "Vehicle not found for this occupant.", code="INVALID_VEHICLE"
            )
        if not space.accepts_vehicle_type(vehicle.type):
            raise DomainValidationError(
                "This space does not accept that vehicle type.",
                code="VEHICLE_TYPE_NOT_ALLOWED",
            )

        ensure_capacity_available(
            space.pk,
            start_at,
            end_at,
            space.capacity,
            statuses=create_time_statuses(),
        )

        quote = compute_stay_price(
            price_per_hour=space.price_per_hour,
            price_per_day=space.price_per_day,
            start_at=start_at,
            end_at=end_at,
            billing_mode=billing_mode,
        )
        reservation = Reservation.objects.create(
            space=space,
            occupant_id=occupant_id,
            provider_id=space.owner_id,
            vehicle=vehicle,
            start_at=start_at,
            end_at=end_at,
            status=Status.PENDIENTE,
            billing_mode=quote.billing_mode,
            total_price=quote.total,
        )
        logger.info(
            "reservations: #%s created by occupant=%s space=%s",
            reservation.pk,
            occupant_id,
            space.pk,
        )
        events.notify_participants(
            gateway,
            occupant_id=reservation.occupant_id,
            provider_id=reservation.provider_id,
            event_type=events.CREATED,
            reservation_id=reservation.pk,
            space_id=space.pk,
            start_at=start_at,
            end_at=end_at,
            total_price=reservation.total_price,
        )
    return reservation


def accept_reservation(
    *,
    provider_id: int,
    reservation_id: int,
    gateway: RealtimeGateway,
    now: Optional[datetime] = None,
) -> Reservation:
    """
    Accept a pending request, re-checking capacity inside the transaction.

    When this acceptance fills the space, the other pending requests that
    overlap it are rejected automatically.
    """
    now = now or timezone.now()
    space_id = _get(reservation_id).space_id

    with transaction.atomic():
        # Lock the space before the reservation so concurrent accepts queue up.
        space = Space.objects.select_for_update().get(pk=space_id)
        reservation = _get(reservation_id, lock=True)
        _require_provider(reservation, provider_id)
        _require_status(reservation, (Status.PENDIENTE,))
        if reservation.start_at < now:
            raise DomainValidationError(
                "Cannot accept a reservation that already started.", code="START_IN_PAST"
            )
        if space.owner_id != provider_id:
            raise DomainPermissionError("The space does not belong to this provider.")

        taken = ensure_capacity_available(
            space.pk,
            reservation.start_at,
            reservation.end_at,
            space.capacity,
            exclude_reservation_id=reservation.pk,
        )
        _transition(
            reservation,
            (Status.PENDIENTE,),
            now,
            status=Status.ACEPTADA,
            reject_reason="",
            check_in_deadline=compute_deadline(reservation.start_at),
        )
        events.notify_participants(
            gateway,
            occupant_id=reservation.occupant_id,
            provider_id=reservation.provider_id,
            event_type=events.ACCEPTED,
            reservation_id=reservation.pk,
            check_in_deadline=reservation.check_in_deadline,
        )

        if taken + 1 >= space.capacity:
            crowded = list(
                overlapping(
                    space.pk,
                    reservation.start_at,
                    reservation.end_at,
                    statuses=(Status.PENDIENTE,),
                    exclude_reservation_id=reservation.pk,
                ).values_list("pk", "occupant_id", "provider_id")
            )
            if crowded:
                Reservation.objects.filter(
                    pk__in=[row[0] for row in crowded],
                    status=Status.PENDIENTE,
                ).update(
                    status=Status.RECHAZADA,
                    reject_reason=CAPACITY_REACHED_REASON,
                    updated_at=now,
                )
                logger.info(
                    "reservations: space=%s full, auto-rejected %s",
                    space.pk,
                    [row[0] for row in crowded],
                )
            for pk, occupant, provider in crowded:
                events.notify_participants(
                    gateway,
                    occupant_id=occupant,
                    provider_id=provider,
                    event_type=events.REJECTED,
                    reservation_id=pk,
                    reason=CAPACITY_REACHED_REASON,
                    auto=True,
                )
    return reservation


def reject_reservation(
    *,
    provider_id: int,
    reservation_id: int,
    reason: Optional[str],
    gateway: RealtimeGateway,
    now: Optional[datetime] = None,
) -> Reservation:
    now = now or timezone.now()
    clean_reason = (reason or "").strip()
    if not clean_reason:
        raise DomainValidationError("A rejection reason is required.", code="REASON_REQUIRED")

    with transaction.atomic():
        reservation = _get(reservation_id, lock=True)
        _require_provider(reservation, provider_id)
        _require_status(reservation, (Status.PENDIENTE,))
        if not Space.objects.filter(pk=reservation.space_id, owner_id=provider_id).exists():
            raise DomainPermissionError("The space does not belong to this provider.")

        _transition(
            reservation,
            (Status.PENDIENTE,),
            now,
            status=Status.RECHAZADA,
            reject_reason=clean_reason,
        )
        events.notify_participants(
            gateway,
            occupant_id=reservation.occupant_id,
            provider_id=reservation.provider_id,
            event_type=events.REJECTED,
            reservation_id=reservation.pk,
            reason=clean_reason,
            auto=False,
        )
    return reservation


def cancel_reservation(
    *,
    occupant_id: int,
    reservation_id: int,
    reason: Optional[str] = None,
    gateway: RealtimeGateway,
    now: Optional[datetime] = None,
) -> Reservation:
    now = now or timezone.now()
    reservation = _get(reservation_id)
    _require_occupant(reservation, occupant_id)
    _require_status(reservation, CANCELLABLE_STATUSES)
    if reservation.start_at < now:
        raise DomainValidationError(
            "Cannot cancel a reservation that already started.", code="ALREADY_STARTED"
        )

    with transaction.atomic():
        _transition(
            reservation,
            CANCELLABLE_STATUSES,
            now,
            status=Status.CANCELADA,
            cancelled_reason=(reason or "").strip(),
        )
        events.notify_participants(
            gateway,
            occupant_id=reservation.occupant_id,
            provider_id=reservation.provider_id,
            event_type=events.CANCELLED,
            reservation_id=reservation.pk,
            reason=reservation.cancelled_reason,
        )
    return reservation


def request_check_in(
    *,
    occupant_id: int,
    reservation_id: int,
    tolerance: Optional[int] = None,
    gateway: RealtimeGateway,
    now: Optional[datetime] = None,
) -> Reservation:
    """
    Record the occupant's arrival.

    Past the deadline the reservation is expired instead; that write is kept
    and DeadlineExceeded is raised afterwards.
    """
    now = now or timezone.now()
    reservation = _get(reservation_id)
    _require_occupant(reservation, occupant_id)
    _require_status(reservation, (Status.ACEPTADA,))

    deadline = reservation.check_in_deadline or compute_deadline(reservation.start_at, tolerance)
    if now > deadline:
        _expire(reservation, Status.ACEPTADA, now, gateway, deadline=deadline)
        raise DeadlineExceeded("The check-in tolerance window has elapsed.")

    with transaction.atomic():
        _transition(
            reservation,
            (Status.ACEPTADA,),
            now,
            status=Status.CHECKIN_SOLICITADO,
            check_in_at=now,
            check_in_deadline=deadline,
        )
        events.notify_participants(
            gateway,
            occupant_id=reservation.occupant_id,
            provider_id=reservation.provider_id,
            event_type=events.CHECKIN_REQUESTED,
            reservation_id=reservation.pk,
            space_id=reservation.space_id,
            check_in_at=now,
            check_in_deadline=deadline,
        )
    return reservation


def start_stay(
    *,
    provider_id: int,
    reservation_id: int,
    gateway: RealtimeGateway,
    now: Optional[datetime] = None,
) -> Reservation:
    now = now or timezone.now()
    reservation = _get(reservation_id)
    _require_provider(reservation, provider_id)
    _require_status(reservation, (Status.CHECKIN_SOLICITADO,))

    if reservation.deadline_passed(now):
        _expire(
            reservation,
            Status.CHECKIN_SOLICITADO,
            now,
            gateway,
            deadline=reservation.check_in_deadline,
        )
        raise DeadlineExceeded("The check-in tolerance window has elapsed.")
    if reservation.started_at is not None:
        raise DomainConflict("The stay has already started.", code="ALREADY_STARTED")

    with transaction.atomic():
        _transition(
            reservation,
            (Status.CHECKIN_SOLICITADO,),
            now,
            status=Status.EN_CURSO,
            started_at=now,
        )
        events.notify_participants(
            gateway,
            occupant_id=reservation.occupant_id,
            provider_id=reservation.provider_id,
            event_type=events.STARTED,
            reservation_id=reservation.pk,
            started_at=now,
        )
    return reservation


def finish_stay(
    *,
    provider_id: int,
    reservation_id: int,
    gateway: RealtimeGateway,
    now: Optional[datetime] = None,
) -> Reservation:
    """Close the stay and bill the actual time spent with the resolved billing mode."""
    now = now or timezone.now()
    reservation = _get(reservation_id)
    _require_provider(reservation, provider_id)
    _require_status(reservation, (Status.EN_CURSO,))
    if reservation.started_at is None:
        logger.error("reservations: #%s is EN_CURSO without started_at", reservation.pk)
        raise DomainIntegrityError(
            "Reservation has no started_at; cannot bill the stay.", code="MISSING_STARTED_AT"
        )

    space = Space.objects.get(pk=reservation.space_id)
    quote = compute_stay_price(
        price_per_hour=space.price_per_hour,
        price_per_day=space.price_per_day,
        start_at=reservation.started_at,
        end_at=now,
        billing_mode=reservation.billing_mode,
    )

    with transaction.atomic():
        _transition(
            reservation,
            (Status.EN_CURSO,),
            now,
            status=Status.FINALIZADA,
            ended_at=now,
            total_price=quote.total,
        )
        events.notify_participants(
            gateway,
            occupant_id=reservation.occupant_id,
            provider_id=reservation.provider_id,
            event_type=events.FINISHED,
            reservation_id=reservation.pk,
            ended_at=now,
            total_price=quote.total,
            used=quote.billing_mode,
        )
    return reservation
