"""Tests for the reservation lifecycle operations."""

from __future__ import annotations

import threading
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import connection
from django.test import override_settings
from django.utils import timezone

from core.errors import (
    CapacityExceeded,
    DeadlineExceeded,
    DomainConflict,
    DomainIntegrityError,
    DomainNotFound,
    DomainPermissionError,
    DomainValidationError,
)
from core.realtime import user_room
from reservations import domain, events
from reservations.models import Reservation
from spaces.models import SpaceAllowedVehicleType, VehicleType

pytestmark = pytest.mark.django_db

Status = Reservation.Status


def create(gateway, space, user, vehicle, *, start=None, hours=1, **kwargs):
    start = start or timezone.now() + timedelta(hours=2)
    params = {
        "occupant_id": user.id,
        "space_id": space.id,
        "start_at": start,
        "end_at": start + timedelta(hours=hours),
        "vehicle_id": vehicle.id if vehicle else None,
        "gateway": gateway,
    }
    params.update(kwargs)
    return domain.create_reservation(**params)


def test_create_reservation_is_pending_with_price_estimate(
    gateway, space, renter_user, vehicle, django_capture_on_commit_callbacks
):
    with django_capture_on_commit_callbacks(execute=True):
        reservation = create(gateway, space, renter_user, vehicle, hours=2)

    reservation.refresh_from_db()
    assert reservation.status == Status.PENDIENTE
    assert reservation.provider_id == space.owner_id
    assert reservation.billing_mode == Reservation.BillingMode.HORA
    assert reservation.total_price == Decimal("20.00")
    assert reservation.check_in_deadline is None
    assert gateway.rooms_for(events.CREATED) == sorted(
        [user_room(renter_user.id), user_room(space.owner_id)]
    )
    payload = gateway.of_type(events.CREATED)[0]["payload"]
    assert payload["reservation_id"] == reservation.id
    assert payload["total_price"] == "20.00"


def test_create_reservation_resolves_auto_billing_to_daily(gateway, space, renter_user, vehicle):
    reservation = create(gateway, space, renter_user, vehicle, hours=9)

    assert reservation.billing_mode == Reservation.BillingMode.DIA
    assert reservation.total_price == Decimal("100.00")


@pytest.mark.parametrize(
    "overrides,code",
    [
        ({"hours": 0}, "INVALID_SPAN"),
        ({"hours": -1}, "INVALID_SPAN"),
        ({"billing_mode": "WEEK"}, "INVALID_BILLING_MODE"),
    ],
)
def test_create_reservation_validates_input(gateway, space, renter_user, vehicle, overrides, code):
    with pytest.raises(DomainValidationError) as excinfo:
        create(gateway, space, renter_user, vehicle, **overrides)

    assert excinfo.value.code == code
    assert not Reservation.objects.exists()


def test_create_reservation_in_the_past_is_rejected(gateway, space, renter_user, vehicle):
    with pytest.raises(DomainValidationError) as excinfo:
        create(gateway, space, renter_user, vehicle, start=timezone.now() - timedelta(minutes=5))

    assert excinfo.value.code == "START_IN_PAST"


def test_create_reservation_requires_vehicle(gateway, space, renter_user):
    with pytest.raises(DomainValidationError) as excinfo:
        create(gateway, space, renter_user, None)

    assert excinfo.value.code == "VEHICLE_REQUIRED"


def test_create_reservation_on_inactive_space_is_not_found(gateway, space, renter_user, vehicle):
    space.is_active = False
    space.save(update_fields=["is_active"])

    with pytest.raises(DomainNotFound) as excinfo:
        create(gateway, space, renter_user, vehicle)

    assert excinfo.value.code == "SPACE_NOT_FOUND"


def test_owner_cannot_book_own_space(gateway, space, owner_user, vehicle):
    with pytest.raises(DomainValidationError) as excinfo:
        create(gateway, space, owner_user, vehicle)

    assert excinfo.value.code == "OWN_SPACE"


def test_create_reservation_with_someone_elses_vehicle(
    gateway, space, renter_user, second_vehicle
):
    with pytest.raises(DomainNotFound) as excinfo:
        create(gateway, space, renter_user, second_vehicle)

    assert excinfo.value.code == "INVALID_VEHICLE"


def test_create_reservation_enforces_allowed_vehicle_types(gateway, space, renter_user, vehicle):
    SpaceAllowedVehicleType.objects.create(space=space, vehicle_type=VehicleType.MOTO)

    with pytest.raises(DomainValidationError) as excinfo:
        create(gateway, space, renter_user, vehicle)

    assert excinfo.value.code == "VEHICLE_TYPE_NOT_ALLOWED"


def test_create_reservation_blocked_by_accepted_overlap(
    gateway, space, renter_user, vehicle, reservation_factory
):
    start = timezone.now() + timedelta(hours=3)
    reservation_factory(start_at=start, status=Status.ACEPTADA)

    with pytest.raises(CapacityExceeded) as excinfo:
        create(gateway, space, renter_user, vehicle, start=start + timedelta(minutes=30))

    assert excinfo.value.extra == {"capacity": 1, "taken": 1}


@override_settings(RESERVATION_CREATE_COUNTS_PENDING=False)
def test_pending_overlap_does_not_block_creation_when_disabled(
    gateway, space, second_renter, second_vehicle, reservation_factory
):
    start = timezone.now() + timedelta(hours=3)
    reservation_factory(start_at=start)

    reservation = create(gateway, space, second_renter, second_vehicle, start=start)

    assert reservation.status == Status.PENDIENTE


def test_pending_overlap_blocks_creation_by_default(
    gateway, space, second_renter, second_vehicle, reservation_factory
):
    start = timezone.now() + timedelta(hours=3)
    reservation_factory(start_at=start)

    with pytest.raises(CapacityExceeded):
        create(gateway, space, second_renter, second_vehicle, start=start)


def test_accept_sets_deadline_from_tolerance(
    gateway, owner_user, reservation_factory, django_capture_on_commit_callbacks
):
    reservation = reservation_factory()

    with django_capture_on_commit_callbacks(execute=True):
        domain.accept_reservation(
            provider_id=owner_user.id, reservation_id=reservation.id, gateway=gateway
        )

    reservation.refresh_from_db()
    assert reservation.status == Status.ACEPTADA
    assert reservation.check_in_deadline == reservation.start_at + timedelta(minutes=15)
    assert len(gateway.of_type(events.ACCEPTED)) == 2


@override_settings(RESERVATION_CHECKIN_TOLERANCE_MINUTES=30)
def test_accept_uses_configured_tolerance(gateway, owner_user, reservation_factory):
    reservation = reservation_factory()

    domain.accept_reservation(
        provider_id=owner_user.id, reservation_id=reservation.id, gateway=gateway
    )

    reservation.refresh_from_db()
    assert reservation.check_in_deadline == reservation.start_at + timedelta(minutes=30)


def test_accept_filling_capacity_auto_rejects_overlapping_pending(
    gateway,
    owner_user,
    second_renter,
    second_vehicle,
    reservation_factory,
    django_capture_on_commit_callbacks,
):
    start = timezone.now() + timedelta(hours=3)
    first = reservation_factory(start_at=start)
    second = reservation_factory(
        start_at=start + timedelta(minutes=30), occupant=second_renter, vehicle=second_vehicle
    )
    later = reservation_factory(start_at=start + timedelta(hours=5))

    with django_capture_on_commit_callbacks(execute=True):
        domain.accept_reservation(provider_id=owner_user.id, reservation_id=first.id, gateway=gateway)

    second.refresh_from_db()
    later.refresh_from_db()
    assert second.status == Status.RECHAZADA
    assert second.reject_reason == domain.CAPACITY_REACHED_REASON
    assert later.status == Status.PENDIENTE

    rejected = gateway.of_type(events.REJECTED)
    assert {e["room"] for e in rejected} == {user_room(second_renter.id), user_room(owner_user.id)}
    assert all(e["payload"]["auto"] is True for e in rejected)
    assert all(e["payload"]["reservation_id"] == second.id for e in rejected)


def test_accept_with_free_capacity_keeps_other_requests_pending(
    gateway, space, owner_user, second_renter, second_vehicle, reservation_factory
):
    space.capacity = 2
    space.save(update_fields=["capacity"])
    start = timezone.now() + timedelta(hours=3)
    first = reservation_factory(start_at=start)
    second = reservation_factory(start_at=start, occupant=second_renter, vehicle=second_vehicle)

    domain.accept_reservation(provider_id=owner_user.id, reservation_id=first.id, gateway=gateway)

    second.refresh_from_db()
    assert second.status == Status.PENDIENTE


def test_accept_when_space_is_full(gateway, owner_user, second_renter, second_vehicle, reservation_factory):
    start = timezone.now() + timedelta(hours=3)
    reservation_factory(start_at=start, status=Status.ACEPTADA)
    pending = reservation_factory(start_at=start, occupant=second_renter, vehicle=second_vehicle)

    with pytest.raises(CapacityExceeded):
        domain.accept_reservation(
            provider_id=owner_user.id, reservation_id=pending.id, gateway=gateway
        )

    pending.refresh_from_db()
    assert pending.status == Status.PENDIENTE


def test_accept_requires_provider(gateway, renter_user, reservation_factory):
    reservation = reservation_factory()

    with pytest.raises(DomainPermissionError):
        domain.accept_reservation(
            provider_id=renter_user.id, reservation_id=reservation.id, gateway=gateway
        )


def test_accept_non_pending_is_conflict(gateway, owner_user, reservation_factory):
    reservation = reservation_factory(status=Status.CANCELADA)

    with pytest.raises(DomainConflict) as excinfo:
        domain.accept_reservation(
            provider_id=owner_user.id, reservation_id=reservation.id, gateway=gateway
        )

    assert excinfo.value.extra["status"] == Status.CANCELADA


def test_accept_after_start_is_rejected(gateway, owner_user, reservation_factory):
    reservation = reservation_factory()

    with pytest.raises(DomainValidationError) as excinfo:
        domain.accept_reservation(
            provider_id=owner_user.id,
            reservation_id=reservation.id,
            gateway=gateway,
            now=reservation.start_at + timedelta(minutes=1),
        )

    assert excinfo.value.code == "START_IN_PAST"


def test_missing_reservation_is_not_found(gateway, owner_user):
    with pytest.raises(DomainNotFound) as excinfo:
        domain.accept_reservation(provider_id=owner_user.id, reservation_id=999, gateway=gateway)

    assert excinfo.value.code == "RESERVATION_NOT_FOUND"


def test_transition_on_stale_row_is_conflict(reservation_factory):
    reservation = reservation_factory()
    stale = Reservation.objects.get(pk=reservation.pk)
    Reservation.objects.filter(pk=reservation.pk).update(status=Status.RECHAZADA)

    with pytest.raises(DomainConflict):
        domain._transition(stale, (Status.PENDIENTE,), timezone.now(), status=Status.ACEPTADA)

    reservation.refresh_from_db()
    assert reservation.status == Status.RECHAZADA


def test_reject_requires_reason(gateway, owner_user, reservation_factory):
    reservation = reservation_factory()

    with pytest.raises(DomainValidationError) as excinfo:
        domain.reject_reservation(
            provider_id=owner_user.id, reservation_id=reservation.id, reason="  ", gateway=gateway
        )

    assert excinfo.value.code == "REASON_REQUIRED"


def test_reject_stores_reason_and_notifies(
    gateway, owner_user, reservation_factory, django_capture_on_commit_callbacks
):
    reservation = reservation_factory()

    with django_capture_on_commit_callbacks(execute=True):
        domain.reject_reservation(
            provider_id=owner_user.id,
            reservation_id=reservation.id,
            reason=" Closed for works ",
            gateway=gateway,
        )

    reservation.refresh_from_db()
    assert reservation.status == Status.RECHAZADA
    assert reservation.reject_reason == "Closed for works"
    assert gateway.of_type(events.REJECTED)[0]["payload"]["auto"] is False


@pytest.mark.parametrize("status", [Status.PENDIENTE, Status.ACEPTADA])
def test_occupant_can_cancel_before_start(gateway, renter_user, reservation_factory, status):
    reservation = reservation_factory(status=status)

    domain.cancel_reservation(
        occupant_id=renter_user.id, reservation_id=reservation.id, reason="plans changed", gateway=gateway
    )

    reservation.refresh_from_db()
    assert reservation.status == Status.CANCELADA
    assert reservation.cancelled_reason == "plans changed"


def test_cancel_in_progress_is_conflict(gateway, renter_user, reservation_factory):
    reservation = reservation_factory(status=Status.EN_CURSO)

    with pytest.raises(DomainConflict):
        domain.cancel_reservation(
            occupant_id=renter_user.id, reservation_id=reservation.id, gateway=gateway
        )


def test_cancel_after_start(gateway, renter_user, reservation_factory):
    reservation = reservation_factory(status=Status.ACEPTADA)

    with pytest.raises(DomainValidationError) as excinfo:
        domain.cancel_reservation(
            occupant_id=renter_user.id,
            reservation_id=reservation.id,
            gateway=gateway,
            now=reservation.start_at + timedelta(minutes=1),
        )

    assert excinfo.value.code == "ALREADY_STARTED"


def test_cancel_by_other_user_is_forbidden(gateway, second_renter, reservation_factory):
    reservation = reservation_factory()

    with pytest.raises(DomainPermissionError):
        domain.cancel_reservation(
            occupant_id=second_renter.id, reservation_id=reservation.id, gateway=gateway
        )


def test_check_in_within_tolerance(gateway, renter_user, reservation_factory):
    reservation = reservation_factory(status=Status.ACEPTADA)
    now = reservation.start_at + timedelta(minutes=10)

    domain.request_check_in(
        occupant_id=renter_user.id, reservation_id=reservation.id, gateway=gateway, now=now
    )

    reservation.refresh_from_db()
    assert reservation.status == Status.CHECKIN_SOLICITADO
    assert reservation.check_in_at == now


def test_check_in_after_deadline_expires_the_reservation(
    gateway, renter_user, reservation_factory, django_capture_on_commit_callbacks
):
    reservation = reservation_factory(status=Status.ACEPTADA)
    now = reservation.start_at + timedelta(minutes=16)

    with django_capture_on_commit_callbacks(execute=True):
        with pytest.raises(DeadlineExceeded):
            domain.request_check_in(
                occupant_id=renter_user.id, reservation_id=reservation.id, gateway=gateway, now=now
            )

    reservation.refresh_from_db()
    assert reservation.status == Status.EXPIRADA
    assert reservation.check_in_at is None
    assert len(gateway.of_type(events.EXPIRED)) == 2


def test_check_in_on_pending_is_conflict(gateway, renter_user, reservation_factory):
    reservation = reservation_factory()

    with pytest.raises(DomainConflict):
        domain.request_check_in(
            occupant_id=renter_user.id, reservation_id=reservation.id, gateway=gateway
        )


def test_start_stay_after_check_in(gateway, owner_user, reservation_factory):
    start = timezone.now() + timedelta(hours=2)
    reservation = reservation_factory(
        start_at=start, status=Status.CHECKIN_SOLICITADO, check_in_at=start
    )
    now = start + timedelta(minutes=5)

    domain.start_stay(provider_id=owner_user.id, reservation_id=reservation.id, gateway=gateway, now=now)

    reservation.refresh_from_db()
    assert reservation.status == Status.EN_CURSO
    assert reservation.started_at == now


def test_start_stay_after_deadline_expires(gateway, owner_user, reservation_factory):
    start = timezone.now() + timedelta(hours=2)
    reservation = reservation_factory(
        start_at=start, status=Status.CHECKIN_SOLICITADO, check_in_at=start
    )

    with pytest.raises(DeadlineExceeded):
        domain.start_stay(
            provider_id=owner_user.id,
            reservation_id=reservation.id,
            gateway=gateway,
            now=start + timedelta(minutes=20),
        )

    reservation.refresh_from_db()
    assert reservation.status == Status.EXPIRADA


def test_start_stay_requires_check_in(gateway, owner_user, reservation_factory):
    reservation = reservation_factory(status=Status.ACEPTADA)

    with pytest.raises(DomainConflict):
        domain.start_stay(provider_id=owner_user.id, reservation_id=reservation.id, gateway=gateway)


def test_start_stay_on_terminal_reservation_is_not_expired(gateway, owner_user, reservation_factory):
    reservation = reservation_factory(status=Status.FINALIZADA)

    with pytest.raises(DomainConflict):
        domain.start_stay(
            provider_id=owner_user.id,
            reservation_id=reservation.id,
            gateway=gateway,
            now=reservation.start_at + timedelta(hours=3),
        )

    reservation.refresh_from_db()
    assert reservation.status == Status.FINALIZADA


def test_finish_stay_bills_actual_time(
    gateway, owner_user, reservation_factory, django_capture_on_commit_callbacks
):
    start = timezone.now() + timedelta(hours=2)
    reservation = reservation_factory(
        start_at=start, status=Status.EN_CURSO, check_in_at=start, started_at=start
    )
    now = start + timedelta(hours=2, minutes=30)

    with django_capture_on_commit_callbacks(execute=True):
        domain.finish_stay(
            provider_id=owner_user.id, reservation_id=reservation.id, gateway=gateway, now=now
        )

    reservation.refresh_from_db()
    assert reservation.status == Status.FINALIZADA
    assert reservation.ended_at == now
    assert reservation.total_price == Decimal("25.00")
    payload = gateway.of_type(events.FINISHED)[0]["payload"]
    assert payload["total_price"] == "25.00"
    assert payload["used"] == Reservation.BillingMode.HORA


def test_finish_stay_keeps_daily_billing(gateway, owner_user, reservation_factory):
    start = timezone.now() + timedelta(hours=2)
    reservation = reservation_factory(
        start_at=start,
        status=Status.EN_CURSO,
        started_at=start,
        billing_mode=Reservation.BillingMode.DIA,
    )

    domain.finish_stay(
        provider_id=owner_user.id,
        reservation_id=reservation.id,
        gateway=gateway,
        now=start + timedelta(hours=26),
    )

    reservation.refresh_from_db()
    assert reservation.total_price == Decimal("200.00")


def test_finish_stay_without_started_at_is_integrity_error(gateway, owner_user, reservation_factory):
    reservation = reservation_factory(status=Status.EN_CURSO)

    with pytest.raises(DomainIntegrityError) as excinfo:
        domain.finish_stay(provider_id=owner_user.id, reservation_id=reservation.id, gateway=gateway)

    assert excinfo.value.code == "MISSING_STARTED_AT"
    assert excinfo.value.status_code == 500


def test_full_lifecycle(gateway, space, owner_user, renter_user, vehicle):
    start = timezone.now() + timedelta(hours=1)
    reservation = create(gateway, space, renter_user, vehicle, start=start, hours=3)
    domain.accept_reservation(provider_id=owner_user.id, reservation_id=reservation.id, gateway=gateway)
    domain.request_check_in(
        occupant_id=renter_user.id,
        reservation_id=reservation.id,
        gateway=gateway,
        now=start + timedelta(minutes=2),
    )
    domain.start_stay(
        provider_id=owner_user.id,
        reservation_id=reservation.id,
        gateway=gateway,
        now=start + timedelta(minutes=5),
    )
    domain.finish_stay(
        provider_id=owner_user.id,
        reservation_id=reservation.id,
        gateway=gateway,
        now=start + timedelta(hours=1, minutes=5),
    )

    reservation.refresh_from_db()
    assert reservation.status == Status.FINALIZADA
    assert reservation.total_price == Decimal("10.00")


@override_settings(RESERVATION_CREATE_COUNTS_PENDING=False)
def test_sequential_accepts_leave_one_accepted(
    gateway, space, owner_user, renter_user, vehicle, second_renter, second_vehicle
):
    start = timezone.now() + timedelta(hours=2)
    first = create(gateway, space, renter_user, vehicle, start=start)
    second = create(gateway, space, second_renter, second_vehicle, start=start)

    domain.accept_reservation(provider_id=owner_user.id, reservation_id=first.id, gateway=gateway)
    with pytest.raises(DomainConflict):
        domain.accept_reservation(
            provider_id=owner_user.id, reservation_id=second.id, gateway=gateway
        )

    statuses = dict(Reservation.objects.values_list("pk", "status"))
    assert statuses == {first.id: Status.ACEPTADA, second.id: Status.RECHAZADA}


@pytest.mark.django_db(transaction=True)
@pytest.mark.skipif(
    connection.vendor != "postgresql", reason="row locks need PostgreSQL (set DATABASE_URL)"
)
def test_concurrent_accepts_leave_one_accepted(
    gateway, reservation_factory, owner_user, second_renter, second_vehicle
):
    start = timezone.now() + timedelta(hours=2)
    first = reservation_factory(start_at=start)
    second = reservation_factory(start_at=start, occupant=second_renter, vehicle=second_vehicle)
    barrier = threading.Barrier(2)
    conflicts = []

    def accept(reservation_id):
        try:
            barrier.wait(timeout=5)
            domain.accept_reservation(
                provider_id=owner_user.id, reservation_id=reservation_id, gateway=gateway
            )
        except DomainConflict as exc:
            conflicts.append(exc)
        finally:
            connection.close()

    threads = [threading.Thread(target=accept, args=(pk,)) for pk in (first.id, second.id)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    statuses = sorted(Reservation.objects.values_list("status", flat=True))
    assert statuses == sorted([Status.ACEPTADA, Status.RECHAZADA])
    assert len(conflicts) == 1


def test_auto_booking_finished_after_ten_hours_bills_one_day(
    gateway, space, owner_user, renter_user, vehicle
):
    space.price_per_hour = Decimal("20.00")
    space.save(update_fields=["price_per_hour"])
    start = timezone.now() + timedelta(hours=1)
    reservation = create(gateway, space, renter_user, vehicle, start=start, hours=10)
    assert reservation.billing_mode == Reservation.BillingMode.DIA

    Reservation.objects.filter(pk=reservation.pk).update(
        status=Status.EN_CURSO, check_in_at=start, started_at=start
    )
    domain.finish_stay(
        provider_id=owner_user.id,
        reservation_id=reservation.id,
        gateway=gateway,
        now=start + timedelta(hours=10),
    )

    reservation.refresh_from_db()
    assert reservation.total_price == Decimal("100.00")
    assert reservation.billing_mode == Reservation.BillingMode.DIA
