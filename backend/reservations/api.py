"""API viewset for the reservation lifecycle."""

from __future__ import annotations

import logging

from django.db.models import Q
from django.utils import timezone
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from core import realtime
from core.errors import DomainError, DomainNotFound, DomainPermissionError, error_response
from users.models import User

from . import domain
from .availability import ACTIVE_STATUSES
from .filters import ReservationFilter
from .models import Reservation
from .permissions import IsOccupant, IsProvider
from .serializers import (
    CheckInSerializer,
    ReasonSerializer,
    ReservationCreateSerializer,
    ReservationSerializer,
)
from .sweeper import expire_overdue_reservations

logger = logging.getLogger(__name__)

ACTIVE_LIST_LIMIT = 10


class ReservationViewSet(viewsets.GenericViewSet):
    """Booking requests and their state transitions."""

    serializer_class = ReservationSerializer
    permission_classes = (permissions.IsAuthenticated,)
    filterset_class = ReservationFilter
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        """Restrict reservations to the authenticated participant."""
        user = self.request.user
        if not user.is_authenticated:
            return Reservation.objects.none()
        return Reservation.objects.select_related(
            "space", "vehicle", "occupant", "provider"
        ).filter(Q(occupant=user) | Q(provider=user))

    def get_permissions(self):
        if self.action == "create":
            return [permissions.IsAuthenticated(), IsOccupant()]
        return super().get_permissions()

    def handle_exception(self, exc):
        if isinstance(exc, DomainError):
            if exc.status_code >= 500:
                logger.error("reservations: %s (%s)", exc.message, exc.code)
            return error_response(exc)
        return super().handle_exception(exc)

    def _respond(self, reservation: Reservation, status_code: int = status.HTTP_200_OK) -> Response:
        reservation = self.get_queryset().get(pk=reservation.pk)
        return Response(self.get_serializer(reservation).data, status=status_code)

    def _list(self, queryset) -> Response:
        return Response(self.get_serializer(queryset, many=True).data)

    def create(self, request, *args, **kwargs):
        """Create a PENDIENTE reservation for the authenticated occupant."""
        serializer = ReservationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        reservation = domain.create_reservation(
            occupant_id=request.user.id,
            space_id=data["space_id"],
            start_at=data["start_at"],
            end_at=data["end_at"],
            vehicle_id=data.get("vehicle_id"),
            billing_mode=data["billing_mode"],
            gateway=realtime.get_gateway(),
        )
        return self._respond(reservation, status.HTTP_201_CREATED)

    def retrieve(self, request, *args, **kwargs):
        """Return one reservation to either participant."""
        pk = self.kwargs["pk"]
        expire_overdue_reservations(gateway=realtime.get_gateway(), reservation_id=pk)
        reservation = Reservation.objects.select_related(
            "space", "vehicle", "occupant", "provider"
        ).filter(pk=pk).first()
        if reservation is None:
            raise DomainNotFound("Reservation not found.", code="RESERVATION_NOT_FOUND")
        if not (reservation.is_participant(request.user.id) or request.user.is_staff):
            raise DomainPermissionError("You are not a participant of this reservation.")
        return Response(self.get_serializer(reservation).data)

    @action(
        detail=False,
        methods=["get"],
        url_path="mine",
        permission_classes=[permissions.IsAuthenticated, IsOccupant],
    )
    def mine(self, request, *args, **kwargs):
        """Reservations the user made as occupant."""
        expire_overdue_reservations(gateway=realtime.get_gateway(), occupant_id=request.user.id)
        qs = self.get_queryset().filter(occupant=request.user).order_by("-created_at")
        return self._list(qs)

    @action(
        detail=False,
        methods=["get"],
        url_path="for-my-spaces",
        permission_classes=[permissions.IsAuthenticated, IsProvider],
    )
    def for_my_spaces(self, request, *args, **kwargs):
        """Reservations on spaces the user provides, optionally filtered by ?status=."""
        expire_overdue_reservations(gateway=realtime.get_gateway(), provider_id=request.user.id)
        qs = self.filter_queryset(
            self.get_queryset().filter(provider=request.user).order_by("-created_at")
        )
        return self._list(qs)

    @action(detail=False, methods=["get"], url_path="active")
    def active(self, request, *args, **kwargs):
        """Up to ten open reservations for ?as=OCUPANTE|PRESTADOR, soonest first."""
        role = (request.query_params.get("as") or "").strip().upper()
        if role not in (User.Role.OCUPANTE, User.Role.PRESTADOR):
            return Response(
                {"detail": "as must be OCUPANTE or PRESTADOR.", "code": "VALIDATION"},
                status=status.HTTP_400_BAD_REQUEST,
            )

        user = request.user
        reservations = []
        if user.has_role(role):
            scope = {"occupant_id": user.id} if role == User.Role.OCUPANTE else {"provider_id": user.id}
            expire_overdue_reservations(gateway=realtime.get_gateway(), **scope)
            reservations = (
                Reservation.objects.select_related("space", "vehicle", "occupant", "provider")
                .filter(status__in=ACTIVE_STATUSES, **scope)
                .order_by("start_at")[:ACTIVE_LIST_LIMIT]
            )
        return Response(
            {
                "reservations": self.get_serializer(reservations, many=True).data,
                "server_now": timezone.now().isoformat(),
            }
        )

    @action(
        detail=True,
        methods=["patch"],
        url_path="cancel",
        permission_classes=[permissions.IsAuthenticated, IsOccupant],
    )
    def cancel(self, request, *args, **kwargs):
        """Cancel a PENDIENTE or ACEPTADA reservation (occupant-only)."""
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reservation = domain.cancel_reservation(
            occupant_id=request.user.id,
            reservation_id=int(self.kwargs["pk"]),
            reason=serializer.validated_data.get("reason"),
            gateway=realtime.get_gateway(),
        )
        return self._respond(reservation)

    @action(
        detail=True,
        methods=["patch"],
        url_path="accept",
        permission_classes=[permissions.IsAuthenticated, IsProvider],
    )
    def accept(self, request, *args, **kwargs):
        """Accept a pending reservation (provider-only)."""
        reservation = domain.accept_reservation(
            provider_id=request.user.id,
            reservation_id=int(self.kwargs["pk"]),
            gateway=realtime.get_gateway(),
        )
        return self._respond(reservation)

    @action(
        detail=True,
        methods=["patch"],
        url_path="reject",
        permission_classes=[permissions.IsAuthenticated, IsProvider],
    )
    def reject(self, request, *args, **kwargs):
        """Reject a pending reservation with a reason (provider-only)."""
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reservation = domain.reject_reservation(
            provider_id=request.user.id,
            reservation_id=int(self.kwargs["pk"]),
            reason=serializer.validated_data.get("reason"),
            gateway=realtime.get_gateway(),
        )
        return self._respond(reservation)

    @action(
        detail=True,
        methods=["post"],
        url_path="checkin",
        permission_classes=[permissions.IsAuthenticated, IsOccupant],
    )
    def checkin(self, request, *args, **kwargs):
        """Mark the occupant's arrival within the tolerance window."""
        serializer = CheckInSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        reservation = domain.request_check_in(
            occupant_id=request.user.id,
            reservation_id=int(self.kwargs["pk"]),
            tolerance=serializer.validated_data.get("tolerance_minutes"),
            gateway=realtime.get_gateway(),
        )
        return self._respond(reservation)

    @action(
        detail=True,
        methods=["post"],
        url_path="start",
        permission_classes=[permissions.IsAuthenticated, IsProvider],
    )
    def start(self, request, *args, **kwargs):
        """Start the stay after the occupant checked in (provider-only)."""
        reservation = domain.start_stay(
            provider_id=request.user.id,
            reservation_id=int(self.kwargs["pk"]),
            gateway=realtime.get_gateway(),
        )
        return self._respond(reservation)

    @action(
        detail=True,
        methods=["post"],
        url_path="finish",
        permission_classes=[permissions.IsAuthenticated, IsProvider],
    )
    def finish(self, request, *args, **kwargs):
        """Finish the stay and bill the actual time (provider-only)."""
        reservation = domain.finish_stay(
            provider_id=request.user.id,
            reservation_id=int(self.kwargs["pk"]),
            gateway=realtime.get_gateway(),
        )
        return self._respond(reservation)
