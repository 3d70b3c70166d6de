"""Serializers for reservation endpoints."""

from __future__ import annotations

from rest_framework import serializers

from .models import Reservation
from .pricing import BILLING_AUTO, BILLING_MODES


class ReservationSerializer(serializers.ModelSerializer):
    """Serialize Reservation instances for API responses."""

    space_title = serializers.ReadOnlyField(source="space.title")
    space_address = serializers.ReadOnlyField(source="space.address")
    vehicle_type = serializers.ReadOnlyField(source="vehicle.type", default=None)
    occupant_username = serializers.ReadOnlyField(source="occupant.username")
    provider_username = serializers.ReadOnlyField(source="provider.username")

    class Meta:
        model = Reservation
        fields = [
            "id",
            "space",
            "space_title",
            "space_address",
            "occupant",
            "occupant_username",
            "provider",
            "provider_username",
            "vehicle",
            "vehicle_type",
            "start_at",
            "end_at",
            "started_at",
            "ended_at",
            "status",
            "check_in_at",
            "check_in_deadline",
            "billing_mode",
            "total_price",
            "reject_reason",
            "cancelled_reason",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ReservationCreateSerializer(serializers.Serializer):
    space_id = serializers.IntegerField(min_value=1)
    start_at = serializers.DateTimeField()
    end_at = serializers.DateTimeField()
    billing_mode = serializers.ChoiceField(choices=BILLING_MODES, default=BILLING_AUTO)
    vehicle_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True, trim_whitespace=True)


class CheckInSerializer(serializers.Serializer):
    tolerance_minutes = serializers.IntegerField(required=False, min_value=1)
