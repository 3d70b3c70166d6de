from __future__ import annotations

from django.utils import timezone
from rest_framework import serializers


class QuoteQuerySerializer(serializers.Serializer):
    """Validate the ?start_at=&end_at= span of a quote request."""

    start_at = serializers.DateTimeField()
    end_at = serializers.DateTimeField()

    def validate(self, attrs):
        if attrs["start_at"] >= attrs["end_at"]:
            raise serializers.ValidationError(
                {"end_at": ["end_at must be after start_at."]}, code="INVALID_SPAN"
            )
        if attrs["start_at"] < timezone.now():
            raise serializers.ValidationError(
                {"start_at": ["Cannot quote a span in the past."]}, code="START_IN_PAST"
            )
        return attrs
