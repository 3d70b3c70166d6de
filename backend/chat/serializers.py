from __future__ import annotations

from rest_framework import serializers


class HistoryQuerySerializer(serializers.Serializer):
    """Validate ?take=&cursor= for the message history endpoint."""

    take = serializers.IntegerField(required=False, min_value=1)
    cursor = serializers.IntegerField(required=False, min_value=1)
