"""Chat API views."""

from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from chat import services
from chat.serializers import HistoryQuerySerializer
from core.errors import DomainError, error_response


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def chat_messages(request, pk: int):
    """Return a page of the reservation's chat history with both read cursors."""
    query = HistoryQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    try:
        payload = services.message_history(
            reservation_id=pk,
            user_id=request.user.id,
            take=query.validated_data.get("take"),
            cursor=query.validated_data.get("cursor"),
        )
    except DomainError as exc:
        return error_response(exc)
    return Response(payload, status=status.HTTP_200_OK)
