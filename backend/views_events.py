from __future__ import annotations

from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from core import realtime


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def events_stream(request):
    """
    Long-poll endpoint returning personal events from Redis Streams.

    Query params:
    - cursor: last seen personal event id (Redis stream id).
      If omitted, default "$" (only new events).
    - admin_cursor: same, for the admin broadcast stream (staff only).
    - timeout: blocking time in seconds (default 25, max 60).
    """
    user = request.user
    cursor = (request.query_params.get("cursor") or "").strip() or "$"
    try:
        timeout_sec = float(request.query_params.get("timeout", "25"))
    except ValueError:
        timeout_sec = 25.0
    timeout_sec = max(0.0, min(timeout_sec, 60.0))
    block_ms = int(timeout_sec * 1000)

    personal = realtime.user_room(user.id)
    cursors = {personal: cursor}
    if user.is_staff:
        cursors[realtime.ADMIN_ROOM] = (
            request.query_params.get("admin_cursor") or ""
        ).strip() or "$"

    next_cursors, events = realtime.get_gateway().read(
        cursors,
        block_ms=block_ms,
        count=100,
    )

    body = {
        "cursor": next_cursors[personal],
        "events": [
            {"id": e["id"], "room": e["room"], "type": e["type"], "payload": e["payload"]}
            for e in events
        ],
        "now": timezone.now().isoformat(),
    }
    if user.is_staff:
        body["admin_cursor"] = next_cursors[realtime.ADMIN_ROOM]
    return Response(body, status=status.HTTP_200_OK)
