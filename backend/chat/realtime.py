"""Socket event handlers for the per-reservation chat channel."""

from __future__ import annotations

import logging
from typing import Any, Dict

from asgiref.sync import sync_to_async

from core.errors import DomainError, DomainValidationError, ack_error
from core.realtime import RealtimeGateway, reservation_room
from core.ws_events import Connection, on

from . import services

logger = logging.getLogger(__name__)


def _reservation_id(data: Dict[str, Any]) -> int:
    try:
        return int(data.get("reservation_id"))
    except (TypeError, ValueError):
        raise DomainValidationError("reservation_id is required.")


@on("chat:join")
async def handle_join(conn: Connection, data: Dict[str, Any], gateway: RealtimeGateway) -> Dict[str, Any]:
    """Subscribe the connection to the reservation channel."""
    try:
        reservation = await sync_to_async(services.get_participant_reservation)(
            _reservation_id(data), conn.user_id
        )
    except DomainError as exc:
        return ack_error(exc)
    await conn.join(reservation_room(reservation.pk))
    return {"ok": True, "status": reservation.status}


@on("chat:typing")
async def handle_typing(conn: Connection, data: Dict[str, Any], gateway: RealtimeGateway) -> Dict[str, Any]:
    try:
        await sync_to_async(services.relay_typing)(
            reservation_id=_reservation_id(data),
            user_id=conn.user_id,
            is_typing=data.get("is_typing"),
            gateway=gateway,
            origin=conn.id,
        )
    except DomainError as exc:
        return ack_error(exc)
    return {"ok": True}


@on("chat:send")
async def handle_send(conn: Connection, data: Dict[str, Any], gateway: RealtimeGateway) -> Dict[str, Any]:
    """Persist a message; the sender joins the channel first so it sees the broadcast."""
    try:
        reservation_id = _reservation_id(data)
        await sync_to_async(services.get_participant_reservation)(reservation_id, conn.user_id)
        await conn.join(reservation_room(reservation_id))
        message, _ = await sync_to_async(services.post_message)(
            reservation_id=reservation_id,
            sender_id=conn.user_id,
            body=data.get("body"),
            gateway=gateway,
        )
    except DomainError as exc:
        return ack_error(exc)
    return {"ok": True, "message": message.as_payload()}


@on("chat:read")
async def handle_read(conn: Connection, data: Dict[str, Any], gateway: RealtimeGateway) -> Dict[str, Any]:
    try:
        await sync_to_async(services.mark_read)(
            reservation_id=_reservation_id(data),
            user_id=conn.user_id,
            last_read_message_id=data.get("last_read_message_id"),
            gateway=gateway,
        )
    except DomainError as exc:
        return ack_error(exc)
    return {"ok": True}
