"""Chat operations shared by the socket handlers and the history endpoint."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.errors import DomainConflict, DomainNotFound, DomainPermissionError, DomainValidationError
from core.realtime import RealtimeGateway
from reservations.models import Reservation

from .models import ChatMessage, ChatReadState

logger = logging.getLogger(__name__)

MESSAGE_NEW = "chat:message:new"
READ_UPDATE = "chat:read:update"
TYPING = "chat:typing"

# Statuses in which participants may post.
CHAT_SEND_STATUSES = (
    Reservation.Status.ACEPTADA,
    Reservation.Status.CHECKIN_SOLICITADO,
    Reservation.Status.EN_CURSO,
)
# Finished reservations stay readable but not writable.
CHAT_VIEW_STATUSES = CHAT_SEND_STATUSES + (Reservation.Status.FINALIZADA,)


def get_participant_reservation(reservation_id: int, user_id: int) -> Reservation:
    """Return the reservation when ``user_id`` is its occupant or provider."""
    reservation = Reservation.objects.filter(pk=reservation_id).first()
    if reservation is None:
        raise DomainNotFound("Reservation not found.", code="RESERVATION_NOT_FOUND")
    if not reservation.is_participant(user_id):
        raise DomainPermissionError("You are not a participant of this reservation.")
    return reservation


def upsert_read_state(
    reservation_id: int,
    user_id: int,
    message_id: int,
    now: Optional[datetime] = None,
) -> ChatReadState:
    now = now or timezone.now()
    state, _ = ChatReadState.objects.update_or_create(
        reservation_id=reservation_id,
        user_id=user_id,
        defaults={"last_read_message_id": message_id, "last_read_at": now},
    )
    return state


def _read_update_payload(state: ChatReadState) -> Dict[str, Any]:
    return {
        "reservation_id": state.reservation_id,
        "user_id": state.user_id,
        "last_read_message_id": state.last_read_message_id,
        "read_at": state.last_read_at.isoformat(),
    }


def post_message(
    *,
    reservation_id: int,
    sender_id: int,
    body: Any,
    gateway: RealtimeGateway,
) -> Tuple[ChatMessage, ChatReadState]:
    """
    Persist a text message and advance the sender's own read cursor to it.

    The new message and the read update are broadcast to the reservation
    channel after commit.
    """
    text = str(body or "").strip()
    if not text:
        raise DomainValidationError("Message is empty.", code="EMPTY_MESSAGE")
    max_length = getattr(settings, "CHAT_MESSAGE_MAX_LENGTH", 1000)
    if len(text) > max_length:
        raise DomainValidationError(
            f"Message exceeds {max_length} characters.", code="TOO_LONG"
        )

    reservation = get_participant_reservation(reservation_id, sender_id)
    if reservation.status not in CHAT_SEND_STATUSES:
        raise DomainConflict(
            "Chat is closed for this reservation status.",
            code="CHAT_DISABLED_FOR_STATUS",
            status=reservation.status,
        )

    with transaction.atomic():
        message = ChatMessage.objects.create(
            reservation=reservation,
            sender_id=sender_id,
            body=text,
            type=ChatMessage.Type.TEXT,
        )
        state = upsert_read_state(reservation.pk, sender_id, message.pk, message.created_at)
        message_payload = message.as_payload()
        read_payload = _read_update_payload(state)

        def _broadcast() -> None:
            gateway.emit_to_reservation(reservation.pk, MESSAGE_NEW, message_payload)
            gateway.emit_to_reservation(reservation.pk, READ_UPDATE, read_payload)

        transaction.on_commit(_broadcast)

    logger.info(
        "chat: message %s posted on reservation=%s by user=%s",
        message.pk,
        reservation.pk,
        sender_id,
    )
    return message, state


def mark_read(
    *,
    reservation_id: int,
    user_id: int,
    last_read_message_id: Any,
    gateway: RealtimeGateway,
) -> Optional[ChatReadState]:
    """Move the caller's read cursor; a missing message id is a no-op."""
    reservation = get_participant_reservation(reservation_id, user_id)
    if not last_read_message_id:
        return None
    try:
        message_id = int(last_read_message_id)
    except (TypeError, ValueError):
        raise DomainValidationError("last_read_message_id must be an integer.")
    if not ChatMessage.objects.filter(pk=message_id, reservation=reservation).exists():
        raise DomainNotFound("Message not found in this chat.", code="MESSAGE_NOT_FOUND")

    state = upsert_read_state(reservation.pk, user_id, message_id)
    gateway.emit_to_reservation(reservation.pk, READ_UPDATE, _read_update_payload(state))
    return state


def relay_typing(
    *,
    reservation_id: int,
    user_id: int,
    is_typing: Any,
    gateway: RealtimeGateway,
    origin: Optional[str] = None,
) -> None:
    """Relay a typing indicator to the channel; nothing is stored."""
    reservation = get_participant_reservation(reservation_id, user_id)
    gateway.emit_to_reservation(
        reservation.pk,
        TYPING,
        {"reservation_id": reservation.pk, "user_id": user_id, "is_typing": bool(is_typing)},
        origin=origin,
    )


def _user_summary(user) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
    }


def message_history(
    *,
    reservation_id: int,
    user_id: int,
    take: Optional[int] = None,
    cursor: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Return one page of messages in ascending id order.

    Pages are fetched newest first below ``cursor``; ``next_cursor`` is the
    oldest id of the page, to be passed back for the previous page.
    """
    reservation = get_participant_reservation(reservation_id, user_id)
    if reservation.status not in CHAT_VIEW_STATUSES:
        raise DomainConflict(
            "Chat is not available for this reservation status.",
            code="CHAT_DISABLED_FOR_STATUS",
            status=reservation.status,
        )

    default_take = getattr(settings, "CHAT_HISTORY_DEFAULT_TAKE", 30)
    max_take = getattr(settings, "CHAT_HISTORY_MAX_TAKE", 100)
    take = min(take or default_take, max_take)

    qs = ChatMessage.objects.filter(reservation=reservation)
    if cursor:
        qs = qs.filter(pk__lt=cursor)
    page = list(qs.order_by("-id")[:take])
    page.reverse()

    other_id = (
        reservation.provider_id if user_id == reservation.occupant_id else reservation.occupant_id
    )
    cursors = dict(
        ChatReadState.objects.filter(reservation=reservation).values_list(
            "user_id", "last_read_message_id"
        )
    )
    other_user = (
        reservation.provider if other_id == reservation.provider_id else reservation.occupant
    )

    return {
        "ok": True,
        "status": reservation.status,
        "messages": [message.as_payload() for message in page],
        "next_cursor": page[0].pk if page else None,
        "my_last_read_message_id": cursors.get(user_id),
        "other_last_read_message_id": cursors.get(other_id),
        "other_user": _user_summary(other_user),
    }
