"""Process-wide realtime gateway used to push events to connected clients."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from django.utils import timezone

from core.redis import append_event, last_entry_id, read_events

logger = logging.getLogger(__name__)

ADMIN_ROOM = "admins"


def user_room(user_id: int) -> str:
    return f"user:{int(user_id)}"


def reservation_room(reservation_id: int) -> str:
    return f"reservation:{int(reservation_id)}"


class RealtimeGateway:
    """
    Publish events into per-room streams and read them back for delivery.

    Delivery is best-effort: a failed publish is logged and dropped, and
    clients that are not connected when an event is published never see it.
    """

    def emit(
        self,
        room: str,
        event_type: str,
        payload: Dict[str, Any],
        *,
        origin: str | None = None,
    ) -> str | None:
        body = {**payload, "ts": timezone.now().isoformat()}
        entry_id = append_event(room, event_type, body, origin=origin)
        if entry_id is None:
            logger.info("realtime: dropped %s for room %s", event_type, room)
        return entry_id

    def notify_user(self, user_id: int, event_type: str, payload: Dict[str, Any]) -> None:
        self.emit(user_room(user_id), event_type, payload)

    def notify_users(
        self, user_ids: Iterable[int], event_type: str, payload: Dict[str, Any]
    ) -> None:
        """Notify each distinct user once."""
        seen = set()
        for user_id in user_ids:
            if user_id is None or user_id in seen:
                continue
            seen.add(user_id)
            self.notify_user(user_id, event_type, payload)

    def notify_admins(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.emit(ADMIN_ROOM, event_type, payload)

    def emit_to_reservation(
        self,
        reservation_id: int,
        event_type: str,
        payload: Dict[str, Any],
        *,
        origin: str | None = None,
    ) -> None:
        self.emit(reservation_room(reservation_id), event_type, payload, origin=origin)

    def current_cursor(self, room: str) -> str:
        """Cursor positioned after the newest entry Redis holds for ``room``."""
        return last_entry_id(room) or "$"

    def read(
        self,
        cursors: Mapping[str, str],
        *,
        block_ms: int,
        count: int = 100,
    ) -> Tuple[Dict[str, str], List[Dict[str, Any]]]:
        return read_events(cursors, block_ms=block_ms, count=count)


@lru_cache(maxsize=1)
def get_gateway() -> RealtimeGateway:
    """Return the gateway shared by every request handler in this process."""
    return RealtimeGateway()
