from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Tuple

import redis
from django.conf import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_redis_client() -> "redis.Redis":
    """
    Return a Redis client configured from settings.REDIS_URL.
    Safe to call from views, Celery tasks and the websocket loops.
    """
    url = getattr(settings, "REDIS_URL", None)
    if not url:
        raise RuntimeError("REDIS_URL is not configured")
    return redis.Redis.from_url(url)


def stream_key(room: str) -> str:
    return f"events:{room}"


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def append_event(
    room: str,
    event_type: str,
    payload: Dict[str, Any],
    *,
    origin: str | None = None,
) -> str | None:
    """
    Append an event to the room's Redis Stream.

    - room: e.g. "user:12", "admins", "reservation:7"
    - event_type: e.g. "chat:message:new", "reservation.expired"
    - payload: JSON-serializable dict; stored as a single 'payload' field.
    - origin: id of the connection that produced the event, if any.

    Returns the stream entry ID on success, or None on error.
    """
    key = stream_key(room)
    try:
        data = {
            "type": event_type,
            "payload": json.dumps(payload or {}, separators=(",", ":"), default=str),
            "origin": origin or "",
        }
        client = get_redis_client()
        entry_id = client.xadd(
            key,
            data,
            maxlen=getattr(settings, "REALTIME_STREAM_MAXLEN", 1000),
            approximate=True,
        )
        return _decode(entry_id)
    except Exception:
        logger.warning(
            "events: failed to append event to %s type=%s",
            key,
            event_type,
            exc_info=True,
        )
        return None


def last_entry_id(room: str) -> str | None:
    """
    Return the id of the newest entry in the room's stream, as assigned by Redis.

    "0-0" when the stream is empty or does not exist yet; None when Redis
    could not be reached.
    """
    key = stream_key(room)
    try:
        entries = get_redis_client().xrevrange(key, "+", "-", count=1)
    except Exception:
        logger.warning("events: XREVRANGE failed for %s", key, exc_info=True)
        return None
    if not entries:
        return "0-0"
    return _decode(entries[0][0])


def read_events(
    cursors: Mapping[str, str],
    *,
    block_ms: int,
    count: int = 100,
) -> Tuple[Dict[str, str], List[Dict[str, Any]]]:
    """
    Blocking read across several room streams using XREAD.

    - cursors: room -> last seen ID. "0-0" for from-start, "$" for only new events.
    - block_ms: how long to block in milliseconds.
    - count: max events per stream.

    Returns (next_cursors, events), where events are:
    { "id": str, "room": str, "type": str, "payload": dict, "origin": str }
    """
    next_cursors = dict(cursors)
    if not cursors:
        return next_cursors, []

    keys = {stream_key(room): room for room in cursors}
    client = get_redis_client()
    try:
        records = client.xread(
            {key: cursors[room] for key, room in keys.items()},
            count=count,
            block=block_ms if block_ms > 0 else None,
        )
    except Exception:
        logger.warning(
            "events: XREAD failed for rooms %s",
            sorted(cursors),
            exc_info=True,
        )
        return next_cursors, []

    events: List[Dict[str, Any]] = []
    for raw_key, entries in records or []:
        room = keys.get(_decode(raw_key))
        if room is None:
            continue
        for raw_id, fields in entries:
            entry_id = _decode(raw_id)
            next_cursors[room] = entry_id
            field_dict = {_decode(k): _decode(v) for k, v in fields.items()}

            payload_raw = field_dict.get("payload") or "{}"
            try:
                payload = json.loads(payload_raw)
            except ValueError:
                payload = {"raw": payload_raw}

            events.append(
                {
                    "id": entry_id,
                    "room": room,
                    "type": field_dict.get("type") or "",
                    "payload": payload,
                    "origin": field_dict.get("origin") or "",
                }
            )

    return next_cursors, events
