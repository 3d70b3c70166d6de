"""ASGI WebSocket app carrying realtime events and chat commands."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict
from urllib.parse import parse_qs

from asgiref.sync import sync_to_async
from django.contrib.auth import get_user_model
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

from core import realtime

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_MS = 1_000
DEFAULT_COUNT = 100
AUTH_CLOSE_CODE = 4401

Handler = Callable[["Connection", Dict[str, Any], realtime.RealtimeGateway], Awaitable[Dict[str, Any]]]

HANDLERS: Dict[str, Handler] = {}


def on(event: str) -> Callable[[Handler], Handler]:
    """Register a coroutine as the handler for a client event."""

    def decorator(func: Handler) -> Handler:
        HANDLERS[event] = func
        return func

    return decorator


class AuthenticationError(Exception):
    """Raised when the access token is missing or invalid."""

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


class Connection:
    """State for one authenticated socket: identity, joined rooms and cursors."""

    def __init__(self, user: Any, send, gateway: realtime.RealtimeGateway) -> None:
        self.id = uuid.uuid4().hex
        self.user_id: int = user.id
        self.is_admin = bool(user.is_staff)
        self.cursors: Dict[str, str] = {}
        self._gateway = gateway
        self._send = send
        self._lock = asyncio.Lock()

    async def join(self, room: str) -> None:
        if room not in self.cursors:
            self.cursors[room] = await sync_to_async(
                self._gateway.current_cursor, thread_sensitive=False
            )(room)

    def in_room(self, room: str) -> bool:
        return room in self.cursors

    async def send_json(self, data: Dict[str, Any]) -> None:
        text = json.dumps(data, separators=(",", ":"), default=str)
        async with self._lock:
            await self._send({"type": "websocket.send", "text": text})


def _extract_token(scope: Dict[str, Any]) -> str:
    """Return the ?token=... query parameter from the ASGI scope."""
    query_string = scope.get("query_string", b"")
    if isinstance(query_string, bytes):
        raw_query = query_string.decode("utf-8", errors="ignore")
    else:
        raw_query = str(query_string)
    params = parse_qs(raw_query, keep_blank_values=True)
    values = params.get("token")
    return values[0] if values else ""


async def _authenticate_user(scope: Dict[str, Any]) -> Any:
    """Validate the JWT access token and return the associated user."""
    token = _extract_token(scope).strip()
    if not token:
        raise AuthenticationError("NO_TOKEN")

    try:
        access = AccessToken(token)
    except TokenError as exc:
        raise AuthenticationError("INVALID_TOKEN") from exc

    try:
        user_id = int(access.get("user_id"))
    except (TypeError, ValueError):
        raise AuthenticationError("BAD_TOKEN")

    user_model = get_user_model()
    try:
        user = await sync_to_async(user_model.objects.get, thread_sensitive=True)(pk=user_id)
    except user_model.DoesNotExist as exc:
        raise AuthenticationError("BAD_TOKEN") from exc
    if not user.is_active:
        raise AuthenticationError("BAD_TOKEN")
    return user


async def _send_close(send, code: int, reason: str = "") -> None:
    """Best-effort close helper that tolerates already closed sockets."""
    message: Dict[str, Any] = {"type": "websocket.close", "code": code}
    if reason:
        message["reason"] = reason
    try:
        await send(message)
    except Exception:  # pragma: no cover - depends on server implementation
        logger.debug("events_ws: failed to send close frame code=%s", code, exc_info=True)


async def _stream_events(
    conn: Connection,
    gateway: realtime.RealtimeGateway,
    stop_event: asyncio.Event,
) -> None:
    """Pull events for every joined room and push them as WebSocket frames."""
    read_async = sync_to_async(gateway.read, thread_sensitive=False)
    while not stop_event.is_set():
        snapshot = dict(conn.cursors)
        next_cursors, events = await read_async(
            snapshot,
            block_ms=DEFAULT_BLOCK_MS,
            count=DEFAULT_COUNT,
        )
        for room, cursor in next_cursors.items():
            # Rooms joined while the read was blocking keep their own cursor.
            if snapshot.get(room) != cursor:
                conn.cursors[room] = cursor
        for event in events:
            if event.get("origin") and event["origin"] == conn.id:
                continue
            await conn.send_json(
                {
                    "event": event["type"],
                    "room": event["room"],
                    "id": event["id"],
                    "data": event["payload"],
                }
            )


async def dispatch(
    conn: Connection,
    event: str,
    data: Dict[str, Any],
    gateway: realtime.RealtimeGateway,
) -> Dict[str, Any]:
    """Run the handler registered for ``event`` and return its acknowledgment."""
    handler = HANDLERS.get(event)
    if handler is None:
        return {"ok": False, "error": "UNKNOWN_EVENT", "code": 400}
    try:
        return await handler(conn, data, gateway)
    except Exception:
        logger.exception("events_ws: handler %s failed for user=%s", event, conn.user_id)
        return {"ok": False, "error": "SERVER_ERROR", "code": 500}


async def _receive_loop(
    conn: Connection,
    receive,
    gateway: realtime.RealtimeGateway,
    stop_event: asyncio.Event,
) -> None:
    """Consume client frames until disconnect, answering acknowledgments."""
    while not stop_event.is_set():
        message = await receive()
        msg_type = message.get("type")
        if msg_type == "websocket.disconnect":
            stop_event.set()
            break
        if msg_type != "websocket.receive":
            continue

        try:
            frame = json.loads(message.get("text") or message.get("bytes") or "")
        except ValueError:
            logger.debug("events_ws: ignoring malformed frame from user=%s", conn.user_id)
            continue
        if not isinstance(frame, dict):
            continue

        data = frame.get("data")
        ack = await dispatch(
            conn,
            str(frame.get("event") or ""),
            data if isinstance(data, dict) else {},
            gateway,
        )
        if frame.get("ack") is not None:
            await conn.send_json({"ack": frame["ack"], "data": ack})


async def events_ws_app(scope: Dict[str, Any], receive, send) -> None:
    """
    WebSocket ASGI app that authenticates via JWT, streams room events and
    handles chat commands sent by the client.
    """
    if scope.get("type") != "websocket":
        await _send_close(send, 1002)
        return

    message = await receive()
    if message.get("type") != "websocket.connect":
        return

    try:
        user = await _authenticate_user(scope)
    except AuthenticationError as exc:
        await _send_close(send, AUTH_CLOSE_CODE, exc.code)
        return
    except Exception:
        logger.exception("events_ws: unexpected error during authentication")
        await _send_close(send, 1011)
        return

    gateway = realtime.get_gateway()
    conn = Connection(user, send, gateway)
    await conn.join(realtime.user_room(user.id))
    if conn.is_admin:
        await conn.join(realtime.ADMIN_ROOM)

    await send({"type": "websocket.accept"})
    logger.info("events_ws: connected user=%s conn=%s", user.id, conn.id)

    stop_event = asyncio.Event()
    sender_task = asyncio.create_task(_stream_events(conn, gateway, stop_event))
    receiver_task = asyncio.create_task(_receive_loop(conn, receive, gateway, stop_event))

    try:
        done, pending = await asyncio.wait(
            [sender_task, receiver_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for task in done:
            exc = task.exception()
            if exc:
                raise exc
    except Exception:
        logger.exception("events_ws: application error for user=%s", user.id)
        await _send_close(send, 1011)
    finally:
        for task in (sender_task, receiver_task):
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        logger.info("events_ws: disconnected user=%s conn=%s", user.id, conn.id)
