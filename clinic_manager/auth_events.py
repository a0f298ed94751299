"""Per-user auth-state event stream, with a websocket bridge for navigation."""
from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from .auth import SESSION_COOKIE, session_from_token
from .models import AuthEvent

logger = logging.getLogger(__name__)

auth_events_router = APIRouter()

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
USER_UPDATED = "USER_UPDATED"

Listener = Callable[[Dict[str, Any]], None]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class AuthEventStream:
    """Tracks listeners per user and fans auth events out to them."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id: str, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ``user_id``; returns an idempotent unsubscribe."""
        with self._lock:
            self._listeners.setdefault(user_id, []).append(listener)

        def unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(user_id)
                if not listeners or listener not in listeners:
                    return
                listeners.remove(listener)
                if not listeners:
                    del self._listeners[user_id]

        return unsubscribe

    def listener_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._listeners.get(user_id, ()))

    def publish(self, user_id: str, event_type: str) -> Dict[str, Any]:
        """Send an event to the user's current listeners and return it."""
        event = AuthEvent(type=event_type, user_id=user_id, timestamp=_utc_now_iso()).model_dump()
        with self._lock:
            listeners = list(self._listeners.get(user_id, ()))
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Auth event listener failed for user %s", user_id)
        return event


stream = AuthEventStream()


@auth_events_router.websocket("/ws/auth")
async def websocket_auth_events(websocket: WebSocket) -> None:
    session = session_from_token(websocket.cookies.get(SESSION_COOKIE))
    if not session:
        await websocket.close(code=4401)
        return
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
    # Subscribed before the handshake completes so no event after accept is lost.
    unsubscribe = stream.subscribe(
        session.user_id,
        lambda event: loop.call_soon_threadsafe(queue.put_nowait, event),
    )
    try:
        await websocket.accept()
        while True:
            event = await queue.get()
            await websocket.send_json(event)
            if event["type"] == SIGNED_OUT:
                await websocket.close()
                break
    except WebSocketDisconnect:
        logger.debug("Auth event socket closed for user %s", session.user_id)
    finally:
        unsubscribe()
