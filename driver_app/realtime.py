"""
Realtime channel between the driver client and the backend.

`RealtimeChannel` owns a single Socket.IO connection authenticated with the
stored bearer token.  It remembers which rooms the client asked for (the
driver-wide room and the current ride room) and re-joins them every time the
transport (re)connects, so callers never have to care about reconnects.
Inbound events are fanned out to listeners registered with `on()`; emits while
disconnected are dropped.

The first connection attempt runs on a Socket.IO background task with the
library's retry loop enabled, so a backend that is down at start-up is picked
up once it comes back without blocking the Qt thread.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Set

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError
from socketio.exceptions import SocketIOError

from .core.constants import (
    EMIT_JOIN_DRIVER,
    EMIT_JOIN_RIDE_ROOM,
    EMIT_LEAVE_RIDE_ROOM,
    EMIT_SEND_MESSAGE,
    EMIT_UPDATE_LOCATION,
    EVENT_CONNECT,
    EVENT_CONNECT_ERROR,
    EVENT_DISCONNECT,
    INBOUND_EVENTS,
)
from .core.logger import get_logger
from .events import EventBus, Handler
from .session_store import SessionStore

logger = get_logger("realtime")

Dispatch = Callable[[Callable[[], None]], None]


def _call_now(callback: Callable[[], None]) -> None:
    callback()


class RealtimeChannel:
    def __init__(
        self,
        url: str,
        session_store: SessionStore,
        *,
        client: Optional[Any] = None,
        dispatch: Optional[Dispatch] = None,
        reconnection_attempts: int = 5,
        reconnection_delay: float = 1.0,
        reconnection_delay_max: float = 5.0,
    ) -> None:
        self.url = url
        self._session_store = session_store
        self._dispatch: Dispatch = dispatch or _call_now
        self._client = client or socketio.Client(
            reconnection=True,
            reconnection_attempts=reconnection_attempts,
            reconnection_delay=reconnection_delay,
            reconnection_delay_max=reconnection_delay_max,
            logger=False,
        )
        self._listeners = EventBus()
        self._bound_events: Set[str] = set()
        self._driver_id: Optional[str] = None
        self._ride_id: Optional[str] = None
        self._token: Optional[str] = None
        self._connecting = False

        self._client.on(EVENT_CONNECT, self._on_transport_connect)
        self._client.on(EVENT_DISCONNECT, self._on_transport_disconnect)
        self._client.on(EVENT_CONNECT_ERROR, self._on_transport_error)
        for event in INBOUND_EVENTS:
            self._bind(event)

    # Connection -----------------------------------------------------------------
    @property
    def is_connected(self) -> bool:
        return bool(getattr(self._client, "connected", False))

    @property
    def rooms(self) -> Dict[str, Optional[str]]:
        """Rooms that are replayed after every reconnect."""
        return {"driver": self._driver_id, "ride": self._ride_id}

    @property
    def is_connecting(self) -> bool:
        return self._connecting

    def connect(self) -> bool:
        """Start connecting; returns False only when there is no token to send.

        Failures are retried by the Socket.IO client with its own backoff and
        reported through the log.
        """
        token = self._session_store.get_token()
        if not token:
            logger.info("No auth token stored; realtime channel not started")
            return False
        self._token = token
        if self.is_connected or self._connecting:
            return True
        self._connecting = True
        self._client.start_background_task(self._open)
        return True

    def _open(self) -> None:
        try:
            self._client.connect(
                self.url,
                auth=self._auth,
                transports=["websocket"],
                retry=True,
            )
        except SocketConnectionError as exc:
            logger.error("Realtime connection to %s failed: %s", self.url, exc)
        finally:
            self._connecting = False

    def _auth(self) -> Optional[Dict[str, str]]:
        # Read on every (re)connect so a cleared session never reuses a token.
        return {"token": self._token} if self._token else None

    def disconnect(self) -> None:
        self._token = None
        try:
            # Unlike disconnect(), shutdown() also stops a pending reconnect loop.
            self._client.shutdown()
        except SocketIOError as exc:
            logger.warning("Error while closing realtime channel: %s", exc)
        self._listeners.clear()
        self._driver_id = None
        self._ride_id = None
        logger.info("Realtime channel disconnected and cleared")

    # Rooms ----------------------------------------------------------------------
    def join_driver_room(self, driver_id: str) -> None:
        self._driver_id = str(driver_id)
        if self.emit(EMIT_JOIN_DRIVER, self._driver_id):
            logger.info("Joined driver room %s", self._driver_id)

    def join_ride_room(self, ride_id: str) -> None:
        self._ride_id = str(ride_id)
        if self.emit(EMIT_JOIN_RIDE_ROOM, {"tripId": self._ride_id}):
            logger.info("Joined ride room %s", self._ride_id)

    def leave_ride_room(self, ride_id: str) -> None:
        ride_id = str(ride_id)
        if self._ride_id == ride_id:
            self._ride_id = None
        if self.emit(EMIT_LEAVE_RIDE_ROOM, {"tripId": ride_id}):
            logger.info("Left ride room %s", ride_id)

    # Outbound -------------------------------------------------------------------
    def emit(self, event: str, payload: Any = None) -> bool:
        if not self.is_connected:
            logger.debug("Dropping %s: realtime channel not connected", event)
            return False
        try:
            self._client.emit(event, payload)
        except SocketIOError as exc:
            logger.warning("Failed to emit %s: %s", event, exc)
            return False
        return True

    def update_location(self, driver_id: str, latitude: float, longitude: float) -> bool:
        return self.emit(
            EMIT_UPDATE_LOCATION,
            {"driverId": str(driver_id), "lat": latitude, "lng": longitude},
        )

    def send_chat_message(
        self,
        ride_id: str,
        sender: str,
        text: str,
        *,
        client_id: Optional[str] = None,
    ) -> bool:
        payload: Dict[str, Any] = {"tripId": str(ride_id), "sender": sender, "text": text}
        if client_id:
            payload["clientId"] = client_id
        return self.emit(EMIT_SEND_MESSAGE, payload)

    # Listeners ------------------------------------------------------------------
    def on(self, event: str, handler: Handler) -> None:
        if event not in (EVENT_CONNECT, EVENT_DISCONNECT):
            self._bind(event)
        self._listeners.subscribe(event, handler)

    def off(self, event: str, handler: Handler) -> None:
        self._listeners.unsubscribe(event, handler)

    def _bind(self, event: str) -> None:
        if event in self._bound_events:
            return

        def forward(*args: Any) -> None:
            data = args[0] if args else None
            # Payloads carry rider phone numbers and chat text.
            logger.info("Received %s", event)
            logger.debug("%s payload: %s", event, data)
            self._dispatch(lambda: self._listeners.publish(event, data))

        self._client.on(event, forward)
        self._bound_events.add(event)

    # Transport callbacks (run on the Socket.IO thread) ----------------------------
    def _on_transport_connect(self) -> None:
        logger.info("Realtime channel connected to %s", self.url)
        self._dispatch(self._handle_connect)

    def _on_transport_disconnect(self, *args: Any) -> None:
        reason = args[0] if args else None
        logger.info("Realtime channel disconnected (%s)", reason or "no reason")
        self._dispatch(lambda: self._listeners.publish(EVENT_DISCONNECT, reason))

    def _on_transport_error(self, *args: Any) -> None:
        logger.error("Realtime connection error: %s", args[0] if args else "unknown")

    def _handle_connect(self) -> None:
        if self._driver_id and self._rejoin(EMIT_JOIN_DRIVER, self._driver_id):
            logger.info("Re-joined driver room %s", self._driver_id)
        if self._ride_id and self._rejoin(EMIT_JOIN_RIDE_ROOM, {"tripId": self._ride_id}):
            logger.info("Re-joined ride room %s", self._ride_id)
        self._listeners.publish(EVENT_CONNECT)

    def _rejoin(self, event: str, payload: Any) -> bool:
        # The connect handler runs before the client flips `connected`, so
        # this goes straight to the client; it raises if the namespace is
        # already gone again.
        try:
            self._client.emit(event, payload)
        except SocketIOError as exc:
            logger.warning("Could not replay %s after reconnect: %s", event, exc)
            return False
        return True
