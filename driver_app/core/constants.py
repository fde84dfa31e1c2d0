from __future__ import annotations

from typing import Dict, Tuple

# Realtime events pushed by the backend.
EVENT_NEW_RIDE_REQUEST = "new_ride_request"
EVENT_RIDE_CANCELLED = "ride_cancelled"
EVENT_RIDE_STATUS_UPDATE = "ride_status_update"
EVENT_DRIVER_LOCATION = "driver_location"
EVENT_NEW_MESSAGE = "new_message"

# Transport lifecycle events.
EVENT_CONNECT = "connect"
EVENT_DISCONNECT = "disconnect"
EVENT_CONNECT_ERROR = "connect_error"

INBOUND_EVENTS: Tuple[str, ...] = (
    EVENT_NEW_RIDE_REQUEST,
    EVENT_RIDE_CANCELLED,
    EVENT_RIDE_STATUS_UPDATE,
    EVENT_DRIVER_LOCATION,
    EVENT_NEW_MESSAGE,
)

# Events emitted by the client.
EMIT_JOIN_DRIVER = "join_driver"
EMIT_JOIN_RIDE_ROOM = "join_ride_room"
EMIT_LEAVE_RIDE_ROOM = "leave_ride_room"
EMIT_UPDATE_LOCATION = "update_location"
EMIT_SEND_MESSAGE = "send_message"

# Platform commission applied to optimistic earnings estimates.
COMMISSION_RATE = 0.10

DEFAULT_OFFER_TIMEOUT_SECONDS = 30
DEFAULT_WATCHDOG_DELAY_SECONDS = 30
DEFAULT_CHAT_TOLERANCE_SECONDS = 10
DEFAULT_LOCATION_INTERVAL_SECONDS = 5
DEFAULT_REFRESH_INTERVAL_SECONDS = 300
DEFAULT_HISTORY_LIMIT = 50

TEMP_MESSAGE_PREFIX = "temp-"

# Backend trip status -> local ride status.
BACKEND_TO_LOCAL_STATUS: Dict[str, str] = {
    "request": "accepted",
    "driver_assigned": "accepted",
    "driver_arrived": "arrived",
    "ongoing": "started",
    "completed": "completed",
    "cancelled": "cancelled",
}

LOCAL_TO_BACKEND_STATUS: Dict[str, str] = {
    "accepted": "driver_assigned",
    "arrived": "driver_arrived",
    "started": "ongoing",
    "completed": "completed",
    "cancelled": "cancelled",
}
