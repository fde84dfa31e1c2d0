"""
Driver <-> rider chat for the active ride.

Outgoing messages are shown immediately with a temporary `temp-...` id and
then sent over the realtime channel.  When the backend echoes the message
back (live or through a history fetch) the temporary entry is swapped for the
authoritative one instead of being duplicated.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from .core.constants import (
    DEFAULT_CHAT_TOLERANCE_SECONDS,
    EVENT_NEW_MESSAGE,
    TEMP_MESSAGE_PREFIX,
)
from .core.logger import get_logger
from .models import ChatMessage, MessageSender, chat_message_from_payload, utcnow

if TYPE_CHECKING:
    from .driver_api import DriverAPI
    from .realtime import RealtimeChannel
    from .ride_store import RideStateStore

logger = get_logger("chat")


def new_temporary_id() -> str:
    return f"{TEMP_MESSAGE_PREFIX}{uuid.uuid4().hex}"


def _find_match(
    messages: List[ChatMessage], incoming: ChatMessage, tolerance: float
) -> Optional[int]:
    for index, existing in enumerate(messages):
        if incoming.id and existing.id == incoming.id:
            return index
    if incoming.client_id:
        for index, existing in enumerate(messages):
            if existing.is_temporary and existing.client_id == incoming.client_id:
                return index
    for index, existing in enumerate(messages):
        if not existing.is_temporary:
            continue
        if existing.sender != incoming.sender or existing.text != incoming.text:
            continue
        delta = abs((existing.timestamp - incoming.timestamp).total_seconds())
        if delta <= tolerance:
            return index
    return None


def reconcile(
    messages: Iterable[ChatMessage],
    incoming: ChatMessage,
    *,
    tolerance: float = DEFAULT_CHAT_TOLERANCE_SECONDS,
) -> List[ChatMessage]:
    """
    Return a new message list with `incoming` merged in.

    Match order: same authoritative id, then the temporary entry carrying the
    same client id, then the first temporary entry with the same sender and
    text inside the tolerance window.  A match is replaced in place; anything
    else is appended.  Two distinct identical messages sent inside the window
    will be merged into one.
    """
    result = list(messages)
    if incoming.is_temporary:
        result.append(incoming)
        return result
    index = _find_match(result, incoming, tolerance)
    if index is None:
        result.append(incoming)
    else:
        result[index] = incoming
    return result


class ChatService:
    """Sends, receives and loads chat messages for the store's active ride."""

    def __init__(
        self,
        store: "RideStateStore",
        channel: "RealtimeChannel",
        api: "DriverAPI",
    ) -> None:
        self.store = store
        self.channel = channel
        self.api = api
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self.channel.on(EVENT_NEW_MESSAGE, self._handle_new_message)
        self._started = True

    def stop(self) -> None:
        self.channel.off(EVENT_NEW_MESSAGE, self._handle_new_message)
        self._started = False

    def send(self, text: str) -> Optional[ChatMessage]:
        body = (text or "").strip()
        ride = self.store.active_ride
        if not body or ride is None:
            return None
        temp_id = new_temporary_id()
        message = ChatMessage(
            id=temp_id,
            text=body,
            sender=MessageSender.DRIVER,
            timestamp=utcnow(),
            client_id=temp_id,
            ride_id=ride.id,
        )
        self.store.append_chat_message(message)
        self.channel.send_chat_message(
            ride.id, MessageSender.DRIVER.value, body, client_id=temp_id
        )
        return message

    def open(self, ride_id: str) -> List[ChatMessage]:
        """Join the ride room and merge the stored conversation."""
        self.channel.join_ride_room(ride_id)
        history = self.api.fetch_chat_history(ride_id)
        messages = [chat_message_from_payload(item) for item in history]
        ride = self.store.active_ride
        if ride is None or ride.id != ride_id:
            logger.warning("Chat history for ride %s arrived after it ended", ride_id)
            return []
        self.store.merge_chat_history(messages)
        return self.store.chat_messages

    def _handle_new_message(self, payload: Dict[str, Any]) -> None:
        if not isinstance(payload, dict):
            return
        message = chat_message_from_payload(payload)
        ride = self.store.active_ride
        if ride is None:
            return
        if message.ride_id and message.ride_id != ride.id:
            return
        self.store.append_chat_message(message)
