from __future__ import annotations

from typing import Any, Callable, Dict, List

from .core.logger import get_logger

Handler = Callable[..., None]

logger = get_logger("events")


class EventBus:
    """
    Named publish/subscribe registry.

    Several handlers may listen to the same event; each is called once per
    publish while registered.  Unsubscribing a handler that was never
    registered is a no-op.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.setdefault(event, [])
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[event]

    def publish(self, event: str, *args: Any) -> int:
        """Call every handler for `event`; returns how many were invoked."""
        # Copy so handlers may (un)subscribe while being notified.
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                handler(*args)
            except Exception:  # noqa: BLE001
                logger.exception("Handler %r failed for event %s", handler, event)
        return len(handlers)

    def has_handlers(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    def clear(self, event: str | None = None) -> None:
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event, None)
