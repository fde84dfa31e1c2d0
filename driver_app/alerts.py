from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .events import EventBus


class AlertType(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class AlertButton:
    text: str
    on_press: Optional[Callable[[], None]] = None
    style: str = "default"


@dataclass
class Alert:
    title: str
    message: str
    type: AlertType = AlertType.INFO
    buttons: List[AlertButton] = field(default_factory=list)


class AlertCenter:
    """Holds the one user-facing alert currently shown, and who is watching."""

    def __init__(self) -> None:
        self._events = EventBus()
        self.current: Optional[Alert] = None

    @property
    def is_visible(self) -> bool:
        return self.current is not None

    def subscribe(self, listener: Callable[[Optional[Alert]], None]) -> None:
        self._events.subscribe("alert", listener)

    def unsubscribe(self, listener: Callable[[Optional[Alert]], None]) -> None:
        self._events.unsubscribe("alert", listener)

    def show_alert(
        self,
        title: str,
        message: str,
        type: AlertType = AlertType.INFO,
        buttons: Optional[List[AlertButton]] = None,
    ) -> Alert:
        alert = Alert(title=title, message=message, type=type, buttons=list(buttons or []))
        self.current = alert
        self._events.publish("alert", alert)
        return alert

    def hide_alert(self) -> None:
        self.current = None
        self._events.publish("alert", None)

    def press(self, index: int = 0) -> None:
        """Dismiss the current alert through one of its buttons."""
        alert = self.current
        if alert is None:
            return
        self.hide_alert()
        if 0 <= index < len(alert.buttons):
            callback = alert.buttons[index].on_press
            if callback is not None:
                callback()
