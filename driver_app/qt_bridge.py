"""
Qt glue for the driver client.

The Socket.IO client delivers events on its own threads, while every store
mutation must run on the Qt event loop.  `QtEventBridge` hops callbacks onto
the loop with a queued signal; `QtScheduler` implements the `Scheduler`
interface on top of `QTimer`.
"""

from __future__ import annotations

import time
from typing import Callable, Set

from PyQt6.QtCore import QObject, Qt, QTimer, pyqtSignal

from .core.logger import get_logger

logger = get_logger("qt")


class QtEventBridge(QObject):
    posted = pyqtSignal(object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self.posted.connect(self._run, Qt.ConnectionType.QueuedConnection)

    def post(self, callback: Callable[[], None]) -> None:
        """Schedule `callback` on the thread that owns the bridge."""
        self.posted.emit(callback)

    def _run(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:  # noqa: BLE001
            logger.exception("Posted callback failed")


class QtTimerHandle:
    def __init__(
        self,
        scheduler: "QtScheduler",
        interval: float,
        callback: Callable[[], None],
        *,
        single_shot: bool,
    ) -> None:
        self._scheduler = scheduler
        self._callback = callback
        self._timer = QTimer()
        self._timer.setSingleShot(single_shot)
        self._timer.setInterval(max(0, int(interval * 1000)))
        self._timer.timeout.connect(self._fire)
        self._timer.start()

    @property
    def active(self) -> bool:
        return self._timer.isActive()

    def cancel(self) -> None:
        self._timer.stop()
        self._scheduler._forget(self)

    def _fire(self) -> None:
        if self._timer.isSingleShot():
            self._scheduler._forget(self)
        try:
            self._callback()
        except Exception:  # noqa: BLE001
            logger.exception("Timer callback failed")


class QtScheduler:
    """Scheduler backed by `QTimer`; must be used from the Qt thread."""

    def __init__(self) -> None:
        # Keep handles referenced until they fire or are cancelled.
        self._handles: Set[QtTimerHandle] = set()

    def call_later(self, delay: float, callback: Callable[[], None]) -> QtTimerHandle:
        handle = QtTimerHandle(self, delay, callback, single_shot=True)
        self._handles.add(handle)
        return handle

    def call_every(self, interval: float, callback: Callable[[], None]) -> QtTimerHandle:
        handle = QtTimerHandle(self, interval, callback, single_shot=False)
        self._handles.add(handle)
        return handle

    def now(self) -> float:
        return time.monotonic()

    def _forget(self, handle: QtTimerHandle) -> None:
        self._handles.discard(handle)
