"""
Watches the realtime channel while a ride is in progress.

The backend cancels a ride on its own if the driver stays unreachable for too
long.  When the channel drops during an active ride the watchdog starts one
timer; if the channel is still down when it fires, the driver gets a single
warning for that outage.  A backend cancellation blamed on the connection
ends the local ride and puts the driver back online.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .alerts import AlertCenter, AlertType
from .core.constants import (
    DEFAULT_WATCHDOG_DELAY_SECONDS,
    EVENT_CONNECT,
    EVENT_DISCONNECT,
    EVENT_RIDE_CANCELLED,
)
from .core.logger import get_logger
from .models import RideStatus, is_connection_cancellation
from .realtime import RealtimeChannel
from .ride_store import RideStateStore
from .timers import Scheduler, TimerHandle

logger = get_logger("watchdog")


class ConnectionWatchdog:
    def __init__(
        self,
        store: RideStateStore,
        channel: RealtimeChannel,
        alerts: AlertCenter,
        scheduler: Scheduler,
        *,
        delay: float = DEFAULT_WATCHDOG_DELAY_SECONDS,
    ) -> None:
        self.store = store
        self.channel = channel
        self.alerts = alerts
        self.scheduler = scheduler
        self.delay = delay
        self._timer: Optional[TimerHandle] = None
        self._warned = False

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def start(self) -> None:
        self.channel.on(EVENT_DISCONNECT, self._handle_disconnect)
        self.channel.on(EVENT_CONNECT, self._handle_connect)
        self.channel.on(EVENT_RIDE_CANCELLED, self._handle_ride_cancelled)

    def stop(self) -> None:
        self.channel.off(EVENT_DISCONNECT, self._handle_disconnect)
        self.channel.off(EVENT_CONNECT, self._handle_connect)
        self.channel.off(EVENT_RIDE_CANCELLED, self._handle_ride_cancelled)
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _handle_disconnect(self, reason: Any = None) -> None:
        ride = self.store.active_ride
        if ride is None or self._timer is not None:
            return
        logger.warning(
            "Channel lost during ride %s (%s); warning in %ss",
            ride.id,
            reason or "no reason",
            self.delay,
        )
        self._timer = self.scheduler.call_later(self.delay, self._fire)

    def _handle_connect(self) -> None:
        if self._timer is not None:
            logger.info("Channel restored before the connection warning")
        self._cancel_timer()
        self._warned = False

    def _fire(self) -> None:
        self._timer = None
        if self.channel.is_connected or self._warned:
            return
        if self.store.active_ride is None:
            return
        self._warned = True
        self.alerts.show_alert(
            "Connection Lost",
            "Connection lost. If not restored soon, your ride may be cancelled.",
            AlertType.WARNING,
        )

    def _handle_ride_cancelled(self, data: Optional[Dict[str, Any]]) -> None:
        if not isinstance(data, dict):
            return
        ride = self.store.active_ride
        ride_id = str(data.get("tripId") or data.get("rideId") or "")
        if ride is None or ride.id != ride_id:
            return
        if not is_connection_cancellation(data.get("reason")):
            return
        logger.warning("Ride %s cancelled by backend: %s", ride_id, data.get("reason"))
        self.store.finalize_ride(RideStatus.CANCELLED)
        self.store.set_online(True)
        self.channel.leave_ride_room(ride_id)
        self._cancel_timer()
        self.alerts.show_alert(
            "Ride Cancelled",
            "Your ride was cancelled due to a prolonged connection loss.",
            AlertType.ERROR,
        )
