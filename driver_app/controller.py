"""
Driver actions, sequenced.

`DriverController` is what a screen calls.  Each action runs the backend call
first and only then touches the ride store and the channel's room
membership, so a rejected call leaves local state exactly as the backend
sees it.  Failures become user-facing alerts.  The ride may vanish (inbound
cancellation) while a call is in flight; responses that arrive for a ride
that is no longer active are dropped.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from .alerts import AlertCenter, AlertType
from .chat import ChatService
from .core.constants import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_OFFER_TIMEOUT_SECONDS,
    DEFAULT_REFRESH_INTERVAL_SECONDS,
    EVENT_NEW_RIDE_REQUEST,
    EVENT_RIDE_CANCELLED,
)
from .core.logger import get_logger
from .driver_api import DriverAPI, DriverAPIError
from .models import (
    ActiveRide,
    RideHistory,
    RideOffer,
    RideStatus,
    active_ride_from_trip,
    history_from_trip,
    is_connection_cancellation,
    next_status,
    offer_from_trip,
    stats_from_earnings,
)
from .offers import OfferCountdown
from .realtime import RealtimeChannel
from .ride_store import RideStateStore
from .session_store import SessionStore
from .timers import Scheduler, TimerHandle

logger = get_logger("controller")


class DriverController:
    def __init__(
        self,
        *,
        store: RideStateStore,
        api: DriverAPI,
        channel: RealtimeChannel,
        session_store: SessionStore,
        alerts: AlertCenter,
        scheduler: Scheduler,
        offer_timeout: float = DEFAULT_OFFER_TIMEOUT_SECONDS,
    ) -> None:
        self.store = store
        self.api = api
        self.channel = channel
        self.session_store = session_store
        self.alerts = alerts
        self.scheduler = scheduler
        self.offer_timeout = offer_timeout
        self.countdown = OfferCountdown(store, scheduler)
        self.chat = ChatService(store, channel, api)
        self._refresh_timer: Optional[TimerHandle] = None
        self._listening = False

    @property
    def driver_id(self) -> Optional[str]:
        return self.session_store.get_driver_id()

    # Lifecycle ------------------------------------------------------------------
    def start(self) -> None:
        if self._listening:
            return
        self.channel.on(EVENT_NEW_RIDE_REQUEST, self._handle_new_ride_request)
        self.channel.on(EVENT_RIDE_CANCELLED, self._handle_ride_cancelled)
        self.chat.start()
        self._listening = True

    def stop(self) -> None:
        self.channel.off(EVENT_NEW_RIDE_REQUEST, self._handle_new_ride_request)
        self.channel.off(EVENT_RIDE_CANCELLED, self._handle_ride_cancelled)
        self.chat.stop()
        self.countdown.cancel()
        self.stop_periodic_refresh()
        self._listening = False

    def logout(self) -> None:
        self.stop()
        self.channel.disconnect()
        self.api.logout()
        self.store.reset()

    # Presence -------------------------------------------------------------------
    def go_online(
        self, *, latitude: Optional[float] = None, longitude: Optional[float] = None
    ) -> bool:
        if latitude is None and longitude is None:
            location = self.store.current_location or {}
            latitude = location.get("latitude")
            longitude = location.get("longitude")
        if not self._call(
            "Could not go online",
            lambda: self.api.go_online(latitude=latitude, longitude=longitude),
        ):
            return False
        self.store.set_online(True)
        driver_id = self.driver_id
        if driver_id:
            self.channel.join_driver_room(driver_id)
        return True

    def go_offline(self) -> bool:
        if not self._call("Could not go offline", self.api.go_offline):
            return False
        self.store.set_online(False)
        self.countdown.cancel()
        self.store.decline_offer()
        return True

    # Offers ---------------------------------------------------------------------
    def accept_offer(self) -> Optional[ActiveRide]:
        offer = self.store.ride_offer
        if offer is None:
            logger.warning("accept_offer: no pending offer")
            return None
        trip = self._call("Could not accept ride", lambda: self.api.accept_ride(offer.id))
        if trip is None:
            return None
        self.countdown.cancel()
        current = self.store.ride_offer
        if current is None or current.id != offer.id:
            logger.warning("Offer %s went away before the accept response", offer.id)
            return None
        ride = self.store.accept_offer()
        if ride is not None:
            self.channel.join_ride_room(ride.id)
        return ride

    def decline_offer(self) -> None:
        self.countdown.cancel()
        self.store.decline_offer()

    # Active ride ----------------------------------------------------------------
    def advance_ride(self) -> bool:
        """Move the active ride to its next lifecycle status."""
        ride = self.store.active_ride
        if ride is None:
            logger.warning("advance_ride: no active ride")
            return False
        target = next_status(ride.status)
        if target is None:
            return False
        trip = self._call(
            "Could not update ride status",
            lambda: self.api.advance_ride_state(ride.id, target),
        )
        if trip is None:
            return False
        if not self._still_active(ride.id):
            return False
        if target is RideStatus.COMPLETED:
            return self._finish(ride.id, RideStatus.COMPLETED, trip) is not None
        return self.store.advance_ride(target)

    def complete_ride(self) -> Optional[RideHistory]:
        ride = self.store.active_ride
        if ride is None or ride.status is not RideStatus.STARTED:
            logger.warning("complete_ride: no started ride")
            return None
        trip = self._call(
            "Could not complete trip",
            lambda: self.api.advance_ride_state(ride.id, RideStatus.COMPLETED),
        )
        if trip is None or not self._still_active(ride.id):
            return None
        return self._finish(ride.id, RideStatus.COMPLETED, trip)

    def cancel_ride(self) -> Optional[RideHistory]:
        ride = self.store.active_ride
        if ride is None:
            logger.warning("cancel_ride: no active ride")
            return None
        trip = self._call(
            "Could not cancel trip",
            lambda: self.api.advance_ride_state(ride.id, RideStatus.CANCELLED),
        )
        if trip is None or not self._still_active(ride.id):
            return None
        return self._finish(ride.id, RideStatus.CANCELLED, trip)

    def _finish(
        self, ride_id: str, outcome: RideStatus, trip: Dict[str, Any]
    ) -> Optional[RideHistory]:
        fare = trip.get("price") if outcome is RideStatus.COMPLETED else None
        record = self.store.finalize_ride(
            outcome, fare=float(fare) if fare is not None else None
        )
        self.channel.leave_ride_room(ride_id)
        self.refresh_history()
        if outcome is RideStatus.COMPLETED:
            self.refresh_stats()
        return record

    def _still_active(self, ride_id: str) -> bool:
        ride = self.store.active_ride
        if ride is None or ride.id != ride_id:
            logger.warning("Ride %s is no longer active; ignoring response", ride_id)
            return False
        return True

    # Chat -----------------------------------------------------------------------
    def open_chat(self) -> bool:
        ride = self.store.active_ride
        if ride is None:
            return False
        return self._call(
            "Could not load messages", lambda: self.chat.open(ride.id)
        ) is not None

    def send_message(self, text: str) -> bool:
        return self.chat.send(text) is not None

    # Account --------------------------------------------------------------------
    def change_password(self, current_password: str, new_password: str) -> bool:
        if not self._call(
            "Could not update password",
            lambda: self.api.change_password(
                current_password=current_password, new_password=new_password
            ),
        ):
            return False
        self.alerts.show_alert(
            "Success", "Your password has been updated.", AlertType.SUCCESS
        )
        return True

    # Refreshes ------------------------------------------------------------------
    def recover(self) -> Optional[ActiveRide]:
        """Restore whatever the backend still has open (app restart)."""
        trip = self._quiet(self.api.fetch_active_ride)
        ride = None
        if trip:
            ride = active_ride_from_trip(trip)
            if self.store.set_active_ride(ride):
                self.channel.join_ride_room(ride.id)
            else:
                ride = None
        self.refresh_history()
        self.refresh_stats()
        return ride

    def refresh_history(self, *, limit: int = DEFAULT_HISTORY_LIMIT) -> bool:
        result = self._quiet(lambda: self.api.fetch_ride_history(limit=limit))
        if result is None:
            return False
        self.store.replace_history(history_from_trip(trip) for trip in result["rides"])
        return True

    def refresh_stats(self) -> bool:
        earnings = self._quiet(self.api.fetch_earnings_summary)
        if earnings is None:
            return False
        self.store.replace_stats(stats_from_earnings(earnings))
        return True

    def refresh_profile(self) -> bool:
        """Re-read the driver record; the session store caches the result."""
        return self._quiet(self.api.fetch_driver_profile) is not None

    def refresh_notifications(self) -> bool:
        notifications = self._quiet(self.api.fetch_notifications)
        if notifications is None:
            return False
        self.store.replace_notifications(notifications)
        return True

    def refresh_all(self) -> None:
        self.refresh_history()
        self.refresh_stats()
        self.refresh_profile()
        self.refresh_notifications()

    def start_periodic_refresh(
        self, interval: float = DEFAULT_REFRESH_INTERVAL_SECONDS
    ) -> None:
        """Low-frequency reconciliation in case realtime events were missed."""
        self.stop_periodic_refresh()
        self._refresh_timer = self.scheduler.call_every(interval, self.refresh_all)

    def stop_periodic_refresh(self) -> None:
        if self._refresh_timer is not None:
            self._refresh_timer.cancel()
            self._refresh_timer = None

    # Realtime -------------------------------------------------------------------
    def _handle_new_ride_request(self, trip: Optional[Dict[str, Any]]) -> None:
        if not isinstance(trip, dict):
            return
        offer = offer_from_trip(trip, default_timeout=self.offer_timeout)
        if not offer.id:
            logger.warning("Dropping ride request without an id")
            return
        if self.store.receive_offer(offer):
            self.countdown.start(offer)

    def _handle_ride_cancelled(self, data: Optional[Dict[str, Any]]) -> None:
        if not isinstance(data, dict):
            return
        ride_id = str(data.get("tripId") or data.get("rideId") or "")
        offer: Optional[RideOffer] = self.store.ride_offer
        if offer is not None and offer.id == ride_id:
            self.countdown.cancel()
            self.store.decline_offer()
            self.alerts.show_alert(
                "Ride Cancelled", "The client has cancelled the ride.", AlertType.WARNING
            )
            return
        ride = self.store.active_ride
        if ride is None or ride.id != ride_id:
            return
        if is_connection_cancellation(data.get("reason")):
            # ConnectionWatchdog owns connection-related cancellations.
            return
        self.store.finalize_ride(RideStatus.CANCELLED)
        self.channel.leave_ride_room(ride_id)
        self.alerts.show_alert(
            "Ride Cancelled", "The client has cancelled this ride.", AlertType.WARNING
        )

    # Helpers --------------------------------------------------------------------
    def _call(self, failure_title: str, action: Callable[[], Any]) -> Any:
        """Run a backend call; on failure show an alert and return None."""
        try:
            result = action()
        except DriverAPIError as exc:
            logger.error("%s: %s (%s)", failure_title, exc, exc.kind.value)
            self.alerts.show_alert("Error", str(exc) or failure_title, AlertType.ERROR)
            return None
        return True if result is None else result

    def _quiet(self, action: Callable[[], Any]) -> Any:
        """Background refreshes fail silently; the next refresh catches up."""
        try:
            return action()
        except DriverAPIError as exc:
            logger.warning("Background refresh failed: %s (%s)", exc, exc.kind.value)
            return None
