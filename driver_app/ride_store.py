"""
Process-wide ride state for the driver client.

`RideStateStore` is the single owner of the online flag, the pending ride
offer, the active ride, ride history, earnings stats and the chat log of the
active ride.  It is created once at start-up, passed to whoever needs it and
reset on logout.  Mutators never raise: a call whose precondition does not
hold is logged and ignored, which is what happens when a backend
cancellation races a driver action.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .chat import reconcile
from .core.constants import COMMISSION_RATE, DEFAULT_CHAT_TOLERANCE_SECONDS
from .core.logger import get_logger
from .events import EventBus
from .models import (
    ActiveRide,
    ChatMessage,
    DriverStats,
    RideHistory,
    RideOffer,
    RideStatus,
    next_status,
    utcnow,
)

logger = get_logger("store")

_CHANGED = "changed"


class RideStateStore:
    def __init__(
        self, *, chat_tolerance: float = DEFAULT_CHAT_TOLERANCE_SECONDS
    ) -> None:
        self.chat_tolerance = chat_tolerance
        self._events = EventBus()
        self._reset_fields()

    def _reset_fields(self) -> None:
        self._is_online = False
        self._current_location: Optional[Dict[str, float]] = None
        self._ride_offer: Optional[RideOffer] = None
        self._active_ride: Optional[ActiveRide] = None
        self._ride_history: List[RideHistory] = []
        self._stats = DriverStats()
        self._chat_messages: List[ChatMessage] = []
        self._notifications: List[Dict[str, Any]] = []

    # Read access ----------------------------------------------------------------
    @property
    def is_online(self) -> bool:
        return self._is_online

    @property
    def current_location(self) -> Optional[Dict[str, float]]:
        return dict(self._current_location) if self._current_location else None

    @property
    def ride_offer(self) -> Optional[RideOffer]:
        return self._ride_offer

    @property
    def active_ride(self) -> Optional[ActiveRide]:
        return self._active_ride

    @property
    def ride_history(self) -> List[RideHistory]:
        return list(self._ride_history)

    @property
    def stats(self) -> DriverStats:
        return self._stats

    @property
    def chat_messages(self) -> List[ChatMessage]:
        return list(self._chat_messages)

    @property
    def notifications(self) -> List[Dict[str, Any]]:
        return list(self._notifications)

    # Change notifications -------------------------------------------------------
    def subscribe(self, listener: Callable[[str], None]) -> None:
        self._events.subscribe(_CHANGED, listener)

    def unsubscribe(self, listener: Callable[[str], None]) -> None:
        self._events.unsubscribe(_CHANGED, listener)

    def _changed(self, field_name: str) -> None:
        self._events.publish(_CHANGED, field_name)

    # Presence -------------------------------------------------------------------
    def set_online(self, online: bool) -> None:
        self._is_online = bool(online)
        self._changed("is_online")

    def set_current_location(
        self, latitude: float, longitude: float, heading: Optional[float] = None
    ) -> None:
        location = {"latitude": float(latitude), "longitude": float(longitude)}
        if heading is not None:
            location["heading"] = float(heading)
        self._current_location = location
        self._changed("current_location")

    # Offers ---------------------------------------------------------------------
    def receive_offer(self, offer: RideOffer) -> bool:
        if not self._is_online:
            logger.warning("Ignoring offer %s: driver is offline", offer.id)
            return False
        if self._active_ride is not None:
            logger.warning(
                "Ignoring offer %s: ride %s is in progress",
                offer.id,
                self._active_ride.id,
            )
            return False
        self._ride_offer = offer
        self._changed("ride_offer")
        return True

    def accept_offer(self) -> Optional[ActiveRide]:
        offer = self._ride_offer
        if offer is None:
            logger.warning("accept_offer called without a pending offer")
            return None
        if self._active_ride is not None:
            logger.warning(
                "accept_offer(%s) ignored: ride %s already active",
                offer.id,
                self._active_ride.id,
            )
            return None
        self._active_ride = ActiveRide.from_offer(offer)
        self._ride_offer = None
        self._chat_messages = []
        self._changed("ride_offer")
        self._changed("active_ride")
        return self._active_ride

    def decline_offer(self) -> None:
        if self._ride_offer is None:
            return
        self._ride_offer = None
        self._changed("ride_offer")

    def expire_offer(self, offer_id: str) -> bool:
        """Drop the pending offer if it is still `offer_id`."""
        if self._ride_offer is None or self._ride_offer.id != offer_id:
            return False
        self.decline_offer()
        return True

    # Active ride ----------------------------------------------------------------
    def set_active_ride(self, ride: ActiveRide) -> bool:
        current = self._active_ride
        if current is not None and current.id != ride.id:
            logger.warning(
                "set_active_ride(%s) ignored: ride %s already active", ride.id, current.id
            )
            return False
        self._active_ride = ride
        if self._ride_offer is not None and self._ride_offer.id == ride.id:
            self._ride_offer = None
            self._changed("ride_offer")
        self._changed("active_ride")
        return True

    def advance_ride(self, status: RideStatus | str) -> bool:
        ride = self._active_ride
        if ride is None:
            logger.warning("advance_ride(%s) ignored: no active ride", status)
            return False
        try:
            target = RideStatus(status)
        except ValueError:
            logger.warning("advance_ride ignored: unknown status %r", status)
            return False
        expected = next_status(ride.status)
        if target is not expected:
            logger.warning(
                "advance_ride ignored for %s: %s -> %s is not allowed",
                ride.id,
                ride.status.value,
                target.value,
            )
            return False
        if target is RideStatus.COMPLETED:
            self.finalize_ride(RideStatus.COMPLETED)
            return True
        updates: Dict[str, Any] = {"status": target}
        if target is RideStatus.STARTED:
            updates["started_at"] = utcnow()
        self._active_ride = replace(ride, **updates)
        self._changed("active_ride")
        return True

    def finalize_ride(
        self,
        outcome: RideStatus | str,
        fare: Optional[float] = None,
        rating: Optional[float] = None,
    ) -> Optional[RideHistory]:
        ride = self._active_ride
        if ride is None:
            logger.warning("finalize_ride(%s) ignored: no active ride", outcome)
            return None
        try:
            result = RideStatus(outcome)
        except ValueError:
            logger.warning("finalize_ride ignored: unknown outcome %r", outcome)
            return None
        if result not in (RideStatus.COMPLETED, RideStatus.CANCELLED):
            logger.warning("finalize_ride ignored: %s is not terminal", result.value)
            return None

        completed = result is RideStatus.COMPLETED
        final_fare = (fare if fare is not None else ride.fare) if completed else 0
        commission = round(final_fare * COMMISSION_RATE) if completed else 0
        record = RideHistory(
            id=ride.id,
            date=utcnow().isoformat(),
            customer_name=ride.customer_name,
            customer_phone=ride.customer_phone,
            pickup=ride.pickup.address,
            dropoff=ride.dropoff.address,
            fare=final_fare,
            commission=commission,
            distance_km=ride.distance_km,
            duration_min=ride.duration_min,
            status=result,
            rating=rating if completed else None,
        )
        self._active_ride = None
        self._chat_messages = []
        self._ride_history = [record, *self._ride_history]
        if completed:
            # Estimate only; the next earnings refresh overwrites these.
            stats = self._stats
            total_earnings = stats.total_earnings + final_fare
            total_debt = stats.total_debt + commission
            self._stats = replace(
                stats,
                today_earnings=stats.today_earnings + final_fare,
                today_rides=stats.today_rides + 1,
                weekly_earnings=stats.weekly_earnings + final_fare,
                monthly_earnings=stats.monthly_earnings + final_fare,
                total_earnings=total_earnings,
                total_debt=total_debt,
                net_balance=total_earnings - total_debt,
            )
            self._changed("stats")
        self._changed("active_ride")
        self._changed("ride_history")
        return record

    # Backend refreshes ----------------------------------------------------------
    def replace_history(self, rides: Iterable[RideHistory]) -> None:
        self._ride_history = list(rides)
        self._changed("ride_history")

    def replace_stats(self, partial: Dict[str, Any]) -> None:
        self._stats = self._stats.merged(partial)
        self._changed("stats")

    def replace_notifications(self, items: Iterable[Dict[str, Any]]) -> None:
        self._notifications = [dict(item) for item in items]
        self._changed("notifications")

    # Chat -----------------------------------------------------------------------
    def append_chat_message(self, message: ChatMessage) -> None:
        self._chat_messages = reconcile(
            self._chat_messages, message, tolerance=self.chat_tolerance
        )
        self._changed("chat_messages")

    def merge_chat_history(self, messages: Iterable[ChatMessage]) -> None:
        merged = self._chat_messages
        for message in messages:
            merged = reconcile(merged, message, tolerance=self.chat_tolerance)
        self._chat_messages = sorted(merged, key=lambda m: m.timestamp)
        self._changed("chat_messages")

    def clear_chat(self) -> None:
        self._chat_messages = []
        self._changed("chat_messages")

    def reset(self) -> None:
        self._reset_fields()
        self._changed("reset")
