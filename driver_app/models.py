"""
Ride, history, stats and chat records used by the driver client.

The backend speaks in "trip" records (`_id`, `client_id`, `pickup`,
`destination`, `price`, distance in metres, backend status strings).  The
helpers at the bottom of this module translate those payloads into the local
records so the rest of the client never has to look at raw JSON.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .core.constants import (
    BACKEND_TO_LOCAL_STATUS,
    COMMISSION_RATE,
    DEFAULT_OFFER_TIMEOUT_SECONDS,
    LOCAL_TO_BACKEND_STATUS,
    TEMP_MESSAGE_PREFIX,
)


class RideStatus(str, enum.Enum):
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


LIFECYCLE: Tuple[RideStatus, ...] = (
    RideStatus.ACCEPTED,
    RideStatus.ARRIVED,
    RideStatus.STARTED,
    RideStatus.COMPLETED,
)
TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})


def next_status(status: RideStatus) -> Optional[RideStatus]:
    """Return the lifecycle status that follows `status`, if any."""
    if status not in LIFECYCLE:
        return None
    index = LIFECYCLE.index(status)
    if index + 1 >= len(LIFECYCLE):
        return None
    return LIFECYCLE[index + 1]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Place:
    address: str
    latitude: float
    longitude: float


@dataclass
class RideOffer:
    id: str
    customer_id: str
    customer_name: str
    customer_rating: float
    customer_phone: str
    pickup: Place
    dropoff: Place
    estimated_fare: float
    distance_km: float
    duration_min: int
    requested_at: Optional[str] = None
    customer_image: Optional[str] = None
    expires_in: float = DEFAULT_OFFER_TIMEOUT_SECONDS


@dataclass
class ActiveRide(RideOffer):
    status: RideStatus = RideStatus.ACCEPTED
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    actual_fare: Optional[float] = None

    @classmethod
    def from_offer(cls, offer: RideOffer) -> "ActiveRide":
        fields = {name: getattr(offer, name) for name in offer.__dataclass_fields__}
        return cls(**fields, status=RideStatus.ACCEPTED)

    @property
    def fare(self) -> float:
        if self.actual_fare is not None:
            return self.actual_fare
        return self.estimated_fare


@dataclass(frozen=True)
class RideHistory:
    id: str
    date: str
    customer_name: str
    customer_phone: str
    pickup: str
    dropoff: str
    fare: float
    commission: float
    distance_km: float
    duration_min: int
    status: RideStatus
    rating: Optional[float] = None


@dataclass
class DriverStats:
    today_earnings: float = 0
    today_rides: int = 0
    hours_online: float = 0
    rating: float = 0
    weekly_earnings: float = 0
    monthly_earnings: float = 0
    total_debt: float = 0
    total_earnings: float = 0
    net_balance: float = 0
    weekly_data: List[Tuple[str, float]] = field(default_factory=list)

    def merged(self, partial: Dict[str, Any]) -> "DriverStats":
        known = {k: v for k, v in partial.items() if k in self.__dataclass_fields__}
        return replace(self, **known)


class MessageSender(str, enum.Enum):
    DRIVER = "driver"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class ChatMessage:
    id: str
    text: str
    sender: MessageSender
    timestamp: datetime
    client_id: Optional[str] = None
    ride_id: Optional[str] = None

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith(TEMP_MESSAGE_PREFIX)


# Backend payload helpers -------------------------------------------------------


def is_connection_cancellation(reason: Optional[str]) -> bool:
    return bool(reason) and "connection" in str(reason).lower()


def local_status(value: Any) -> Optional[RideStatus]:
    raw = str(value or "").strip().lower()
    mapped = BACKEND_TO_LOCAL_STATUS.get(raw, raw)
    try:
        return RideStatus(mapped)
    except ValueError:
        return None


def backend_status(status: RideStatus | str) -> str:
    key = status.value if isinstance(status, RideStatus) else str(status)
    return LOCAL_TO_BACKEND_STATUS.get(key, key)


def trip_id(trip: Dict[str, Any]) -> str:
    return str(trip.get("_id") or trip.get("id") or trip.get("tripId") or "")


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _place(raw: Any) -> Place:
    if not isinstance(raw, dict):
        return Place(address=str(raw or ""), latitude=0.0, longitude=0.0)
    coords = raw.get("coordinates") if isinstance(raw.get("coordinates"), dict) else {}
    return Place(
        address=str(raw.get("address") or ""),
        latitude=_as_float(raw.get("lat", coords.get("latitude"))),
        longitude=_as_float(raw.get("lng", coords.get("longitude"))),
    )


def _client_fields(trip: Dict[str, Any]) -> Dict[str, Any]:
    client = trip.get("client_id")
    if isinstance(client, dict):
        return {
            "customer_id": str(client.get("_id") or client.get("id") or ""),
            "customer_name": client.get("name") or "Customer",
            "customer_rating": _as_float(client.get("rating"), 4.5),
            "customer_phone": client.get("phone") or "",
            "customer_image": client.get("image") or client.get("avatar"),
        }
    return {
        "customer_id": str(client or ""),
        "customer_name": "Customer",
        "customer_rating": 4.5,
        "customer_phone": "",
        "customer_image": None,
    }


def offer_from_trip(
    trip: Dict[str, Any], *, default_timeout: float = DEFAULT_OFFER_TIMEOUT_SECONDS
) -> RideOffer:
    """Build a RideOffer from a canonical trip record."""
    distance_m = _as_float(trip.get("distance"))
    duration = trip.get("duration")
    if duration is None:
        duration_min = round(distance_m / 500)
    else:
        duration_min = int(round(_as_float(duration)))
    timeout = trip.get("offerTimeout", trip.get("expiresIn"))
    expires_in = _as_float(timeout, default_timeout) if timeout is not None else default_timeout
    if expires_in <= 0:
        expires_in = default_timeout
    return RideOffer(
        id=trip_id(trip),
        pickup=_place(trip.get("pickup")),
        dropoff=_place(trip.get("destination") or trip.get("dropoff")),
        estimated_fare=_as_float(trip.get("price")),
        distance_km=distance_m / 1000,
        duration_min=duration_min,
        requested_at=trip.get("createdAt") or trip.get("date_time"),
        expires_in=expires_in,
        **_client_fields(trip),
    )


def active_ride_from_trip(trip: Dict[str, Any]) -> ActiveRide:
    """Build an ActiveRide, used when recovering a ride after a restart."""
    ride = ActiveRide.from_offer(offer_from_trip(trip))
    status = local_status(trip.get("status"))
    if status is not None and status not in TERMINAL_STATUSES:
        ride.status = status
    if ride.status is RideStatus.STARTED:
        ride.started_at = _parse_timestamp(trip.get("startedAt") or trip.get("updatedAt"))
    return ride


def history_from_trip(trip: Dict[str, Any]) -> RideHistory:
    offer = offer_from_trip(trip)
    status = local_status(trip.get("status"))
    fare = _as_float(trip.get("price"))
    commission = trip.get("commission")
    rating = trip.get("rating")
    return RideHistory(
        id=offer.id,
        date=str(trip.get("updatedAt") or trip.get("date_time") or trip.get("createdAt") or ""),
        customer_name=offer.customer_name,
        customer_phone=offer.customer_phone,
        pickup=offer.pickup.address,
        dropoff=offer.dropoff.address,
        fare=fare,
        commission=(
            _as_float(commission) if commission is not None else round(fare * COMMISSION_RATE)
        ),
        distance_km=offer.distance_km,
        duration_min=offer.duration_min,
        status=(
            RideStatus.CANCELLED if status is RideStatus.CANCELLED else RideStatus.COMPLETED
        ),
        rating=_as_float(rating) if rating is not None else None,
    )


_EARNINGS_KEYS = {
    "todayEarnings": "today_earnings",
    "todayRides": "today_rides",
    "weeklyEarnings": "weekly_earnings",
    "monthlyEarnings": "monthly_earnings",
    "totalDebt": "total_debt",
    "totalEarnings": "total_earnings",
    "netBalance": "net_balance",
    "hoursOnline": "hours_online",
    "rating": "rating",
}


def stats_from_earnings(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return the DriverStats fields present in an earnings summary."""
    partial: Dict[str, Any] = {}
    for key, attr in _EARNINGS_KEYS.items():
        if payload.get(key) is not None:
            partial[attr] = payload[key]
    weekly = payload.get("weeklyData")
    if isinstance(weekly, list):
        partial["weekly_data"] = [
            (str(item.get("day", "")), _as_float(item.get("amount")))
            for item in weekly
            if isinstance(item, dict)
        ]
    return partial


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # Milliseconds since epoch.
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value or "").strip()
    if not text:
        return utcnow()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return utcnow()
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def chat_message_from_payload(payload: Dict[str, Any]) -> ChatMessage:
    sender = (
        MessageSender.DRIVER
        if str(payload.get("sender") or "").lower() == "driver"
        else MessageSender.CUSTOMER
    )
    ride = payload.get("tripId") or payload.get("trip_id") or payload.get("rideId")
    return ChatMessage(
        id=str(payload.get("_id") or payload.get("id") or ""),
        text=str(payload.get("text") or ""),
        sender=sender,
        timestamp=_parse_timestamp(payload.get("createdAt") or payload.get("timestamp")),
        client_id=payload.get("clientId") or payload.get("client_id"),
        ride_id=str(ride) if ride else None,
    )
