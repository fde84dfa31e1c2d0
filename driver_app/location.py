"""Driver position: a best-effort lookup plus the periodic location ping."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from .core.constants import DEFAULT_LOCATION_INTERVAL_SECONDS
from .core.logger import get_logger
from .realtime import RealtimeChannel
from .ride_store import RideStateStore
from .timers import Scheduler, TimerHandle

GEOIP_PROVIDERS = (
    "https://ipapi.co/json/",
    "https://ipinfo.io/json",
    "https://ipwho.is/",
)

# (latitude key, longitude key) pairs seen across the providers above.
_COORDINATE_KEYS = (("latitude", "longitude"), ("lat", "lng"), ("lat", "lon"))
_ACCURACY_KEYS = ("accuracy_km", "accuracy", "accuracy_radius")

logger = get_logger("location")

Fix = Tuple[float, float]


class CurrentLocationError(RuntimeError):
    """Raised when the current location cannot be resolved."""


@dataclass
class LocationResult:
    latitude: float
    longitude: float
    label: str
    provider: str = ""
    accuracy_km: Optional[float] = None

    @property
    def precision(self) -> float:
        """Higher is better: a named place, then a tighter accuracy radius."""
        score = 1.0 if self.label else 0.0
        if self.accuracy_km is not None:
            score += 5.0 - min(max(self.accuracy_km, 0.1), 5.0)
        return score


class CurrentLocationService:
    """Approximate driver position from IP geolocation providers."""

    def __init__(
        self,
        *,
        timeout: float = 5.0,
        endpoints: Optional[Iterable[str]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.timeout = timeout
        self.endpoints: List[str] = list(endpoints or GEOIP_PROVIDERS)
        self._http = session or requests.Session()

    def fetch(self) -> LocationResult:
        """Ask every provider and keep the most precise answer."""
        results: List[LocationResult] = []
        errors: List[str] = []
        for endpoint in self.endpoints:
            try:
                results.append(self._query(endpoint))
            except CurrentLocationError as exc:
                logger.debug("Location provider %s failed: %s", endpoint, exc)
                errors.append(str(exc))
        if not results:
            raise CurrentLocationError(
                errors[-1] if errors else "No location provider configured."
            )
        return max(results, key=lambda result: result.precision)

    def _query(self, endpoint: str) -> LocationResult:
        try:
            response = self._http.get(endpoint, timeout=self.timeout)
        except requests.RequestException as exc:
            raise CurrentLocationError(f"{endpoint} unreachable: {exc}") from exc
        if response.status_code != 200:
            raise CurrentLocationError(f"{endpoint} answered HTTP {response.status_code}")
        try:
            data: Dict[str, Any] = response.json()
        except ValueError as exc:
            raise CurrentLocationError(f"{endpoint} sent a non-JSON body") from exc
        coordinates = _coordinates(data)
        if coordinates is None:
            raise CurrentLocationError(f"{endpoint} sent no coordinates")
        latitude, longitude = coordinates
        city = str(data.get("city") or "").strip()
        country = str(data.get("country_name") or data.get("country") or "").strip()
        label = ", ".join(part for part in (city, country) if part)
        return LocationResult(
            latitude=latitude,
            longitude=longitude,
            label=label or f"{latitude:.4f}, {longitude:.4f}",
            provider=endpoint,
            accuracy_km=_accuracy(data),
        )


def _coordinates(data: Dict[str, Any]) -> Optional[Fix]:
    pair: Optional[Sequence[Any]] = next(
        (
            (data[lat_key], data[lng_key])
            for lat_key, lng_key in _COORDINATE_KEYS
            if data.get(lat_key) is not None and data.get(lng_key) is not None
        ),
        None,
    )
    if pair is None:
        # ipinfo packs both values into "loc": "lat,lng".
        loc = str(data.get("loc") or "")
        if "," not in loc:
            return None
        pair = loc.split(",", 1)
    try:
        return float(pair[0]), float(pair[1])
    except (TypeError, ValueError):
        return None


def _accuracy(data: Dict[str, Any]) -> Optional[float]:
    for key in _ACCURACY_KEYS:
        try:
            value = float(data[key])
        except (KeyError, TypeError, ValueError):
            continue
        if value >= 0:
            return value
    return None


class LocationTracker:
    """
    Sends the driver's position over the realtime channel at a fixed interval
    while the driver is online.  `provider` returns `(lat, lng)` or None when
    no fix is available.
    """

    def __init__(
        self,
        store: RideStateStore,
        channel: RealtimeChannel,
        scheduler: Scheduler,
        provider: Callable[[], Optional[Fix]],
        *,
        interval: float = DEFAULT_LOCATION_INTERVAL_SECONDS,
    ) -> None:
        self.store = store
        self.channel = channel
        self.scheduler = scheduler
        self.provider = provider
        self.interval = interval
        self._driver_id: Optional[str] = None
        self._timer: Optional[TimerHandle] = None

    @property
    def running(self) -> bool:
        return self._timer is not None

    def start(self, driver_id: str) -> None:
        self.stop()
        self._driver_id = str(driver_id)
        self.ping()
        self._timer = self.scheduler.call_every(self.interval, self.ping)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def ping(self) -> bool:
        if not self._driver_id or not self.store.is_online:
            return False
        try:
            fix = self.provider()
        except CurrentLocationError as exc:
            logger.warning("No location fix: %s", exc)
            return False
        if fix is None:
            return False
        latitude, longitude = fix
        self.store.set_current_location(latitude, longitude)
        return self.channel.update_location(self._driver_id, latitude, longitude)


def ip_location_provider(
    service: CurrentLocationService,
) -> Callable[[], Optional[Fix]]:
    """Adapt `CurrentLocationService` to the tracker's provider signature."""

    def provide() -> Optional[Fix]:
        result = service.fetch()
        return result.latitude, result.longitude

    return provide
