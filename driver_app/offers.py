from __future__ import annotations

import math
from typing import Callable, Optional

from .core.logger import get_logger
from .models import RideOffer
from .ride_store import RideStateStore
from .timers import Scheduler, TimerHandle

logger = get_logger("offers")


class OfferCountdown:
    """
    Accept window for the pending ride offer.

    Expiry clears the offer exactly like a decline.  The countdown is local
    to the client; the backend expires the offer on its own clock.
    """

    def __init__(
        self,
        store: RideStateStore,
        scheduler: Scheduler,
        *,
        on_tick: Optional[Callable[[int], None]] = None,
        on_expired: Optional[Callable[[RideOffer], None]] = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self._on_tick = on_tick
        self._on_expired = on_expired
        self._offer: Optional[RideOffer] = None
        self._deadline: float = 0.0
        self._expiry: Optional[TimerHandle] = None
        self._ticker: Optional[TimerHandle] = None

    @property
    def offer_id(self) -> Optional[str]:
        return self._offer.id if self._offer else None

    @property
    def seconds_left(self) -> int:
        if self._offer is None:
            return 0
        return max(0, math.ceil(self._deadline - self.scheduler.now()))

    def start(self, offer: RideOffer) -> None:
        self.cancel()
        self._offer = offer
        self._deadline = self.scheduler.now() + offer.expires_in
        self._expiry = self.scheduler.call_later(offer.expires_in, self._expire)
        self._ticker = self.scheduler.call_every(1.0, self._tick)
        logger.info("Offer %s expires in %ss", offer.id, offer.expires_in)

    def cancel(self) -> None:
        for handle in (self._expiry, self._ticker):
            if handle is not None:
                handle.cancel()
        self._expiry = None
        self._ticker = None
        self._offer = None

    def _tick(self) -> None:
        if self._on_tick is not None and self._offer is not None:
            self._on_tick(self.seconds_left)

    def _expire(self) -> None:
        offer = self._offer
        self.cancel()
        if offer is None:
            return
        if self.store.expire_offer(offer.id):
            logger.info("Offer %s expired without an answer", offer.id)
            if self._on_expired is not None:
                self._on_expired(offer)
