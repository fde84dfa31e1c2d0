"""Console entry point: runs the driver client headless on a Qt event loop."""

from __future__ import annotations

import argparse
import signal
import sys
from typing import List, Optional

from PyQt6.QtCore import QCoreApplication

from .alerts import Alert, AlertCenter
from .controller import DriverController
from .core.config import ClientSettings, socket_url_from_api_url
from .core.logger import logger
from .driver_api import DriverAPI, DriverAPIError
from .location import CurrentLocationError, CurrentLocationService, LocationTracker
from .qt_bridge import QtEventBridge, QtScheduler
from .realtime import RealtimeChannel
from .ride_store import RideStateStore
from .session_store import SessionStore
from .watchdog import ConnectionWatchdog


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the driver client without a UI and log ride activity.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--api-url",
        default=None,
        help="Backend REST base URL (default: DRIVER_API_URL or http://127.0.0.1:5000/api).",
    )
    parser.add_argument(
        "--socket-url",
        default=None,
        help="Realtime endpoint (default: the API host without /api).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="HTTP timeout in seconds when calling the backend.",
    )
    parser.add_argument("--email", default=None, help="Log in with this e-mail first.")
    parser.add_argument("--password", default=None, help="Password for --email.")
    parser.add_argument(
        "--auto-accept",
        action="store_true",
        help="Accept every incoming ride offer (for testing a backend).",
    )
    return parser.parse_args(argv)


def _log_alert(alert: Optional[Alert]) -> None:
    if alert is not None:
        logger.warning("[%s] %s: %s", alert.type.value, alert.title, alert.message)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    settings = ClientSettings.from_env(api_url=args.api_url)
    if args.api_url and not args.socket_url:
        settings.socket_url = socket_url_from_api_url(args.api_url)
    if args.socket_url:
        settings.socket_url = args.socket_url
    if args.timeout is not None:
        settings.api_timeout = args.timeout

    app = QCoreApplication(sys.argv[:1])
    bridge = QtEventBridge()
    scheduler = QtScheduler()

    session_store = SessionStore(settings.session_db_url)
    api = DriverAPI(settings.api_url, session_store, timeout=settings.api_timeout)
    if args.email and args.password:
        try:
            driver = api.login(email=args.email, password=args.password)
        except DriverAPIError as exc:
            logger.error("Login failed: %s", exc)
            return 1
        logger.info("Logged in as %s", driver.get("name") or driver.get("email"))
    if not session_store.is_authenticated():
        logger.error("No stored session. Run with --email and --password.")
        return 1

    store = RideStateStore(chat_tolerance=settings.chat_tolerance)
    alerts = AlertCenter()
    alerts.subscribe(_log_alert)
    channel = RealtimeChannel(
        settings.socket_url,
        session_store,
        dispatch=bridge.post,
        reconnection_attempts=settings.reconnect_attempts,
    )
    controller = DriverController(
        store=store,
        api=api,
        channel=channel,
        session_store=session_store,
        alerts=alerts,
        scheduler=scheduler,
        offer_timeout=settings.offer_timeout,
    )
    watchdog = ConnectionWatchdog(
        store, channel, alerts, scheduler, delay=settings.watchdog_delay
    )

    def on_store_change(field_name: str) -> None:
        if field_name == "ride_offer" and store.ride_offer is not None:
            offer = store.ride_offer
            logger.info(
                "Ride offer %s: %s -> %s, fare %s, %.1f km",
                offer.id,
                offer.pickup.address,
                offer.dropoff.address,
                offer.estimated_fare,
                offer.distance_km,
            )
            if args.auto_accept:
                controller.accept_offer()
        elif field_name == "active_ride":
            ride = store.active_ride
            logger.info("Active ride: %s", f"{ride.id} ({ride.status.value})" if ride else "none")

    store.subscribe(on_store_change)

    location_service = CurrentLocationService()
    try:
        fix = location_service.fetch()
        store.set_current_location(fix.latitude, fix.longitude)
        logger.info("Approximate location: %s", fix.label)
    except CurrentLocationError as exc:
        logger.warning("Could not determine location: %s", exc)

    def last_fix() -> Optional[tuple[float, float]]:
        location = store.current_location
        if not location:
            return None
        return location["latitude"], location["longitude"]

    tracker = LocationTracker(
        store, channel, scheduler, last_fix, interval=settings.location_interval
    )

    controller.start()
    watchdog.start()
    channel.connect()
    controller.recover()
    controller.refresh_profile()
    controller.refresh_notifications()
    if controller.go_online() and controller.driver_id:
        tracker.start(controller.driver_id)
    controller.start_periodic_refresh(settings.refresh_interval)

    def shutdown(*_: object) -> None:
        logger.info("Shutting down driver client")
        tracker.stop()
        if store.is_online and store.active_ride is None:
            controller.go_offline()
        watchdog.stop()
        controller.stop()
        channel.disconnect()
        app.quit()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)
    # Qt only hands control back to Python on events; wake it so signals land.
    scheduler.call_every(0.5, lambda: None)
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
