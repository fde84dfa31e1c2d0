from __future__ import annotations

import unittest
from typing import Any, List, Optional, Tuple
from unittest import mock

import requests

from driver_app.core.constants import EMIT_UPDATE_LOCATION
from driver_app.location import (
    CurrentLocationError,
    CurrentLocationService,
    LocationTracker,
    ip_location_provider,
)
from driver_app.realtime import RealtimeChannel
from driver_app.ride_store import RideStateStore

from tests.fakes import FakeSocketClient, ManualScheduler, memory_session_store


def _http_response(status: int, payload: Any) -> mock.Mock:
    response = mock.Mock()
    response.status_code = status
    response.json.return_value = payload
    return response


class CurrentLocationServiceTest(unittest.TestCase):
    def test_most_precise_provider_wins(self) -> None:
        session = mock.Mock()
        session.get.side_effect = [
            _http_response(200, {"latitude": 1.0, "longitude": 2.0, "city": "Gitega"}),
            _http_response(
                200,
                {"loc": "-3.38,29.36", "city": "Bujumbura", "country": "BI", "accuracy": 1},
            ),
            requests.Timeout("slow"),
        ]
        service = CurrentLocationService(
            endpoints=["https://a", "https://b", "https://c"], session=session
        )
        result = service.fetch()
        self.assertEqual((result.latitude, result.longitude), (-3.38, 29.36))
        self.assertEqual(result.label, "Bujumbura, BI")
        self.assertEqual(result.provider, "https://b")

    def test_all_providers_failing(self) -> None:
        session = mock.Mock()
        session.get.side_effect = [
            _http_response(500, {}),
            _http_response(200, {"city": "Nowhere"}),
        ]
        service = CurrentLocationService(endpoints=["https://a", "https://b"], session=session)
        with self.assertRaises(CurrentLocationError):
            service.fetch()


class LocationTrackerTest(unittest.TestCase):
    def setUp(self) -> None:
        self.client = FakeSocketClient()
        self.channel = RealtimeChannel(
            "http://backend", memory_session_store(), client=self.client
        )
        self.channel.connect()
        self.store = RideStateStore()
        self.scheduler = ManualScheduler()
        self.fixes: List[Optional[Tuple[float, float]]] = [(-3.38, 29.36)]
        self.tracker = LocationTracker(
            self.store, self.channel, self.scheduler, lambda: self.fixes[-1], interval=5
        )

    def test_pings_only_while_online(self) -> None:
        self.tracker.start("d1")
        self.assertEqual(self.client.emitted_events(EMIT_UPDATE_LOCATION), [])
        self.store.set_online(True)
        self.scheduler.advance(10)
        self.assertEqual(
            self.client.emitted_events(EMIT_UPDATE_LOCATION),
            [{"driverId": "d1", "lat": -3.38, "lng": 29.36}] * 2,
        )
        self.assertEqual(
            self.store.current_location, {"latitude": -3.38, "longitude": 29.36}
        )

    def test_start_pings_immediately_and_stop_ends(self) -> None:
        self.store.set_online(True)
        self.tracker.start("d1")
        self.assertEqual(len(self.client.emitted_events(EMIT_UPDATE_LOCATION)), 1)
        self.tracker.stop()
        self.assertFalse(self.tracker.running)
        self.scheduler.advance(30)
        self.assertEqual(len(self.client.emitted_events(EMIT_UPDATE_LOCATION)), 1)

    def test_missing_fix_is_skipped(self) -> None:
        self.store.set_online(True)
        self.fixes.append(None)
        self.tracker.start("d1")
        self.assertEqual(self.client.emitted_events(EMIT_UPDATE_LOCATION), [])

    def test_provider_errors_are_skipped(self) -> None:
        service = mock.Mock(spec=CurrentLocationService)
        service.fetch.side_effect = CurrentLocationError("offline")
        tracker = LocationTracker(
            self.store, self.channel, self.scheduler, ip_location_provider(service)
        )
        self.store.set_online(True)
        tracker.start("d1")
        self.assertFalse(tracker.ping())
        self.assertEqual(self.client.emitted_events(EMIT_UPDATE_LOCATION), [])


if __name__ == "__main__":
    unittest.main()
