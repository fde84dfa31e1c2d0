"""Tests for the connection watchdog running on a manual clock."""

from __future__ import annotations

import unittest
from typing import List, Optional

from driver_app.alerts import Alert, AlertCenter, AlertType
from driver_app.core.constants import EMIT_LEAVE_RIDE_ROOM, EVENT_RIDE_CANCELLED
from driver_app.models import RideStatus
from driver_app.realtime import RealtimeChannel
from driver_app.ride_store import RideStateStore
from driver_app.watchdog import ConnectionWatchdog

from tests.fakes import FakeSocketClient, ManualScheduler, make_offer, memory_session_store


class WatchdogTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.client = FakeSocketClient()
        self.channel = RealtimeChannel(
            "http://backend", memory_session_store(), client=self.client
        )
        self.channel.connect()
        self.store = RideStateStore()
        self.store.set_online(True)
        self.store.receive_offer(make_offer("o1"))
        self.store.accept_offer()
        self.channel.join_ride_room("o1")
        self.alerts = AlertCenter()
        self.shown: List[Optional[Alert]] = []
        self.alerts.subscribe(self.shown.append)
        self.scheduler = ManualScheduler()
        self.watchdog = ConnectionWatchdog(
            self.store, self.channel, self.alerts, self.scheduler, delay=30
        )
        self.watchdog.start()

    def warnings(self) -> List[Alert]:
        return [a for a in self.shown if a is not None and a.title == "Connection Lost"]


class DisconnectTest(WatchdogTestCase):
    def test_single_warning_then_reconnect(self) -> None:
        self.client.drop()
        self.assertTrue(self.watchdog.pending)
        self.scheduler.advance(35)
        self.assertEqual(len(self.warnings()), 1)
        self.assertIs(self.warnings()[0].type, AlertType.WARNING)
        self.scheduler.advance(5)
        self.client.reconnect()
        self.assertFalse(self.watchdog.pending)
        self.scheduler.advance(120)
        self.assertEqual(len(self.warnings()), 1)
        self.assertEqual(self.scheduler.active_timers(), [])

    def test_reconnect_before_delay_cancels_warning(self) -> None:
        self.client.drop()
        self.scheduler.advance(10)
        self.client.reconnect()
        self.scheduler.advance(60)
        self.assertEqual(self.warnings(), [])

    def test_repeated_disconnects_keep_one_timer(self) -> None:
        self.client.drop()
        self.scheduler.advance(10)
        self.client.drop("transport error")
        self.assertEqual(len(self.scheduler.active_timers()), 1)
        self.scheduler.advance(25)
        self.assertEqual(len(self.warnings()), 1)

    def test_new_outage_warns_again(self) -> None:
        self.client.drop()
        self.scheduler.advance(31)
        self.client.reconnect()
        self.client.drop()
        self.scheduler.advance(31)
        self.assertEqual(len(self.warnings()), 2)

    def test_no_timer_without_active_ride(self) -> None:
        self.store.finalize_ride(RideStatus.CANCELLED)
        self.client.drop()
        self.assertFalse(self.watchdog.pending)
        self.scheduler.advance(60)
        self.assertEqual(self.warnings(), [])

    def test_ride_ending_during_outage_suppresses_warning(self) -> None:
        self.client.drop()
        self.store.finalize_ride(RideStatus.CANCELLED)
        self.scheduler.advance(31)
        self.assertEqual(self.warnings(), [])

    def test_stop_cancels_timer(self) -> None:
        self.client.drop()
        self.watchdog.stop()
        self.scheduler.advance(60)
        self.assertEqual(self.warnings(), [])


class BackendCancellationTest(WatchdogTestCase):
    def test_connection_cancellation_ends_ride(self) -> None:
        self.store.set_online(False)
        self.client.push(
            EVENT_RIDE_CANCELLED, {"tripId": "o1", "reason": "Connection timeout"}
        )
        self.assertIsNone(self.store.active_ride)
        self.assertTrue(self.store.is_online)
        self.assertEqual(self.store.ride_history[0].status, RideStatus.CANCELLED)
        self.assertIn({"tripId": "o1"}, self.client.emitted_events(EMIT_LEAVE_RIDE_ROOM))
        self.assertEqual(self.alerts.current.title, "Ride Cancelled")
        self.assertIs(self.alerts.current.type, AlertType.ERROR)

    def test_other_reasons_are_ignored(self) -> None:
        self.client.push(EVENT_RIDE_CANCELLED, {"tripId": "o1", "reason": "Rider changed plans"})
        self.assertIsNotNone(self.store.active_ride)

    def test_other_ride_is_ignored(self) -> None:
        self.client.push(EVENT_RIDE_CANCELLED, {"tripId": "zz", "reason": "connection lost"})
        self.assertEqual(self.store.active_ride.id, "o1")


if __name__ == "__main__":
    unittest.main()
