"""Tests for translating backend trip payloads into local records."""

from __future__ import annotations

import unittest
from datetime import datetime, timezone

from driver_app.models import (
    ActiveRide,
    MessageSender,
    RideStatus,
    active_ride_from_trip,
    backend_status,
    chat_message_from_payload,
    history_from_trip,
    is_connection_cancellation,
    local_status,
    next_status,
    offer_from_trip,
    stats_from_earnings,
)

from tests.fakes import make_offer, trip_payload


class StatusTest(unittest.TestCase):
    def test_backend_statuses_map_to_lifecycle(self) -> None:
        self.assertIs(local_status("driver_assigned"), RideStatus.ACCEPTED)
        self.assertIs(local_status("request"), RideStatus.ACCEPTED)
        self.assertIs(local_status("driver_arrived"), RideStatus.ARRIVED)
        self.assertIs(local_status("ONGOING"), RideStatus.STARTED)
        self.assertIs(local_status("cancelled"), RideStatus.CANCELLED)
        self.assertIsNone(local_status("teleported"))
        self.assertIsNone(local_status(None))

    def test_local_statuses_map_to_backend(self) -> None:
        self.assertEqual(backend_status(RideStatus.ARRIVED), "driver_arrived")
        self.assertEqual(backend_status("started"), "ongoing")
        self.assertEqual(backend_status(RideStatus.COMPLETED), "completed")

    def test_next_status(self) -> None:
        self.assertIs(next_status(RideStatus.ACCEPTED), RideStatus.ARRIVED)
        self.assertIs(next_status(RideStatus.STARTED), RideStatus.COMPLETED)
        self.assertIsNone(next_status(RideStatus.COMPLETED))
        self.assertIsNone(next_status(RideStatus.CANCELLED))

    def test_connection_reason(self) -> None:
        self.assertTrue(is_connection_cancellation("Connection timeout"))
        self.assertTrue(is_connection_cancellation("lost CONNECTION to driver"))
        self.assertFalse(is_connection_cancellation("Rider cancelled"))
        self.assertFalse(is_connection_cancellation(None))


class TripMappingTest(unittest.TestCase):
    def test_offer_from_trip(self) -> None:
        offer = offer_from_trip(trip_payload("o1"))
        self.assertEqual(offer.id, "o1")
        self.assertEqual(offer.customer_name, "Alice")
        self.assertEqual(offer.customer_rating, 4.8)
        self.assertEqual(offer.pickup.address, "Rohero")
        self.assertEqual(offer.dropoff.latitude, -3.41)
        self.assertEqual(offer.estimated_fare, 12500)
        self.assertEqual(offer.distance_km, 4.2)
        # No duration on the record: estimated from distance.
        self.assertEqual(offer.duration_min, 8)
        self.assertEqual(offer.expires_in, 30)

    def test_offer_timeout_from_backend(self) -> None:
        self.assertEqual(offer_from_trip(trip_payload(offerTimeout=15)).expires_in, 15)
        self.assertEqual(offer_from_trip(trip_payload(expiresIn=0)).expires_in, 30)
        self.assertEqual(
            offer_from_trip(trip_payload(), default_timeout=45).expires_in, 45
        )

    def test_unpopulated_client(self) -> None:
        offer = offer_from_trip(trip_payload(client_id="c42"))
        self.assertEqual(offer.customer_id, "c42")
        self.assertEqual(offer.customer_name, "Customer")

    def test_active_ride_from_trip(self) -> None:
        ride = active_ride_from_trip(trip_payload("r1", status="ongoing"))
        self.assertIs(ride.status, RideStatus.STARTED)
        self.assertEqual(ride.started_at, datetime(2026, 10, 17, 8, tzinfo=timezone.utc))
        assigned = active_ride_from_trip(trip_payload("r2", status="driver_assigned"))
        self.assertIs(assigned.status, RideStatus.ACCEPTED)
        self.assertIsNone(assigned.started_at)

    def test_history_from_trip(self) -> None:
        record = history_from_trip(trip_payload("r1", status="completed", rating=5))
        self.assertIs(record.status, RideStatus.COMPLETED)
        self.assertEqual(record.commission, 1250)
        self.assertEqual(record.rating, 5)
        cancelled = history_from_trip(trip_payload("r2", status="cancelled", commission=0))
        self.assertIs(cancelled.status, RideStatus.CANCELLED)
        self.assertEqual(cancelled.commission, 0)

    def test_active_ride_from_offer_keeps_fields(self) -> None:
        ride = ActiveRide.from_offer(make_offer("o9", fare=9000))
        self.assertEqual(ride.id, "o9")
        self.assertEqual(ride.fare, 9000)
        self.assertIs(ride.status, RideStatus.ACCEPTED)


class PayloadTest(unittest.TestCase):
    def test_stats_from_earnings(self) -> None:
        partial = stats_from_earnings(
            {
                "todayEarnings": 30000,
                "totalDebt": 3000,
                "weeklyData": [{"day": "Mon", "amount": 5000}],
                "unknown": 1,
            }
        )
        self.assertEqual(
            partial,
            {"today_earnings": 30000, "total_debt": 3000, "weekly_data": [("Mon", 5000.0)]},
        )

    def test_chat_message_from_payload(self) -> None:
        message = chat_message_from_payload(
            {
                "_id": "m1",
                "tripId": "r1",
                "sender": "customer",
                "text": "Hi",
                "createdAt": "2026-10-17T08:00:00.000Z",
                "clientId": "temp-1",
            }
        )
        self.assertEqual(message.id, "m1")
        self.assertIs(message.sender, MessageSender.CUSTOMER)
        self.assertEqual(message.ride_id, "r1")
        self.assertEqual(message.client_id, "temp-1")
        self.assertEqual(message.timestamp, datetime(2026, 10, 17, 8, tzinfo=timezone.utc))
        self.assertFalse(message.is_temporary)

    def test_epoch_millis_timestamp(self) -> None:
        message = chat_message_from_payload(
            {"_id": "m2", "sender": "driver", "text": "x", "timestamp": 0}
        )
        self.assertEqual(message.timestamp, datetime(1970, 1, 1, tzinfo=timezone.utc))


if __name__ == "__main__":
    unittest.main()
