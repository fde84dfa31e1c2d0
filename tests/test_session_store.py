from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from driver_app.session_store import SessionStore, _resolve_sqlite_url


class SessionStoreTest(unittest.TestCase):
    def test_login_round_trip_on_disk(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            url = f"sqlite:///{Path(tmp) / 'session.db'}"
            store = SessionStore(url)
            self.assertFalse(store.is_authenticated())
            store.save_login("tok-1", {"_id": "d1", "name": "Jean"})

            reopened = SessionStore(url)
            self.assertTrue(reopened.is_authenticated())
            self.assertEqual(reopened.get_token(), "tok-1")
            self.assertEqual(reopened.get_driver(), {"_id": "d1", "name": "Jean"})
            self.assertEqual(reopened.get_driver_id(), "d1")
            reopened._engine.dispose()
            store._engine.dispose()

    def test_save_login_overwrites(self) -> None:
        store = SessionStore("sqlite:///:memory:")
        store.save_login("old", {"id": 4})
        store.save_login("new", {"id": 5})
        self.assertEqual(store.get_token(), "new")
        self.assertEqual(store.get_driver_id(), "5")

    def test_update_driver_merges_profile(self) -> None:
        store = SessionStore("sqlite:///:memory:")
        store.save_login("tok", {"_id": "d1", "name": "Jean", "balance": 0})
        store.update_driver({"balance": 1200, "debt": 300})
        self.assertEqual(
            store.get_driver(), {"_id": "d1", "name": "Jean", "balance": 1200, "debt": 300}
        )
        self.assertEqual(store.get_token(), "tok")

    def test_clear(self) -> None:
        store = SessionStore("sqlite:///:memory:")
        store.save_login("tok", {"_id": "d1"})
        store.clear()
        self.assertIsNone(store.get_token())
        self.assertIsNone(store.get_driver())
        self.assertIsNone(store.get_driver_id())
        store.clear()

    def test_memory_and_absolute_urls_untouched(self) -> None:
        self.assertEqual(_resolve_sqlite_url("sqlite:///:memory:"), "sqlite:///:memory:")
        self.assertEqual(_resolve_sqlite_url("sqlite:////tmp/s.db"), "sqlite:////tmp/s.db")
        self.assertEqual(
            _resolve_sqlite_url("postgresql://u@h/db"), "postgresql://u@h/db"
        )


if __name__ == "__main__":
    unittest.main()
