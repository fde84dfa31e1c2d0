from __future__ import annotations

import os
import unittest
from unittest import mock

from driver_app.core.config import ClientSettings, socket_url_from_api_url


class ClientSettingsTest(unittest.TestCase):
    def test_socket_url_strips_api_suffix(self) -> None:
        self.assertEqual(socket_url_from_api_url("http://h:5000/api/"), "http://h:5000")
        self.assertEqual(socket_url_from_api_url("http://h:5000"), "http://h:5000")

    def test_environment_overrides(self) -> None:
        env = {
            "DRIVER_API_URL": "https://rides.example/api",
            "DRIVER_OFFER_TIMEOUT": "20",
            "DRIVER_WATCHDOG_DELAY": "not-a-number",
            "DRIVER_RECONNECT_ATTEMPTS": "9",
        }
        with mock.patch.dict(os.environ, env):
            os.environ.pop("DRIVER_SOCKET_URL", None)
            settings = ClientSettings.from_env()
        self.assertEqual(settings.api_url, "https://rides.example/api")
        self.assertEqual(settings.socket_url, "https://rides.example")
        self.assertEqual(settings.offer_timeout, 20.0)
        self.assertEqual(settings.watchdog_delay, 30)
        self.assertEqual(settings.reconnect_attempts, 9)

    def test_explicit_api_url_wins(self) -> None:
        with mock.patch.dict(os.environ, {"DRIVER_API_URL": "https://env/api"}):
            settings = ClientSettings.from_env(api_url="http://cli:8000/api")
        self.assertEqual(settings.api_url, "http://cli:8000/api")


if __name__ == "__main__":
    unittest.main()
