"""Runtime settings for the driver client, read from the environment / `.env`."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .constants import (
    DEFAULT_CHAT_TOLERANCE_SECONDS,
    DEFAULT_LOCATION_INTERVAL_SECONDS,
    DEFAULT_OFFER_TIMEOUT_SECONDS,
    DEFAULT_REFRESH_INTERVAL_SECONDS,
    DEFAULT_WATCHDOG_DELAY_SECONDS,
)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_API_URL = "http://127.0.0.1:5000/api"
DEFAULT_SESSION_DB_PATH = (PROJECT_ROOT / "driver_session.db").resolve()

_ENV_CANDIDATES = [
    PROJECT_ROOT / ".env",
    Path.cwd() / ".env",
]
for env_path in _ENV_CANDIDATES:
    if env_path.exists():
        load_dotenv(env_path, override=False)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def socket_url_from_api_url(api_url: str) -> str:
    """The realtime endpoint lives on the same host as the API, minus `/api`."""
    cleaned = api_url.rstrip("/")
    if cleaned.endswith("/api"):
        cleaned = cleaned[: -len("/api")]
    return cleaned


@dataclass
class ClientSettings:
    api_url: str = DEFAULT_API_URL
    socket_url: str = socket_url_from_api_url(DEFAULT_API_URL)
    api_timeout: float = 10.0
    session_db_url: str = f"sqlite:///{DEFAULT_SESSION_DB_PATH}"
    offer_timeout: float = DEFAULT_OFFER_TIMEOUT_SECONDS
    watchdog_delay: float = DEFAULT_WATCHDOG_DELAY_SECONDS
    chat_tolerance: float = DEFAULT_CHAT_TOLERANCE_SECONDS
    location_interval: float = DEFAULT_LOCATION_INTERVAL_SECONDS
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL_SECONDS
    reconnect_attempts: int = 5

    @classmethod
    def from_env(cls, *, api_url: Optional[str] = None) -> "ClientSettings":
        resolved_api = api_url or _env_str("DRIVER_API_URL", DEFAULT_API_URL)
        return cls(
            api_url=resolved_api,
            socket_url=_env_str(
                "DRIVER_SOCKET_URL", socket_url_from_api_url(resolved_api)
            ),
            api_timeout=_env_float("DRIVER_API_TIMEOUT", 10.0),
            session_db_url=_env_str(
                "DRIVER_SESSION_DB_URL", f"sqlite:///{DEFAULT_SESSION_DB_PATH}"
            ),
            offer_timeout=_env_float(
                "DRIVER_OFFER_TIMEOUT", DEFAULT_OFFER_TIMEOUT_SECONDS
            ),
            watchdog_delay=_env_float(
                "DRIVER_WATCHDOG_DELAY", DEFAULT_WATCHDOG_DELAY_SECONDS
            ),
            chat_tolerance=_env_float(
                "DRIVER_CHAT_TOLERANCE", DEFAULT_CHAT_TOLERANCE_SECONDS
            ),
            location_interval=_env_float(
                "DRIVER_LOCATION_INTERVAL", DEFAULT_LOCATION_INTERVAL_SECONDS
            ),
            refresh_interval=_env_float(
                "DRIVER_REFRESH_INTERVAL", DEFAULT_REFRESH_INTERVAL_SECONDS
            ),
            reconnect_attempts=_env_int("DRIVER_RECONNECT_ATTEMPTS", 5),
        )
