"""
Persisted login session: the bearer token and the cached driver profile.

Entries live in a tiny key/value table in SQLite, opened through SQLAlchemy.
The URL comes from `DRIVER_SESSION_DB_URL`; relative sqlite paths are resolved
against the project root so every process shares the same file.
"""

from __future__ import annotations

import datetime as dt
import json
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, String, Text, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .core.config import PROJECT_ROOT
from .core.logger import get_logger

TOKEN_KEY = "driverAuthToken"
DRIVER_KEY = "driverData"

logger = get_logger("session")


class SessionStoreError(RuntimeError):
    """Raised when the session database cannot be read or written."""


class Base(DeclarativeBase):
    pass


class SessionEntry(Base):
    __tablename__ = "session_entries"
    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime, nullable=False, default=dt.datetime.utcnow
    )


def _resolve_sqlite_url(url: str) -> str:
    cleaned = url.strip()
    if not cleaned.startswith("sqlite:///") or cleaned == "sqlite:///:memory:":
        return cleaned
    path_part = cleaned.replace("sqlite:///", "", 1)
    raw_path = Path(path_part)
    if raw_path.is_absolute():
        return cleaned
    resolved = (PROJECT_ROOT / raw_path).resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{resolved}"


class SessionStore:
    def __init__(self, url: str) -> None:
        self.url = _resolve_sqlite_url(url)
        self._engine = create_engine(self.url, future=True)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(bind=self._engine, future=True)

    def _get(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as session:
                entry = session.get(SessionEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as exc:
            raise SessionStoreError(f"Unable to read {key!r}: {exc}") from exc

    def _put(self, values: Dict[str, str]) -> None:
        try:
            with self._session_factory.begin() as session:
                for key, value in values.items():
                    entry = session.get(SessionEntry, key)
                    if entry is None:
                        session.add(SessionEntry(key=key, value=value))
                    else:
                        entry.value = value
                        entry.updated_at = dt.datetime.utcnow()
        except SQLAlchemyError as exc:
            raise SessionStoreError(f"Unable to store session data: {exc}") from exc

    def get_token(self) -> Optional[str]:
        try:
            return self._get(TOKEN_KEY)
        except SessionStoreError as exc:
            logger.error("Error getting auth token: %s", exc)
            return None

    def get_driver(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self._get(DRIVER_KEY)
        except SessionStoreError as exc:
            logger.error("Error getting stored driver: %s", exc)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored driver profile is not valid JSON; ignoring it")
            return None
        return data if isinstance(data, dict) else None

    def get_driver_id(self) -> Optional[str]:
        driver = self.get_driver() or {}
        value = driver.get("_id") or driver.get("id")
        return str(value) if value else None

    def save_login(self, token: str, driver: Dict[str, Any]) -> None:
        self._put({TOKEN_KEY: token, DRIVER_KEY: json.dumps(driver)})

    def update_driver(self, profile: Dict[str, Any]) -> None:
        """Merge a fresh profile into the cached one, keeping the token."""
        driver = self.get_driver() or {}
        driver.update(profile)
        self._put({DRIVER_KEY: json.dumps(driver)})

    def is_authenticated(self) -> bool:
        return bool(self.get_token())

    def clear(self) -> None:
        try:
            with self._session_factory.begin() as session:
                for entry in session.scalars(
                    select(SessionEntry).where(
                        SessionEntry.key.in_([TOKEN_KEY, DRIVER_KEY])
                    )
                ).all():
                    session.delete(entry)
        except SQLAlchemyError as exc:
            logger.error("Error during logout: %s", exc)
