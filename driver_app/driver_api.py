"""
REST client for the driver backend.

`DriverAPI` wraps the request/response half of the backend: login and password
changes, presence, accepting and advancing rides, and the history / earnings /
profile / notification / chat fetches used to refresh local state.  It never
touches the ride store; callers apply the returned records only after a call
succeeds.  Every failure is raised as a `DriverAPIError` whose `kind` tells the
caller what went wrong.
"""

from __future__ import annotations

import enum
from typing import Any, Dict, List, Optional

import requests

from .core.logger import get_logger
from .models import RideStatus, backend_status
from .session_store import SessionStore

_SENSITIVE_KEYS = {
    "password",
    "currentpassword",
    "newpassword",
    "token",
    "authorization",
}
_NOTIFICATION_TARGETS = ("driver", "all")
MIN_PASSWORD_LENGTH = 6

logger = get_logger("api")


def _scrub_sensitive(value: Any) -> Any:
    if isinstance(value, dict):
        sanitized: Dict[str, Any] = {}
        for key, val in value.items():
            if isinstance(key, str) and key.lower() in _SENSITIVE_KEYS:
                sanitized[key] = "***"
            else:
                sanitized[key] = _scrub_sensitive(val)
        return sanitized
    if isinstance(value, list):
        return [_scrub_sensitive(item) for item in value]
    return value


class FailureKind(str, enum.Enum):
    NETWORK = "network_error"
    UNAUTHORIZED = "unauthorized"
    SUSPENDED = "account_suspended"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    SERVER = "server_error"
    UNKNOWN = "unknown"


def _kind_for_status(status: int) -> FailureKind:
    if status == 401:
        return FailureKind.UNAUTHORIZED
    if status == 403:
        return FailureKind.SUSPENDED
    if status == 404:
        return FailureKind.NOT_FOUND
    if status == 409:
        return FailureKind.CONFLICT
    if status in (400, 422):
        return FailureKind.INVALID_STATE
    if status >= 500:
        return FailureKind.SERVER
    return FailureKind.UNKNOWN


class DriverAPIError(RuntimeError):
    """Raised when the backend rejects a request or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        kind: FailureKind = FailureKind.UNKNOWN,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status


class DriverAPI:
    """Bearer-authenticated JSON client for the `/driver-app` routes."""

    def __init__(
        self,
        base_url: str,
        session_store: SessionStore,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session_store = session_store
        self._http = session or requests.Session()
        self._http.headers.update({"Content-Type": "application/json"})

    # Auth -----------------------------------------------------------------------
    def login(self, *, email: str, password: str) -> Dict[str, Any]:
        output = self._send_request(
            "POST",
            "/driver-app/auth/login",
            {"email": (email or "").strip(), "password": password},
            authenticated=False,
        )
        if not isinstance(output, dict) or not output.get("token"):
            raise DriverAPIError("Backend did not return an auth token.")
        driver = output.get("driver")
        if not isinstance(driver, dict):
            raise DriverAPIError("Backend did not include driver profile details.")
        self._session_store.save_login(output["token"], driver)
        return driver

    def logout(self) -> None:
        self._session_store.clear()

    def change_password(self, *, current_password: str, new_password: str) -> None:
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise DriverAPIError(
                f"New password must be at least {MIN_PASSWORD_LENGTH} characters.",
                kind=FailureKind.INVALID_STATE,
            )
        self._send_request(
            "POST",
            "/driver-app/change-password",
            {"currentPassword": current_password, "newPassword": new_password},
        )

    # Profile --------------------------------------------------------------------
    def fetch_driver_profile(self, driver_id: Optional[str] = None) -> Dict[str, Any]:
        """Fetch the full driver record (wallet balance, debt, documents).

        The cached profile in the session store is refreshed with the result.
        """
        driver_id = driver_id or self._session_store.get_driver_id()
        if not driver_id:
            raise DriverAPIError("No driver is logged in.", kind=FailureKind.UNAUTHORIZED)
        output = self._send_request("GET", f"/drivers/{driver_id}")
        if not isinstance(output, dict):
            raise DriverAPIError("Backend returned an empty driver profile.")
        self._session_store.update_driver(output)
        return output

    def fetch_notifications(self) -> List[Dict[str, Any]]:
        output = self._send_request("GET", "/notifications")
        if not isinstance(output, list):
            return []
        return [
            item
            for item in output
            if isinstance(item, dict) and item.get("target") in _NOTIFICATION_TARGETS
        ]

    # Presence -------------------------------------------------------------------
    def go_online(
        self, *, latitude: Optional[float] = None, longitude: Optional[float] = None
    ) -> None:
        payload: Dict[str, Any] = {"is_online": True}
        if latitude is not None and longitude is not None:
            payload["lat"] = float(latitude)
            payload["lng"] = float(longitude)
        self._send_request("PUT", "/driver-app/status", payload)

    def go_offline(self) -> None:
        self._send_request("PUT", "/driver-app/status", {"is_online": False})

    # Rides ----------------------------------------------------------------------
    def accept_ride(self, offer_id: str) -> Dict[str, Any]:
        if not offer_id:
            raise DriverAPIError("offer_id is required.", kind=FailureKind.INVALID_STATE)
        return self._expect_record(
            self._send_request("PUT", f"/driver-app/ride/{offer_id}/accept")
        )

    def advance_ride_state(
        self, ride_id: str, next_status: RideStatus | str
    ) -> Dict[str, Any]:
        if not ride_id:
            raise DriverAPIError("ride_id is required.", kind=FailureKind.INVALID_STATE)
        return self._expect_record(
            self._send_request(
                "PUT",
                f"/driver-app/ride/{ride_id}/state",
                {"status": backend_status(next_status)},
            )
        )

    def fetch_active_ride(self) -> Optional[Dict[str, Any]]:
        """Return the ride the backend still considers open, or None."""
        try:
            output = self._send_request("GET", "/driver-app/active-ride")
        except DriverAPIError as exc:
            if exc.kind is FailureKind.NOT_FOUND:
                return None
            raise
        if not isinstance(output, dict) or not output:
            return None
        return output

    def fetch_ride_history(
        self, *, page: Optional[int] = None, limit: Optional[int] = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if page is not None:
            params["page"] = int(page)
        if limit is not None:
            params["limit"] = int(limit)
        output = self._send_request("GET", "/driver-app/rides", params=params)
        if isinstance(output, list):
            return {"rides": output, "total": len(output), "page": page or 1, "limit": limit}
        if not isinstance(output, dict):
            return {"rides": [], "total": 0, "page": page or 1, "limit": limit}
        rides = output.get("rides")
        return {
            "rides": rides if isinstance(rides, list) else [],
            "total": output.get("total", len(rides or [])),
            "page": output.get("page", page or 1),
            "limit": output.get("limit", limit),
        }

    def fetch_earnings_summary(self) -> Dict[str, Any]:
        output = self._send_request("GET", "/driver-app/earnings")
        return output if isinstance(output, dict) else {}

    def fetch_chat_history(self, ride_id: str) -> List[Dict[str, Any]]:
        output = self._send_request("GET", f"/chat/{ride_id}")
        if not isinstance(output, list):
            return []
        return [item for item in output if isinstance(item, dict)]

    # Transport ------------------------------------------------------------------
    def _send_request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers: Dict[str, str] = {}
        if authenticated:
            token = self._session_store.get_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        self._log_request(method, path, payload)

        try:
            response = self._http.request(
                method,
                url,
                json=payload,
                params=params or None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("Network error while calling %s %s: %s", method, url, exc)
            raise DriverAPIError(
                f"Unable to reach backend at {self.base_url}: {exc}",
                kind=FailureKind.NETWORK,
            ) from exc

        body = self._decode_body(response)
        self._log_response(method, path, response.status_code, body)
        if response.status_code == 401:
            # Token expired or revoked.
            self._session_store.clear()
        if not response.ok:
            kind = _kind_for_status(response.status_code)
            message = None
            if isinstance(body, dict):
                message = body.get("message") or body.get("error")
            raise DriverAPIError(
                str(message or kind.value), kind=kind, status=response.status_code
            )
        return body

    @staticmethod
    def _decode_body(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _expect_record(output: Any) -> Dict[str, Any]:
        if not isinstance(output, dict):
            raise DriverAPIError("Backend returned an empty ride record.")
        return output

    def _log_request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]]
    ) -> None:
        logger.info(
            "[Client->Server] %s %s payload=%s",
            method,
            path,
            _scrub_sensitive(payload or {}),
        )

    def _log_response(self, method: str, path: str, status: int, body: Any) -> None:
        logger.info(
            "[Client<-Server] %s %s status=%s payload=%s",
            method,
            path,
            status,
            _scrub_sensitive(body),
        )
