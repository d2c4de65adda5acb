"""HTTP client for the Lumen identity API.

Wraps an ``httpx.Client`` (a FastAPI ``TestClient`` works too). Every call
carries the stored identifier in the device header and cookie, and every
``Set-Cookie`` the server answers with is written back to the store.
"""

import logging
from http.cookies import SimpleCookie
from typing import Any, Optional

import httpx

from lumen.client.device_store import DeviceIdentifierStore
from lumen.config import settings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class LumenAPIError(Exception):
    """Non-2xx answer from the server."""

    def __init__(self, status_code: int, error: Optional[str], message: str):
        self.status_code = status_code
        self.error = error
        self.message = message
        super().__init__(f"{status_code} {error}: {message}")


class LumenClient:
    def __init__(self, http: httpx.Client, store: DeviceIdentifierStore):
        self.http = http
        self.store = store

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict[str, Any]:
        device_id = self.store.get_or_create()
        # The store owns the cookie; don't let the transport's own jar add a second one
        self.http.cookies.clear()
        headers = {
            settings.device_id_header: device_id,
            "cookie": f"{self.store.cookie_name}={device_id}",
        }
        response = self.http.request(method, f"{API_PREFIX}{path}", json=json, headers=headers)
        self._mirror_cookie(response)

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise LumenAPIError(
                response.status_code,
                body.get("error"),
                body.get("message") or str(body.get("detail") or response.text),
            )
        return response.json()

    def _mirror_cookie(self, response: httpx.Response) -> None:
        for header in response.headers.get_list("set-cookie"):
            cookie = SimpleCookie()
            cookie.load(header)
            morsel = cookie.get(self.store.cookie_name)
            if morsel is None:
                continue
            if morsel["max-age"] == "0" or not morsel.value:
                logger.info("Server cleared the device id")
                self.store.clear()
            else:
                self.store.persist(morsel.value)

    # --- journey ---

    def create_backup_key(self) -> dict[str, Any]:
        return self._request("POST", "/journey/backup")

    def redeem_backup_key(self, identity_key: str) -> dict[str, Any]:
        return self._request("POST", "/journey/attach", json={"identity_key": identity_key})

    def journey_status(self) -> dict[str, Any]:
        return self._request("GET", "/journey/status")

    # --- migration ---

    def create_migration_token(self) -> dict[str, Any]:
        return self._request("POST", "/migration/create")

    def apply_migration_token(self, token: str) -> dict[str, Any]:
        return self._request("POST", "/migration/apply", json={"token": token})

    # --- device ---

    def user_stats(self) -> dict[str, Any]:
        return self._request("GET", "/stats/user")

    def purge(self) -> dict[str, Any]:
        return self._request("POST", "/device/purge")

    def debug(self) -> dict[str, Any]:
        return self._request("GET", "/device/debug")
