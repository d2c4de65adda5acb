"""Client-side device identifier persistence.

A browser keeps the identifier twice: in local storage and in the
``lumen_device_id`` cookie. Either copy can be lost on its own (cleared
cookies, private tabs, storage eviction), so both are read on load and the
survivor repairs the other. The local copy wins when they disagree.
"""

import json
import logging
import secrets
import time
from pathlib import Path
from typing import Optional

import httpx

from lumen.config import settings

logger = logging.getLogger(__name__)

STORAGE_KEY = "deviceId"


def generate_device_id() -> str:
    """A fresh identifier like ``device_1718000000000_3f9a1c2b``."""
    return f"device_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class DeviceIdentifierStore:
    """Keeps the device identifier in a JSON file and a cookie jar."""

    def __init__(self, path: Path, cookies: Optional[httpx.Cookies] = None, cookie_name: Optional[str] = None):
        self.path = Path(path)
        self.cookies = cookies if cookies is not None else httpx.Cookies()
        self.cookie_name = cookie_name or settings.device_cookie_name
        self.last_mismatch: Optional[tuple[str, str]] = None

    # --- the two copies ---

    def _read_local(self) -> Optional[str]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Unreadable device store %s: %s", self.path, e)
            return None
        value = data.get(STORAGE_KEY) if isinstance(data, dict) else None
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def _write_local(self, device_id: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({STORAGE_KEY: device_id}))

    def _read_cookie(self) -> Optional[str]:
        value = self.cookies.get(self.cookie_name)
        return value.strip() if value and value.strip() else None

    def _write_cookie(self, device_id: str) -> None:
        self.cookies.set(self.cookie_name, device_id, domain="", path="/")

    # --- public API ---

    def load(self) -> Optional[str]:
        """Read both copies, reconcile them and return the identifier (None if neither exists)."""
        local = self._read_local()
        cookie = self._read_cookie()
        self.last_mismatch = None

        if local and cookie and local != cookie:
            self.last_mismatch = (local, cookie)
            logger.warning("Device id mismatch: local storage %s, cookie %s; keeping local", local, cookie)
            self._write_cookie(local)
            return local
        if local and not cookie:
            logger.info("Device id cookie missing, restoring from local storage")
            self._write_cookie(local)
            return local
        if cookie and not local:
            logger.info("Device id missing from local storage, restoring from cookie")
            self._write_local(cookie)
            return cookie
        return local

    def persist(self, device_id: str) -> None:
        """Write ``device_id`` to both copies."""
        self._write_local(device_id)
        self._write_cookie(device_id)

    def get_or_create(self) -> str:
        device_id = self.load()
        if device_id is None:
            device_id = generate_device_id()
            logger.info("Generated new device id")
            self.persist(device_id)
        return device_id

    def clear(self) -> None:
        """Forget the identifier everywhere (after a purge)."""
        if self.path.exists():
            self.path.unlink()
        if self._read_cookie() is not None:
            self.cookies.delete(self.cookie_name, domain="", path="/")
