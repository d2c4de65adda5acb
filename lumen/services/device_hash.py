"""Device identity hashing.

Every identity-scoped record is keyed by ``hash_device_id(device_id)`` rather
than the raw, client-supplied identifier.
"""

import hashlib
import logging
import threading
from typing import Optional

from lumen.config import settings

logger = logging.getLogger(__name__)

FALLBACK_SALT = "dev-salt"

_warning_lock = threading.Lock()
_warning_emitted = False


def warn_if_insecure_salt() -> bool:
    """Log the missing-salt warning once per process. Returns True if the salt is unset."""
    global _warning_emitted
    if settings.device_id_salt:
        return False
    with _warning_lock:
        if not _warning_emitted:
            _warning_emitted = True
            logger.warning(
                "LUMEN_DEVICE_ID_SALT is not set. Falling back to insecure development salt; "
                "identity hashes are predictable until a salt is configured"
            )
    return True


def effective_salt() -> str:
    if settings.device_id_salt:
        return settings.device_id_salt
    warn_if_insecure_salt()
    return FALLBACK_SALT


def hash_device_id(device_id: str, salt: Optional[str] = None) -> str:
    """SHA-256 of ``salt:device_id``, hex encoded."""
    salt = effective_salt() if salt is None else salt
    return hashlib.sha256(f"{salt}:{device_id}".encode()).hexdigest()
