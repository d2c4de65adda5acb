"""User statistics lookups.

Stats are keyed by identity hash. Rows written before hashing was introduced
are keyed by the raw device id and are only read as a fallback.
"""

from typing import Optional

from sqlmodel import Session

from lumen.models.stats import UserStats
from lumen.services.device_hash import hash_device_id


def get_user_stats(session: Session, device_id: str) -> Optional[UserStats]:
    stats = session.get(UserStats, hash_device_id(device_id))
    if stats is None:
        stats = session.get(UserStats, device_id)
    return stats


def has_meaningful_stats(stats: Optional[UserStats]) -> bool:
    if stats is None:
        return False
    return (
        (stats.messages_sent or 0) > 0
        or (stats.replies_given or 0) > 0
        or (stats.replies_received or 0) > 0
        or (stats.karma_score or 0) > 0
        or (stats.replies_unread or 0) > 0
    )
