"""Merge a secondary device's history into its journey's primary identity.

Runs after a new device attaches to a journey. There is no surrounding
transaction: each record is re-pointed in its own commit, so a merge that
stops halfway leaves some records moved and some not. Re-pointing is safe to
repeat; the stats step is not (see ``_merge_stats``).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from sqlmodel import Session, col, select

from lumen.models.content import Message, Response
from lumen.models.stats import UserStats
from lumen.services.device_hash import hash_device_id

logger = logging.getLogger(__name__)

COUNTER_FIELDS = ("messages_sent", "replies_given", "replies_received", "karma_score", "replies_unread")


@dataclass
class MergeResult:
    messages_updated: int = 0
    responses_updated: int = 0
    stats_merged: bool = False


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _earliest(a: datetime, b: datetime) -> datetime:
    return min(_as_utc(a), _as_utc(b))


def _latest(a: Optional[datetime], b: Optional[datetime]) -> Optional[datetime]:
    if a is None or b is None:
        value = a or b
        return _as_utc(value) if value else None
    return max(_as_utc(a), _as_utc(b))


def _repoint_records(
    session: Session,
    model: Union[type[Message], type[Response]],
    source_id: str,
    source_hash: str,
    target_id: str,
    target_hash: str,
) -> int:
    hashed = session.exec(select(model).where(col(model.device_hash) == source_hash)).all()
    legacy = session.exec(select(model).where(col(model.device_id) == source_id)).all()

    updated = 0
    processed: set[str] = set()
    for record in [*hashed, *legacy]:
        if record.id in processed:
            continue
        processed.add(record.id)
        if record.device_hash == target_hash and record.device_id != source_id:
            continue
        record.device_hash = target_hash
        if record.device_id == source_id:
            record.device_id = target_id
        session.add(record)
        session.commit()
        updated += 1
    return updated


def _merge_stats(session: Session, source_id: str, source_hash: str, target_id: str, target_hash: str) -> bool:
    """Fold every stats row of the source identity into the target's and delete them.

    Both identities may have a hashed row, a legacy raw-id row, or both. The
    result is always written under ``target_hash``; the target's legacy row
    is folded in and deleted along with the source rows.

    The upsert and the delete are separate commits. If the process dies
    between them, the source rows survive with their counters already added
    to the target, and running the merge again would count them twice.
    """
    sources = [row for row in (session.get(UserStats, source_hash), session.get(UserStats, source_id)) if row]
    if not sources:
        return False

    contributions = list(sources)
    target = session.get(UserStats, target_hash)
    legacy_target = None
    if target is None:
        legacy_target = session.get(UserStats, target_id)
        seed = legacy_target or sources[0]
        target = UserStats(
            device_key=target_hash,
            created_at=_as_utc(seed.created_at),
            last_active_at=_as_utc(seed.last_active_at),
            last_replies_seen_at=_latest(seed.last_replies_seen_at, None),
        )
        if legacy_target is not None:
            contributions.append(legacy_target)

    for row in contributions:
        for name in COUNTER_FIELDS:
            setattr(target, name, (getattr(target, name) or 0) + (getattr(row, name) or 0))
        target.created_at = _earliest(row.created_at, target.created_at)
        target.last_active_at = _latest(row.last_active_at, target.last_active_at)
        target.last_replies_seen_at = _latest(row.last_replies_seen_at, target.last_replies_seen_at)

    session.add(target)
    session.commit()

    for row in contributions:
        session.delete(row)
    session.commit()
    return True


def merge_device_path(session: Session, source_device_id: str, target_device_id: str) -> MergeResult:
    """Move content ownership and stats from ``source_device_id`` to ``target_device_id``."""
    if source_device_id == target_device_id:
        return MergeResult()

    source_hash = hash_device_id(source_device_id)
    target_hash = hash_device_id(target_device_id)

    result = MergeResult()
    result.messages_updated = _repoint_records(
        session, Message, source_device_id, source_hash, target_device_id, target_hash,
    )
    result.responses_updated = _repoint_records(
        session, Response, source_device_id, source_hash, target_device_id, target_hash,
    )
    result.stats_merged = _merge_stats(session, source_device_id, source_hash, target_device_id, target_hash)

    logger.info(
        "Merged device %s into %s: %d messages, %d responses, stats=%s",
        source_hash[:12], target_hash[:12],
        result.messages_updated, result.responses_updated, result.stats_merged,
    )
    return result
