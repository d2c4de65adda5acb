"""Journey store, resolver and backup-key exchange.

A journey links several device identifiers into one identity. Each device
hash has at most one ``JourneyDevice`` link; the journey's primary device is
the identity every linked device resolves to.

All writes run through ``run_transaction``. Journey rows are only modified
with a compare-and-set on ``version``, so two requests racing on the same
journey never overwrite each other's member lists; the loser is retried.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, update
from sqlmodel import Session, col

from lumen.database import TransactionConflict, run_transaction
from lumen.errors import IdentityKeyNotFound, InvalidIdentityKey, JourneyNotFound
from lumen.models.journey import Journey, JourneyDevice, JourneyKey
from lumen.services.device_hash import hash_device_id
from lumen.services.stats_service import get_user_stats, has_meaningful_stats
from lumen.utils.security import (
    KEY_GROUP_LENGTH,
    generate_journey_key,
    hash_journey_key,
    journey_key_preview,
    normalize_journey_key,
)

logger = logging.getLogger(__name__)


@dataclass
class JourneySnapshot:
    journey_id: str
    primary_device_id: str
    primary_device_hash: str
    device_ids: list[str] = field(default_factory=list)
    device_hashes: list[str] = field(default_factory=list)
    last_key_preview: Optional[str] = None

    @classmethod
    def from_record(cls, journey: Journey) -> "JourneySnapshot":
        return cls(
            journey_id=journey.id,
            primary_device_id=journey.primary_device_id,
            primary_device_hash=journey.primary_device_hash or hash_device_id(journey.primary_device_id),
            device_ids=list(journey.device_ids or []),
            device_hashes=list(journey.device_hashes or []),
            last_key_preview=journey.last_key_preview,
        )


@dataclass
class JourneyResolution:
    effective_device_id: str
    primary_device_id: str
    primary_device_hash: str
    journey_id: str
    is_alias: bool
    attached_devices: list[str]
    attached_device_hashes: list[str]


@dataclass
class JourneyDebugSnapshot(JourneyResolution):
    last_key_preview: Optional[str] = None


@dataclass
class JourneyAttachment:
    journey: JourneySnapshot
    already_attached: bool
    attached_device_id: str
    attached_device_hash: str
    previous_journey_id: Optional[str] = None


@dataclass
class JourneyStatus:
    journey_id: str
    effective_device_id: str
    primary_device_id: str
    is_primary: bool
    attached_devices: int
    attached_device_ids: list[str]
    attached_device_hashes: list[str]
    last_key_preview: Optional[str]
    local_has_history: bool


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _with(values: list[str], value: str) -> list[str]:
    return values if value in values else [*values, value]


def _without(values: list[str], value: str) -> list[str]:
    return [v for v in values if v != value]


def _compare_and_set(session: Session, journey: Journey, **values) -> None:
    """Write ``values`` only if the journey is unchanged since it was read."""
    expected = journey.version
    values.update(version=expected + 1, updated_at=_now())
    result = session.exec(
        update(Journey)
        .where(col(Journey.id) == journey.id, col(Journey.version) == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise TransactionConflict(f"journey {journey.id[:12]} changed concurrently")
    session.expire(journey)


def _delete_journey(session: Session, journey: Journey) -> None:
    """Delete an empty journey together with every key that points at it."""
    session.exec(
        delete(JourneyKey)
        .where(col(JourneyKey.journey_id) == journey.id)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(
        delete(Journey)
        .where(col(Journey.id) == journey.id, col(Journey.version) == journey.version)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise TransactionConflict(f"journey {journey.id[:12]} changed concurrently")
    session.expunge(journey)
    logger.info("Deleted empty journey %s", journey.id[:12])


def _remove_member(
    session: Session,
    journey_id: str,
    device_id: str,
    device_hash: str,
    reassign_primary: bool,
) -> None:
    journey = session.get(Journey, journey_id)
    if journey is None:
        return

    device_ids = _without(journey.device_ids or [], device_id)
    device_hashes = _without(journey.device_hashes or [], device_hash)
    if not device_ids:
        _delete_journey(session, journey)
        return

    values = {"device_ids": device_ids, "device_hashes": device_hashes}
    if reassign_primary and journey.primary_device_hash == device_hash:
        values["primary_device_id"] = device_ids[0]
        values["primary_device_hash"] = hash_device_id(device_ids[0])
    _compare_and_set(session, journey, **values)


# --- Journey store ---

def ensure_journey_for_device(session: Session, device_id: str) -> JourneySnapshot:
    """Return the device's journey, creating a singleton journey if it has none.

    Concurrent first calls for the same device race on the journey and link
    primary keys; the loser retries, finds the winner's rows and returns them.
    """
    device_hash = hash_device_id(device_id)

    def work(session: Session) -> JourneySnapshot:
        link = session.get(JourneyDevice, device_hash)
        if link is not None:
            journey = session.get(Journey, link.journey_id)
            if journey is not None:
                return JourneySnapshot.from_record(journey)
            logger.warning("Device %s linked to missing journey %s, relinking", device_hash[:12], link.journey_id[:12])
            session.delete(link)
            session.flush()

        now = _now()
        journey = session.get(Journey, device_hash)
        if journey is None:
            session.add(Journey(
                id=device_hash,
                primary_device_id=device_id,
                primary_device_hash=device_hash,
                device_ids=[device_id],
                device_hashes=[device_hash],
                created_at=now,
                updated_at=now,
            ))
            session.flush()
        else:
            # The device created this journey earlier, left it, and is back
            _compare_and_set(
                session,
                journey,
                device_ids=_with(journey.device_ids or [], device_id),
                device_hashes=_with(journey.device_hashes or [], device_hash),
            )

        session.add(JourneyDevice(
            device_hash=device_hash,
            device_id=device_id,
            journey_id=device_hash,
            attached_at=now,
            last_seen_at=now,
        ))
        session.flush()
        return JourneySnapshot.from_record(session.get(Journey, device_hash))

    return run_transaction(session, work)


def attach_device_to_journey(session: Session, identity_key: str, device_id: str) -> JourneyAttachment:
    """Redeem a backup key: link ``device_id`` into the key's journey.

    Idempotent for a device already in that journey. A device that belongs
    to another journey is moved; the old journey loses the member (and is
    deleted if that empties it) but keeps its primary as-is.
    """
    normalized = normalize_journey_key(identity_key)
    if len(normalized.replace("-", "")) < KEY_GROUP_LENGTH:
        raise InvalidIdentityKey()

    key_hash = hash_journey_key(normalized)
    device_hash = hash_device_id(device_id)

    def work(session: Session) -> JourneyAttachment:
        key = session.get(JourneyKey, key_hash)
        if key is None:
            raise IdentityKeyNotFound()

        journey = session.get(Journey, key.journey_id)
        if journey is None:
            logger.error(
                "Identity key %s points at missing journey %s (key cleanup was skipped)",
                key.key_preview, key.journey_id[:12],
            )
            raise JourneyNotFound(key.journey_id)

        now = _now()
        link = session.get(JourneyDevice, device_hash)
        if link is not None and link.journey_id == journey.id:
            link.last_seen_at = now
            session.add(link)
            return JourneyAttachment(
                journey=JourneySnapshot.from_record(journey),
                already_attached=True,
                attached_device_id=device_id,
                attached_device_hash=device_hash,
            )

        previous_journey_id = None
        if link is not None:
            previous_journey_id = link.journey_id
            link.journey_id = journey.id
            link.device_id = device_id
            link.attached_at = now
            link.last_seen_at = now
            session.add(link)
            session.flush()
            _remove_member(session, previous_journey_id, device_id, device_hash, reassign_primary=False)
            logger.info(
                "Device %s moved from journey %s to %s",
                device_hash[:12], previous_journey_id[:12], journey.id[:12],
            )
        else:
            session.add(JourneyDevice(
                device_hash=device_hash,
                device_id=device_id,
                journey_id=journey.id,
                attached_at=now,
                last_seen_at=now,
            ))
            session.flush()

        journey = session.get(Journey, key.journey_id)
        _compare_and_set(
            session,
            journey,
            device_ids=_with(journey.device_ids or [], device_id),
            device_hashes=_with(journey.device_hashes or [], device_hash),
        )
        return JourneyAttachment(
            journey=JourneySnapshot.from_record(session.get(Journey, key.journey_id)),
            already_attached=False,
            attached_device_id=device_id,
            attached_device_hash=device_hash,
            previous_journey_id=previous_journey_id,
        )

    attachment = run_transaction(session, work)
    if not attachment.already_attached:
        logger.info("Device %s attached to journey %s", device_hash[:12], attachment.journey.journey_id[:12])
    return attachment


def detach_device_from_journey(session: Session, device_id: str) -> Optional[str]:
    """Unlink a device. Returns the journey id it left, or None if it had none."""
    device_hash = hash_device_id(device_id)

    def work(session: Session) -> Optional[str]:
        link = session.get(JourneyDevice, device_hash)
        if link is None:
            return None
        journey_id = link.journey_id
        session.delete(link)
        session.flush()
        _remove_member(session, journey_id, device_id, device_hash, reassign_primary=True)
        return journey_id

    return run_transaction(session, work)


# --- Journey resolver ---

def resolve_journey_for_device(session: Session, device_id: str) -> Optional[JourneyResolution]:
    """Read-only lookup of the identity a device resolves to. None if unlinked."""
    link = session.get(JourneyDevice, hash_device_id(device_id))
    if link is None:
        return None

    journey = session.get(Journey, link.journey_id)
    if journey is None:
        return None

    snapshot = JourneySnapshot.from_record(journey)
    return JourneyResolution(
        effective_device_id=snapshot.primary_device_id,
        primary_device_id=snapshot.primary_device_id,
        primary_device_hash=snapshot.primary_device_hash,
        journey_id=snapshot.journey_id,
        is_alias=snapshot.primary_device_id != device_id,
        attached_devices=snapshot.device_ids,
        attached_device_hashes=snapshot.device_hashes,
    )


def get_journey_debug_snapshot(session: Session, device_id: str) -> Optional[JourneyDebugSnapshot]:
    resolution = resolve_journey_for_device(session, device_id)
    if resolution is None:
        return None
    journey = session.get(Journey, resolution.journey_id)
    return JourneyDebugSnapshot(
        **vars(resolution),
        last_key_preview=journey.last_key_preview if journey else None,
    )


def get_journey_status(session: Session, device_id: str) -> JourneyStatus:
    journey = ensure_journey_for_device(session, device_id)
    resolution = resolve_journey_for_device(session, device_id)

    effective_device_id = resolution.effective_device_id if resolution else journey.primary_device_id
    device_ids = resolution.attached_devices if resolution else journey.device_ids
    device_hashes = resolution.attached_device_hashes if resolution else journey.device_hashes

    return JourneyStatus(
        journey_id=journey.journey_id,
        effective_device_id=effective_device_id,
        primary_device_id=journey.primary_device_id,
        is_primary=effective_device_id == device_id,
        attached_devices=len(device_ids),
        attached_device_ids=device_ids,
        attached_device_hashes=device_hashes,
        last_key_preview=journey.last_key_preview,
        local_has_history=has_meaningful_stats(get_user_stats(session, device_id)),
    )


# --- Backup keys ---

def create_journey_key_for_device(session: Session, device_id: str) -> tuple[str, JourneySnapshot]:
    """Issue a new backup key for the device's journey.

    The plaintext key is returned here and nowhere else; only its salted hash
    is stored. Earlier keys stay valid.
    """
    journey = ensure_journey_for_device(session, device_id)
    identity_key = generate_journey_key()
    key_hash = hash_journey_key(identity_key)
    preview = journey_key_preview(identity_key)

    def work(session: Session) -> JourneySnapshot:
        record = session.get(Journey, journey.journey_id)
        if record is None:
            logger.error("Journey %s vanished while issuing a key", journey.journey_id[:12])
            raise JourneyNotFound(journey.journey_id)
        session.add(JourneyKey(key_hash=key_hash, journey_id=record.id, key_preview=preview))
        _compare_and_set(session, record, last_key_preview=preview)
        return JourneySnapshot.from_record(session.get(Journey, journey.journey_id))

    snapshot = run_transaction(session, work)
    logger.info("Issued backup key %s for journey %s", preview, snapshot.journey_id[:12])
    return identity_key, snapshot
