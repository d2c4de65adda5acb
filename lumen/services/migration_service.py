"""One-shot identity transfer through migration tokens.

Unlike journey backup keys, a migration token is single-use and expires
after ``settings.migration_token_ttl_hours``. Redeeming it hands the whole
historical identity to the redeeming device (the route sets that identity
as the device cookie); nothing is merged.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlmodel import Session, col

from lumen.config import settings
from lumen.database import run_transaction
from lumen.errors import (
    MigrationTokenAlreadyUsed,
    MigrationTokenExpired,
    MigrationTokenInvalidFormat,
    MigrationTokenNotFound,
)
from lumen.models.migration import MigrationToken
from lumen.services.device_hash import hash_device_id
from lumen.utils.security import (
    TOKEN_LENGTH,
    TOKEN_PREVIEW_LENGTH,
    generate_migration_token,
    hash_token,
    is_well_formed_migration_token,
    normalize_migration_token,
)

logger = logging.getLogger(__name__)

MAX_GENERATION_ATTEMPTS = 5


@dataclass
class MigrationTokenPayload:
    token: str
    expires_at: datetime


@dataclass
class MigrationApplication:
    migrated_device_id: str
    created_at: datetime
    expires_at: datetime


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def create_migration_token_for_device(session: Session, device_id: str) -> MigrationTokenPayload:
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=settings.migration_token_ttl_hours)

    for _ in range(MAX_GENERATION_ATTEMPTS):
        token = generate_migration_token()
        token_hash = hash_token(token)
        if session.get(MigrationToken, token_hash) is None:
            break
    else:
        raise RuntimeError("Failed to generate a unique migration token")

    session.add(MigrationToken(
        token_hash=token_hash,
        token_preview=token[:TOKEN_PREVIEW_LENGTH],
        from_device_id=device_id,
        from_device_hash=hash_device_id(device_id),
        created_at=now,
        expires_at=expires_at,
    ))
    session.commit()

    logger.info("Created migration token %s... (expires %s)", token[:TOKEN_PREVIEW_LENGTH], expires_at.isoformat())
    return MigrationTokenPayload(token=token, expires_at=expires_at)


def apply_migration_token(session: Session, token: str, target_device_id: str) -> MigrationApplication:
    """Consume a migration token on behalf of ``target_device_id``.

    Raises one of the four MigrationToken* errors; each calls for a different
    remedy on the user's side.
    """
    normalized = normalize_migration_token(token)
    if len(normalized) != TOKEN_LENGTH or not is_well_formed_migration_token(normalized):
        raise MigrationTokenInvalidFormat()

    token_hash = hash_token(normalized)

    def work(session: Session) -> MigrationApplication:
        record = session.get(MigrationToken, token_hash)
        if record is None:
            raise MigrationTokenNotFound()
        if record.used_at is not None:
            raise MigrationTokenAlreadyUsed()

        now = datetime.now(timezone.utc)
        if _as_utc(record.expires_at) < now:
            raise MigrationTokenExpired()

        # Only the first redeemer flips used_at
        result = session.exec(
            update(MigrationToken)
            .where(col(MigrationToken.token_hash) == token_hash, col(MigrationToken.used_at).is_(None))
            .values(
                used_at=now,
                used_by_device_id=target_device_id,
                used_by_device_hash=hash_device_id(target_device_id),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise MigrationTokenAlreadyUsed()

        return MigrationApplication(
            migrated_device_id=record.from_device_id,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )

    application = run_transaction(session, work)
    logger.info(
        "Migration token %s... redeemed by %s",
        normalized[:TOKEN_PREVIEW_LENGTH], hash_device_id(target_device_id)[:12],
    )
    return application
