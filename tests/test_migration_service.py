from datetime import datetime, timedelta, timezone

import pytest

from lumen.errors import (
    MigrationTokenAlreadyUsed,
    MigrationTokenExpired,
    MigrationTokenInvalidFormat,
    MigrationTokenNotFound,
)
from lumen.models.migration import MigrationToken
from lumen.services.device_hash import hash_device_id
from lumen.services.migration_service import apply_migration_token, create_migration_token_for_device
from lumen.utils.security import KEY_ALPHABET, generate_migration_token, hash_token


def test_create_token(session):
    payload = create_migration_token_for_device(session, "old-phone")

    assert len(payload.token) == 20
    assert all(ch in KEY_ALPHABET for ch in payload.token)

    record = session.get(MigrationToken, hash_token(payload.token))
    assert record.token_preview == payload.token[:6]
    assert record.from_device_id == "old-phone"
    assert record.from_device_hash == hash_device_id("old-phone")
    assert record.used_at is None
    lifetime = payload.expires_at - datetime.now(timezone.utc)
    assert timedelta(hours=23) < lifetime <= timedelta(hours=24)


def test_apply_hands_over_identity(session):
    payload = create_migration_token_for_device(session, "old-phone")

    result = apply_migration_token(session, payload.token, "new-phone")

    assert result.migrated_device_id == "old-phone"
    record = session.get(MigrationToken, hash_token(payload.token))
    assert record.used_at is not None
    assert record.used_by_device_id == "new-phone"
    assert record.used_by_device_hash == hash_device_id("new-phone")


def test_token_is_single_use(session):
    payload = create_migration_token_for_device(session, "old-phone")
    apply_migration_token(session, payload.token, "new-phone")

    with pytest.raises(MigrationTokenAlreadyUsed) as exc_info:
        apply_migration_token(session, payload.token, "third-phone")
    assert exc_info.value.status_code == 409


def test_token_input_is_normalized(session):
    payload = create_migration_token_for_device(session, "old-phone")

    result = apply_migration_token(session, f"  {payload.token.lower()}\n", "new-phone")

    assert result.migrated_device_id == "old-phone"


def test_expired_token(session):
    payload = create_migration_token_for_device(session, "old-phone")
    record = session.get(MigrationToken, hash_token(payload.token))
    record.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    session.add(record)
    session.commit()

    with pytest.raises(MigrationTokenExpired) as exc_info:
        apply_migration_token(session, payload.token, "new-phone")

    assert exc_info.value.status_code == 410
    assert session.get(MigrationToken, hash_token(payload.token)).used_at is None


def test_unknown_token(session):
    with pytest.raises(MigrationTokenNotFound) as exc_info:
        apply_migration_token(session, generate_migration_token(), "new-phone")
    assert exc_info.value.status_code == 404


@pytest.mark.parametrize("token", ["", "ABC", "A" * 21, "0" * 20, "ABCDEFGHJKLMNPQRST1!"])
def test_malformed_token(session, token):
    with pytest.raises(MigrationTokenInvalidFormat) as exc_info:
        apply_migration_token(session, token, "new-phone")
    assert exc_info.value.status_code == 400
