import re
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlmodel import func, select

from lumen.errors import IdentityKeyNotFound, InvalidIdentityKey, JourneyNotFound, StorageUnavailable
from lumen.models.journey import Journey, JourneyDevice, JourneyKey
from lumen.services.device_hash import hash_device_id
from lumen.services.journey_service import (
    attach_device_to_journey,
    create_journey_key_for_device,
    detach_device_from_journey,
    ensure_journey_for_device,
    get_journey_debug_snapshot,
    get_journey_status,
    resolve_journey_for_device,
)
from lumen.utils.security import hash_journey_key

KEY_PATTERN = re.compile(r"^[A-HJ-NP-Z2-9]{4}(-[A-HJ-NP-Z2-9]{4}){5}$")


def count(session, model) -> int:
    return session.exec(select(func.count()).select_from(model)).one()


# --- ensure ---

def test_ensure_creates_singleton_journey(session):
    journey = ensure_journey_for_device(session, "device-a")

    assert journey.journey_id == hash_device_id("device-a")
    assert journey.primary_device_id == "device-a"
    assert journey.device_ids == ["device-a"]
    assert journey.device_hashes == [hash_device_id("device-a")]


def test_ensure_is_idempotent(session):
    first = ensure_journey_for_device(session, "device-a")
    second = ensure_journey_for_device(session, "device-a")

    assert first == second
    assert count(session, Journey) == 1
    assert count(session, JourneyDevice) == 1


def test_concurrent_ensure_converges(database):
    def ensure(_):
        with database.session() as s:
            return ensure_journey_for_device(s, "racing-device").journey_id

    with ThreadPoolExecutor(max_workers=8) as pool:
        journey_ids = set(pool.map(ensure, range(16)))

    assert journey_ids == {hash_device_id("racing-device")}
    with database.session() as s:
        assert count(s, Journey) == 1
        assert count(s, JourneyDevice) == 1


def test_ensure_relinks_dangling_link(session):
    session.add(JourneyDevice(device_hash=hash_device_id("lost"), device_id="lost", journey_id="gone"))
    session.commit()

    assert resolve_journey_for_device(session, "lost") is None

    journey = ensure_journey_for_device(session, "lost")
    assert journey.journey_id == hash_device_id("lost")
    assert session.get(JourneyDevice, hash_device_id("lost")).journey_id == journey.journey_id


# --- backup keys ---

def test_create_key_stores_only_hash(session):
    key, journey = create_journey_key_for_device(session, "device-a")

    assert KEY_PATTERN.match(key)
    assert journey.last_key_preview == key[:9]

    record = session.get(JourneyKey, hash_journey_key(key))
    assert record is not None
    assert record.journey_id == journey.journey_id
    assert record.key_preview == key[:9]
    assert key not in record.key_hash


def test_keys_do_not_replace_each_other(session):
    first, _ = create_journey_key_for_device(session, "device-a")
    second, _ = create_journey_key_for_device(session, "device-a")

    assert first != second
    attach_device_to_journey(session, first, "device-b")
    attach_device_to_journey(session, second, "device-c")
    assert resolve_journey_for_device(session, "device-c").effective_device_id == "device-a"


# --- attach ---

def test_attach_links_device_to_primary(session):
    key, journey = create_journey_key_for_device(session, "device-a")

    attachment = attach_device_to_journey(session, key, "device-b")

    assert attachment.already_attached is False
    assert attachment.journey.journey_id == journey.journey_id
    assert attachment.journey.device_ids == ["device-a", "device-b"]
    resolution = resolve_journey_for_device(session, "device-b")
    assert resolution.effective_device_id == "device-a"
    assert resolution.is_alias is True
    assert resolve_journey_for_device(session, "device-a").is_alias is False


def test_attach_is_idempotent(session):
    key, _ = create_journey_key_for_device(session, "device-a")
    attach_device_to_journey(session, key, "device-b")

    again = attach_device_to_journey(session, key, "device-b")

    assert again.already_attached is True
    assert again.journey.device_ids == ["device-a", "device-b"]
    assert count(session, JourneyDevice) == 2


def test_primary_redeeming_own_key_is_already_attached(session):
    key, _ = create_journey_key_for_device(session, "device-a")
    assert attach_device_to_journey(session, key, "device-a").already_attached is True


def test_key_is_normalized_on_redemption(session):
    key, _ = create_journey_key_for_device(session, "device-a")
    typed = " " + key.replace("-", " ").lower() + " "

    attachment = attach_device_to_journey(session, typed, "device-b")

    assert attachment.journey.primary_device_id == "device-a"


def test_unknown_key_has_no_side_effects(session):
    create_journey_key_for_device(session, "device-a")
    before = (count(session, Journey), count(session, JourneyDevice), count(session, JourneyKey))

    with pytest.raises(IdentityKeyNotFound) as exc_info:
        attach_device_to_journey(session, "ABCD-EFGH-JKLM-NPQR-STUV-WXYZ", "device-b")

    assert exc_info.value.status_code == 404
    assert (count(session, Journey), count(session, JourneyDevice), count(session, JourneyKey)) == before
    assert resolve_journey_for_device(session, "device-b") is None


@pytest.mark.parametrize("key", ["", "   ", "--", "ab"])
def test_malformed_key_is_rejected(session, key):
    with pytest.raises(InvalidIdentityKey):
        attach_device_to_journey(session, key, "device-b")


def test_key_for_missing_journey_is_server_error(session):
    session.add(JourneyKey(key_hash=hash_journey_key("AAAA-BBBB-CCCC-DDDD-EEEE-FFFF"), journey_id="gone"))
    session.commit()

    with pytest.raises(JourneyNotFound) as exc_info:
        attach_device_to_journey(session, "AAAA-BBBB-CCCC-DDDD-EEEE-FFFF", "device-b")
    assert exc_info.value.status_code == 500


def test_attach_moves_device_out_of_its_own_singleton(session):
    ensure_journey_for_device(session, "device-b")
    key, journey = create_journey_key_for_device(session, "device-a")

    attachment = attach_device_to_journey(session, key, "device-b")

    assert attachment.previous_journey_id == hash_device_id("device-b")
    assert session.get(Journey, hash_device_id("device-b")) is None
    assert count(session, Journey) == 1


def test_moving_primary_leaves_old_primary_in_place(session):
    """A primary that moves away is not replaced on the journey it left."""
    key_x, journey_x = create_journey_key_for_device(session, "device-x")
    attach_device_to_journey(session, key_x, "device-y")
    key_z, journey_z = create_journey_key_for_device(session, "device-z")

    moved = attach_device_to_journey(session, key_z, "device-x")

    assert moved.previous_journey_id == journey_x.journey_id
    assert moved.journey.device_ids == ["device-z", "device-x"]
    old = session.get(Journey, journey_x.journey_id)
    assert old.device_ids == ["device-y"]
    assert old.primary_device_id == "device-x"
    # The remaining member still resolves to the departed primary
    assert resolve_journey_for_device(session, "device-y").effective_device_id == "device-x"
    assert resolve_journey_for_device(session, "device-x").effective_device_id == "device-z"


# --- detach ---

def test_detach_primary_reassigns_primary(session):
    key, journey = create_journey_key_for_device(session, "device-a")
    attach_device_to_journey(session, key, "device-b")

    assert detach_device_from_journey(session, "device-a") == journey.journey_id

    record = session.get(Journey, journey.journey_id)
    assert record.primary_device_id == "device-b"
    assert record.primary_device_hash == hash_device_id("device-b")
    assert record.device_ids == ["device-b"]
    assert resolve_journey_for_device(session, "device-a") is None


def test_detach_last_member_deletes_journey_and_keys(session):
    key, journey = create_journey_key_for_device(session, "device-a")

    detach_device_from_journey(session, "device-a")

    assert session.get(Journey, journey.journey_id) is None
    assert count(session, JourneyKey) == 0
    assert count(session, JourneyDevice) == 0
    with pytest.raises(IdentityKeyNotFound):
        attach_device_to_journey(session, key, "device-b")


def test_detach_unlinked_device(session):
    assert detach_device_from_journey(session, "nobody") is None


# --- status / debug ---

def test_status_for_alias(session):
    key, journey = create_journey_key_for_device(session, "device-a")
    attach_device_to_journey(session, key, "device-b")

    status = get_journey_status(session, "device-b")

    assert status.journey_id == journey.journey_id
    assert status.effective_device_id == "device-a"
    assert status.is_primary is False
    assert status.attached_devices == 2
    assert status.attached_device_ids == ["device-a", "device-b"]
    assert status.last_key_preview == key[:9]
    assert status.local_has_history is False


def test_status_creates_journey_on_first_use(session):
    status = get_journey_status(session, "fresh")

    assert status.is_primary is True
    assert status.attached_devices == 1
    assert status.last_key_preview is None


def test_debug_snapshot(session):
    key, _ = create_journey_key_for_device(session, "device-a")

    snapshot = get_journey_debug_snapshot(session, "device-a")

    assert snapshot.last_key_preview == key[:9]
    assert snapshot.attached_devices == ["device-a"]
    assert get_journey_debug_snapshot(session, "nobody") is None


def test_concurrent_attach_loses_no_member(database):
    with database.session() as s:
        key, journey = create_journey_key_for_device(s, "device-a")
    devices = [f"device-{n}" for n in range(16)]

    def attach(device_id):
        with database.session() as s:
            try:
                attach_device_to_journey(s, key, device_id)
            except StorageUnavailable:
                return None
            return device_id

    with ThreadPoolExecutor(max_workers=16) as pool:
        attached = {device_id for device_id in pool.map(attach, devices) if device_id}

    assert attached
    with database.session() as s:
        record = s.get(Journey, journey.journey_id)
        assert set(record.device_ids) == attached | {"device-a"}
        assert len(record.device_ids) == len(record.device_hashes)
        assert count(s, JourneyDevice) == len(attached) + 1
        for device_id in attached:
            assert resolve_journey_for_device(s, device_id).effective_device_id == "device-a"
