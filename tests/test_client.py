import json
import re

import httpx
import pytest

from lumen.client.api import LumenAPIError, LumenClient
from lumen.client.device_store import DeviceIdentifierStore, generate_device_id

COOKIE = "lumen_device_id"


def make_store(tmp_path, name: str, cookie_value=None) -> DeviceIdentifierStore:
    cookies = httpx.Cookies()
    if cookie_value is not None:
        cookies.set(COOKIE, cookie_value, domain="", path="/")
    return DeviceIdentifierStore(tmp_path / name / "device.json", cookies=cookies, cookie_name=COOKIE)


def write_local(store: DeviceIdentifierStore, device_id: str) -> None:
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text(json.dumps({"deviceId": device_id}))


# --- store ---

def test_generated_id_format():
    assert re.match(r"^device_\d{13}_[0-9a-f]{8}$", generate_device_id())
    assert generate_device_id() != generate_device_id()


def test_get_or_create_persists_both_copies(tmp_path):
    store = make_store(tmp_path, "a")

    device_id = store.get_or_create()

    assert json.loads(store.path.read_text()) == {"deviceId": device_id}
    assert store.cookies.get(COOKIE) == device_id
    assert store.get_or_create() == device_id


def test_missing_cookie_is_repaired(tmp_path):
    store = make_store(tmp_path, "a")
    write_local(store, "device-local")

    assert store.load() == "device-local"
    assert store.cookies.get(COOKIE) == "device-local"


def test_missing_local_copy_is_repaired(tmp_path):
    store = make_store(tmp_path, "a", cookie_value="device-cookie")

    assert store.load() == "device-cookie"
    assert json.loads(store.path.read_text()) == {"deviceId": "device-cookie"}


def test_mismatch_prefers_local(tmp_path, caplog):
    store = make_store(tmp_path, "a", cookie_value="device-cookie")
    write_local(store, "device-local")

    assert store.load() == "device-local"
    assert store.last_mismatch == ("device-local", "device-cookie")
    assert store.cookies.get(COOKIE) == "device-local"
    assert "mismatch" in caplog.text


def test_corrupt_local_copy_counts_as_missing(tmp_path):
    store = make_store(tmp_path, "a", cookie_value="device-cookie")
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json")

    assert store.load() == "device-cookie"


def test_clear(tmp_path):
    store = make_store(tmp_path, "a")
    store.get_or_create()

    store.clear()

    assert not store.path.exists()
    assert store.cookies.get(COOKIE) is None
    assert store.load() is None


# --- client against the app ---

def test_client_journey_round(client, tmp_path):
    laptop = LumenClient(client, make_store(tmp_path, "laptop"))
    phone = LumenClient(client, make_store(tmp_path, "phone"))
    laptop_id = laptop.store.get_or_create()

    key = laptop.create_backup_key()["identity_key"]
    attached = phone.redeem_backup_key(key)

    assert attached["status"]["effective_device_id"] == laptop_id
    # The server's cookie refresh is mirrored into the phone's store
    assert phone.store.load() == laptop_id
    assert phone.journey_status()["status"]["is_primary"] is True
    assert phone.user_stats()["device_id"] == laptop_id


def test_client_migration_and_purge(client, tmp_path):
    old = LumenClient(client, make_store(tmp_path, "old"))
    new = LumenClient(client, make_store(tmp_path, "new"))
    old_id = old.store.get_or_create()

    token = old.create_migration_token()["token"]
    assert new.apply_migration_token(token) == {"migrated_device_id": old_id}
    assert new.store.load() == old_id

    new.purge()
    assert new.store.load() is None


def test_client_raises_api_errors(client, tmp_path):
    lumen = LumenClient(client, make_store(tmp_path, "a"))

    with pytest.raises(LumenAPIError) as exc_info:
        lumen.apply_migration_token("nope")

    assert exc_info.value.status_code == 400
    assert exc_info.value.error == "migration_invalid_format"

    with pytest.raises(LumenAPIError) as exc_info:
        lumen.debug()
    assert exc_info.value.status_code == 404
