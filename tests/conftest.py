"""Shared fixtures: an isolated database and app per test."""

import os
import tempfile

# Setup environment before lumen.config is imported
os.environ.setdefault("LUMEN_DATA_DIR", tempfile.mkdtemp())
os.environ.setdefault("LUMEN_DB_PATH", os.path.join(os.environ["LUMEN_DATA_DIR"], "test.db"))
os.environ.setdefault("LUMEN_DEVICE_ID_SALT", "test-salt")

import pytest
from fastapi.testclient import TestClient

from lumen.database import Database
from lumen.main import create_app


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'lumen.db'}")
    db.init()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    with database.session() as s:
        yield s


@pytest.fixture
def app(database):
    return create_app(database)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def as_device(client):
    """Headers for a request from a device, with no stale cookie from earlier calls."""

    def headers(device_id: str) -> dict:
        client.cookies.clear()
        return {"X-Device-Id": device_id}

    return headers
