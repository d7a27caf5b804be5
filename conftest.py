# FILE: conftest.py

import os
import tempfile

# must be set before config.py is imported
_DB_DIR = tempfile.mkdtemp(prefix="voyya-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["PUSH_BACKEND"] = "none"
os.environ["ADMIN_PHONES"] = "+15550000000"

import pytest
from fastapi.testclient import TestClient


@pytest.fixture()
def client():
    from main import app
    from database import Base, sync_engine

    with TestClient(app) as c:
        engine = sync_engine()
        with engine.begin() as conn:  # fresh rows per test
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())
        engine.dispose()
        yield c


@pytest.fixture()
def make_user(client):
    """Register + log in; returns (user dict, auth headers)."""
    def _make(phone: str, password: str = "testpass123", name: str = ""):
        r = client.post("/auth/register", json={"phone": phone, "password": password, "name": name})
        assert r.status_code == 200, r.text
        r = client.post("/auth/login", json={"phone": phone, "password": password})
        assert r.status_code == 200, r.text
        body = r.json()
        return body["user"], {"Authorization": f"Bearer {body['access_token']}"}
    return _make


@pytest.fixture()
def make_driver(client, make_user):
    def _make(phone: str, name: str = "Driver", **vehicle):
        user, headers = make_user(phone, name=name)
        r = client.post("/driver", json=vehicle, headers=headers)
        assert r.status_code == 200, r.text
        return user, headers
    return _make
