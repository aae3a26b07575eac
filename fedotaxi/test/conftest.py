import os
import tempfile

# must be set before the fedotaxi modules read their settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-fedotaxi-tests-0123456789")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "fedotaxi-test.log"))

import pytest
from fastapi.testclient import TestClient
from fedotaxi import db
from fedotaxi.config import settings
from fedotaxi.main import app

QUITO = (-0.1807, -78.4678)
ADMIN_EMAIL = "admin@fedotaxi.ec"
ADMIN_PASSWORD = "admin-secret"

_counter = {"n": 0}


def _unique(prefix):
    _counter["n"] += 1
    return "%s%d@fedotaxi.ec" % (prefix, _counter["n"])


def auth_headers(token):
    return {"Authorization": "Bearer " + token}


@pytest.fixture
def client(tmp_path, monkeypatch):
    # fresh SQLite database file per test
    engine = db.build_engine("sqlite+aiosqlite:///" + str(tmp_path / "fedotaxi.db"))
    monkeypatch.setattr(db, "engine", engine)
    monkeypatch.setattr(settings, "ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", ADMIN_PASSWORD)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers(client):
    r = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert r.status_code == 200, r.text
    return auth_headers(r.json()["jwt"])


@pytest.fixture
def make_passenger(client):
    def _make(email=None, password="secret123"):
        payload = {
            "email": email or _unique("passenger"),
            "password": password,
            "firstName": "Ana",
            "lastName": "Perez",
            "phone": "+593991234567",
            "role": "PASSENGER",
        }
        r = client.post("/api/auth/register", json=payload)
        assert r.status_code == 200, r.text
        body = r.json()
        return {"id": body["userId"], "email": payload["email"], "headers": auth_headers(body["jwt"])}

    return _make


@pytest.fixture
def make_driver(client):
    def _make(lat=None, lon=None, available=True, email=None):
        payload = {
            "email": email or _unique("driver"),
            "password": "secret123",
            "firstName": "Luis",
            "lastName": "Mora",
            "phone": "0987654321",
            "role": "DRIVER",
            "licenseNumber": "LIC-001",
            "vehiclePlate": "PBA-1234",
            "vehicleModel": "Chevrolet Aveo",
            "vehicleYear": "2019",
        }
        r = client.post("/api/auth/register", json=payload)
        assert r.status_code == 200, r.text
        body = r.json()
        headers = auth_headers(body["jwt"])
        if lat is not None and lon is not None:
            r = client.put("/api/drivers/location", json={"latitude": lat, "longitude": lon}, headers=headers)
            assert r.status_code == 200, r.text
        if available:
            r = client.put("/api/drivers/status", json={"available": True}, headers=headers)
            assert r.status_code == 200, r.text
        me = client.get("/api/drivers/me", headers=headers).json()
        return {"id": me["id"], "user_id": body["userId"], "email": payload["email"], "headers": headers}

    return _make
