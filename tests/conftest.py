from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from horizons.db import Base
from horizons.main import app, get_db, scan_debouncer


def _make_client() -> TestClient:
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def client():
    scan_debouncer.reset()
    test_client = _make_client()
    with test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def tenant_id(client) -> int:
    resp = client.post("/api/v1/tenants", json={"name": "Green Horizons", "is_active": True})
    assert resp.status_code == 200
    return resp.json()["data"]["tenant_id"]


@pytest.fixture
def catalog(client) -> dict:
    h12 = client.post("/api/v1/harvest-rooms", json={"name": "H12"}).json()["data"]["harvest_room_id"]
    h9 = client.post("/api/v1/harvest-rooms", json={"name": "H9"}).json()["data"]["harvest_room_id"]
    strain = client.post(
        "/api/v1/strains",
        json={"name": "Blue Dream", "harvest_room_ids": [h12]},
    ).json()["data"]["strain_id"]
    bigs = client.post("/api/v1/bag-size-categories", json={"name": "BIGS", "price": 450}).json()["data"]
    smalls = client.post("/api/v1/bag-size-categories", json={"name": "SMALLS", "price": 200}).json()["data"]
    return {
        "rooms": {"H12": h12, "H9": h9},
        "strain_id": strain,
        "sizes": {"BIGS": bigs["size_category_id"], "SMALLS": smalls["size_category_id"]},
    }


@pytest.fixture
def make_bags(client, tenant_id, catalog):
    def _make(count: int = 3, weight: float = 5.0, size: str = "BIGS", room: str = "H12", **extra) -> list[dict]:
        payload = {
            "tenant_id": tenant_id,
            "harvest_room_id": catalog["rooms"][room],
            "strain_id": catalog["strain_id"],
            "size_category_id": catalog["sizes"][size],
            "weight": weight,
            "count": count,
        }
        payload.update(extra)
        resp = client.post("/api/v1/bags", json=payload)
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]["bags"]

    return _make


@pytest.fixture
def make_employee(client, tenant_id):
    roles: dict[str, int] = {}
    numbers = count(1)

    def _make(first_name: str = "Riley", last_name: str = "Seller", role: str | None = None) -> dict:
        n = next(numbers)
        profile = client.post(
            "/api/v1/profiles",
            json={"email": f"user{n}@greenhorizons.test", "first_name": first_name, "last_name": last_name},
        ).json()["data"]
        role_id = None
        if role is not None:
            if role not in roles:
                resp = client.post("/api/v1/roles", json={"tenant_id": tenant_id, "name": role})
                roles[role] = resp.json()["data"]["role_id"]
            role_id = roles[role]
        resp = client.post(
            "/api/v1/employees",
            json={"tenant_id": tenant_id, "profile_id": profile["profile_id"], "role_id": role_id},
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]

    return _make
