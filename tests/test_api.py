"""Tests for the HTTP layer."""

import pytest
from fastapi.testclient import TestClient

from config import Settings, settings
from exceptions import StorageError
from main import app
from services.identity_service import IdentityService, get_identity_service
from stores.memory import InMemoryContactStore


@pytest.fixture
def client(memory_store):
    """Create a test FastAPI client over an in-memory store."""
    service = IdentityService(memory_store)
    app.dependency_overrides[get_identity_service] = lambda: service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_identify_creates_and_links_contacts(client):
    response = client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})
    assert response.status_code == 200
    assert response.json() == {
        "primaryContactId": 1,
        "emails": ["lorraine@hillvalley.edu"],
        "phoneNumbers": ["123456"],
        "secondaryContactIds": [],
    }

    response = client.post("/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": "123456"})
    assert response.status_code == 200
    assert response.json() == {
        "primaryContactId": 1,
        "emails": ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"],
        "phoneNumbers": ["123456"],
        "secondaryContactIds": [2],
    }


def test_identify_merges_primaries(client):
    client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "919191"})
    client.post("/identify", json={"email": "biffsucks@hillvalley.edu", "phoneNumber": "717171"})

    response = client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "717171"})

    assert response.status_code == 200
    assert response.json() == {
        "primaryContactId": 1,
        "emails": ["george@hillvalley.edu", "biffsucks@hillvalley.edu"],
        "phoneNumbers": ["919191", "717171"],
        "secondaryContactIds": [2],
    }


def test_identify_accepts_numeric_phone(client):
    response = client.post("/identify", json={"phoneNumber": 123456})
    assert response.status_code == 200
    assert response.json()["phoneNumbers"] == ["123456"]


@pytest.mark.parametrize("payload", [{}, {"email": None, "phoneNumber": None}, {"email": "", "phoneNumber": "null"}])
def test_identify_requires_a_fragment(client, memory_store, payload):
    response = client.post("/identify", json=payload)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "ValidationError"
    assert body["message"] == "at least one of email or phoneNumber is required."
    assert memory_store.contacts() == []


def test_identify_rejects_malformed_fields(client):
    response = client.post("/identify", json={"email": "not-an-email"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "ValidationError"
    assert body["details"]["errors"][0]["field"] == "body -> email"


def test_owner_scope_header_partitions_contacts(client):
    header = settings.OWNER_SCOPE_HEADER
    first = client.post("/identify", json={"email": "a@x.com"}, headers={header: "tenant-a"})
    second = client.post("/identify", json={"email": "a@x.com"}, headers={header: "tenant-b"})
    default = client.post("/identify", json={"email": "a@x.com"})
    again = client.post("/identify", json={"email": "a@x.com"}, headers={header: "tenant-a"})

    ids = [r.json()["primaryContactId"] for r in (first, second, default, again)]
    assert ids == [1, 2, 3, 1]


class FailingService(IdentityService):
    async def reconcile(self, owner_scope, email=None, phone_number=None):
        raise StorageError("contact store transaction failed", details={"cause": "OperationalError"})


@pytest.mark.parametrize("debug", [False, True])
def test_storage_failure_maps_to_server_error(monkeypatch, debug):
    monkeypatch.setattr(settings, "DEBUG", debug)
    app.dependency_overrides[get_identity_service] = lambda: FailingService(InMemoryContactStore())
    try:
        with TestClient(app) as client:
            response = client.post("/identify", json={"email": "a@x.com"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "StorageError"
    assert body["message"] == "Unable to process identity reconciliation request"
    if debug:
        assert body["details"] == {"reason": "contact store transaction failed", "cause": "OperationalError"}
    else:
        assert body["details"] is None


def test_production_never_exposes_storage_details(monkeypatch):
    monkeypatch.setattr(settings, "DEBUG", True)
    monkeypatch.setattr(Settings, "ENVIRONMENT", "production")
    app.dependency_overrides[get_identity_service] = lambda: FailingService(InMemoryContactStore())
    try:
        with TestClient(app) as client:
            response = client.post("/identify", json={"email": "a@x.com"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json()["details"] is None


def test_health_reports_storage_status(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["storage"] == {"backend": "InMemoryContactStore", "status": "connected"}


def test_health_unavailable_when_store_unreachable():
    class UnreachableStore(InMemoryContactStore):
        async def ping(self):
            return False

    service = IdentityService(UnreachableStore())
    app.dependency_overrides[get_identity_service] = lambda: service
    try:
        with TestClient(app) as client:
            response = client.get("/health")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"


def test_root_reports_version(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["version"] == settings.API_VERSION
