import pytest
from fastapi.testclient import TestClient

from realty_scheduling.core.config import get_settings
from realty_scheduling.main import app
from realty_scheduling.services.property_directory_store import clear_property_directory_store_cache


@pytest.fixture(autouse=True)
def reset_directory_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATA_STORE", "memory")
    clear_property_directory_store_cache()
    get_settings.cache_clear()
    yield
    clear_property_directory_store_cache()
    get_settings.cache_clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def test_property_and_broker_assignment_flow(client: TestClient) -> None:
    property_response = client.post(
        "/api/properties",
        json={"title": " Sunset Villa ", "address": "12 Palm Road", "city": "Cairo", "price": 250000},
    )
    assert property_response.status_code == 201
    property_id = property_response.json()["id"]
    assert property_response.json()["title"] == "Sunset Villa"

    primary = client.post("/api/brokers", json={"full_name": "Mona Adel", "email": "mona@example.com"}).json()
    secondary = client.post("/api/brokers", json={"full_name": "Sami Said", "email": "sami@example.com"}).json()

    client.post(f"/api/properties/{property_id}/brokers", json={"broker_id": secondary["id"]})
    client.post(f"/api/properties/{property_id}/brokers", json={"broker_id": primary["id"], "is_primary": True})
    reassigned = client.post(
        f"/api/properties/{property_id}/brokers",
        json={"broker_id": secondary["id"], "is_active": False},
    )
    assert reassigned.status_code == 201
    assert reassigned.json()["is_active"] is False

    listing = client.get(f"/api/properties/{property_id}/brokers")
    assert listing.status_code == 200
    brokers = listing.json()["brokers"]
    assert [broker["broker_id"] for broker in brokers] == [primary["id"], secondary["id"]]
    assert brokers[0]["is_primary"] is True
    assert brokers[0]["broker"]["full_name"] == "Mona Adel"

    assert client.get(f"/api/properties/{property_id}").json()["price"] == 250000
    assert client.get(f"/api/brokers/{primary['id']}").json()["email"] == "mona@example.com"


def test_directory_validation_and_not_found(client: TestClient) -> None:
    blank_property = client.post("/api/properties", json={"title": "", "address": "x", "city": "y"})
    bad_email = client.post("/api/brokers", json={"full_name": "Mona Adel", "email": "mona"})
    missing_property = client.get("/api/properties/404")
    missing_broker = client.get("/api/brokers/404")

    property_id = client.post(
        "/api/properties",
        json={"title": "Harbor Loft", "address": "4 Dock Street", "city": "Alexandria"},
    ).json()["id"]
    unknown_assignment = client.post(f"/api/properties/{property_id}/brokers", json={"broker_id": "404"})

    assert blank_property.status_code == 422
    assert bad_email.status_code == 422
    assert missing_property.status_code == 404
    assert missing_broker.status_code == 404
    assert unknown_assignment.status_code == 404
