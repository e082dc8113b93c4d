from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from server import create_app

from conftest import NOW

HEADERS = {"X-Actor-Id": "user-1"}


@pytest.fixture
def client(settings, engine):
    app = create_app(settings, engine=engine, run_sweeper=False)
    with TestClient(app) as test_client:
        yield test_client


def blood_payload(**overrides):
    payload = {
        "hospital_id": "hosp-1",
        "required_by": (NOW + timedelta(days=1)).isoformat(),
        "blood_groups": [{"blood_group": "A+", "units": 1}],
        "urgency_level": "Emergency",
    }
    payload.update(overrides)
    return payload


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_actor_header_required(client):
    response = client.post("/requests/blood", json=blood_payload())
    assert response.status_code == 401


def test_create_and_track_blood_request(client):
    response = client.post("/requests/blood", json=blood_payload(), headers=HEADERS)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "success"
    assert len(body["request_ids"]) == 2

    tracked = client.get(f"/requests/{body['request_ids'][0]}", headers=HEADERS)
    assert tracked.status_code == 200
    assert tracked.json()["request"]["status"] == "Pending"

    batch = client.get(f"/requests/batch/{body['batch_id']}", headers=HEADERS)
    assert len(batch.json()) == 2

    emergency = client.get("/requests/emergency", headers=HEADERS)
    assert len(emergency.json()) == 2


def test_validation_errors_render_as_400(client):
    response = client.post(
        "/requests/blood",
        json=blood_payload(required_by=(NOW - timedelta(days=1)).isoformat()),
        headers=HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["kind"] == "validation_error"


def test_no_counterparties_renders_as_404(client):
    response = client.post("/requests/blood", json=blood_payload(hospital_id="hosp-remote"),
                           headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["kind"] == "no_eligible_counterparties"
    assert response.json()["details"]["retryable"] is False


def test_unknown_request_renders_as_404(client):
    response = client.get("/requests/BR-00000000-NOPE", headers=HEADERS)
    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


def test_status_update_and_terminal_state(client):
    created = client.post("/requests/blood", json=blood_payload(), headers=HEADERS).json()
    request_id = created["request_ids"][0]

    response = client.put(f"/requests/{request_id}/status", json={"status": "Bogus"}, headers=HEADERS)
    assert response.status_code == 400
    assert response.json()["kind"] == "invalid_transition"

    response = client.put(f"/requests/{request_id}/cancel", json={"reason": "duplicate"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["request"]["status"] == "Cancelled"

    response = client.put(f"/requests/{request_id}/status", json={"status": "Accepted"}, headers=HEADERS)
    assert response.status_code == 409
    assert response.json()["kind"] == "terminal_state_violation"


def test_inventory_counters(client):
    response = client.post("/inventory/ngo-a/adjust",
                           json={"blood_group": "A+", "delta": 5, "reason": "drive"}, headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["record"]["available"] == 5

    response = client.post("/inventory/ngo-a/reserve", json={"blood_group": "A+", "units": 10},
                           headers=HEADERS)
    assert response.status_code == 409
    assert response.json()["kind"] == "insufficient_stock"

    response = client.post("/inventory/ngo-a/reserve", json={"blood_group": "A+", "units": 2},
                           headers=HEADERS)
    assert response.json()["record"]["reserved"] == 2

    records = client.get("/inventory/records", params={"entity_id": "ngo-a"}, headers=HEADERS).json()
    assert [(r["available"], r["reserved"]) for r in records] == [(3, 2)]

    movements = client.get("/inventory/ngo-a/movements", headers=HEADERS).json()
    assert len(movements) == 2


def test_unit_lifecycle(client):
    response = client.post("/inventory/units", json={
        "blood_group": "B-",
        "donation_date": (NOW - timedelta(days=1)).isoformat(),
        "location_id": "ngo-a",
        "location_type": "NGO",
    }, headers=HEADERS)
    assert response.status_code == 201
    unit_id = response.json()["id"]

    response = client.put(f"/inventory/units/{unit_id}/available", headers=HEADERS)
    assert response.json()["unit_status"] == "available"

    response = client.post(f"/inventory/units/{unit_id}/transfer",
                           json={"to_id": "ngo-b", "to_type": "NGO", "reason": "rebalancing"},
                           headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["current_location"]["entity_id"] == "ngo-b"

    available = client.get("/inventory/units/available", params={"entity_id": "ngo-b"},
                           headers=HEADERS).json()
    assert [u["id"] for u in available] == [unit_id]

    response = client.post(f"/inventory/units/{unit_id}/quality-check",
                           json={"check_type": "compatibility", "result": "fail"}, headers=HEADERS)
    assert response.json()["unit_status"] == "discarded"

    reconcile = client.post("/inventory/ngo-b/reconcile", params={"blood_group": "B-"},
                            headers=HEADERS).json()
    assert reconcile["drift"] == 0

    sweep = client.post("/inventory/sweep", headers=HEADERS).json()
    assert sweep["expired_count"] == 0
