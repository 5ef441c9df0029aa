from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from spinwheel.config import Settings
from spinwheel.main import (
    app,
    get_lead_sink,
    get_registry,
    get_settings,
    get_tracking_sink,
)
from spinwheel.session import SessionRegistry

from conftest import FakeLeadSink, FakeTrackingSink


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def client(registry, lead_sink, tracking_sink):
    # long spin so the server-side timer never races the tests
    test_settings = Settings(spin_duration_seconds=60, spin_settle_seconds=0.5, spin_min_revolutions=5)
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_lead_sink] = lambda: lead_sink
    app.dependency_overrides[get_tracking_sink] = lambda: tracking_sink
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _spin_and_complete(client: TestClient) -> dict:
    started = client.post("/api/spin").json()
    resp = client.post(f"/api/spin/{started['session_id']}/complete")
    assert resp.status_code == 200
    return resp.json()


def test_health(client) -> None:
    assert client.get("/health").json() == {"ok": True}


def test_prizes(client) -> None:
    payload = client.get("/api/prizes").json()
    assert payload["amounts"] == [500, 300, 200, 100, 100, 50, 20]
    assert len(payload["segments"]) == 7
    assert payload["probabilities"]["100"] == pytest.approx(1 / 6)


def test_start_spin(client, registry) -> None:
    resp = client.post("/api/spin")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["phase"] == "spinning"
    assert 1800 <= payload["terminal_angle"] < 2160
    assert payload["spin_duration_seconds"] == 60
    assert payload["min_revolutions"] == 5

    status = client.get(f"/api/spin/{payload['session_id']}").json()
    assert status["phase"] == "spinning"
    assert status["is_spinning"] is True
    assert status["prize_amount"] is None
    assert len(registry) == 1


def test_complete_is_idempotent(client) -> None:
    first = _spin_and_complete(client)
    assert first["phase"] == "resolved"
    assert first["prize_amount"] in {500, 300, 200, 100, 50, 20}

    again = client.post(f"/api/spin/{first['session_id']}/complete").json()
    assert again["prize_amount"] == first["prize_amount"]
    assert again["phase"] == "resolved"


def test_register_flow(client, registry, lead_sink, tracking_sink) -> None:
    resolved = _spin_and_complete(client)
    sid = resolved["session_id"]

    resp = client.post(
        f"/api/spin/{sid}/register",
        json={"email": "user@example.com"},
        headers={"x-forwarded-for": "203.0.113.5, 10.0.0.1", "user-agent": "pytest"},
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "message": "Email saved successfully",
        "prize_amount": resolved["prize_amount"],
    }
    assert len(lead_sink.saved) == 1
    assert lead_sink.saved[0].client_ip == "203.0.113.5"
    assert lead_sink.saved[0].user_agent == "pytest"
    assert len(tracking_sink.calls) == 1
    # finished sessions leave the registry
    assert client.get(f"/api/spin/{sid}").status_code == 404


def test_register_invalid_email(client, lead_sink) -> None:
    sid = _spin_and_complete(client)["session_id"]
    resp = client.post(f"/api/spin/{sid}/register", json={"email": "not-an-email"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"
    assert client.get(f"/api/spin/{sid}").json()["phase"] == "resolved"
    assert lead_sink.saved == []


def test_register_missing_email(client) -> None:
    sid = _spin_and_complete(client)["session_id"]
    resp = client.post(f"/api/spin/{sid}/register", json={})
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_register_before_resolution_conflicts(client) -> None:
    sid = client.post("/api/spin").json()["session_id"]
    resp = client.post(f"/api/spin/{sid}/register", json={"email": "user@example.com"})
    assert resp.status_code == 409
    assert resp.json()["code"] == "ILLEGAL_TRANSITION"


def test_register_persistence_failure(client, lead_sink) -> None:
    lead_sink.ok = False
    sid = _spin_and_complete(client)["session_id"]
    resp = client.post(f"/api/spin/{sid}/register", json={"email": "user@example.com"})
    assert resp.status_code == 500
    assert resp.json()["code"] == "PERSISTENCE_ERROR"
    assert client.get(f"/api/spin/{sid}").json()["phase"] == "resolved"


def test_discard_session(client, registry) -> None:
    sid = client.post("/api/spin").json()["session_id"]
    session = registry.get(sid)
    assert client.delete(f"/api/spin/{sid}").json() == {"ok": True}
    assert session.discarded
    assert client.get(f"/api/spin/{sid}").status_code == 404
    assert client.delete(f"/api/spin/{sid}").status_code == 404


@pytest.mark.parametrize("method,suffix", [
    ("get", ""),
    ("post", "/complete"),
    ("post", "/register"),
])
def test_unknown_session(client, method, suffix) -> None:
    kwargs = {"json": {"email": "user@example.com"}} if suffix == "/register" else {}
    resp = getattr(client, method)(f"/api/spin/nope{suffix}", **kwargs)
    assert resp.status_code == 404
    assert resp.json()["code"] == "HTTP_ERROR"


def test_save_email(client, lead_sink, tracking_sink) -> None:
    resp = client.post("/api/save-email", json={"email": "user@example.com", "prizeAmount": 200})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Email saved successfully"}
    assert lead_sink.saved[0].prize_amount == 200
    assert lead_sink.saved[0].birthday is None
    assert tracking_sink.calls[0][:2] == ("user@example.com", 200)


def test_save_email_birthday_variant(client, lead_sink) -> None:
    resp = client.post(
        "/api/save-email",
        json={"email": "user@example.com", "birthday": "1995-07-04", "prizeAmount": 50},
    )
    assert resp.status_code == 200
    assert lead_sink.saved[0].birthday.isoformat() == "1995-07-04"


@pytest.mark.parametrize("body", [
    {"prizeAmount": 100},
    {"email": "user@example.com"},
    {"email": "not-an-email", "prizeAmount": 100},
    {"email": "user@example.com", "prizeAmount": 0},
])
def test_save_email_validation(client, lead_sink, body) -> None:
    resp = client.post("/api/save-email", json=body)
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"
    assert lead_sink.saved == []


def test_save_email_sink_failure(client, lead_sink, tracking_sink) -> None:
    lead_sink.ok = False
    resp = client.post("/api/save-email", json={"email": "user@example.com", "prizeAmount": 100})
    assert resp.status_code == 500
    assert resp.json()["code"] == "PERSISTENCE_ERROR"
    assert len(tracking_sink.calls) == 1


def test_save_email_tracking_failure_is_invisible(client, lead_sink) -> None:
    app.dependency_overrides[get_tracking_sink] = lambda: FakeTrackingSink(exc=RuntimeError("graph down"))
    resp = client.post("/api/save-email", json={"email": "user@example.com", "prizeAmount": 100})
    assert resp.status_code == 200
    assert len(lead_sink.saved) == 1


def test_lead_sink_exception_on_save_email(client) -> None:
    app.dependency_overrides[get_lead_sink] = lambda: FakeLeadSink(exc=RuntimeError("boom"))
    resp = client.post("/api/save-email", json={"email": "user@example.com", "prizeAmount": 100})
    assert resp.status_code == 500


def test_env_check_hides_secrets(client) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(
        google_sheets_id="1AbCdEf",
        google_project_id="promo-wheel-project",
        google_private_key="",
        google_private_key_base64="c2VjcmV0",
        google_client_email="svc@promo-wheel-project.iam.gserviceaccount.com",
        meta_pixel_id="",
        meta_access_token="",
    )
    payload = client.get("/api/test-env").json()
    assert payload["has_google_sheets_id"] is True
    assert payload["has_google_private_key"] is True
    assert payload["has_meta_pixel_id"] is False
    assert payload["sheets_id_length"] == 7
    assert payload["project_id_preview"] == "promo-whee..."
    assert "c2VjcmV0" not in str(payload)
