"""
API tests for the emergency and caregiver routers.

Uses the SQL-backed contact directory so the whole path from HTTP request
to persisted notification attempt is exercised.
"""

import pytest
from fastapi.testclient import TestClient

from careguard.config import settings
from careguard.database import get_db
from careguard.main import app
from careguard.models.directory_models import (
    CaregiverRelationshipRecord,
    EmergencyContactRecord,
    User,
)
from careguard.schemas.enums import NotificationChannel
from careguard.services.alert_engine import build_engine
from tests.conftest import InlineExecutor

PATIENT = {"X-User-Id": "patient-1"}
SPOUSE = {"X-User-Id": "spouse"}
STRANGER = {"X-User-Id": "stranger"}
INTERNAL = {"X-API-Key": "test-internal-key"}


@pytest.fixture
def seeded(session_factory):
    db = session_factory()
    try:
        db.add_all([
            User(id="patient-1", name="Pat Doe", phone="+15550009999", role="patient"),
            User(id="spouse", name="Sam Doe", phone="+15550001111", email="sam@example.com",
                 push_token="token-sam", role="caregiver"),
            User(id="stranger", name="Stan Ger", role="patient"),
            EmergencyContactRecord(
                id="contact-alice", patient_id="patient-1", name="Alice", phone="+15550002222",
                priority=1, role="primary", notification_methods=["sms", "call"],
            ),
            EmergencyContactRecord(
                id="contact-bob", patient_id="patient-1", name="Bob", phone="+15550003333",
                priority=2, role="secondary", notification_methods=["sms"],
                notification_preferences={"quietHours": {"enabled": "not-a-bool"}},
            ),
            CaregiverRelationshipRecord(
                id="rel-spouse", patient_id="patient-1", caregiver_id="spouse",
                role="primary", status="active",
            ),
        ])
        db.commit()
    finally:
        db.close()


@pytest.fixture
def api_engine(session_factory, sinks, emergency_services, clock, seeded):
    return build_engine(
        session_factory,
        settings,
        sinks=sinks,
        emergency_services_sink=emergency_services,
        executor=InlineExecutor(),
        delivery_executor=InlineExecutor(),
        clock=clock,
    )


@pytest.fixture
def client(api_engine, session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.engine = api_engine
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.engine = None


def _create(client, alert_type="critical_vital_high", **extra):
    response = client.post("/api/emergency/alerts", json={"type": alert_type, **extra}, headers=PATIENT)
    assert response.status_code == 201, response.text
    return response.json()


class TestAuthentication:
    def test_missing_user_header(self, client):
        response = client.post("/api/emergency/alerts", json={"type": "no_response"})
        assert response.status_code == 401

    def test_unknown_user(self, client):
        response = client.get("/api/emergency/alerts", headers={"X-User-Id": "ghost"})
        assert response.status_code == 401

    def test_internal_endpoint_requires_key(self, client):
        assert client.post("/api/emergency/_internal/escalate").status_code == 401
        response = client.post("/api/emergency/_internal/escalate", headers={"X-API-Key": "wrong"})
        assert response.status_code == 401

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"


class TestEmergencyAlertsApi:
    def test_create_alert(self, client, sinks):
        body = _create(client, location={"lat": 40.0, "lng": -73.0, "address": "1 Main St"})

        assert body["severity"] == "critical"
        assert body["status"] == "active"
        assert body["escalation_level"] == 0
        assert body["location_address"] == "1 Main St"
        # Priority 1 tier: Alice and the primary caregiver
        assert set(sinks[NotificationChannel.SMS].destinations()) >= {"+15550002222", "+15550001111"}
        assert "+15550003333" not in sinks[NotificationChannel.SMS].destinations()

    def test_invalid_type_rejected(self, client):
        response = client.post("/api/emergency/alerts", json={"type": "critical_bp"}, headers=PATIENT)
        assert response.status_code == 422

    def test_duplicate_returns_same_alert(self, client):
        first = _create(client, "no_response")
        second = _create(client, "no_response")
        assert first["id"] == second["id"]

    def test_sos(self, client, emergency_services):
        response = client.post("/api/emergency/sos", json={"notes": "chest pain"}, headers=PATIENT)

        assert response.status_code == 201
        body = response.json()
        assert body["alert_type"] == "manual_trigger"
        assert body["escalation_level"] == 2
        assert body["bypass_escalation"] is True
        assert emergency_services.payloads[0].patient_name == "Pat Doe"

    def test_alert_detail_for_patient_and_caregiver(self, client):
        alert = _create(client)

        for headers in (PATIENT, SPOUSE):
            response = client.get(f"/api/emergency/alerts/{alert['id']}", headers=headers)
            assert response.status_code == 200
            detail = response.json()
            assert detail["alert"]["id"] == alert["id"]
            assert {n["channel"] for n in detail["notifications"]} >= {"sms", "call"}

    def test_alert_detail_forbidden_for_stranger(self, client):
        alert = _create(client)
        response = client.get(f"/api/emergency/alerts/{alert['id']}", headers=STRANGER)
        assert response.status_code == 403
        assert response.json()["type"] == "access_denied"

    def test_alert_not_found(self, client):
        response = client.get("/api/emergency/alerts/does-not-exist", headers=PATIENT)
        assert response.status_code == 404
        assert response.json()["type"] == "not_found"

    def test_acknowledge_then_conflict(self, client):
        alert = _create(client)
        url = f"/api/emergency/alerts/{alert['id']}/acknowledge"

        first = client.post(url, json={"notes": "calling now"}, headers=SPOUSE)
        assert first.status_code == 200
        assert first.json()["status"] == "acknowledged"
        assert first.json()["acknowledged_by"] == "spouse"

        second = client.post(url, json={}, headers=SPOUSE)
        assert second.status_code == 409
        assert second.json()["type"] == "invalid_state"

    def test_resolve_false_alarm(self, client):
        alert = _create(client, "manual_trigger")
        response = client.post(
            f"/api/emergency/alerts/{alert['id']}/resolve",
            json={"was_false_alarm": True, "notes": "button pressed by mistake"},
            headers=PATIENT,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "false_alarm"
        assert response.json()["was_false_alarm"] is True

    def test_list_and_active(self, client):
        vital = _create(client)
        _create(client, "medication_missed")
        client.post(f"/api/emergency/alerts/{vital['id']}/resolve", json={}, headers=PATIENT)

        active = client.get("/api/emergency/alerts/active", headers=PATIENT).json()
        assert [a["alert_type"] for a in active] == ["medication_missed"]
        resolved = client.get("/api/emergency/alerts", params={"status": "resolved"}, headers=PATIENT).json()
        assert [a["id"] for a in resolved] == [vital["id"]]

    def test_internal_escalation_sweep(self, client, clock):
        alert = _create(client)
        clock.advance(minutes=6)

        response = client.post("/api/emergency/_internal/escalate", headers=INTERNAL)

        assert response.status_code == 200
        body = response.json()
        assert body["escalated_count"] == 1
        assert body["details"][0]["alert_id"] == alert["id"]


class TestCaregiverApi:
    def test_pending_and_acknowledge(self, client):
        alert = _create(client)

        pending = client.get("/api/caregivers/notifications", headers=SPOUSE).json()
        assert len(pending) == 1
        assert pending[0]["original_alert_id"] == alert["id"]

        response = client.post(f"/api/caregivers/notifications/{pending[0]['id']}/acknowledge", headers=SPOUSE)
        assert response.status_code == 200
        assert response.json()["status"] == "acknowledged"

        # The alert itself is still awaiting a response
        detail = client.get(f"/api/emergency/alerts/{alert['id']}", headers=PATIENT).json()
        assert detail["alert"]["status"] == "active"

    def test_acknowledge_someone_elses_notification(self, client):
        _create(client)
        pending = client.get("/api/caregivers/notifications", headers=SPOUSE).json()
        response = client.post(f"/api/caregivers/notifications/{pending[0]['id']}/acknowledge", headers=STRANGER)
        assert response.status_code == 404

    def test_log_action_and_activity(self, client):
        response = client.post(
            "/api/caregivers/actions",
            json={"patient_id": "patient-1", "action": "called_patient", "notes": "No answer"},
            headers=SPOUSE,
        )
        assert response.status_code == 201
        assert response.json()["caregiver_id"] == "spouse"

        activity = client.get("/api/caregivers/patients/patient-1/activity", headers=PATIENT).json()
        assert [a["action"] for a in activity] == ["called_patient"]

    def test_action_forbidden_without_relationship(self, client):
        response = client.post(
            "/api/caregivers/actions",
            json={"patient_id": "patient-1", "action": "added_note"},
            headers=STRANGER,
        )
        assert response.status_code == 403
        assert client.get("/api/caregivers/patients/patient-1/activity", headers=STRANGER).status_code == 403

    def test_internal_chain_sweep(self, client):
        assert client.post("/api/caregivers/_internal/escalations").status_code == 401
        response = client.post("/api/caregivers/_internal/escalations", headers=INTERNAL)
        assert response.json() == {"checked": 0}
