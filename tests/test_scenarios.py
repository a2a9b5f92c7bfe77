"""
End-to-end escalation scenarios driven by a controllable clock.
"""

from datetime import timedelta

import pytest

from careguard.models.alert_models import NotificationAttempt
from careguard.schemas.contacts import Location
from careguard.schemas.enums import AlertStatus, AlertType, ContactRole, NotificationPurpose
from tests.conftest import START, make_caregiver


@pytest.fixture
def caregivers(directory):
    return [
        directory.add_caregiver(make_caregiver("patient-1", "spouse", role=ContactRole.PRIMARY)),
        directory.add_caregiver(make_caregiver("patient-1", "sibling", role=ContactRole.SECONDARY)),
    ]


def _attempts(session_factory, alert_id, purpose):
    db = session_factory()
    try:
        return db.query(NotificationAttempt).filter(
            NotificationAttempt.alert_id == alert_id,
            NotificationAttempt.purpose == purpose.value
        ).all()
    finally:
        db.close()


class TestCriticalBloodPressure:
    """A 190/125 reading nobody answers, while a caregiver answers their own chain"""

    def test_full_timeline(self, engine, contacts, caregivers, clock, emergency_services, session_factory):
        home = Location(lat=47.6062, lng=-122.3321, address="12 Pine St")
        alert = engine.lifecycle.create(
            "patient-1", AlertType.CRITICAL_VITAL_HIGH, vital_sign_id="bp-190-125", location=home
        )
        assert (alert.severity, alert.escalation_level) == ("critical", 0)

        # Primary contact reached at creation time
        initial = _attempts(session_factory, alert.id, NotificationPurpose.ALERT)
        assert {a.recipient_contact_id for a in initial} == {"alice"}
        assert all(a.sent_at - START <= timedelta(seconds=10) for a in initial)

        chain = engine.caregivers.get_pending_notifications("spouse") + \
            engine.caregivers.get_pending_notifications("sibling")
        assert len(chain) == 2

        # T0+5: escalate to secondary contacts
        clock.advance(minutes=5, seconds=1)
        engine.escalation.escalate_unresponsive_alerts()
        engine.caregivers.check_pending_escalations()
        current = engine.lifecycle.get(alert.id, "patient-1")
        assert (current.status, current.escalation_level) == (AlertStatus.ESCALATED.value, 1)
        escalated_to = {a.recipient_contact_id for a in _attempts(session_factory, alert.id, NotificationPurpose.ESCALATION)}
        assert escalated_to == {"bob", "carol"}

        # The primary caregiver's window ran out too, so the chain moved on
        sibling_pending = engine.caregivers.get_pending_notifications("sibling")
        assert [n.escalation_level for n in sibling_pending] == [1, 0]
        assert sibling_pending[0].title.startswith("Escalation: ")

        # T0+6: a caregiver acknowledges their notification
        clock.advance(minutes=1)
        sibling_note = engine.caregivers.get_pending_notifications("sibling")[0]
        assert engine.caregivers.acknowledge(sibling_note.id, "sibling") is not None

        # T0+15: the alert itself is still unanswered and reaches emergency services
        clock.advance(minutes=9)
        engine.escalation.escalate_unresponsive_alerts()
        assert emergency_services.payloads == []
        clock.advance(seconds=1)
        engine.escalation.escalate_unresponsive_alerts()

        current = engine.lifecycle.get(alert.id, "patient-1")
        assert current.escalation_level == 2
        assert len(emergency_services.payloads) == 1
        assert emergency_services.payloads[0].location["address"] == "12 Pine St"

        # The caregiver chain stayed halted
        engine.caregivers.check_pending_escalations()
        clock.advance(minutes=30)
        engine.caregivers.check_pending_escalations()
        assert engine.caregivers.get_pending_notifications("spouse") == []
        assert engine.caregivers.get_pending_notifications("sibling") == []


class TestSos:
    def test_sos_goes_straight_to_emergency_services(self, engine, contacts, caregivers, clock, emergency_services):
        alert = engine.lifecycle.create(
            "patient-1",
            AlertType.MANUAL_TRIGGER,
            location=Location(lat=1.0, lng=2.0),
            bypass_escalation=True,
        )

        assert alert.escalation_level == 2
        assert len(emergency_services.payloads) == 1

        clock.advance(hours=1)
        assert engine.escalation.escalate_unresponsive_alerts().escalated_count == 0
        current = engine.lifecycle.get(alert.id, "patient-1")
        assert current.escalated_at is None
        assert current.status == AlertStatus.ACTIVE.value
        assert len(emergency_services.payloads) == 1
