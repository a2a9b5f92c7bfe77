"""
Tests for the SQL contact directory and the engine configuration service.
"""

from datetime import datetime

import pytest

from careguard.core.exceptions import ConfigurationError
from careguard.models.directory_models import (
    CaregiverRelationshipRecord,
    EmergencyContactRecord,
    User,
)
from careguard.schemas.enums import ContactRole, NotificationChannel
from careguard.services.alert_engine.config_service import (
    EscalationConfigService,
    EscalationEngineConfig,
)
from careguard.services.alert_engine.contact_directory import SqlContactDirectory


@pytest.fixture
def sql_directory(session_factory):
    db = session_factory()
    try:
        db.add_all([
            User(id="patient-1", name="Pat Doe", phone="+15550009999"),
            User(id="spouse", name="Sam Doe", phone="+15550001111", email="sam@example.com"),
            User(id="nurse", name="Nina Nurse", phone="+15550004444"),
            EmergencyContactRecord(
                id="c-neighbor", patient_id="patient-1", name="Neighbor", phone="+15550005555",
                priority=3, role="secondary", notification_methods=["sms", "fax"],
            ),
            EmergencyContactRecord(
                id="c-alice", patient_id="patient-1", name="Alice", phone="+15550002222",
                priority=1, role="primary",
                notification_preferences={"timezone": "Nowhere/Special"},
            ),
            EmergencyContactRecord(
                id="c-retired", patient_id="patient-1", name="Old Contact", phone="+15550006666",
                priority=1, is_active=False,
            ),
            CaregiverRelationshipRecord(
                id="rel-spouse", patient_id="patient-1", caregiver_id="spouse",
                role="secondary", status="active",
                notification_preferences={"medicationMissed": False},
            ),
            CaregiverRelationshipRecord(
                id="rel-nurse", patient_id="patient-1", caregiver_id="nurse",
                role="professional", status="paused",
                professional_schedule={"monday": {"start": "09:00", "end": "17:00"}},
            ),
        ])
        db.commit()
    finally:
        db.close()
    return SqlContactDirectory(session_factory)


class TestSqlContactDirectory:
    def test_contacts_ordered_by_priority(self, sql_directory):
        contacts = sql_directory.get_emergency_contacts("patient-1")
        assert [c.id for c in contacts] == ["c-alice", "spouse", "c-neighbor"]

    def test_inactive_contacts_excluded(self, sql_directory):
        ids = {c.id for c in sql_directory.get_emergency_contacts("patient-1")}
        assert "c-retired" not in ids
        assert "nurse" not in ids

    def test_unknown_methods_are_dropped(self, sql_directory):
        neighbor = sql_directory.get_emergency_contacts("patient-1")[-1]
        assert neighbor.supported_channels == [NotificationChannel.SMS]

    def test_default_methods(self, sql_directory):
        alice = sql_directory.get_emergency_contacts("patient-1")[0]
        assert alice.channels() == [NotificationChannel.SMS, NotificationChannel.CALL]

    def test_invalid_preferences_fall_back_to_defaults(self, sql_directory):
        alice = sql_directory.get_emergency_contacts("patient-1")[0]
        assert alice.preferences.timezone == "UTC"

    def test_caregiver_preferences_parsed(self, sql_directory):
        caregivers = sql_directory.get_active_caregivers("patient-1")
        assert [cg.caregiver_id for cg in caregivers] == ["spouse"]
        spouse = caregivers[0]
        assert spouse.role == ContactRole.SECONDARY
        assert spouse.caregiver_email == "sam@example.com"
        assert spouse.preferences.medication_missed is False

    def test_access_requires_active_relationship(self, sql_directory):
        assert sql_directory.has_caregiver_access("spouse", "patient-1")
        assert not sql_directory.has_caregiver_access("nurse", "patient-1")
        assert not sql_directory.has_caregiver_access("spouse", "patient-2")

    def test_patient_profile(self, sql_directory):
        assert sql_directory.get_patient_profile("patient-1").name == "Pat Doe"
        assert sql_directory.get_patient_profile("missing") is None

    def test_caregivers_ordered_by_role(self, sql_directory, session_factory):
        db = session_factory()
        try:
            db.add_all([
                User(id="aide", name="Ada Aide", phone="+15550007777"),
                User(id="daughter", name="Dana Doe", phone="+15550008888"),
                CaregiverRelationshipRecord(
                    id="rel-aide", patient_id="patient-1", caregiver_id="aide",
                    role="professional", status="active", created_at=datetime(2026, 1, 1),
                ),
                CaregiverRelationshipRecord(
                    id="rel-daughter", patient_id="patient-1", caregiver_id="daughter",
                    role="primary", status="active", created_at=datetime(2026, 3, 1),
                ),
            ])
            db.commit()
        finally:
            db.close()

        caregivers = sql_directory.get_active_caregivers("patient-1")
        assert [cg.caregiver_id for cg in caregivers] == ["daughter", "spouse", "aide"]

    def test_require_contacts(self, sql_directory):
        assert len(sql_directory.require_emergency_contacts("patient-1")) == 3
        with pytest.raises(ConfigurationError):
            sql_directory.require_emergency_contacts("patient-2")


class TestEscalationConfigService:
    def test_defaults(self):
        service = EscalationConfigService()
        assert service.get_tier_wait(0).total_seconds() == 300
        assert service.get_tier_wait(1).total_seconds() == 600
        assert service.get_caregiver_timeout().total_seconds() == 300
        assert service.config.caregiver_max_escalation_levels == 3

    def test_update_and_reset(self):
        service = EscalationConfigService()
        service.update_config({"tier2_wait_minutes": 20, "call_enabled": False})
        assert service.get_tier_wait(1).total_seconds() == 1200
        assert NotificationChannel.CALL not in service.config.enabled_channels()

        service.reset_to_defaults()
        assert service.config == EscalationEngineConfig()

    def test_unknown_keys_rejected(self):
        service = EscalationConfigService()
        with pytest.raises(ValueError):
            service.update_config({"tier3_wait_minutes": 1})
        assert service.config == EscalationEngineConfig()
