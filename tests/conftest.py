"""
Pytest configuration for escalation engine tests

Every test gets its own SQLite database file, a controllable clock, and
recording fakes for the contact directory, notification sinks and audit log.
Background work runs inline so tests observe its effects immediately.
"""

import os
import sys
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest

# Configure the environment BEFORE importing any careguard modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ESCALATION_SCHEDULER_ENABLED"] = "false"
os.environ["NOTIFICATION_DRY_RUN"] = "true"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from careguard.config import settings
from careguard.database import Base, build_engine as build_db_engine, build_session_factory
from careguard import models  # noqa: F401
from careguard.schemas.contacts import (
    CaregiverRelationship,
    Contact,
    NotificationPreferences,
    PatientProfile,
)
from careguard.schemas.enums import ContactRole, NotificationChannel, RelationshipStatus
from careguard.services.alert_engine import build_engine
from careguard.services.alert_engine.audit import AuditLog
from careguard.services.alert_engine.contact_directory import ContactDirectory
from careguard.services.alert_engine.sinks import (
    EmergencyServicesSink,
    NotificationSink,
)

# Monday afternoon, UTC
START = datetime(2026, 3, 2, 14, 0)


class InlineExecutor(Executor):
    """Runs submitted work on the calling thread"""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSink(NotificationSink):
    def __init__(self, channel: NotificationChannel):
        self.channel = channel
        self.sent = []
        self.fail = False
        self.error: Optional[Exception] = None

    def send(self, destination, message) -> bool:
        if self.error is not None:
            raise self.error
        if self.fail:
            return False
        self.sent.append((destination, message))
        return True

    def destinations(self) -> List[str]:
        return [destination for destination, _ in self.sent]


class RecordingEmergencyServicesSink(EmergencyServicesSink):
    def __init__(self):
        self.payloads = []
        self.error: Optional[Exception] = None

    def notify(self, payload) -> bool:
        if self.error is not None:
            raise self.error
        self.payloads.append(payload)
        return True


class InMemoryContactDirectory(ContactDirectory):
    def __init__(self):
        self.contacts: Dict[str, List[Contact]] = {}
        self.caregivers: Dict[str, List[CaregiverRelationship]] = {}
        self.profiles: Dict[str, PatientProfile] = {}

    def add_contact(self, patient_id: str, contact: Contact) -> Contact:
        self.contacts.setdefault(patient_id, []).append(contact)
        return contact

    def add_caregiver(self, relationship: CaregiverRelationship) -> CaregiverRelationship:
        self.caregivers.setdefault(relationship.patient_id, []).append(relationship)
        return relationship

    def get_emergency_contacts(self, patient_id):
        return sorted(self.contacts.get(patient_id, []), key=lambda c: c.priority)

    def get_active_caregivers(self, patient_id):
        return [
            cg for cg in self.caregivers.get(patient_id, [])
            if cg.status == RelationshipStatus.ACTIVE
        ]

    def get_patient_profile(self, patient_id):
        return self.profiles.get(patient_id)

    def has_caregiver_access(self, caregiver_id, patient_id):
        return any(cg.caregiver_id == caregiver_id for cg in self.get_active_caregivers(patient_id))


class RecordingAuditLog(AuditLog):
    def __init__(self):
        self.entries = []

    def _write(self, actor, action, resource_id, metadata):
        self.entries.append((actor, action, resource_id, metadata))

    def actions(self) -> List[str]:
        return [action for _, action, _, _ in self.entries]


def make_contact(
    contact_id: str,
    priority: int = 1,
    role: ContactRole = ContactRole.PRIMARY,
    channels=(NotificationChannel.SMS, NotificationChannel.CALL),
    **preferences,
) -> Contact:
    return Contact(
        id=contact_id,
        name=contact_id.title(),
        phone=f"+1555000{sum(map(ord, contact_id)):04d}",
        email=f"{contact_id}@example.com",
        push_token=f"token-{contact_id}",
        role=role,
        priority=priority,
        supported_channels=list(channels),
        preferences=NotificationPreferences(**preferences),
    )


def make_caregiver(
    patient_id: str,
    caregiver_id: str,
    role: ContactRole = ContactRole.PRIMARY,
    schedule=None,
    **preferences,
) -> CaregiverRelationship:
    return CaregiverRelationship(
        id=f"rel-{caregiver_id}",
        patient_id=patient_id,
        caregiver_id=caregiver_id,
        caregiver_name=caregiver_id.title(),
        caregiver_phone=f"+1555111{sum(map(ord, caregiver_id)):04d}",
        caregiver_email=f"{caregiver_id}@example.com",
        caregiver_push_token=f"token-{caregiver_id}",
        role=role,
        status=RelationshipStatus.ACTIVE,
        preferences=NotificationPreferences(**preferences),
        schedule=schedule,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_engine(tmp_path):
    engine = build_db_engine(f"sqlite:///{tmp_path / 'careguard.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def directory():
    directory = InMemoryContactDirectory()
    directory.profiles["patient-1"] = PatientProfile(id="patient-1", name="Pat Doe", phone="+15550009999")
    return directory


@pytest.fixture
def sinks():
    return {channel: RecordingSink(channel) for channel in NotificationChannel}


@pytest.fixture
def emergency_services():
    return RecordingEmergencyServicesSink()


@pytest.fixture
def audit_log():
    return RecordingAuditLog()


@pytest.fixture
def engine(session_factory, directory, sinks, emergency_services, audit_log, clock):
    """Fully wired escalation engine with inline background work"""
    return build_engine(
        session_factory,
        settings,
        directory=directory,
        sinks=sinks,
        emergency_services_sink=emergency_services,
        audit_log=audit_log,
        executor=InlineExecutor(),
        delivery_executor=InlineExecutor(),
        clock=clock,
    )


@pytest.fixture
def contacts(directory):
    """One primary and two secondary contacts for patient-1"""
    return [
        directory.add_contact("patient-1", make_contact("alice", priority=1)),
        directory.add_contact("patient-1", make_contact("bob", priority=2, role=ContactRole.SECONDARY)),
        directory.add_contact("patient-1", make_contact("carol", priority=3, role=ContactRole.SECONDARY)),
    ]
