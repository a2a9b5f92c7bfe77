"""
Contact Directory - Read model of who can be reached for a patient.

The engine only depends on the ContactDirectory interface. The shipped
SqlContactDirectory reads the users, emergency_contacts and
caregiver_relationships tables and validates their JSON preference blobs
into typed models; a malformed blob falls back to defaults with a warning
rather than dropping the contact.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import case
from sqlalchemy.orm import Session, aliased

from careguard.core.exceptions import ConfigurationError
from careguard.models.directory_models import (
    CaregiverRelationshipRecord,
    EmergencyContactRecord,
    User,
)
from careguard.schemas.contacts import (
    CaregiverRelationship,
    Contact,
    NotificationPreferences,
    PatientProfile,
    WeeklySchedule,
)
from careguard.schemas.enums import ContactRole, NotificationChannel, RelationshipStatus

from .eligibility import ROLE_RANK

logger = logging.getLogger(__name__)

DEFAULT_CONTACT_CHANNELS = [NotificationChannel.SMS, NotificationChannel.CALL]


class ContactDirectory(ABC):
    """Lookup interface the escalation engine depends on"""

    @abstractmethod
    def get_emergency_contacts(self, patient_id: str) -> List[Contact]:
        """Everyone who receives the patient's alerts, ordered by priority"""

    @abstractmethod
    def get_active_caregivers(self, patient_id: str) -> List[CaregiverRelationship]:
        """Caregiver relationships with status active"""

    @abstractmethod
    def get_patient_profile(self, patient_id: str) -> Optional[PatientProfile]:
        ...

    @abstractmethod
    def has_caregiver_access(self, caregiver_id: str, patient_id: str) -> bool:
        ...

    def require_emergency_contacts(self, patient_id: str) -> List[Contact]:
        """Emergency contacts, raising ConfigurationError when there are none"""
        contacts = self.get_emergency_contacts(patient_id)
        if not contacts:
            raise ConfigurationError("No emergency contacts configured", patient_id)
        return contacts


def _parse_preferences(raw: Optional[Dict[str, Any]], owner_id: str) -> NotificationPreferences:
    if not raw:
        return NotificationPreferences()
    try:
        return NotificationPreferences.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Invalid notification preferences for {owner_id}, using defaults: {e.error_count()} errors")
        return NotificationPreferences()


def _parse_schedule(raw: Optional[Dict[str, Any]], owner_id: str) -> Optional[WeeklySchedule]:
    if not raw:
        return None
    try:
        return WeeklySchedule.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Invalid professional schedule for {owner_id}: {e.error_count()} errors")
        return None


def _parse_channels(raw: Optional[List[str]]) -> List[NotificationChannel]:
    if not raw:
        return list(DEFAULT_CONTACT_CHANNELS)
    channels = []
    for value in raw:
        try:
            channels.append(NotificationChannel(value))
        except ValueError:
            logger.warning(f"Ignoring unknown notification method: {value}")
    return channels


class SqlContactDirectory(ContactDirectory):
    """ContactDirectory backed by the application database"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get_emergency_contacts(self, patient_id: str) -> List[Contact]:
        db = self.session_factory()
        try:
            records = db.query(EmergencyContactRecord).filter(
                EmergencyContactRecord.patient_id == patient_id,
                EmergencyContactRecord.is_active.is_(True)
            ).order_by(EmergencyContactRecord.priority).all()
            
            contacts = [
                Contact(
                    id=record.id,
                    name=record.name,
                    phone=record.phone,
                    email=record.email,
                    push_token=record.push_token,
                    role=ContactRole(record.role),
                    priority=record.priority,
                    recipient_type="emergency_contact",
                    supported_channels=_parse_channels(record.notification_methods),
                    preferences=_parse_preferences(record.notification_preferences, record.id),
                )
                for record in records
            ]
            
            # Active caregivers are reachable on every channel they have a destination for
            contacts.extend(
                relationship.as_contact()
                for relationship in self._load_caregivers(db, patient_id)
            )
            return sorted(contacts, key=lambda c: c.priority)
        finally:
            db.close()

    def get_active_caregivers(self, patient_id: str) -> List[CaregiverRelationship]:
        db = self.session_factory()
        try:
            return self._load_caregivers(db, patient_id)
        finally:
            db.close()

    def get_patient_profile(self, patient_id: str) -> Optional[PatientProfile]:
        db = self.session_factory()
        try:
            user = db.query(User).filter(User.id == patient_id).first()
            if not user:
                return None
            return PatientProfile(id=user.id, name=user.name, phone=user.phone, email=user.email)
        finally:
            db.close()

    def has_caregiver_access(self, caregiver_id: str, patient_id: str) -> bool:
        db = self.session_factory()
        try:
            return db.query(CaregiverRelationshipRecord.id).filter(
                CaregiverRelationshipRecord.caregiver_id == caregiver_id,
                CaregiverRelationshipRecord.patient_id == patient_id,
                CaregiverRelationshipRecord.status == RelationshipStatus.ACTIVE.value
            ).first() is not None
        finally:
            db.close()

    def _load_caregivers(self, db: Session, patient_id: str) -> List[CaregiverRelationship]:
        caregiver = aliased(User)
        role_rank = case(
            {role.value: rank for role, rank in ROLE_RANK.items()},
            value=CaregiverRelationshipRecord.role,
            else_=len(ROLE_RANK),
        )
        rows = db.query(CaregiverRelationshipRecord, caregiver).join(
            caregiver, caregiver.id == CaregiverRelationshipRecord.caregiver_id
        ).filter(
            CaregiverRelationshipRecord.patient_id == patient_id,
            CaregiverRelationshipRecord.status == RelationshipStatus.ACTIVE.value
        ).order_by(role_rank, CaregiverRelationshipRecord.created_at).all()

        return [
            CaregiverRelationship(
                id=record.id,
                patient_id=record.patient_id,
                caregiver_id=record.caregiver_id,
                caregiver_name=user.name,
                caregiver_phone=user.phone,
                caregiver_email=user.email,
                caregiver_push_token=user.push_token,
                role=ContactRole(record.role),
                status=RelationshipStatus(record.status),
                preferences=_parse_preferences(record.notification_preferences, record.id),
                schedule=_parse_schedule(record.professional_schedule, record.id),
            )
            for record, user in rows
        ]
