"""
Contact Directory Database Models
Users, emergency contacts and caregiver relationships read by the escalation engine
"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON, ForeignKey, Index

from careguard.database import Base
from careguard.utils.time_utils import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Patients and caregivers"""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    email = Column(String)
    phone = Column(String)
    push_token = Column(String)
    role = Column(String, nullable=False, default="patient")  # "patient", "caregiver", "doctor"
    created_at = Column(DateTime, nullable=False, default=utcnow)


class EmergencyContactRecord(Base):
    """A non-user contact a patient listed for emergencies"""
    __tablename__ = "emergency_contacts"

    id = Column(String, primary_key=True, default=_uuid)
    patient_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    phone = Column(String)
    email = Column(String)
    push_token = Column(String)
    role = Column(String, nullable=False, default="secondary")
    priority = Column(Integer, nullable=False, default=2)  # 1 is called first
    notification_methods = Column(JSON)  # ["sms", "call", ...]
    notification_preferences = Column(JSON)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    
    __table_args__ = (
        Index('idx_emergency_contacts_patient', 'patient_id', 'priority'),
    )


class CaregiverRelationshipRecord(Base):
    """Caregiver access link between a patient and another user"""
    __tablename__ = "caregiver_relationships"

    id = Column(String, primary_key=True, default=_uuid)
    patient_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    caregiver_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(String, nullable=False, default="secondary")  # "primary", "secondary", "professional"
    status = Column(String, nullable=False, default="pending")  # "pending", "active", "paused", "ended"
    notification_preferences = Column(JSON)
    professional_schedule = Column(JSON)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    
    __table_args__ = (
        Index('idx_caregiver_relationships_patient', 'patient_id', 'status'),
        Index('idx_caregiver_relationships_caregiver', 'caregiver_id', 'status'),
    )
