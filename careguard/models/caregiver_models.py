"""
Caregiver Notification Database Models
Escalating caregiver notification chains and the caregiver action log
"""

import uuid

from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, Index

from careguard.database import Base
from careguard.utils.time_utils import utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


class CaregiverNotification(Base):
    """A notification in a caregiver escalation chain"""
    __tablename__ = "caregiver_notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    chain_id = Column(String(36), nullable=False)  # Shared by every notification raised for one event
    patient_id = Column(String, nullable=False)
    caregiver_id = Column(String, nullable=False)
    relationship_id = Column(String)
    
    # Content
    event_type = Column(String, nullable=False)  # "medication_missed", "vital_abnormal", "emergency", "escalation"
    severity = Column(String, nullable=False, default="warning")
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON)
    priority = Column(String, nullable=False, default="medium")  # "low", "medium", "high", "critical"
    
    # Lifecycle
    status = Column(String, nullable=False, default="pending")  # "pending", "sent", "delivered", "acknowledged", "expired"
    escalation_level = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)
    response_deadline = Column(DateTime)
    original_alert_id = Column(String(36))
    sent_at = Column(DateTime)
    acknowledged_at = Column(DateTime)
    escalation_checked_at = Column(DateTime)
    
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    
    __table_args__ = (
        Index('idx_caregiver_notifications_caregiver', 'caregiver_id', 'status'),
        Index('idx_caregiver_notifications_chain', 'chain_id'),
        Index('idx_caregiver_notifications_expiry', 'status', 'expires_at'),
    )


class CaregiverAction(Base):
    """Append-only record of what a caregiver did"""
    __tablename__ = "caregiver_actions"

    id = Column(String(36), primary_key=True, default=_uuid)
    patient_id = Column(String, nullable=False)
    caregiver_id = Column(String, nullable=False)
    alert_id = Column(String(36))
    notification_id = Column(String(36))
    action = Column(String, nullable=False)  # "acknowledged", "called_patient", "called_emergency", "marked_skipped", "added_note"
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    
    __table_args__ = (
        Index('idx_caregiver_actions_patient', 'patient_id', 'created_at'),
    )
