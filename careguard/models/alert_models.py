"""
Emergency Alert Database Models
Patient alerts and the per-recipient notification attempts they produce
"""

import uuid

from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, Text, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from careguard.database import Base
from careguard.utils.time_utils import utcnow

OUTSTANDING_STATUS_SQL = "status IN ('active', 'escalated', 'acknowledged')"


def _uuid() -> str:
    return str(uuid.uuid4())


class EmergencyAlert(Base):
    """A patient emergency and its escalation state"""
    __tablename__ = "emergency_alerts"

    id = Column(String(36), primary_key=True, default=_uuid)
    patient_id = Column(String, nullable=False, index=True)
    
    # Classification
    alert_type = Column(String, nullable=False)  # "critical_vital_high", "manual_trigger", ...
    severity = Column(String, nullable=False)  # "critical", "high", "warning"
    status = Column(String, nullable=False, default="active")  # "active", "escalated", "acknowledged", "resolved", "false_alarm"
    
    # Escalation
    escalation_level = Column(Integer, nullable=False, default=0)  # 0 primary, 1 secondary, 2 emergency services
    bypass_escalation = Column(Boolean, nullable=False, default=False)
    escalated_at = Column(DateTime)
    
    # Context
    vital_sign_id = Column(String)
    medication_id = Column(String)
    location_lat = Column(Float)
    location_lng = Column(Float)
    location_address = Column(Text)
    notes = Column(Text)
    
    # Response
    acknowledged_at = Column(DateTime)
    acknowledged_by = Column(String)
    resolved_at = Column(DateTime)
    resolved_by = Column(String)
    was_false_alarm = Column(Boolean, nullable=False, default=False)
    
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    
    notifications = relationship(
        "NotificationAttempt",
        back_populates="alert",
        order_by="NotificationAttempt.created_at",
    )
    
    __table_args__ = (
        Index('idx_emergency_alerts_patient_status', 'patient_id', 'status'),
        Index('idx_emergency_alerts_escalation', 'status', 'escalation_level', 'escalated_at'),
        # One outstanding alert per patient and type
        Index(
            'uq_emergency_alerts_outstanding',
            'patient_id',
            'alert_type',
            unique=True,
            postgresql_where=text(OUTSTANDING_STATUS_SQL),
            sqlite_where=text(OUTSTANDING_STATUS_SQL),
        ),
    )

    @property
    def has_location(self) -> bool:
        return self.location_lat is not None and self.location_lng is not None


class NotificationAttempt(Base):
    """One delivery attempt to one recipient on one channel"""
    __tablename__ = "emergency_notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    alert_id = Column(String(36), ForeignKey("emergency_alerts.id", ondelete="CASCADE"), nullable=False)
    
    # Recipient
    recipient_contact_id = Column(String)
    recipient_type = Column(String, nullable=False)  # "primary", "secondary", "professional", "emergency_contact", "emergency_services"
    destination = Column(String, nullable=False)
    channel = Column(String, nullable=False)  # "push", "sms", "email", "call"
    purpose = Column(String, nullable=False, default="alert")  # "alert", "escalation", "emergency_services", "location_share", "resolution"
    
    # Delivery
    status = Column(String, nullable=False, default="pending")  # "pending", "sent", "failed", "delivered"
    sent_at = Column(DateTime)
    delivered_at = Column(DateTime)
    error_message = Column(Text)
    retry_count = Column(Integer, nullable=False, default=0)
    redrive_of = Column(String(36))  # Failed attempt this row re-sends
    
    created_at = Column(DateTime, nullable=False, default=utcnow)
    
    alert = relationship("EmergencyAlert", back_populates="notifications")
    
    __table_args__ = (
        Index('idx_emergency_notifications_alert', 'alert_id'),
        Index('idx_emergency_notifications_status', 'status', 'created_at'),
    )
