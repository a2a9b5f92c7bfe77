"""Request and response models for the emergency and caregiver APIs."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from careguard.schemas.contacts import Location
from careguard.schemas.enums import AlertType, CaregiverActionType


class CreateAlertRequest(BaseModel):
    """Request to raise an emergency alert"""
    type: AlertType
    vital_sign_id: Optional[str] = None
    medication_id: Optional[str] = None
    location: Optional[Location] = None
    notes: Optional[str] = Field(None, max_length=2000)
    bypass_escalation: bool = False


class SosRequest(BaseModel):
    """Patient pressed the SOS button"""
    location: Optional[Location] = None
    notes: Optional[str] = Field(None, max_length=2000)


class AcknowledgeAlertRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class ResolveAlertRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)
    was_false_alarm: bool = False


class AlertResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    alert_type: str
    severity: str
    status: str
    escalation_level: int
    bypass_escalation: bool
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    location_address: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    escalated_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    was_false_alarm: bool = False


class NotificationAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    recipient_type: str
    channel: str
    purpose: str
    status: str
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    created_at: datetime


class AlertDetailResponse(BaseModel):
    alert: AlertResponse
    notifications: List[NotificationAttemptResponse]


class EscalationSweepResponse(BaseModel):
    escalated_count: int
    details: List[Dict[str, Any]]
    failed_alert_ids: List[str] = []


class CaregiverNotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    chain_id: str
    patient_id: str
    event_type: str
    title: str
    message: str
    priority: str
    status: str
    escalation_level: int
    expires_at: datetime
    response_deadline: Optional[datetime] = None
    original_alert_id: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    created_at: datetime


class CaregiverActionRequest(BaseModel):
    patient_id: str
    action: CaregiverActionType
    alert_id: Optional[str] = None
    notification_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)


class CaregiverActionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    caregiver_id: str
    alert_id: Optional[str] = None
    notification_id: Optional[str] = None
    action: str
    notes: Optional[str] = None
    created_at: datetime


class CaregiverSweepResponse(BaseModel):
    checked: int
