"""Shared vocabularies for alerts, notifications and caregiver chains."""

from enum import Enum


class AlertType(str, Enum):
    CRITICAL_VITAL_HIGH = "critical_vital_high"
    CRITICAL_VITAL_LOW = "critical_vital_low"
    MEDICATION_MISSED = "medication_missed"
    NO_RESPONSE = "no_response"
    MANUAL_TRIGGER = "manual_trigger"
    IRREGULAR_PATTERN = "irregular_pattern"


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    WARNING = "warning"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    FALSE_ALARM = "false_alarm"


# Statuses that block a duplicate alert of the same type
OUTSTANDING_STATUSES = (AlertStatus.ACTIVE.value, AlertStatus.ESCALATED.value, AlertStatus.ACKNOWLEDGED.value)

# Statuses still waiting on a human response
AWAITING_RESPONSE_STATUSES = (AlertStatus.ACTIVE.value, AlertStatus.ESCALATED.value)

TERMINAL_STATUSES = (AlertStatus.RESOLVED.value, AlertStatus.FALSE_ALARM.value)

ALERT_SEVERITY = {
    AlertType.CRITICAL_VITAL_HIGH: AlertSeverity.CRITICAL,
    AlertType.CRITICAL_VITAL_LOW: AlertSeverity.CRITICAL,
    AlertType.MANUAL_TRIGGER: AlertSeverity.CRITICAL,
    AlertType.NO_RESPONSE: AlertSeverity.HIGH,
    AlertType.MEDICATION_MISSED: AlertSeverity.WARNING,
    AlertType.IRREGULAR_PATTERN: AlertSeverity.WARNING,
}


class NotificationChannel(str, Enum):
    PUSH = "push"
    SMS = "sms"
    EMAIL = "email"
    CALL = "call"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    DELIVERED = "delivered"


class NotificationPurpose(str, Enum):
    ALERT = "alert"
    ESCALATION = "escalation"
    EMERGENCY_SERVICES = "emergency_services"
    LOCATION_SHARE = "location_share"
    RESOLUTION = "resolution"


class ContactRole(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    PROFESSIONAL = "professional"


class RelationshipStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class CaregiverEventType(str, Enum):
    MEDICATION_MISSED = "medication_missed"
    VITAL_ABNORMAL = "vital_abnormal"
    EMERGENCY = "emergency"
    ESCALATION = "escalation"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CaregiverNotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    ACKNOWLEDGED = "acknowledged"
    EXPIRED = "expired"


AWAITING_ACK_STATUSES = (
    CaregiverNotificationStatus.PENDING.value,
    CaregiverNotificationStatus.SENT.value,
    CaregiverNotificationStatus.DELIVERED.value,
)


class CaregiverActionType(str, Enum):
    ACKNOWLEDGED = "acknowledged"
    CALLED_PATIENT = "called_patient"
    CALLED_EMERGENCY = "called_emergency"
    MARKED_SKIPPED = "marked_skipped"
    ADDED_NOTE = "added_note"
