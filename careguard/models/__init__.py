from careguard.models.directory_models import (
    User,
    EmergencyContactRecord,
    CaregiverRelationshipRecord
)
from careguard.models.alert_models import EmergencyAlert, NotificationAttempt
from careguard.models.caregiver_models import CaregiverNotification, CaregiverAction
