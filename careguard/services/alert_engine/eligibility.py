"""
Eligibility Policy - Who gets notified, and in what order.

Pure decisions over contact preferences, quiet hours and professional
shift schedules. All times are evaluated in the contact's own timezone.

Rules:
- Category opt-outs are honored, except that critical severity overrides
  the opt-out for the emergency category
- Quiet hours suppress everything below critical
- Professionals are only "on shift" inside their scheduled hours
- Ordering: primary first, on-shift first, secondary before professional
"""

import logging
from datetime import datetime
from typing import Iterable, List, Sequence, TypeVar
from zoneinfo import ZoneInfo

from careguard.schemas.contacts import NotificationPreferences
from careguard.schemas.enums import (
    AlertSeverity,
    AlertType,
    CaregiverEventType,
    ContactRole,
    NotificationPriority,
)
from careguard.utils.time_utils import as_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")

ROLE_RANK = {
    ContactRole.PRIMARY: 0,
    ContactRole.SECONDARY: 1,
    ContactRole.PROFESSIONAL: 2,
}

EVENT_TYPE_FOR_ALERT = {
    AlertType.CRITICAL_VITAL_HIGH: CaregiverEventType.EMERGENCY,
    AlertType.CRITICAL_VITAL_LOW: CaregiverEventType.EMERGENCY,
    AlertType.MANUAL_TRIGGER: CaregiverEventType.EMERGENCY,
    AlertType.NO_RESPONSE: CaregiverEventType.EMERGENCY,
    AlertType.MEDICATION_MISSED: CaregiverEventType.MEDICATION_MISSED,
    AlertType.IRREGULAR_PATTERN: CaregiverEventType.VITAL_ABNORMAL,
}

PRIORITY_FOR_SEVERITY = {
    AlertSeverity.CRITICAL: NotificationPriority.CRITICAL,
    AlertSeverity.HIGH: NotificationPriority.HIGH,
    AlertSeverity.WARNING: NotificationPriority.MEDIUM,
}


def _category_enabled(preferences: NotificationPreferences, event_type: CaregiverEventType) -> bool:
    if event_type == CaregiverEventType.MEDICATION_MISSED:
        return preferences.medication_missed
    if event_type == CaregiverEventType.VITAL_ABNORMAL:
        return preferences.vital_abnormal
    return preferences.emergency_alerts


def _is_emergency_category(event_type: CaregiverEventType) -> bool:
    return event_type in (CaregiverEventType.EMERGENCY, CaregiverEventType.ESCALATION)


class EligibilityPolicy:
    """
    Stateless notification eligibility rules.

    Works on anything shaped like a contact: it needs ``role``,
    ``preferences`` and ``schedule`` attributes, so emergency contacts and
    caregiver relationships go through the same rules.
    """

    def local_time(self, contact, now: datetime) -> datetime:
        """Convert naive UTC ``now`` into the contact's local wall clock"""
        return as_utc(now).astimezone(ZoneInfo(contact.preferences.timezone))

    def in_quiet_hours(self, contact, now: datetime) -> bool:
        quiet_hours = contact.preferences.quiet_hours
        if not quiet_hours.enabled:
            return False
        hhmm = self.local_time(contact, now).strftime("%H:%M")
        return quiet_hours.window().contains(hhmm)

    def should_notify(
        self,
        contact,
        event_type: CaregiverEventType,
        severity: AlertSeverity,
        now: datetime,
    ) -> bool:
        """Decide whether a contact receives a notification for this event"""
        event_type = CaregiverEventType(event_type)
        severity = AlertSeverity(severity)
        critical = severity == AlertSeverity.CRITICAL
        
        if not _category_enabled(contact.preferences, event_type):
            if not (critical and _is_emergency_category(event_type)):
                return False
        
        if not critical and self.in_quiet_hours(contact, now):
            logger.debug(f"Contact {contact.id} suppressed by quiet hours")
            return False
        
        return True

    def is_on_shift(self, contact, now: datetime) -> bool:
        """Non-professionals are always reachable; professionals only during their shift"""
        if contact.role != ContactRole.PROFESSIONAL:
            return True
        if contact.schedule is None:
            return False
        local = self.local_time(contact, now)
        shift = contact.schedule.for_weekday(local.weekday())
        if shift is None:
            return False
        return shift.contains(local.strftime("%H:%M"))

    def prioritize(self, contacts: Iterable[T], now: datetime) -> List[T]:
        """Stable sort: primary first, then on-shift, then secondary before professional"""
        def sort_key(contact):
            return (
                0 if contact.role == ContactRole.PRIMARY else 1,
                0 if self.is_on_shift(contact, now) else 1,
                ROLE_RANK.get(contact.role, len(ROLE_RANK)),
            )
        return sorted(contacts, key=sort_key)

    def cohort_for_level(
        self,
        contacts: Sequence[T],
        level: int,
        event_type: CaregiverEventType,
        severity: AlertSeverity,
        now: datetime,
    ) -> List[T]:
        """
        Contacts notified when an alert reaches ``level``.

        Level 0 goes to the best priority tier present (priority 1 contacts
        when the patient has any), level 1 to priority 2 and below, and the
        terminal level to everyone.
        """
        eligible = [c for c in contacts if self.should_notify(c, event_type, severity, now)]
        if not eligible:
            return []
        if level == 0:
            top = min(c.priority for c in eligible)
            cohort = [c for c in eligible if c.priority == top]
        elif level == 1:
            cohort = [c for c in eligible if c.priority >= 2]
        else:
            cohort = eligible
        return self.prioritize(cohort, now)

    @staticmethod
    def event_category_for_alert(alert_type: AlertType) -> CaregiverEventType:
        return EVENT_TYPE_FOR_ALERT[AlertType(alert_type)]

    @staticmethod
    def priority_for_severity(severity: AlertSeverity) -> NotificationPriority:
        return PRIORITY_FOR_SEVERITY[AlertSeverity(severity)]
