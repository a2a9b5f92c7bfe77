"""
Tests for contact eligibility: preferences, quiet hours, shifts and ordering.
"""

from datetime import datetime

import pytest
from pydantic import ValidationError

from careguard.schemas.contacts import (
    NotificationPreferences,
    QuietHours,
    TimeRange,
    WeeklySchedule,
)
from careguard.schemas.enums import (
    AlertSeverity,
    AlertType,
    CaregiverEventType,
    ContactRole,
    NotificationPriority,
)
from careguard.services.alert_engine.eligibility import EligibilityPolicy
from tests.conftest import START, make_caregiver, make_contact

WEEKDAY_SHIFT = WeeklySchedule(
    monday=TimeRange(start="09:00", end="17:00"),
    tuesday=TimeRange(start="09:00", end="17:00"),
)


@pytest.fixture
def policy():
    return EligibilityPolicy()


class TestTimeRange:
    """Half-open local time windows"""

    def test_plain_window(self):
        window = TimeRange(start="09:00", end="17:00")
        assert window.contains("09:00")
        assert window.contains("16:59")
        assert not window.contains("17:00")
        assert not window.contains("08:59")

    def test_window_wraps_past_midnight(self):
        window = TimeRange(start="22:00", end="07:00")
        assert window.contains("23:30")
        assert window.contains("00:00")
        assert window.contains("06:59")
        assert not window.contains("07:00")
        assert not window.contains("12:00")

    def test_equal_bounds_is_empty(self):
        window = TimeRange(start="08:00", end="08:00")
        assert not window.contains("08:00")
        assert not window.contains("20:00")

    def test_rejects_malformed_times(self):
        with pytest.raises(ValidationError):
            TimeRange(start="25:00", end="07:00")


class TestPreferences:
    def test_accepts_camel_case_keys(self):
        prefs = NotificationPreferences.model_validate({
            "medicationMissed": False,
            "quietHours": {"enabled": True, "start": "21:00", "end": "06:00"},
            "timezone": "Europe/London",
        })
        assert prefs.medication_missed is False
        assert prefs.quiet_hours.enabled is True
        assert prefs.quiet_hours.start == "21:00"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            NotificationPreferences(timezone="Mars/Olympus_Mons")


class TestShouldNotify:
    """Category opt-outs and quiet hours"""

    def test_default_preferences_allow_everything(self, policy):
        contact = make_contact("alice")
        for event_type in CaregiverEventType:
            assert policy.should_notify(contact, event_type, AlertSeverity.WARNING, START)

    def test_category_opt_out_is_honored(self, policy):
        contact = make_contact("alice", medication_missed=False)
        assert not policy.should_notify(
            contact, CaregiverEventType.MEDICATION_MISSED, AlertSeverity.WARNING, START
        )
        assert policy.should_notify(
            contact, CaregiverEventType.VITAL_ABNORMAL, AlertSeverity.WARNING, START
        )

    def test_critical_overrides_emergency_opt_out(self, policy):
        contact = make_contact("alice", emergency_alerts=False)
        assert policy.should_notify(contact, CaregiverEventType.EMERGENCY, AlertSeverity.CRITICAL, START)
        assert not policy.should_notify(contact, CaregiverEventType.EMERGENCY, AlertSeverity.HIGH, START)

    def test_critical_does_not_override_other_categories(self, policy):
        contact = make_contact("alice", medication_missed=False)
        assert not policy.should_notify(
            contact, CaregiverEventType.MEDICATION_MISSED, AlertSeverity.CRITICAL, START
        )

    def test_quiet_hours_suppress_non_critical(self, policy):
        contact = make_contact(
            "alice", quiet_hours=QuietHours(enabled=True, start="13:00", end="15:00")
        )
        assert not policy.should_notify(contact, CaregiverEventType.EMERGENCY, AlertSeverity.HIGH, START)
        assert policy.should_notify(contact, CaregiverEventType.EMERGENCY, AlertSeverity.CRITICAL, START)

    def test_disabled_quiet_hours_ignored(self, policy):
        contact = make_contact(
            "alice", quiet_hours=QuietHours(enabled=False, start="13:00", end="15:00")
        )
        assert policy.should_notify(contact, CaregiverEventType.EMERGENCY, AlertSeverity.WARNING, START)

    def test_quiet_hours_use_contact_timezone(self, policy):
        # 14:00 UTC is 23:00 in Tokyo
        overnight = QuietHours(enabled=True, start="22:00", end="07:00")
        tokyo = make_contact("alice", quiet_hours=overnight, timezone="Asia/Tokyo")
        utc = make_contact("bob", quiet_hours=overnight)
        assert policy.in_quiet_hours(tokyo, START)
        assert not policy.in_quiet_hours(utc, START)


class TestShifts:
    def test_non_professionals_always_on_shift(self, policy):
        assert policy.is_on_shift(make_contact("alice"), START)
        assert policy.is_on_shift(make_contact("bob", role=ContactRole.SECONDARY), START)

    def test_professional_inside_shift(self, policy):
        nurse = make_caregiver("patient-1", "nurse", role=ContactRole.PROFESSIONAL, schedule=WEEKDAY_SHIFT)
        assert policy.is_on_shift(nurse, START)

    def test_professional_outside_shift(self, policy):
        nurse = make_caregiver("patient-1", "nurse", role=ContactRole.PROFESSIONAL, schedule=WEEKDAY_SHIFT)
        assert not policy.is_on_shift(nurse, datetime(2026, 3, 2, 18, 30))
        # Sunday has no shift
        assert not policy.is_on_shift(nurse, datetime(2026, 3, 1, 12, 0))

    def test_professional_without_schedule_is_off_shift(self, policy):
        nurse = make_caregiver("patient-1", "nurse", role=ContactRole.PROFESSIONAL)
        assert not policy.is_on_shift(nurse, START)


class TestPrioritize:
    def test_primary_then_on_shift_then_role(self, policy):
        off_shift = make_caregiver(
            "patient-1", "night-nurse", role=ContactRole.PROFESSIONAL,
            schedule=WeeklySchedule(monday=TimeRange(start="20:00", end="04:00")),
        )
        on_shift = make_caregiver("patient-1", "day-nurse", role=ContactRole.PROFESSIONAL, schedule=WEEKDAY_SHIFT)
        secondary = make_caregiver("patient-1", "sibling", role=ContactRole.SECONDARY)
        primary = make_caregiver("patient-1", "spouse", role=ContactRole.PRIMARY)

        ordered = policy.prioritize([off_shift, secondary, primary, on_shift], START)

        assert [cg.caregiver_id for cg in ordered] == ["spouse", "sibling", "day-nurse", "night-nurse"]

    def test_sort_is_stable_within_a_rank(self, policy):
        first = make_contact("first", role=ContactRole.SECONDARY)
        second = make_contact("second", role=ContactRole.SECONDARY)
        assert policy.prioritize([first, second], START) == [first, second]
        assert policy.prioritize([second, first], START) == [second, first]


class TestCohorts:
    """Which contacts each escalation level reaches"""

    def test_level_zero_reaches_priority_one(self, policy):
        alice = make_contact("alice", priority=1)
        bob = make_contact("bob", priority=2, role=ContactRole.SECONDARY)
        cohort = policy.cohort_for_level(
            [alice, bob], 0, CaregiverEventType.EMERGENCY, AlertSeverity.CRITICAL, START
        )
        assert cohort == [alice]

    def test_level_zero_falls_back_to_best_tier_present(self, policy):
        bob = make_contact("bob", priority=2, role=ContactRole.SECONDARY)
        carol = make_contact("carol", priority=3, role=ContactRole.SECONDARY)
        cohort = policy.cohort_for_level(
            [bob, carol], 0, CaregiverEventType.EMERGENCY, AlertSeverity.CRITICAL, START
        )
        assert cohort == [bob]

    def test_level_one_reaches_secondary_tiers(self, policy):
        alice = make_contact("alice", priority=1)
        bob = make_contact("bob", priority=2, role=ContactRole.SECONDARY)
        carol = make_contact("carol", priority=3, role=ContactRole.SECONDARY)
        cohort = policy.cohort_for_level(
            [alice, bob, carol], 1, CaregiverEventType.EMERGENCY, AlertSeverity.CRITICAL, START
        )
        assert cohort == [bob, carol]

    def test_terminal_level_reaches_everyone(self, policy):
        contacts = [
            make_contact("alice", priority=1),
            make_contact("bob", priority=2, role=ContactRole.SECONDARY),
        ]
        cohort = policy.cohort_for_level(
            contacts, 2, CaregiverEventType.EMERGENCY, AlertSeverity.CRITICAL, START
        )
        assert len(cohort) == 2

    def test_ineligible_contacts_are_dropped(self, policy):
        alice = make_contact("alice", priority=1, quiet_hours=QuietHours(enabled=True, start="13:00", end="15:00"))
        bob = make_contact("bob", priority=2, role=ContactRole.SECONDARY)
        cohort = policy.cohort_for_level(
            [alice, bob], 0, CaregiverEventType.EMERGENCY, AlertSeverity.HIGH, START
        )
        assert cohort == [bob]

    def test_no_eligible_contacts(self, policy):
        assert policy.cohort_for_level([], 0, CaregiverEventType.EMERGENCY, AlertSeverity.HIGH, START) == []


class TestLookups:
    def test_alert_type_categories(self):
        assert EligibilityPolicy.event_category_for_alert(AlertType.MANUAL_TRIGGER) == CaregiverEventType.EMERGENCY
        assert EligibilityPolicy.event_category_for_alert("medication_missed") == CaregiverEventType.MEDICATION_MISSED
        assert EligibilityPolicy.event_category_for_alert(AlertType.IRREGULAR_PATTERN) == CaregiverEventType.VITAL_ABNORMAL

    def test_severity_priorities(self):
        assert EligibilityPolicy.priority_for_severity(AlertSeverity.CRITICAL) == NotificationPriority.CRITICAL
        assert EligibilityPolicy.priority_for_severity("warning") == NotificationPriority.MEDIUM
