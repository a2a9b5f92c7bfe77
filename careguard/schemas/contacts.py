"""
Contact directory read models.

Preference and schedule blobs arrive as untyped JSON from the contact
directory; they are validated into these models before any eligibility
decision is made. Both snake_case and the camelCase keys written by the
mobile apps are accepted.
"""

from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from careguard.schemas.enums import (
    ContactRole,
    NotificationChannel,
    RelationshipStatus,
)

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TimeRange(_CamelModel):
    """Half-open local-time window [start, end); wraps past midnight when start > end"""
    start: str = Field(..., pattern=HHMM_PATTERN)
    end: str = Field(..., pattern=HHMM_PATTERN)

    def contains(self, hhmm: str) -> bool:
        if self.start == self.end:
            return False
        if self.start < self.end:
            return self.start <= hhmm < self.end
        return hhmm >= self.start or hhmm < self.end


class QuietHours(_CamelModel):
    enabled: bool = False
    start: str = Field("22:00", pattern=HHMM_PATTERN)
    end: str = Field("07:00", pattern=HHMM_PATTERN)

    def window(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)


class NotificationPreferences(_CamelModel):
    medication_missed: bool = True
    vital_abnormal: bool = True
    emergency_alerts: bool = True
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v


class WeeklySchedule(_CamelModel):
    """Professional caregiver shift hours keyed by weekday"""
    monday: Optional[TimeRange] = None
    tuesday: Optional[TimeRange] = None
    wednesday: Optional[TimeRange] = None
    thursday: Optional[TimeRange] = None
    friday: Optional[TimeRange] = None
    saturday: Optional[TimeRange] = None
    sunday: Optional[TimeRange] = None

    def for_weekday(self, weekday: int) -> Optional[TimeRange]:
        """Shift for a weekday index where Monday is 0"""
        return getattr(self, WEEKDAYS[weekday])


class Location(_CamelModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None


class PatientProfile(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class Contact(BaseModel):
    """A person who may be notified about a patient's alerts"""
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    push_token: Optional[str] = None
    role: ContactRole = ContactRole.SECONDARY
    priority: int = Field(2, ge=1, le=3)
    recipient_type: str = "emergency_contact"
    supported_channels: List[NotificationChannel] = Field(
        default_factory=lambda: list(NotificationChannel)
    )
    preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    schedule: Optional[WeeklySchedule] = None

    def destination_for(self, channel: NotificationChannel) -> Optional[str]:
        if channel == NotificationChannel.PUSH:
            return self.push_token
        if channel == NotificationChannel.EMAIL:
            return self.email
        return self.phone

    def channels(self) -> List[NotificationChannel]:
        """Channels this contact can be reached on, in dispatch order"""
        return [
            channel for channel in NotificationChannel
            if channel in self.supported_channels and self.destination_for(channel)
        ]


class CaregiverRelationship(BaseModel):
    """An active or pending caregiver link between two users"""
    id: str
    patient_id: str
    caregiver_id: str
    caregiver_name: str
    caregiver_phone: Optional[str] = None
    caregiver_email: Optional[str] = None
    caregiver_push_token: Optional[str] = None
    role: ContactRole = ContactRole.SECONDARY
    status: RelationshipStatus = RelationshipStatus.ACTIVE
    preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    schedule: Optional[WeeklySchedule] = None

    def as_contact(self) -> Contact:
        return Contact(
            id=self.caregiver_id,
            name=self.caregiver_name,
            phone=self.caregiver_phone,
            email=self.caregiver_email,
            push_token=self.caregiver_push_token,
            role=self.role,
            priority=1 if self.role == ContactRole.PRIMARY else 2,
            recipient_type=self.role.value,
            preferences=self.preferences,
            schedule=self.schedule,
        )
