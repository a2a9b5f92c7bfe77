"""
Multi-Channel Notification Dispatcher - Push, SMS, Email and Voice fan-out.

Includes:
- Per-alert-type message templates with location text
- One NotificationAttempt row per (recipient, channel), written before sending
- Concurrent provider calls on a bounded worker pool
- Per-channel failure isolation (one failed send never blocks the rest)
- Emergency-services hand-off with a location broadcast to every contact
- Re-drive of failed attempts and delivery statistics for operators
"""

import logging
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Any, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from careguard.core.exceptions import TransientDeliveryFailure
from careguard.core.logging import SecureLogger, mask_destination
from careguard.models.alert_models import EmergencyAlert, NotificationAttempt
from careguard.schemas.contacts import Contact
from careguard.schemas.enums import (
    AlertStatus,
    AlertType,
    DeliveryStatus,
    NotificationChannel,
    NotificationPurpose,
    TERMINAL_STATUSES,
)
from careguard.utils.time_utils import Clock, utcnow

from .config_service import EscalationConfigService
from .contact_directory import ContactDirectory
from .sinks import (
    EmergencyServicesPayload,
    EmergencyServicesSink,
    NotificationSink,
    RenderedMessage,
)

logger = logging.getLogger(__name__)

EMERGENCY_SERVICES_RECIPIENT = "emergency_services"

ALERT_MESSAGES = {
    AlertType.CRITICAL_VITAL_HIGH: (
        "CRITICAL: Vital Sign Alert",
        "A critically high vital sign reading was recorded. Immediate attention required."
    ),
    AlertType.CRITICAL_VITAL_LOW: (
        "CRITICAL: Vital Sign Alert",
        "A critically low vital sign reading was recorded. Immediate attention required."
    ),
    AlertType.MEDICATION_MISSED: (
        "WARNING: Medication Missed",
        "A scheduled medication dose was not confirmed within 2 hours."
    ),
    AlertType.NO_RESPONSE: (
        "HIGH: No Response Alert",
        "Patient has not been active for 24h+ and missed check-in."
    ),
    AlertType.MANUAL_TRIGGER: (
        "SOS: EMERGENCY",
        "Patient has triggered the emergency SOS button. Immediate help needed!"
    ),
    AlertType.IRREGULAR_PATTERN: (
        "WARNING: Abnormal Pattern Detected",
        "3 consecutive abnormal readings detected. Medical review recommended."
    ),
}


def format_location(alert: EmergencyAlert) -> Optional[str]:
    if alert.location_address:
        return f"Location: {alert.location_address}"
    if alert.has_location:
        return f"Location: {alert.location_lat:.5f}, {alert.location_lng:.5f}"
    return None


def _maps_link(alert: EmergencyAlert) -> Optional[str]:
    if not alert.has_location:
        return None
    return f"https://maps.google.com/?q={alert.location_lat:.5f},{alert.location_lng:.5f}"


def _alert_label(alert: EmergencyAlert) -> str:
    return alert.alert_type.replace("_", " ")


def render_alert_message(
    alert: EmergencyAlert,
    purpose: NotificationPurpose = NotificationPurpose.ALERT
) -> RenderedMessage:
    """Render the alert or escalation notice for contacts"""
    title, body = ALERT_MESSAGES[AlertType(alert.alert_type)]
    if purpose == NotificationPurpose.ESCALATION:
        title = f"[ESCALATED] {title}"
        body = f"{body}\n\nPrevious contacts did not respond."
    if alert.notes:
        body = f"{body}\nNotes: {alert.notes}"
    return RenderedMessage(
        title=title,
        body=body,
        location=format_location(alert),
        data={"alert_id": alert.id, "alert_type": alert.alert_type, "severity": alert.severity},
    )


def render_location_share(alert: EmergencyAlert, patient_name: str) -> RenderedMessage:
    """Broadcast sent to every contact once emergency services are involved"""
    _, body = ALERT_MESSAGES[AlertType(alert.alert_type)]
    location = format_location(alert)
    link = _maps_link(alert)
    if location and link:
        location = f"{location}\n{link}"
    return RenderedMessage(
        title="EMERGENCY SERVICES CONTACTED",
        body=f"Emergency services have been contacted for {patient_name}. {body}",
        location=location or "Location unavailable",
        data={"alert_id": alert.id, "alert_type": alert.alert_type, "severity": alert.severity},
    )


def render_resolution_message(alert: EmergencyAlert, resolution: str) -> RenderedMessage:
    label = _alert_label(alert)
    if resolution == AlertStatus.ACKNOWLEDGED.value:
        title = f"Alert ACKNOWLEDGED: {label}"
        body = "Someone has responded. No further action needed."
    elif resolution == AlertStatus.FALSE_ALARM.value:
        title = f"Alert CANCELLED: {label}"
        body = "The alert was a false alarm."
    else:
        title = f"Alert RESOLVED: {label}"
        body = "Situation has been resolved."
    return RenderedMessage(title=title, body=body, data={"alert_id": alert.id, "resolution": resolution})


@dataclass
class DeliveryOutcome:
    """Result of a single provider call"""
    channel: NotificationChannel
    destination: str
    success: bool
    error_message: Optional[str] = None


@dataclass
class _Target:
    contact_id: Optional[str]
    recipient_type: str
    channel: NotificationChannel
    destination: str


class NotificationDispatcher:
    """Fans alert notifications out to contacts and records every attempt"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        directory: ContactDirectory,
        sinks: Dict[NotificationChannel, NotificationSink],
        emergency_services_sink: EmergencyServicesSink,
        config_service: Optional[EscalationConfigService] = None,
        executor: Optional[Executor] = None,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.directory = directory
        self.sinks = sinks
        self.emergency_services_sink = emergency_services_sink
        self.config_service = config_service or EscalationConfigService()
        self.clock = clock
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.config_service.config.dispatch_max_workers,
            thread_name_prefix="notify"
        )

    def shutdown(self):
        if self._owns_executor:
            self.executor.shutdown(wait=True)

    def deliver(
        self,
        destination: str,
        channel: NotificationChannel,
        message: RenderedMessage
    ) -> DeliveryOutcome:
        """Send one message on one channel; never raises"""
        channel = NotificationChannel(channel)
        if channel not in self.config_service.config.enabled_channels():
            return DeliveryOutcome(channel, destination, False, f"Channel {channel.value} is disabled")

        sink = self.sinks.get(channel)
        if sink is None:
            return DeliveryOutcome(channel, destination, False, f"No provider configured for {channel.value}")

        try:
            if sink.send(destination, message):
                return DeliveryOutcome(channel, destination, True)
            error = "Provider rejected the message"
        except TransientDeliveryFailure as e:
            error = e.message
        except Exception as e:
            error = f"{type(e).__name__}: {e}"

        SecureLogger.log(
            logger,
            logging.WARNING,
            f"{channel.value} delivery to {mask_destination(destination)} failed: {error}"
        )
        return DeliveryOutcome(channel, destination, False, error)

    def dispatch(
        self,
        alert: EmergencyAlert,
        cohort: Sequence[Contact],
        purpose: NotificationPurpose = NotificationPurpose.ALERT,
        message: Optional[RenderedMessage] = None,
        exclude_channels: Iterable[NotificationChannel] = (),
    ) -> List[NotificationAttempt]:
        """
        Notify every contact in the cohort on each of their channels.

        Attempt rows are persisted as pending before any provider is called,
        then moved to sent or failed. Returns the attempt rows.
        """
        purpose = NotificationPurpose(purpose)
        message = message or render_alert_message(alert, purpose)
        excluded = set(exclude_channels)

        targets = [
            _Target(contact.id, contact.recipient_type, channel, contact.destination_for(channel))
            for contact in cohort
            for channel in contact.channels()
            if channel not in excluded
        ]
        if not targets:
            logger.warning(f"No reachable contacts for {purpose.value} on alert {alert.id}")
            return []

        return self._send_targets(alert.id, targets, purpose, message)

    def _send_targets(
        self,
        alert_id: str,
        targets: List[_Target],
        purpose: NotificationPurpose,
        message: RenderedMessage,
        retry_counts: Optional[List[int]] = None,
        redrive_of: Optional[List[str]] = None,
    ) -> List[NotificationAttempt]:
        now = self.clock()
        attempts = [
            NotificationAttempt(
                id=str(uuid.uuid4()),
                alert_id=alert_id,
                recipient_contact_id=target.contact_id,
                recipient_type=target.recipient_type,
                destination=target.destination,
                channel=target.channel.value,
                purpose=purpose.value,
                status=DeliveryStatus.PENDING.value,
                retry_count=retry_counts[i] if retry_counts else 0,
                redrive_of=redrive_of[i] if redrive_of else None,
                created_at=now,
            )
            for i, target in enumerate(targets)
        ]
        self._save_attempts(attempts, f"pending {purpose.value} notifications for alert {alert_id}")

        # No connection is held while providers are called
        outcomes = list(self.executor.map(
            lambda target: self.deliver(target.destination, target.channel, message),
            targets
        ))

        finished_at = self.clock()
        for attempt, outcome in zip(attempts, outcomes):
            self._apply_outcome(attempt, outcome, finished_at)
        self._save_attempts(attempts, f"{purpose.value} delivery results for alert {alert_id}")

        sent = sum(1 for attempt in attempts if attempt.status == DeliveryStatus.SENT.value)
        logger.info(f"{purpose.value} notifications for alert {alert_id}: {sent}/{len(attempts)} sent")
        return attempts

    def _save_attempts(self, attempts: List[NotificationAttempt], what: str) -> None:
        """Insert new attempt rows or write back changes made while detached"""
        db = self.session_factory()
        try:
            db.add_all(attempts)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error recording {what}: {e}")
            raise
        finally:
            db.close()

    @staticmethod
    def _apply_outcome(attempt: NotificationAttempt, outcome: DeliveryOutcome, finished_at) -> None:
        if outcome.success:
            attempt.status = DeliveryStatus.SENT.value
            attempt.sent_at = finished_at
        else:
            attempt.status = DeliveryStatus.FAILED.value
            attempt.error_message = outcome.error_message
            attempt.retry_count = (attempt.retry_count or 0) + 1

    def notify_emergency_services(self, alert: EmergencyAlert) -> EmergencyServicesPayload:
        """
        Hand the alert to emergency services and broadcast the patient's
        location to every contact.
        """
        profile = self.directory.get_patient_profile(alert.patient_id)
        contacts = self.directory.get_emergency_contacts(alert.patient_id)
        patient_name = profile.name if profile else "the patient"

        payload = EmergencyServicesPayload(
            alert_id=alert.id,
            patient_id=alert.patient_id,
            patient_name=profile.name if profile else "Unknown patient",
            patient_phone=profile.phone if profile else None,
            contact_phones=[c.phone for c in contacts if c.phone],
            location={
                "lat": alert.location_lat,
                "lng": alert.location_lng,
                "address": alert.location_address,
            } if alert.has_location or alert.location_address else None,
            alert_type=alert.alert_type,
            severity=alert.severity,
            notes=alert.notes,
            requested_at=self.clock().isoformat(),
        )

        self._record_emergency_services_attempt(alert, payload)

        try:
            self.dispatch(
                alert,
                contacts,
                purpose=NotificationPurpose.LOCATION_SHARE,
                message=render_location_share(alert, patient_name),
                exclude_channels=(NotificationChannel.CALL,),
            )
        except SQLAlchemyError as e:
            logger.error(f"Location broadcast failed for alert {alert.id}: {e}")

        return payload

    def _record_emergency_services_attempt(self, alert: EmergencyAlert, payload: EmergencyServicesPayload) -> None:
        attempt = NotificationAttempt(
            id=str(uuid.uuid4()),
            alert_id=alert.id,
            recipient_type=EMERGENCY_SERVICES_RECIPIENT,
            destination=self.config_service.config.emergency_services_number,
            channel=NotificationChannel.CALL.value,
            purpose=NotificationPurpose.EMERGENCY_SERVICES.value,
            status=DeliveryStatus.PENDING.value,
            retry_count=0,
            created_at=self.clock(),
        )
        self._save_attempts([attempt], f"pending emergency services attempt for alert {alert.id}")

        error = None
        try:
            if not self.emergency_services_sink.notify(payload):
                error = "Emergency services integration declined the request"
        except TransientDeliveryFailure as e:
            error = e.message
        except Exception as e:
            error = f"{type(e).__name__}: {e}"

        self._apply_outcome(
            attempt,
            DeliveryOutcome(NotificationChannel.CALL, attempt.destination, error is None, error),
            self.clock()
        )
        self._save_attempts([attempt], f"emergency services attempt for alert {alert.id}")

        if error:
            logger.error(f"EMERGENCY SERVICES NOTIFICATION FAILED for alert {alert.id}: {error}")
        else:
            logger.warning(f"Emergency services notified for alert {alert.id}")

    def notify_resolution(self, alert: EmergencyAlert, resolution: str) -> List[NotificationAttempt]:
        """Best-effort notice to all contacts that the alert is handled"""
        try:
            contacts = self.directory.get_emergency_contacts(alert.patient_id)
            return self.dispatch(
                alert,
                contacts,
                purpose=NotificationPurpose.RESOLUTION,
                message=render_resolution_message(alert, resolution),
                exclude_channels=(NotificationChannel.CALL,),
            )
        except Exception as e:
            logger.error(f"Resolution notice failed for alert {alert.id}: {e}")
            return []

    def redrive_failed(self, limit: int = 100) -> int:
        """
        Re-send failed attempts that still have retries left.

        Each re-send is a new attempt row pointing at the failed one, so a
        failed attempt is re-driven at most once and history is preserved.
        Returns the number of attempts re-sent.
        """
        max_retries = self.config_service.config.max_delivery_retries
        db = self.session_factory()
        try:
            retry = aliased(NotificationAttempt)
            already_redriven = select(retry.id).where(
                retry.redrive_of == NotificationAttempt.id
            ).exists()
            candidates = db.query(NotificationAttempt, EmergencyAlert).join(
                EmergencyAlert, EmergencyAlert.id == NotificationAttempt.alert_id
            ).filter(
                NotificationAttempt.status == DeliveryStatus.FAILED.value,
                NotificationAttempt.retry_count < max_retries,
                NotificationAttempt.recipient_type != EMERGENCY_SERVICES_RECIPIENT,
                ~already_redriven
            ).order_by(NotificationAttempt.created_at).limit(limit).all()
        finally:
            db.close()

        redriven = 0
        for attempt, alert in candidates:
            purpose = NotificationPurpose(attempt.purpose)
            if alert.status in TERMINAL_STATUSES and purpose != NotificationPurpose.RESOLUTION:
                continue
            try:
                self._send_targets(
                    alert.id,
                    [_Target(
                        attempt.recipient_contact_id,
                        attempt.recipient_type,
                        NotificationChannel(attempt.channel),
                        attempt.destination
                    )],
                    purpose,
                    self._render_for(alert, purpose),
                    retry_counts=[attempt.retry_count],
                    redrive_of=[attempt.id],
                )
                redriven += 1
            except SQLAlchemyError as e:
                logger.error(f"Error re-driving attempt {attempt.id}: {e}")

        if redriven:
            logger.info(f"Re-drove {redriven} failed notification attempts")
        return redriven

    def _render_for(self, alert: EmergencyAlert, purpose: NotificationPurpose) -> RenderedMessage:
        if purpose == NotificationPurpose.LOCATION_SHARE:
            profile = self.directory.get_patient_profile(alert.patient_id)
            return render_location_share(alert, profile.name if profile else "the patient")
        if purpose == NotificationPurpose.RESOLUTION:
            return render_resolution_message(alert, alert.status)
        return render_alert_message(alert, purpose)

    def get_attempts(
        self,
        alert_id: str,
        purposes: Optional[Iterable[NotificationPurpose]] = None
    ) -> List[NotificationAttempt]:
        db = self.session_factory()
        try:
            query = db.query(NotificationAttempt).filter(NotificationAttempt.alert_id == alert_id)
            if purposes:
                query = query.filter(NotificationAttempt.purpose.in_([NotificationPurpose(p).value for p in purposes]))
            return query.order_by(NotificationAttempt.created_at).all()
        finally:
            db.close()

    def get_delivery_stats(self, days: int = 7) -> Dict[str, Any]:
        """Get notification delivery statistics"""
        since = self.clock() - timedelta(days=days)
        db = self.session_factory()
        try:
            rows = db.query(
                NotificationAttempt.channel,
                NotificationAttempt.status,
                func.count(NotificationAttempt.id)
            ).filter(
                NotificationAttempt.created_at >= since
            ).group_by(
                NotificationAttempt.channel,
                NotificationAttempt.status
            ).all()
        finally:
            db.close()

        stats: Dict[str, Any] = {"period_days": days, "by_channel": {}, "total_sent": 0, "total_failed": 0}
        for channel, status, count in rows:
            channel_stats = stats["by_channel"].setdefault(channel, {"sent": 0, "failed": 0, "pending": 0, "delivered": 0})
            channel_stats[status] = channel_stats.get(status, 0) + count
            if status in (DeliveryStatus.SENT.value, DeliveryStatus.DELIVERED.value):
                stats["total_sent"] += count
            elif status == DeliveryStatus.FAILED.value:
                stats["total_failed"] += count

        for channel_stats in stats["by_channel"].values():
            attempted = channel_stats["sent"] + channel_stats["delivered"] + channel_stats["failed"]
            channel_stats["success_rate"] = round(
                (channel_stats["sent"] + channel_stats["delivered"]) / attempted * 100, 1
            ) if attempted else 0.0

        return stats
