"""
Caregiver Escalation Service - Time-boxed notification chains across caregivers.

Features:
- Every eligible caregiver is notified at once with staggered response windows
- Unanswered chains escalate to the next caregiver, up to a fixed depth
- Any acknowledgment in a chain stops further escalation for that chain
- Escalation checks are idempotent: a scheduled one-shot timer and the
  periodic sweep may both fire, only one acts
- Append-only caregiver action log
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from careguard.core.exceptions import Forbidden
from careguard.models.alert_models import EmergencyAlert
from careguard.models.caregiver_models import CaregiverAction, CaregiverNotification
from careguard.schemas.contacts import CaregiverRelationship
from careguard.schemas.enums import (
    AWAITING_ACK_STATUSES,
    AWAITING_RESPONSE_STATUSES,
    AlertSeverity,
    CaregiverActionType,
    CaregiverEventType,
    CaregiverNotificationStatus,
    NotificationChannel,
    NotificationPriority,
    RelationshipStatus,
)
from careguard.utils.time_utils import Clock, utcnow

from .audit import AuditLog, LoggingAuditLog
from .config_service import EscalationConfigService
from .contact_directory import ContactDirectory
from .eligibility import EligibilityPolicy
from .notification_service import NotificationDispatcher
from .sinks import RenderedMessage

logger = logging.getLogger(__name__)

# Called with (run_at in naive UTC, notification_id)
EscalationTimer = Callable[[datetime, str], None]

ESCALATION_TITLE_PREFIX = "Escalation: "


class CaregiverEscalationService:
    """Service for caregiver notification chains"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        directory: ContactDirectory,
        dispatcher: NotificationDispatcher,
        policy: Optional[EligibilityPolicy] = None,
        config_service: Optional[EscalationConfigService] = None,
        audit_log: Optional[AuditLog] = None,
        timer: Optional[EscalationTimer] = None,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.directory = directory
        self.dispatcher = dispatcher
        self.policy = policy or EligibilityPolicy()
        self.config_service = config_service or EscalationConfigService()
        self.audit_log = audit_log or LoggingAuditLog()
        self.timer = timer
        self.clock = clock

    def attach_timer(self, timer: Optional[EscalationTimer]) -> None:
        self.timer = timer

    def notify_caregivers(
        self,
        patient_id: str,
        event_type: CaregiverEventType,
        severity: AlertSeverity,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
        original_alert_id: Optional[str] = None,
    ) -> List[CaregiverNotification]:
        """
        Start a notification chain for an event.

        The i-th caregiver in priority order gets a response window of
        (i + 1) timeouts; only the first carries a response deadline.
        """
        event_type = CaregiverEventType(event_type)
        severity = AlertSeverity(severity)
        now = self.clock()

        caregivers = [
            cg for cg in self.directory.get_active_caregivers(patient_id)
            if cg.status == RelationshipStatus.ACTIVE
        ]
        if not caregivers:
            logger.warning(f"No active caregivers for patient {patient_id}")
            return []

        eligible = [
            cg for cg in self.policy.prioritize(caregivers, now)
            if self.policy.should_notify(cg, event_type, severity, now)
        ]
        if not eligible:
            logger.info(f"No caregivers eligible for {event_type.value} notification right now")
            return []

        timeout = self.config_service.get_caregiver_timeout()
        priority = self.policy.priority_for_severity(severity)
        chain_id = str(uuid.uuid4())

        db = self.session_factory()
        try:
            notifications = [
                CaregiverNotification(
                    id=str(uuid.uuid4()),
                    chain_id=chain_id,
                    patient_id=patient_id,
                    caregiver_id=cg.caregiver_id,
                    relationship_id=cg.id,
                    event_type=event_type.value,
                    severity=severity.value,
                    title=title,
                    message=message,
                    data=payload or {},
                    priority=priority.value,
                    status=CaregiverNotificationStatus.SENT.value,
                    escalation_level=0,
                    expires_at=now + timeout * (i + 1),
                    response_deadline=now + timeout if i == 0 else None,
                    original_alert_id=original_alert_id,
                    sent_at=now,
                    created_at=now,
                    updated_at=now,
                )
                for i, cg in enumerate(eligible)
            ]
            db.add_all(notifications)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error creating caregiver notifications: {e}")
            raise
        finally:
            db.close()

        for notification, caregiver in zip(notifications, eligible):
            self._deliver(notification, caregiver)

        self._schedule_check(notifications[0].expires_at, notifications[0].id)
        logger.info(f"Caregiver chain {chain_id} started with {len(notifications)} notifications")
        return notifications

    def check_escalation(self, notification_id: str) -> Optional[CaregiverNotification]:
        """
        Escalate a timed-out notification.

        Returns the new notification when the chain moved to another
        caregiver, otherwise None. Each notification is acted on at most
        once no matter how many timers or sweeps reach it.
        """
        now = self.clock()
        max_level = self.config_service.config.caregiver_max_escalation_levels
        new_notification = None
        next_caregiver = None

        db = self.session_factory()
        try:
            claimed = db.query(CaregiverNotification).filter(
                CaregiverNotification.id == notification_id,
                CaregiverNotification.status.in_(AWAITING_ACK_STATUSES),
                CaregiverNotification.escalation_checked_at.is_(None),
                CaregiverNotification.expires_at <= now
            ).update({
                CaregiverNotification.escalation_checked_at: now,
                CaregiverNotification.updated_at: now,
            }, synchronize_session=False)
            if claimed != 1:
                db.rollback()
                return None

            notification = db.query(CaregiverNotification).filter(
                CaregiverNotification.id == notification_id
            ).first()
            chain = db.query(CaregiverNotification).filter(
                CaregiverNotification.chain_id == notification.chain_id
            ).order_by(CaregiverNotification.created_at, CaregiverNotification.expires_at).all()

            if any(n.status == CaregiverNotificationStatus.ACKNOWLEDGED.value for n in chain):
                db.commit()
                logger.info(f"Chain {notification.chain_id} already acknowledged, no escalation")
                return None

            if self._alert_answered(db, notification.original_alert_id):
                db.commit()
                logger.info(f"Alert behind chain {notification.chain_id} answered, no escalation")
                return None

            if notification.escalation_level >= max_level:
                db.query(CaregiverNotification).filter(
                    CaregiverNotification.id == notification_id,
                    CaregiverNotification.status.in_(AWAITING_ACK_STATUSES)
                ).update({
                    CaregiverNotification.status: CaregiverNotificationStatus.EXPIRED.value,
                    CaregiverNotification.updated_at: now,
                }, synchronize_session=False)
                db.commit()
                logger.warning(f"Caregiver chain {notification.chain_id} expired at max escalation level")
                self.audit_log.record(None, "caregiver_chain.expired", notification.chain_id, {
                    "notification_id": notification_id,
                    "escalation_level": notification.escalation_level,
                })
            else:
                root = chain[0]
                next_caregiver = self._find_next_caregiver(chain, notification, root, now)
                if next_caregiver is None:
                    logger.warning(f"No caregiver left to escalate chain {notification.chain_id}")
                else:
                    new_notification = self._build_escalation(notification, root, next_caregiver, now)
                    db.add(new_notification)
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error checking escalation for notification {notification_id}: {e}")
            raise
        finally:
            db.close()

        if new_notification is None:
            return None

        logger.warning(
            f"Caregiver chain {new_notification.chain_id} escalated to level {new_notification.escalation_level}"
        )
        self.audit_log.record(None, "caregiver_chain.escalated", new_notification.chain_id, {
            "from_notification_id": notification_id,
            "notification_id": new_notification.id,
            "escalation_level": new_notification.escalation_level,
        })
        self._deliver(new_notification, next_caregiver)
        self._schedule_check(new_notification.expires_at, new_notification.id)
        return new_notification

    @staticmethod
    def _alert_answered(db: Session, alert_id: Optional[str]) -> bool:
        """True once the alert that seeded a chain is acknowledged or closed"""
        if not alert_id:
            return False
        status = db.query(EmergencyAlert.status).filter(EmergencyAlert.id == alert_id).scalar()
        return status is not None and status not in AWAITING_RESPONSE_STATUSES

    def _build_escalation(
        self,
        timed_out: CaregiverNotification,
        root: CaregiverNotification,
        caregiver: CaregiverRelationship,
        now: datetime,
    ) -> CaregiverNotification:
        title = root.title
        if not title.startswith(ESCALATION_TITLE_PREFIX):
            title = f"{ESCALATION_TITLE_PREFIX}{title}"
        priority = timed_out.priority
        if priority != NotificationPriority.CRITICAL.value:
            priority = NotificationPriority.HIGH.value
        return CaregiverNotification(
            id=str(uuid.uuid4()),
            chain_id=timed_out.chain_id,
            patient_id=timed_out.patient_id,
            caregiver_id=caregiver.caregiver_id,
            relationship_id=caregiver.id,
            event_type=CaregiverEventType.ESCALATION.value,
            severity=timed_out.severity,
            title=title,
            message=f"{root.message}\n\nPrevious caregiver did not respond.",
            data={**(root.data or {}), "escalated_from": timed_out.id},
            priority=priority,
            status=CaregiverNotificationStatus.SENT.value,
            escalation_level=timed_out.escalation_level + 1,
            expires_at=now + self.config_service.get_caregiver_timeout(),
            original_alert_id=timed_out.original_alert_id,
            sent_at=now,
            created_at=now,
            updated_at=now,
        )

    def _find_next_caregiver(
        self,
        chain: List[CaregiverNotification],
        timed_out: CaregiverNotification,
        root: CaregiverNotification,
        now: datetime,
    ) -> Optional[CaregiverRelationship]:
        """Highest-priority eligible caregiver other than the one who timed out"""
        candidates = [
            cg for cg in self.directory.get_active_caregivers(timed_out.patient_id)
            if cg.caregiver_id != timed_out.caregiver_id and cg.status == RelationshipStatus.ACTIVE
        ]
        eligible = [
            cg for cg in self.policy.prioritize(candidates, now)
            if self.policy.should_notify(cg, root.event_type, timed_out.severity, now)
        ]
        if not eligible:
            return None
        already_notified = {n.caregiver_id for n in chain}
        for cg in eligible:
            if cg.caregiver_id not in already_notified:
                return cg
        return eligible[0]

    def check_pending_escalations(self) -> int:
        """Sweep every timed-out notification; returns how many were examined"""
        now = self.clock()
        db = self.session_factory()
        try:
            rows = db.query(CaregiverNotification.id).filter(
                CaregiverNotification.status.in_(AWAITING_ACK_STATUSES),
                CaregiverNotification.expires_at <= now,
                CaregiverNotification.escalation_checked_at.is_(None)
            ).order_by(CaregiverNotification.expires_at).all()
        finally:
            db.close()

        for (notification_id,) in rows:
            try:
                self.check_escalation(notification_id)
            except Exception as e:
                logger.error(f"Error escalating caregiver notification {notification_id}: {e}")

        if rows:
            logger.info(f"Checked {len(rows)} expired caregiver notifications")
        return len(rows)

    def acknowledge(self, notification_id: str, caregiver_id: str) -> Optional[CaregiverNotification]:
        """
        Acknowledge a notification addressed to this caregiver.

        Returns None when the notification does not exist, belongs to
        another caregiver, or has expired. Acknowledging twice returns the
        same notification without logging a second action.
        """
        now = self.clock()
        db = self.session_factory()
        try:
            notification = db.query(CaregiverNotification).filter(
                CaregiverNotification.id == notification_id,
                CaregiverNotification.caregiver_id == caregiver_id
            ).first()
            if notification is None:
                return None
            if notification.status == CaregiverNotificationStatus.ACKNOWLEDGED.value:
                return notification
            if notification.status not in AWAITING_ACK_STATUSES:
                return None

            updated = db.query(CaregiverNotification).filter(
                CaregiverNotification.id == notification_id,
                CaregiverNotification.caregiver_id == caregiver_id,
                CaregiverNotification.status.in_(AWAITING_ACK_STATUSES)
            ).update({
                CaregiverNotification.status: CaregiverNotificationStatus.ACKNOWLEDGED.value,
                CaregiverNotification.acknowledged_at: now,
                CaregiverNotification.updated_at: now,
            }, synchronize_session=False)
            if updated != 1:
                # Someone else moved it first; report whatever it settled on
                db.rollback()
                db.refresh(notification)
                if notification.status == CaregiverNotificationStatus.ACKNOWLEDGED.value:
                    return notification
                return None

            db.add(CaregiverAction(
                id=str(uuid.uuid4()),
                patient_id=notification.patient_id,
                caregiver_id=caregiver_id,
                alert_id=notification.original_alert_id,
                notification_id=notification_id,
                action=CaregiverActionType.ACKNOWLEDGED.value,
                notes=f"Acknowledged: {notification.title}",
                created_at=now,
            ))
            db.commit()
            db.refresh(notification)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error acknowledging caregiver notification {notification_id}: {e}")
            raise
        finally:
            db.close()

        logger.info(f"Caregiver notification {notification_id} acknowledged")
        self.audit_log.record(caregiver_id, "caregiver_notification.acknowledged", notification_id, {
            "chain_id": notification.chain_id,
            "escalation_level": notification.escalation_level,
        })
        return notification

    def log_caregiver_action(
        self,
        patient_id: str,
        caregiver_id: str,
        action: CaregiverActionType,
        alert_id: Optional[str] = None,
        notification_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CaregiverAction:
        """Record something a caregiver did for a patient"""
        if not self.directory.has_caregiver_access(caregiver_id, patient_id):
            raise Forbidden("Access denied", patient_id)

        action = CaregiverActionType(action)
        db = self.session_factory()
        try:
            entry = CaregiverAction(
                id=str(uuid.uuid4()),
                patient_id=patient_id,
                caregiver_id=caregiver_id,
                alert_id=alert_id,
                notification_id=notification_id,
                action=action.value,
                notes=notes,
                created_at=self.clock(),
            )
            db.add(entry)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error logging caregiver action: {e}")
            raise
        finally:
            db.close()

        self.audit_log.record(caregiver_id, f"caregiver_action.{action.value}", entry.id, {
            "patient_id": patient_id,
            "alert_id": alert_id,
        })
        return entry

    def get_pending_notifications(self, caregiver_id: str) -> List[CaregiverNotification]:
        """Unacknowledged, unexpired notifications for a caregiver, newest first"""
        now = self.clock()
        db = self.session_factory()
        try:
            return db.query(CaregiverNotification).filter(
                CaregiverNotification.caregiver_id == caregiver_id,
                CaregiverNotification.status.in_(AWAITING_ACK_STATUSES),
                CaregiverNotification.expires_at > now
            ).order_by(CaregiverNotification.created_at.desc()).all()
        finally:
            db.close()

    def get_caregiver_activity(self, patient_id: str, limit: int = 50) -> List[CaregiverAction]:
        db = self.session_factory()
        try:
            return db.query(CaregiverAction).filter(
                CaregiverAction.patient_id == patient_id
            ).order_by(CaregiverAction.created_at.desc()).limit(limit).all()
        finally:
            db.close()

    def _channels_for(self, caregiver: CaregiverRelationship, priority: str) -> List[NotificationChannel]:
        """Push and email always; SMS from high priority; a voice call only when critical"""
        wanted = [NotificationChannel.PUSH, NotificationChannel.EMAIL]
        if priority in (NotificationPriority.HIGH.value, NotificationPriority.CRITICAL.value):
            wanted.append(NotificationChannel.SMS)
        if priority == NotificationPriority.CRITICAL.value:
            wanted.append(NotificationChannel.CALL)

        available = caregiver.as_contact().channels()
        chosen = [channel for channel in wanted if channel in available]
        if not chosen and NotificationChannel.SMS in available:
            chosen = [NotificationChannel.SMS]
        return chosen

    def _deliver(self, notification: CaregiverNotification, caregiver: CaregiverRelationship) -> None:
        """Best-effort delivery; the chain advances on timeouts, not on delivery results"""
        contact = caregiver.as_contact()
        message = RenderedMessage(
            title=notification.title,
            body=notification.message,
            data={
                "notification_id": notification.id,
                "chain_id": notification.chain_id,
                "event_type": notification.event_type,
            },
        )
        delivered = 0
        for channel in self._channels_for(caregiver, notification.priority):
            outcome = self.dispatcher.deliver(contact.destination_for(channel), channel, message)
            if outcome.success:
                delivered += 1
        if not delivered:
            logger.warning(f"Caregiver notification {notification.id} could not be delivered on any channel")

    def _schedule_check(self, run_at: datetime, notification_id: str) -> None:
        if self.timer is None:
            return
        try:
            self.timer(run_at, notification_id)
        except Exception as e:
            # The periodic sweep still picks it up
            logger.warning(f"Could not schedule escalation check for {notification_id}: {e}")
