"""
Escalation Service - Advances unacknowledged alerts through the contact tiers.

Features:
- Tiered timing: primary contacts, then secondary after 5 minutes, then
  emergency services 10 minutes after that
- Conditional level advance so concurrent sweeps and acknowledgments never
  double-escalate an alert
- Per-alert failure isolation (one broken alert never stops the sweep)
- Escalation audit logging and history reconstruction
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from careguard.core.exceptions import ConfigurationError
from careguard.models.alert_models import EmergencyAlert, NotificationAttempt
from careguard.schemas.enums import (
    AWAITING_RESPONSE_STATUSES,
    AlertStatus,
    NotificationPurpose,
)
from careguard.utils.time_utils import Clock, utcnow

from .audit import AuditLog, LoggingAuditLog
from .config_service import EscalationConfigService
from .contact_directory import ContactDirectory
from .eligibility import EligibilityPolicy
from .notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class EscalationDetail:
    """One alert moved up a tier"""
    alert_id: str
    patient_id: str
    previous_level: int
    new_level: int


@dataclass
class EscalationSweepResult:
    escalated_count: int = 0
    details: List[EscalationDetail] = field(default_factory=list)
    failed_alert_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EscalationService:
    """Service for escalating alerts nobody has acknowledged"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        directory: ContactDirectory,
        dispatcher: NotificationDispatcher,
        audit_log: Optional[AuditLog] = None,
        policy: Optional[EligibilityPolicy] = None,
        config_service: Optional[EscalationConfigService] = None,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.directory = directory
        self.dispatcher = dispatcher
        self.audit_log = audit_log or LoggingAuditLog()
        self.policy = policy or EligibilityPolicy()
        self.config_service = config_service or EscalationConfigService()
        self.clock = clock

    def escalate_unresponsive_alerts(self) -> EscalationSweepResult:
        """
        Check all unacknowledged alerts and escalate the ones whose tier
        window has run out.

        Safe to run concurrently and after a restart: every decision is made
        from persisted state and every advance is conditional.
        """
        now = self.clock()
        result = EscalationSweepResult()

        candidates = self._get_alerts_for_escalation(now)
        for alert_id, level in candidates:
            try:
                detail = self._escalate_alert(alert_id, level, now)
            except Exception as e:
                logger.error(f"Error escalating alert {alert_id}: {e}")
                result.failed_alert_ids.append(alert_id)
                continue
            if detail:
                result.details.append(detail)

        result.escalated_count = len(result.details)
        if result.escalated_count:
            logger.info(f"Escalated {result.escalated_count} alerts")
        return result

    def _get_alerts_for_escalation(self, now: datetime) -> List[tuple]:
        """(id, escalation_level) of alerts past their tier window"""
        config_service = self.config_service
        primary_cutoff = now - config_service.get_tier_wait(0)
        secondary_cutoff = now - config_service.get_tier_wait(1)

        db = self.session_factory()
        try:
            rows = db.query(EmergencyAlert.id, EmergencyAlert.escalation_level).filter(
                EmergencyAlert.status.in_(AWAITING_RESPONSE_STATUSES),
                EmergencyAlert.bypass_escalation.is_(False),
                or_(
                    and_(EmergencyAlert.escalation_level == 0, EmergencyAlert.created_at < primary_cutoff),
                    and_(EmergencyAlert.escalation_level == 1, EmergencyAlert.escalated_at < secondary_cutoff),
                )
            ).order_by(EmergencyAlert.created_at).all()
            return [(row[0], row[1]) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error getting alerts for escalation: {e}")
            return []
        finally:
            db.close()

    def _escalate_alert(self, alert_id: str, expected_level: int, now: datetime) -> Optional[EscalationDetail]:
        """Advance one alert a single level if nobody else got there first"""
        new_level = expected_level + 1
        if new_level > self.config_service.config.terminal_level:
            logger.info(f"Alert {alert_id} at max escalation level")
            return None

        db = self.session_factory()
        try:
            updated = db.query(EmergencyAlert).filter(
                EmergencyAlert.id == alert_id,
                EmergencyAlert.escalation_level == expected_level,
                EmergencyAlert.status.in_(AWAITING_RESPONSE_STATUSES),
                EmergencyAlert.bypass_escalation.is_(False)
            ).update({
                EmergencyAlert.escalation_level: new_level,
                EmergencyAlert.status: AlertStatus.ESCALATED.value,
                EmergencyAlert.escalated_at: now,
                EmergencyAlert.updated_at: now,
            }, synchronize_session=False)
            if updated != 1:
                db.rollback()
                logger.info(f"Alert {alert_id} acknowledged or already escalated, skipping")
                return None
            db.commit()
            alert = db.query(EmergencyAlert).filter(EmergencyAlert.id == alert_id).first()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

        logger.warning(f"Alert {alert_id} escalated to level {new_level}")
        self.audit_log.record(None, "emergency_alert.escalated", alert_id, {
            "previous_level": expected_level,
            "new_level": new_level,
        })

        try:
            self._send_escalation_notifications(alert)
        except Exception as e:
            logger.error(f"Escalation notifications failed for alert {alert_id}: {e}")

        return EscalationDetail(
            alert_id=alert_id,
            patient_id=alert.patient_id,
            previous_level=expected_level,
            new_level=new_level,
        )

    def _send_escalation_notifications(self, alert: EmergencyAlert) -> None:
        """Notify the cohort for the alert's new level"""
        current = self._reload(alert.id)
        if current is None or current.status not in AWAITING_RESPONSE_STATUSES:
            logger.info(f"Alert {alert.id} answered before escalation notice went out")
            return

        if alert.escalation_level >= self.config_service.config.terminal_level:
            self.dispatcher.notify_emergency_services(alert)
            self.audit_log.record(None, "emergency_alert.emergency_services_notified", alert.id, {
                "escalation_level": alert.escalation_level,
            })
            return

        try:
            contacts = self.directory.require_emergency_contacts(alert.patient_id)
        except ConfigurationError as e:
            logger.warning(f"{e.message} for patient of alert {alert.id}")
            return
        cohort = self.policy.cohort_for_level(
            contacts,
            alert.escalation_level,
            self.policy.event_category_for_alert(alert.alert_type),
            alert.severity,
            self.clock(),
        )
        self.dispatcher.dispatch(alert, cohort, purpose=NotificationPurpose.ESCALATION)

    def _reload(self, alert_id: str) -> Optional[EmergencyAlert]:
        db = self.session_factory()
        try:
            return db.query(EmergencyAlert).filter(EmergencyAlert.id == alert_id).first()
        finally:
            db.close()

    def get_escalation_history(self, alert_id: str) -> List[Dict[str, Any]]:
        """Escalation and emergency-services notifications sent for an alert"""
        db = self.session_factory()
        try:
            attempts = db.query(NotificationAttempt).filter(
                NotificationAttempt.alert_id == alert_id,
                NotificationAttempt.purpose.in_([
                    NotificationPurpose.ESCALATION.value,
                    NotificationPurpose.EMERGENCY_SERVICES.value,
                ])
            ).order_by(NotificationAttempt.created_at).all()
        except SQLAlchemyError as e:
            logger.error(f"Error getting escalation history: {e}")
            return []
        finally:
            db.close()

        return [
            {
                "notification_id": attempt.id,
                "purpose": attempt.purpose,
                "recipient_type": attempt.recipient_type,
                "channel": attempt.channel,
                "status": attempt.status,
                "created_at": attempt.created_at.isoformat() if attempt.created_at else None,
                "sent_at": attempt.sent_at.isoformat() if attempt.sent_at else None,
            }
            for attempt in attempts
        ]
