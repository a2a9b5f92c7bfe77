"""
Alert Lifecycle Service - Create, acknowledge and resolve patient emergency alerts.

Provides:
- Deduplicated alert creation (one outstanding alert per patient and type)
- Fire-and-forget initial notification of the first contact tier
- Immediate emergency-services hand-off for SOS alerts that bypass escalation
- Compare-and-swap acknowledge/resolve transitions safe against concurrent sweeps
- Access-checked reads for patients and their caregivers
"""

import logging
import uuid
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from careguard.core.exceptions import ConfigurationError, Forbidden, InvalidState, NotFound
from careguard.models.alert_models import EmergencyAlert, NotificationAttempt
from careguard.schemas.contacts import Location
from careguard.schemas.enums import (
    ALERT_SEVERITY,
    AWAITING_RESPONSE_STATUSES,
    OUTSTANDING_STATUSES,
    TERMINAL_STATUSES,
    AlertStatus,
    AlertType,
)
from careguard.utils.time_utils import Clock, utcnow

from .audit import AuditLog, LoggingAuditLog
from .caregiver_escalation import CaregiverEscalationService
from .config_service import EscalationConfigService
from .contact_directory import ContactDirectory
from .eligibility import EligibilityPolicy
from .notification_service import ALERT_MESSAGES, NotificationDispatcher, format_location

logger = logging.getLogger(__name__)

CaregiverAccessCheck = Callable[[str, str], bool]

BYPASS_LEVEL = 2


class AlertLifecycleService:
    """Owns every alert state transition outside of the escalation sweep"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        directory: ContactDirectory,
        dispatcher: NotificationDispatcher,
        caregiver_chain: Optional[CaregiverEscalationService] = None,
        audit_log: Optional[AuditLog] = None,
        access_check: Optional[CaregiverAccessCheck] = None,
        policy: Optional[EligibilityPolicy] = None,
        config_service: Optional[EscalationConfigService] = None,
        executor: Optional[Executor] = None,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.directory = directory
        self.dispatcher = dispatcher
        self.caregiver_chain = caregiver_chain
        self.audit_log = audit_log or LoggingAuditLog()
        self.access_check = access_check or directory.has_caregiver_access
        self.policy = policy or EligibilityPolicy()
        self.config_service = config_service or EscalationConfigService()
        self.clock = clock
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.config_service.config.background_max_workers,
            thread_name_prefix="alert-lifecycle"
        )

    def shutdown(self):
        if self._owns_executor:
            self.executor.shutdown(wait=True)

    def create(
        self,
        patient_id: str,
        alert_type: AlertType,
        vital_sign_id: Optional[str] = None,
        medication_id: Optional[str] = None,
        location: Optional[Location] = None,
        notes: Optional[str] = None,
        bypass_escalation: bool = False,
    ) -> EmergencyAlert:
        """
        Create an emergency alert, or return the outstanding one for the
        same patient and type.

        Notifications are started in the background; the alert is returned
        as soon as it is persisted.
        """
        alert_type = AlertType(alert_type)
        severity = ALERT_SEVERITY[alert_type]
        now = self.clock()

        db = self.session_factory()
        try:
            existing = self._find_outstanding(db, patient_id, alert_type)
            if existing:
                logger.info(f"Alert {existing.id} already outstanding for {alert_type.value}, skipping duplicate")
                return existing

            alert = EmergencyAlert(
                id=str(uuid.uuid4()),
                patient_id=patient_id,
                alert_type=alert_type.value,
                severity=severity.value,
                status=AlertStatus.ACTIVE.value,
                escalation_level=BYPASS_LEVEL if bypass_escalation else 0,
                bypass_escalation=bypass_escalation,
                vital_sign_id=vital_sign_id,
                medication_id=medication_id,
                location_lat=location.lat if location else None,
                location_lng=location.lng if location else None,
                location_address=location.address if location else None,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            db.add(alert)
            try:
                db.commit()
            except IntegrityError:
                # Lost a race with a concurrent create for the same patient and type
                db.rollback()
                existing = self._find_outstanding(db, patient_id, alert_type)
                if existing:
                    logger.info(f"Alert {existing.id} created concurrently for {alert_type.value}, returning it")
                    return existing
                raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error creating {alert_type.value} alert: {e}")
            raise
        finally:
            db.close()

        logger.warning(
            f"Emergency alert {alert.id} created: type={alert.alert_type} "
            f"severity={alert.severity} level={alert.escalation_level}"
        )
        self.audit_log.record(patient_id, "emergency_alert.created", alert.id, {
            "alert_type": alert.alert_type,
            "severity": alert.severity,
            "bypass_escalation": bypass_escalation,
        })

        self._submit(self._start_notifications, alert.id, now)
        return alert

    def _start_notifications(self, alert_id: str, created_at: datetime) -> None:
        """Initial tier dispatch, caregiver chain and, for SOS, emergency services"""
        lag = (self.clock() - created_at).total_seconds()
        if lag > self.config_service.config.initial_dispatch_deadline_seconds:
            logger.warning(f"Initial dispatch for alert {alert_id} started {lag:.1f}s after creation")

        alert = self._load(alert_id)
        if alert is None or alert.status not in AWAITING_RESPONSE_STATUSES:
            logger.info(f"Alert {alert_id} no longer awaiting response, skipping initial notifications")
            return

        now = self.clock()
        event_type = self.policy.event_category_for_alert(alert.alert_type)

        try:
            contacts = self.directory.require_emergency_contacts(alert.patient_id)
            cohort = self.policy.cohort_for_level(
                contacts, alert.escalation_level, event_type, alert.severity, now
            )
            self.dispatcher.dispatch(alert, cohort)
        except ConfigurationError as e:
            logger.warning(f"{e.message} for patient of alert {alert.id}")
        except Exception as e:
            logger.error(f"Initial notification failed for alert {alert.id}: {e}")

        if alert.bypass_escalation:
            try:
                self.dispatcher.notify_emergency_services(alert)
                self.audit_log.record(None, "emergency_alert.emergency_services_notified", alert.id, {
                    "escalation_level": alert.escalation_level,
                })
            except Exception as e:
                logger.error(f"Emergency services notification failed for alert {alert.id}: {e}")

        if self.caregiver_chain is not None:
            title, body = ALERT_MESSAGES[AlertType(alert.alert_type)]
            location = format_location(alert)
            try:
                self.caregiver_chain.notify_caregivers(
                    patient_id=alert.patient_id,
                    event_type=event_type,
                    severity=alert.severity,
                    title=title,
                    message=f"{body}\n{location}" if location else body,
                    payload={
                        "alert_id": alert.id,
                        "alert_type": alert.alert_type,
                        "severity": alert.severity,
                    },
                    original_alert_id=alert.id,
                )
            except Exception as e:
                logger.error(f"Caregiver notification failed for alert {alert.id}: {e}")

    def acknowledge(self, alert_id: str, actor_id: str, notes: Optional[str] = None) -> EmergencyAlert:
        """Stop escalation: someone is responding"""
        now = self.clock()
        db = self.session_factory()
        try:
            alert = self._get_authorized(db, alert_id, actor_id)
            if alert.status not in AWAITING_RESPONSE_STATUSES:
                raise InvalidState("Alert is not active", alert_id)

            updated = db.query(EmergencyAlert).filter(
                EmergencyAlert.id == alert_id,
                EmergencyAlert.status.in_(AWAITING_RESPONSE_STATUSES)
            ).update({
                EmergencyAlert.status: AlertStatus.ACKNOWLEDGED.value,
                EmergencyAlert.acknowledged_at: now,
                EmergencyAlert.acknowledged_by: actor_id,
                EmergencyAlert.notes: func.coalesce(notes, EmergencyAlert.notes),
                EmergencyAlert.updated_at: now,
            }, synchronize_session=False)
            if updated != 1:
                db.rollback()
                raise InvalidState("Alert is not active", alert_id)
            db.commit()
            db.refresh(alert)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error acknowledging alert {alert_id}: {e}")
            raise
        finally:
            db.close()

        logger.info(f"Alert {alert_id} acknowledged at level {alert.escalation_level}")
        self.audit_log.record(actor_id, "emergency_alert.acknowledged", alert_id, {
            "escalation_level": alert.escalation_level,
        })
        self._submit(self.dispatcher.notify_resolution, alert, AlertStatus.ACKNOWLEDGED.value)
        return alert

    def resolve(
        self,
        alert_id: str,
        actor_id: str,
        notes: Optional[str] = None,
        was_false_alarm: bool = False,
    ) -> EmergencyAlert:
        """Close the alert; allowed from any non-terminal status"""
        now = self.clock()
        status = AlertStatus.FALSE_ALARM if was_false_alarm else AlertStatus.RESOLVED
        db = self.session_factory()
        try:
            alert = self._get_authorized(db, alert_id, actor_id)
            if alert.status in TERMINAL_STATUSES:
                raise InvalidState("Alert is already resolved", alert_id)

            updated = db.query(EmergencyAlert).filter(
                EmergencyAlert.id == alert_id,
                EmergencyAlert.status.notin_(TERMINAL_STATUSES)
            ).update({
                EmergencyAlert.status: status.value,
                EmergencyAlert.resolved_at: now,
                EmergencyAlert.resolved_by: actor_id,
                EmergencyAlert.was_false_alarm: was_false_alarm,
                EmergencyAlert.notes: func.coalesce(notes, EmergencyAlert.notes),
                EmergencyAlert.updated_at: now,
            }, synchronize_session=False)
            if updated != 1:
                db.rollback()
                raise InvalidState("Alert is already resolved", alert_id)
            db.commit()
            db.refresh(alert)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error resolving alert {alert_id}: {e}")
            raise
        finally:
            db.close()

        logger.info(f"Alert {alert_id} closed as {status.value}")
        self.audit_log.record(actor_id, f"emergency_alert.{status.value}", alert_id, {
            "escalation_level": alert.escalation_level,
        })
        self._submit(self.dispatcher.notify_resolution, alert, status.value)
        return alert

    def get(self, alert_id: str, requester_id: str) -> EmergencyAlert:
        db = self.session_factory()
        try:
            return self._get_authorized(db, alert_id, requester_id)
        finally:
            db.close()

    def get_with_notifications(
        self,
        alert_id: str,
        requester_id: str
    ) -> Tuple[EmergencyAlert, List[NotificationAttempt]]:
        db = self.session_factory()
        try:
            alert = self._get_authorized(db, alert_id, requester_id)
            attempts = db.query(NotificationAttempt).filter(
                NotificationAttempt.alert_id == alert_id
            ).order_by(NotificationAttempt.created_at).all()
            return alert, attempts
        finally:
            db.close()

    def list_for_patient(
        self,
        patient_id: str,
        status: Optional[AlertStatus] = None,
        limit: int = 20,
    ) -> List[EmergencyAlert]:
        db = self.session_factory()
        try:
            query = db.query(EmergencyAlert).filter(EmergencyAlert.patient_id == patient_id)
            if status is not None:
                query = query.filter(EmergencyAlert.status == AlertStatus(status).value)
            return query.order_by(EmergencyAlert.created_at.desc()).limit(limit).all()
        finally:
            db.close()

    def list_active(self, patient_id: str) -> List[EmergencyAlert]:
        """Alerts still outstanding for the patient, newest first"""
        db = self.session_factory()
        try:
            return db.query(EmergencyAlert).filter(
                EmergencyAlert.patient_id == patient_id,
                EmergencyAlert.status.in_(OUTSTANDING_STATUSES)
            ).order_by(EmergencyAlert.created_at.desc()).all()
        finally:
            db.close()

    def _get_authorized(self, db: Session, alert_id: str, requester_id: str) -> EmergencyAlert:
        alert = db.query(EmergencyAlert).filter(EmergencyAlert.id == alert_id).first()
        if alert is None:
            raise NotFound("Alert not found", alert_id)
        if alert.patient_id != requester_id and not self.access_check(requester_id, alert.patient_id):
            raise Forbidden("Access denied", alert_id)
        return alert

    def _find_outstanding(self, db: Session, patient_id: str, alert_type: AlertType) -> Optional[EmergencyAlert]:
        return db.query(EmergencyAlert).filter(
            EmergencyAlert.patient_id == patient_id,
            EmergencyAlert.alert_type == alert_type.value,
            EmergencyAlert.status.in_(OUTSTANDING_STATUSES)
        ).first()

    def _load(self, alert_id: str) -> Optional[EmergencyAlert]:
        db = self.session_factory()
        try:
            return db.query(EmergencyAlert).filter(EmergencyAlert.id == alert_id).first()
        finally:
            db.close()

    def _submit(self, fn, *args) -> Future:
        future = self.executor.submit(fn, *args)
        future.add_done_callback(_log_background_failure)
        return future


def _log_background_failure(future: Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Background alert task failed: {type(error).__name__}: {error}")
