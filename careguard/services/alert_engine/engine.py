"""
Escalation engine assembly.

Builds every service around one session factory, one contact directory,
one clock and one set of sinks, so the API, the background worker and the
tests all run the same wiring.
"""

import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from careguard.config import Settings
from careguard.schemas.enums import NotificationChannel
from careguard.utils.time_utils import Clock, utcnow

from .alert_lifecycle import AlertLifecycleService, CaregiverAccessCheck
from .audit import AuditLog, LoggingAuditLog
from .background_worker import EscalationWorker
from .caregiver_escalation import CaregiverEscalationService
from .config_service import EscalationConfigService, EscalationEngineConfig
from .contact_directory import ContactDirectory, SqlContactDirectory
from .eligibility import EligibilityPolicy
from .escalation_service import EscalationService
from .notification_service import NotificationDispatcher
from .sinks import (
    EmergencyServicesSink,
    NotificationSink,
    build_emergency_services_sink,
    build_notification_sinks,
)

logger = logging.getLogger(__name__)


@dataclass
class EscalationEngine:
    config_service: EscalationConfigService
    directory: ContactDirectory
    dispatcher: NotificationDispatcher
    lifecycle: AlertLifecycleService
    escalation: EscalationService
    caregivers: CaregiverEscalationService
    worker: EscalationWorker

    def start_worker(self):
        self.worker.start()

    def shutdown(self):
        self.worker.stop()
        self.lifecycle.shutdown()
        self.dispatcher.shutdown()


def build_engine(
    session_factory: Callable[[], Session],
    settings: Settings,
    directory: Optional[ContactDirectory] = None,
    sinks: Optional[Dict[NotificationChannel, NotificationSink]] = None,
    emergency_services_sink: Optional[EmergencyServicesSink] = None,
    audit_log: Optional[AuditLog] = None,
    access_check: Optional[CaregiverAccessCheck] = None,
    config: Optional[EscalationEngineConfig] = None,
    executor: Optional[Executor] = None,
    delivery_executor: Optional[Executor] = None,
    clock: Clock = utcnow,
) -> EscalationEngine:
    """
    Wire up the escalation engine.

    ``executor`` runs fire-and-forget work started by alert transitions and
    ``delivery_executor`` runs provider calls; they are kept apart so a busy
    dispatch never starves the sends it is waiting on.
    """
    config_service = EscalationConfigService(config or EscalationEngineConfig(
        emergency_services_number=settings.EMERGENCY_SERVICES_NUMBER
    ))
    directory = directory or SqlContactDirectory(session_factory)
    audit_log = audit_log or LoggingAuditLog()
    policy = EligibilityPolicy()

    dispatcher = NotificationDispatcher(
        session_factory,
        directory,
        sinks if sinks is not None else build_notification_sinks(settings),
        emergency_services_sink or build_emergency_services_sink(settings),
        config_service=config_service,
        executor=delivery_executor,
        clock=clock,
    )
    caregivers = CaregiverEscalationService(
        session_factory,
        directory,
        dispatcher,
        policy=policy,
        config_service=config_service,
        audit_log=audit_log,
        clock=clock,
    )
    lifecycle = AlertLifecycleService(
        session_factory,
        directory,
        dispatcher,
        caregiver_chain=caregivers,
        audit_log=audit_log,
        access_check=access_check,
        policy=policy,
        config_service=config_service,
        executor=executor,
        clock=clock,
    )
    escalation = EscalationService(
        session_factory,
        directory,
        dispatcher,
        audit_log=audit_log,
        policy=policy,
        config_service=config_service,
        clock=clock,
    )
    worker = EscalationWorker(escalation, caregivers, config_service=config_service)

    logger.info(f"Escalation engine ready with channels: {sorted(c.value for c in dispatcher.sinks)}")
    return EscalationEngine(
        config_service=config_service,
        directory=directory,
        dispatcher=dispatcher,
        lifecycle=lifecycle,
        escalation=escalation,
        caregivers=caregivers,
        worker=worker,
    )
