"""
Escalation Engine Service Package - Patient emergency alerts that escalate until answered.

Components:
1. AlertLifecycleService - Create, acknowledge and resolve alerts with deduplication
2. EscalationService - Tiered escalation of unacknowledged alerts
3. EligibilityPolicy - Preferences, quiet hours, shifts and contact ordering
4. NotificationDispatcher - Multi-channel delivery (Push, SMS, Email, Voice)
5. CaregiverEscalationService - Time-boxed caregiver notification chains
6. ContactDirectory - Who can be reached for a patient
7. EscalationConfigService - Operator-tunable timings and limits
8. EscalationWorker - APScheduler jobs for both sweeps
"""

from .alert_lifecycle import AlertLifecycleService
from .escalation_service import EscalationService, EscalationSweepResult
from .eligibility import EligibilityPolicy
from .notification_service import NotificationDispatcher
from .caregiver_escalation import CaregiverEscalationService
from .contact_directory import ContactDirectory, SqlContactDirectory
from .config_service import EscalationConfigService, EscalationEngineConfig
from .background_worker import EscalationWorker
from .engine import EscalationEngine, build_engine

__all__ = [
    'AlertLifecycleService',
    'EscalationService',
    'EscalationSweepResult',
    'EligibilityPolicy',
    'NotificationDispatcher',
    'CaregiverEscalationService',
    'ContactDirectory',
    'SqlContactDirectory',
    'EscalationConfigService',
    'EscalationEngineConfig',
    'EscalationWorker',
    'EscalationEngine',
    'build_engine',
]
