"""
Escalation Background Worker - Runs the periodic sweeps and one-shot checks.

This worker:
1. Sweeps unacknowledged alerts every minute and escalates expired tiers
2. Sweeps timed-out caregiver notifications every minute
3. Schedules one-shot escalation checks for individual caregiver notifications

Jobs run on an APScheduler BackgroundScheduler. Each interval job is
limited to one running instance; the sweeps themselves are idempotent, so
several worker processes may run side by side.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .caregiver_escalation import CaregiverEscalationService
from .config_service import EscalationConfigService
from .escalation_service import EscalationService, EscalationSweepResult

logger = logging.getLogger(__name__)

ALERT_SWEEP_JOB_ID = "escalate_unresponsive_alerts"
CAREGIVER_SWEEP_JOB_ID = "check_pending_caregiver_escalations"


class EscalationWorker:
    """Schedules both escalation sweeps and caregiver timers"""

    def __init__(
        self,
        escalation_service: EscalationService,
        caregiver_service: CaregiverEscalationService,
        config_service: Optional[EscalationConfigService] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.escalation_service = escalation_service
        self.caregiver_service = caregiver_service
        self.config_service = config_service or EscalationConfigService()
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start the background scheduler."""
        if self.scheduler.running:
            return
        config = self.config_service.config
        now = datetime.now(timezone.utc)

        # First run immediately so a restart picks up overdue work
        self.scheduler.add_job(
            self.run_alert_sweep,
            IntervalTrigger(seconds=config.sweep_interval_seconds),
            id=ALERT_SWEEP_JOB_ID,
            replace_existing=True,
            name='Escalate Unresponsive Alerts',
            max_instances=1,
            coalesce=True,
            next_run_time=now,
        )
        self.scheduler.add_job(
            self.run_caregiver_sweep,
            IntervalTrigger(seconds=config.caregiver_sweep_interval_seconds),
            id=CAREGIVER_SWEEP_JOB_ID,
            replace_existing=True,
            name='Check Caregiver Escalations',
            max_instances=1,
            coalesce=True,
            next_run_time=now,
        )
        self.caregiver_service.attach_timer(self.schedule_caregiver_check)
        self.scheduler.start()
        logger.info("Escalation worker started")

    def stop(self):
        """Stop the background scheduler."""
        self.caregiver_service.attach_timer(None)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Escalation worker stopped")

    def schedule_caregiver_check(self, run_at: datetime, notification_id: str) -> None:
        """One-shot escalation check when a caregiver notification times out"""
        self.scheduler.add_job(
            self.caregiver_service.check_escalation,
            DateTrigger(run_date=run_at.replace(tzinfo=timezone.utc)),
            args=[notification_id],
            id=f"caregiver_escalation_{notification_id}",
            replace_existing=True,
            name='Caregiver Escalation Check',
            misfire_grace_time=None,
        )

    def run_alert_sweep(self) -> Optional[EscalationSweepResult]:
        try:
            return self.escalation_service.escalate_unresponsive_alerts()
        except Exception as e:
            logger.error(f"Alert escalation sweep failed: {e}")
            return None

    def run_caregiver_sweep(self) -> int:
        try:
            return self.caregiver_service.check_pending_escalations()
        except Exception as e:
            logger.error(f"Caregiver escalation sweep failed: {e}")
            return 0
