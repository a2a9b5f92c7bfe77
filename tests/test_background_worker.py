"""
Tests for the APScheduler worker that drives both sweeps.
"""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from careguard.services.alert_engine.background_worker import (
    ALERT_SWEEP_JOB_ID,
    CAREGIVER_SWEEP_JOB_ID,
    EscalationWorker,
)
from careguard.services.alert_engine.config_service import EscalationConfigService


@pytest.fixture
def scheduler():
    scheduler = MagicMock()
    scheduler.running = False
    return scheduler


@pytest.fixture
def worker(scheduler):
    return EscalationWorker(MagicMock(), MagicMock(), EscalationConfigService(), scheduler=scheduler)


class TestEscalationWorker:
    def test_start_registers_both_sweeps(self, worker, scheduler):
        worker.start()

        job_ids = [call.kwargs["id"] for call in scheduler.add_job.call_args_list]
        assert job_ids == [ALERT_SWEEP_JOB_ID, CAREGIVER_SWEEP_JOB_ID]
        for call in scheduler.add_job.call_args_list:
            assert isinstance(call.args[1], IntervalTrigger)
            assert call.kwargs["max_instances"] == 1
        scheduler.start.assert_called_once()
        worker.caregiver_service.attach_timer.assert_called_once_with(worker.schedule_caregiver_check)

    def test_start_is_idempotent(self, worker, scheduler):
        scheduler.running = True
        worker.start()
        scheduler.add_job.assert_not_called()

    def test_one_shot_caregiver_check(self, worker, scheduler):
        worker.schedule_caregiver_check(datetime(2026, 3, 2, 14, 5), "notif-1")

        call = scheduler.add_job.call_args
        assert call.args[0] == worker.caregiver_service.check_escalation
        assert isinstance(call.args[1], DateTrigger)
        assert call.kwargs["args"] == ["notif-1"]
        assert call.kwargs["id"] == "caregiver_escalation_notif-1"

    def test_sweep_failures_are_contained(self, worker):
        worker.escalation_service.escalate_unresponsive_alerts.side_effect = RuntimeError("db down")
        worker.caregiver_service.check_pending_escalations.side_effect = RuntimeError("db down")

        assert worker.run_alert_sweep() is None
        assert worker.run_caregiver_sweep() == 0

    def test_stop_detaches_timer(self, worker, scheduler):
        scheduler.running = True
        worker.stop()
        worker.caregiver_service.attach_timer.assert_called_with(None)
        scheduler.shutdown.assert_called_once_with(wait=False)
