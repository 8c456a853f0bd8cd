"""
Overdue sweep job and the scheduler registry.
"""

from datetime import timedelta

import pytest

from app.models.notification import Notification
from app.models.scheduling import ScheduledJob
from app.services.scheduled_jobs import scan_overdue_stages
from app.services.scheduler_service import SchedulerService, get_registered_jobs


@pytest.fixture()
def late_paper(stage_template, make_paper):
    stage_template([("A", "sps", "3_hours"), ("B", "vp_acad", "1_day")])
    return make_paper()


def _overdue_notifications():
    return Notification.query.filter_by(category="deadline").all()


class TestOverdueSweep:
    def test_notifies_once_per_day(self, app, late_paper, now):
        t = now + timedelta(hours=4)
        first = scan_overdue_stages(app, now=t)
        assert first == {"stages_overdue": 1, "notifications_created": 1, "already_notified": 0}

        second = scan_overdue_stages(app, now=t + timedelta(hours=1))
        assert second["notifications_created"] == 0
        assert second["already_notified"] == 1

        notif = _overdue_notifications()[0]
        assert notif.recipient_role == "sps"
        assert notif.entity_id == late_paper.current_stage_id
        assert notif.severity == "warning"

    def test_notifies_again_next_day(self, app, late_paper, now):
        scan_overdue_stages(app, now=now + timedelta(hours=4))
        result = scan_overdue_stages(app, now=now + timedelta(days=1, hours=1))
        assert result["notifications_created"] == 1
        assert len(_overdue_notifications()) == 2

    def test_nothing_overdue(self, app, late_paper, now):
        result = scan_overdue_stages(app, now=now + timedelta(hours=1))
        assert result["stages_overdue"] == 0
        assert _overdue_notifications() == []

    def test_disabled_by_config(self, app, late_paper, now, monkeypatch):
        monkeypatch.setitem(app.config, "OVERDUE_SWEEP_ENABLED", False)
        result = scan_overdue_stages(app, now=now + timedelta(days=3))
        assert result["disabled"] is True
        assert _overdue_notifications() == []


class TestScheduler:
    def test_job_registered(self):
        assert "overdue_stage_scanner" in get_registered_jobs()

    def test_run_job_records_history(self, late_paper, now):
        result = SchedulerService.run_job("overdue_stage_scanner", now=now + timedelta(hours=4))
        assert result["status"] == "success"
        assert result["result"]["notifications_created"] == 1

        job = ScheduledJob.query.filter_by(job_name="overdue_stage_scanner").one()
        assert job.run_count == 1
        assert job.last_run_status == "success"

    def test_unknown_job(self):
        assert SchedulerService.run_job("nightly_export")["status"] == "error"

    def test_disabled_job_skipped(self, late_paper, now):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("overdue_stage_scanner", False)
        result = SchedulerService.run_job("overdue_stage_scanner", now=now + timedelta(hours=4))
        assert result["status"] == "skipped"
        assert _overdue_notifications() == []

    def test_failing_job_recorded(self, monkeypatch):
        import app.services.scheduler_service as sched

        def explode(app, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setitem(sched._job_registry, "overdue_stage_scanner", explode)
        result = SchedulerService.run_job("overdue_stage_scanner")
        assert result["status"] == "failed"
        assert result["error"] == "boom"
        job = ScheduledJob.query.filter_by(job_name="overdue_stage_scanner").one()
        assert job.error_count == 1
        assert job.last_error == "boom"
