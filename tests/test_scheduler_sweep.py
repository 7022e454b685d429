"""
Tests: Threshold sweep and scheduled jobs.

Covers:
    1. 40 + 40 consumption against a 70% exhaustion threshold, then sweep
    2. Sweep summary, idempotency and per-project failure isolation
    3. SchedulerService registration / run / toggle
    4. alert_digest job
"""

from datetime import date, timedelta
from unittest.mock import patch

from agromonitor.models.monitoring import Alert
from agromonitor.models.scheduling import ScheduledJob
from agromonitor.services import alert_service, consumption_service, notification_filter
from agromonitor.services.scheduler_service import SchedulerService, get_registered_jobs


def _open_alerts(resource, kind="exhaustion"):
    return Alert.query.filter(
        Alert.planned_resource_id == resource.id,
        Alert.kind == kind,
        Alert.state == "activa",
    ).all()


# ═══════════════════════════════════════════════════════════════════════════
#  1. End-to-end scenario
# ═══════════════════════════════════════════════════════════════════════════

class TestFortyFortyScenario:

    def test_single_alert_survives_sweep(self, resource, productor, make_threshold):
        make_threshold("exhaustion", percentage=70)

        consumption_service.record_consumption(resource.id, "40", "2026-03-01", user=productor)
        assert _open_alerts(resource) == []

        consumption_service.record_consumption(resource.id, "40", "2026-03-02", user=productor)
        assert len(_open_alerts(resource)) == 1

        summary = alert_service.sweep()
        assert summary["created"] == 0
        assert len(_open_alerts(resource)) == 1

        alert_service.sweep()
        assert Alert.query.count() == 1


# ═══════════════════════════════════════════════════════════════════════════
#  2. Sweep
# ═══════════════════════════════════════════════════════════════════════════

class TestSweep:

    def test_picks_up_time_based_thresholds(self, project, make_resource, make_threshold):
        res = make_resource(project, end_date=date.today() + timedelta(days=2))
        make_threshold("delay", day_count=3)

        summary = alert_service.sweep()

        assert summary == {"projects": 1, "candidates": 1, "created": 1, "deduplicated": 0, "errors": 0}
        alert = Alert.query.one()
        assert alert.kind == "delay"
        assert alert.planned_resource_id == res.id
        assert alert.severity == "alta"

    def test_second_run_creates_nothing(self, project, make_resource, make_threshold):
        make_resource(project, end_date=date.today())
        make_threshold("delay", day_count=3)
        alert_service.sweep()

        summary = alert_service.sweep()
        assert summary["created"] == 0
        assert summary["candidates"] == 0
        assert Alert.query.count() == 1

    def test_skips_finished_projects(self, make_project, make_resource, productor, make_threshold):
        done = make_project(productor, name="Done", status="completado")
        make_resource(done, end_date=date.today())
        make_threshold("delay", day_count=3)

        assert alert_service.sweep()["projects"] == 0
        assert Alert.query.count() == 0

    def test_single_project(self, make_project, make_resource, productor, make_threshold):
        a = make_project(productor, name="A")
        b = make_project(productor, name="B")
        make_resource(a, end_date=date.today())
        make_resource(b, end_date=date.today())
        make_threshold("delay", day_count=3)

        summary = alert_service.sweep(project_id=a.id)
        assert summary["projects"] == 1
        assert {al.project_id for al in Alert.query.all()} == {a.id}

    def test_failing_project_does_not_stop_sweep(self, make_project, make_resource, productor, make_threshold):
        a = make_project(productor, name="A")
        b = make_project(productor, name="B")
        make_resource(a, end_date=date.today())
        make_resource(b, end_date=date.today())
        make_threshold("delay", day_count=3)

        real = alert_service.evaluator.evaluate_project

        def flaky(project_id, today=None):
            if project_id == a.id:
                raise RuntimeError("boom")
            return real(project_id, today)

        with patch("agromonitor.services.alert_service.evaluator.evaluate_project", side_effect=flaky):
            summary = alert_service.sweep()

        assert summary["errors"] == 1
        assert summary["projects"] == 1
        assert {al.project_id for al in Alert.query.all()} == {b.id}


# ═══════════════════════════════════════════════════════════════════════════
#  3. Scheduler
# ═══════════════════════════════════════════════════════════════════════════

class TestScheduler:

    def test_jobs_registered(self):
        jobs = get_registered_jobs()
        assert "threshold_sweep" in jobs
        assert "alert_digest" in jobs

    def test_ensure_jobs_registered_creates_rows_once(self):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.ensure_jobs_registered()
        row = ScheduledJob.query.filter_by(job_name="threshold_sweep").one()
        assert row.schedule_config["hour"] == "*/6"
        assert row.is_enabled is True

    def test_run_job_records_history(self, project, make_resource, make_threshold):
        make_resource(project, end_date=date.today())
        make_threshold("delay", day_count=1)
        SchedulerService.ensure_jobs_registered()

        outcome = SchedulerService.run_job("threshold_sweep")

        assert outcome["status"] == "success"
        assert outcome["result"]["created"] == 1
        row = ScheduledJob.query.filter_by(job_name="threshold_sweep").one()
        assert row.run_count == 1
        assert row.last_run_status == "success"
        assert row.last_run_result["created"] == 1

    def test_failed_job_is_recorded(self):
        SchedulerService.ensure_jobs_registered()
        with patch("agromonitor.services.scheduled_jobs.alert_service.sweep", side_effect=RuntimeError("db gone")):
            outcome = SchedulerService.run_job("threshold_sweep")

        assert outcome["status"] == "failed"
        row = ScheduledJob.query.filter_by(job_name="threshold_sweep").one()
        assert row.error_count == 1
        assert "db gone" in row.last_error

    def test_unknown_job(self):
        assert SchedulerService.run_job("nope")["status"] == "error"

    def test_disabled_job_is_skipped(self):
        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("threshold_sweep", False)
        assert SchedulerService.run_job("threshold_sweep")["status"] == "skipped"
        assert ScheduledJob.query.filter_by(job_name="threshold_sweep").one().status == "paused"


# ═══════════════════════════════════════════════════════════════════════════
#  4. Digest job
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertDigest:

    def test_counts_deferred_alerts(self, resource, productor, outsider, make_threshold):
        make_threshold("exhaustion", percentage=50)
        consumption_service.record_consumption(resource.id, "60", "2026-03-01", user=productor)
        notification_filter.update_preference(productor.id, {"email_alerts": True, "digest_frequency": "diario"})
        notification_filter.update_preference(outsider.id, {"email_alerts": True})

        SchedulerService.ensure_jobs_registered()
        outcome = SchedulerService.run_job("alert_digest")

        assert outcome["status"] == "success"
        assert outcome["result"] == {"users_checked": 2, "users_with_digest": 1, "alerts_queued": 1}
