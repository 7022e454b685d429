"""
AgroMonitor
Scheduler Service.

Registry and runner for periodic background jobs. Jobs are plain functions
registered with ``@register_job`` and executed inside the Flask app context;
every run is recorded on its ``ScheduledJob`` row.

There is no clock thread here: the deployment's cron (or an operator via
``POST /api/v1/scheduler/jobs/<name>/trigger``) calls ``run_job``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

from agromonitor.models import db
from agromonitor.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}

DEFAULT_SCHEDULES = {
    "threshold_sweep": {"hour": "*/6", "minute": "0", "description": "Every 6 hours"},
    "alert_digest": {"hour": "7", "minute": "0", "description": "Daily at 07:00"},
}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("threshold_sweep")
        def run_threshold_sweep(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _find_job(job_name: str) -> ScheduledJob | None:
    return ScheduledJob.query.filter_by(job_name=job_name).first()


class SchedulerService:
    """
    Runs registered jobs inside the app context and keeps their run history.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                if _find_job(name) is None:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        schedule_type="cron",
                        schedule_config=DEFAULT_SCHEDULES.get(
                            name, {"hour": "0", "minute": "0", "description": "Daily at midnight"},
                        ),
                        status="active",
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with job_name, status, duration_ms, result and error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        with cls._app.app_context():
            record = _find_job(job_name)
            if record is not None and not record.is_enabled:
                logger.info("Job %s skipped: disabled", job_name)
                return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                        "result": None, "error": None}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)

        try:
            with cls._app.app_context():
                record = _find_job(job_name)
                if record:
                    record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        jobs = []
        for name in _job_registry:
            record = _find_job(name)
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": record.to_dict() if record else None,
            })
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a job. Returns None for unknown jobs."""
        record = _find_job(job_name)
        if not record:
            return None
        record.is_enabled = enabled
        record.status = "active" if enabled else "paused"
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused")
        return record.to_dict()
