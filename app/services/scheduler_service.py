"""
Concept Paper Approval Workflow
Scheduler Service.

Lightweight job registry for periodic sweeps. Jobs are plain functions
registered by decorator and triggered by an external scheduler (cron,
``flask run-job``) or manually; each run is recorded on a ScheduledJob row.

Architecture:
    - register_job: decorator that adds a function to the registry
    - SchedulerService: runs jobs inside the app context and records history
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

from app.models import db
from app.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}

_DEFAULT_SCHEDULES = {
    "overdue_stage_scanner": {"minutes": 30, "description": "Every 30 minutes"},
}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("overdue_stage_scanner")
        def scan_overdue_stages(app, now=None):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Runs registered jobs within the Flask app context and keeps their
    ScheduledJob records up to date.
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
        created = []
        for name, fn in _job_registry.items():
            existing = ScheduledJob.query.filter_by(job_name=name).first()
            if existing:
                continue
            job = ScheduledJob(
                job_name=name,
                description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                schedule_type="interval",
                schedule_config=_DEFAULT_SCHEDULES.get(name, {}),
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
    def run_job(cls, job_name: str, **kwargs) -> dict:
        """
        Execute a single job by name. Keyword arguments are passed to the job.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        cls.ensure_jobs_registered()
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record is not None and not job_record.is_enabled:
            logger.info("Job %s is disabled; skipping", job_name, extra={"job_name": job_name})
            return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                    "result": None, "error": None}

        start = time.monotonic()
        result = None
        error = None
        status = "success"
        try:
            result = fn(cls._app, **kwargs)
        except Exception as exc:
            db.session.rollback()
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)

        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record is not None:
            job_record.record_run(
                status=status,
                duration_ms=duration_ms,
                result=result if isinstance(result, dict) else {"output": str(result)},
                error=error,
            )
            db.session.commit()

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a scheduled job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            return None
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        return job_record.to_dict()
