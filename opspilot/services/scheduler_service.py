"""
OpsPilot Operations Backend
Scheduler Service.

Background job registry and cron dispatch.

Architecture:
    - SchedulerService: Manages job registration and execution
    - Jobs are stored in ScheduledJob model for persistence
    - Cron dispatch via APScheduler BackgroundScheduler (never started in tests)
    - Manual trigger API and `flask run-job` for operators
    - Pluggable job functions registered via decorator
"""

from __future__ import annotations

import atexit
import logging
import time
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from flask import Flask

from opspilot.models import db
from opspilot.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}
# job name -> config key holding its crontab expression
_job_cron_settings: dict[str, str] = {}


def register_job(name: str, cron_setting: str | None = None):
    """Decorator to register a job function.

    Jobs without ``cron_setting`` are manual-only: they run when triggered
    through the API, the CLI, or another job.

    Usage:
        @register_job("kpi_cache_refresh", cron_setting="KPI_REFRESH_CRON")
        def refresh_kpi_cache(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        if cron_setting:
            _job_cron_settings[name] = cron_setting
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None
    _scheduler: BackgroundScheduler | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def cron_for(cls, job_name: str) -> str | None:
        setting = _job_cron_settings.get(job_name)
        if not setting or not cls._app:
            return None
        return cls._app.config.get(setting)

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                existing = ScheduledJob.query.filter_by(job_name=name).first()
                if not existing:
                    cron = cls.cron_for(name)
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                        schedule_type="cron" if cron else "manual",
                        schedule_config={"cron": cron} if cron else {},
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
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}

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
            logger.exception("Job %s failed: %s", job_name, exc,
                             extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)

        # Update DB record
        try:
            with cls._app.app_context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name,
                             extra={"job_name": job_name})

        logger.info("Job %s finished: %s", job_name, status,
                    extra={"job_name": job_name, "duration_ms": duration_ms})
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def _run_scheduled(cls, job_name: str) -> None:
        """Cron entry point: honours the persisted enable flag."""
        with cls._app.app_context():
            record = ScheduledJob.query.filter_by(job_name=job_name).first()
            enabled = record is None or record.is_enabled
        if not enabled:
            logger.info("Skipping disabled job %s", job_name,
                        extra={"job_name": job_name})
            return
        cls.run_job(job_name)

    @classmethod
    def start(cls) -> BackgroundScheduler | None:
        """Start cron dispatch for every job with a configured schedule."""
        if cls._scheduler is not None:
            return cls._scheduler
        if not cls._app:
            return None

        tz = cls._app.config.get("SCHEDULER_TIMEZONE", "UTC")
        scheduler = BackgroundScheduler(timezone=tz)
        for name in _job_cron_settings:
            cron = cls.cron_for(name)
            if not cron:
                continue
            scheduler.add_job(
                cls._run_scheduled,
                CronTrigger.from_crontab(cron, timezone=tz),
                args=[name],
                id=name,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            logger.info("Scheduled %s with cron '%s' (%s)", name, cron, tz,
                        extra={"job_name": name})
        scheduler.start()
        cls._scheduler = scheduler
        atexit.register(cls.shutdown)
        return scheduler

    @classmethod
    def shutdown(cls) -> None:
        if cls._scheduler is None:
            return
        cls._scheduler.shutdown(wait=False)
        cls._scheduler = None
        logger.info("Scheduler stopped")

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            next_run = None
            if cls._scheduler is not None:
                aps_job = cls._scheduler.get_job(name)
                if aps_job is not None and aps_job.next_run_time:
                    next_run = aps_job.next_run_time.isoformat()
            jobs.append({
                "job_name": name,
                "registered": True,
                "cron": cls.cron_for(name),
                "next_run_at": next_run,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        """Get status of a specific job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record:
            return job_record.to_dict()
        return None

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
