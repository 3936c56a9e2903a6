"""
Scheduler Administration Blueprint

ADMIN-only management of background jobs.

Endpoints:
    GET   /api/v1/scheduler/jobs                     — registered jobs + run history
    GET   /api/v1/scheduler/jobs/<job_name>          — one job's persisted record
    POST  /api/v1/scheduler/jobs/<job_name>/trigger  — run a job now
    PATCH /api/v1/scheduler/jobs/<job_name>/toggle   — enable / disable cron runs
"""

import logging

from flask import Blueprint, g, jsonify, request

from opspilot.core.exceptions import NotFoundError
from opspilot.middleware.permission_required import require_role
from opspilot.services.scheduler_service import SchedulerService, get_registered_jobs
from opspilot.utils.errors import E, api_error

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1/scheduler")


@scheduler_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@scheduler_bp.route("/jobs", methods=["GET"])
@require_role("ADMIN")
def list_scheduled_jobs():
    """List all scheduled jobs with their status."""
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@scheduler_bp.route("/jobs/<job_name>", methods=["GET"])
@require_role("ADMIN")
def get_job_status(job_name):
    """Get status of a specific scheduled job."""
    job = SchedulerService.get_job_status(job_name)
    if not job:
        raise NotFoundError(resource="ScheduledJob", resource_id=job_name)
    return jsonify(job)


@scheduler_bp.route("/jobs/<job_name>/trigger", methods=["POST"])
@require_role("ADMIN")
def trigger_job(job_name):
    """Manually trigger a scheduled job."""
    if job_name not in get_registered_jobs():
        raise NotFoundError(resource="ScheduledJob", resource_id=job_name)
    logger.info("Job %s triggered by user %s", job_name, g.jwt_user_id,
                extra={"job_name": job_name})
    return jsonify(SchedulerService.run_job(job_name))


@scheduler_bp.route("/jobs/<job_name>/toggle", methods=["PATCH"])
@require_role("ADMIN")
def toggle_job_status(job_name):
    """Enable or disable a scheduled job."""
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if enabled is None:
        return api_error(E.VALIDATION_INVALID, "'enabled' field is required (true/false)")

    result = SchedulerService.toggle_job(job_name, bool(enabled))
    if not result:
        raise NotFoundError(resource="ScheduledJob", resource_id=job_name)
    return jsonify(result)
