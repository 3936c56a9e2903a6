"""
OpsPilot Operations Backend
Scheduled Jobs.

Concrete job implementations that run on a schedule.

Jobs:
    - kpi_cache_refresh: Flushes the KPI cache (daily at 02:00 by default)
    - overdue_task_marker: Moves past-due open tasks to REVIEW / URGENT
    - daily_digest: Writes the per-organization daily digest file
    - daily_automation: overdue marking → digest → KPI flush (daily at 00:00)
"""

from __future__ import annotations

import logging
import math
import os
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import joinedload

from opspilot.core.exceptions import CacheFlushError
from opspilot.models import db
from opspilot.models.organization import Organization
from opspilot.models.project import Project, Workflow
from opspilot.models.task import COMPLETED_STATUSES, Task, TimeLog
from opspilot.services.kpi_cache import get_kpi_cache
from opspilot.services.kpi_metrics import as_utc
from opspilot.services.scheduler_service import register_job

logger = logging.getLogger(__name__)

# Overdue tasks are flagged in place: REVIEW status plus URGENT priority
OVERDUE_STATUS = "REVIEW"
OVERDUE_PRIORITY = "URGENT"
OVERDUE_EXEMPT_STATUSES = (*COMPLETED_STATUSES, OVERDUE_STATUS)

DIGEST_WINDOW = timedelta(hours=24)
DIGEST_OVERDUE_LIMIT = 5


def _assignee_name(task: Task, default: str = "Unassigned") -> str:
    return task.assignee.name if task.assignee else default


def _org_tasks(organization_id: str):
    return (
        Task.query
        .join(Workflow, Task.workflow_id == Workflow.id)
        .join(Project, Workflow.project_id == Project.id)
        .options(
            joinedload(Task.workflow).joinedload(Workflow.project),
            joinedload(Task.assignee),
        )
        .filter(Project.organization_id == organization_id)
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Overdue marking
# ═══════════════════════════════════════════════════════════════════════════

def mark_overdue_tasks(now: datetime | None = None) -> dict[str, Any]:
    """Flag every open task whose due date has passed.

    Returns ``{processed, skipped, details}``: *processed* tasks were
    flagged by this run, *skipped* were past due but already in REVIEW.
    """
    now = now or datetime.now(timezone.utc)
    past_due = Task.due_date.isnot(None), Task.due_date < now

    tasks = (
        Task.query
        .options(
            joinedload(Task.workflow).joinedload(Workflow.project).joinedload(Project.organization),
            joinedload(Task.assignee),
        )
        .filter(*past_due, Task.status.notin_(OVERDUE_EXEMPT_STATUSES))
        .all()
    )
    skipped = Task.query.filter(*past_due, Task.status == OVERDUE_STATUS).count()

    details = []
    for task in tasks:
        task.status = OVERDUE_STATUS
        task.priority = OVERDUE_PRIORITY
        project = task.workflow.project
        details.append({
            "taskId": task.id,
            "title": task.title,
            "dueDate": as_utc(task.due_date).isoformat(),
            "project": project.name,
            "organization": project.organization.name,
            "assignee": _assignee_name(task),
        })

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Overdue marker: %d flagged, %d already flagged", len(details), skipped)
    return {"processed": len(details), "skipped": skipped, "details": details}


# ═══════════════════════════════════════════════════════════════════════════
#  Daily digest
# ═══════════════════════════════════════════════════════════════════════════

def _days_overdue(task: Task, now: datetime) -> int:
    return math.floor((now - as_utc(task.due_date)).total_seconds() / 86400)


def _organization_digest(org: Organization, now: datetime) -> str:
    since = now - DIGEST_WINDOW

    new_tasks = _org_tasks(org.id).filter(Task.created_at >= since).all()
    completed_tasks = (
        _org_tasks(org.id)
        .filter(Task.updated_at >= since, Task.status.in_(COMPLETED_STATUSES))
        .all()
    )
    overdue_tasks = (
        _org_tasks(org.id)
        .filter(
            Task.status == OVERDUE_STATUS,
            Task.priority == OVERDUE_PRIORITY,
            Task.due_date < now,
        )
        .order_by(Task.due_date)
        .all()
    )
    time_logs = (
        TimeLog.query
        .join(Task, TimeLog.task_id == Task.id)
        .join(Workflow, Task.workflow_id == Workflow.id)
        .join(Project, Workflow.project_id == Project.id)
        .filter(Project.organization_id == org.id, TimeLog.created_at >= since)
        .all()
    )
    hours = sum(log.hours or 0 for log in time_logs)

    lines = [
        f"--- ORGANIZATION: {org.name} ---",
        "",
        "Summary Stats:",
        f"- New Tasks: {len(new_tasks)}",
        f"- Completed Tasks: {len(completed_tasks)}",
        f"- Overdue Tasks: {len(overdue_tasks)}",
        f"- Hours Logged: {hours:.1f}",
        "",
    ]
    if new_tasks:
        lines.append("New Tasks:")
        for task in new_tasks:
            lines.append(f"- [{task.workflow.project.name}] {task.title} - "
                         f"Assigned to: {_assignee_name(task)}")
        lines.append("")
    if completed_tasks:
        lines.append("Completed Tasks:")
        for task in completed_tasks:
            lines.append(f"- [{task.workflow.project.name}] {task.title} - "
                         f"Completed by: {_assignee_name(task, 'Unknown')}")
        lines.append("")
    if overdue_tasks:
        top = overdue_tasks[:DIGEST_OVERDUE_LIMIT]
        lines.append(f"Top {len(top)} Overdue Tasks:")
        for task in top:
            lines.append(f"- [{task.workflow.project.name}] {task.title} - "
                         f"{_days_overdue(task, now)} day(s) overdue - "
                         f"Assigned to: {_assignee_name(task)}")
        lines.append("")
    return "\n".join(lines)


def generate_daily_digest(digest_dir: str, now: datetime | None = None) -> dict[str, Any]:
    """Write ``daily-digest-YYYY-MM-DD.log`` covering the last 24 hours.

    One section per organization. Returns ``{success, file_path}``.
    """
    now = now or datetime.now(timezone.utc)
    day = now.strftime("%Y-%m-%d")

    sections = [f"=== DAILY DIGEST: {day} ===", ""]
    organizations = Organization.query.order_by(Organization.name).all()
    for org in organizations:
        sections.append("")
        sections.append(_organization_digest(org, now))

    os.makedirs(digest_dir, exist_ok=True)
    file_path = os.path.join(digest_dir, f"daily-digest-{day}.log")
    with open(file_path, "w", encoding="utf-8") as fh:
        fh.write("\n".join(sections) + "\n")

    logger.info("Daily digest generated at %s (%d organizations)",
                file_path, len(organizations))
    return {"success": True, "file_path": file_path}


# ═══════════════════════════════════════════════════════════════════════════
#  Registered jobs
# ═══════════════════════════════════════════════════════════════════════════

def _flush_kpi_cache(app) -> dict[str, Any]:
    if not get_kpi_cache(app).flush_all():
        raise CacheFlushError("KPI cache flush failed")
    return {"success": True, "message": "KPI cache flushed"}


@register_job("kpi_cache_refresh", cron_setting="KPI_REFRESH_CRON")
def refresh_kpi_cache(app) -> dict[str, Any]:
    """Flush every cached KPI dashboard; the next read recomputes."""
    result = _flush_kpi_cache(app)
    logger.info("KPI cache refresh completed", extra={"job_name": "kpi_cache_refresh"})
    return result


@register_job("overdue_task_marker")
def overdue_task_marker(app) -> dict[str, Any]:
    """Move past-due open tasks to REVIEW with URGENT priority."""
    return mark_overdue_tasks()


@register_job("daily_digest")
def daily_digest(app) -> dict[str, Any]:
    """Write the daily digest of new, completed and overdue tasks."""
    return generate_daily_digest(app.config["DIGEST_DIR"])


@register_job("daily_automation", cron_setting="DAILY_AUTOMATION_CRON")
def daily_automation(app) -> dict[str, Any]:
    """Run overdue marking, the daily digest and a KPI cache flush in order."""
    steps = (
        ("overdue", lambda: mark_overdue_tasks()),
        ("digest", lambda: generate_daily_digest(app.config["DIGEST_DIR"])),
        ("kpi_refresh", lambda: _flush_kpi_cache(app)),
    )
    results: dict[str, Any] = {}
    for step, run in steps:
        try:
            results[step] = run()
        except Exception as exc:
            db.session.rollback()
            logger.exception("Daily automation step %s failed", step,
                             extra={"job_name": "daily_automation"})
            results[step] = {"success": False, "error": str(exc)}

    results["success"] = all(
        isinstance(r, dict) and r.get("success", True) for r in results.values()
    )
    return results
