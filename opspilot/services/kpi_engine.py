"""
KPI Aggregation Engine

Builds the organization dashboard and the team/employee dashboard from the
Organization → Project → Workflow → Task hierarchy.

Each dashboard is assembled from several independent reads; there is no
snapshot across them, so a task that changes between reads may be counted
differently by two sections of the same payload. Any failed read aborts
the whole computation with ``DataSourceError``.

Usage:
    from opspilot.services.kpi_engine import compute_org_dashboard
    dashboard = compute_org_dashboard(organization_id)
    payload = dashboard.to_dict()
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload, selectinload

from opspilot.core.exceptions import DataSourceError
from opspilot.models import db
from opspilot.models.project import Project, Workflow
from opspilot.models.task import COMPLETED_STATUSES, Task
from opspilot.services.kpi_metrics import (
    completion_rate,
    completion_rate_from_counts,
    duration_days,
    hours_logged,
    is_completed,
    mean,
    round2,
)
from opspilot.services.kpi_types import (
    EmployeePerformance,
    OrgDashboard,
    OrgSummary,
    ProjectCompletion,
    ProjectDuration,
    ScopeKind,
    TaskCompletionRecord,
    TeamDashboard,
    TeamPerformance,
    TeamScope,
    TeamStats,
)

logger = logging.getLogger(__name__)

TOP_PERFORMERS_LIMIT = 5


# ═════════════════════════════════════════════════════════════════════════════
# Data access
# ═════════════════════════════════════════════════════════════════════════════

def _fetch_active_projects(organization_id: str) -> list[Project]:
    try:
        return (
            Project.query
            .options(selectinload(Project.workflows).selectinload(Workflow.tasks))
            .filter(
                Project.organization_id == organization_id,
                Project.status == "ACTIVE",
            )
            .all()
        )
    except SQLAlchemyError as exc:
        raise DataSourceError("active projects", organization_id) from exc


def _fetch_org_workflows(organization_id: str) -> list[Workflow]:
    try:
        return (
            Workflow.query
            .join(Project, Workflow.project_id == Project.id)
            .options(
                selectinload(Workflow.tasks),
                joinedload(Workflow.owner),
                joinedload(Workflow.project),
            )
            .filter(Project.organization_id == organization_id)
            .all()
        )
    except SQLAlchemyError as exc:
        raise DataSourceError("organization workflows", organization_id) from exc


def workflow_in_organization(organization_id: str, workflow_id: str) -> bool:
    """True if the workflow belongs to a project of the organization."""
    try:
        owned = (
            Workflow.query
            .join(Project, Workflow.project_id == Project.id)
            .filter(Workflow.id == workflow_id, Project.organization_id == organization_id)
            .exists()
        )
        return bool(db.session.query(owned).scalar())
    except SQLAlchemyError as exc:
        raise DataSourceError("workflow ownership", organization_id) from exc


def _scoped_tasks(query, organization_id: str, scope: TeamScope):
    """Confine a task query to the organization, assigned tasks and the scope."""
    query = (
        query
        .join(Workflow, Task.workflow_id == Workflow.id)
        .join(Project, Workflow.project_id == Project.id)
        .filter(
            Project.organization_id == organization_id,
            Task.assignee_id.isnot(None),
        )
    )
    if scope.kind is ScopeKind.WORKFLOW:
        query = query.filter(Task.workflow_id == scope.workflow_id)
    return query


def _fetch_completed_tasks(organization_id: str, scope: TeamScope) -> list[Task]:
    try:
        query = _scoped_tasks(Task.query, organization_id, scope)
        return (
            query
            .options(
                selectinload(Task.time_logs),
                selectinload(Task.external_logs),
                joinedload(Task.assignee),
                joinedload(Task.workflow).joinedload(Workflow.project),
            )
            .filter(Task.status.in_(COMPLETED_STATUSES))
            .all()
        )
    except SQLAlchemyError as exc:
        raise DataSourceError("completed tasks", organization_id) from exc


def _count_tasks_by_assignee(organization_id: str, scope: TeamScope,
                             *, completed_only: bool = False) -> dict[str, int]:
    try:
        query = db.session.query(Task.assignee_id, func.count(Task.id)).select_from(Task)
        query = _scoped_tasks(query, organization_id, scope)
        if completed_only:
            query = query.filter(Task.status.in_(COMPLETED_STATUSES))
        rows = query.group_by(Task.assignee_id).all()
    except SQLAlchemyError as exc:
        label = "completed task counts" if completed_only else "task counts"
        raise DataSourceError(label, organization_id) from exc
    return {assignee_id: count for assignee_id, count in rows}


# ═════════════════════════════════════════════════════════════════════════════
# Organization dashboard
# ═════════════════════════════════════════════════════════════════════════════

def _team_performance(workflow: Workflow) -> TeamPerformance:
    total = len(workflow.tasks)
    completed = sum(1 for t in workflow.tasks if is_completed(t.status))
    return TeamPerformance(
        workflow_id=workflow.id,
        workflow_name=workflow.name,
        project_id=workflow.project.id,
        project_name=workflow.project.name,
        team_lead=workflow.owner.to_summary() if workflow.owner else None,
        task_count=total,
        completed_tasks=completed,
        completion_rate=completion_rate_from_counts(completed, total),
    )


def compute_org_dashboard(organization_id: str, *, now: datetime | None = None) -> OrgDashboard:
    """Organization-wide delivery KPIs.

    Rates are derived from summed task counts, never averaged across
    projects. Projects without tasks count toward ``totalProjects`` only.
    """
    projects = _fetch_active_projects(organization_id)

    summary = OrgSummary(total_projects=len(projects))
    completion_rates: list[ProjectCompletion] = []
    durations: list[ProjectDuration] = []

    for project in projects:
        tasks = [t for wf in project.workflows for t in wf.tasks]
        if not tasks:
            continue

        completed = sum(1 for t in tasks if is_completed(t.status))
        summary.total_tasks += len(tasks)
        summary.completed_tasks += completed
        summary.in_progress_tasks += sum(1 for t in tasks if t.status == "IN_PROGRESS")

        completion_rates.append(ProjectCompletion(
            project_id=project.id,
            project_name=project.name,
            completion_rate=completion_rate(tasks),
        ))

        latest_update = max(t.updated_at for t in tasks)
        durations.append(ProjectDuration(
            project_id=project.id,
            project_name=project.name,
            duration_days=duration_days(project.created_at, latest_update),
            start_date=project.created_at,
            last_update=latest_update,
        ))

    summary.overall_completion_rate = completion_rate_from_counts(
        summary.completed_tasks, summary.total_tasks,
    )

    workflows = _fetch_org_workflows(organization_id)
    # sorted() is stable: ties keep data-layer order
    teams = sorted(
        (_team_performance(wf) for wf in workflows),
        key=lambda t: t.completion_rate,
        reverse=True,
    )

    summary.avg_project_duration = round2(mean([d.duration_days for d in durations]))

    logger.debug(
        "Org dashboard computed: %d projects, %d tasks, %d teams",
        summary.total_projects, summary.total_tasks, len(teams),
        extra={"organization_id": organization_id},
    )
    return OrgDashboard(
        organization_id=organization_id,
        summary=summary,
        project_completion_rates=completion_rates,
        project_durations=durations,
        teams=teams,
        last_updated=now or datetime.now(timezone.utc),
    )


# ═════════════════════════════════════════════════════════════════════════════
# Team / employee dashboard
# ═════════════════════════════════════════════════════════════════════════════

def _completion_record(task: Task) -> TaskCompletionRecord:
    # Only the assignee's own hours count; helpers' logs are excluded
    hours = hours_logged(task.time_logs, task.external_logs, user_id=task.assignee_id)
    return TaskCompletionRecord(
        task_id=task.id,
        title=task.title,
        workflow_id=task.workflow.id,
        workflow_name=task.workflow.name,
        project_id=task.workflow.project.id,
        project_name=task.workflow.project.name,
        completion_time_days=duration_days(task.created_at, task.updated_at),
        time_spent_hours=hours,
    )


def compute_team_dashboard(organization_id: str, scope: TeamScope | None = None,
                           *, now: datetime | None = None) -> TeamDashboard:
    """Per-employee performance for the organization or a single workflow.

    Two passes: completed tasks are folded into per-assignee accumulators
    first, derived rates are computed only once every task is in. Assignees
    with no completed task in scope do not appear.
    """
    scope = scope or TeamScope.organization()

    completed_tasks = _fetch_completed_tasks(organization_id, scope)
    total_counts = _count_tasks_by_assignee(organization_id, scope)
    completed_counts = _count_tasks_by_assignee(organization_id, scope, completed_only=True)

    performances: dict[str, EmployeePerformance] = {}
    for task in completed_tasks:
        perf = performances.get(task.assignee_id)
        if perf is None:
            assignee = task.assignee.to_summary() if task.assignee else {"id": task.assignee_id}
            perf = performances[task.assignee_id] = EmployeePerformance(assignee=assignee)
        perf.add_task(_completion_record(task))

    for assignee_id, perf in performances.items():
        perf.finalize(
            total_tasks=total_counts.get(assignee_id, 0),
            completed_tasks=completed_counts.get(assignee_id, 0),
        )

    employees = sorted(performances.values(), key=lambda e: e.efficiency, reverse=True)

    logger.debug(
        "Team dashboard computed: scope=%s employees=%d",
        scope.kind.value, len(employees),
        extra={"organization_id": organization_id},
    )
    return TeamDashboard(
        organization_id=organization_id,
        scope=scope,
        employees=employees,
        top_performers=employees[:TOP_PERFORMERS_LIMIT],
        stats=TeamStats.from_employees(employees),
        last_updated=now or datetime.now(timezone.utc),
    )
