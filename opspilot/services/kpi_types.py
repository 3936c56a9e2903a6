"""
KPI result records.

Explicit shapes for everything the aggregator produces. Each record knows
how to render itself as the JSON payload served by the KPI endpoints
(camelCase keys, ISO-8601 timestamps), which is also what the cache stores.

Scope:
    TeamScope.organization()        → every assigned task of the organization
    TeamScope.workflow(workflow_id) → tasks of one workflow
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from opspilot.services import kpi_metrics
from opspilot.services.kpi_metrics import completion_rate_from_counts, mean, round2


class ScopeKind(str, enum.Enum):
    ORGANIZATION = "organization"
    WORKFLOW = "workflow"


@dataclass(frozen=True)
class TeamScope:
    kind: ScopeKind
    workflow_id: str | None = None

    @classmethod
    def organization(cls) -> "TeamScope":
        return cls(ScopeKind.ORGANIZATION)

    @classmethod
    def workflow(cls, workflow_id: str) -> "TeamScope":
        if not workflow_id:
            raise ValueError("workflow scope requires a workflow_id")
        return cls(ScopeKind.WORKFLOW, workflow_id)

    @classmethod
    def from_workflow_id(cls, workflow_id: str | None) -> "TeamScope":
        """No workflow id means the whole organization."""
        if workflow_id is None:
            return cls.organization()
        return cls.workflow(workflow_id)

    def scope_id(self, organization_id: str) -> str:
        if self.kind is ScopeKind.WORKFLOW:
            return self.workflow_id
        return organization_id


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# Organization dashboard
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class ProjectCompletion:
    project_id: str
    project_name: str
    completion_rate: float

    def to_dict(self) -> dict:
        return {
            "projectId": self.project_id,
            "projectName": self.project_name,
            "completionRate": self.completion_rate,
        }


@dataclass
class ProjectDuration:
    project_id: str
    project_name: str
    duration_days: int
    start_date: datetime
    last_update: datetime

    def to_dict(self) -> dict:
        return {
            "projectId": self.project_id,
            "projectName": self.project_name,
            "durationDays": self.duration_days,
            "startDate": _iso(self.start_date),
            "lastUpdate": _iso(self.last_update),
        }


@dataclass
class TeamPerformance:
    workflow_id: str
    workflow_name: str
    project_id: str
    project_name: str
    team_lead: dict | None
    task_count: int
    completed_tasks: int
    completion_rate: float

    def to_dict(self) -> dict:
        return {
            "workflowId": self.workflow_id,
            "workflowName": self.workflow_name,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "teamLead": self.team_lead,
            "taskCount": self.task_count,
            "completedTasks": self.completed_tasks,
            "completionRate": self.completion_rate,
        }


@dataclass
class OrgSummary:
    total_projects: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    overall_completion_rate: float = 0.0
    avg_project_duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "totalProjects": self.total_projects,
            "totalTasks": self.total_tasks,
            "completedTasks": self.completed_tasks,
            "inProgressTasks": self.in_progress_tasks,
            "overallCompletionRate": self.overall_completion_rate,
            "avgProjectDuration": self.avg_project_duration,
        }


@dataclass
class OrgDashboard:
    organization_id: str
    summary: OrgSummary
    project_completion_rates: list[ProjectCompletion]
    project_durations: list[ProjectDuration]
    teams: list[TeamPerformance]
    last_updated: datetime

    def to_dict(self) -> dict:
        return {
            "summary": self.summary.to_dict(),
            "projects": {
                "projectCompletionRates": [p.to_dict() for p in self.project_completion_rates],
                "projectDurations": [p.to_dict() for p in self.project_durations],
            },
            "teams": [t.to_dict() for t in self.teams],
            "lastUpdated": _iso(self.last_updated),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Team / employee dashboard
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class TaskCompletionRecord:
    task_id: str
    title: str
    workflow_id: str
    workflow_name: str
    project_id: str
    project_name: str
    completion_time_days: int
    time_spent_hours: float

    def to_dict(self) -> dict:
        return {
            "taskId": self.task_id,
            "title": self.title,
            "workflowId": self.workflow_id,
            "workflowName": self.workflow_name,
            "projectId": self.project_id,
            "projectName": self.project_name,
            "completionTimeDays": self.completion_time_days,
            "timeSpentHours": self.time_spent_hours,
        }


@dataclass
class EmployeePerformance:
    """Per-assignee accumulator.

    ``add_task`` folds completed tasks in; ``finalize`` derives the rates
    once every task of the scope has been seen. Derived fields stay at
    their defaults until then.
    """

    assignee: dict
    total_completed_tasks: int = 0
    total_time_spent: float = 0.0
    tasks: list[TaskCompletionRecord] = field(default_factory=list)
    # derived
    total_tasks: int = 0
    completed_tasks: int = 0
    completion_rate: float = 0.0
    average_completion_time_days: float = 0.0
    average_time_per_task_hours: float = 0.0
    efficiency: float = 0.0
    finalized: bool = False

    def add_task(self, record: TaskCompletionRecord) -> None:
        if self.finalized:
            raise RuntimeError("cannot fold tasks into a finalized performance record")
        self.total_completed_tasks += 1
        self.total_time_spent += record.time_spent_hours
        self.tasks.append(record)

    def finalize(self, *, total_tasks: int, completed_tasks: int) -> None:
        self.total_tasks = total_tasks
        self.completed_tasks = completed_tasks
        self.completion_rate = completion_rate_from_counts(completed_tasks, total_tasks)
        self.average_completion_time_days = round2(
            mean([t.completion_time_days for t in self.tasks])
        )
        self.average_time_per_task_hours = round2(
            self.total_time_spent / self.total_completed_tasks
            if self.total_completed_tasks else 0
        )
        self.efficiency = kpi_metrics.efficiency(self.total_completed_tasks, self.total_time_spent)
        self.finalized = True

    def to_dict(self) -> dict:
        return {
            "assignee": self.assignee,
            "totalCompletedTasks": self.total_completed_tasks,
            "totalTimeSpent": self.total_time_spent,
            "tasks": [t.to_dict() for t in self.tasks],
            "totalTasks": self.total_tasks,
            "completedTasks": self.completed_tasks,
            "completionRate": self.completion_rate,
            "averageCompletionTimeDays": self.average_completion_time_days,
            "averageTimePerTaskHours": self.average_time_per_task_hours,
            "efficiency": self.efficiency,
        }


@dataclass
class TeamStats:
    total_employees: int = 0
    average_completion_rate: float = 0.0
    average_efficiency: float = 0.0

    @classmethod
    def from_employees(cls, employees: list[EmployeePerformance]) -> "TeamStats":
        # Unweighted: one assignee counts once regardless of task volume
        return cls(
            total_employees=len(employees),
            average_completion_rate=round2(mean([e.completion_rate for e in employees])),
            average_efficiency=round2(mean([e.efficiency for e in employees])),
        )

    def to_dict(self) -> dict:
        return {
            "totalEmployees": self.total_employees,
            "averageCompletionRate": self.average_completion_rate,
            "averageEfficiency": self.average_efficiency,
        }


@dataclass
class TeamDashboard:
    organization_id: str
    scope: TeamScope
    employees: list[EmployeePerformance]
    top_performers: list[EmployeePerformance]
    stats: TeamStats
    last_updated: datetime

    def to_dict(self) -> dict:
        return {
            "employees": [e.to_dict() for e in self.employees],
            "topPerformers": [e.to_dict() for e in self.top_performers],
            "stats": self.stats.to_dict(),
            "scope": self.scope.kind.value,
            "scopeId": self.scope.scope_id(self.organization_id),
            "lastUpdated": _iso(self.last_updated),
        }
