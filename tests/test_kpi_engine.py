"""
Tests — KPI aggregation engine.

Covers:
    1. Organization dashboard (counts, rates, durations, teams ordering)
    2. Team dashboard (two-pass fold, helper-log exclusion, scopes)
    3. Edge cases (empty org, unknown workflow, negative durations)
    4. Data-store failures surface as DataSourceError
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from opspilot.core.exceptions import DataSourceError
from opspilot.models.project import Project
from opspilot.services.kpi_engine import compute_org_dashboard, compute_team_dashboard
from opspilot.services.kpi_types import TeamScope

from factories import (
    NOW, days, log_external, log_time, make_project, make_task, make_user, make_workflow,
)


def _without_timestamp(payload):
    return {k: v for k, v in payload.items() if k != "lastUpdated"}


# ═══════════════════════════════════════════════════════════════════════════
#  Organization dashboard
# ═══════════════════════════════════════════════════════════════════════════

class TestOrgDashboard:

    def test_two_project_scenario(self, org):
        lead = make_user(org, name="Lead")
        alpha = make_project(org, name="Alpha", created_at=NOW - days(10))
        make_project(org, name="Empty")
        wf = make_workflow(alpha, name="Build", owner=lead)
        for i, status in enumerate(("DONE", "COMPLETED", "IN_PROGRESS", "TODO")):
            make_task(wf, title=f"T{i}", status=status,
                      created_at=NOW - days(9), updated_at=NOW - days(1))

        payload = compute_org_dashboard(org.id).to_dict()
        summary = payload["summary"]

        assert summary["totalProjects"] == 2
        assert summary["totalTasks"] == 4
        assert summary["completedTasks"] == 2
        assert summary["inProgressTasks"] == 1
        assert summary["overallCompletionRate"] == 50.0
        rates = payload["projects"]["projectCompletionRates"]
        assert [r["projectName"] for r in rates] == ["Alpha"]
        assert rates[0]["completionRate"] == 50.0
        durations = payload["projects"]["projectDurations"]
        assert len(durations) == 1
        assert durations[0]["durationDays"] == 9
        assert summary["avgProjectDuration"] == 9.0

    def test_overall_rate_from_totals_not_average(self, org):
        big = make_workflow(make_project(org, name="Big"))
        small = make_workflow(make_project(org, name="Small"))
        for _ in range(3):
            make_task(big, status="DONE")
        make_task(big, status="TODO")
        make_task(small, status="TODO")

        summary = compute_org_dashboard(org.id).summary
        # 3 of 5 tasks, not mean(75, 0)
        assert summary.overall_completion_rate == 60.0

    def test_only_active_projects_in_summary(self, org):
        archived = make_project(org, name="Old", status="ARCHIVED")
        make_task(make_workflow(archived), status="DONE")

        payload = compute_org_dashboard(org.id).to_dict()
        assert payload["summary"]["totalProjects"] == 0
        assert payload["summary"]["totalTasks"] == 0
        # the workflow list is organization-wide
        assert len(payload["teams"]) == 1

    def test_teams_sorted_by_completion_rate(self, org):
        lead = make_user(org, name="Grace")
        project = make_project(org)
        slow = make_workflow(project, name="Slow", order=0)
        fast = make_workflow(project, name="Fast", owner=lead, order=1)
        make_task(slow, status="TODO")
        make_task(slow, status="DONE")
        make_task(fast, status="DONE")

        teams = compute_org_dashboard(org.id).to_dict()["teams"]
        assert [t["workflowName"] for t in teams] == ["Fast", "Slow"]
        assert teams[0]["completionRate"] == 100.0
        assert teams[0]["teamLead"]["name"] == "Grace"
        assert teams[1]["teamLead"] is None
        assert teams[1]["taskCount"] == 2

    def test_empty_organization_is_zero_filled(self, org):
        payload = compute_org_dashboard(org.id).to_dict()
        assert payload["summary"] == {
            "totalProjects": 0,
            "totalTasks": 0,
            "completedTasks": 0,
            "inProgressTasks": 0,
            "overallCompletionRate": 0.0,
            "avgProjectDuration": 0.0,
        }
        assert payload["projects"] == {"projectCompletionRates": [], "projectDurations": []}
        assert payload["teams"] == []
        assert payload["lastUpdated"]

    def test_negative_duration_is_preserved(self, org):
        # project row created after its last task update (bad import data)
        project = make_project(org, created_at=NOW)
        make_task(make_workflow(project), created_at=NOW - days(5), updated_at=NOW - days(3))

        durations = compute_org_dashboard(org.id).to_dict()["projects"]["projectDurations"]
        assert durations[0]["durationDays"] == -3

    def test_other_organizations_invisible(self, org, other_org):
        make_task(make_workflow(make_project(other_org)), status="DONE")
        payload = compute_org_dashboard(org.id).to_dict()
        assert payload["summary"]["totalProjects"] == 0
        assert payload["teams"] == []

    def test_idempotent(self, org):
        project = make_project(org, created_at=NOW - days(4))
        wf = make_workflow(project)
        make_task(wf, status="DONE", updated_at=NOW)
        make_task(wf, status="IN_PROGRESS", updated_at=NOW - days(1))

        first = compute_org_dashboard(org.id, now=NOW).to_dict()
        second = compute_org_dashboard(org.id, now=NOW).to_dict()
        assert first == second

    def test_fetch_failure_raises_data_source_error(self, org):
        broken = MagicMock()
        broken.options.return_value.filter.return_value.all.side_effect = OperationalError(
            "SELECT", {}, Exception("database is gone"),
        )
        with patch.object(Project, "query", broken):
            with pytest.raises(DataSourceError) as exc_info:
                compute_org_dashboard(org.id)
        assert exc_info.value.organization_id == org.id


# ═══════════════════════════════════════════════════════════════════════════
#  Team dashboard
# ═══════════════════════════════════════════════════════════════════════════

class TestTeamDashboard:

    def test_helper_logs_excluded(self, org):
        ada = make_user(org, name="Ada")
        bob = make_user(org, name="Bob")
        wf = make_workflow(make_project(org))
        task = make_task(wf, status="DONE", assignee=ada,
                         created_at=NOW - days(4), updated_at=NOW - days(2))
        log_time(task, bob, 5)
        log_external(task, 3, user_name="Unknown contractor")

        dashboard = compute_team_dashboard(org.id)
        assert len(dashboard.employees) == 1
        ada_perf = dashboard.employees[0].to_dict()
        assert ada_perf["assignee"]["name"] == "Ada"
        assert ada_perf["totalTimeSpent"] == 0
        assert ada_perf["efficiency"] == 10.0
        assert ada_perf["tasks"][0]["completionTimeDays"] == 2

    def test_employee_metrics(self, org):
        ada = make_user(org, name="Ada")
        wf = make_workflow(make_project(org, name="Apollo"), name="Ops")
        t1 = make_task(wf, title="one", status="DONE", assignee=ada,
                       created_at=NOW - days(5), updated_at=NOW - days(1))
        t2 = make_task(wf, title="two", status="COMPLETED", assignee=ada,
                       created_at=NOW - days(3), updated_at=NOW - days(1))
        make_task(wf, title="three", status="TODO", assignee=ada)
        log_time(t1, ada, 3)
        log_external(t2, 1, user=ada)

        perf = compute_team_dashboard(org.id).to_dict()["employees"][0]
        assert perf["totalCompletedTasks"] == 2
        assert perf["totalTimeSpent"] == 4
        assert perf["totalTasks"] == 3
        assert perf["completedTasks"] == 2
        assert perf["completionRate"] == 66.67
        assert perf["averageCompletionTimeDays"] == 3.0
        assert perf["averageTimePerTaskHours"] == 2.0
        assert perf["efficiency"] == 5.0
        assert {t["projectName"] for t in perf["tasks"]} == {"Apollo"}

    def test_assignees_without_completions_absent(self, org):
        ada = make_user(org, name="Ada")
        idle = make_user(org, name="Idle")
        wf = make_workflow(make_project(org))
        make_task(wf, status="DONE", assignee=ada)
        make_task(wf, status="IN_PROGRESS", assignee=idle)
        make_task(wf, status="DONE")  # unassigned

        payload = compute_team_dashboard(org.id).to_dict()
        assert [e["assignee"]["name"] for e in payload["employees"]] == ["Ada"]
        assert payload["stats"]["totalEmployees"] == 1

    def test_top_performers_sorted_and_capped(self, org):
        wf = make_workflow(make_project(org))
        for i in range(6):
            user = make_user(org, name=f"User {i}")
            task = make_task(wf, status="DONE", assignee=user)
            log_time(task, user, i + 1)

        payload = compute_team_dashboard(org.id).to_dict()
        efficiencies = [e["efficiency"] for e in payload["employees"]]
        assert efficiencies == sorted(efficiencies, reverse=True)
        assert len(payload["employees"]) == 6
        assert len(payload["topPerformers"]) == 5
        assert payload["topPerformers"][0]["assignee"]["name"] == "User 0"

    def test_stats_are_unweighted_means(self, org):
        wf = make_workflow(make_project(org))
        busy = make_user(org, name="Busy")
        light = make_user(org, name="Light")
        for _ in range(3):
            make_task(wf, status="DONE", assignee=busy)
        make_task(wf, status="TODO", assignee=busy)
        make_task(wf, status="DONE", assignee=light)

        stats = compute_team_dashboard(org.id).to_dict()["stats"]
        # mean(75.0, 100.0), not 4 of 5 tasks
        assert stats["averageCompletionRate"] == 87.5
        # mean(30.0, 10.0)
        assert stats["averageEfficiency"] == 20.0

    def test_workflow_scope(self, org):
        ada = make_user(org, name="Ada")
        bob = make_user(org, name="Bob")
        project = make_project(org)
        wf_a = make_workflow(project, name="A")
        wf_b = make_workflow(project, name="B", order=1)
        make_task(wf_a, status="DONE", assignee=ada)
        make_task(wf_b, status="DONE", assignee=bob)
        make_task(wf_b, status="TODO", assignee=ada)

        payload = compute_team_dashboard(org.id, TeamScope.workflow(wf_a.id)).to_dict()
        assert payload["scope"] == "workflow"
        assert payload["scopeId"] == wf_a.id
        assert [e["assignee"]["name"] for e in payload["employees"]] == ["Ada"]
        # the TODO in workflow B is outside the scope
        assert payload["employees"][0]["totalTasks"] == 1

    def test_organization_scope_payload(self, org):
        payload = compute_team_dashboard(org.id).to_dict()
        assert payload["scope"] == "organization"
        assert payload["scopeId"] == org.id

    def test_unknown_workflow_zero_filled(self, org):
        payload = compute_team_dashboard(org.id, TeamScope.workflow("no-such-workflow")).to_dict()
        assert payload["employees"] == []
        assert payload["topPerformers"] == []
        assert payload["stats"] == {
            "totalEmployees": 0,
            "averageCompletionRate": 0.0,
            "averageEfficiency": 0.0,
        }

    def test_workflow_of_other_org_is_confined(self, org, other_org):
        outsider = make_user(other_org, name="Outsider")
        foreign_wf = make_workflow(make_project(other_org))
        make_task(foreign_wf, status="DONE", assignee=outsider)

        payload = compute_team_dashboard(org.id, TeamScope.workflow(foreign_wf.id)).to_dict()
        assert payload["employees"] == []

    def test_finalized_record_rejects_more_tasks(self, org):
        ada = make_user(org, name="Ada")
        make_task(make_workflow(make_project(org)), status="DONE", assignee=ada)
        perf = compute_team_dashboard(org.id).employees[0]
        with pytest.raises(RuntimeError):
            perf.add_task(perf.tasks[0])
