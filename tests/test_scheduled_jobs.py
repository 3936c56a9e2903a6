"""
Tests — Scheduler service + scheduled jobs.

Covers:
    1. ScheduledJob model (record_run, to_dict)
    2. SchedulerService (registration, run, toggle, cron dispatch)
    3. Overdue task marker
    4. Daily digest file
    5. KPI cache refresh + daily automation ordering / step isolation
"""

import os
from datetime import timedelta
from unittest.mock import patch

import pytest

from opspilot.core.exceptions import CacheFlushError
from opspilot.models import db
from opspilot.models.scheduling import ScheduledJob
from opspilot.models.task import Task
from opspilot.services.scheduled_jobs import (
    daily_automation,
    generate_daily_digest,
    mark_overdue_tasks,
    refresh_kpi_cache,
)
from opspilot.services.scheduler_service import SchedulerService, get_registered_jobs

from factories import NOW, days, log_time, make_project, make_task, make_user, make_workflow


@pytest.fixture()
def scheduler(app):
    SchedulerService.init_app(app)
    SchedulerService.ensure_jobs_registered()
    return SchedulerService


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 1: ScheduledJob Model
# ═══════════════════════════════════════════════════════════════════════════

class TestScheduledJobModel:

    def test_record_run_success(self):
        job = ScheduledJob(job_name="x", is_enabled=True)
        db.session.add(job)
        db.session.flush()
        job.record_run(status="success", duration_ms=12, result={"ok": 1})
        assert job.run_count == 1
        assert job.error_count == 0
        assert job.last_run_status == "success"

    def test_record_run_failure(self):
        job = ScheduledJob(job_name="y")
        job.record_run(status="failed", error="boom")
        assert job.error_count == 1
        assert job.last_error == "boom"

    def test_to_dict(self):
        job = ScheduledJob(job_name="z", schedule_type="manual")
        db.session.add(job)
        db.session.commit()
        d = job.to_dict()
        assert d["job_name"] == "z"
        assert d["schedule_type"] == "manual"
        assert d["last_run_at"] is None


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 2: SchedulerService
# ═══════════════════════════════════════════════════════════════════════════

class TestSchedulerService:

    def test_registered_jobs(self):
        jobs = get_registered_jobs()
        for name in ("kpi_cache_refresh", "overdue_task_marker",
                     "daily_digest", "daily_automation"):
            assert name in jobs

    def test_ensure_jobs_registered(self, app):
        SchedulerService.init_app(app)
        created = SchedulerService.ensure_jobs_registered()
        assert len(created) == len(get_registered_jobs())

        kpi_job = ScheduledJob.query.filter_by(job_name="kpi_cache_refresh").first()
        assert kpi_job.schedule_type == "cron"
        assert kpi_job.schedule_config == {"cron": "0 2 * * *"}
        digest_job = ScheduledJob.query.filter_by(job_name="daily_digest").first()
        assert digest_job.schedule_type == "manual"

        assert SchedulerService.ensure_jobs_registered() == []

    def test_list_jobs(self, scheduler):
        jobs = {j["job_name"]: j for j in scheduler.list_jobs()}
        assert jobs["daily_automation"]["cron"] == "0 0 * * *"
        assert jobs["overdue_task_marker"]["cron"] is None
        assert all(j["db_record"] is not None for j in jobs.values())

    def test_run_unknown_job(self, scheduler):
        result = scheduler.run_job("unknown_job_xyz")
        assert result["status"] == "error"
        assert "Unknown job" in result["error"]

    def test_run_records_history(self, scheduler):
        result = scheduler.run_job("kpi_cache_refresh")
        assert result["status"] == "success"

        db.session.expire_all()
        record = ScheduledJob.query.filter_by(job_name="kpi_cache_refresh").first()
        assert record.run_count == 1
        assert record.last_run_status == "success"
        assert record.last_run_result["success"] is True

    def test_failed_run_recorded(self, scheduler, kpi_cache):
        with patch.object(kpi_cache, "flush_all", return_value=False):
            result = scheduler.run_job("kpi_cache_refresh")
        assert result["status"] == "failed"
        assert "flush failed" in result["error"]

        db.session.expire_all()
        record = ScheduledJob.query.filter_by(job_name="kpi_cache_refresh").first()
        assert record.error_count == 1

    def test_toggle(self, scheduler):
        result = scheduler.toggle_job("daily_digest", False)
        assert result["status"] == "paused"
        assert result["is_enabled"] is False
        assert scheduler.toggle_job("nonexistent", True) is None

    def test_disabled_job_skipped_by_cron(self, scheduler):
        scheduler.toggle_job("kpi_cache_refresh", False)
        with patch.object(SchedulerService, "run_job") as run:
            scheduler._run_scheduled("kpi_cache_refresh")
        run.assert_not_called()

    def test_enabled_job_runs_from_cron(self, scheduler):
        with patch.object(SchedulerService, "run_job") as run:
            scheduler._run_scheduled("kpi_cache_refresh")
        run.assert_called_once_with("kpi_cache_refresh")

    def test_start_adds_cron_jobs(self, scheduler):
        with patch("opspilot.services.scheduler_service.BackgroundScheduler") as bg, \
                patch("opspilot.services.scheduler_service.atexit"):
            try:
                scheduler.start()
                instance = bg.return_value
                ids = sorted(call.kwargs["id"] for call in instance.add_job.call_args_list)
                assert ids == ["daily_automation", "kpi_cache_refresh"]
                instance.start.assert_called_once()
            finally:
                SchedulerService.shutdown()
        instance.shutdown.assert_called_once_with(wait=False)


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 3: Overdue marker
# ═══════════════════════════════════════════════════════════════════════════

class TestOverdueMarker:

    def test_marks_open_past_due_tasks(self, org):
        ada = make_user(org, name="Ada")
        wf = make_workflow(make_project(org, name="Apollo"))
        late = make_task(wf, title="late", status="IN_PROGRESS", assignee=ada,
                         due_date=NOW - days(2))
        done = make_task(wf, title="done", status="DONE", due_date=NOW - days(2))
        future = make_task(wf, title="future", status="TODO", due_date=NOW + days(2))
        already = make_task(wf, title="review", status="REVIEW", due_date=NOW - days(1))
        no_due = make_task(wf, title="no due", status="TODO")
        ids = {t.title: t.id for t in (late, done, future, already, no_due)}

        result = mark_overdue_tasks(now=NOW)

        assert result["processed"] == 1
        assert result["skipped"] == 1
        detail = result["details"][0]
        assert detail["title"] == "late"
        assert detail["project"] == "Apollo"
        assert detail["organization"] == org.name
        assert detail["assignee"] == "Ada"

        flagged = db.session.get(Task, ids["late"])
        assert flagged.status == "REVIEW"
        assert flagged.priority == "URGENT"
        assert db.session.get(Task, ids["done"]).status == "DONE"
        assert db.session.get(Task, ids["future"]).status == "TODO"
        assert db.session.get(Task, ids["no due"]).status == "TODO"

    def test_nothing_overdue(self):
        assert mark_overdue_tasks(now=NOW) == {"processed": 0, "skipped": 0, "details": []}


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 4: Daily digest
# ═══════════════════════════════════════════════════════════════════════════

class TestDailyDigest:

    def test_digest_file(self, org, tmp_path):
        ada = make_user(org, name="Ada")
        wf = make_workflow(make_project(org, name="Apollo"))
        make_task(wf, title="fresh", assignee=ada, created_at=NOW - timedelta(hours=2))
        make_task(wf, title="shipped", status="DONE", assignee=ada,
                  created_at=NOW - days(5), updated_at=NOW - timedelta(hours=3))
        overdue = make_task(wf, title="stuck", status="REVIEW", priority="URGENT",
                            created_at=NOW - days(10), due_date=NOW - days(3))
        log_time(overdue, ada, 2.5, created_at=NOW - timedelta(hours=1))
        log_time(overdue, ada, 4, created_at=NOW - days(3))

        result = generate_daily_digest(str(tmp_path), now=NOW)

        assert result["success"] is True
        assert result["file_path"] == os.path.join(str(tmp_path), "daily-digest-2026-03-10.log")
        content = open(result["file_path"], encoding="utf-8").read()
        assert "=== DAILY DIGEST: 2026-03-10 ===" in content
        assert f"--- ORGANIZATION: {org.name} ---" in content
        assert "- New Tasks: 1" in content
        assert "- Completed Tasks: 1" in content
        assert "- Overdue Tasks: 1" in content
        assert "- Hours Logged: 2.5" in content
        assert "[Apollo] fresh - Assigned to: Ada" in content
        assert "[Apollo] shipped - Completed by: Ada" in content
        assert "[Apollo] stuck - 3 day(s) overdue - Assigned to: Unassigned" in content

    def test_overdue_list_capped(self, org, tmp_path):
        wf = make_workflow(make_project(org))
        for i in range(7):
            make_task(wf, title=f"late {i}", status="REVIEW", priority="URGENT",
                      created_at=NOW - days(20), due_date=NOW - days(i + 1))

        path = generate_daily_digest(str(tmp_path), now=NOW)["file_path"]
        content = open(path, encoding="utf-8").read()
        assert "- Overdue Tasks: 7" in content
        assert "Top 5 Overdue Tasks:" in content
        assert content.count("day(s) overdue") == 5

    def test_one_section_per_organization(self, org, other_org, tmp_path):
        path = generate_daily_digest(str(tmp_path), now=NOW)["file_path"]
        content = open(path, encoding="utf-8").read()
        assert content.count("--- ORGANIZATION:") == 2


# ═══════════════════════════════════════════════════════════════════════════
#  TEST CLASS 5: KPI refresh + daily automation
# ═══════════════════════════════════════════════════════════════════════════

class TestKpiRefreshJobs:

    def test_refresh_flushes_cache(self, app, kpi_cache):
        kpi_cache.set("orgKPI-a", {"x": 1})
        result = refresh_kpi_cache(app)
        assert result["success"] is True
        assert kpi_cache.get("orgKPI-a") is None

    def test_refresh_failure_raises(self, app, kpi_cache):
        with patch.object(kpi_cache, "flush_all", return_value=False):
            with pytest.raises(CacheFlushError):
                refresh_kpi_cache(app)

    def test_daily_automation_runs_steps_in_order(self, app, kpi_cache, tmp_path, monkeypatch):
        monkeypatch.setitem(app.config, "DIGEST_DIR", str(tmp_path))
        kpi_cache.set("orgKPI-a", {"x": 1})

        calls = []
        with patch("opspilot.services.scheduled_jobs.mark_overdue_tasks",
                   side_effect=lambda: calls.append("overdue") or {"processed": 1}), \
                patch("opspilot.services.scheduled_jobs.generate_daily_digest",
                      side_effect=lambda d: calls.append("digest") or {"success": True}):
            result = daily_automation(app)

        assert calls == ["overdue", "digest"]
        assert result["success"] is True
        assert result["kpi_refresh"]["success"] is True
        assert kpi_cache.get("orgKPI-a") is None

    def test_failing_step_does_not_stop_the_rest(self, app, kpi_cache, tmp_path, monkeypatch):
        monkeypatch.setitem(app.config, "DIGEST_DIR", str(tmp_path))
        kpi_cache.set("orgKPI-a", {"x": 1})

        with patch("opspilot.services.scheduled_jobs.generate_daily_digest",
                   side_effect=OSError("disk full")):
            result = daily_automation(app)

        assert result["digest"] == {"success": False, "error": "disk full"}
        assert result["overdue"]["processed"] == 0
        assert result["kpi_refresh"]["success"] is True
        assert result["success"] is False
        assert kpi_cache.get("orgKPI-a") is None

    def test_daily_automation_end_to_end(self, app, org, tmp_path, monkeypatch):
        monkeypatch.setitem(app.config, "DIGEST_DIR", str(tmp_path))
        wf = make_workflow(make_project(org))
        task_id = make_task(wf, status="TODO", due_date=NOW - days(1)).id

        result = daily_automation(app)

        assert result["overdue"]["processed"] == 1
        assert os.path.exists(result["digest"]["file_path"])
        assert db.session.get(Task, task_id).status == "REVIEW"
