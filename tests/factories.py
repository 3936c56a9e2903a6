"""
Test data builders for the Organization → Project → Workflow → Task hierarchy.

Every builder commits, so rows are visible to jobs that run in their own
app context.
"""

from datetime import datetime, timedelta, timezone

from opspilot.models import db
from opspilot.models.organization import Organization, User
from opspilot.models.project import Project, Workflow
from opspilot.models.task import ExternalLog, Task, TimeLog

# Fixed reference instant for deterministic durations
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def days(n):
    return timedelta(days=n)


def _save(obj):
    db.session.add(obj)
    db.session.commit()
    return obj


def make_org(name="Acme Ops", slug=None):
    return _save(Organization(name=name, slug=slug or name.lower().replace(" ", "-")))


def make_user(org=None, *, name="Ada", email=None, role="MEMBER"):
    return _save(User(
        organization_id=org.id if org else None,
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        role=role,
    ))


def make_project(org, *, name="Project", status="ACTIVE", created_at=NOW):
    return _save(Project(organization_id=org.id, name=name, status=status,
                         created_at=created_at, updated_at=created_at))


def make_workflow(project, *, name="Workflow", owner=None, order=0):
    return _save(Workflow(project_id=project.id, name=name, order=order,
                          owner_id=owner.id if owner else None))


def make_task(workflow, *, title="Task", status="TODO", assignee=None,
              created_at=NOW, updated_at=None, due_date=None, priority="MEDIUM"):
    return _save(Task(
        workflow_id=workflow.id,
        title=title,
        status=status,
        priority=priority,
        assignee_id=assignee.id if assignee else None,
        due_date=due_date,
        created_at=created_at,
        updated_at=updated_at or created_at,
    ))


def log_time(task, user, hours, *, created_at=NOW):
    return _save(TimeLog(task_id=task.id, user_id=user.id, hours=hours,
                         date=created_at, created_at=created_at))


def log_external(task, hours, *, user=None, user_name="Imported", source="harvest"):
    return _save(ExternalLog(
        task_id=task.id,
        user_id=user.id if user else None,
        user_name=user.name if user else user_name,
        date=NOW,
        hours=hours,
        source=source,
        project_code="EXT-1",
    ))
