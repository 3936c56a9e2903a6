"""
Task and effort models.

Models:
    - Task: unit of work inside a workflow
    - TimeLog: hours logged internally by a user
    - ExternalLog: hours imported from an external time-tracking system
"""

from datetime import datetime, timezone

from opspilot.models import db
from opspilot.models.organization import _uuid


# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = {"TODO", "IN_PROGRESS", "REVIEW", "DONE", "COMPLETED"}
COMPLETED_STATUSES = ("DONE", "COMPLETED")
TASK_PRIORITIES = {"LOW", "MEDIUM", "HIGH", "URGENT"}


class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    workflow_id = db.Column(
        db.String(36),
        db.ForeignKey("workflows.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="TODO",
                       comment="TODO | IN_PROGRESS | REVIEW | DONE | COMPLETED")
    priority = db.Column(db.String(20), nullable=False, default="MEDIUM",
                         comment="LOW | MEDIUM | HIGH | URGENT")
    assignee_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"),
                            nullable=True, index=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)
    external_code = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    workflow = db.relationship("Workflow", back_populates="tasks")
    assignee = db.relationship("User")
    time_logs = db.relationship("TimeLog", back_populates="task",
                                cascade="all, delete-orphan")
    external_logs = db.relationship("ExternalLog", back_populates="task",
                                    cascade="all, delete-orphan")

    __table_args__ = (
        db.Index("ix_tasks_assignee_status", "assignee_id", "status"),
    )

    @property
    def is_completed(self):
        return self.status in COMPLETED_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "assignee_id": self.assignee_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.status}]>"


class TimeLog(db.Model):
    __tablename__ = "time_logs"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    task_id = db.Column(db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    hours = db.Column(db.Float, nullable=False, default=0.0)
    date = db.Column(db.DateTime(timezone=True),
                     default=lambda: datetime.now(timezone.utc))
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    task = db.relationship("Task", back_populates="time_logs")
    user = db.relationship("User")

    __table_args__ = (
        db.CheckConstraint("hours >= 0", name="ck_time_logs_hours_non_negative"),
    )

    def __repr__(self):
        return f"<TimeLog {self.task_id} {self.hours}h>"


class ExternalLog(db.Model):
    """Hours imported from a third-party tracker; the user may be unknown."""

    __tablename__ = "external_logs"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    task_id = db.Column(db.String(36), db.ForeignKey("tasks.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"),
                        nullable=True)
    user_name = db.Column(db.String(200), nullable=False)
    date = db.Column(db.DateTime(timezone=True), nullable=False)
    hours = db.Column(db.Float, nullable=False, default=0.0)
    description = db.Column(db.Text, nullable=True)
    source = db.Column(db.String(100), nullable=False)
    external_id = db.Column(db.String(100), nullable=True)
    project_code = db.Column(db.String(100), nullable=False)
    billable = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    task = db.relationship("Task", back_populates="external_logs")

    __table_args__ = (
        db.CheckConstraint("hours >= 0", name="ck_external_logs_hours_non_negative"),
    )

    def __repr__(self):
        return f"<ExternalLog {self.source}:{self.external_id} {self.hours}h>"
