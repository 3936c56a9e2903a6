"""Project domain models for the Organization -> Project -> Workflow hierarchy."""

from datetime import datetime, timezone

from opspilot.models import db
from opspilot.models.organization import _uuid

PROJECT_STATUSES = {"ACTIVE", "ARCHIVED", "DELETED"}


class Project(db.Model):
    """Unit of delivery owned by one organization."""

    __tablename__ = "projects"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    organization_id = db.Column(
        db.String(36),
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="ACTIVE",
                       comment="ACTIVE | ARCHIVED | DELETED")
    owner_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"),
                         nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    organization = db.relationship("Organization", back_populates="projects")
    workflows = db.relationship(
        "Workflow", back_populates="project",
        order_by="Workflow.order", cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.Index("ix_projects_org_status", "organization_id", "status"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"


class Workflow(db.Model):
    """Ordered task pipeline inside a project; its owner acts as team lead."""

    __tablename__ = "workflows"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"),
                         nullable=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="ACTIVE")
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    project = db.relationship("Project", back_populates="workflows")
    owner = db.relationship("User")
    tasks = db.relationship(
        "Task", back_populates="workflow",
        order_by="Task.order", cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "order": self.order,
            "status": self.status,
        }

    def __repr__(self) -> str:
        return f"<Workflow {self.id}: {self.name}>"
