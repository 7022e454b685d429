"""
AgroMonitor
Resource plan registry models.

These tables belong to the surrounding project-management application.
The monitoring engine only reads them: users and their role, projects and
their owner, project phases, resource types, and the planned allocation of
a resource type to a phase (``PlannedResource``).

Models:
    - User: platform user with a role (administrador, asesor, productor)
    - Project: agricultural project owned by a productor
    - ProjectPhase: phase of a project
    - ResourceType: catalog entry (fertilizer, seed, irrigation water, ...)
    - PlannedResource: planned quantity/cost/time window of a resource in a phase
"""

from datetime import datetime, timezone
from decimal import Decimal

from agromonitor.models import db


class User(db.Model):
    """Platform user. Only identity and role matter to the monitoring engine."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="productor",
                     comment="administrador | asesor | productor")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} [{self.role}]>"


class Project(db.Model):
    """Agricultural project. ``owner_id`` is the productor responsible for it."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                         nullable=True, index=True)
    status = db.Column(db.String(30), nullable=False, default="planificacion",
                       comment="planificacion | en_progreso | completado | cancelado")
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    total_budget = db.Column(db.Numeric(14, 2), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    phases = db.relationship("ProjectPhase", backref="project", lazy="dynamic",
                             cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "total_budget": str(self.total_budget) if self.total_budget is not None else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name[:40]}>"


class ProjectPhase(db.Model):
    __tablename__ = "project_phases"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    planned_resources = db.relationship("PlannedResource", backref="phase", lazy="dynamic",
                                        cascade="all, delete-orphan")

    def __repr__(self):
        return f"<ProjectPhase {self.id}: {self.name[:40]}>"


class ResourceType(db.Model):
    __tablename__ = "resource_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), unique=True, nullable=False)
    unit = db.Column(db.String(30), nullable=False, default="unidad",
                     comment="kg, litros, horas, ...")
    category = db.Column(db.String(50), nullable=True,
                         comment="material | maquinaria | mano_obra | recurso")

    def to_dict(self):
        return {"id": self.id, "name": self.name, "unit": self.unit, "category": self.category}

    def __repr__(self):
        return f"<ResourceType {self.id}: {self.name}>"


class PlannedResource(db.Model):
    """
    Planned allocation of a resource type to a project phase.

    Consumption is recorded against this row and can never exceed
    ``planned_quantity`` in total.
    """

    __tablename__ = "planned_resources"

    id = db.Column(db.Integer, primary_key=True)
    phase_id = db.Column(db.Integer, db.ForeignKey("project_phases.id", ondelete="CASCADE"),
                         nullable=False, index=True)
    resource_type_id = db.Column(db.Integer, db.ForeignKey("resource_types.id", ondelete="RESTRICT"),
                                 nullable=False, index=True)
    planned_quantity = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    unit_cost = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    resource_type = db.relationship("ResourceType")

    @property
    def project_id(self):
        return self.phase.project_id if self.phase else None

    @property
    def planned_cost(self) -> Decimal:
        return Decimal(self.planned_quantity or 0) * Decimal(self.unit_cost or 0)

    def to_dict(self):
        return {
            "id": self.id,
            "phase_id": self.phase_id,
            "project_id": self.project_id,
            "resource_type_id": self.resource_type_id,
            "resource_type": self.resource_type.name if self.resource_type else None,
            "planned_quantity": str(self.planned_quantity),
            "unit_cost": str(self.unit_cost),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }

    def __repr__(self):
        return f"<PlannedResource {self.id}: phase={self.phase_id} type={self.resource_type_id}>"
