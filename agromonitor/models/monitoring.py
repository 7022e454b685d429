"""
AgroMonitor
Monitoring domain models.

Models:
    - ConsumptionRecord: immutable usage fact against a PlannedResource
    - Threshold: scoped trigger condition (percentage or day count)
    - Alert: generated notice with its own lifecycle

Alert lifecycle:
    activa  -> leida | resuelta | ignorada
    leida   -> resuelta | ignorada
    resuelta, ignorada -> (terminal)
"""

from datetime import datetime, timezone
from decimal import Decimal

from agromonitor.models import db


# ── Constants ────────────────────────────────────────────────────────────────

THRESHOLD_KINDS = ("exhaustion", "cost_overrun", "delay", "reassignment")

ALERT_SEVERITIES = ("baja", "media", "alta", "critica")
SEVERITY_RANK = {s: i for i, s in enumerate(ALERT_SEVERITIES)}

ALERT_STATES = ("activa", "leida", "resuelta", "ignorada")
OPEN_ALERT_STATES = ("activa", "leida")
TERMINAL_ALERT_STATES = ("resuelta", "ignorada")

ALERT_TRANSITIONS = {
    "activa": ["leida", "resuelta", "ignorada"],
    "leida": ["resuelta", "ignorada"],
    "resuelta": [],
    "ignorada": [],
}


def validate_alert_transition(old_state, new_state):
    """Return True if old_state -> new_state is an allowed alert transition."""
    return new_state in ALERT_TRANSITIONS.get(old_state, [])


class ConsumptionRecord(db.Model):
    """
    Recorded usage of a planned resource.

    Never updated after insert; corrections are new records.
    """

    __tablename__ = "consumption_records"

    id = db.Column(db.Integer, primary_key=True)
    planned_resource_id = db.Column(
        db.Integer, db.ForeignKey("planned_resources.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit_cost = db.Column(db.Numeric(14, 2), nullable=True,
                          comment="Actual unit cost; NULL means the planned unit cost")
    consumed_on = db.Column(db.Date, nullable=False)
    note = db.Column(db.String(500), nullable=True)
    recorded_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    planned_resource = db.relationship("PlannedResource")

    def effective_unit_cost(self) -> Decimal:
        if self.unit_cost is not None:
            return Decimal(self.unit_cost)
        return Decimal(self.planned_resource.unit_cost or 0)

    def to_dict(self):
        return {
            "id": self.id,
            "planned_resource_id": self.planned_resource_id,
            "quantity": str(self.quantity),
            "unit_cost": str(self.unit_cost) if self.unit_cost is not None else None,
            "consumed_on": self.consumed_on.isoformat() if self.consumed_on else None,
            "note": self.note,
            "recorded_by_id": self.recorded_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ConsumptionRecord {self.id}: resource={self.planned_resource_id} qty={self.quantity}>"


class Threshold(db.Model):
    """
    Configured alert trigger.

    Scope: ``resource_type_id`` and ``project_id`` are both optional; a NULL
    column is a wildcard. One active row per (resource_type_id, project_id, kind),
    enforced by ``uq_thresholds_active_scope_kind`` below.
    """

    __tablename__ = "thresholds"

    id = db.Column(db.Integer, primary_key=True)
    resource_type_id = db.Column(db.Integer, db.ForeignKey("resource_types.id", ondelete="CASCADE"),
                                 nullable=True, index=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=True, index=True)
    kind = db.Column(db.String(20), nullable=False,
                     comment="exhaustion | cost_overrun | delay | reassignment")
    percentage = db.Column(db.Numeric(5, 2), nullable=True,
                           comment="Trigger for exhaustion / cost_overrun, 0-100")
    day_count = db.Column(db.Integer, nullable=True,
                          comment="Trigger for delay / reassignment, days before end date")
    min_quantity = db.Column(db.Numeric(14, 3), nullable=True,
                             comment="Exhaustion trigger on remaining quantity")
    severity = db.Column(db.String(10), nullable=True,
                         comment="Explicit severity; NULL derives it from the ratio")
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                              nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def scope(self):
        return (self.resource_type_id, self.project_id)

    def to_dict(self):
        return {
            "id": self.id,
            "resource_type_id": self.resource_type_id,
            "project_id": self.project_id,
            "kind": self.kind,
            "percentage": str(self.percentage) if self.percentage is not None else None,
            "day_count": self.day_count,
            "min_quantity": str(self.min_quantity) if self.min_quantity is not None else None,
            "severity": self.severity,
            "created_by_id": self.created_by_id,
            "active": self.active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Threshold {self.id}: {self.kind} scope={self.scope}>"


class Alert(db.Model):
    """
    Alert raised when a threshold is crossed.

    At most one open alert exists per (project, planned resource, kind);
    the partial unique index ``uq_alerts_open_per_resource_kind`` below backs
    the check done by the alert service.
    """

    __tablename__ = "alerts"
    __table_args__ = (
        db.Index("ix_alerts_project_state", "project_id", "state"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    planned_resource_id = db.Column(
        db.Integer, db.ForeignKey("planned_resources.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    threshold_id = db.Column(db.Integer, db.ForeignKey("thresholds.id", ondelete="SET NULL"),
                             nullable=True)
    kind = db.Column(db.String(20), nullable=False)
    severity = db.Column(db.String(10), nullable=False, default="media")
    message = db.Column(db.String(500), nullable=False)
    context = db.Column(db.JSON, default=dict)
    state = db.Column(db.String(10), nullable=False, default="activa")

    generated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolved_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
                               nullable=True)
    resolution_note = db.Column(db.String(500), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "planned_resource_id": self.planned_resource_id,
            "threshold_id": self.threshold_id,
            "kind": self.kind,
            "severity": self.severity,
            "message": self.message,
            "context": self.context or {},
            "state": self.state,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by_id": self.resolved_by_id,
            "resolution_note": self.resolution_note,
        }

    def __repr__(self):
        return f"<Alert {self.id}: {self.kind} [{self.state}] project={self.project_id}>"


# ── Uniqueness ───────────────────────────────────────────────────────────────
# NULL scope columns are mapped to 0 so wildcard and project-level rows are
# unique too; a plain index would treat every NULL as distinct.

OPEN_ALERT_WHERE = "state IN ('activa', 'leida')"

db.Index(
    "uq_alerts_open_per_resource_kind",
    Alert.project_id,
    db.func.coalesce(Alert.planned_resource_id, 0),
    Alert.kind,
    unique=True,
    postgresql_where=db.text(OPEN_ALERT_WHERE),
    sqlite_where=db.text(OPEN_ALERT_WHERE),
)

db.Index(
    "uq_thresholds_active_scope_kind",
    db.func.coalesce(Threshold.resource_type_id, 0),
    db.func.coalesce(Threshold.project_id, 0),
    Threshold.kind,
    unique=True,
    postgresql_where=db.text("active"),
    sqlite_where=db.text("active = 1"),
)
