"""
Monitoring: Threshold Evaluator

Computes consumption, cost and time metrics for planned resources and
matches them against the thresholds that apply by scope precedence.

Metrics per resource:
    consumption_ratio = consumed_qty / planned_qty          (0 when planned_qty = 0)
    cost_ratio        = consumed_cost / planned_cost        (0 when planned_cost = 0)
    days_remaining    = (end_date - today).days             (None without end_date)

Threshold kinds:
    exhaustion    percentage <= consumption_ratio * 100, or remaining <= min_quantity
    cost_overrun  percentage <= cost_ratio * 100
    delay         days_remaining <= day_count
    reassignment  days_remaining <= day_count

The dashboard classification (``classify_ratio`` / ``classify_temporal``) is
informational. It never creates alerts on its own; it only supplies the
severity when the matching threshold has none.

Candidates for which an open alert already exists are dropped here, so
re-running an evaluation is idempotent. The alert service repeats the check
at insert time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select

from agromonitor.core.exceptions import ProjectNotFound, ResourceNotFound
from agromonitor.models import db
from agromonitor.models.monitoring import OPEN_ALERT_STATES, Alert, ConsumptionRecord
from agromonitor.models.planning import PlannedResource, Project, ProjectPhase
from agromonitor.services.threshold_service import resolve_thresholds

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

# (minimum percentage, level), checked top-down
RATIO_LEVELS = (
    (Decimal("95"), "critico"),
    (Decimal("85"), "alto"),
    (Decimal("70"), "medio"),
)

# (maximum days remaining, status), checked top-down
TEMPORAL_LEVELS = (
    (0, "vencido"),
    (3, "proximo_vencer"),
    (7, "atencion"),
)

LEVEL_TO_SEVERITY = {
    "critico": "critica",
    "alto": "alta",
    "medio": "media",
    "normal": "baja",
    "vencido": "critica",
    "proximo_vencer": "alta",
    "atencion": "media",
}


# ── Value objects ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResourceMetrics:
    """Consumption snapshot of one planned resource (or a whole project)."""

    planned_quantity: Decimal
    consumed_quantity: Decimal
    planned_cost: Decimal
    consumed_cost: Decimal
    days_remaining: int | None

    @property
    def remaining_quantity(self) -> Decimal:
        return self.planned_quantity - self.consumed_quantity

    @property
    def consumption_ratio(self) -> Decimal:
        return safe_ratio(self.consumed_quantity, self.planned_quantity)

    @property
    def cost_ratio(self) -> Decimal:
        return safe_ratio(self.consumed_cost, self.planned_cost)

    @property
    def consumption_pct(self) -> Decimal:
        return self.consumption_ratio * _HUNDRED

    @property
    def cost_pct(self) -> Decimal:
        return self.cost_ratio * _HUNDRED

    @property
    def alert_level(self) -> str:
        return classify_ratio(self.consumption_pct)

    @property
    def temporal_status(self) -> str:
        return classify_temporal(self.days_remaining)

    def to_dict(self) -> dict:
        return {
            "planned_quantity": str(self.planned_quantity),
            "consumed_quantity": str(self.consumed_quantity),
            "remaining_quantity": str(self.remaining_quantity),
            "planned_cost": str(self.planned_cost),
            "consumed_cost": str(self.consumed_cost),
            "consumption_pct": float(round(self.consumption_pct, 2)),
            "cost_pct": float(round(self.cost_pct, 2)),
            "days_remaining": self.days_remaining,
            "alert_level": self.alert_level,
            "temporal_status": self.temporal_status,
        }


@dataclass(frozen=True)
class AlertCandidate:
    """An alert the evaluator wants to raise; the alert service decides if it is created."""

    project_id: int
    planned_resource_id: int | None
    kind: str
    severity: str
    message: str
    threshold_id: int | None = None
    context: dict = field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple:
        return (self.project_id, self.planned_resource_id, self.kind)


# ── Pure helpers ─────────────────────────────────────────────────────────────


def safe_ratio(numerator, denominator) -> Decimal:
    """numerator / denominator, or 0 when the denominator is zero."""
    numerator = Decimal(numerator or 0)
    denominator = Decimal(denominator or 0)
    if denominator == 0:
        return _ZERO
    return numerator / denominator


def days_until(end_date: date | None, today: date) -> int | None:
    """Whole days from ``today`` until ``end_date``; negative once it has passed."""
    if end_date is None:
        return None
    return (end_date - today).days


def classify_ratio(percentage) -> str:
    """Dashboard alert level for a consumption percentage (0-100 scale)."""
    pct = Decimal(str(percentage))
    for minimum, level in RATIO_LEVELS:
        if pct >= minimum:
            return level
    return "normal"


def classify_temporal(days_remaining: int | None) -> str:
    """Dashboard temporal status for the days left until a resource's end date."""
    if days_remaining is None:
        return "normal"
    for maximum, status in TEMPORAL_LEVELS:
        if days_remaining <= maximum:
            return status
    return "normal"


def _severity(threshold, level: str) -> str:
    if threshold is not None and threshold.severity:
        return threshold.severity
    return LEVEL_TO_SEVERITY.get(level, "baja")


# ── Metrics ──────────────────────────────────────────────────────────────────


def resource_metrics(resource: PlannedResource, today: date | None = None) -> ResourceMetrics:
    """Aggregate the consumption records of one planned resource."""
    today = today or date.today()
    records = db.session.execute(
        select(ConsumptionRecord).where(ConsumptionRecord.planned_resource_id == resource.id)
    ).scalars().all()

    consumed_qty = _ZERO
    consumed_cost = _ZERO
    for record in records:
        qty = Decimal(record.quantity)
        consumed_qty += qty
        consumed_cost += qty * record.effective_unit_cost()

    return ResourceMetrics(
        planned_quantity=Decimal(resource.planned_quantity or 0),
        consumed_quantity=consumed_qty,
        planned_cost=resource.planned_cost,
        consumed_cost=consumed_cost,
        days_remaining=days_until(resource.end_date, today),
    )


def project_resources(project_id: int) -> list[PlannedResource]:
    return db.session.execute(
        select(PlannedResource)
        .join(ProjectPhase, PlannedResource.phase_id == ProjectPhase.id)
        .where(ProjectPhase.project_id == project_id)
        .order_by(PlannedResource.id)
    ).scalars().all()


def aggregate_metrics(metrics: list[ResourceMetrics], days_remaining: int | None = None) -> ResourceMetrics:
    """Sum per-resource metrics into one project-level snapshot."""
    return ResourceMetrics(
        planned_quantity=sum((m.planned_quantity for m in metrics), _ZERO),
        consumed_quantity=sum((m.consumed_quantity for m in metrics), _ZERO),
        planned_cost=sum((m.planned_cost for m in metrics), _ZERO),
        consumed_cost=sum((m.consumed_cost for m in metrics), _ZERO),
        days_remaining=days_remaining,
    )


# ── Threshold matching ───────────────────────────────────────────────────────


def match_thresholds(
    *,
    project_id: int,
    planned_resource_id: int | None,
    resource_label: str,
    metrics: ResourceMetrics,
    thresholds: dict,
) -> list[AlertCandidate]:
    """Build a candidate for every threshold the metrics cross. No DB access."""
    candidates = []
    base_context = {"resource": resource_label, **metrics.to_dict()}

    exhaustion = thresholds.get("exhaustion")
    if exhaustion is not None:
        by_pct = exhaustion.percentage is not None and Decimal(exhaustion.percentage) <= metrics.consumption_pct
        by_qty = (
            exhaustion.min_quantity is not None
            and metrics.planned_quantity > 0
            and metrics.remaining_quantity <= Decimal(exhaustion.min_quantity)
        )
        if by_pct or by_qty:
            if by_pct:
                message = (
                    f"{resource_label}: {metrics.consumption_pct:.1f}% consumed "
                    f"(threshold {Decimal(exhaustion.percentage):.1f}%)"
                )
            else:
                message = (
                    f"{resource_label}: only {metrics.remaining_quantity} left "
                    f"(minimum {exhaustion.min_quantity})"
                )
            candidates.append(AlertCandidate(
                project_id=project_id,
                planned_resource_id=planned_resource_id,
                kind="exhaustion",
                severity=_severity(exhaustion, metrics.alert_level),
                message=message,
                threshold_id=exhaustion.id,
                context={**base_context, "threshold_percentage": _str_or_none(exhaustion.percentage),
                         "threshold_min_quantity": _str_or_none(exhaustion.min_quantity)},
            ))

    overrun = thresholds.get("cost_overrun")
    if overrun is not None and overrun.percentage is not None \
            and Decimal(overrun.percentage) <= metrics.cost_pct:
        candidates.append(AlertCandidate(
            project_id=project_id,
            planned_resource_id=planned_resource_id,
            kind="cost_overrun",
            severity=_severity(overrun, classify_ratio(metrics.cost_pct)),
            message=(
                f"{resource_label}: cost at {metrics.cost_pct:.1f}% of plan "
                f"(threshold {Decimal(overrun.percentage):.1f}%)"
            ),
            threshold_id=overrun.id,
            context={**base_context, "threshold_percentage": str(overrun.percentage)},
        ))

    if metrics.days_remaining is not None:
        for kind in ("delay", "reassignment"):
            threshold = thresholds.get(kind)
            if threshold is None or threshold.day_count is None:
                continue
            if metrics.days_remaining <= threshold.day_count:
                candidates.append(AlertCandidate(
                    project_id=project_id,
                    planned_resource_id=planned_resource_id,
                    kind=kind,
                    severity=_severity(threshold, metrics.temporal_status),
                    message=(
                        f"{resource_label}: {metrics.days_remaining} day(s) left "
                        f"(threshold {threshold.day_count})"
                    ),
                    threshold_id=threshold.id,
                    context={**base_context, "threshold_day_count": threshold.day_count},
                ))

    return candidates


def _str_or_none(value):
    return str(value) if value is not None else None


def open_alert_keys(project_id: int) -> set[tuple]:
    """(project, resource, kind) keys with an open alert in a project."""
    rows = db.session.execute(
        select(Alert.project_id, Alert.planned_resource_id, Alert.kind).where(
            Alert.project_id == project_id,
            Alert.state.in_(OPEN_ALERT_STATES),
        )
    ).all()
    return {tuple(row) for row in rows}


def _drop_open(candidates: list[AlertCandidate], open_keys: set[tuple]) -> list[AlertCandidate]:
    fresh = [c for c in candidates if c.dedup_key not in open_keys]
    if len(fresh) != len(candidates):
        logger.debug("Suppressed %d candidate(s) with an open alert", len(candidates) - len(fresh))
    return fresh


# ── Public API ───────────────────────────────────────────────────────────────


def _label(resource: PlannedResource) -> str:
    name = resource.resource_type.name if resource.resource_type else f"Resource {resource.id}"
    return f"{name} (#{resource.id})"


def _evaluate_loaded_resource(resource: PlannedResource, today: date) -> list[AlertCandidate]:
    project_id = resource.project_id
    metrics = resource_metrics(resource, today)
    thresholds = resolve_thresholds(resource.resource_type_id, project_id)
    return match_thresholds(
        project_id=project_id,
        planned_resource_id=resource.id,
        resource_label=_label(resource),
        metrics=metrics,
        thresholds=thresholds,
    )


def evaluate_resource(planned_resource_id: int, today: date | None = None) -> list[AlertCandidate]:
    """
    Evaluate one planned resource against its applicable thresholds.

    Returns:
        Candidates not already covered by an open alert.

    Raises:
        ResourceNotFound: unknown planned resource.
    """
    resource = db.session.get(PlannedResource, planned_resource_id)
    if resource is None:
        raise ResourceNotFound(planned_resource_id)
    today = today or date.today()
    candidates = _evaluate_loaded_resource(resource, today)
    return _drop_open(candidates, open_alert_keys(resource.project_id))


def evaluate_project(project_id: int, today: date | None = None) -> list[AlertCandidate]:
    """
    Evaluate every planned resource of a project, plus the project-wide cost ratio.

    The project-level ``cost_overrun`` candidate carries no planned resource
    and uses only resource-type-agnostic thresholds.

    Raises:
        ProjectNotFound: unknown project.
    """
    project = db.session.get(Project, project_id)
    if project is None:
        raise ProjectNotFound(project_id)
    today = today or date.today()

    candidates: list[AlertCandidate] = []
    all_metrics = []
    for resource in project_resources(project_id):
        metrics = resource_metrics(resource, today)
        all_metrics.append(metrics)
        candidates.extend(match_thresholds(
            project_id=project_id,
            planned_resource_id=resource.id,
            resource_label=_label(resource),
            metrics=metrics,
            thresholds=resolve_thresholds(resource.resource_type_id, project_id),
        ))

    if all_metrics:
        project_thresholds = resolve_thresholds(None, project_id)
        overrun = project_thresholds.get("cost_overrun")
        if overrun is not None:
            candidates.extend(match_thresholds(
                project_id=project_id,
                planned_resource_id=None,
                resource_label=f"Project {project.name}",
                metrics=aggregate_metrics(all_metrics),
                thresholds={"cost_overrun": overrun},
            ))

    return _drop_open(candidates, open_alert_keys(project_id))


def consumed_total(planned_resource_id: int) -> Decimal:
    """SUM(quantity) of a resource's consumption records."""
    total = db.session.execute(
        select(func.coalesce(func.sum(ConsumptionRecord.quantity), 0))
        .where(ConsumptionRecord.planned_resource_id == planned_resource_id)
    ).scalar_one()
    return Decimal(str(total))
