"""
Monitoring: Consumption Recorder

Records actual usage against planned resources and keeps the running total
of every resource within its planned quantity.

Rules:
  - sum(quantity) of a resource never exceeds planned_quantity. Check and
    insert run under a per-resource lock: an in-process striped mutex plus a row lock
    on the planned resource (SELECT ... FOR UPDATE, effective on PostgreSQL).
  - Records are immutable; corrections are new records.
  - After a successful commit the resource is evaluated against its
    thresholds. Evaluation failures are logged as degraded alerting and never
    undo the committed record.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from agromonitor.core.exceptions import (
    ConsumptionValidationError,
    OverconsumptionError,
    ProjectNotFound,
    ResourceNotFound,
)
from agromonitor.models import db
from agromonitor.models.monitoring import ConsumptionRecord
from agromonitor.models.planning import PlannedResource, Project
from agromonitor.services import alert_service, evaluator
from agromonitor.services.permission import can_access, check_capability
from agromonitor.utils.helpers import parse_date_input, parse_decimal_input

logger = logging.getLogger(__name__)

# Fixed pool of striped locks; resources sharing a stripe also share a lock.
LOCK_STRIPES = 64
_locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))


def _lock_for(planned_resource_id: int) -> threading.Lock:
    return _locks[planned_resource_id % LOCK_STRIPES]


@contextmanager
def resource_lock(planned_resource_id: int):
    """Serialise writers of one planned resource inside this process."""
    with _lock_for(planned_resource_id):
        yield


def _validate(quantity, consumed_on, unit_cost, note) -> dict:
    errors = {}
    clean = {"note": (note or "").strip()[:500] or None, "unit_cost": None}

    try:
        qty = parse_decimal_input(quantity)
        if qty <= 0:
            errors["quantity"] = "must be greater than zero"
        clean["quantity"] = qty
    except ValueError:
        errors["quantity"] = "must be a positive number"

    try:
        clean["consumed_on"] = parse_date_input(consumed_on)
        if clean["consumed_on"] is None:
            errors["consumed_on"] = "is required"
    except ValueError as exc:
        errors["consumed_on"] = str(exc)

    if unit_cost is not None:
        try:
            cost = parse_decimal_input(unit_cost)
            if cost < 0:
                errors["unit_cost"] = "must be zero or positive"
            clean["unit_cost"] = cost
        except ValueError:
            errors["unit_cost"] = "must be a number"

    if errors:
        raise ConsumptionValidationError("Invalid consumption", details=errors)
    return clean


def _get_visible_resource(planned_resource_id, user, *, for_update=False) -> PlannedResource:
    q = select(PlannedResource).where(PlannedResource.id == planned_resource_id)
    if for_update:
        q = q.with_for_update()
    resource = db.session.execute(q).scalar_one_or_none()
    if resource is None or not can_access(user, resource.phase.project):
        raise ResourceNotFound(planned_resource_id)
    return resource


def record_consumption(
    planned_resource_id: int,
    quantity,
    consumed_on,
    note: str | None = None,
    *,
    user,
    unit_cost=None,
) -> ConsumptionRecord:
    """
    Record consumption of a planned resource.

    Args:
        planned_resource_id: Target planned resource.
        quantity: Positive decimal amount.
        consumed_on: Date of use (date or ISO string).
        note: Free text.
        user: Acting user; needs ``record`` on the resource's project.
        unit_cost: Actual unit cost, when it differs from the planned one.

    Returns:
        The committed ConsumptionRecord.

    Raises:
        ConsumptionValidationError, ResourceNotFound, AccessDenied,
        OverconsumptionError
    """
    clean = _validate(quantity, consumed_on, unit_cost, note)

    with resource_lock(planned_resource_id):
        try:
            resource = _get_visible_resource(planned_resource_id, user, for_update=True)
            check_capability(user, resource.phase.project, "record")

            prior_total = evaluator.consumed_total(planned_resource_id)
            limit = Decimal(resource.planned_quantity or 0)
            if prior_total + clean["quantity"] > limit:
                raise OverconsumptionError(prior_total, clean["quantity"], limit)

            record = ConsumptionRecord(
                planned_resource_id=planned_resource_id,
                quantity=clean["quantity"],
                unit_cost=clean["unit_cost"],
                consumed_on=clean["consumed_on"],
                note=clean["note"],
                recorded_by_id=user.id,
            )
            db.session.add(record)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Consumption recorded id=%s resource=%s qty=%s total=%s/%s by user=%s",
        record.id, planned_resource_id, clean["quantity"],
        prior_total + clean["quantity"], limit, user.id,
        extra={"user_id": user.id, "planned_resource_id": planned_resource_id},
    )

    try:
        alert_service.evaluate_and_alert_resource(planned_resource_id)
    except Exception:
        db.session.rollback()
        logger.exception(
            "Degraded alerting: evaluation failed after consumption id=%s", record.id,
            extra={"planned_resource_id": planned_resource_id},
        )

    return record


def list_consumption(planned_resource_id: int, *, user) -> list[ConsumptionRecord]:
    """Records of one resource, newest first."""
    _get_visible_resource(planned_resource_id, user)
    return db.session.execute(
        select(ConsumptionRecord)
        .where(ConsumptionRecord.planned_resource_id == planned_resource_id)
        .order_by(ConsumptionRecord.consumed_on.desc(), ConsumptionRecord.id.desc())
    ).scalars().all()


def project_consumption_summary(
    project_id: int,
    *,
    user,
    today: date | None = None,
    recent_alerts_limit: int = 10,
) -> dict:
    """
    Planned vs consumed figures for every resource of a project.

    Each resource carries its dashboard alert level (critico / alto / medio /
    normal) and temporal status (vencido / proximo_vencer / atencion /
    normal). Stats aggregate the whole project.
    """
    project = db.session.get(Project, project_id)
    if project is None or not can_access(user, project):
        raise ProjectNotFound(project_id)
    today = today or date.today()

    rows = []
    metrics_list = []
    for resource in evaluator.project_resources(project_id):
        metrics = evaluator.resource_metrics(resource, today)
        metrics_list.append(metrics)
        rows.append({**resource.to_dict(), **metrics.to_dict()})

    totals = evaluator.aggregate_metrics(metrics_list)
    count = len(metrics_list)
    avg_pct = sum((m.consumption_pct for m in metrics_list), Decimal(0)) / count if count else Decimal(0)

    stats = {
        "resource_count": count,
        "total_planned_cost": str(totals.planned_cost),
        "total_consumed_cost": str(totals.consumed_cost),
        "cost_pct": float(round(totals.cost_pct, 2)),
        "average_consumption_pct": float(round(avg_pct, 2)),
        "critical_resources": sum(1 for m in metrics_list if m.alert_level == "critico"),
        "overdue_resources": sum(1 for m in metrics_list if m.temporal_status == "vencido"),
    }

    return {
        "project": project.to_dict(),
        "resources": rows,
        "stats": stats,
        "recent_alerts": [a.to_dict() for a in alert_service.recent_active_alerts(project_id, recent_alerts_limit)],
    }
