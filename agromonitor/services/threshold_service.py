"""Monitoring: Threshold configuration and scope resolution.

Thresholds are scoped by an optional resource type and an optional project.
A NULL scope column is a wildcard; when several thresholds could apply to a
resource, the most specific one wins:

    (resource_type, project) > (resource_type, *) > (*, project) > (*, *)

Rules:
  - One active threshold per (resource_type_id, project_id, kind): saving an
    existing scope overwrites its trigger values instead of duplicating it.
    The unique index ``uq_thresholds_active_scope_kind`` rejects a racing
    second insert, which is then applied as an update.
  - db.session.commit() happens only in this file for threshold writes.
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError

from agromonitor.core.exceptions import NotFoundError, ProjectNotFound, ThresholdValidationError
from agromonitor.models import db
from agromonitor.models.monitoring import ALERT_SEVERITIES, THRESHOLD_KINDS, Threshold
from agromonitor.models.planning import Project, ResourceType
from agromonitor.services.permission import accessible_project_filter, check_capability
from agromonitor.utils.helpers import parse_decimal_input

logger = logging.getLogger(__name__)


def scope_precedence(resource_type_id: int | None, project_id: int | None) -> tuple:
    """Ordered scope keys, most specific first, applicable to a resource."""
    return (
        (resource_type_id, project_id),
        (resource_type_id, None),
        (None, project_id),
        (None, None),
    )


def resolve_thresholds(resource_type_id: int | None, project_id: int | None) -> dict[str, Threshold]:
    """Return ``{kind: Threshold}`` with the winning active threshold per kind.

    Pass ``resource_type_id=None`` to resolve project-level thresholds only.
    """
    order = []
    for key in scope_precedence(resource_type_id, project_id):
        if key not in order:
            order.append(key)

    candidates = db.session.execute(
        select(Threshold).where(
            Threshold.active.is_(True),
            or_(Threshold.resource_type_id.is_(None), Threshold.resource_type_id == resource_type_id),
            or_(Threshold.project_id.is_(None), Threshold.project_id == project_id),
        )
    ).scalars().all()

    by_scope: dict[tuple, dict[str, Threshold]] = {}
    for t in candidates:
        by_scope.setdefault(t.scope, {})[t.kind] = t

    resolved: dict[str, Threshold] = {}
    for kind in THRESHOLD_KINDS:
        for key in order:
            match = by_scope.get(key, {}).get(kind)
            if match is not None:
                resolved[kind] = match
                break
    return resolved


# ── Validation ──────────────────────────────────────────────────────────────


def _validate(data: dict) -> dict:
    """Normalise threshold input, collecting every field error before raising."""
    errors: dict[str, str] = {}
    clean: dict = {}

    kind = (data.get("kind") or "").strip()
    if kind not in THRESHOLD_KINDS:
        errors["kind"] = f"must be one of: {', '.join(THRESHOLD_KINDS)}"
    clean["kind"] = kind

    for field in ("resource_type_id", "project_id"):
        value = data.get(field)
        if value in (None, ""):
            clean[field] = None
            continue
        try:
            clean[field] = int(value)
        except (TypeError, ValueError):
            errors[field] = "must be an integer id or null"

    clean["percentage"] = None
    if data.get("percentage") is not None:
        try:
            pct = parse_decimal_input(data["percentage"])
            if pct < 0 or pct > 100:
                errors["percentage"] = "must be between 0 and 100"
            clean["percentage"] = pct
        except ValueError:
            errors["percentage"] = "must be a number between 0 and 100"

    clean["day_count"] = None
    if data.get("day_count") is not None:
        value = data["day_count"]
        try:
            if isinstance(value, (bool, float)):
                raise ValueError(value)
            days = int(value)
        except (TypeError, ValueError):
            errors["day_count"] = "must be a non-negative integer"
        else:
            if days < 0:
                errors["day_count"] = "must be a non-negative integer"
            clean["day_count"] = days

    clean["min_quantity"] = None
    if data.get("min_quantity") is not None:
        try:
            qty = parse_decimal_input(data["min_quantity"])
            if qty < 0:
                errors["min_quantity"] = "must be zero or positive"
            clean["min_quantity"] = qty
        except ValueError:
            errors["min_quantity"] = "must be a number"

    severity = data.get("severity")
    if severity is not None and severity not in ALERT_SEVERITIES:
        errors["severity"] = f"must be one of: {', '.join(ALERT_SEVERITIES)}"
    clean["severity"] = severity

    if kind == "exhaustion" and clean["percentage"] is None and clean["min_quantity"] is None \
            and "percentage" not in errors and "min_quantity" not in errors:
        errors["percentage"] = "exhaustion thresholds need percentage or min_quantity"
    elif kind == "cost_overrun" and clean["percentage"] is None and "percentage" not in errors:
        errors["percentage"] = "cost_overrun thresholds need a percentage"
    elif kind in ("delay", "reassignment") and clean["day_count"] is None and "day_count" not in errors:
        errors["day_count"] = f"{kind} thresholds need a day_count"

    if errors:
        raise ThresholdValidationError("Invalid threshold", details=errors)
    return clean


# ── Commands ────────────────────────────────────────────────────────────────


def upsert_threshold(data: dict, *, user) -> tuple[dict, bool]:
    """Create or update the active threshold for a (resource type, project, kind) scope.

    Args:
        data: kind, resource_type_id?, project_id?, percentage?, day_count?,
              min_quantity?, severity?
        user: Acting user; needs ``manage_thresholds`` on the project (or a
              global role for project-less thresholds).

    Returns:
        (threshold dict, created flag)

    Raises:
        ThresholdValidationError, ProjectNotFound, NotFoundError, AccessDenied
    """
    clean = _validate(data)

    project = None
    if clean["project_id"] is not None:
        project = db.session.get(Project, clean["project_id"])
        if project is None:
            raise ProjectNotFound(clean["project_id"])
    if clean["resource_type_id"] is not None and db.session.get(ResourceType, clean["resource_type_id"]) is None:
        raise NotFoundError("ResourceType", clean["resource_type_id"])

    check_capability(user, project, "manage_thresholds")

    threshold = _find_active(clean["kind"], clean["resource_type_id"], clean["project_id"])
    created = threshold is None
    if created:
        threshold = Threshold(
            kind=clean["kind"],
            resource_type_id=clean["resource_type_id"],
            project_id=clean["project_id"],
            created_by_id=user.id,
            active=True,
        )
        db.session.add(threshold)
    _apply_triggers(threshold, clean)

    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent request created the same scope first; update that row.
        db.session.rollback()
        threshold = _find_active(clean["kind"], clean["resource_type_id"], clean["project_id"])
        if threshold is None:
            raise
        created = False
        _apply_triggers(threshold, clean)
        db.session.commit()

    logger.info(
        "Threshold %s id=%s kind=%s scope=%s by user=%s",
        "created" if created else "updated", threshold.id, threshold.kind, threshold.scope, user.id,
    )
    return threshold.to_dict(), created


def deactivate_threshold(threshold_id: int, *, user) -> dict:
    """Switch a threshold off. Alerts it already produced are left untouched."""
    threshold = db.session.get(Threshold, threshold_id)
    if threshold is None or not threshold.active:
        raise NotFoundError("Threshold", threshold_id)
    project = db.session.get(Project, threshold.project_id) if threshold.project_id else None
    check_capability(user, project, "manage_thresholds")

    threshold.active = False
    db.session.commit()
    logger.info("Threshold deactivated id=%s by user=%s", threshold_id, user.id)
    return threshold.to_dict()


# ── Queries ─────────────────────────────────────────────────────────────────


def list_thresholds(*, user, project_id: int | None = None, resource_type_id: int | None = None) -> list[dict]:
    """Active thresholds visible to ``user``, optionally narrowed to what applies to a scope.

    Filtering by project or resource type keeps the wildcard rows as well,
    since they apply there too.
    """
    q = select(Threshold).where(Threshold.active.is_(True))
    if project_id is not None:
        q = q.where(or_(Threshold.project_id == project_id, Threshold.project_id.is_(None)))
    if resource_type_id is not None:
        q = q.where(or_(Threshold.resource_type_id == resource_type_id, Threshold.resource_type_id.is_(None)))

    restriction = accessible_project_filter(user, Threshold.project_id)
    if restriction is not None:
        q = q.where(or_(restriction, Threshold.project_id.is_(None)))

    q = q.order_by(
        Threshold.project_id.desc(),
        Threshold.resource_type_id.asc(),
        Threshold.kind.asc(),
    )
    return [t.to_dict() for t in db.session.execute(q).scalars().all()]


def _find_active(kind, resource_type_id, project_id) -> Threshold | None:
    return db.session.execute(
        select(Threshold).where(
            Threshold.active.is_(True),
            Threshold.kind == kind,
            _exact_scope(resource_type_id, project_id),
        )
    ).scalar_one_or_none()


def _apply_triggers(threshold: Threshold, clean: dict) -> None:
    threshold.percentage = clean["percentage"]
    threshold.day_count = clean["day_count"]
    threshold.min_quantity = clean["min_quantity"]
    threshold.severity = clean["severity"]


def _exact_scope(resource_type_id, project_id):
    return and_(
        Threshold.resource_type_id.is_(None) if resource_type_id is None
        else Threshold.resource_type_id == resource_type_id,
        Threshold.project_id.is_(None) if project_id is None
        else Threshold.project_id == project_id,
    )
