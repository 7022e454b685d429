"""
Monitoring: Alert Manager

Persists evaluator candidates as alerts and drives the alert lifecycle.

    activa  ──► leida ──► resuelta | ignorada
       └──────────────────► resuelta | ignorada

Rules:
  - At most one open alert (activa / leida) per (project, resource, kind).
    The service checks before inserting; the partial unique index
    ``uq_alerts_open_per_resource_kind`` catches concurrent inserts, and an
    IntegrityError there counts as a deduplication.
  - State updates are conditional on the state that was read. A concurrent
    change makes the UPDATE match no row and raises AlertStateConflict.
  - Terminal transitions stamp resolved_at / resolved_by_id.
  - db.session.commit() for alerts happens only in this file.

Usage:
    from agromonitor.services.alert_service import sweep, transition_alert

    summary = sweep()                        # {"projects": 3, "created": 2, ...}
    alert = transition_alert(7, "resuelta", user=user, note="Restocked")
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError

from agromonitor.core.exceptions import AlertNotFound, AlertStateConflict, InvalidStateTransition
from agromonitor.models import db
from agromonitor.models.monitoring import (
    ALERT_STATES,
    OPEN_ALERT_STATES,
    SEVERITY_RANK,
    TERMINAL_ALERT_STATES,
    Alert,
    validate_alert_transition,
)
from agromonitor.models.planning import Project
from agromonitor.services import evaluator
from agromonitor.services.permission import accessible_project_filter, can_access, check_capability

logger = logging.getLogger(__name__)

INACTIVE_PROJECT_STATUSES = ("completado", "cancelado")


# ═════════════════════════════════════════════════════════════════════════════
# Creation
# ═════════════════════════════════════════════════════════════════════════════


def _open_alert_exists(project_id, planned_resource_id, kind) -> bool:
    q = select(Alert.id).where(
        Alert.project_id == project_id,
        Alert.kind == kind,
        Alert.state.in_(OPEN_ALERT_STATES),
    )
    if planned_resource_id is None:
        q = q.where(Alert.planned_resource_id.is_(None))
    else:
        q = q.where(Alert.planned_resource_id == planned_resource_id)
    return db.session.execute(q.limit(1)).first() is not None


def create_alert(candidate: evaluator.AlertCandidate) -> Alert | None:
    """Persist ``candidate`` unless an open alert already covers it.

    Returns:
        The new Alert, or None when it was deduplicated.
    """
    if _open_alert_exists(candidate.project_id, candidate.planned_resource_id, candidate.kind):
        logger.debug("Alert deduplicated key=%s", candidate.dedup_key)
        return None

    alert = Alert(
        project_id=candidate.project_id,
        planned_resource_id=candidate.planned_resource_id,
        threshold_id=candidate.threshold_id,
        kind=candidate.kind,
        severity=candidate.severity,
        message=candidate.message[:500],
        context=candidate.context,
        state="activa",
    )
    db.session.add(alert)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost the race against a concurrent insert of the same open alert.
        db.session.rollback()
        logger.info("Alert deduplicated at insert key=%s", candidate.dedup_key)
        return None

    logger.info(
        "Alert created id=%s project=%s resource=%s kind=%s severity=%s",
        alert.id, alert.project_id, alert.planned_resource_id, alert.kind, alert.severity,
        extra={
            "alert_id": alert.id,
            "project_id": alert.project_id,
            "planned_resource_id": alert.planned_resource_id,
        },
    )
    return alert


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


def _compare_and_set(alert_id: int, expected_state: str, values: dict) -> bool:
    """UPDATE the alert only if it is still in ``expected_state``."""
    result = db.session.execute(
        update(Alert)
        .where(Alert.id == alert_id, Alert.state == expected_state)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def transition_alert(alert_id: int, new_state: str, *, user, note: str | None = None) -> Alert:
    """
    Move an alert to ``new_state``.

    Raises:
        AlertNotFound: unknown id, or the alert's project is not accessible.
        AccessDenied: the user may see the project but not manage its alerts.
        InvalidStateTransition: terminal current state or disallowed pair.
        AlertStateConflict: the alert changed state since it was read.
    """
    alert = db.session.get(Alert, alert_id)
    if alert is None:
        raise AlertNotFound(alert_id)
    project = db.session.get(Project, alert.project_id)
    if not can_access(user, project):
        raise AlertNotFound(alert_id)
    check_capability(user, project, "manage_alerts")

    current = alert.state
    if new_state not in ALERT_STATES or not validate_alert_transition(current, new_state):
        raise InvalidStateTransition(alert_id, current, new_state)

    values = {"state": new_state}
    if new_state in TERMINAL_ALERT_STATES:
        values["resolved_at"] = datetime.now(timezone.utc)
        values["resolved_by_id"] = user.id
        if note:
            values["resolution_note"] = note[:500]

    if not _compare_and_set(alert_id, current, values):
        db.session.rollback()
        logger.warning("Alert %s state conflict: expected '%s'", alert_id, current)
        raise AlertStateConflict(alert_id, current)

    db.session.commit()
    db.session.refresh(alert)
    logger.info(
        "Alert %s: %s -> %s by user=%s", alert_id, current, new_state, user.id,
        extra={"alert_id": alert_id, "user_id": user.id, "project_id": alert.project_id},
    )
    return alert


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


_SEVERITY_ORDER = case(SEVERITY_RANK, value=Alert.severity, else_=-1)


def get_alert(alert_id: int, *, user) -> Alert:
    """Return one alert the user may see, else AlertNotFound."""
    alert = db.session.get(Alert, alert_id)
    if alert is None or not can_access(user, db.session.get(Project, alert.project_id)):
        raise AlertNotFound(alert_id)
    return alert


def list_alerts(*, user, project_id=None, state=None, severity=None, kind=None, limit=None) -> list[Alert]:
    """Alerts on accessible projects, most severe first, then newest first."""
    q = select(Alert)
    restriction = accessible_project_filter(user, Alert.project_id)
    if restriction is not None:
        q = q.where(restriction)
    if project_id is not None:
        q = q.where(Alert.project_id == project_id)
    if state:
        q = q.where(Alert.state == state)
    if severity:
        q = q.where(Alert.severity == severity)
    if kind:
        q = q.where(Alert.kind == kind)
    q = q.order_by(_SEVERITY_ORDER.desc(), Alert.generated_at.desc(), Alert.id.desc())
    if limit:
        q = q.limit(limit)
    return db.session.execute(q).scalars().all()


def recent_active_alerts(project_id: int, limit: int = 10) -> list[Alert]:
    return db.session.execute(
        select(Alert)
        .where(Alert.project_id == project_id, Alert.state == "activa")
        .order_by(Alert.generated_at.desc(), Alert.id.desc())
        .limit(limit)
    ).scalars().all()


# ═════════════════════════════════════════════════════════════════════════════
# Evaluation glue
# ═════════════════════════════════════════════════════════════════════════════


def _persist(candidates) -> tuple[list[Alert], int]:
    created, deduplicated = [], 0
    for candidate in candidates:
        alert = create_alert(candidate)
        if alert is None:
            deduplicated += 1
        else:
            created.append(alert)
    return created, deduplicated


def evaluate_and_alert_resource(planned_resource_id: int, today: date | None = None) -> list[Alert]:
    """Evaluate one resource and persist whatever alerts it produces."""
    created, _ = _persist(evaluator.evaluate_resource(planned_resource_id, today))
    return created


def sweep(project_id: int | None = None, today: date | None = None) -> dict:
    """
    Re-evaluate every active project (or one project) and persist new alerts.

    Safe to run repeatedly; open alerts are never duplicated. A failing
    project is logged and counted, the sweep continues with the next one.
    """
    if project_id is not None:
        project_ids = [project_id]
    else:
        project_ids = db.session.execute(
            select(Project.id)
            .where(Project.status.notin_(INACTIVE_PROJECT_STATUSES))
            .order_by(Project.id)
        ).scalars().all()

    summary = {"projects": 0, "candidates": 0, "created": 0, "deduplicated": 0, "errors": 0}
    for pid in project_ids:
        try:
            candidates = evaluator.evaluate_project(pid, today)
            created, deduplicated = _persist(candidates)
        except Exception:
            db.session.rollback()
            summary["errors"] += 1
            logger.exception("Threshold sweep failed for project=%s", pid)
            continue
        summary["projects"] += 1
        summary["candidates"] += len(candidates)
        summary["created"] += len(created)
        summary["deduplicated"] += deduplicated

    logger.info("Threshold sweep finished: %s", summary)
    return summary
