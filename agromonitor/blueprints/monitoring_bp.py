"""
AgroMonitor
Monitoring Blueprint.

Provides:
    - Consumption recording and per-resource / per-project consumption views
    - Threshold configuration (list, upsert, deactivate)
    - Alert listing, detail and state transitions
    - Administrative threshold sweep

All routes act on behalf of ``g.current_user`` (X-User-Id).
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

from agromonitor.blueprints import current_user, int_arg, register_error_handlers
from agromonitor.core.exceptions import ProjectNotFound
from agromonitor.models import db
from agromonitor.models.monitoring import ALERT_SEVERITIES, ALERT_STATES, THRESHOLD_KINDS
from agromonitor.models.planning import Project
from agromonitor.services import alert_service, consumption_service, notification_filter, threshold_service
from agromonitor.services.permission import check_capability
from agromonitor.utils.errors import E, api_error

logger = logging.getLogger(__name__)

monitoring_bp = Blueprint("monitoring", __name__, url_prefix="/api/v1/monitoring")
register_error_handlers(monitoring_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  CONSUMPTION
# ═══════════════════════════════════════════════════════════════════════════

@monitoring_bp.route("/consumption", methods=["POST"])
def record_consumption():
    """Record consumption of a planned resource."""
    data = request.get_json(silent=True) or {}

    resource_id = data.get("planned_resource_id")
    if resource_id is None:
        return api_error(E.VALIDATION_REQUIRED, "planned_resource_id is required")
    try:
        resource_id = int(resource_id)
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "planned_resource_id must be an integer")

    record = consumption_service.record_consumption(
        resource_id,
        data.get("quantity"),
        data.get("consumed_on"),
        data.get("note"),
        user=current_user(),
        unit_cost=data.get("unit_cost"),
    )
    return jsonify(record.to_dict()), 201


@monitoring_bp.route("/resources/<int:planned_resource_id>/consumption", methods=["GET"])
def list_resource_consumption(planned_resource_id):
    records = consumption_service.list_consumption(planned_resource_id, user=current_user())
    return jsonify({"items": [r.to_dict() for r in records], "total": len(records)})


@monitoring_bp.route("/projects/<int:project_id>/consumption", methods=["GET"])
def project_consumption(project_id):
    """Planned vs consumed summary of a project, with its most recent active alerts."""
    summary = consumption_service.project_consumption_summary(
        project_id,
        user=current_user(),
        recent_alerts_limit=current_app.config.get("MONITORING_RECENT_ALERTS_LIMIT", 10),
    )
    return jsonify(summary)


# ═══════════════════════════════════════════════════════════════════════════
#  THRESHOLDS
# ═══════════════════════════════════════════════════════════════════════════

@monitoring_bp.route("/thresholds", methods=["GET"])
def list_thresholds():
    items = threshold_service.list_thresholds(
        user=current_user(),
        project_id=int_arg("project_id"),
        resource_type_id=int_arg("resource_type_id"),
    )
    return jsonify({"items": items, "total": len(items)})


@monitoring_bp.route("/thresholds", methods=["PUT"])
def upsert_threshold():
    """Create or update the threshold for a (resource_type_id, project_id, kind) scope."""
    data = request.get_json(silent=True) or {}
    if not data.get("kind"):
        return api_error(
            E.VALIDATION_REQUIRED, "kind is required",
            details={"kind": f"must be one of: {', '.join(THRESHOLD_KINDS)}"},
        )
    threshold, created = threshold_service.upsert_threshold(data, user=current_user())
    return jsonify(threshold), 201 if created else 200


@monitoring_bp.route("/thresholds/<int:threshold_id>", methods=["DELETE"])
def deactivate_threshold(threshold_id):
    return jsonify(threshold_service.deactivate_threshold(threshold_id, user=current_user()))


# ═══════════════════════════════════════════════════════════════════════════
#  ALERTS
# ═══════════════════════════════════════════════════════════════════════════

@monitoring_bp.route("/alerts", methods=["GET"])
def list_alerts():
    """
    List alerts on accessible projects, most severe first.

    Query params: project_id, state, severity, kind, limit, visible_only
    """
    state = request.args.get("state") or None
    severity = request.args.get("severity") or None
    kind = request.args.get("kind") or None
    if state and state not in ALERT_STATES:
        return api_error(E.VALIDATION_INVALID, f"Invalid state. Must be one of: {list(ALERT_STATES)}")
    if severity and severity not in ALERT_SEVERITIES:
        return api_error(E.VALIDATION_INVALID, f"Invalid severity. Must be one of: {list(ALERT_SEVERITIES)}")
    if kind and kind not in THRESHOLD_KINDS:
        return api_error(E.VALIDATION_INVALID, f"Invalid kind. Must be one of: {list(THRESHOLD_KINDS)}")

    max_limit = current_app.config.get("MONITORING_ALERT_LIST_LIMIT", 50)
    limit = int_arg("limit") or max_limit
    user = current_user()

    alerts = alert_service.list_alerts(
        user=user,
        project_id=int_arg("project_id"),
        state=state,
        severity=severity,
        kind=kind,
        limit=max(1, min(limit, max_limit)),
    )
    if request.args.get("visible_only", "").lower() in ("1", "true", "yes"):
        alerts = notification_filter.filter_visible(user.id, alerts)

    return jsonify({"items": [a.to_dict() for a in alerts], "total": len(alerts)})


@monitoring_bp.route("/alerts/<int:alert_id>", methods=["GET"])
def get_alert(alert_id):
    """Single alert plus the notification decision for the caller."""
    user = current_user()
    alert = alert_service.get_alert(alert_id, user=user)
    body = alert.to_dict()
    body["notification"] = notification_filter.should_notify(user.id, alert).to_dict()
    return jsonify(body)


@monitoring_bp.route("/alerts/<int:alert_id>/state", methods=["PUT"])
def transition_alert(alert_id):
    data = request.get_json(silent=True) or {}
    new_state = data.get("state")
    if not new_state:
        return api_error(E.VALIDATION_REQUIRED, "state is required")
    alert = alert_service.transition_alert(alert_id, new_state, user=current_user(), note=data.get("note"))
    return jsonify(alert.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  SWEEP
# ═══════════════════════════════════════════════════════════════════════════

@monitoring_bp.route("/sweep", methods=["POST"])
def run_sweep():
    """Re-evaluate all active projects, or a single one, against their thresholds."""
    data = request.get_json(silent=True) or {}
    user = current_user()
    check_capability(user, None, "sweep")

    project_id = data.get("project_id")
    if project_id is not None:
        try:
            project_id = int(project_id)
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_INVALID, "project_id must be an integer")
        if db.session.get(Project, project_id) is None:
            raise ProjectNotFound(project_id)

    summary = alert_service.sweep(project_id)
    logger.info("Manual sweep by user=%s project=%s: %s", user.id, project_id, summary)
    return jsonify(summary)
