"""
AgroMonitor
Notification Preferences & Scheduling Blueprint.

Provides:
    - Notification preferences of the acting user (lazy defaults on read)
    - Scheduled job management (list, trigger, toggle)
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from agromonitor.blueprints import current_user, register_error_handlers
from agromonitor.core.exceptions import NotFoundError
from agromonitor.services import notification_filter
from agromonitor.services.permission import check_capability
from agromonitor.services.scheduler_service import SchedulerService, get_registered_jobs
from agromonitor.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATION PREFERENCES
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notification-preferences", methods=["GET"])
def get_preferences():
    pref = notification_filter.get_or_create_preference(current_user().id)
    return jsonify(pref.to_dict())


@notification_bp.route("/notification-preferences", methods=["PUT"])
def update_preferences():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body with at least one field is required")
    pref = notification_filter.update_preference(current_user().id, data)
    return jsonify(pref.to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULED JOBS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/jobs", methods=["GET"])
def list_jobs():
    check_capability(current_user(), None, "view")
    SchedulerService.ensure_jobs_registered()
    return jsonify(SchedulerService.list_jobs())


@notification_bp.route("/scheduler/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    """Run a job now, outside its schedule."""
    user = current_user()
    check_capability(user, None, "sweep")
    if job_name not in get_registered_jobs():
        raise NotFoundError("ScheduledJob", job_name)
    SchedulerService.ensure_jobs_registered()
    logger.info("Job %s triggered manually by user=%s", job_name, user.id)
    return jsonify(SchedulerService.run_job(job_name))


@notification_bp.route("/scheduler/jobs/<job_name>", methods=["PUT"])
def toggle_job(job_name):
    check_capability(current_user(), None, "sweep")
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("enabled"), bool):
        return api_error(E.VALIDATION_REQUIRED, "enabled (true/false) is required")
    SchedulerService.ensure_jobs_registered()
    job = SchedulerService.toggle_job(job_name, data["enabled"])
    if job is None:
        raise NotFoundError("ScheduledJob", job_name)
    return jsonify(job)
