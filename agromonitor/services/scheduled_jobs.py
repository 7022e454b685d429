"""
AgroMonitor
Scheduled Jobs.

Jobs:
    - threshold_sweep: re-evaluates every active project against its thresholds
    - alert_digest: counts the open alerts waiting for each user's email digest
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select

from agromonitor.models import db
from agromonitor.models.monitoring import OPEN_ALERT_STATES, Alert
from agromonitor.models.planning import User
from agromonitor.models.scheduling import NotificationPreference
from agromonitor.services import alert_service, notification_filter
from agromonitor.services.permission import accessible_project_filter
from agromonitor.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Threshold Sweep
# ═══════════════════════════════════════════════════════════════════════════

@register_job("threshold_sweep")
def run_threshold_sweep(app) -> dict[str, Any]:
    """Re-evaluate all active projects for time-based and missed thresholds."""
    return alert_service.sweep()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Alert Digest
# ═══════════════════════════════════════════════════════════════════════════

@register_job("alert_digest")
def build_alert_digest(app) -> dict[str, Any]:
    """Count open alerts deferred to each user's digest; delivery is external."""
    results = {"users_checked": 0, "users_with_digest": 0, "alerts_queued": 0}
    now = datetime.now()

    prefs = db.session.execute(
        select(NotificationPreference).where(
            NotificationPreference.email_alerts.is_(True),
            NotificationPreference.digest_frequency != "nunca",
        )
    ).scalars().all()

    for pref in prefs:
        results["users_checked"] += 1
        user = db.session.get(User, pref.user_id)
        if user is None or not user.is_active:
            continue

        q = select(Alert).where(Alert.state.in_(OPEN_ALERT_STATES))
        restriction = accessible_project_filter(user, Alert.project_id)
        if restriction is not None:
            q = q.where(restriction)
        queued = [
            a for a in db.session.execute(q).scalars().all()
            if notification_filter.decide(pref, a).defer_until_digest
        ]
        if queued:
            results["users_with_digest"] += 1
            results["alerts_queued"] += len(queued)
            logger.info(
                "Digest for user=%s: %d alert(s), next due %s",
                user.id, len(queued), notification_filter.next_digest_at(pref, now),
            )

    return results
