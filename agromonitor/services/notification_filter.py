"""
Monitoring: Notification Filter

Decides whether (and through which channel) a user should hear about an
alert. Delivery itself is somebody else's job; this module only answers
the question.

Rules:
  - Unsubscribed alert kind: no platform, no email.
  - digest_frequency 'nunca' suppresses email; platform visibility does not
    depend on the frequency.
  - 'diario' / 'semanal': email-worthy alerts wait for the next digest.
  - Preferences are created on first read from DEFAULT_PREFERENCE.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from agromonitor.core.exceptions import PreferenceValidationError
from agromonitor.models import db
from agromonitor.models.monitoring import THRESHOLD_KINDS
from agromonitor.models.scheduling import DEFAULT_PREFERENCE, DIGEST_FREQUENCIES, NotificationPreference
from agromonitor.utils.helpers import parse_time_input

logger = logging.getLogger(__name__)

DIGEST_WEEKDAY = 0  # Monday


@dataclass(frozen=True)
class NotificationDecision:
    platform: bool
    email: bool
    defer_until_digest: bool

    def to_dict(self):
        return {
            "platform": self.platform,
            "email": self.email,
            "defer_until_digest": self.defer_until_digest,
        }


def _find(user_id) -> NotificationPreference | None:
    return db.session.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    ).scalar_one_or_none()


def get_or_create_preference(user_id: int) -> NotificationPreference:
    """Return the user's preference row, creating it with the defaults once."""
    pref = _find(user_id)
    if pref is not None:
        return pref

    pref = NotificationPreference(
        user_id=user_id,
        platform_alerts=DEFAULT_PREFERENCE["platform_alerts"],
        email_alerts=DEFAULT_PREFERENCE["email_alerts"],
        digest_frequency=DEFAULT_PREFERENCE["digest_frequency"],
        preferred_time=DEFAULT_PREFERENCE["preferred_time"],
    )
    pref.subscribed_kinds = DEFAULT_PREFERENCE["alert_kinds"]
    db.session.add(pref)
    try:
        db.session.commit()
    except IntegrityError:
        # Another request created it first.
        db.session.rollback()
        return _find(user_id)
    logger.info("Default notification preference created for user=%s", user_id)
    return pref


def update_preference(user_id: int, data: dict) -> NotificationPreference:
    """
    Update any subset of platform_alerts, email_alerts, digest_frequency,
    alert_kinds and preferred_time.

    Raises:
        PreferenceValidationError: with one entry per offending field.
    """
    errors = {}
    changes = {}

    for flag in ("platform_alerts", "email_alerts"):
        if flag in data:
            if not isinstance(data[flag], bool):
                errors[flag] = "must be true or false"
            else:
                changes[flag] = data[flag]

    if "digest_frequency" in data:
        if data["digest_frequency"] not in DIGEST_FREQUENCIES:
            errors["digest_frequency"] = f"must be one of: {', '.join(DIGEST_FREQUENCIES)}"
        else:
            changes["digest_frequency"] = data["digest_frequency"]

    if "alert_kinds" in data:
        kinds = data["alert_kinds"]
        if not isinstance(kinds, (list, tuple, set, frozenset)):
            errors["alert_kinds"] = "must be a list"
        else:
            unknown = sorted(str(k) for k in kinds if k not in THRESHOLD_KINDS)
            if unknown:
                errors["alert_kinds"] = f"unknown kind(s): {', '.join(unknown)}"
            else:
                changes["subscribed_kinds"] = frozenset(kinds)

    if "preferred_time" in data:
        try:
            changes["preferred_time"] = parse_time_input(data["preferred_time"])
        except ValueError as exc:
            errors["preferred_time"] = str(exc)

    if errors:
        raise PreferenceValidationError("Invalid notification preferences", details=errors)

    pref = get_or_create_preference(user_id)
    for field, value in changes.items():
        setattr(pref, field, value)
    db.session.commit()
    logger.info("Notification preference updated user=%s fields=%s", user_id, sorted(changes))
    return pref


def decide(pref: NotificationPreference, alert) -> NotificationDecision:
    """Pure decision for one preference and one alert."""
    if alert.kind not in pref.subscribed_kinds:
        return NotificationDecision(platform=False, email=False, defer_until_digest=False)

    email = bool(pref.email_alerts) and pref.digest_frequency != "nunca"
    return NotificationDecision(
        platform=bool(pref.platform_alerts),
        email=email,
        defer_until_digest=email and pref.digest_frequency in ("diario", "semanal"),
    )


def should_notify(user_id: int, alert) -> NotificationDecision:
    return decide(get_or_create_preference(user_id), alert)


def filter_visible(user_id: int, alerts) -> list:
    """Alerts the user wants to see on the platform."""
    pref = get_or_create_preference(user_id)
    return [a for a in alerts if decide(pref, a).platform]


def next_digest_at(pref: NotificationPreference, now: datetime) -> datetime | None:
    """Next time a digest is due for ``pref``, strictly after ``now``.

    Daily digests go out every day at the preferred time, weekly ones on
    Mondays. Returns None for 'nunca'.
    """
    if pref.digest_frequency == "nunca":
        return None
    at = pref.preferred_time or DEFAULT_PREFERENCE["preferred_time"]
    candidate = now.replace(hour=at.hour, minute=at.minute, second=at.second, microsecond=0)

    if pref.digest_frequency == "diario":
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    candidate += timedelta(days=(DIGEST_WEEKDAY - candidate.weekday()) % 7)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate
