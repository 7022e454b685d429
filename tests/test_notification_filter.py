"""
Tests: Notification Filter.

Covers:
    1. Lazy default preference (created once)
    2. Decision table (subscription, frequency, channels)
    3. Preference updates and validation
    4. Digest scheduling
    5. Platform visibility filter
"""

from datetime import datetime, time

import pytest

from agromonitor.core.exceptions import PreferenceValidationError
from agromonitor.models.monitoring import Alert
from agromonitor.models.scheduling import NotificationPreference
from agromonitor.services import notification_filter


def _alert(kind="exhaustion"):
    return Alert(project_id=1, kind=kind, severity="media", message="m", state="activa")


# ═══════════════════════════════════════════════════════════════════════════
#  1. Defaults
# ═══════════════════════════════════════════════════════════════════════════

class TestDefaults:

    def test_created_on_first_read(self, productor):
        assert NotificationPreference.query.count() == 0
        pref = notification_filter.get_or_create_preference(productor.id)

        assert pref.platform_alerts is True
        assert pref.email_alerts is False
        assert pref.digest_frequency == "semanal"
        assert pref.subscribed_kinds == frozenset({"exhaustion", "cost_overrun", "delay"})
        assert pref.preferred_time == time(9, 0, 0)

    def test_persisted_exactly_once(self, productor):
        first = notification_filter.get_or_create_preference(productor.id)
        second = notification_filter.get_or_create_preference(productor.id)
        notification_filter.should_notify(productor.id, _alert())

        assert first.id == second.id
        assert NotificationPreference.query.filter_by(user_id=productor.id).count() == 1

    def test_to_dict_serialises_kinds_and_time(self, productor):
        body = notification_filter.get_or_create_preference(productor.id).to_dict()
        assert body["alert_kinds"] == ["cost_overrun", "delay", "exhaustion"]
        assert body["preferred_time"] == "09:00:00"


# ═══════════════════════════════════════════════════════════════════════════
#  2. Decisions
# ═══════════════════════════════════════════════════════════════════════════

class TestDecision:

    def test_defaults_show_on_platform_without_email(self, productor):
        decision = notification_filter.should_notify(productor.id, _alert("exhaustion"))
        assert decision == notification_filter.NotificationDecision(
            platform=True, email=False, defer_until_digest=False,
        )

    def test_unsubscribed_kind_is_silent(self, productor):
        decision = notification_filter.should_notify(productor.id, _alert("reassignment"))
        assert decision.platform is False
        assert decision.email is False

    @pytest.mark.parametrize("frequency", ["diario", "semanal"])
    def test_email_deferred_to_digest(self, productor, frequency):
        notification_filter.update_preference(
            productor.id, {"email_alerts": True, "digest_frequency": frequency},
        )
        decision = notification_filter.should_notify(productor.id, _alert())
        assert decision.email is True
        assert decision.defer_until_digest is True

    def test_nunca_suppresses_email_but_not_platform(self, productor):
        notification_filter.update_preference(
            productor.id, {"email_alerts": True, "digest_frequency": "nunca"},
        )
        decision = notification_filter.should_notify(productor.id, _alert())
        assert decision.platform is True
        assert decision.email is False
        assert decision.defer_until_digest is False

    def test_platform_flag_off(self, productor):
        notification_filter.update_preference(productor.id, {"platform_alerts": False})
        assert notification_filter.should_notify(productor.id, _alert()).platform is False


# ═══════════════════════════════════════════════════════════════════════════
#  3. Updates
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdatePreference:

    def test_partial_update(self, productor):
        pref = notification_filter.update_preference(
            productor.id, {"alert_kinds": ["delay", "reassignment"], "preferred_time": "18:30:00"},
        )
        assert pref.subscribed_kinds == frozenset({"delay", "reassignment"})
        assert pref.preferred_time == time(18, 30, 0)
        assert pref.digest_frequency == "semanal"

    def test_empty_kind_list_unsubscribes_everything(self, productor):
        notification_filter.update_preference(productor.id, {"alert_kinds": []})
        assert notification_filter.should_notify(productor.id, _alert()).platform is False

    @pytest.mark.parametrize("data, field", [
        ({"digest_frequency": "mensual"}, "digest_frequency"),
        ({"alert_kinds": ["exhaustion", "flood"]}, "alert_kinds"),
        ({"alert_kinds": "exhaustion"}, "alert_kinds"),
        ({"preferred_time": "9:00"}, "preferred_time"),
        ({"preferred_time": "25:00:00"}, "preferred_time"),
        ({"preferred_time": "09:00:00 "}, None),
        ({"email_alerts": "yes"}, "email_alerts"),
    ])
    def test_validation(self, productor, data, field):
        if field is None:
            notification_filter.update_preference(productor.id, data)
            return
        with pytest.raises(PreferenceValidationError) as exc_info:
            notification_filter.update_preference(productor.id, data)
        assert field in exc_info.value.details

    def test_invalid_update_changes_nothing(self, productor):
        notification_filter.get_or_create_preference(productor.id)
        with pytest.raises(PreferenceValidationError):
            notification_filter.update_preference(
                productor.id, {"digest_frequency": "diario", "preferred_time": "bad"},
            )
        assert notification_filter.get_or_create_preference(productor.id).digest_frequency == "semanal"


# ═══════════════════════════════════════════════════════════════════════════
#  4. Digest schedule
# ═══════════════════════════════════════════════════════════════════════════

class TestNextDigest:

    def _pref(self, frequency, at=time(9, 0, 0)):
        return NotificationPreference(digest_frequency=frequency, preferred_time=at)

    def test_nunca(self):
        assert notification_filter.next_digest_at(self._pref("nunca"), datetime(2026, 3, 4, 8, 0)) is None

    def test_daily_later_today(self):
        assert notification_filter.next_digest_at(
            self._pref("diario"), datetime(2026, 3, 4, 8, 0),
        ) == datetime(2026, 3, 4, 9, 0)

    def test_daily_tomorrow_once_passed(self):
        assert notification_filter.next_digest_at(
            self._pref("diario"), datetime(2026, 3, 4, 9, 0),
        ) == datetime(2026, 3, 5, 9, 0)

    def test_weekly_next_monday(self):
        # 2026-03-04 is a Wednesday
        assert notification_filter.next_digest_at(
            self._pref("semanal", time(7, 30)), datetime(2026, 3, 4, 12, 0),
        ) == datetime(2026, 3, 9, 7, 30)

    def test_weekly_on_monday_before_and_after(self):
        pref = self._pref("semanal")
        assert notification_filter.next_digest_at(pref, datetime(2026, 3, 9, 8, 0)) == datetime(2026, 3, 9, 9, 0)
        assert notification_filter.next_digest_at(pref, datetime(2026, 3, 9, 10, 0)) == datetime(2026, 3, 16, 9, 0)


# ═══════════════════════════════════════════════════════════════════════════
#  5. Visibility filter
# ═══════════════════════════════════════════════════════════════════════════

class TestFilterVisible:

    def test_keeps_subscribed_kinds(self, productor):
        alerts = [_alert("exhaustion"), _alert("reassignment"), _alert("delay")]
        visible = notification_filter.filter_visible(productor.id, alerts)
        assert [a.kind for a in visible] == ["exhaustion", "delay"]
