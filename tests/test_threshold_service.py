"""
Tests: Threshold configuration and scope resolution.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from agromonitor.core.exceptions import AccessDenied, NotFoundError, ProjectNotFound, ThresholdValidationError
from agromonitor.models import db
from agromonitor.models.monitoring import Threshold
from agromonitor.services import threshold_service


# ═══════════════════════════════════════════════════════════════════════════
#  Scope precedence
# ═══════════════════════════════════════════════════════════════════════════

class TestScopePrecedence:

    def test_order(self):
        assert threshold_service.scope_precedence(3, 7) == ((3, 7), (3, None), (None, 7), (None, None))

    def test_most_specific_wins(self, resource, make_threshold):
        rt, pid = resource.resource_type_id, resource.project_id
        make_threshold("exhaustion", percentage=90)
        make_threshold("exhaustion", project_id=pid, percentage=80)
        make_threshold("exhaustion", resource_type_id=rt, percentage=70)
        specific = make_threshold("exhaustion", resource_type_id=rt, project_id=pid, percentage=60)

        assert threshold_service.resolve_thresholds(rt, pid)["exhaustion"].id == specific.id

    @pytest.mark.parametrize("present, expected", [
        ({"global"}, "global"),
        ({"global", "project"}, "project"),
        ({"global", "project", "type"}, "type"),
        ({"project", "type"}, "type"),
    ])
    def test_fallback_chain(self, resource, make_threshold, present, expected):
        rt, pid = resource.resource_type_id, resource.project_id
        scopes = {"global": (None, None), "project": (None, pid), "type": (rt, None)}
        made = {}
        for name in present:
            type_id, project_id = scopes[name]
            made[name] = make_threshold("delay", resource_type_id=type_id, project_id=project_id, day_count=5)
        assert threshold_service.resolve_thresholds(rt, pid)["delay"].id == made[expected].id

    def test_other_projects_threshold_does_not_apply(self, resource, make_project, productor, make_threshold):
        other = make_project(productor, name="Other")
        make_threshold("exhaustion", project_id=other.id, percentage=10)
        assert threshold_service.resolve_thresholds(resource.resource_type_id, resource.project_id) == {}

    def test_resolves_each_kind_independently(self, resource, make_threshold):
        rt, pid = resource.resource_type_id, resource.project_id
        make_threshold("exhaustion", percentage=90)
        make_threshold("delay", resource_type_id=rt, day_count=3)
        resolved = threshold_service.resolve_thresholds(rt, pid)
        assert set(resolved) == {"exhaustion", "delay"}


# ═══════════════════════════════════════════════════════════════════════════
#  Upsert
# ═══════════════════════════════════════════════════════════════════════════

class TestUpsert:

    def test_creates_then_updates_same_scope(self, resource, asesor):
        data = {"kind": "exhaustion", "project_id": resource.project_id, "percentage": 70}
        first, created = threshold_service.upsert_threshold(data, user=asesor)
        assert created is True

        second, created = threshold_service.upsert_threshold({**data, "percentage": "85.5"}, user=asesor)
        assert created is False
        assert second["id"] == first["id"]
        assert Decimal(second["percentage"]) == Decimal("85.5")
        assert Threshold.query.filter_by(active=True).count() == 1

    def test_different_scopes_are_separate_rows(self, resource, admin):
        threshold_service.upsert_threshold({"kind": "delay", "day_count": 3}, user=admin)
        threshold_service.upsert_threshold(
            {"kind": "delay", "day_count": 5, "project_id": resource.project_id}, user=admin,
        )
        threshold_service.upsert_threshold(
            {"kind": "delay", "day_count": 7, "resource_type_id": resource.resource_type_id}, user=admin,
        )
        assert Threshold.query.count() == 3

    def test_concurrent_insert_becomes_update(self, resource, asesor, make_threshold):
        existing = make_threshold("exhaustion", project_id=resource.project_id, percentage=70)
        real_find = threshold_service._find_active
        calls = []

        def stale_first_read(*args):
            # First read misses the row another request just committed.
            calls.append(args)
            return None if len(calls) == 1 else real_find(*args)

        with patch("agromonitor.services.threshold_service._find_active", side_effect=stale_first_read):
            result, created = threshold_service.upsert_threshold(
                {"kind": "exhaustion", "project_id": resource.project_id, "percentage": 90}, user=asesor,
            )

        assert created is False
        assert result["id"] == existing.id
        assert Decimal(result["percentage"]) == Decimal("90")
        assert Threshold.query.filter_by(active=True, kind="exhaustion").count() == 1

    def test_duplicate_active_wildcard_scope_rejected(self, make_threshold):
        make_threshold("delay", day_count=3)
        with pytest.raises(IntegrityError):
            make_threshold("delay", day_count=5)
        db.session.rollback()

        make_threshold("delay", day_count=5, active=False)
        assert Threshold.query.filter_by(kind="delay").count() == 2

    def test_productor_cannot_configure(self, resource, productor):
        with pytest.raises(AccessDenied):
            threshold_service.upsert_threshold(
                {"kind": "exhaustion", "project_id": resource.project_id, "percentage": 50}, user=productor,
            )

    def test_global_threshold_needs_global_role(self, productor, asesor):
        with pytest.raises(AccessDenied):
            threshold_service.upsert_threshold({"kind": "exhaustion", "percentage": 50}, user=productor)
        _, created = threshold_service.upsert_threshold({"kind": "exhaustion", "percentage": 50}, user=asesor)
        assert created

    def test_unknown_project(self, admin):
        with pytest.raises(ProjectNotFound):
            threshold_service.upsert_threshold({"kind": "exhaustion", "percentage": 5, "project_id": 999}, user=admin)

    def test_unknown_resource_type(self, admin):
        with pytest.raises(NotFoundError):
            threshold_service.upsert_threshold(
                {"kind": "exhaustion", "percentage": 5, "resource_type_id": 999}, user=admin,
            )

    @pytest.mark.parametrize("data, field", [
        ({"kind": "explosion", "percentage": 5}, "kind"),
        ({"kind": "exhaustion", "percentage": 101}, "percentage"),
        ({"kind": "exhaustion", "percentage": -1}, "percentage"),
        ({"kind": "exhaustion", "percentage": "lots"}, "percentage"),
        ({"kind": "exhaustion"}, "percentage"),
        ({"kind": "cost_overrun", "min_quantity": 3}, "percentage"),
        ({"kind": "delay", "day_count": -1}, "day_count"),
        ({"kind": "delay", "day_count": 2.5}, "day_count"),
        ({"kind": "delay"}, "day_count"),
        ({"kind": "reassignment", "day_count": "x"}, "day_count"),
        ({"kind": "exhaustion", "min_quantity": -2}, "min_quantity"),
        ({"kind": "exhaustion", "percentage": 5, "severity": "enorme"}, "severity"),
        ({"kind": "exhaustion", "percentage": 5, "project_id": "abc"}, "project_id"),
    ])
    def test_validation(self, admin, data, field):
        with pytest.raises(ThresholdValidationError) as exc_info:
            threshold_service.upsert_threshold(data, user=admin)
        assert field in exc_info.value.details

    def test_boundaries_accepted(self, admin):
        threshold_service.upsert_threshold({"kind": "exhaustion", "percentage": 0}, user=admin)
        threshold_service.upsert_threshold({"kind": "cost_overrun", "percentage": 100}, user=admin)
        threshold_service.upsert_threshold({"kind": "delay", "day_count": 0}, user=admin)
        assert Threshold.query.count() == 3


# ═══════════════════════════════════════════════════════════════════════════
#  Deactivate & list
# ═══════════════════════════════════════════════════════════════════════════

class TestDeactivateAndList:

    def test_deactivate_stops_resolution(self, resource, admin, make_threshold):
        t = make_threshold("exhaustion", percentage=50)
        result = threshold_service.deactivate_threshold(t.id, user=admin)
        assert result["active"] is False
        assert threshold_service.resolve_thresholds(resource.resource_type_id, resource.project_id) == {}

    def test_deactivate_twice_is_not_found(self, admin, make_threshold):
        t = make_threshold("exhaustion", percentage=50)
        threshold_service.deactivate_threshold(t.id, user=admin)
        with pytest.raises(NotFoundError):
            threshold_service.deactivate_threshold(t.id, user=admin)

    def test_upsert_after_deactivate_creates_new_row(self, admin, make_threshold):
        t = make_threshold("exhaustion", percentage=50)
        threshold_service.deactivate_threshold(t.id, user=admin)
        result, created = threshold_service.upsert_threshold({"kind": "exhaustion", "percentage": 60}, user=admin)
        assert created
        assert result["id"] != t.id

    def test_list_for_productor_hides_other_projects(
        self, resource, make_project, outsider, productor, make_threshold,
    ):
        foreign = make_project(outsider, name="Foreign")
        make_threshold("exhaustion", percentage=50)
        own = make_threshold("delay", project_id=resource.project_id, day_count=4)
        make_threshold("delay", project_id=foreign.id, day_count=4)

        items = threshold_service.list_thresholds(user=productor)
        ids = {i["id"] for i in items}
        assert own.id in ids
        assert len(items) == 2

    def test_list_filtered_by_project_keeps_wildcards(self, resource, admin, make_project, productor, make_threshold):
        other = make_project(productor, name="Other")
        make_threshold("exhaustion", percentage=50)
        make_threshold("delay", project_id=resource.project_id, day_count=4)
        make_threshold("delay", project_id=other.id, day_count=4)

        items = threshold_service.list_thresholds(user=admin, project_id=resource.project_id)
        assert sorted((i["project_id"] is None) for i in items) == [False, True]
