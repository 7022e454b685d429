"""
Shared pytest fixtures for the AgroMonitor test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_project / make_resource / make_threshold: ORM factories
    - admin, asesor, productor, outsider: users of each role
    - project, resource: a productor-owned project with one planned resource
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from agromonitor import create_app
from agromonitor.models import db as _db
from agromonitor.models.monitoring import Threshold
from agromonitor.models.planning import PlannedResource, Project, ProjectPhase, ResourceType, User


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(role="productor", *, name=None, is_active=True):
        counter["n"] += 1
        user = User(
            email=f"{role}{counter['n']}@agro.test",
            full_name=name or f"{role.title()} {counter['n']}",
            role=role,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_project():
    def _make(owner=None, *, name="Maize 2026", status="en_progreso"):
        project = Project(name=name, owner_id=owner.id if owner else None, status=status)
        _db.session.add(project)
        _db.session.flush()
        _db.session.add(ProjectPhase(project_id=project.id, name="Siembra"))
        _db.session.commit()
        return project

    return _make


@pytest.fixture()
def make_resource():
    def _make(project, *, resource_type=None, planned_quantity="100", unit_cost="2.00",
              end_date=None, type_name=None):
        if resource_type is None:
            resource_type = ResourceType(
                name=type_name or f"Fertilizer {ResourceType.query.count() + 1}", unit="kg",
            )
            _db.session.add(resource_type)
            _db.session.flush()
        phase = project.phases.first()
        resource = PlannedResource(
            phase_id=phase.id,
            resource_type_id=resource_type.id,
            planned_quantity=Decimal(planned_quantity),
            unit_cost=Decimal(unit_cost),
            end_date=end_date if end_date is not None else date.today() + timedelta(days=60),
        )
        _db.session.add(resource)
        _db.session.commit()
        return resource

    return _make


@pytest.fixture()
def make_threshold():
    def _make(kind="exhaustion", *, resource_type_id=None, project_id=None, percentage=None,
              day_count=None, min_quantity=None, severity=None, active=True):
        threshold = Threshold(
            kind=kind,
            resource_type_id=resource_type_id,
            project_id=project_id,
            percentage=Decimal(str(percentage)) if percentage is not None else None,
            day_count=day_count,
            min_quantity=Decimal(str(min_quantity)) if min_quantity is not None else None,
            severity=severity,
            active=active,
        )
        _db.session.add(threshold)
        _db.session.commit()
        return threshold

    return _make


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def admin(make_user):
    return make_user("administrador")


@pytest.fixture()
def asesor(make_user):
    return make_user("asesor")


@pytest.fixture()
def productor(make_user):
    return make_user("productor")


@pytest.fixture()
def outsider(make_user):
    """A productor who owns nothing."""
    return make_user("productor")


@pytest.fixture()
def project(make_project, productor):
    return make_project(productor)


@pytest.fixture()
def resource(make_resource, project):
    """100 kg planned at 2.00 per kg, ending 60 days from today."""
    return make_resource(project)
