"""
Monitoring: Project Access Service

Role and ownership rules for project visibility, expressed as a pure
function of (user, project) so they stay independent of how records are
fetched.

    administrador : every capability on every project
    asesor        : every capability except the administrative sweep
    productor     : view / record / manage_alerts on projects they own

Usage:
    from agromonitor.services.permission import can_access, check_capability

    if can_access(user, project):
        ...
    check_capability(user, project, "manage_thresholds")   # raises AccessDenied
"""

from agromonitor.core.exceptions import AccessDenied

CAPABILITY_MATRIX = {
    "administrador": frozenset({"view", "record", "manage_alerts", "manage_thresholds", "sweep"}),
    "asesor": frozenset({"view", "record", "manage_alerts", "manage_thresholds"}),
    "productor": frozenset({"view", "record", "manage_alerts"}),
}

# Roles whose capabilities do not depend on project ownership.
GLOBAL_ROLES = {"administrador", "asesor"}


def project_capabilities(user, project) -> frozenset:
    """Return the capability set ``user`` holds on ``project``.

    ``project`` may be None for global (non-project) operations such as
    configuring a global threshold; only global roles hold capabilities there.
    """
    if user is None or not getattr(user, "is_active", True):
        return frozenset()
    caps = CAPABILITY_MATRIX.get(user.role, frozenset())
    if user.role in GLOBAL_ROLES:
        return caps
    if project is not None and project.owner_id == user.id:
        return caps
    return frozenset()


def can_access(user, project) -> bool:
    """True if the user may see the project at all."""
    return "view" in project_capabilities(user, project)


def check_capability(user, project, capability: str) -> None:
    """Raise AccessDenied unless ``user`` holds ``capability`` on ``project``."""
    if capability not in project_capabilities(user, project):
        raise AccessDenied(capability, getattr(user, "id", None))


def accessible_project_filter(user, project_id_column):
    """SQL criterion restricting ``project_id_column`` to projects the user may view.

    Returns None when no restriction applies (global roles).
    """
    from sqlalchemy import false, select

    from agromonitor.models.planning import Project

    if user is None or not getattr(user, "is_active", True):
        return false()
    if user.role in GLOBAL_ROLES:
        return None
    if user.role not in CAPABILITY_MATRIX:
        return false()
    owned = select(Project.id).where(Project.owner_id == user.id)
    return project_id_column.in_(owned)
