"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against the base
classes once and get consistent HTTP status codes everywhere.

    NotFoundError          -> 404
    PermissionDeniedError  -> 403
    ValidationError        -> 422
    ConflictError          -> 409

Usage:
    from agromonitor.core.exceptions import ResourceNotFound, OverconsumptionError

    raise ResourceNotFound(resource_id=42)
    raise OverconsumptionError(prior_total, quantity, planned_quantity)
"""

from decimal import Decimal


class NotFoundError(Exception):
    """Raised when a requested record does not exist or is not visible to the caller.

    Missing records and records the caller may not access look the same: a
    403 would confirm the record exists, a 404 does not.

    Args:
        resource: Human-readable entity name (e.g. "PlannedResource", "Alert").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class PermissionDeniedError(Exception):
    """Raised when the caller lacks the capability an operation requires.

    Args:
        capability: The capability that was missing (e.g. "manage_thresholds").
        user_id: Acting user, for logs.
    """

    def __init__(self, capability: str, user_id: int | None = None) -> None:
        self.capability = capability
        self.user_id = user_id
        super().__init__(f"User {user_id} lacks capability '{capability}'")


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown. Keys are field names; values are
                 error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with the current state of a record.

    Maps to HTTP 409.
    """


# ── Monitoring domain ────────────────────────────────────────────────────────


class ResourceNotFound(NotFoundError):
    def __init__(self, resource_id: int | None = None) -> None:
        super().__init__(resource="PlannedResource", resource_id=resource_id)


class ProjectNotFound(NotFoundError):
    def __init__(self, project_id: int | None = None) -> None:
        super().__init__(resource="Project", resource_id=project_id)


class AlertNotFound(NotFoundError):
    def __init__(self, alert_id: int | None = None) -> None:
        super().__init__(resource="Alert", resource_id=alert_id)


class AccessDenied(PermissionDeniedError):
    pass


class OverconsumptionError(ValidationError):
    """Raised when a consumption would push the total past the planned quantity.

    Args:
        prior_total: Quantity already consumed before this attempt.
        attempted: Quantity the caller tried to record.
        limit: Planned quantity of the resource.
    """

    def __init__(self, prior_total: Decimal, attempted: Decimal, limit: Decimal) -> None:
        self.prior_total = prior_total
        self.attempted = attempted
        self.limit = limit
        new_total = prior_total + attempted
        super().__init__(
            f"Total consumption ({new_total}) would exceed the planned quantity ({limit})",
            details={
                "quantity": f"at most {max(limit - prior_total, Decimal(0))} can still be recorded",
                "prior_total": str(prior_total),
                "attempted": str(attempted),
                "limit": str(limit),
            },
        )


class ConsumptionValidationError(ValidationError):
    pass


class ThresholdValidationError(ValidationError):
    pass


class PreferenceValidationError(ValidationError):
    pass


class InvalidStateTransition(ConflictError):
    """Raised when an alert transition is not allowed from its current state."""

    def __init__(self, alert_id: int, current: str, requested: str) -> None:
        self.alert_id = alert_id
        self.current_state = current
        self.requested_state = requested
        super().__init__(f"Cannot move alert {alert_id} from '{current}' to '{requested}'")


class AlertStateConflict(ConflictError):
    """Raised when an alert changed state between read and update."""

    def __init__(self, alert_id: int, expected: str) -> None:
        self.alert_id = alert_id
        self.expected_state = expected
        super().__init__(f"Alert {alert_id} is no longer in state '{expected}'; reload and retry")
