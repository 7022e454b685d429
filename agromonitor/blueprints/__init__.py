"""
AgroMonitor
Blueprint helpers shared by the API blueprints.
"""

import logging

from flask import g, request
from werkzeug.exceptions import HTTPException

from agromonitor.core.exceptions import (
    ConflictError,
    NotFoundError,
    OverconsumptionError,
    PermissionDeniedError,
    ValidationError,
)
from agromonitor.models import db
from agromonitor.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_user():
    """Acting user resolved by the auth middleware."""
    return g.current_user


def int_arg(name):
    """Optional integer query parameter; malformed values raise ValidationError."""
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Invalid query parameter '{name}'", details={name: "must be an integer"}) from None


def register_error_handlers(bp):
    """Map the service exception hierarchy to JSON responses on ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error):
        logger.warning("Access denied: %s path=%s", error, request.path)
        return api_error(E.FORBIDDEN, "Insufficient permissions", details={"capability": error.capability})

    @bp.errorhandler(OverconsumptionError)
    def _handle_overconsumption(error):
        return api_error(E.OVERCONSUMPTION, str(error), details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
