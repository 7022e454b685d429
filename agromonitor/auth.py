"""
AgroMonitor
Request authentication middleware.

Provides:
    - Optional API key gate via X-API-Key header
    - Acting user resolution from the X-User-Id header into g.current_user
    - Content-Type enforcement for state-changing requests

Identity is established upstream (the surrounding application's login);
this service trusts X-User-Id once the API key gate has passed.

Configuration (env vars):
    API_KEYS          comma-separated list of valid API keys
    API_AUTH_ENABLED  "true" to require an API key (default: false)
"""

import logging
import os
from typing import Optional

from flask import current_app, g, jsonify, request

from agromonitor.models import db
from agromonitor.models.planning import User
from agromonitor.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_FALSEY = ("false", "0", "no", "off")


def _parse_api_keys() -> set[str]:
    raw = os.getenv("API_KEYS", "")
    return {k.strip() for k in raw.split(",") if k.strip()}


def _is_auth_enabled() -> bool:
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in _FALSEY
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "false")).lower() not in _FALSEY
    except RuntimeError:
        return False


def _get_api_key_from_request() -> Optional[str]:
    return request.headers.get("X-API-Key", "").strip() or None


def _check_content_type():
    """
    POST/PUT/PATCH/DELETE with a body must be application/json; HTML forms
    cannot send that content type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def _check_api_key():
    if not _is_auth_enabled():
        return None
    api_key = _get_api_key_from_request()
    if not api_key:
        return api_error(E.UNAUTHORIZED, "Authentication required. Provide X-API-Key header.")
    api_keys = _parse_api_keys()
    if not api_keys:
        logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
        return api_error(E.INTERNAL, "Server authentication not configured")
    if api_key not in api_keys:
        logger.warning("Invalid API key attempt: %s...", api_key[:8])
        return api_error(E.UNAUTHORIZED, "Invalid API key")
    return None


def _resolve_user():
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw:
        return api_error(E.UNAUTHORIZED, "X-User-Id header is required")
    try:
        user_id = int(raw)
    except ValueError:
        return api_error(E.UNAUTHORIZED, "X-User-Id must be an integer")
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        logger.warning("Unknown or inactive user id=%s", user_id)
        return api_error(E.UNAUTHORIZED, "Unknown user")
    g.current_user = user
    return None


def init_auth(app):
    """Install the authentication before_request hook for /api/v1 routes."""

    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith("/api/v1/health"):
            return None
        if request.method == "OPTIONS":
            return None

        return _check_content_type() or _check_api_key() or _resolve_user()

    logger.info("Auth middleware installed (api_key_enabled=%s)", _is_auth_enabled())
