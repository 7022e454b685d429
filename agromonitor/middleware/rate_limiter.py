"""
Rate limiting configuration.

The Limiter instance is created in agromonitor/__init__.py with no default
limits; this module applies per-blueprint limits.

Usage:
    from agromonitor.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints (per remote IP):

        - monitoring:     60/minute (consumption writes, alert transitions)
        - notification:   200/minute
        - health:         exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("monitoring")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("notification")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured: monitoring=%s notification=%s",
                WRITE_LIMIT, READ_LIMIT)
