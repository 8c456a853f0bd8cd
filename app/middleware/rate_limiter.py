"""
Rate limiting configuration.

The Limiter instance is created in app/__init__.py with no default limits;
this module applies per-blueprint limits.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
ADMIN_LIMIT = "30/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow endpoints:        60/minute
        - Deadline option admin:     30/minute
        - Health check:              exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("workflow")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("deadline_options")
    if bp:
        limiter.limit(ADMIN_LIMIT)(bp)

    health_view = app.view_functions.get("health")
    if health_view:
        limiter.exempt(health_view)

    app.logger.info("Rate limiter configured: workflow: %s, deadline options: %s",
                    WRITE_LIMIT, ADMIN_LIMIT)
