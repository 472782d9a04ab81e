"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in migas_audit/__init__.py with no default
limits; this module applies granular limits per route category.  The
license validation endpoint carries its own, tighter limit
(LICENSE_VALIDATE_RATE_LIMIT) declared on the route.

Usage:
    from migas_audit.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

AUDIT_LIMIT = "120/minute"
LICENSE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Audit endpoints:    120/minute
        - License endpoints:   60/minute
        - Health check:       exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("audit")
    if bp:
        limiter.limit(AUDIT_LIMIT)(bp)

    bp = app.blueprints.get("license")
    if bp:
        limiter.limit(LICENSE_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: audit: %s, license: %s, validate: %s",
        AUDIT_LIMIT, LICENSE_LIMIT, app.config.get("LICENSE_VALIDATE_RATE_LIMIT"),
    )
