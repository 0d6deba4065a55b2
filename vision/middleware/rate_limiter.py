"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in vision/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from vision.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Credential endpoints: brute-force protection
AUTH_LIMIT = "20/minute"
# Public invite lookups: token guessing protection
INVITE_LIMIT = "30/minute"
# Upload-heavy routes
WRITE_LIMIT = "60/minute"
# Everything else that is read-mostly
READ_LIMIT = "300/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - auth:       20/minute
        - invites:    30/minute
        - documents:  60/minute
        - others:     300/minute
        - health:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("auth_bp")
    if bp:
        limiter.limit(AUTH_LIMIT)(bp)

    bp = app.blueprints.get("invite_bp")
    if bp:
        limiter.limit(INVITE_LIMIT)(bp)

    bp = app.blueprints.get("document_bp")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in ("organization", "folder", "community_pulse", "notification",
                    "task", "activity", "billing", "app_catalog", "search"):
        bp = app.blueprints.get(f"{bp_name}_bp")
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: auth: %s, invites: %s, documents: %s, default: %s",
        AUTH_LIMIT, INVITE_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
