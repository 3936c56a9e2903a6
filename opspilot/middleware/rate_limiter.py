"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in opspilot/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from opspilot.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

KPI_READ_LIMIT = "200/minute"
KPI_REFRESH_LIMIT = "10/minute"
SCHEDULER_LIMIT = "30/minute"


def rate_limit_key():
    """Rate limit key: organization if the caller has one, else remote IP."""
    org_id = getattr(g, "jwt_organization_id", None)
    if org_id:
        return f"org:{org_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per organization, falling back to remote IP):
        - KPI reads:       200/minute
        - KPI refresh:     10/minute  (flushes every cached dashboard)
        - Scheduler admin: 30/minute
        - Health check:    exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("kpi")
    if bp:
        limiter.limit(KPI_READ_LIMIT, key_func=rate_limit_key)(bp)

    refresh_view = app.view_functions.get("kpi.refresh_kpi_cache")
    if refresh_view:
        limiter.limit(KPI_REFRESH_LIMIT, key_func=rate_limit_key)(refresh_view)

    bp = app.blueprints.get("scheduler")
    if bp:
        limiter.limit(SCHEDULER_LIMIT)(bp)

    # Health checks are not rate limited
    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — KPI read: %s, refresh: %s, scheduler: %s",
        KPI_READ_LIMIT, KPI_REFRESH_LIMIT, SCHEDULER_LIMIT,
    )
