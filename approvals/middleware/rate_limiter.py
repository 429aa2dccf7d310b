"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in approvals/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from approvals.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
DECIDE_LIMIT = "120/minute"


def actor_or_remote_addr():
    """Rate limit key: authenticated actor when known, else remote IP."""
    actor_id = getattr(g, "actor_id", None)
    if actor_id:
        return f"actor:{actor_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Process/step configuration:  60/minute per actor
        - Approval submit/decide:     120/minute per actor
        - Health check:               exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("processes")
    if bp:
        limiter.limit(WRITE_LIMIT, key_func=actor_or_remote_addr,
                      methods=["POST", "PUT", "DELETE"])(bp)

    bp = app.blueprints.get("approvals")
    if bp:
        limiter.limit(DECIDE_LIMIT, key_func=actor_or_remote_addr,
                      methods=["POST"])(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — configuration writes: %s, approvals: %s",
        WRITE_LIMIT, DECIDE_LIMIT,
    )
