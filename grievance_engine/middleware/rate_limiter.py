"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in grievance_engine/__init__.py with no default limits; this
module applies limits per route category, keyed by organization when an
actor is known and by remote address otherwise.

Usage:
    from grievance_engine.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

from grievance_engine.middleware.actor_context import actor_from_request

logger = logging.getLogger(__name__)

LIFECYCLE_LIMIT = "120/minute"


def rate_limit_key():
    """Organization id from the forwarded identity headers, else remote IP.

    Runs before the actor middleware, so the headers are read directly.
    """
    actor = actor_from_request()
    if actor is not None:
        return f"org:{actor.organization_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per organization):
        - Guidance endpoints:  GUIDANCE_RATE_LIMIT (LLM calls are expensive)
        - Lifecycle endpoints: 120/minute

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    guidance_limit = app.config.get("GUIDANCE_RATE_LIMIT", "30 per minute")
    bp = app.blueprints.get("guidance")
    if bp:
        limiter.limit(guidance_limit, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("grievances")
    if bp:
        limiter.limit(LIFECYCLE_LIMIT, key_func=rate_limit_key)(bp)

    app.logger.info(
        "Rate limiter configured: guidance: %s, lifecycle: %s", guidance_limit, LIFECYCLE_LIMIT,
    )
