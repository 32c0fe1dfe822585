"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "30/minute"
READ_LIMIT = "200/minute"


def _requester_key():
    """Rate limit key: upstream requester id if present, else remote IP."""
    requester_id = flask_request.headers.get("X-Requester-Id")
    if requester_id:
        return f"requester:{requester_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per requester, falling back to remote IP):
        - Access-request writes (POST):  30/minute
        - Reads (GET):                   200/minute
        - Health check:                  exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("access_requests")
    if bp:
        limiter.limit(
            WRITE_LIMIT,
            key_func=_requester_key,
            methods=["POST"],
        )(bp)
        limiter.limit(
            READ_LIMIT,
            key_func=_requester_key,
            methods=["GET"],
        )(bp)

    bp = app.blueprints.get("catalog")
    if bp:
        limiter.limit(READ_LIMIT, methods=["GET"])(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limits applied: write=%s read=%s", WRITE_LIMIT, READ_LIMIT)
