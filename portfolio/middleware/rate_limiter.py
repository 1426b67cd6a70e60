"""
Rate limiting configuration.

The Limiter instance is created in portfolio/__init__.py with no default
limits; this module applies limits per blueprint.

Usage:
    from portfolio.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def account_or_ip_key():
    """Rate limit key: acting account when the client sends one, else remote IP."""
    account_id = flask_request.headers.get("X-Account-Id", "").strip()
    if account_id:
        return f"account:{account_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per account, falling back to remote IP):
        - Initiatives / approvals: 60/minute  (workflow mutations)
        - Workstreams:             200/minute (configuration reads)
        - Health check:            exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("initiatives", "approvals"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=account_or_ip_key)(bp)

    bp = app.blueprints.get("workstreams")
    if bp:
        limiter.limit(READ_LIMIT, key_func=account_or_ip_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: workflow %s, workstreams %s", WRITE_LIMIT, READ_LIMIT)
