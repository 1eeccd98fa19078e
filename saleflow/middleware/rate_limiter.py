"""
Per-blueprint rate limits (Flask-Limiter).

The ``Limiter`` is created in ``saleflow/__init__.py`` without default
limits; this module attaches WORKFLOW_RATE_LIMIT to the workflow API and
exempts the health probes.  Keys are the remote address.
"""

import logging

logger = logging.getLogger(__name__)


def init_rate_limits(app, limiter):
    """Attach limits to registered blueprints.  No-op under TESTING."""
    if app.config.get("TESTING"):
        return

    workflow_limit = app.config.get("WORKFLOW_RATE_LIMIT", "120/minute")
    if "workflow" in app.blueprints:
        limiter.limit(workflow_limit)(app.blueprints["workflow"])
    if "health" in app.blueprints:
        limiter.exempt(app.blueprints["health"])

    logger.info("Rate limits: workflow=%s health=exempt", workflow_limit)
