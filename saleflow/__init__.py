"""
SaleFlow — Transaction Step Workflow Engine
Flask application factory.

Usage:
    from saleflow import create_app
    app = create_app()           # APP_ENV, or "development"
    app = create_app("testing")
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from saleflow.config import config
from saleflow.core.exceptions import WorkflowError
from saleflow.middleware.logging_config import configure_logging
from saleflow.middleware.rate_limiter import init_rate_limits
from saleflow.middleware.timing import init_request_timing
from saleflow.models import db
from saleflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite ignores FOREIGN KEY clauses unless enabled per connection."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
# Storage comes from RATELIMIT_STORAGE_URI; limits are attached per blueprint
limiter = Limiter(key_func=get_remote_address, default_limits=[])


def create_app(config_name=None):
    """Build the application for ``config_name`` (development/testing/production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")
    settings = config[config_name]
    settings.validate()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(settings)

    configure_logging(app)
    _init_extensions(app)
    init_request_timing(app)
    _init_schema(app, create=config_name != "production")
    _register_blueprints(app)
    init_rate_limits(app, limiter)
    _register_error_handlers(app)

    logger.debug("SaleFlow app created (%s)", config_name)
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _init_schema(app, create):
    """Register every model; outside production also create missing tables.

    Production schema changes go through ``flask db upgrade``.
    """
    from saleflow.models import audit, comment, document, operation  # noqa: F401

    if not create:
        return
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()


def _register_blueprints(app):
    from saleflow.blueprints.health_bp import health_bp
    from saleflow.blueprints.workflow_bp import workflow_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(workflow_bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "SaleFlow"}


def _register_error_handlers(app):
    """JSON bodies for errors raised outside the workflow blueprint."""

    @app.errorhandler(WorkflowError)
    def workflow_error(e):
        return api_error(e.code, str(e), details=e.details or None, retryable=e.retryable)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
