"""
SaleFlow — Transaction Step Workflow Engine
Configuration classes for the application factory.

Usage:
    cfg = config[os.getenv("APP_ENV", "development")]
    cfg.validate()
    app.config.from_object(cfg)
"""

import os
import secrets

from saleflow.models.operation import DEFAULT_STEP_TEMPLATE

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'saleflow_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

_DEV_SECRET = secrets.token_hex(32)

# PostgreSQL pool; the timeouts bound how long a workflow write can hold the
# operation row lock.
_PG_ENGINE_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
    "connect_args": {
        "options": "-c statement_timeout=30000 -c lock_timeout=5000",
    },
}


def _database_url(env_var: str) -> str | None:
    """Read a database URL, normalising the legacy postgres:// scheme."""
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return None
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = _PG_ENGINE_OPTIONS

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Logging / request timing
    LOG_LEVEL = os.getenv("LOG_LEVEL")          # None → DEBUG in dev, INFO otherwise
    LOG_FORMAT = os.getenv("LOG_FORMAT")        # "json" | "console"; None → by environment
    SLOW_REQUEST_MS = int(os.getenv("SLOW_REQUEST_MS", "1000"))

    # Rate limiting (memory:// when REDIS_URL is unset)
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    WORKFLOW_RATE_LIMIT = os.getenv("WORKFLOW_RATE_LIMIT", "120/minute")

    # Workflow
    PLATFORM_FEE = int(os.getenv("PLATFORM_FEE", "3000"))
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")
    SUPPORTED_CURRENCIES = ("USD", "UYU")
    COMMENT_MAX_LENGTH = 2000
    REVIEW_NOTES_MAX_LENGTH = 1000
    DEFAULT_STEP_TEMPLATE = DEFAULT_STEP_TEMPLATE

    @classmethod
    def validate(cls):
        """Raise RuntimeError when the environment cannot run this config."""


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL") or _SQLITE_DEV
    # A SQLite file database does not take QueuePool sizing
    SQLALCHEMY_ENGINE_OPTIONS = (
        {"pool_pre_ping": True}
        if SQLALCHEMY_DATABASE_URI.startswith("sqlite")
        else _PG_ENGINE_OPTIONS
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = _database_url("TEST_DATABASE_URL") or _SQLITE_TEST
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url("DATABASE_URL")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # must be set explicitly

    @classmethod
    def validate(cls):
        if not cls.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
