"""
Procurement Approval Workflow Engine
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'approvals_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Per-process random key; production must set SECRET_KEY
_DEV_SECRET = secrets.token_hex(32)


def _database_url(default=None):
    """DATABASE_URL with the legacy postgres:// scheme rewritten for SQLAlchemy 2."""
    raw = os.getenv("DATABASE_URL", "")
    if not raw:
        return default
    return raw.replace("postgres://", "postgresql://", 1)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    # Rate limiter storage
    REDIS_URL = os.getenv("REDIS_URL", "memory://")

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Logging: LOG_FORMAT is "json" or "readable"; empty picks by environment
    LOG_LEVEL = os.getenv("LOG_LEVEL", "")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "")

    # Directory service (user → designation / manager lookups)
    DIRECTORY_URL = os.getenv("DIRECTORY_URL", "")
    DIRECTORY_TIMEOUT = float(os.getenv("DIRECTORY_TIMEOUT", "5"))
    DIRECTORY_CACHE_TTL = int(os.getenv("DIRECTORY_CACHE_TTL", "60"))
    DIRECTORY_CACHE_MAX_ENTRIES = int(os.getenv("DIRECTORY_CACHE_MAX_ENTRIES", "5000"))

    # Actor identity: "true" requires a Bearer JWT, otherwise X-User-Id is trusted
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "true")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    API_AUTH_ENABLED = "false"
    RATELIMIT_ENABLED = False
    JWT_SECRET_KEY = "test-jwt-secret-key-for-the-approvals-suite"


class ProductionConfig(Config):
    """Production environment configuration (PostgreSQL only)."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    # Reorder and decide hold a row lock on the process / request
    STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "30000"))
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {"options": f"-c statement_timeout={STATEMENT_TIMEOUT_MS}"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
