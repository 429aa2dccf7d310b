"""
Procurement Approval Workflow Engine
Flask Application Factory.

Usage:
    from approvals import create_app
    app = create_app()                                    # defaults to "development"
    app = create_app("testing", directory=StaticDirectory(...))
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from approvals.config import config
from approvals.integrations import init_directory
from approvals.middleware.jwt_auth import init_jwt_middleware
from approvals.middleware.logging_config import configure_logging
from approvals.middleware.rate_limiter import init_rate_limits
from approvals.middleware.timing import init_request_timing
from approvals.models import db

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None, directory=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        directory:   Directory adapter (designation / manager lookups).
                     Defaults to one built from DIRECTORY_URL.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Actor identity (JWT, or X-User-Id when auth is disabled) ─────────
    init_jwt_middleware(app)

    # ── Directory port ───────────────────────────────────────────────────
    init_directory(app, directory)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)  # 1 MB

    # ── Models (register tables with metadata) ───────────────────────────
    from approvals.models import process as _process_models    # noqa: F401
    from approvals.models import approval as _approval_models  # noqa: F401

    # ── Auto-create tables for SQLite dev/test; PostgreSQL uses `flask db upgrade` ──
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or ""
    if db_uri.startswith("sqlite"):
        if db_uri != "sqlite:///:memory:":
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from approvals.blueprints import all_blueprints

    for bp in all_blueprints():
        app.register_blueprint(bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-processes")
    def seed_processes_cmd():
        """Seed the default procurement approval chains (idempotent)."""
        from approvals.services.process_catalog_service import seed_default_processes
        count = seed_default_processes()
        logger.info("Seeded %s new processes.", count)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed", "code": "ERR_VALIDATION_INVALID"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "code": "ERR_RATE_LIMITED", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
