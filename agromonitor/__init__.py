"""
AgroMonitor
Flask Application Factory.

Usage:
    from agromonitor import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from agromonitor.auth import init_auth
from agromonitor.config import config
from agromonitor.middleware.logging_config import configure_logging
from agromonitor.middleware.rate_limiter import init_rate_limits
from agromonitor.middleware.timing import init_request_timing
from agromonitor.models import db

logger = logging.getLogger(__name__)


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
    default_limits=[],  # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    # Models must be imported before migrate/create_all see the metadata.
    from agromonitor.models import monitoring, planning, scheduling  # noqa: F401

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing, then auth (auth may short-circuit) ───────────────
    init_request_timing(app)
    init_auth(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)

    # ── Blueprints ───────────────────────────────────────────────────────
    from agromonitor.blueprints.health_bp import health_bp
    from agromonitor.blueprints.monitoring_bp import monitoring_bp
    from agromonitor.blueprints.notification_bp import notification_bp

    app.register_blueprint(monitoring_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run one scheduled job now (e.g. threshold_sweep)."""
        from agromonitor.services.scheduler_service import SchedulerService
        SchedulerService.ensure_jobs_registered()
        outcome = SchedulerService.run_job(job_name)
        click.echo(f"{job_name}: {outcome['status']} {outcome.get('result') or outcome.get('error') or ''}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler (importing the jobs module registers them) ─────────────
    importlib.import_module("agromonitor.services.scheduled_jobs")
    from agromonitor.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    return app
