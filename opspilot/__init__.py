"""
OpsPilot Operations Backend
Flask Application Factory.

Usage:
    from opspilot import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from opspilot.config import basedir, config as _config_map
from opspilot.models import db
from opspilot.middleware.logging_config import configure_logging
from opspilot.middleware.timing import init_request_timing
from opspilot.middleware.rate_limiter import init_rate_limits
from opspilot.middleware.jwt_auth import init_jwt_middleware
from opspilot.services.kpi_cache import init_kpi_cache

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
    default_limits=[],                     # no global limit, applied per blueprint
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = _config_map[config_name]
    # ProductionConfig validates required env vars on instantiation
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── JWT auth middleware (sets g.jwt_*; ahead of the limiter's hook) ──
    init_jwt_middleware(app)

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

    # ── KPI cache (one per application) ──────────────────────────────────
    init_kpi_cache(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from opspilot.models import organization as _organization_models  # noqa: F401
    from opspilot.models import project as _project_models            # noqa: F401
    from opspilot.models import task as _task_models                  # noqa: F401
    from opspilot.models import scheduling as _scheduling_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ─────────────────────────
    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(os.path.join(basedir, "instance"), exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from opspilot.blueprints.kpi_bp import kpi_bp
    from opspilot.blueprints.scheduler_bp import scheduler_bp
    from opspilot.blueprints.health_bp import health_bp

    app.register_blueprint(kpi_bp)
    app.register_blueprint(scheduler_bp)
    app.register_blueprint(health_bp)

    init_rate_limits(app, limiter)

    # ── Scheduler ────────────────────────────────────────────────────────
    from opspilot.services import scheduled_jobs as _scheduled_jobs  # noqa: F401  (registers jobs)
    from opspilot.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)
    try:
        SchedulerService.ensure_jobs_registered()
    except Exception as e:
        app.logger.warning("Scheduled job registration failed: %s", e)
    if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        SchedulerService.start()

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run a registered background job once, e.g. `flask run-job daily_digest`."""
        result = SchedulerService.run_job(job_name)
        click.echo(f"{job_name}: {result.get('status')}")
        if result.get("error"):
            click.echo(f"error: {result['error']}", err=True)
            raise SystemExit(1)

    @app.cli.command("kpi-refresh")
    def kpi_refresh_cmd():
        """Flush the KPI cache."""
        from opspilot.services.kpi_service import refresh_kpis
        ok = refresh_kpis()
        click.echo("KPI cache flushed" if ok else "KPI cache flush failed")
        if not ok:
            raise SystemExit(1)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return {"error": "Not found", "path": request.path}, 404
        return {"error": "Not found"}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "detail": str(e.description)}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app
