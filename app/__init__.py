"""
Concept Paper Approval Workflow
Flask Application Factory.

Usage:
    from app import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import json
import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine

from app.config import config
from app.models import db
from app.middleware.logging_config import configure_logging
from app.middleware.timing import init_request_timing
from app.middleware.rate_limiter import init_rate_limits

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
# Test suites that build rows out of FK order switch this off.
_SQLITE_FK_ENFORCEMENT = True


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if _SQLITE_FK_ENFORCEMENT and "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
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
    app.config.from_object(config[config_name])

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

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Request timing ───────────────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so db.create_all() sees them ───────────────────
    from app.models import auth as _auth_models                 # noqa: F401
    from app.models import workflow as _workflow_models         # noqa: F401
    from app.models import audit as _audit_models               # noqa: F401
    from app.models import attachment as _attachment_models     # noqa: F401
    from app.models import notification as _notification_models  # noqa: F401
    from app.models import scheduling as _scheduling_models     # noqa: F401

    # ── Register blueprints ──────────────────────────────────────────────
    from app.blueprints.workflow_bp import workflow_bp
    from app.blueprints.deadline_option_bp import deadline_option_bp
    from app.blueprints.notification_bp import notification_bp

    app.register_blueprint(workflow_bp)
    app.register_blueprint(deadline_option_bp)
    app.register_blueprint(notification_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    _register_cli(app)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Concept Paper Approval Workflow"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    import importlib
    importlib.import_module("app.services.scheduled_jobs")  # registers @register_job handlers
    from app.services.scheduler_service import SchedulerService as _SchedulerSvc
    _SchedulerSvc.init_app(app)

    return app


def _register_cli(app):
    @app.cli.command("seed-deadline-options")
    def seed_deadline_options_cmd():
        """Insert the default deadline options that are missing."""
        from app.services.deadline_policy import seed_default_options
        count = seed_default_options()
        db.session.commit()
        click.echo(f"Seeded {count} deadline option(s).")

    @app.cli.command("workflow-insert-stage")
    @click.option("--after", "after_stage_name", required=True, help="Checkpoint stage name")
    @click.option("--name", "stage_name", required=True, help="Name of the stage to insert")
    @click.option("--role", "assigned_role", required=True, help="Role that owns the new stage")
    @click.option("--deadline-option", default="2_days", show_default=True)
    @click.option("--dry-run", is_flag=True, help="List affected papers without writing")
    @click.option("--no-rewind", is_flag=True, help="Skip papers already past the new slot")
    def workflow_insert_stage_cmd(after_stage_name, stage_name, assigned_role, deadline_option,
                                  dry_run, no_rewind):
        """Insert a stage into every in-flight paper past the checkpoint."""
        from app.services.stage_insertion import backfill_stage
        from app.services.stage_templates import StageDefinition

        definition = StageDefinition(stage_name, assigned_role, deadline_option)
        result = backfill_stage(
            after_stage_name, definition, dry_run=dry_run, rewind_progress=not no_rewind,
        )
        click.echo(json.dumps(result.to_dict(), indent=2))

    @app.cli.command("workflow-verify")
    def workflow_verify_cmd():
        """Report stage ordering and pointer violations."""
        from app.services.stage_insertion import verify_stage_integrity
        issues = verify_stage_integrity()
        click.echo(json.dumps(issues, indent=2))
        if issues:
            raise SystemExit(1)

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_cmd(job_name):
        """Run a registered scheduled job once."""
        from app.services.scheduler_service import SchedulerService
        result = SchedulerService.run_job(job_name)
        click.echo(json.dumps(result, indent=2, default=str))
        if result["status"] in ("error", "failed"):
            raise SystemExit(1)
