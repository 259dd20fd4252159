"""
sitetrack — construction progress & acceptance engine.
Flask Application Factory.

Usage:
    from sitetrack import create_app
    app = create_app()           # defaults to APP_ENV, then "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate

from sitetrack.config import PROGRESS_METHODS, config
from sitetrack.core.exceptions import (
    ConflictError,
    ImmutableRecordError,
    NotFoundError,
    ValidationError,
)
from sitetrack.middleware.logging_config import configure_logging
from sitetrack.middleware.timing import init_request_timing
from sitetrack.models import db
from sitetrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine

# The test suite turns this off so per-test drop_all() is not blocked by
# RESTRICT foreign keys on committed work-item trees.
_SQLITE_FK_ENFORCEMENT = True


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if _SQLITE_FK_ENFORCEMENT and "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()


def _register_error_handlers(app):
    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        logger.debug("Not found: %s", exc)
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @app.errorhandler(ValidationError)
    def _validation(exc):
        db.session.rollback()
        return api_error(E.VALIDATION_RULE, str(exc), details=exc.details)

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={"field": exc.field})

    @app.errorhandler(ImmutableRecordError)
    def _immutable(exc):
        db.session.rollback()
        logger.error("Append-only violation: %s", exc)
        return api_error(E.CONFLICT_STATE, str(exc))

    @app.errorhandler(404)
    def _route_not_found(e):
        return api_error(E.NOT_FOUND, "Not found")

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")


def _register_cli(app):
    @app.cli.command("calculate-progress")
    @click.option("--project-id", type=int, default=None, help="Only this project (default: all).")
    @click.option("--method", type=click.Choice(PROGRESS_METHODS), default=None,
                  help="Reconciliation method (default: PROGRESS_METHOD config).")
    @click.option("--full", is_flag=True, help="Re-derive every work item from its logs first.")
    def calculate_progress_cmd(project_id, method, full):
        """Recalculate project progress."""
        from sitetrack.models.project import Project
        from sitetrack.services.progress_aggregator import recalculate_all
        from sitetrack.services.project_progress_service import recalculate_overall

        q = Project.query
        if project_id:
            q = q.filter_by(id=project_id)
        projects = q.order_by(Project.id).all()
        if not projects:
            click.echo("No projects found.")
            return

        for project in projects:
            if full:
                recalculate_all(project.id)
            progress = recalculate_overall(project.id, method)
            click.echo(f"{project.code}: {progress.overall_percentage:.2f}% ({progress.calculated_from})")
        db.session.commit()
        logger.info("Recalculated progress for %d project(s)", len(projects))


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

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
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from sitetrack.models import project as _project_models          # noqa: F401
    from sitetrack.models import work_item as _work_item_models      # noqa: F401
    from sitetrack.models import defect as _defect_models            # noqa: F401
    from sitetrack.models import acceptance as _acceptance_models    # noqa: F401
    from sitetrack.models import notification as _notification_models  # noqa: F401
    from sitetrack.models import audit as _audit_models              # noqa: F401

    # ── Auto-create tables for SQLite / fresh databases ──────────────────
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        if config_name != "testing":
            os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from sitetrack.blueprints.acceptance_bp import acceptance_bp
    from sitetrack.blueprints.defect_bp import defect_bp
    from sitetrack.blueprints.health_bp import health_bp
    from sitetrack.blueprints.project_bp import project_bp
    from sitetrack.blueprints.work_item_bp import work_item_bp

    app.register_blueprint(project_bp)
    app.register_blueprint(work_item_bp)
    app.register_blueprint(acceptance_bp)
    app.register_blueprint(defect_bp)
    app.register_blueprint(health_bp)

    _register_error_handlers(app)
    _register_cli(app)

    return app
