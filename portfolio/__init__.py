"""
Transformation Portfolio Service
Flask Application Factory.

Usage:
    from portfolio import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from portfolio.config import config
from portfolio.middleware.logging_config import configure_logging
from portfolio.middleware.rate_limiter import init_rate_limits
from portfolio.middleware.timing import init_request_timing
from portfolio.models import db
from portfolio.utils.errors import E, api_error

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
    default_limits=[],                     # limits applied per blueprint
)


def _init_services(app):
    """Wire repositories into the workflow services (one set per app)."""
    from portfolio.services.initiative_service import InitiativesService
    from portfolio.services.initiatives_repository import InitiativesRepository
    from portfolio.services.workstream_service import WorkstreamsService
    from portfolio.services.workstreams_repository import WorkstreamsRepository

    workstreams_repo = WorkstreamsRepository()
    app.extensions["portfolio.workstreams"] = WorkstreamsService(workstreams_repo)
    app.extensions["portfolio.initiatives"] = InitiativesService(
        InitiativesRepository(),
        workstreams_repo,
        auto_approve_comment=app.config["APPROVAL_AUTO_COMMENT"],
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
    # Instantiated so ProductionConfig can validate its environment
    app.config.from_object(config[config_name]())

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    from portfolio.models import initiative as _initiative_models  # noqa: F401
    from portfolio.models import workstream as _workstream_models  # noqa: F401

    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(app.instance_path, exist_ok=True)

    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    _init_services(app)

    from portfolio.blueprints.approvals_bp import approvals_bp
    from portfolio.blueprints.health_bp import health_bp
    from portfolio.blueprints.initiatives_bp import initiatives_bp
    from portfolio.blueprints.workstreams_bp import workstreams_bp

    app.register_blueprint(initiatives_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(workstreams_bp)
    app.register_blueprint(health_bp)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Resource not found")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.INVALID_INPUT, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        logger.exception("Unhandled server error")
        return api_error(E.INTERNAL, "Internal server error")

    init_rate_limits(app, limiter)

    return app
