"""
VISION Platform
Flask Application Factory.

Usage:
    from vision import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from vision.config import config
from vision.models import db
from vision.middleware.logging_config import configure_logging
from vision.middleware.timing import init_request_timing
from vision.middleware.security_headers import init_security_headers
from vision.middleware.rate_limiter import init_rate_limits
from vision.middleware.jwt_auth import init_jwt_middleware

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
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)

# Mutating /api/ requests that may carry multipart bodies
_MULTIPART_PATH_SUFFIXES = ("/documents", "/versions")


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
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

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

    # ── Security headers ─────────────────────────────────────────────────
    init_security_headers(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware (sets g.user_id) ─────────────────────────────
    init_jwt_middleware(app)

    # ── Request guards (Content-Type) ────────────────────────────────────
    @app.before_request
    def _guard_request():
        from flask import abort
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if "multipart/form-data" in ct and request.path.endswith(_MULTIPART_PATH_SUFFIXES):
                return None
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")
        return None

    # ── Import all models so Alembic can detect them ─────────────────────
    from vision.models import auth as _auth_models                  # noqa: F401
    from vision.models import organization as _organization_models  # noqa: F401
    from vision.models import document as _document_models          # noqa: F401
    from vision.models import community_pulse as _cp_models         # noqa: F401
    from vision.models import notification as _notification_models  # noqa: F401
    from vision.models import worklist as _worklist_models          # noqa: F401
    from vision.models import activity as _activity_models          # noqa: F401
    from vision.models import billing as _billing_models            # noqa: F401
    from vision.models import app_catalog as _app_catalog_models    # noqa: F401

    # ── Auto-create tables outside of tests (CREATE IF NOT EXISTS) ───────
    if not app.config.get("TESTING"):
        with app.app_context():
            try:
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from vision.blueprints.health_bp import health_bp
    from vision.blueprints.auth_bp import auth_bp
    from vision.blueprints.organization_bp import organization_bp
    from vision.blueprints.invite_bp import invite_bp
    from vision.blueprints.folder_bp import folder_bp
    from vision.blueprints.document_bp import document_bp
    from vision.blueprints.community_pulse_bp import community_pulse_bp
    from vision.blueprints.notification_bp import notification_bp
    from vision.blueprints.task_bp import task_bp
    from vision.blueprints.activity_bp import activity_bp
    from vision.blueprints.billing_bp import billing_bp
    from vision.blueprints.app_catalog_bp import app_catalog_bp
    from vision.blueprints.search_bp import search_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(organization_bp)
    app.register_blueprint(invite_bp)
    app.register_blueprint(folder_bp)
    app.register_blueprint(document_bp)
    app.register_blueprint(community_pulse_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(app_catalog_bp)
    app.register_blueprint(search_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-methods")
    def seed_methods_cmd():
        """Seed the CommunityPulse engagement method catalog."""
        from vision.services.community_pulse_service import seed_methods
        methods, templates = seed_methods()
        logger.info("Seeded %s new engagement methods and %s templates.", methods, templates)

    @app.cli.command("seed-apps")
    def seed_apps_cmd():
        """Seed the platform app catalog."""
        from vision.services.app_catalog_service import seed_apps
        count = seed_apps()
        logger.info("Seeded %s new catalog apps.", count)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description or "Unsupported media type"}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
