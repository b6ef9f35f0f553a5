"""
Grievance Lifecycle Engine
Flask Application Factory.

Usage:
    from grievance_engine import create_app
    app = create_app()           # defaults to "development"
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

from grievance_engine.config import config
from grievance_engine.middleware.actor_context import init_actor_context
from grievance_engine.middleware.logging_config import configure_logging
from grievance_engine.middleware.rate_limiter import init_rate_limits
from grievance_engine.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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

    # ── Actor context (sets g.actor from forwarded identity headers) ────
    init_actor_context(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from grievance_engine.models import organization as _organization_models  # noqa: F401
    from grievance_engine.models import agreement as _agreement_models        # noqa: F401
    from grievance_engine.models import complaint as _complaint_models        # noqa: F401
    from grievance_engine.models import grievance as _grievance_models        # noqa: F401
    from grievance_engine.models import discipline as _discipline_models      # noqa: F401

    # ── Engine hooks ─────────────────────────────────────────────────────
    from grievance_engine.services.grievance_events import register_session_hooks
    from grievance_engine.services.step_registry import register_invalidation_listeners
    register_session_hooks()
    register_invalidation_listeners()

    from grievance_engine.ai.discipline_cache import validate_ttl_days
    from grievance_engine.ai.discipline_guidance import DisciplineGuidanceService
    from grievance_engine.ai.gateway import LLMGateway
    validate_ttl_days(app.config.get("GUIDANCE_CACHE_TTL_DAYS"))
    upstream_timeout = app.config.get("UPSTREAM_TIMEOUT_SECONDS", 30)
    app.extensions["discipline_guidance"] = DisciplineGuidanceService(
        gateway=LLMGateway(
            default_model=app.config.get("LLM_DEFAULT_CHAT_MODEL"),
            timeout_seconds=upstream_timeout,
            allow_stub_fallback=app.config.get("LLM_ALLOW_STUB_FALLBACK", False),
        ),
        timeout_seconds=upstream_timeout,
        model=app.config.get("GUIDANCE_MODEL"),
    )

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite"):
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from grievance_engine.blueprints.grievance_bp import grievance_bp
    from grievance_engine.blueprints.guidance_bp import guidance_bp

    app.register_blueprint(grievance_bp)
    app.register_blueprint(guidance_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("purge-expired-guidance")
    def purge_expired_guidance_cmd():
        """Delete expired discipline guidance cache entries."""
        from grievance_engine.ai.discipline_cache import discipline_cache
        count = discipline_cache.cleanup_expired()
        db.session.commit()
        logger.info("Purged %s expired discipline guidance entries.", count)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Grievance Lifecycle Engine"}

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

    return app
