"""
Migas Compliance Audit & License Service
Flask Application Factory.

Usage:
    from migas_audit import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os
from datetime import UTC, datetime

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from migas_audit.config import config
from migas_audit.middleware.logging_config import configure_logging
from migas_audit.middleware.rate_limiter import init_rate_limits
from migas_audit.middleware.timing import init_request_timing
from migas_audit.models import db

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
    default_limits=[],                     # limits are applied per blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
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
    # Instantiated so ProductionConfig can refuse to start without its secrets
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

    # ── Import all models so Alembic can detect them ─────────────────────
    from migas_audit.models import compliance as _compliance_models      # noqa: F401
    from migas_audit.models import directory as _directory_models        # noqa: F401
    from migas_audit.models import license as _license_models            # noqa: F401
    from migas_audit.models import request_audit as _request_models      # noqa: F401
    from migas_audit.models import upload_audit as _upload_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        if db.engine.url.drivername == "sqlite" and db.engine.url.database not in (None, "", ":memory:"):
            os.makedirs(os.path.dirname(os.path.abspath(db.engine.url.database)), exist_ok=True)
        db.create_all()
        app.logger.debug("db.create_all() completed")

    # ── Blueprints ───────────────────────────────────────────────────────
    from migas_audit.blueprints.audit_bp import audit_bp
    from migas_audit.blueprints.health_bp import health_bp
    from migas_audit.blueprints.license_bp import license_bp

    app.register_blueprint(audit_bp)
    app.register_blueprint(license_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    _register_cli(app)

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
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app


def _register_cli(app):
    @app.cli.command("verify-audit-integrity")
    def verify_audit_integrity_cmd():
        """Walk every audit hash chain and report tampered rows."""
        from migas_audit.services.integrity_service import verify_chain
        from migas_audit.models.compliance import ComplianceAuditLog
        from migas_audit.models.request_audit import RequestActionAuditLog
        from migas_audit.models.upload_audit import ResourceUploadAuditLog

        failed = False
        for model in (ComplianceAuditLog, ResourceUploadAuditLog, RequestActionAuditLog):
            report = verify_chain(model)
            click.echo(
                f"{report.table}: checked={report.checked} "
                f"broken_hashes={report.broken_hashes} broken_links={report.broken_links}"
            )
            failed = failed or not report.verified
        if failed:
            raise SystemExit(1)

    @app.cli.command("expire-licenses")
    def expire_licenses_cmd():
        """Mark past-due licenses EXPIRED."""
        from migas_audit.services.license_service import LicenseRepository

        count = LicenseRepository().expire_overdue_licenses()
        click.echo(f"Expired {count} license(s).")

    @app.cli.command("create-license")
    @click.option("--name", "license_name", required=True)
    @click.option("--type", "license_type", default="STANDARD", show_default=True)
    @click.option("--level", "license_level", default="PROFESSIONAL", show_default=True)
    @click.option("--org", "organization_name", required=True)
    @click.option("--org-id", "organization_id", default=None)
    @click.option("--email", "contact_email", required=True)
    @click.option("--expires", "expiration_date", required=True, help="ISO date, e.g. 2027-12-31")
    @click.option("--max-users", type=int, default=None)
    @click.option("--max-connectors", type=int, default=None)
    @click.option("--feature", "features", multiple=True)
    def create_license_cmd(license_name, license_type, license_level, organization_name,
                           organization_id, contact_email, expiration_date, max_users,
                           max_connectors, features):
        """Issue a license and print its token and activation key."""
        from migas_audit.services.license_service import LicenseRepository

        expires = datetime.fromisoformat(expiration_date)
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=UTC)
        lic = LicenseRepository().create_license(
            license_name=license_name,
            license_type=license_type.upper(),
            license_level=license_level.upper(),
            organization_name=organization_name,
            organization_id=organization_id,
            contact_email=contact_email,
            expiration_date=expires,
            max_users=max_users,
            max_connectors=max_connectors,
            enabled_features=list(features),
        )
        click.echo(f"token:          {lic.license_token}")
        click.echo(f"activation key: {lic.activation_key}")
