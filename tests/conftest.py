"""
Shared pytest fixtures for the Migas compliance audit test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - user / connector: directory rows counted by license limits
    - issued_license / active_license: licenses created through the service
"""

from datetime import UTC, datetime, timedelta

import pytest

from migas_audit import create_app
from migas_audit.models import db as _db


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def user():
    from migas_audit.models.directory import User

    u = User(id="user-1", name="Siti Rahma", email="siti@kkks.example", role="analyst")
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def connector():
    from migas_audit.models.directory import ExternalService

    svc = ExternalService(name="KKKS Gateway", service_type="connector")
    _db.session.add(svc)
    _db.session.commit()
    return svc


@pytest.fixture()
def issued_license():
    """An INACTIVE license valid for one year."""
    from migas_audit.services.license_service import LicenseRepository

    return LicenseRepository().create_license(
        license_name="Migas Data Portal",
        license_type="ENTERPRISE",
        license_level="PROFESSIONAL",
        organization_name="PT Energi Nusantara",
        organization_id="org-42",
        contact_email="it@energi.example",
        expiration_date=datetime.now(UTC) + timedelta(days=365),
        enabled_features=["data_export", "report_generation"],
        restricted_features=["bulk_delete"],
    )


@pytest.fixture()
def active_license(issued_license):
    from migas_audit.services.license_service import LicenseRepository

    return LicenseRepository().activate_license(
        issued_license.license_token, activation_key=issued_license.activation_key,
    )
