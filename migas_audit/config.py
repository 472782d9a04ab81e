"""
Migas Compliance Audit & License Service
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'migas_audit_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Random keys for development; production MUST use stable env vars
_DEV_SECRET = secrets.token_hex(32)
_DEV_LICENSE_SECRET = "dev-license-secret"


def _database_url(default=None):
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,   # recycle connections every 5 min
    }

    # Redis (rate-limit storage when set)
    REDIS_URL = os.getenv("REDIS_URL", "")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # License
    LICENSE_SECRET = os.getenv("LICENSE_SECRET", _DEV_LICENSE_SECRET)
    LICENSE_TOKEN_HEADER = os.getenv("LICENSE_TOKEN_HEADER", "X-License-Token")
    LICENSE_VALIDATE_RATE_LIMIT = os.getenv("LICENSE_VALIDATE_RATE_LIMIT", "30/minute")
    LICENSE_DATA_VOLUME_WINDOW_DAYS = int(os.getenv("LICENSE_DATA_VOLUME_WINDOW_DAYS", "30"))
    LICENSE_EXPIRY_WARNING_DAYS = int(os.getenv("LICENSE_EXPIRY_WARNING_DAYS", "30"))
    LICENSE_SKIP_VALIDATION = os.getenv("LICENSE_SKIP_VALIDATION", "false").lower() == "true"

    # Audit
    AUDIT_REPORT_MAX_ROWS = int(os.getenv("AUDIT_REPORT_MAX_ROWS", "10000"))
    COMPLIANCE_FLAGS_DEFAULT = ["ISO_27001", "PP_NO_5_2021_MIGAS"]

    MAX_CONTENT_LENGTH = 2 * 1024 * 1024  # 2 MB


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(_SQLITE_DEV)


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    LICENSE_SECRET = "test-license-secret"
    LICENSE_SKIP_VALIDATION = False
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production
    LICENSE_SKIP_VALIDATION = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")
        if not os.getenv("LICENSE_SECRET"):
            raise RuntimeError("LICENSE_SECRET environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
