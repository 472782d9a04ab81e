"""
License domain models.

Models:
    - License: an issued license (token, limits, feature lists, lifecycle).
    - LicenseUsageLog: one metered use of a licensed feature.

Unlike the audit tables these rows are mutable: status, ``last_used`` and
``usage_count`` change over the license lifetime.
"""

import re
from datetime import UTC, datetime

from migas_audit.models import db

# ── Constants ────────────────────────────────────────────────────────────────

LICENSE_STATUSES = frozenset({
    "INACTIVE", "PENDING_ACTIVATION", "ACTIVE", "EXPIRED", "SUSPENDED", "REVOKED",
})

LICENSE_TYPES = frozenset({"TRIAL", "STANDARD", "ENTERPRISE", "GOVERNMENT"})

LICENSE_LEVELS = frozenset({"BASIC", "PROFESSIONAL", "ENTERPRISE"})

USAGE_TYPES = frozenset({"FEATURE_ACCESS", "API_CALL", "DATA_TRANSFER", "USER_SESSION"})

USAGE_STATUSES = frozenset({"SUCCESS", "FAILED", "FEATURE_RESTRICTED", "LIMIT_EXCEEDED"})

LICENSE_TRANSITIONS = {
    "activate": {"from": ["INACTIVE", "PENDING_ACTIVATION"], "to": "ACTIVE"},
    "expire": {"from": ["ACTIVE", "INACTIVE", "PENDING_ACTIVATION"], "to": "EXPIRED"},
    "suspend": {"from": ["ACTIVE"], "to": "SUSPENDED"},
    "reinstate": {"from": ["SUSPENDED"], "to": "ACTIVE"},
    "revoke": {
        "from": ["INACTIVE", "PENDING_ACTIVATION", "ACTIVE", "EXPIRED", "SUSPENDED"],
        "to": "REVOKED",
    },
}

LICENSE_TOKEN_RE = re.compile(r"^IDS-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")


def _utcnow():
    return datetime.now(UTC)


def _iso(value):
    return value.isoformat() if value else None


def as_utc(value):
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class License(db.Model):
    __tablename__ = "licenses"

    id = db.Column(db.Integer, primary_key=True)
    license_token = db.Column(db.String(32), nullable=False, unique=True, index=True)
    license_hash = db.Column(db.String(64), nullable=False)
    license_name = db.Column(db.String(200), nullable=False)
    license_type = db.Column(db.String(20), nullable=False)
    license_level = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="INACTIVE", index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False)

    issued_date = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    activation_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expiration_date = db.Column(db.DateTime(timezone=True), nullable=False)

    organization_name = db.Column(db.String(200), nullable=False)
    organization_id = db.Column(db.String(64), nullable=True)
    contact_email = db.Column(db.String(200), nullable=False)

    max_users = db.Column(db.Integer, nullable=True)
    max_connectors = db.Column(db.Integer, nullable=True)
    max_data_volume = db.Column(db.BigInteger, nullable=True, comment="bytes per 30 days")
    max_api_requests = db.Column(db.Integer, nullable=True, comment="per UTC day")

    enabled_features = db.Column(db.JSON, nullable=False, default=list)
    restricted_features = db.Column(db.JSON, nullable=False, default=list)

    activation_key = db.Column(db.String(32), nullable=False)
    client_fingerprint = db.Column(db.String(500), nullable=True)
    last_used = db.Column(db.DateTime(timezone=True), nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    license_metadata = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    usage_logs = db.relationship(
        "LicenseUsageLog", backref="license", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @property
    def is_expired(self) -> bool:
        return as_utc(self.expiration_date) < _utcnow()

    def days_until_expiry(self) -> int:
        return (as_utc(self.expiration_date) - _utcnow()).days

    def to_dict(self, include_usage=False) -> dict:
        """Serialise; the activation key is never exposed."""
        d = {
            "id": self.id,
            "license_token": self.license_token,
            "license_name": self.license_name,
            "license_type": self.license_type,
            "license_level": self.license_level,
            "status": self.status,
            "is_active": self.is_active,
            "issued_date": _iso(self.issued_date),
            "activation_date": _iso(self.activation_date),
            "expiration_date": _iso(self.expiration_date),
            "organization_name": self.organization_name,
            "organization_id": self.organization_id,
            "contact_email": self.contact_email,
            "max_users": self.max_users,
            "max_connectors": self.max_connectors,
            "max_data_volume": str(self.max_data_volume) if self.max_data_volume is not None else None,
            "max_api_requests": self.max_api_requests,
            "enabled_features": self.enabled_features or [],
            "restricted_features": self.restricted_features or [],
            "last_used": _iso(self.last_used),
            "usage_count": self.usage_count,
            "metadata": self.license_metadata,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_usage:
            recent = self.usage_logs.order_by(
                LicenseUsageLog.timestamp.desc(), LicenseUsageLog.id.desc()
            ).limit(5)
            d["usage_logs"] = [u.to_dict() for u in recent]
        return d

    def __repr__(self):
        return f"<License {self.id}: {self.license_token} [{self.status}]>"


class LicenseUsageLog(db.Model):
    __tablename__ = "license_usage_logs"
    __table_args__ = (
        db.Index("idx_usage_license_time", "license_id", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    license_id = db.Column(
        db.Integer, db.ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False,
    )
    feature_used = db.Column(db.String(100), nullable=False)
    usage_type = db.Column(db.String(20), nullable=False)

    user_id = db.Column(db.String(64), nullable=True)
    session_id = db.Column(db.String(128), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    data_processed = db.Column(db.BigInteger, nullable=True, comment="bytes")
    api_calls = db.Column(db.Integer, nullable=True)
    processing_time = db.Column(db.Integer, nullable=True, comment="ms")

    usage_status = db.Column(db.String(20), nullable=False, default="SUCCESS")
    error_message = db.Column(db.Text, nullable=True)
    start_time = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "license_id": self.license_id,
            "feature_used": self.feature_used,
            "usage_type": self.usage_type,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "ip_address": self.ip_address,
            "data_processed": str(self.data_processed) if self.data_processed is not None else None,
            "api_calls": self.api_calls,
            "processing_time": self.processing_time,
            "usage_status": self.usage_status,
            "error_message": self.error_message,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "timestamp": _iso(self.timestamp),
        }

    def __repr__(self):
        return f"<LicenseUsageLog {self.id}: {self.feature_used} {self.usage_status}>"
