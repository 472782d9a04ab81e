"""
Compliance audit domain model.

Models:
    - ComplianceAuditLog: immutable, hash-chained trail of security and data
      handling events (ISO/IEC 27001 A.12.4, PP No. 5/2021 Migas data rules).
"""

from datetime import UTC, datetime

from migas_audit.models import db
from migas_audit.models.base import AuditRecord, make_immutable

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_EVENT_TYPES = frozenset({
    "RESOURCE_UPLOAD",
    "RESOURCE_DOWNLOAD",
    "RESOURCE_ACCESS",
    "RESOURCE_MODIFICATION",
    "RESOURCE_DELETION",
    "REQUEST_SUBMITTED",
    "REQUEST_APPROVED",
    "REQUEST_REJECTED",
    "REQUEST_DELIVERED",
    "USER_LOGIN",
    "USER_LOGOUT",
    "SYSTEM_CONFIGURATION",
    "SECURITY_INCIDENT",
    "UNAUTHORIZED_ACCESS",
    "LICENSE_ACTIVATION",
})

SECURITY_LEVELS = frozenset({"PUBLIC", "INTERNAL", "CONFIDENTIAL", "SECRET", "TOP_SECRET"})

DATA_CLASSIFICATIONS = frozenset({"PUBLIC", "INTERNAL", "CONFIDENTIAL", "RESTRICTED", "TOP_SECRET"})

DEFAULT_COMPLIANCE_FLAGS = ("ISO_27001", "PP_NO_5_2021_MIGAS")

# Action verb → event type
ACTION_EVENT_TYPES = {
    "submit": "REQUEST_SUBMITTED",
    "approve": "REQUEST_APPROVED",
    "reject": "REQUEST_REJECTED",
    "deliver": "REQUEST_DELIVERED",
    "upload": "RESOURCE_UPLOAD",
    "download": "RESOURCE_DOWNLOAD",
    "access": "RESOURCE_ACCESS",
    "modify": "RESOURCE_MODIFICATION",
    "delete": "RESOURCE_DELETION",
    "login": "USER_LOGIN",
    "logout": "USER_LOGOUT",
}

HIGH_RISK_THRESHOLD = 70
MEDIUM_RISK_THRESHOLD = 40


class ComplianceAuditLog(AuditRecord):
    """
    One row per audited event.

    ``previous_state`` / ``current_state`` carry entity snapshots for
    workflow events; ``error_details`` carries incident payloads.
    """

    __tablename__ = "compliance_audit_logs"
    __table_args__ = (
        db.Index("idx_compliance_entity", "entity_type", "entity_id"),
        db.Index("idx_compliance_user", "user_id"),
        db.Index("idx_compliance_event", "event_type"),
        db.Index("idx_compliance_security", "security_level"),
    )

    FIELD_DEFAULTS = {
        "security_level": "INTERNAL",
        "data_classification": "INTERNAL",
        "compliance_flags": lambda: list(DEFAULT_COMPLIANCE_FLAGS),
        "event_metadata": dict,
    }

    event_type = db.Column(db.String(40), nullable=False)
    action = db.Column(db.String(100), nullable=False)
    entity_type = db.Column(
        db.String(50), nullable=False,
        comment="Resource | Request | Security | Report | License | …",
    )
    entity_id = db.Column(db.String(64), nullable=True)

    # Who / where
    user_id = db.Column(db.String(64), nullable=True)
    session_id = db.Column(db.String(128), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    # Related records
    resource_id = db.Column(db.String(64), nullable=True)
    contract_id = db.Column(db.String(64), nullable=True)

    # File events
    file_name = db.Column(db.String(500), nullable=True)
    file_size = db.Column(db.BigInteger, nullable=True)
    file_hash = db.Column(db.String(128), nullable=True)

    # Workflow snapshots
    previous_state = db.Column(db.JSON, nullable=True)
    current_state = db.Column(db.JSON, nullable=True)
    change_reason = db.Column(db.Text, nullable=True)

    # Classification
    security_level = db.Column(db.String(20), nullable=False)
    data_classification = db.Column(db.String(20), nullable=False)
    risk_score = db.Column(db.Integer, nullable=True, comment="0-100")
    compliance_flags = db.Column(db.JSON, nullable=False)

    error_details = db.Column(db.JSON, nullable=True)
    event_metadata = db.Column(db.JSON, nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "resource_id": self.resource_id,
            "contract_id": self.contract_id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "file_hash": self.file_hash,
            "previous_state": self.previous_state,
            "current_state": self.current_state,
            "change_reason": self.change_reason,
            "security_level": self.security_level,
            "data_classification": self.data_classification,
            "risk_score": self.risk_score,
            "compliance_flags": self.compliance_flags or [],
            "error_details": self.error_details,
            "metadata": self.event_metadata or {},
            "chain_position": self.chain_position,
            "previous_hash": self.previous_hash,
            "integrity_hash": self.integrity_hash,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ComplianceAuditLog {self.id}: {self.event_type} {self.entity_type}/{self.entity_id}>"


make_immutable(ComplianceAuditLog)
