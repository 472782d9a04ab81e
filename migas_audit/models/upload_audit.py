"""
Resource upload audit domain model.

Models:
    - ResourceUploadAuditLog: append-only lifecycle trail of a single file
      upload.  Every state change (initiated, progress, completed, failed,
      quarantined) is a new row; rows of one upload share ``upload_id`` and
      are ordered by ``sequence``.  The row with the highest sequence is the
      current state of the upload.
"""

from migas_audit.models import db
from migas_audit.models.base import AuditRecord, make_immutable

# ── Constants ────────────────────────────────────────────────────────────────

UPLOAD_STATUSES = frozenset({"INITIATED", "IN_PROGRESS", "COMPLETED", "FAILED", "QUARANTINED"})

TERMINAL_UPLOAD_STATUSES = frozenset({"COMPLETED", "FAILED", "QUARANTINED"})

VIRUS_SCAN_STATUSES = frozenset({"PENDING", "CLEAN", "INFECTED", "SCAN_FAILED"})

ENCRYPTION_STATUSES = frozenset({"NOT_ENCRYPTED", "ENCRYPTED", "ENCRYPTION_FAILED"})

VALIDATION_STATUSES = frozenset({"pending", "validated", "rejected"})

# current status → statuses a new row may carry
UPLOAD_TRANSITIONS = {
    None: {"INITIATED"},
    "INITIATED": {"IN_PROGRESS", "COMPLETED", "FAILED", "QUARANTINED"},
    "IN_PROGRESS": {"IN_PROGRESS", "COMPLETED", "FAILED", "QUARANTINED"},
    "COMPLETED": set(),
    "FAILED": set(),
    "QUARANTINED": set(),
}

PENDING_COMPLIANCE_CHECKS = {
    "data_sensitivity_check": "pending",
    "contract_compliance_check": "pending",
    "security_classification_check": "pending",
    "migas_regulation_check": "pending",
}


class ResourceUploadAuditLog(AuditRecord):
    """One lifecycle event of a resource upload."""

    __tablename__ = "resource_upload_audit_logs"
    __table_args__ = (
        db.UniqueConstraint("upload_id", "sequence", name="uq_upload_sequence"),
        db.Index("idx_upload_resource", "resource_id"),
        db.Index("idx_upload_user", "user_id"),
        db.Index("idx_upload_status", "upload_status"),
    )

    FIELD_DEFAULTS = {
        "sequence": 1,
        "virus_scan_status": "PENDING",
        "encryption_status": "NOT_ENCRYPTED",
        "upload_status": "INITIATED",
        "upload_progress": 0,
        "validation_status": "pending",
        "data_classification": "CONFIDENTIAL",
        "ip_address": "0.0.0.0",
        "compliance_checks": lambda: dict(PENDING_COMPLIANCE_CHECKS),
    }

    upload_id = db.Column(db.String(36), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    resource_id = db.Column(db.String(64), nullable=False)
    original_file_name = db.Column(db.String(500), nullable=False)
    uploaded_file_name = db.Column(db.String(520), nullable=False)
    file_size = db.Column(db.BigInteger, nullable=False)
    file_type = db.Column(db.String(50), nullable=False)
    mime_type = db.Column(db.String(120), nullable=True)
    file_hash = db.Column(db.String(128), nullable=False)

    virus_scan_status = db.Column(db.String(20), nullable=False)
    encryption_status = db.Column(db.String(20), nullable=False)
    upload_status = db.Column(db.String(20), nullable=False)
    upload_progress = db.Column(db.Integer, nullable=False, comment="0-100")
    upload_start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    upload_end_time = db.Column(db.DateTime(timezone=True), nullable=True)

    user_id = db.Column(db.String(64), nullable=False)
    ip_address = db.Column(db.String(45), nullable=False)
    user_agent = db.Column(db.String(500), nullable=True)

    validation_status = db.Column(db.String(20), nullable=False)
    validation_errors = db.Column(db.JSON, nullable=True)
    compliance_checks = db.Column(db.JSON, nullable=False)
    status_reason = db.Column(db.Text, nullable=True)

    data_classification = db.Column(db.String(20), nullable=False)
    business_justification = db.Column(db.Text, nullable=True)
    project_code = db.Column(db.String(64), nullable=True)
    contract_id = db.Column(db.String(64), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.upload_status in TERMINAL_UPLOAD_STATUSES

    def carried_fields(self) -> dict:
        """Fields copied forward when appending the next lifecycle row."""
        return {
            "upload_id": self.upload_id,
            "resource_id": self.resource_id,
            "original_file_name": self.original_file_name,
            "uploaded_file_name": self.uploaded_file_name,
            "file_size": self.file_size,
            "file_type": self.file_type,
            "mime_type": self.mime_type,
            "file_hash": self.file_hash,
            "virus_scan_status": self.virus_scan_status,
            "encryption_status": self.encryption_status,
            "upload_progress": self.upload_progress,
            "upload_start_time": self.upload_start_time,
            "user_id": self.user_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "validation_status": self.validation_status,
            "validation_errors": self.validation_errors,
            "compliance_checks": dict(self.compliance_checks or {}),
            "data_classification": self.data_classification,
            "business_justification": self.business_justification,
            "project_code": self.project_code,
            "contract_id": self.contract_id,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "upload_id": self.upload_id,
            "sequence": self.sequence,
            "resource_id": self.resource_id,
            "original_file_name": self.original_file_name,
            "uploaded_file_name": self.uploaded_file_name,
            "file_size": str(self.file_size) if self.file_size is not None else None,
            "file_type": self.file_type,
            "mime_type": self.mime_type,
            "file_hash": self.file_hash,
            "virus_scan_status": self.virus_scan_status,
            "encryption_status": self.encryption_status,
            "upload_status": self.upload_status,
            "upload_progress": self.upload_progress,
            "upload_start_time": self.upload_start_time.isoformat() if self.upload_start_time else None,
            "upload_end_time": self.upload_end_time.isoformat() if self.upload_end_time else None,
            "user_id": self.user_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "validation_status": self.validation_status,
            "validation_errors": self.validation_errors,
            "compliance_checks": self.compliance_checks or {},
            "status_reason": self.status_reason,
            "data_classification": self.data_classification,
            "business_justification": self.business_justification,
            "project_code": self.project_code,
            "contract_id": self.contract_id,
            "chain_position": self.chain_position,
            "previous_hash": self.previous_hash,
            "integrity_hash": self.integrity_hash,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ResourceUploadAuditLog {self.id}: {self.upload_id}#{self.sequence} {self.upload_status}>"


make_immutable(ResourceUploadAuditLog)
