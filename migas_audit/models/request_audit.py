"""
Data request action audit domain model.

Models:
    - RequestActionAuditLog: immutable trail of every workflow action taken
      on a data request (submit, approve, reject, deliver).

The latest row per ``request_id`` carries the request's current status in
``new_status``; the workflow is enforced against REQUEST_TRANSITIONS.
"""

from migas_audit.models import db
from migas_audit.models.base import AuditRecord, make_immutable

# ── Constants ────────────────────────────────────────────────────────────────

REQUEST_ACTION_TYPES = frozenset({"SUBMIT", "APPROVE", "REJECT", "DELIVER"})

REQUEST_ACTION_STATUSES = frozenset({"SUCCESS", "FAILED"})

REQUEST_STATUSES = frozenset({"pending", "approved", "rejected", "delivered"})

REQUEST_TRANSITIONS = {
    "SUBMIT": {"from": [None], "to": "pending"},
    "APPROVE": {"from": ["pending"], "to": "approved"},
    "REJECT": {"from": ["pending"], "to": "rejected"},
    "DELIVER": {"from": ["approved"], "to": "delivered"},
}


class RequestActionAuditLog(AuditRecord):
    """One workflow action on a data request."""

    __tablename__ = "request_action_audit_logs"
    __table_args__ = (
        db.Index("idx_request_action_request", "request_id"),
        db.Index("idx_request_action_performer", "performed_by_user_id"),
        db.Index("idx_request_action_type", "action_type"),
    )

    FIELD_DEFAULTS = {
        "action_status": "SUCCESS",
        "approval_level": 1,
        "required_approvals": 1,
        "current_approvals": 0,
        "security_clearance": "INTERNAL",
        "ip_address": "0.0.0.0",
        "risk_assessment": dict,
        "request_metadata": dict,
    }

    request_id = db.Column(db.String(64), nullable=False)
    action_type = db.Column(db.String(20), nullable=False)
    action_status = db.Column(db.String(20), nullable=False)

    performed_by_user_id = db.Column(db.String(64), nullable=False)
    authorized_by_user_id = db.Column(db.String(64), nullable=True)
    delegate_user_id = db.Column(db.String(64), nullable=True)

    previous_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=False)
    status_reason = db.Column(db.Text, nullable=True)

    approval_level = db.Column(db.Integer, nullable=False)
    required_approvals = db.Column(db.Integer, nullable=False)
    current_approvals = db.Column(db.Integer, nullable=False)

    data_requested = db.Column(db.JSON, nullable=True)
    access_granted = db.Column(db.JSON, nullable=True)
    access_conditions = db.Column(db.JSON, nullable=True)
    data_delivery_method = db.Column(db.String(50), nullable=True)

    security_clearance = db.Column(db.String(20), nullable=False)
    compliance_notes = db.Column(db.Text, nullable=True)
    risk_assessment = db.Column(db.JSON, nullable=False)

    business_justification = db.Column(db.Text, nullable=True)
    project_code = db.Column(db.String(64), nullable=True)
    contract_id = db.Column(db.String(64), nullable=True)
    cost_center = db.Column(db.String(64), nullable=True)

    ip_address = db.Column(db.String(45), nullable=False)
    user_agent = db.Column(db.String(500), nullable=True)
    session_id = db.Column(db.String(128), nullable=True)
    request_metadata = db.Column(db.JSON, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "action_type": self.action_type,
            "action_status": self.action_status,
            "performed_by_user_id": self.performed_by_user_id,
            "authorized_by_user_id": self.authorized_by_user_id,
            "delegate_user_id": self.delegate_user_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "status_reason": self.status_reason,
            "approval_level": self.approval_level,
            "required_approvals": self.required_approvals,
            "current_approvals": self.current_approvals,
            "data_requested": self.data_requested,
            "access_granted": self.access_granted,
            "access_conditions": self.access_conditions,
            "data_delivery_method": self.data_delivery_method,
            "security_clearance": self.security_clearance,
            "compliance_notes": self.compliance_notes,
            "risk_assessment": self.risk_assessment or {},
            "business_justification": self.business_justification,
            "project_code": self.project_code,
            "contract_id": self.contract_id,
            "cost_center": self.cost_center,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "session_id": self.session_id,
            "request_metadata": self.request_metadata or {},
            "chain_position": self.chain_position,
            "previous_hash": self.previous_hash,
            "integrity_hash": self.integrity_hash,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<RequestActionAuditLog {self.id}: {self.request_id} {self.action_type} → {self.new_status}>"


make_immutable(RequestActionAuditLog)
