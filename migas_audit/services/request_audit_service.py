"""
RequestActionAuditLogRepository — workflow trail of data requests.

    SUBMIT   None     → pending
    APPROVE  pending  → approved
    REJECT   pending  → rejected
    DELIVER  approved → delivered

The current status of a request is the ``new_status`` of its latest row.
``previous_status`` is always read from the log, never taken from callers.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import func, or_

from migas_audit.core.exceptions import (
    InvalidTransitionError,
    ValidationError,
)
from migas_audit.models import db
from migas_audit.models.directory import user_summaries
from migas_audit.models.request_audit import (
    REQUEST_ACTION_STATUSES,
    REQUEST_ACTION_TYPES,
    REQUEST_STATUSES,
    REQUEST_TRANSITIONS,
    RequestActionAuditLog,
)
from migas_audit.services.compliance_audit_service import (
    integrity_summary,
    validate_period,
)
from migas_audit.services.integrity_service import verify_record
from migas_audit.utils.helpers import as_identifier, ensure_utc

logger = logging.getLogger(__name__)

RequestLog = RequestActionAuditLog


def _utcnow():
    return datetime.now(UTC)


def _group_counts(column, *criteria, keys=None) -> dict:
    counts = dict(
        db.session.query(column, func.count(RequestLog.id))
        .filter(*criteria)
        .group_by(column)
        .all()
    )
    if keys is None:
        return counts
    return {key: counts.get(key, 0) for key in sorted(keys)}


class RequestActionAuditLogRepository:
    """Append-only access to ``request_action_audit_logs``."""

    def _record(self, request_id, action_type, performed_by_user_id, **fields):
        request_id = as_identifier(request_id)
        performed_by_user_id = as_identifier(performed_by_user_id)
        for key in ("authorized_by_user_id", "delegate_user_id"):
            if key in fields:
                fields[key] = as_identifier(fields[key])
        if not request_id:
            raise ValidationError("request_id is required", details={"request_id": "required"})
        if not performed_by_user_id:
            raise ValidationError(
                "performed_by_user_id is required", details={"performed_by_user_id": "required"},
            )

        current = self.get_current_status(request_id)
        rule = REQUEST_TRANSITIONS[action_type]
        if current not in rule["from"]:
            raise InvalidTransitionError("Request", request_id, action_type, current)

        log = RequestLog(
            request_id=request_id,
            action_type=action_type,
            performed_by_user_id=performed_by_user_id,
            previous_status=current,
            new_status=rule["to"],
            **fields,
        ).append()

        logger.info(
            "Request %s: %s by %s (%s → %s)",
            request_id, action_type, performed_by_user_id, current, log.new_status,
        )
        return log

    # ── Workflow writers ─────────────────────────────────────────────────

    def log_request_submission(self, request_id, performed_by_user_id, data_requested,
                               business_justification=None, project_code=None,
                               contract_id=None, ip_address=None, user_agent=None,
                               session_id=None):
        now = _utcnow().isoformat()
        return self._record(
            request_id, "SUBMIT", performed_by_user_id,
            status_reason="Request submitted for review",
            approval_level=1,
            required_approvals=1,
            current_approvals=0,
            data_requested=data_requested,
            security_clearance="INTERNAL",
            compliance_notes="Request submitted through portal",
            risk_assessment={
                "risk_level": "low",
                "data_classification": "internal",
                "assessed_at": now,
            },
            business_justification=business_justification,
            project_code=project_code,
            contract_id=contract_id,
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            request_metadata={"submission_method": "web_portal", "submitted_at": now},
        )

    def log_request_approval(self, request_id, performed_by_user_id, authorized_by_user_id=None,
                             approval_conditions=None, ip_address=None, user_agent=None,
                             session_id=None):
        now = _utcnow().isoformat()
        conditions = approval_conditions or {}
        return self._record(
            request_id, "APPROVE", performed_by_user_id,
            authorized_by_user_id=authorized_by_user_id,
            status_reason="Request approved by authorized user",
            approval_level=1,
            required_approvals=1,
            current_approvals=1,
            access_granted=conditions.get("access_granted"),
            access_conditions=approval_conditions,
            data_delivery_method=conditions.get("delivery_method") or "secure_download",
            security_clearance="CONFIDENTIAL",
            compliance_notes="Request approved with standard conditions",
            risk_assessment={
                "risk_level": "assessed",
                "approved_data_access": True,
                "assessed_at": now,
            },
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            request_metadata={"approval_method": "web_portal", "approved_at": now},
        )

    def log_request_rejection(self, request_id, performed_by_user_id, rejection_reason,
                              ip_address=None, user_agent=None, session_id=None):
        if not rejection_reason or not str(rejection_reason).strip():
            raise ValidationError(
                "A rejection reason is required", details={"rejection_reason": "required"},
            )
        now = _utcnow().isoformat()
        return self._record(
            request_id, "REJECT", performed_by_user_id,
            status_reason=rejection_reason,
            approval_level=0,
            required_approvals=1,
            current_approvals=0,
            security_clearance="INTERNAL",
            compliance_notes=f"Request rejected: {rejection_reason}",
            risk_assessment={
                "risk_level": "rejected",
                "rejection_reason": rejection_reason,
                "assessed_at": now,
            },
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            request_metadata={"rejection_method": "web_portal", "rejected_at": now},
        )

    def log_data_delivery(self, request_id, performed_by_user_id, data_delivered,
                          delivery_method, ip_address=None, user_agent=None, session_id=None):
        if not data_delivered or not delivery_method:
            raise ValidationError(
                "data_delivered and delivery_method are required",
                details={"data_delivered": bool(data_delivered), "delivery_method": delivery_method},
            )
        now = _utcnow().isoformat()
        size = data_delivered.get("size", 0) if isinstance(data_delivered, dict) else 0
        return self._record(
            request_id, "DELIVER", performed_by_user_id,
            status_reason="Data delivered to requester",
            approval_level=1,
            required_approvals=1,
            current_approvals=1,
            access_granted=data_delivered,
            access_conditions={"delivered_at": now, "delivery_method": delivery_method},
            data_delivery_method=delivery_method,
            security_clearance="CONFIDENTIAL",
            compliance_notes="Data successfully delivered to authorized requester",
            risk_assessment={
                "risk_level": "delivered",
                "data_transferred": True,
                "assessed_at": now,
            },
            ip_address=ip_address,
            user_agent=user_agent,
            session_id=session_id,
            request_metadata={
                "delivery_method": delivery_method,
                "delivered_at": now,
                "delivery_size": size,
            },
        )

    # ── Queries ──────────────────────────────────────────────────────────

    def get_current_status(self, request_id):
        """``new_status`` of the latest row, or None for an unknown request."""
        return (
            db.session.query(RequestLog.new_status)
            .filter(RequestLog.request_id == request_id)
            .order_by(RequestLog.id.desc())
            .limit(1)
            .scalar()
        )

    def find_by_request_id(self, request_id, limit=50):
        return (
            RequestLog.query.filter(RequestLog.request_id == request_id)
            .order_by(RequestLog.timestamp.desc(), RequestLog.id.desc())
            .limit(limit)
            .all()
        )

    def find_by_user_id(self, user_id, limit=100):
        return (
            RequestLog.query.filter(or_(
                RequestLog.performed_by_user_id == user_id,
                RequestLog.authorized_by_user_id == user_id,
                RequestLog.delegate_user_id == user_id,
            ))
            .order_by(RequestLog.timestamp.desc(), RequestLog.id.desc())
            .limit(limit)
            .all()
        )

    def get_request_statistics(self, start_date, end_date) -> dict:
        start, end = ensure_utc(start_date), ensure_utc(end_date)
        in_period = (RequestLog.timestamp >= start, RequestLog.timestamp <= end)

        # status of each request as of its last action inside the period
        latest = (
            db.session.query(func.max(RequestLog.id).label("id"))
            .filter(*in_period)
            .group_by(RequestLog.request_id)
            .subquery()
        )
        by_request_status = dict(
            db.session.query(RequestLog.new_status, func.count(RequestLog.id))
            .join(latest, RequestLog.id == latest.c.id)
            .group_by(RequestLog.new_status)
            .all()
        )
        return {
            "total_actions": RequestLog.query.filter(*in_period).count(),
            "actions_by_type": _group_counts(
                RequestLog.action_type, *in_period, keys=REQUEST_ACTION_TYPES,
            ),
            "actions_by_status": _group_counts(
                RequestLog.action_status, *in_period, keys=REQUEST_ACTION_STATUSES,
            ),
            "requests_by_status": {
                status: by_request_status.get(status, 0) for status in sorted(REQUEST_STATUSES)
            },
            "security_clearance_distribution": _group_counts(RequestLog.security_clearance, *in_period),
            "period": {"start": start.isoformat(), "end": end.isoformat()},
        }

    def verify_request_log_integrity(self, log_id) -> bool:
        log = db.session.get(RequestLog, log_id)
        if log is None:
            return False
        ok = verify_record(log)
        if not ok:
            logger.warning("Request audit log %s failed integrity verification", log_id)
        return ok

    # ── Reporting ────────────────────────────────────────────────────────

    def generate_request_compliance_report(self, start_date, end_date) -> dict:
        start, end = validate_period(start_date, end_date)
        logs = (
            RequestLog.query.filter(RequestLog.timestamp >= start, RequestLog.timestamp <= end)
            .order_by(RequestLog.timestamp.desc(), RequestLog.id.desc())
            .all()
        )
        users = user_summaries(
            uid for log in logs for uid in (log.performed_by_user_id, log.authorized_by_user_id)
        )

        logger.info("Request compliance report generated: %d actions", len(logs))
        return {
            "report_metadata": {
                "generated_at": _utcnow().isoformat(),
                "report_type": "Request Action Compliance Report",
                "period": {"start": start.isoformat(), "end": end.isoformat()},
                "compliance": ["ISO_27001", "PP_NO_5_2021_MIGAS"],
            },
            "statistics": self.get_request_statistics(start, end),
            "request_actions": [
                {
                    "id": log.id,
                    "request_id": log.request_id,
                    "action_type": log.action_type,
                    "action_status": log.action_status,
                    "performed_by": users.get(log.performed_by_user_id),
                    "authorized_by": users.get(log.authorized_by_user_id),
                    "previous_status": log.previous_status,
                    "new_status": log.new_status,
                    "status_reason": log.status_reason,
                    "security_clearance": log.security_clearance,
                    "timestamp": log.timestamp.isoformat() if log.timestamp else None,
                    "integrity_verified": verify_record(log),
                }
                for log in logs
            ],
            "integrity_summary": integrity_summary(logs),
        }
