"""
ComplianceAuditLogRepository — immutable compliance event trail.

Every write goes through ``create``: enum and range checks, chain + seal,
append, commit.  Rows are never updated or deleted (ORM guards in
models/base.py).

Rules:
  - db.session.commit() happens only in the service layer.
  - Date-range filters apply only when both bounds are given (inclusive).
  - Report formats: ISO_27001 (filters on the ISO_27001 flag) and
    PP_NO_5_2021 (filters on PP_NO_5_2021_MIGAS).
"""

import logging
from datetime import UTC, datetime

from flask import current_app
from sqlalchemy import func

from migas_audit.core.exceptions import ValidationError
from migas_audit.models import db
from migas_audit.models.compliance import (
    ACTION_EVENT_TYPES,
    AUDIT_EVENT_TYPES,
    DATA_CLASSIFICATIONS,
    DEFAULT_COMPLIANCE_FLAGS,
    HIGH_RISK_THRESHOLD,
    MEDIUM_RISK_THRESHOLD,
    SECURITY_LEVELS,
    ComplianceAuditLog,
)
from migas_audit.models.directory import user_summaries
from migas_audit.services.integrity_service import verify_record
from migas_audit.utils.helpers import as_identifier, ensure_utc

logger = logging.getLogger(__name__)

REPORT_FORMATS = {
    "ISO_27001": {
        "flag": "ISO_27001",
        "title": "ISO/IEC 27001:2013 Information Security Management",
    },
    "PP_NO_5_2021": {
        "flag": "PP_NO_5_2021_MIGAS",
        "title": "PP No. 5/2021 tentang Pengelolaan Data Migas",
    },
}


def _utcnow():
    return datetime.now(UTC)


def default_compliance_flags() -> list:
    return list(current_app.config.get("COMPLIANCE_FLAGS_DEFAULT", DEFAULT_COMPLIANCE_FLAGS))


def flag_filter(column, flag):
    """Membership test on a JSON list column, portable across SQLite/PostgreSQL."""
    return db.cast(column, db.String).like(f'%"{flag}"%')


def severity_for(risk_score: int) -> str:
    if risk_score > HIGH_RISK_THRESHOLD:
        return "high"
    if risk_score > MEDIUM_RISK_THRESHOLD:
        return "medium"
    return "low"


def integrity_summary(rows) -> dict:
    """Verify *rows* and summarise; the rate is 100 when nothing was checked."""
    passed = sum(1 for r in rows if verify_record(r))
    total = len(rows)
    return {
        "verified": total,
        "passed": passed,
        "failed": total - passed,
        "rate": round(passed / total * 100, 2) if total else 100.0,
    }


def validate_period(start, end):
    if start is None or end is None:
        raise ValidationError("Both start and end dates are required")
    start, end = ensure_utc(start), ensure_utc(end)
    if start >= end:
        raise ValidationError(
            "Start date must be before end date",
            details={"start": start.isoformat(), "end": end.isoformat()},
        )
    return start, end


class ComplianceAuditLogRepository:
    """Append-only access to ``compliance_audit_logs``."""

    def create(self, **fields) -> ComplianceAuditLog:
        """Validate, chain, hash and persist one compliance event."""
        if "metadata" in fields:
            fields["event_metadata"] = fields.pop("metadata")
        for key in ("user_id", "entity_id", "session_id", "resource_id", "contract_id"):
            if key in fields:
                fields[key] = as_identifier(fields[key])

        errors = {}
        if not fields.get("action"):
            errors["action"] = "required"
        if not fields.get("entity_type"):
            errors["entity_type"] = "required"
        if fields.get("event_type") not in AUDIT_EVENT_TYPES:
            errors["event_type"] = f"must be one of {sorted(AUDIT_EVENT_TYPES)}"
        level = fields.get("security_level")
        if level is not None and level not in SECURITY_LEVELS:
            errors["security_level"] = f"must be one of {sorted(SECURITY_LEVELS)}"
        classification = fields.get("data_classification")
        if classification is not None and classification not in DATA_CLASSIFICATIONS:
            errors["data_classification"] = f"must be one of {sorted(DATA_CLASSIFICATIONS)}"
        risk = fields.get("risk_score")
        if risk is not None:
            if isinstance(risk, bool) or not isinstance(risk, int) or not 0 <= risk <= 100:
                errors["risk_score"] = "must be an integer 0-100"
        if errors:
            raise ValidationError("Invalid compliance audit event", details=errors)

        if fields.get("compliance_flags") is None:
            fields["compliance_flags"] = default_compliance_flags()

        log = ComplianceAuditLog(**fields).append()
        logger.info(
            "Compliance event %s logged: id=%s entity=%s/%s user=%s",
            log.event_type, log.id, log.entity_type, log.entity_id, log.user_id,
        )
        return log

    # ── Convenience writers ──────────────────────────────────────────────

    def log_resource_upload(self, user_id, resource_id, file_name, file_size, file_hash,
                            session_id=None, ip_address=None, user_agent=None):
        return self.create(
            event_type="RESOURCE_UPLOAD",
            action="RESOURCE_UPLOAD",
            entity_type="Resource",
            entity_id=resource_id,
            user_id=user_id,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
            resource_id=resource_id,
            file_name=file_name,
            file_size=file_size,
            file_hash=file_hash,
            security_level="CONFIDENTIAL",
            data_classification="CONFIDENTIAL",
            metadata={
                "uploaded_at": _utcnow().isoformat(),
                "virus_scanned": False,
                "encrypted": True,
                "action": "file_upload",
                "source": "web_interface",
            },
        )

    def log_request_action(self, user_id, request_id, action, previous_state, current_state,
                           session_id=None, ip_address=None, user_agent=None, contract_id=None):
        event_type = ACTION_EVENT_TYPES.get((action or "").lower(), "SYSTEM_CONFIGURATION")
        return self.create(
            event_type=event_type,
            action=action,
            entity_type="Request",
            entity_id=request_id,
            user_id=user_id,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
            contract_id=contract_id,
            previous_state=previous_state,
            current_state=current_state,
            change_reason=f"User {action} request",
            security_level="INTERNAL",
            data_classification="INTERNAL",
            metadata={
                "action_performed_at": _utcnow().isoformat(),
                "workflow_step": action,
                "source": "portal",
            },
        )

    def log_security_incident(self, event_type, action, user_id, details, risk_score,
                              ip_address=None):
        log = self.create(
            event_type=event_type,
            action=action,
            entity_type="Security",
            entity_id=None,
            user_id=user_id,
            ip_address=ip_address,
            security_level="SECRET",
            data_classification="RESTRICTED",
            risk_score=risk_score,
            compliance_flags=["SECURITY_INCIDENT", *default_compliance_flags()],
            error_details=details,
            metadata={
                "incident_type": "security_violation",
                "severity": severity_for(risk_score),
                "reported_at": _utcnow().isoformat(),
            },
        )
        logger.warning(
            "Security incident %s (risk=%s) from %s",
            event_type, risk_score, ip_address or "unknown",
            extra={"event_type": event_type},
        )
        return log

    # ── Queries ──────────────────────────────────────────────────────────

    def find_with_filters(self, event_type=None, user_id=None, entity_type=None,
                          security_level=None, start_date=None, end_date=None,
                          compliance_flag=None, limit=100, offset=0):
        q = ComplianceAuditLog.query
        if event_type:
            q = q.filter(ComplianceAuditLog.event_type == event_type)
        if user_id:
            q = q.filter(ComplianceAuditLog.user_id == user_id)
        if entity_type:
            q = q.filter(ComplianceAuditLog.entity_type == entity_type)
        if security_level:
            q = q.filter(ComplianceAuditLog.security_level == security_level)
        if start_date and end_date:
            q = q.filter(
                ComplianceAuditLog.timestamp >= ensure_utc(start_date),
                ComplianceAuditLog.timestamp <= ensure_utc(end_date),
            )
        if compliance_flag:
            q = q.filter(flag_filter(ComplianceAuditLog.compliance_flags, compliance_flag))
        return (
            q.order_by(ComplianceAuditLog.timestamp.desc(), ComplianceAuditLog.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def get_compliance_statistics(self, start_date, end_date) -> dict:
        start, end = ensure_utc(start_date), ensure_utc(end_date)
        in_period = (
            ComplianceAuditLog.timestamp >= start,
            ComplianceAuditLog.timestamp <= end,
        )

        total = ComplianceAuditLog.query.filter(*in_period).count()
        by_type = dict(
            db.session.query(ComplianceAuditLog.event_type, func.count(ComplianceAuditLog.id))
            .filter(*in_period)
            .group_by(ComplianceAuditLog.event_type)
            .all()
        )
        incidents = ComplianceAuditLog.query.filter(
            *in_period, flag_filter(ComplianceAuditLog.compliance_flags, "SECURITY_INCIDENT"),
        ).count()
        avg_risk = (
            db.session.query(func.avg(ComplianceAuditLog.risk_score))
            .filter(*in_period, ComplianceAuditLog.risk_score.isnot(None))
            .scalar()
        )
        high_risk = ComplianceAuditLog.query.filter(
            *in_period, ComplianceAuditLog.risk_score > HIGH_RISK_THRESHOLD,
        ).count()

        return {
            "total_events": total,
            "events_by_type": by_type,
            "security_incidents": incidents,
            "average_risk_score": round(float(avg_risk), 2) if avg_risk is not None else 0.0,
            "high_risk_events": high_risk,
            "period": {"start": start.isoformat(), "end": end.isoformat()},
        }

    def verify_log_integrity(self, log_id) -> bool:
        log = db.session.get(ComplianceAuditLog, log_id)
        if log is None:
            return False
        ok = verify_record(log)
        if not ok:
            logger.warning("Compliance audit log %s failed integrity verification", log_id)
        return ok

    # ── Reporting ────────────────────────────────────────────────────────

    def generate_compliance_report(self, start_date, end_date, format="ISO_27001") -> dict:
        """
        Build an auditor-facing report for the period.

        Sections: report_metadata, summary (statistics), audit_logs (one entry
        per event with ``integrity_verified``) and integrity_summary.
        """
        start, end = validate_period(start_date, end_date)
        report_format = REPORT_FORMATS.get(format)
        if report_format is None:
            raise ValidationError(
                f"Unknown report format '{format}'",
                details={"valid_formats": sorted(REPORT_FORMATS)},
            )

        max_rows = current_app.config.get("AUDIT_REPORT_MAX_ROWS", 10000)
        logs = self.find_with_filters(
            start_date=start, end_date=end, compliance_flag=report_format["flag"], limit=max_rows,
        )
        users = user_summaries(log.user_id for log in logs)

        entries = []
        for log in logs:
            user = users.get(log.user_id)
            entries.append({
                "id": log.id,
                "timestamp": log.timestamp.isoformat() if log.timestamp else None,
                "event_type": log.event_type,
                "action": log.action,
                "user": (
                    {"id": user["id"], "name": user["name"], "role": user["role"]}
                    if user else None
                ),
                "entity_type": log.entity_type,
                "entity_id": log.entity_id,
                "security_level": log.security_level,
                "data_classification": log.data_classification,
                "risk_score": log.risk_score,
                "integrity_verified": verify_record(log),
            })

        logger.info("Compliance report %s generated: %d events", format, len(entries))
        return {
            "report_metadata": {
                "generated_at": _utcnow().isoformat(),
                "format": format,
                "period": {"start": start.isoformat(), "end": end.isoformat()},
                "compliance": report_format["title"],
            },
            "summary": self.get_compliance_statistics(start, end),
            "audit_logs": entries,
            "integrity_summary": integrity_summary(logs),
        }
