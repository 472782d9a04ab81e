"""
Migas Compliance Audit & License Service
Audit blueprint — compliance events, resource uploads, request workflow.

Endpoints:
    GET  /api/v1/audit/compliance                     — filtered compliance events
    POST /api/v1/audit/compliance                     — record a compliance event
    GET  /api/v1/audit/compliance/<id>/verify         — integrity check of one event
    GET  /api/v1/audit/compliance/report              — ISO 27001 / PP 5/2021 report
    POST /api/v1/audit/compliance/report              — report with options
    GET  /api/v1/audit/uploads                        — uploads by resource/user/status, or stats
    POST /api/v1/audit/uploads                        — open an upload
    POST /api/v1/audit/uploads/<upload_id>/progress   — progress / status change
    POST /api/v1/audit/uploads/<upload_id>/complete   — close with security checks
    POST /api/v1/audit/uploads/<upload_id>/fail       — close as FAILED
    GET  /api/v1/audit/uploads/<upload_id>/history    — every row of one upload
    GET  /api/v1/audit/uploads/report                 — upload compliance report
    GET  /api/v1/audit/requests                       — request actions or stats
    POST /api/v1/audit/requests                       — submit / approve / reject / deliver
    GET  /api/v1/audit/requests/report                — request compliance report
    GET  /api/v1/audit/integrity                      — full hash-chain walk
"""

import logging

from flask import Blueprint, jsonify, request

from migas_audit.blueprints import limit_offset, register_error_handlers
from migas_audit.models import db
from migas_audit.models.compliance import ComplianceAuditLog
from migas_audit.models.request_audit import REQUEST_ACTION_TYPES, RequestActionAuditLog
from migas_audit.models.upload_audit import ResourceUploadAuditLog
from migas_audit.services.compliance_audit_service import (
    ComplianceAuditLogRepository,
    integrity_summary,
)
from migas_audit.services.integrity_service import verify_chain
from migas_audit.services.request_audit_service import RequestActionAuditLogRepository
from migas_audit.services.upload_audit_service import ResourceUploadAuditLogRepository
from migas_audit.utils.errors import E, api_error
from migas_audit.utils.helpers import client_info, parse_datetime

logger = logging.getLogger(__name__)

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")
register_error_handlers(audit_bp)

compliance_repo = ComplianceAuditLogRepository()
upload_repo = ResourceUploadAuditLogRepository()
request_repo = RequestActionAuditLogRepository()

# Client-supplied fields accepted on POST /audit/compliance
_COMPLIANCE_FIELDS = (
    "event_type", "action", "entity_type", "entity_id", "user_id",
    "resource_id", "contract_id", "file_name", "file_size", "file_hash",
    "previous_state", "current_state", "change_reason",
    "security_level", "data_classification", "risk_score",
    "compliance_flags", "error_details", "metadata",
)

INTEGRITY_SAMPLE_SIZE = 100


def _period(source):
    """Read start_date / end_date from a dict-like source.

    Returns (start, end, error_response); error_response is None when both
    dates parsed.
    """
    raw_start, raw_end = source.get("start_date"), source.get("end_date")
    if not raw_start or not raw_end:
        return None, None, api_error(E.VALIDATION_REQUIRED, "start_date and end_date are required")
    start, end = parse_datetime(raw_start), parse_datetime(raw_end)
    if start is None or end is None:
        return None, None, api_error(
            E.VALIDATION_INVALID, "start_date and end_date must be ISO-8601 dates",
        )
    if start >= end:
        return None, None, api_error(E.VALIDATION_INVALID, "start_date must be before end_date")
    return start, end, None


def _json_body():
    return request.get_json(silent=True) or {}


# ═════════════════════════════════════════════════════════════════════════════
# Compliance events
# ═════════════════════════════════════════════════════════════════════════════

@audit_bp.route("/audit/compliance", methods=["GET"])
def list_compliance_logs():
    """
    Query params:
        event_type, user_id, entity_type, security_level, compliance_flag,
        start_date + end_date (both required for a period filter),
        limit (default 100, max 1000), offset
    """
    limit, offset = limit_offset(default_limit=100)
    start = parse_datetime(request.args.get("start_date"))
    end = parse_datetime(request.args.get("end_date"))

    # One extra row tells us whether another page exists
    logs = compliance_repo.find_with_filters(
        event_type=request.args.get("event_type"),
        user_id=request.args.get("user_id"),
        entity_type=request.args.get("entity_type"),
        security_level=request.args.get("security_level"),
        compliance_flag=request.args.get("compliance_flag"),
        start_date=start,
        end_date=end,
        limit=limit + 1,
        offset=offset,
    )
    has_more = len(logs) > limit
    logs = logs[:limit]

    return jsonify({
        "audit_logs": [log.to_dict() for log in logs],
        "pagination": {
            "limit": limit,
            "offset": offset,
            "count": len(logs),
            "has_more": has_more,
        },
    })


@audit_bp.route("/audit/compliance", methods=["POST"])
def create_compliance_log():
    data = _json_body()
    fields = {key: data[key] for key in _COMPLIANCE_FIELDS if key in data}
    fields.setdefault("security_level", "INTERNAL")
    fields.setdefault("data_classification", "INTERNAL")
    fields.update(client_info())

    log = compliance_repo.create(**fields)
    return jsonify(log.to_dict()), 201


@audit_bp.route("/audit/compliance/<int:log_id>/verify", methods=["GET"])
def verify_compliance_log(log_id):
    if db.session.get(ComplianceAuditLog, log_id) is None:
        return api_error(E.NOT_FOUND, f"Compliance audit log {log_id} not found")
    return jsonify({
        "log_id": log_id,
        "integrity_verified": compliance_repo.verify_log_integrity(log_id),
    })


@audit_bp.route("/audit/compliance/report", methods=["GET"])
def compliance_report():
    start, end, err = _period(request.args)
    if err:
        return err
    report = compliance_repo.generate_compliance_report(
        start, end, request.args.get("format", "ISO_27001"),
    )
    return jsonify(report)


@audit_bp.route("/audit/compliance/report", methods=["POST"])
def compliance_report_with_options():
    """
    Body:
        start_date, end_date       — required
        format                     — ISO_27001 (default) | PP_NO_5_2021
        include_statistics         — keep the summary section (default true)
        include_integrity_check    — re-verify a sample of the period's events
    """
    data = _json_body()
    start, end, err = _period(data)
    if err:
        return err

    report = compliance_repo.generate_compliance_report(start, end, data.get("format", "ISO_27001"))
    if not data.get("include_statistics", True):
        report.pop("summary", None)
    if data.get("include_integrity_check"):
        sample = compliance_repo.find_with_filters(
            start_date=start, end_date=end, limit=INTEGRITY_SAMPLE_SIZE,
        )
        report["integrity_check"] = integrity_summary(sample)
    return jsonify(report)


# ═════════════════════════════════════════════════════════════════════════════
# Resource uploads
# ═════════════════════════════════════════════════════════════════════════════

@audit_bp.route("/audit/uploads", methods=["GET"])
def list_uploads():
    """
    Exactly one selector:
        resource_id | user_id | upload_status (optionally with a period)
        | start_date + end_date → statistics and high-risk uploads
    """
    limit, _ = limit_offset()
    resource_id = request.args.get("resource_id")
    user_id = request.args.get("user_id")
    status = request.args.get("upload_status")

    if resource_id:
        uploads = upload_repo.find_by_resource_id(resource_id, limit=limit)
    elif user_id:
        uploads = upload_repo.find_by_user_id(user_id, limit=limit)
    elif status:
        uploads = upload_repo.find_by_status(
            status,
            parse_datetime(request.args.get("start_date")),
            parse_datetime(request.args.get("end_date")),
            limit=limit,
        )
    elif request.args.get("start_date") or request.args.get("end_date"):
        start, end, err = _period(request.args)
        if err:
            return err
        high_risk = upload_repo.find_high_risk_uploads(start, end)
        return jsonify({
            "statistics": upload_repo.get_upload_statistics(start, end),
            "high_risk_uploads": [u.to_dict() for u in high_risk],
        })
    else:
        return api_error(
            E.VALIDATION_REQUIRED,
            "Provide resource_id, user_id, upload_status or start_date and end_date",
        )

    return jsonify({"uploads": [u.to_dict() for u in uploads], "count": len(uploads)})


@audit_bp.route("/audit/uploads", methods=["POST"])
def initiate_upload():
    data = _json_body()
    info = client_info()
    row = upload_repo.log_upload_initiated(
        user_id=data.get("user_id"),
        resource_id=data.get("resource_id"),
        original_file_name=data.get("original_file_name"),
        file_size=data.get("file_size"),
        file_type=data.get("file_type"),
        mime_type=data.get("mime_type"),
        ip_address=info["ip_address"],
        user_agent=info["user_agent"],
        business_justification=data.get("business_justification"),
        project_code=data.get("project_code"),
        contract_id=data.get("contract_id"),
    )
    return jsonify(row.to_dict()), 201


@audit_bp.route("/audit/uploads/<upload_id>/progress", methods=["POST"])
def upload_progress(upload_id):
    data = _json_body()
    row = upload_repo.update_upload_progress(upload_id, data.get("progress"), data.get("status"))
    return jsonify(row.to_dict())


@audit_bp.route("/audit/uploads/<upload_id>/complete", methods=["POST"])
def complete_upload(upload_id):
    data = _json_body()
    row = upload_repo.log_upload_completed(
        upload_id,
        final_file_hash=data.get("final_file_hash"),
        virus_scan_result=data.get("virus_scan_result"),
        encryption_status=data.get("encryption_status"),
        validation_result=data.get("validation_result"),
        validation_errors=data.get("validation_errors"),
    )
    return jsonify(row.to_dict())


@audit_bp.route("/audit/uploads/<upload_id>/fail", methods=["POST"])
def fail_upload(upload_id):
    row = upload_repo.log_upload_failed(upload_id, _json_body().get("reason"))
    return jsonify(row.to_dict())


@audit_bp.route("/audit/uploads/<upload_id>/history", methods=["GET"])
def upload_history(upload_id):
    rows = upload_repo.get_upload_history(upload_id)
    return jsonify({
        "upload_id": upload_id,
        "current_status": rows[-1].upload_status,
        "history": [r.to_dict() for r in rows],
    })


@audit_bp.route("/audit/uploads/report", methods=["GET"])
def upload_report():
    start, end, err = _period(request.args)
    if err:
        return err
    return jsonify(upload_repo.generate_upload_compliance_report(start, end))


# ═════════════════════════════════════════════════════════════════════════════
# Request workflow
# ═════════════════════════════════════════════════════════════════════════════

@audit_bp.route("/audit/requests", methods=["GET"])
def list_request_actions():
    request_id = request.args.get("request_id")
    user_id = request.args.get("user_id")

    if request_id:
        actions = request_repo.find_by_request_id(request_id)
        return jsonify({
            "request_id": request_id,
            "current_status": request_repo.get_current_status(request_id),
            "actions": [a.to_dict() for a in actions],
        })
    if user_id:
        actions = request_repo.find_by_user_id(user_id)
        return jsonify({"actions": [a.to_dict() for a in actions], "count": len(actions)})
    if request.args.get("start_date") or request.args.get("end_date"):
        start, end, err = _period(request.args)
        if err:
            return err
        return jsonify({"statistics": request_repo.get_request_statistics(start, end)})

    return api_error(
        E.VALIDATION_REQUIRED, "Provide request_id, user_id or start_date and end_date",
    )


@audit_bp.route("/audit/requests", methods=["POST"])
def record_request_action():
    """
    Body:
        action_type            — submit | approve | reject | deliver
        request_id             — required
        performed_by_user_id   — required
        submit:  data_requested, business_justification, project_code, contract_id
        approve: authorized_by_user_id, approval_conditions
        reject:  rejection_reason
        deliver: data_delivered, delivery_method
    """
    data = _json_body()
    action_type = (data.get("action_type") or "").lower()
    request_id = data.get("request_id")
    performer = data.get("performed_by_user_id")

    missing = [k for k, v in (("request_id", request_id), ("performed_by_user_id", performer)) if not v]
    if missing:
        return api_error(
            E.VALIDATION_REQUIRED, "Missing required fields", details={"missing": missing},
        )

    info = client_info()
    if action_type == "submit":
        row = request_repo.log_request_submission(
            request_id, performer,
            data_requested=data.get("data_requested"),
            business_justification=data.get("business_justification"),
            project_code=data.get("project_code"),
            contract_id=data.get("contract_id"),
            **info,
        )
    elif action_type == "approve":
        row = request_repo.log_request_approval(
            request_id, performer,
            authorized_by_user_id=data.get("authorized_by_user_id"),
            approval_conditions=data.get("approval_conditions"),
            **info,
        )
    elif action_type == "reject":
        row = request_repo.log_request_rejection(
            request_id, performer, data.get("rejection_reason"), **info,
        )
    elif action_type == "deliver":
        row = request_repo.log_data_delivery(
            request_id, performer,
            data_delivered=data.get("data_delivered"),
            delivery_method=data.get("delivery_method"),
            **info,
        )
    else:
        return api_error(
            E.VALIDATION_INVALID,
            f"Unknown action_type '{data.get('action_type')}'",
            details={"valid_actions": sorted(a.lower() for a in REQUEST_ACTION_TYPES)},
        )

    return jsonify(row.to_dict()), 201


@audit_bp.route("/audit/requests/report", methods=["GET"])
def request_report():
    start, end, err = _period(request.args)
    if err:
        return err
    return jsonify(request_repo.generate_request_compliance_report(start, end))


# ═════════════════════════════════════════════════════════════════════════════
# Hash chains
# ═════════════════════════════════════════════════════════════════════════════

@audit_bp.route("/audit/integrity", methods=["GET"])
def verify_integrity():
    reports = [
        verify_chain(model)
        for model in (ComplianceAuditLog, ResourceUploadAuditLog, RequestActionAuditLog)
    ]
    return jsonify({
        "verified": all(r.verified for r in reports),
        "tables": [r.to_dict() for r in reports],
    })
