"""
ResourceUploadAuditLogRepository — append-only upload lifecycle trail.

An upload is a sequence of immutable rows sharing ``upload_id``:

    #1 INITIATED → #2 IN_PROGRESS … → #n COMPLETED | FAILED | QUARANTINED

Each transition appends the next ``sequence`` instead of updating the
previous row, so every hash stays verifiable.  The latest row is the
current state; statistics, status filters and high-risk queries work on
latest states only.

Rules:
  - Transitions follow UPLOAD_TRANSITIONS; terminal uploads accept nothing.
  - Progress is 0-100 and never goes backwards.
  - An INFECTED virus scan quarantines the upload instead of completing it.
"""

import logging
import time
import uuid
from datetime import UTC, datetime

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError

from migas_audit.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from migas_audit.models import db
from migas_audit.models.directory import user_summaries
from migas_audit.models.upload_audit import (
    ENCRYPTION_STATUSES,
    TERMINAL_UPLOAD_STATUSES,
    UPLOAD_STATUSES,
    UPLOAD_TRANSITIONS,
    VALIDATION_STATUSES,
    VIRUS_SCAN_STATUSES,
    ResourceUploadAuditLog,
)
from migas_audit.services.compliance_audit_service import (
    integrity_summary,
    validate_period,
)
from migas_audit.services.integrity_service import verify_record
from migas_audit.utils.crypto import sha256_hex
from migas_audit.utils.helpers import UNKNOWN_IP, as_identifier, ensure_utc

logger = logging.getLogger(__name__)

Upload = ResourceUploadAuditLog


def _utcnow():
    return datetime.now(UTC)


def _check_choice(errors, name, value, choices):
    if value not in choices:
        errors[name] = f"must be one of {sorted(choices)}"


class ResourceUploadAuditLogRepository:
    """Append-only access to ``resource_upload_audit_logs``."""

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _latest_rows():
        """Query of the latest lifecycle row of every upload."""
        latest = (
            db.session.query(Upload.upload_id, func.max(Upload.sequence).label("max_seq"))
            .group_by(Upload.upload_id)
            .subquery()
        )
        return Upload.query.join(
            latest,
            and_(Upload.upload_id == latest.c.upload_id, Upload.sequence == latest.c.max_seq),
        )

    @staticmethod
    def _in_period(query, start, end):
        return query.filter(
            Upload.upload_start_time >= ensure_utc(start),
            Upload.upload_start_time <= ensure_utc(end),
        )

    def _append(self, current: Upload, new_status: str, **changes) -> Upload:
        allowed = set() if current.is_terminal else UPLOAD_TRANSITIONS.get(current.upload_status, set())
        if new_status not in allowed:
            raise InvalidTransitionError("Upload", current.upload_id, new_status, current.upload_status)

        fields = current.carried_fields()
        fields.update(changes)
        fields["upload_status"] = new_status
        fields["sequence"] = current.sequence + 1

        row = Upload(**fields)
        try:
            row.append()
        except IntegrityError:
            logger.warning("Concurrent append on upload %s seq=%s", current.upload_id, fields["sequence"])
            raise ConflictError("Upload", "sequence", f"{current.upload_id}#{fields['sequence']}")

        logger.info(
            "Upload %s: %s → %s (seq=%s, progress=%s)",
            row.upload_id, current.upload_status, new_status, row.sequence, row.upload_progress,
        )
        return row

    # ── Lifecycle writers ────────────────────────────────────────────────

    def log_upload_initiated(self, user_id, resource_id, original_file_name, file_size, file_type,
                             mime_type=None, ip_address=None, user_agent=None,
                             business_justification=None, project_code=None, contract_id=None):
        """Open a new upload; returns its INITIATED row."""
        user_id = as_identifier(user_id)
        resource_id = as_identifier(resource_id)
        errors = {}
        for name, value in (("user_id", user_id), ("resource_id", resource_id),
                            ("original_file_name", original_file_name), ("file_type", file_type)):
            if not value:
                errors[name] = "required"
        if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0:
            errors["file_size"] = "must be a non-negative integer"
        if errors:
            raise ValidationError("Invalid upload initiation", details=errors)

        epoch_ms = int(time.time() * 1000)
        row = Upload(
            upload_id=str(uuid.uuid4()),
            sequence=1,
            resource_id=resource_id,
            original_file_name=original_file_name,
            uploaded_file_name=f"{epoch_ms}-{original_file_name}",
            file_size=file_size,
            file_type=file_type,
            mime_type=mime_type,
            # provisional; replaced by the final content hash on completion
            file_hash=sha256_hex(f"{original_file_name}-{epoch_ms}"),
            upload_status="INITIATED",
            upload_progress=0,
            upload_start_time=_utcnow(),
            user_id=user_id,
            ip_address=ip_address or UNKNOWN_IP,
            user_agent=user_agent,
            data_classification="CONFIDENTIAL",
            business_justification=business_justification,
            project_code=project_code,
            contract_id=contract_id,
        ).append()
        logger.info(
            "Upload %s initiated by %s: %s (%s bytes) for resource %s",
            row.upload_id, user_id, original_file_name, file_size, resource_id,
        )
        return row

    def update_upload_progress(self, upload_id, progress, status=None):
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValidationError("progress must be an integer 0-100", details={"progress": progress})
        status = status or "IN_PROGRESS"
        if status not in UPLOAD_STATUSES:
            raise ValidationError(
                f"Unknown upload status '{status}'",
                details={"valid_statuses": sorted(UPLOAD_STATUSES)},
            )

        current = self.get_upload_state(upload_id)
        if progress < current.upload_progress:
            raise ValidationError(
                "Upload progress cannot go backwards",
                details={"current": current.upload_progress, "requested": progress},
            )

        changes = {"upload_progress": progress}
        if status in TERMINAL_UPLOAD_STATUSES:
            changes["upload_end_time"] = _utcnow()
        return self._append(current, status, **changes)

    def log_upload_completed(self, upload_id, final_file_hash, virus_scan_result,
                             encryption_status, validation_result, validation_errors=None):
        """Close the upload with its security checks.

        An INFECTED scan result closes the upload as QUARANTINED.
        """
        errors = {}
        if not final_file_hash:
            errors["final_file_hash"] = "required"
        _check_choice(errors, "virus_scan_result", virus_scan_result, VIRUS_SCAN_STATUSES)
        _check_choice(errors, "encryption_status", encryption_status, ENCRYPTION_STATUSES)
        _check_choice(errors, "validation_result", validation_result, VALIDATION_STATUSES)
        if errors:
            raise ValidationError("Invalid upload completion", details=errors)

        current = self.get_upload_state(upload_id)
        quarantined = virus_scan_result == "INFECTED"
        outcome = "failed" if quarantined or validation_result == "rejected" else "passed"
        now = _utcnow()

        row = self._append(
            current,
            "QUARANTINED" if quarantined else "COMPLETED",
            upload_progress=100,
            upload_end_time=now,
            file_hash=final_file_hash,
            virus_scan_status=virus_scan_result,
            encryption_status=encryption_status,
            validation_status=validation_result,
            validation_errors=validation_errors,
            status_reason="Virus detected during scan" if quarantined else None,
            compliance_checks={
                "data_sensitivity_check": outcome,
                "contract_compliance_check": outcome,
                "security_classification_check": outcome,
                "migas_regulation_check": outcome,
                "virus_scan_result": virus_scan_result,
                "encryption_result": encryption_status,
                "validation_result": validation_result,
                "completed_at": now.isoformat(),
            },
        )
        if quarantined:
            logger.warning("Upload %s quarantined: virus detected", upload_id)
        return row

    def log_upload_failed(self, upload_id, reason):
        if not reason:
            raise ValidationError("A failure reason is required", details={"reason": "required"})
        current = self.get_upload_state(upload_id)
        return self._append(
            current, "FAILED",
            upload_end_time=_utcnow(),
            status_reason=reason,
        )

    # ── Queries ──────────────────────────────────────────────────────────

    def get_upload_state(self, upload_id) -> Upload:
        row = (
            Upload.query.filter(Upload.upload_id == upload_id)
            .order_by(Upload.sequence.desc())
            .first()
        )
        if row is None:
            raise NotFoundError(resource="Upload", resource_id=upload_id)
        return row

    def get_upload_history(self, upload_id) -> list:
        rows = (
            Upload.query.filter(Upload.upload_id == upload_id)
            .order_by(Upload.sequence.asc())
            .all()
        )
        if not rows:
            raise NotFoundError(resource="Upload", resource_id=upload_id)
        return rows

    def find_by_resource_id(self, resource_id, limit=50):
        return (
            self._latest_rows()
            .filter(Upload.resource_id == resource_id)
            .order_by(Upload.timestamp.desc(), Upload.id.desc())
            .limit(limit)
            .all()
        )

    def find_by_user_id(self, user_id, limit=50):
        return (
            self._latest_rows()
            .filter(Upload.user_id == user_id)
            .order_by(Upload.timestamp.desc(), Upload.id.desc())
            .limit(limit)
            .all()
        )

    def find_by_status(self, status, start=None, end=None, limit=50):
        if status not in UPLOAD_STATUSES:
            raise ValidationError(
                f"Unknown upload status '{status}'",
                details={"valid_statuses": sorted(UPLOAD_STATUSES)},
            )
        q = self._latest_rows().filter(Upload.upload_status == status)
        if start and end:
            q = self._in_period(q, start, end)
        return q.order_by(Upload.timestamp.desc(), Upload.id.desc()).limit(limit).all()

    def get_upload_statistics(self, start_date, end_date) -> dict:
        """Counts over the current state of uploads started in the period."""
        start, end = ensure_utc(start_date), ensure_utc(end_date)
        latest = self._in_period(self._latest_rows(), start, end)

        counts = dict(
            latest.with_entities(Upload.upload_status, func.count(Upload.id))
            .group_by(Upload.upload_status)
            .all()
        )
        total = sum(counts.values())
        completed = counts.get("COMPLETED", 0)
        virus_detected = latest.filter(Upload.virus_scan_status == "INFECTED").count()

        return {
            "total_uploads": total,
            "completed_uploads": completed,
            "failed_uploads": counts.get("FAILED", 0),
            "quarantined_uploads": counts.get("QUARANTINED", 0),
            "in_flight_uploads": counts.get("INITIATED", 0) + counts.get("IN_PROGRESS", 0),
            "virus_detected": virus_detected,
            "success_rate": round(completed / total * 100, 2) if total else 0,
            "period": {"start": start.isoformat(), "end": end.isoformat()},
        }

    def find_high_risk_uploads(self, start_date, end_date) -> list:
        return (
            self._in_period(self._latest_rows(), start_date, end_date)
            .filter(or_(
                Upload.virus_scan_status == "INFECTED",
                Upload.upload_status == "QUARANTINED",
                Upload.validation_status == "rejected",
                Upload.data_classification == "TOP_SECRET",
            ))
            .order_by(Upload.timestamp.desc(), Upload.id.desc())
            .all()
        )

    def verify_upload_log_integrity(self, log_id) -> bool:
        row = db.session.get(Upload, log_id)
        if row is None:
            return False
        ok = verify_record(row)
        if not ok:
            logger.warning("Upload audit log %s failed integrity verification", log_id)
        return ok

    # ── Reporting ────────────────────────────────────────────────────────

    def generate_upload_compliance_report(self, start_date, end_date) -> dict:
        start, end = validate_period(start_date, end_date)
        statistics = self.get_upload_statistics(start, end)
        high_risk = self.find_high_risk_uploads(start, end)

        uploads = (
            self._in_period(self._latest_rows(), start, end)
            .order_by(Upload.timestamp.desc(), Upload.id.desc())
            .all()
        )
        trail = (
            Upload.query.filter(Upload.timestamp >= start, Upload.timestamp <= end)
            .order_by(Upload.id.asc())
            .all()
        )
        users = user_summaries(u.user_id for u in uploads)

        logger.info("Upload compliance report generated: %d uploads", len(uploads))
        return {
            "report_metadata": {
                "generated_at": _utcnow().isoformat(),
                "report_type": "Resource Upload Compliance Report",
                "period": {"start": start.isoformat(), "end": end.isoformat()},
                "compliance": ["ISO_27001", "PP_NO_5_2021_MIGAS"],
            },
            "statistics": statistics,
            "high_risk_uploads": len(high_risk),
            "high_risk_upload_ids": [u.upload_id for u in high_risk],
            "uploads": [
                {
                    "id": u.id,
                    "upload_id": u.upload_id,
                    "resource_id": u.resource_id,
                    "original_file_name": u.original_file_name,
                    "file_size": str(u.file_size),
                    "upload_status": u.upload_status,
                    "virus_scan_status": u.virus_scan_status,
                    "encryption_status": u.encryption_status,
                    "validation_status": u.validation_status,
                    "data_classification": u.data_classification,
                    "user": users.get(u.user_id),
                    "timestamp": u.timestamp.isoformat() if u.timestamp else None,
                    "integrity_verified": verify_record(u),
                }
                for u in uploads
            ],
            "integrity_summary": integrity_summary(trail),
        }
