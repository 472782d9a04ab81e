"""
ResourceUploadAuditLogRepository tests.

Covers:
  - lifecycle rows: initiate → progress → complete / fail / quarantine
  - transition and progress rules
  - latest-state queries, statistics, high-risk detection
  - upload compliance report and chain integrity across lifecycle rows
"""

from datetime import UTC, datetime, timedelta

import pytest

from migas_audit.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from migas_audit.models.upload_audit import ResourceUploadAuditLog
from migas_audit.services.integrity_service import verify_chain
from migas_audit.services.upload_audit_service import ResourceUploadAuditLogRepository

_seq = iter(range(1, 9999))


@pytest.fixture()
def repo():
    return ResourceUploadAuditLogRepository()


def _period():
    now = datetime.now(UTC)
    return now - timedelta(hours=1), now + timedelta(hours=1)


def _make_upload(repo, **kw):
    n = next(_seq)
    return repo.log_upload_initiated(
        user_id=kw.get("user_id", "user-1"),
        resource_id=kw.get("resource_id", f"res-{n}"),
        original_file_name=kw.get("original_file_name", f"well-log-{n}.las"),
        file_size=kw.get("file_size", 1024 * n),
        file_type=kw.get("file_type", "LAS"),
        ip_address=kw.get("ip_address"),
    )


def _complete(repo, upload_id, scan="CLEAN", validation="validated"):
    return repo.log_upload_completed(upload_id, "f" * 64, scan, "ENCRYPTED", validation)


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════

class TestLifecycle:
    def test_initiated_row(self, repo):
        row = _make_upload(repo, original_file_name="seismic.segy")
        assert row.sequence == 1
        assert row.upload_status == "INITIATED"
        assert row.upload_progress == 0
        assert row.virus_scan_status == "PENDING"
        assert row.ip_address == "0.0.0.0"
        assert row.uploaded_file_name.endswith("-seismic.segy")
        assert row.compliance_checks["migas_regulation_check"] == "pending"

    def test_initiate_validation(self, repo):
        with pytest.raises(ValidationError) as exc:
            repo.log_upload_initiated(None, "res", "", -5, "LAS")
        assert set(exc.value.details) == {"user_id", "original_file_name", "file_size"}

    def test_progress_appends_rows(self, repo):
        upload_id = _make_upload(repo).upload_id
        repo.update_upload_progress(upload_id, 40)
        row = repo.update_upload_progress(upload_id, 80)
        assert row.sequence == 3
        assert row.upload_status == "IN_PROGRESS"
        assert ResourceUploadAuditLog.query.filter_by(upload_id=upload_id).count() == 3

    def test_progress_cannot_go_backwards(self, repo):
        upload_id = _make_upload(repo).upload_id
        repo.update_upload_progress(upload_id, 60)
        with pytest.raises(ValidationError):
            repo.update_upload_progress(upload_id, 30)

    @pytest.mark.parametrize("progress", [-1, 101, "50", True])
    def test_progress_range(self, repo, progress):
        upload_id = _make_upload(repo).upload_id
        with pytest.raises(ValidationError):
            repo.update_upload_progress(upload_id, progress)

    def test_progress_with_terminal_status_sets_end_time(self, repo):
        upload_id = _make_upload(repo).upload_id
        row = repo.update_upload_progress(upload_id, 100, "COMPLETED")
        assert row.upload_end_time is not None

    def test_completed(self, repo):
        upload_id = _make_upload(repo).upload_id
        row = _complete(repo, upload_id)
        assert row.upload_status == "COMPLETED"
        assert row.upload_progress == 100
        assert row.file_hash == "f" * 64
        assert row.status_reason is None
        checks = row.compliance_checks
        assert checks["data_sensitivity_check"] == "passed"
        assert checks["virus_scan_result"] == "CLEAN"
        assert checks["encryption_result"] == "ENCRYPTED"
        assert "completed_at" in checks

    def test_infected_upload_is_quarantined(self, repo):
        upload_id = _make_upload(repo).upload_id
        row = _complete(repo, upload_id, scan="INFECTED")
        assert row.upload_status == "QUARANTINED"
        assert row.status_reason == "Virus detected during scan"
        assert row.compliance_checks["migas_regulation_check"] == "failed"

    def test_rejected_validation_fails_checks(self, repo):
        upload_id = _make_upload(repo).upload_id
        row = _complete(repo, upload_id, validation="rejected")
        assert row.upload_status == "COMPLETED"
        assert row.compliance_checks["contract_compliance_check"] == "failed"

    def test_completion_validation(self, repo):
        upload_id = _make_upload(repo).upload_id
        with pytest.raises(ValidationError) as exc:
            repo.log_upload_completed(upload_id, "", "MAYBE", "ENCRYPTED", "validated")
        assert set(exc.value.details) == {"final_file_hash", "virus_scan_result"}

    def test_failed(self, repo):
        upload_id = _make_upload(repo).upload_id
        row = repo.log_upload_failed(upload_id, "connection reset")
        assert row.upload_status == "FAILED"
        assert row.status_reason == "connection reset"
        assert row.upload_end_time is not None

    def test_failed_needs_reason(self, repo):
        upload_id = _make_upload(repo).upload_id
        with pytest.raises(ValidationError):
            repo.log_upload_failed(upload_id, "")

    def test_terminal_upload_accepts_nothing(self, repo):
        upload_id = _make_upload(repo).upload_id
        assert not repo.get_upload_state(upload_id).is_terminal
        _complete(repo, upload_id)
        assert repo.get_upload_state(upload_id).is_terminal
        with pytest.raises(InvalidTransitionError):
            repo.update_upload_progress(upload_id, 100)
        with pytest.raises(InvalidTransitionError):
            repo.log_upload_failed(upload_id, "late failure")

    def test_unknown_upload(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_upload_progress("nope", 10)
        with pytest.raises(NotFoundError):
            repo.get_upload_history("nope")

    def test_history_is_ordered(self, repo):
        upload_id = _make_upload(repo).upload_id
        repo.update_upload_progress(upload_id, 50)
        _complete(repo, upload_id)
        history = repo.get_upload_history(upload_id)
        assert [r.upload_status for r in history] == ["INITIATED", "IN_PROGRESS", "COMPLETED"]
        assert [r.sequence for r in history] == [1, 2, 3]

    def test_upload_state_is_latest_row(self, repo):
        upload_id = _make_upload(repo).upload_id
        repo.update_upload_progress(upload_id, 30)
        state = repo.get_upload_state(upload_id)
        assert state.sequence == 2
        assert state.upload_progress == 30
        with pytest.raises(NotFoundError):
            repo.get_upload_state("nope")

    def test_lifecycle_rows_keep_the_chain_intact(self, repo):
        upload_id = _make_upload(repo).upload_id
        repo.update_upload_progress(upload_id, 50)
        _complete(repo, upload_id)
        _make_upload(repo)
        report = verify_chain(ResourceUploadAuditLog)
        assert report.verified
        assert report.checked == 4


# ═════════════════════════════════════════════════════════════════════════════
# Queries on current state
# ═════════════════════════════════════════════════════════════════════════════

class TestQueries:
    def test_find_by_resource_returns_latest_state_only(self, repo):
        upload_id = _make_upload(repo, resource_id="res-A").upload_id
        repo.update_upload_progress(upload_id, 50)
        rows = repo.find_by_resource_id("res-A")
        assert len(rows) == 1
        assert rows[0].upload_status == "IN_PROGRESS"

    def test_find_by_user(self, repo):
        _make_upload(repo, user_id="u-7")
        _make_upload(repo, user_id="u-7")
        _make_upload(repo, user_id="u-8")
        assert len(repo.find_by_user_id("u-7")) == 2

    def test_find_by_status(self, repo):
        done = _make_upload(repo).upload_id
        _complete(repo, done)
        _make_upload(repo)
        assert [r.upload_id for r in repo.find_by_status("COMPLETED")] == [done]
        # the INITIATED row of the completed upload is history, not state
        assert len(repo.find_by_status("INITIATED")) == 1

    def test_find_by_unknown_status(self, repo):
        with pytest.raises(ValidationError):
            repo.find_by_status("LOST")

    def test_statistics(self, repo):
        _complete(repo, _make_upload(repo).upload_id)
        _complete(repo, _make_upload(repo).upload_id, scan="INFECTED")
        repo.log_upload_failed(_make_upload(repo).upload_id, "timeout")
        _make_upload(repo)

        stats = repo.get_upload_statistics(*_period())
        assert stats["total_uploads"] == 4
        assert stats["completed_uploads"] == 1
        assert stats["quarantined_uploads"] == 1
        assert stats["failed_uploads"] == 1
        assert stats["in_flight_uploads"] == 1
        assert stats["virus_detected"] == 1
        assert stats["success_rate"] == 25.0

    def test_statistics_empty(self, repo):
        stats = repo.get_upload_statistics(*_period())
        assert stats["total_uploads"] == 0
        assert stats["success_rate"] == 0

    def test_high_risk_uploads(self, repo):
        _complete(repo, _make_upload(repo).upload_id)
        infected = _make_upload(repo).upload_id
        _complete(repo, infected, scan="INFECTED")
        rejected = _make_upload(repo).upload_id
        _complete(repo, rejected, validation="rejected")

        ids = {u.upload_id for u in repo.find_high_risk_uploads(*_period())}
        assert ids == {infected, rejected}

    def test_verify_upload_log_integrity(self, repo):
        row = _make_upload(repo)
        assert repo.verify_upload_log_integrity(row.id) is True
        assert repo.verify_upload_log_integrity(12345) is False


# ═════════════════════════════════════════════════════════════════════════════
# Report
# ═════════════════════════════════════════════════════════════════════════════

class TestReport:
    def test_upload_compliance_report(self, repo, user):
        clean = _make_upload(repo, user_id=user.id).upload_id
        repo.update_upload_progress(clean, 50)
        _complete(repo, clean)
        infected = _make_upload(repo).upload_id
        _complete(repo, infected, scan="INFECTED")

        report = repo.generate_upload_compliance_report(*_period())
        assert report["statistics"]["total_uploads"] == 2
        assert report["high_risk_uploads"] == 1
        assert report["high_risk_upload_ids"] == [infected]
        assert len(report["uploads"]) == 2
        by_id = {u["upload_id"]: u for u in report["uploads"]}
        assert by_id[clean]["user"]["name"] == "Siti Rahma"
        assert by_id[clean]["integrity_verified"] is True
        # integrity covers every lifecycle row, not just latest states
        assert report["integrity_summary"]["verified"] == 5
        assert report["integrity_summary"]["failed"] == 0

    def test_report_requires_valid_period(self, repo):
        start, end = _period()
        with pytest.raises(ValidationError):
            repo.generate_upload_compliance_report(end, start)
