"""
RequestActionAuditLogRepository tests.

Covers:
  - submit → approve → deliver and submit → reject workflows
  - status derived from the log; illegal transitions rejected
  - required fields per action
  - queries, statistics and the request compliance report
"""

from datetime import UTC, datetime, timedelta

import pytest

from migas_audit.core.exceptions import InvalidTransitionError, ValidationError
from migas_audit.models.request_audit import RequestActionAuditLog
from migas_audit.services.integrity_service import verify_chain
from migas_audit.services.request_audit_service import RequestActionAuditLogRepository


@pytest.fixture()
def repo():
    return RequestActionAuditLogRepository()


def _period():
    now = datetime.now(UTC)
    return now - timedelta(hours=1), now + timedelta(hours=1)


def _submit(repo, request_id="req-1", user_id="user-1"):
    return repo.log_request_submission(
        request_id, user_id, {"blocks": ["Mahakam"], "type": "seismic"},
        business_justification="Reservoir study", project_code="PRJ-9",
    )


# ═════════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════════

class TestWorkflow:
    def test_submission(self, repo):
        log = _submit(repo)
        assert log.action_type == "SUBMIT"
        assert log.previous_status is None
        assert log.new_status == "pending"
        assert log.current_approvals == 0
        assert log.ip_address == "0.0.0.0"
        assert log.risk_assessment["risk_level"] == "low"
        assert repo.get_current_status("req-1") == "pending"

    def test_full_happy_path(self, repo):
        _submit(repo)
        approval = repo.log_request_approval(
            "req-1", "officer-1", authorized_by_user_id="head-1",
            approval_conditions={"delivery_method": "sftp", "access_granted": {"days": 30}},
        )
        assert approval.previous_status == "pending"
        assert approval.new_status == "approved"
        assert approval.data_delivery_method == "sftp"
        assert approval.access_granted == {"days": 30}

        delivery = repo.log_data_delivery(
            "req-1", "officer-1", {"files": 3, "size": 4096}, "secure_download",
        )
        assert delivery.new_status == "delivered"
        assert delivery.request_metadata["delivery_size"] == 4096
        assert repo.get_current_status("req-1") == "delivered"

    def test_approval_default_delivery_method(self, repo):
        _submit(repo)
        log = repo.log_request_approval("req-1", "officer-1")
        assert log.data_delivery_method == "secure_download"

    def test_rejection(self, repo):
        _submit(repo)
        log = repo.log_request_rejection("req-1", "officer-1", "Missing contract reference")
        assert log.new_status == "rejected"
        assert log.status_reason == "Missing contract reference"
        assert log.compliance_notes == "Request rejected: Missing contract reference"

    def test_rejection_needs_reason(self, repo):
        _submit(repo)
        with pytest.raises(ValidationError):
            repo.log_request_rejection("req-1", "officer-1", "   ")

    def test_delivery_needs_data_and_method(self, repo):
        _submit(repo)
        repo.log_request_approval("req-1", "officer-1")
        with pytest.raises(ValidationError):
            repo.log_data_delivery("req-1", "officer-1", None, "sftp")
        with pytest.raises(ValidationError):
            repo.log_data_delivery("req-1", "officer-1", {"files": 1}, "")

    def test_missing_performer(self, repo):
        with pytest.raises(ValidationError):
            repo.log_request_submission("req-1", None, {})


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════

class TestTransitions:
    def test_cannot_submit_twice(self, repo):
        _submit(repo)
        with pytest.raises(InvalidTransitionError):
            _submit(repo)

    def test_cannot_approve_unknown_request(self, repo):
        with pytest.raises(InvalidTransitionError):
            repo.log_request_approval("req-404", "officer-1")

    def test_cannot_deliver_unapproved_request(self, repo):
        _submit(repo)
        with pytest.raises(InvalidTransitionError) as exc:
            repo.log_data_delivery("req-1", "officer-1", {"files": 1}, "sftp")
        assert exc.value.details["current_status"] == "pending"

    def test_rejected_is_final(self, repo):
        _submit(repo)
        repo.log_request_rejection("req-1", "officer-1", "No budget")
        with pytest.raises(InvalidTransitionError):
            repo.log_request_approval("req-1", "officer-1")

    def test_failed_transition_writes_nothing(self, repo):
        _submit(repo)
        with pytest.raises(InvalidTransitionError):
            repo.log_data_delivery("req-1", "officer-1", {"files": 1}, "sftp")
        assert RequestActionAuditLog.query.count() == 1

    def test_requests_are_independent(self, repo):
        _submit(repo, "req-1")
        _submit(repo, "req-2")
        repo.log_request_approval("req-2", "officer-1")
        assert repo.get_current_status("req-1") == "pending"
        assert repo.get_current_status("req-2") == "approved"
        assert repo.get_current_status("req-3") is None


# ═════════════════════════════════════════════════════════════════════════════
# Queries & report
# ═════════════════════════════════════════════════════════════════════════════

class TestQueries:
    def test_find_by_request_id_newest_first(self, repo):
        _submit(repo)
        repo.log_request_approval("req-1", "officer-1")
        actions = repo.find_by_request_id("req-1")
        assert [a.action_type for a in actions] == ["APPROVE", "SUBMIT"]

    def test_find_by_user_matches_any_role(self, repo):
        _submit(repo, "req-1", user_id="alice")
        _submit(repo, "req-2", user_id="bob")
        repo.log_request_approval("req-2", "carol", authorized_by_user_id="alice")
        actions = repo.find_by_user_id("alice")
        assert {(a.request_id, a.action_type) for a in actions} == {
            ("req-1", "SUBMIT"), ("req-2", "APPROVE"),
        }

    def test_statistics(self, repo):
        _submit(repo, "req-1")
        _submit(repo, "req-2")
        repo.log_request_approval("req-1", "officer-1")
        stats = repo.get_request_statistics(*_period())
        assert stats["total_actions"] == 3
        assert stats["actions_by_type"] == {"APPROVE": 1, "DELIVER": 0, "REJECT": 0, "SUBMIT": 2}
        assert stats["actions_by_status"] == {"FAILED": 0, "SUCCESS": 3}
        assert stats["requests_by_status"] == {
            "approved": 1, "delivered": 0, "pending": 1, "rejected": 0,
        }
        assert stats["security_clearance_distribution"] == {"INTERNAL": 2, "CONFIDENTIAL": 1}

    def test_report(self, repo, user):
        _submit(repo, "req-1", user_id=user.id)
        repo.log_request_approval("req-1", "officer-1", authorized_by_user_id=user.id)
        report = repo.generate_request_compliance_report(*_period())

        assert report["report_metadata"]["report_type"] == "Request Action Compliance Report"
        assert len(report["request_actions"]) == 2
        approve = report["request_actions"][0]
        assert approve["action_type"] == "APPROVE"
        assert approve["authorized_by"]["name"] == "Siti Rahma"
        assert approve["performed_by"] is None
        assert report["integrity_summary"]["passed"] == 2

    def test_chain_and_row_integrity(self, repo):
        log = _submit(repo)
        repo.log_request_approval("req-1", "officer-1")
        assert repo.verify_request_log_integrity(log.id) is True
        assert repo.verify_request_log_integrity(777) is False
        assert verify_chain(RequestActionAuditLog).verified
