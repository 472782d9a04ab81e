"""
LicenseRepository tests.

Covers:
  - token / hash / activation key material
  - issuance validation
  - activation (key check, idempotency, expiry, blocked statuses)
  - validation, feature access, usage metering and limits
  - status transitions and bulk expiry
"""

from datetime import UTC, datetime, timedelta

import pytest

from migas_audit.core.exceptions import (
    FeatureRestrictedError,
    InvalidActivationKeyError,
    InvalidTransitionError,
    LicenseError,
    LicenseExpiredError,
    LicenseNotFoundError,
    NotFoundError,
    ValidationError,
)
from migas_audit.models import db
from migas_audit.models.compliance import ComplianceAuditLog
from migas_audit.models.license import License, LicenseUsageLog
from migas_audit.services.license_service import LicenseRepository


@pytest.fixture()
def repo():
    return LicenseRepository()


def _expire_in_place(lic, days=1):
    lic.expiration_date = datetime.now(UTC) - timedelta(days=days)
    db.session.commit()


def _make_license(repo, **kw):
    fields = dict(
        license_name="Portal",
        license_type="STANDARD",
        license_level="BASIC",
        organization_name="PT Hulu Energi",
        contact_email="ops@hulu.example",
        expiration_date=datetime.now(UTC) + timedelta(days=90),
    )
    fields.update(kw)
    return repo.create_license(**fields)


# ═════════════════════════════════════════════════════════════════════════════
# Token material
# ═════════════════════════════════════════════════════════════════════════════

class TestTokenMaterial:
    def test_token_format(self, repo):
        token = repo.generate_license_token("PT Hulu Energi", "STANDARD")
        assert repo.validate_license_token_format(token)

    @pytest.mark.parametrize("token", [
        None, "", "IDS-ABCD-EFGH-IJKL", "ids-abcd-efgh-ijkl-mnop", "XYZ-ABCD-EFGH-IJKL-MNOP",
    ])
    def test_bad_token_format(self, repo, token):
        assert not repo.validate_license_token_format(token)

    def test_org_and_type_blocks_are_stable(self, repo):
        a = repo.generate_license_token("PT Hulu Energi", "STANDARD").split("-")
        b = repo.generate_license_token("PT Hulu Energi", "STANDARD").split("-")
        assert a[3:] == b[3:]

    def test_activation_key(self, repo):
        key = repo.generate_activation_key("IDS-AAAA-BBBB-CCCC-DDDD", "org-1")
        assert len(key) == 32
        assert key == key.upper()
        assert key != repo.generate_activation_key("IDS-AAAA-BBBB-CCCC-DDDD", "org-2")

    def test_license_hash_uses_secret(self, repo, app):
        token = "IDS-AAAA-BBBB-CCCC-DDDD"
        first = repo.generate_license_hash(token)
        app.config["LICENSE_SECRET"] = "rotated"
        try:
            assert repo.generate_license_hash(token) != first
        finally:
            app.config["LICENSE_SECRET"] = "test-license-secret"


# ═════════════════════════════════════════════════════════════════════════════
# Issuance
# ═════════════════════════════════════════════════════════════════════════════

class TestCreate:
    def test_new_license_is_inactive(self, issued_license):
        assert issued_license.status == "INACTIVE"
        assert issued_license.is_active is False
        assert issued_license.usage_count == 0
        assert "activation_key" not in issued_license.to_dict()

    def test_past_expiration_rejected(self, repo):
        with pytest.raises(ValidationError) as exc:
            _make_license(repo, expiration_date=datetime.now(UTC) - timedelta(days=1))
        assert "expiration_date" in exc.value.details

    def test_invalid_type_and_level(self, repo):
        with pytest.raises(ValidationError) as exc:
            _make_license(repo, license_type="FREE", license_level="GOLD")
        assert {"license_type", "license_level"} <= set(exc.value.details)

    def test_negative_limit_rejected(self, repo):
        with pytest.raises(ValidationError):
            _make_license(repo, max_users=-1)


# ═════════════════════════════════════════════════════════════════════════════
# Activation
# ═════════════════════════════════════════════════════════════════════════════

class TestActivation:
    def test_activate_with_key(self, repo, issued_license):
        lic = repo.activate_license(
            issued_license.license_token,
            activation_key=issued_license.activation_key.lower(),
            client_fingerprint="pytest-127.0.0.1",
        )
        assert lic.status == "ACTIVE"
        assert lic.is_active is True
        assert lic.activation_date is not None
        assert lic.usage_count == 1
        assert lic.client_fingerprint == "pytest-127.0.0.1"
        event = ComplianceAuditLog.query.filter_by(event_type="LICENSE_ACTIVATION").one()
        assert event.entity_id == str(lic.id)

    def test_activate_is_idempotent(self, repo, active_license):
        again = repo.activate_license(active_license.license_token)
        assert again.usage_count == 1
        assert ComplianceAuditLog.query.filter_by(event_type="LICENSE_ACTIVATION").count() == 1

    def test_wrong_key_logs_incident(self, repo, issued_license):
        with pytest.raises(InvalidActivationKeyError):
            repo.activate_license(issued_license.license_token, activation_key="0" * 32)
        assert issued_license.status == "INACTIVE"
        incident = ComplianceAuditLog.query.filter_by(event_type="UNAUTHORIZED_ACCESS").one()
        assert incident.risk_score == 60

    def test_bad_format(self, repo):
        with pytest.raises(LicenseError, match="format"):
            repo.activate_license("not-a-token")

    def test_unknown_token(self, repo):
        with pytest.raises(LicenseNotFoundError):
            repo.activate_license("IDS-AAAA-BBBB-CCCC-DDDD")

    def test_expired_license_is_marked(self, repo, issued_license):
        _expire_in_place(issued_license)
        with pytest.raises(LicenseExpiredError):
            repo.activate_license(issued_license.license_token)
        assert issued_license.status == "EXPIRED"

    def test_revoked_license_cannot_activate(self, repo, issued_license):
        repo.update_license_status(issued_license.id, "revoke")
        with pytest.raises(LicenseError, match="revoked"):
            repo.activate_license(issued_license.license_token)


# ═════════════════════════════════════════════════════════════════════════════
# Validation & feature access
# ═════════════════════════════════════════════════════════════════════════════

class TestValidation:
    def test_valid(self, repo, active_license):
        result = repo.validate_license(active_license.license_token, "data_export")
        assert result.is_valid
        assert result.has_feature_access
        assert result.license.usage_count == 2

    def test_feature_not_enabled(self, repo, active_license):
        result = repo.validate_license(active_license.license_token, "seismic_viewer")
        assert result.is_valid
        assert not result.has_feature_access
        assert "seismic_viewer" in result.error

    def test_inactive(self, repo, issued_license):
        result = repo.validate_license(issued_license.license_token)
        assert not result.is_valid
        assert result.error == "License is not active"

    def test_not_found(self, repo):
        assert repo.validate_license("IDS-AAAA-BBBB-CCCC-DDDD").error == "License not found"

    def test_auto_expiry(self, repo, active_license):
        _expire_in_place(active_license)
        result = repo.validate_license(active_license.license_token)
        assert not result.is_valid
        assert result.error == "License has expired"
        assert active_license.status == "EXPIRED"
        assert active_license.is_active is False

    def test_feature_access_rules(self, repo):
        lic = License(enabled_features=[], restricted_features=["bulk_delete"])
        assert repo.check_feature_access(lic, "anything")
        assert not repo.check_feature_access(lic, "bulk_delete")
        lic = License(enabled_features=["*"], restricted_features=["bulk_delete"])
        assert repo.check_feature_access(lic, "report_generation")
        assert not repo.check_feature_access(lic, "bulk_delete")

    def test_current_license(self, repo, active_license):
        assert repo.get_current_license().id == active_license.id

    def test_no_current_license(self, repo, issued_license):
        assert repo.get_current_license() is None


# ═════════════════════════════════════════════════════════════════════════════
# Usage metering
# ═════════════════════════════════════════════════════════════════════════════

class TestUsage:
    def test_log_usage(self, repo, active_license):
        usage = repo.log_feature_usage(
            active_license.license_token, "data_export", "DATA_TRANSFER",
            user_id="user-1", metrics={"data_processed": 500, "processing_time": 12},
        )
        assert usage.usage_status == "SUCCESS"
        assert usage.data_processed == 500

    def test_restricted_feature_writes_row_then_raises(self, repo, active_license):
        with pytest.raises(FeatureRestrictedError):
            repo.log_feature_usage(active_license.license_token, "bulk_delete")
        row = LicenseUsageLog.query.one()
        assert row.usage_status == "FEATURE_RESTRICTED"
        assert row.end_time is not None

    def test_unknown_usage_type(self, repo, active_license):
        with pytest.raises(ValidationError):
            repo.log_feature_usage(active_license.license_token, "data_export", "TELEPATHY")

    def test_usage_stats(self, repo, active_license):
        token = active_license.license_token
        repo.log_feature_usage(token, "data_export", "DATA_TRANSFER", metrics={"data_processed": 100})
        repo.log_feature_usage(token, "data_export", "API_CALL", metrics={"api_calls": 3})
        with pytest.raises(FeatureRestrictedError):
            repo.log_feature_usage(token, "bulk_delete")

        stats = repo.get_license_usage_stats(active_license.id)
        assert stats["total_usage"] == 3
        assert stats["usage_by_feature"] == {"data_export": 2, "bulk_delete": 1}
        assert stats["usage_by_status"] == {
            "FAILED": 0, "FEATURE_RESTRICTED": 1, "LIMIT_EXCEEDED": 0, "SUCCESS": 2,
        }
        assert stats["total_data_processed"] == 100
        assert stats["total_api_calls"] == 3
        assert stats["period"] is None

    def test_list_includes_recent_usage(self, repo, active_license):
        for _ in range(7):
            repo.log_feature_usage(active_license.license_token, "data_export")
        listed = repo.get_all_licenses()[0].to_dict(include_usage=True)
        assert len(listed["usage_logs"]) == 5


# ═════════════════════════════════════════════════════════════════════════════
# Limits
# ═════════════════════════════════════════════════════════════════════════════

class TestLimits:
    def test_unset_limits_are_not_enforced(self, repo, active_license, user, connector):
        result = repo.check_license_limits(active_license.license_token)
        assert result == {"is_valid": True, "limits": {}}

    def test_seat_and_connector_limits(self, repo, user, connector):
        lic = repo.activate_license(_make_license(repo, max_users=1, max_connectors=0).license_token)
        result = repo.check_license_limits(lic.license_token)
        assert result["limits"]["users"] == {"current": 1, "max": 1, "exceeded": False}
        assert result["limits"]["connectors"] == {"current": 1, "max": 0, "exceeded": True}
        assert result["is_valid"] is False

    def test_data_volume_and_api_requests(self, repo):
        lic = repo.activate_license(
            _make_license(repo, max_data_volume=1000, max_api_requests=5).license_token,
        )
        token = lic.license_token
        repo.log_feature_usage(token, "export", "DATA_TRANSFER", metrics={"data_processed": 1200})
        repo.log_feature_usage(token, "api", "API_CALL", metrics={"api_calls": 5})
        # api_calls on non-API_CALL rows do not count against the daily quota
        repo.log_feature_usage(token, "export", "FEATURE_ACCESS", metrics={"api_calls": 50})

        limits = repo.check_license_limits(token)["limits"]
        assert limits["data_volume"] == {"current": 1200, "max": 1000, "exceeded": True}
        assert limits["api_requests"] == {"current": 5, "max": 5, "exceeded": False}

    def test_unknown_token(self, repo):
        assert repo.check_license_limits("IDS-AAAA-BBBB-CCCC-DDDD") == {"is_valid": False, "limits": {}}


# ═════════════════════════════════════════════════════════════════════════════
# Status management
# ═════════════════════════════════════════════════════════════════════════════

class TestStatus:
    def test_suspend_and_reinstate(self, repo, active_license):
        lic = repo.update_license_status(active_license.id, "suspend", user_id="admin-1")
        assert lic.status == "SUSPENDED"
        assert lic.is_active is False
        lic = repo.update_license_status(active_license.id, "reinstate")
        assert lic.status == "ACTIVE"
        assert lic.is_active is True
        actions = [e.action for e in ComplianceAuditLog.query.filter_by(event_type="SYSTEM_CONFIGURATION")]
        assert actions == ["LICENSE_SUSPEND", "LICENSE_REINSTATE"]

    def test_invalid_transition(self, repo, issued_license):
        with pytest.raises(InvalidTransitionError):
            repo.update_license_status(issued_license.id, "suspend")

    def test_revoked_is_final(self, repo, issued_license):
        repo.update_license_status(issued_license.id, "revoke")
        with pytest.raises(InvalidTransitionError):
            repo.update_license_status(issued_license.id, "revoke")

    def test_unknown_action(self, repo, issued_license):
        with pytest.raises(ValidationError):
            repo.update_license_status(issued_license.id, "upgrade")

    def test_unknown_license(self, repo):
        with pytest.raises(NotFoundError):
            repo.update_license_status(404, "suspend")

    def test_expire_overdue(self, repo, active_license):
        pending = _make_license(repo)
        _expire_in_place(active_license)
        assert repo.expire_overdue_licenses() == 1
        assert active_license.status == "EXPIRED"
        assert pending.status == "INACTIVE"
        assert repo.expire_overdue_licenses() == 0

    def test_list_hides_inactive_by_default(self, repo, active_license):
        _make_license(repo)
        assert len(repo.get_all_licenses()) == 1
        assert len(repo.get_all_licenses(include_inactive=True)) == 2

    def test_list_by_status(self, repo, active_license):
        _make_license(repo)
        assert [lic.status for lic in repo.get_all_licenses(status="inactive")] == ["INACTIVE"]
        assert repo.get_all_licenses(status="REVOKED") == []
        with pytest.raises(ValidationError) as exc:
            repo.get_all_licenses(status="LAPSED")
        assert "ACTIVE" in exc.value.details["valid_statuses"]
