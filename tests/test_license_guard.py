"""
License guard tests (request-level validation).

Covers:
  - token resolution: header first, then the current active license
  - invalid / restricted / over-limit outcomes and their HTTP mapping
  - usage metering and the require_license decorator
"""

from datetime import UTC, datetime, timedelta

from flask import g

from migas_audit.middleware.license_guard import (
    license_error_response,
    require_license,
    validate_request_license,
)
from migas_audit.models import db
from migas_audit.models.license import LicenseUsageLog
from migas_audit.services.license_service import LicenseRepository


def _guarded_view():
    return {"license_id": g.license.id}, 200


class TestValidateRequestLicense:
    def test_no_token_and_no_active_license(self, app):
        with app.test_request_context("/"):
            result = validate_request_license("data_export")
        assert not result.is_valid
        assert "No license token" in result.error

    def test_falls_back_to_current_license(self, app, active_license):
        with app.test_request_context("/"):
            result = validate_request_license("data_export", log_usage=False)
        assert result.is_valid
        assert result.license.id == active_license.id

    def test_header_token_wins(self, app, active_license):
        other = LicenseRepository().create_license(
            license_name="Secondary", license_type="TRIAL", license_level="BASIC",
            organization_name="PT Lain", contact_email="x@lain.example",
            expiration_date=datetime.now(UTC) + timedelta(days=10),
        )
        with app.test_request_context("/", headers={"X-License-Token": other.license_token}):
            result = validate_request_license()
        assert not result.is_valid
        assert result.error == "License is not active"

    def test_unknown_header_token(self, app, active_license):
        with app.test_request_context("/", headers={"X-License-Token": "IDS-AAAA-BBBB-CCCC-DDDD"}):
            result = validate_request_license()
        assert not result.is_valid
        assert result.error == "License not found"

    def test_logs_usage_for_named_feature(self, app, active_license):
        with app.test_request_context("/", headers={"X-User-ID": "user-9", "X-Session-ID": "s-1"}):
            result = validate_request_license("data_export", metrics={"data_processed": 10})
        assert result.is_valid
        usage = LicenseUsageLog.query.one()
        assert usage.feature_used == "data_export"
        assert usage.user_id == "user-9"
        assert usage.session_id == "s-1"
        assert usage.data_processed == 10

    def test_restricted_feature_is_not_metered_as_success(self, app, active_license):
        with app.test_request_context("/"):
            result = validate_request_license("bulk_delete")
        assert result.is_valid
        assert not result.has_feature_access
        assert LicenseUsageLog.query.count() == 0

    def test_limit_breach_invalidates(self, app, active_license, user):
        active_license.max_users = 0
        db.session.commit()
        with app.test_request_context("/"):
            result = validate_request_license("data_export")
        assert not result.is_valid
        assert result.limit_exceeded
        assert result.limits["users"]["exceeded"] is True

    def test_skip_validation_only_in_debug(self, app):
        app.config["LICENSE_SKIP_VALIDATION"] = True
        try:
            with app.test_request_context("/"):
                result = validate_request_license("data_export")
            # TESTING app is not in debug mode, so the flag is ignored
            assert not result.is_valid
        finally:
            app.config["LICENSE_SKIP_VALIDATION"] = False


class TestErrorMapping:
    def test_status_codes(self, app, active_license, user):
        with app.test_request_context("/"):
            restricted = license_error_response(validate_request_license("bulk_delete"))
            assert restricted[1] == 403
            assert restricted[0].get_json()["code"] == "LICENSE_FEATURE_RESTRICTED"

            active_license.max_users = 0
            db.session.commit()
            over = license_error_response(validate_request_license("data_export"))
            assert over[1] == 429
            assert over[0].get_json()["details"]["limits"]["users"]["max"] == 0

    def test_passing_result_maps_to_none(self, app, active_license):
        with app.test_request_context("/"):
            assert license_error_response(validate_request_license("data_export")) is None


class TestRequireLicense:
    def test_allows_and_sets_g_license(self, app, active_license):
        view = require_license("report_generation")(_guarded_view)
        with app.test_request_context("/"):
            body, status = view()
        assert status == 200
        assert body["license_id"] == active_license.id

    def test_denies_without_license(self, app):
        view = require_license("report_generation")(_guarded_view)
        with app.test_request_context("/"):
            response, status = view()
        assert status == 403
        assert response.get_json()["code"] == "LICENSE_INVALID"
