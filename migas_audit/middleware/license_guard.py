"""
License guard — request-level license validation.

Resolves the license token from the ``LICENSE_TOKEN_HEADER`` request header
(default ``X-License-Token``), falling back to the current active license,
then validates it, checks limits and meters feature usage.

Usage:
    @bp.route("/api/v1/exports", methods=["POST"])
    @require_license("data_export", usage_type="DATA_TRANSFER")
    def export():
        lic = g.license
        ...

Outcomes:
    invalid / expired / not found  → 403 LICENSE_INVALID
    feature not enabled            → 403 LICENSE_FEATURE_RESTRICTED
    any limit exceeded             → 429 LICENSE_LIMIT_EXCEEDED
"""

import functools
import logging

from flask import current_app, g, request

from migas_audit.models import db
from migas_audit.services.license_service import LicenseRepository, LicenseValidation
from migas_audit.utils.errors import E, api_error
from migas_audit.utils.helpers import client_info

logger = logging.getLogger(__name__)


def _request_token():
    header = current_app.config.get("LICENSE_TOKEN_HEADER", "X-License-Token")
    token = request.headers.get(header)
    if token:
        return token.strip()
    current = LicenseRepository.get_current_license()
    return current.license_token if current else None


def validate_request_license(feature_name=None, log_usage=True, usage_type="FEATURE_ACCESS",
                             metrics=None) -> LicenseValidation:
    """Validate the license for the current request.

    A usage-logging failure is logged and does not fail validation.
    """
    if current_app.debug and current_app.config.get("LICENSE_SKIP_VALIDATION"):
        logger.debug("License validation skipped (DEBUG + LICENSE_SKIP_VALIDATION)")
        return LicenseValidation(is_valid=True, has_feature_access=True)

    token = _request_token()
    if not token:
        return LicenseValidation(
            is_valid=False, error="No license token provided and no active license found",
        )

    repo = LicenseRepository()
    result = repo.validate_license(token, feature_name)
    if not result.is_valid:
        return result

    limits = repo.check_license_limits(token)
    result.limits = limits["limits"]
    if not limits["is_valid"]:
        result.is_valid = False
        result.limit_exceeded = True
        result.error = "License limits exceeded"
        return result

    if log_usage and feature_name and result.has_feature_access:
        info = client_info()
        try:
            repo.log_feature_usage(
                token, feature_name, usage_type,
                user_id=request.headers.get("X-User-ID"),
                session_id=info["session_id"],
                ip_address=info["ip_address"],
                user_agent=info["user_agent"],
                metrics=metrics,
            )
        except Exception:
            db.session.rollback()
            logger.exception("Failed to log usage of %s on license %s", feature_name, token)

    return result


def license_error_response(result: LicenseValidation):
    """Map a failed validation to the guard's JSON error, or None when it passed."""
    if result.limit_exceeded:
        return api_error(E.LICENSE_LIMIT, result.error, details={"limits": result.limits})
    if not result.is_valid:
        return api_error(E.LICENSE_INVALID, result.error or "Invalid license", status=403)
    if not result.has_feature_access:
        return api_error(E.LICENSE_RESTRICTED, result.error, status=403)
    return None


def require_license(feature_name=None, log_usage=True, usage_type="FEATURE_ACCESS"):
    """
    Decorator: reject the request unless the license is valid, the feature
    is enabled and no limit is exceeded.  Sets ``g.license`` on success.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            result = validate_request_license(feature_name, log_usage, usage_type)
            err = license_error_response(result)
            if err:
                logger.warning(
                    "License guard denied %s on %s: %s",
                    feature_name or "-", f.__name__, result.error,
                )
                return err
            g.license = result.license
            return f(*args, **kwargs)
        return decorated
    return decorator
