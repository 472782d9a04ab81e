"""
Migas Compliance Audit & License Service
License blueprint — issuance, activation, status and validation.

Endpoints:
    GET  /api/v1/license                       — list licenses (?status=, recent usage)
    POST /api/v1/license                       — issue a license
    POST /api/v1/license/activate              — activate with token (+ activation key)
    GET  /api/v1/license/status                — current license, limits, 30-day usage
    GET  /api/v1/license/validate              — run the license guard
    POST /api/v1/license/validate              — run the guard and meter feature usage
    POST /api/v1/license/<id>/status           — activate | suspend | reinstate | revoke | expire
"""

import logging
from datetime import UTC, datetime, timedelta

from flask import Blueprint, current_app, jsonify, request

from migas_audit import limiter
from migas_audit.blueprints import register_error_handlers
from migas_audit.middleware.license_guard import license_error_response, validate_request_license
from migas_audit.services.license_service import LicenseRepository
from migas_audit.utils.errors import E, api_error
from migas_audit.utils.helpers import client_info, parse_datetime

logger = logging.getLogger(__name__)

license_bp = Blueprint("license", __name__, url_prefix="/api/v1")
register_error_handlers(license_bp)

license_repo = LicenseRepository()

USAGE_WINDOW_DAYS = 30


def _validate_rate_limit():
    return current_app.config.get("LICENSE_VALIDATE_RATE_LIMIT", "30/minute")


@license_bp.route("/license", methods=["GET"])
def list_licenses():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    licenses = license_repo.get_all_licenses(
        include_inactive=include_inactive, status=request.args.get("status"),
    )
    return jsonify({
        "licenses": [lic.to_dict(include_usage=True) for lic in licenses],
        "count": len(licenses),
    })


@license_bp.route("/license", methods=["POST"])
def create_license():
    """Issue a license.  The activation key is returned only in this response."""
    data = request.get_json(silent=True) or {}
    expiration = parse_datetime(data.get("expiration_date"))
    if data.get("expiration_date") and expiration is None:
        return api_error(E.VALIDATION_INVALID, "expiration_date must be an ISO-8601 date")

    lic = license_repo.create_license(
        license_name=data.get("license_name"),
        license_type=data.get("license_type", "STANDARD"),
        license_level=data.get("license_level", "BASIC"),
        organization_name=data.get("organization_name"),
        contact_email=data.get("contact_email"),
        expiration_date=expiration,
        organization_id=data.get("organization_id"),
        max_users=data.get("max_users"),
        max_connectors=data.get("max_connectors"),
        max_data_volume=data.get("max_data_volume"),
        max_api_requests=data.get("max_api_requests"),
        enabled_features=data.get("enabled_features"),
        restricted_features=data.get("restricted_features"),
        metadata=data.get("metadata"),
    )
    body = lic.to_dict()
    body["activation_key"] = lic.activation_key
    return jsonify(body), 201


@license_bp.route("/license/activate", methods=["POST"])
def activate_license():
    data = request.get_json(silent=True) or {}
    token = data.get("license_token")
    if not token:
        return api_error(E.VALIDATION_REQUIRED, "license_token is required")

    info = client_info()
    lic = license_repo.activate_license(
        token.strip(),
        activation_key=data.get("activation_key"),
        client_fingerprint=f"{info['user_agent'] or ''}-{info['ip_address']}",
        ip_address=info["ip_address"],
        user_agent=info["user_agent"],
    )
    return jsonify({"message": "License activated", "license": lic.to_dict()})


@license_bp.route("/license/status", methods=["GET"])
def license_status():
    lic = license_repo.get_current_license()
    if lic is None:
        return api_error(E.NOT_FOUND, "No active license found")

    now = datetime.now(UTC)
    limits = license_repo.check_license_limits(lic.license_token)
    usage = license_repo.get_license_usage_stats(
        lic.id, now - timedelta(days=USAGE_WINDOW_DAYS), now,
    )
    days_left = lic.days_until_expiry()

    body = {
        "license": lic.to_dict(),
        "limits": limits["limits"],
        "within_limits": limits["is_valid"],
        "usage": usage,
        "days_until_expiry": days_left,
    }
    if days_left <= current_app.config.get("LICENSE_EXPIRY_WARNING_DAYS", 30):
        body["warning"] = f"License expires in {days_left} day(s)"
    return jsonify(body)


@license_bp.route("/license/validate", methods=["GET", "POST"])
@limiter.limit(_validate_rate_limit)
def validate_license():
    """
    GET  ?feature=<name>  — validate only
    POST {"feature", "usage_type", "metrics"} — validate and log the usage
    """
    if request.method == "POST":
        data = request.get_json(silent=True) or {}
        result = validate_request_license(
            data.get("feature"),
            log_usage=True,
            usage_type=data.get("usage_type", "FEATURE_ACCESS"),
            metrics=data.get("metrics"),
        )
    else:
        result = validate_request_license(request.args.get("feature"), log_usage=False)

    err = license_error_response(result)
    if err:
        return err
    return jsonify(result.to_dict())


@license_bp.route("/license/<int:license_id>/status", methods=["POST"])
def update_license_status(license_id):
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").lower()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")

    lic = license_repo.update_license_status(
        license_id, action, user_id=request.headers.get("X-User-ID"),
    )
    return jsonify(lic.to_dict())
