"""
LicenseRepository — license issuance, activation and usage metering.

Token format:  IDS-XXXX-XXXX-XXXX-XXXX
    block 1  base-36 epoch milliseconds (first 4 chars)
    block 2  random base-36
    block 3  md5(organization_name)[:4]
    block 4  md5(license_type)[:4]

license_hash    HMAC-SHA256(token) keyed by LICENSE_SECRET
activation_key  upper(sha256("<token>-<organization_id>")[:32])

Limits (``check_license_limits``), each reported as {current, max, exceeded}
with ``exceeded = current > max``; a limit whose max is None is not enforced:
    users        rows in ``users``
    connectors   rows in ``external_services``
    data_volume  bytes processed over LICENSE_DATA_VOLUME_WINDOW_DAYS
    api_requests api_calls of API_CALL usage since UTC midnight
"""

import hashlib
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from flask import current_app
from sqlalchemy import func

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
from migas_audit.models.directory import ExternalService, User
from migas_audit.models.license import (
    LICENSE_LEVELS,
    LICENSE_STATUSES,
    LICENSE_TOKEN_RE,
    LICENSE_TRANSITIONS,
    LICENSE_TYPES,
    USAGE_STATUSES,
    USAGE_TYPES,
    License,
    LicenseUsageLog,
)
from migas_audit.services.compliance_audit_service import ComplianceAuditLogRepository
from migas_audit.utils.crypto import constant_time_equals, hmac_sha256_hex, sha256_hex
from migas_audit.utils.helpers import ensure_utc

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase
_TOKEN_ATTEMPTS = 5


def _utcnow():
    return datetime.now(UTC)


def _base36(number: int) -> str:
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def _md5_prefix(value: str) -> str:
    return hashlib.md5(value.encode("utf-8"), usedforsecurity=False).hexdigest()[:4].upper()


def _limit(current, maximum) -> dict:
    return {"current": current, "max": maximum, "exceeded": current > maximum}


@dataclass
class LicenseValidation:
    """Outcome of ``validate_license``; never raises for an invalid license."""

    is_valid: bool
    has_feature_access: bool = False
    license: License | None = None
    error: str | None = None
    limit_exceeded: bool = False
    limits: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "has_feature_access": self.has_feature_access,
            "license": self.license.to_dict() if self.license else None,
            "error": self.error,
            "limit_exceeded": self.limit_exceeded,
            "limits": self.limits,
        }


class LicenseRepository:
    """License lifecycle and usage metering."""

    def __init__(self, audit_repo=None):
        self.audit_repo = audit_repo or ComplianceAuditLogRepository()

    # ── Token material ───────────────────────────────────────────────────

    @staticmethod
    def validate_license_token_format(token) -> bool:
        return bool(token) and LICENSE_TOKEN_RE.match(token) is not None

    @staticmethod
    def generate_license_token(organization_name: str, license_type: str) -> str:
        stamp = _base36(int(time.time() * 1000))[:4]
        rand = "".join(secrets.choice(_BASE36) for _ in range(4))
        return f"IDS-{stamp}-{rand}-{_md5_prefix(organization_name)}-{_md5_prefix(license_type)}"

    @staticmethod
    def generate_license_hash(token: str) -> str:
        return hmac_sha256_hex(current_app.config["LICENSE_SECRET"], token)

    @staticmethod
    def generate_activation_key(token: str, organization_id: str | None) -> str:
        return sha256_hex(f"{token}-{organization_id or ''}")[:32].upper()

    @staticmethod
    def check_feature_access(license: License, feature_name: str) -> bool:
        """Restricted list wins; an empty enabled list allows everything."""
        restricted = license.restricted_features or []
        enabled = license.enabled_features or []
        if feature_name in restricted:
            return False
        if not enabled:
            return True
        return feature_name in enabled or "*" in enabled

    # ── Lookups ──────────────────────────────────────────────────────────

    @staticmethod
    def get_by_token(token) -> License | None:
        return License.query.filter_by(license_token=token).first()

    @staticmethod
    def get_current_license() -> License | None:
        return (
            License.query.filter(
                License.status == "ACTIVE",
                License.is_active.is_(True),
                License.expiration_date > _utcnow(),
            )
            .order_by(License.expiration_date.desc())
            .first()
        )

    @staticmethod
    def get_all_licenses(include_inactive=False, status=None) -> list:
        q = License.query
        if status:
            status = status.upper()
            if status not in LICENSE_STATUSES:
                raise ValidationError(
                    f"Unknown license status '{status}'",
                    details={"valid_statuses": sorted(LICENSE_STATUSES)},
                )
            q = q.filter(License.status == status)
        elif not include_inactive:
            q = q.filter(License.status.in_(("ACTIVE", "PENDING_ACTIVATION")))
        return q.order_by(License.created_at.desc(), License.id.desc()).all()

    # ── Issuance ─────────────────────────────────────────────────────────

    def create_license(self, license_name, license_type, license_level, organization_name,
                       contact_email, expiration_date, organization_id=None, max_users=None,
                       max_connectors=None, max_data_volume=None, max_api_requests=None,
                       enabled_features=None, restricted_features=None, metadata=None):
        errors = {}
        for name, value in (("license_name", license_name),
                            ("organization_name", organization_name),
                            ("contact_email", contact_email)):
            if not value:
                errors[name] = "required"
        if license_type not in LICENSE_TYPES:
            errors["license_type"] = f"must be one of {sorted(LICENSE_TYPES)}"
        if license_level not in LICENSE_LEVELS:
            errors["license_level"] = f"must be one of {sorted(LICENSE_LEVELS)}"
        if expiration_date is None:
            errors["expiration_date"] = "required"
        elif ensure_utc(expiration_date) <= _utcnow():
            errors["expiration_date"] = "must be in the future"
        for name, value in (("max_users", max_users), ("max_connectors", max_connectors),
                            ("max_data_volume", max_data_volume),
                            ("max_api_requests", max_api_requests)):
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                errors[name] = "must be a non-negative integer"
        if errors:
            raise ValidationError("Invalid license", details=errors)

        token = None
        for _ in range(_TOKEN_ATTEMPTS):
            candidate = self.generate_license_token(organization_name, license_type)
            if self.get_by_token(candidate) is None:
                token = candidate
                break
        if token is None:
            raise LicenseError("Could not generate a unique license token")

        lic = License(
            license_token=token,
            license_hash=self.generate_license_hash(token),
            license_name=license_name,
            license_type=license_type,
            license_level=license_level,
            status="INACTIVE",
            is_active=False,
            issued_date=_utcnow(),
            expiration_date=ensure_utc(expiration_date),
            organization_name=organization_name,
            organization_id=organization_id,
            contact_email=contact_email,
            max_users=max_users,
            max_connectors=max_connectors,
            max_data_volume=max_data_volume,
            max_api_requests=max_api_requests,
            enabled_features=list(enabled_features or []),
            restricted_features=list(restricted_features or []),
            activation_key=self.generate_activation_key(token, organization_id),
            license_metadata=metadata,
        )
        db.session.add(lic)
        db.session.commit()
        logger.info(
            "License %s issued to %s (%s/%s, expires %s)",
            lic.license_token, organization_name, license_type, license_level,
            lic.expiration_date.isoformat(),
        )
        return lic

    # ── Activation / validation ──────────────────────────────────────────

    def _expire(self, lic: License):
        previous = lic.status
        lic.status = "EXPIRED"
        lic.is_active = False
        db.session.commit()
        logger.info("License %s expired (was %s)", lic.license_token, previous)

    def activate_license(self, token, activation_key=None, client_fingerprint=None,
                         ip_address=None, user_agent=None) -> License:
        if not self.validate_license_token_format(token):
            raise LicenseError("Invalid license token format")

        lic = self.get_by_token(token)
        if lic is None:
            raise LicenseNotFoundError()

        if lic.status == "ACTIVE" and lic.is_active:
            return lic

        if lic.is_expired:
            self._expire(lic)
            raise LicenseExpiredError()

        if lic.status not in LICENSE_TRANSITIONS["activate"]["from"]:
            raise LicenseError(f"License is {lic.status.lower()} and cannot be activated")

        if activation_key is not None:
            expected = self.generate_activation_key(lic.license_token, lic.organization_id)
            if not constant_time_equals(activation_key.strip().upper(), expected):
                self.audit_repo.log_security_incident(
                    event_type="UNAUTHORIZED_ACCESS",
                    action="LICENSE_ACTIVATION_REJECTED",
                    user_id=None,
                    details={"license_token": token, "reason": "invalid activation key"},
                    risk_score=60,
                    ip_address=ip_address,
                )
                raise InvalidActivationKeyError()

        previous = lic.status
        now = _utcnow()
        lic.status = "ACTIVE"
        lic.is_active = True
        lic.activation_date = now
        lic.client_fingerprint = client_fingerprint
        lic.last_used = now
        lic.usage_count = (lic.usage_count or 0) + 1
        db.session.commit()

        self.audit_repo.create(
            event_type="LICENSE_ACTIVATION",
            action="LICENSE_ACTIVATED",
            entity_type="License",
            entity_id=str(lic.id),
            ip_address=ip_address,
            user_agent=user_agent,
            previous_state={"status": previous},
            current_state={"status": "ACTIVE"},
            change_reason="License activated",
            security_level="CONFIDENTIAL",
            data_classification="INTERNAL",
            metadata={
                "license_type": lic.license_type,
                "license_level": lic.license_level,
                "organization_name": lic.organization_name,
            },
        )
        logger.info("License %s activated for %s", lic.license_token, lic.organization_name)
        return lic

    def validate_license(self, token, feature_name=None) -> LicenseValidation:
        lic = self.get_by_token(token) if token else None
        if lic is None:
            return LicenseValidation(is_valid=False, error="License not found")

        if not lic.is_active or lic.status != "ACTIVE":
            return LicenseValidation(is_valid=False, license=lic, error="License is not active")

        if lic.is_expired:
            self._expire(lic)
            return LicenseValidation(is_valid=False, license=lic, error="License has expired")

        has_access = True
        if feature_name:
            has_access = self.check_feature_access(lic, feature_name)

        lic.last_used = _utcnow()
        lic.usage_count = (lic.usage_count or 0) + 1
        db.session.commit()

        return LicenseValidation(
            is_valid=True,
            has_feature_access=has_access,
            license=lic,
            error=None if has_access else f"Feature '{feature_name}' is not enabled in this license",
        )

    # ── Metering ─────────────────────────────────────────────────────────

    def log_feature_usage(self, token, feature_name, usage_type="FEATURE_ACCESS", user_id=None,
                          session_id=None, ip_address=None, user_agent=None, metrics=None):
        lic = self.get_by_token(token)
        if lic is None:
            raise LicenseNotFoundError()
        if usage_type not in USAGE_TYPES:
            raise ValidationError(
                f"Unknown usage type '{usage_type}'",
                details={"valid_usage_types": sorted(USAGE_TYPES)},
            )

        now = _utcnow()
        common = dict(
            license_id=lic.id,
            feature_used=feature_name,
            usage_type=usage_type,
            user_id=user_id,
            session_id=session_id,
            ip_address=ip_address,
            user_agent=user_agent,
            start_time=now,
        )

        if not self.check_feature_access(lic, feature_name):
            error = FeatureRestrictedError(feature_name)
            db.session.add(LicenseUsageLog(
                **common,
                usage_status="FEATURE_RESTRICTED",
                error_message=str(error),
                end_time=now,
            ))
            db.session.commit()
            logger.warning("Restricted feature %s requested on license %s", feature_name, token)
            raise error

        metrics = metrics or {}
        usage = LicenseUsageLog(
            **common,
            data_processed=metrics.get("data_processed"),
            api_calls=metrics.get("api_calls"),
            processing_time=metrics.get("processing_time"),
            usage_status="SUCCESS",
        )
        db.session.add(usage)
        db.session.commit()
        logger.debug("Usage %s/%s logged on license %s", feature_name, usage_type, token)
        return usage

    def get_license_usage_stats(self, license_id, start_date=None, end_date=None) -> dict:
        criteria = [LicenseUsageLog.license_id == license_id]
        period = None
        if start_date and end_date:
            start, end = ensure_utc(start_date), ensure_utc(end_date)
            criteria += [LicenseUsageLog.timestamp >= start, LicenseUsageLog.timestamp <= end]
            period = {"start": start.isoformat(), "end": end.isoformat()}

        def grouped(column):
            return dict(
                db.session.query(column, func.count(LicenseUsageLog.id))
                .filter(*criteria)
                .group_by(column)
                .all()
            )

        totals = (
            db.session.query(
                func.count(LicenseUsageLog.id),
                func.coalesce(func.sum(LicenseUsageLog.data_processed), 0),
                func.coalesce(func.sum(LicenseUsageLog.api_calls), 0),
            )
            .filter(*criteria)
            .one()
        )
        by_status = grouped(LicenseUsageLog.usage_status)
        return {
            "total_usage": totals[0],
            "usage_by_feature": grouped(LicenseUsageLog.feature_used),
            "usage_by_status": {s: by_status.get(s, 0) for s in sorted(USAGE_STATUSES)},
            "total_data_processed": int(totals[1]),
            "total_api_calls": int(totals[2]),
            "period": period,
        }

    def check_license_limits(self, token) -> dict:
        lic = self.get_by_token(token) if token else None
        if lic is None:
            return {"is_valid": False, "limits": {}}

        limits = {}
        if lic.max_users is not None:
            limits["users"] = _limit(User.query.count(), lic.max_users)

        if lic.max_connectors is not None:
            limits["connectors"] = _limit(ExternalService.query.count(), lic.max_connectors)

        if lic.max_data_volume is not None:
            window = current_app.config.get("LICENSE_DATA_VOLUME_WINDOW_DAYS", 30)
            since = _utcnow() - timedelta(days=window)
            used = (
                db.session.query(func.coalesce(func.sum(LicenseUsageLog.data_processed), 0))
                .filter(
                    LicenseUsageLog.license_id == lic.id,
                    LicenseUsageLog.timestamp >= since,
                )
                .scalar()
            )
            limits["data_volume"] = _limit(int(used), lic.max_data_volume)

        if lic.max_api_requests is not None:
            midnight = _utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
            calls = (
                db.session.query(func.coalesce(func.sum(LicenseUsageLog.api_calls), 0))
                .filter(
                    LicenseUsageLog.license_id == lic.id,
                    LicenseUsageLog.usage_type == "API_CALL",
                    LicenseUsageLog.timestamp >= midnight,
                )
                .scalar()
            )
            limits["api_requests"] = _limit(int(calls), lic.max_api_requests)

        exceeded = [name for name, lim in limits.items() if lim["exceeded"]]
        if exceeded:
            logger.warning("License %s over limits: %s", token, ", ".join(exceeded))
        return {"is_valid": not exceeded, "limits": limits}

    # ── Status management ────────────────────────────────────────────────

    def update_license_status(self, license_id, action, user_id=None) -> License:
        lic = db.session.get(License, license_id)
        if lic is None:
            raise NotFoundError(resource="License", resource_id=license_id)
        rule = LICENSE_TRANSITIONS.get(action)
        if rule is None:
            raise ValidationError(
                f"Unknown license action '{action}'",
                details={"valid_actions": sorted(LICENSE_TRANSITIONS)},
            )
        if lic.status not in rule["from"]:
            raise InvalidTransitionError("License", str(license_id), action, lic.status)
        if rule["to"] == "ACTIVE" and lic.is_expired:
            self._expire(lic)
            raise LicenseExpiredError()

        previous = lic.status
        lic.status = rule["to"]
        lic.is_active = rule["to"] == "ACTIVE"
        if action == "activate" and lic.activation_date is None:
            lic.activation_date = _utcnow()
        db.session.commit()

        self.audit_repo.create(
            event_type="SYSTEM_CONFIGURATION",
            action=f"LICENSE_{action.upper()}",
            entity_type="License",
            entity_id=str(lic.id),
            user_id=user_id,
            previous_state={"status": previous},
            current_state={"status": lic.status},
            change_reason=f"License {action}",
            security_level="CONFIDENTIAL",
        )
        logger.info("License %s: %s → %s", lic.license_token, previous, lic.status)
        return lic

    def expire_overdue_licenses(self) -> int:
        overdue = License.query.filter(
            License.status.in_(LICENSE_TRANSITIONS["expire"]["from"]),
            License.expiration_date <= _utcnow(),
        ).all()
        for lic in overdue:
            lic.status = "EXPIRED"
            lic.is_active = False
        if overdue:
            db.session.commit()
            logger.info("Expired %d overdue licenses", len(overdue))
        return len(overdue)
