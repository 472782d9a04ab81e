"""
Service-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from migas_audit.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="License", resource_id=42)
    raise ValidationError("risk_score must be 0-100", details={"risk_score": 120})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "License", "Upload").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class InvalidTransitionError(ValidationError):
    """Raised when a status transition is not allowed from the current state.

    Maps to HTTP 409.
    """

    def __init__(self, entity: str, entity_id: str, action: str, current: str | None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.action = action
        self.current_status = current
        super().__init__(
            f"Cannot '{action}' {entity} {entity_id} (status={current})",
            details={"action": action, "current_status": current},
        )


class ImmutableRecordError(Exception):
    """Raised by ORM guards when code tries to modify an audit row."""

    def __init__(self, model: str, record_id: int | None, operation: str) -> None:
        self.model = model
        self.record_id = record_id
        self.operation = operation
        super().__init__(f"{model} id={record_id} is immutable; {operation} rejected")


# ── License errors ──────────────────────────────────────────────────────────

class LicenseError(Exception):
    """Base class for license activation / validation failures (HTTP 400)."""

    status_code = 400


class LicenseNotFoundError(LicenseError):
    status_code = 404

    def __init__(self, message: str = "License not found") -> None:
        super().__init__(message)


class LicenseExpiredError(LicenseError):
    def __init__(self, message: str = "License has expired") -> None:
        super().__init__(message)


class InvalidActivationKeyError(LicenseError):
    def __init__(self, message: str = "Invalid activation key") -> None:
        super().__init__(message)


class FeatureRestrictedError(LicenseError):
    status_code = 403

    def __init__(self, feature_name: str) -> None:
        self.feature_name = feature_name
        super().__init__(f"Feature '{feature_name}' is not enabled in this license")

