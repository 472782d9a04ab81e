"""
Migas Compliance Audit & License Service
Blueprint registry and shared request helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from migas_audit.core.exceptions import (
    ConflictError,
    ImmutableRecordError,
    InvalidTransitionError,
    LicenseError,
    NotFoundError,
    ValidationError,
)
from migas_audit.models import db
from migas_audit.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def limit_offset(default_limit=50, max_limit=1000):
    """Read ``limit`` / ``offset`` query params.

    Returns:
        (limit, offset) with limit capped at max_limit and offset >= 0
    """
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def register_error_handlers(bp):
    """Translate the service exception hierarchy into JSON responses."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(InvalidTransitionError)
    def _handle_transition(error: InvalidTransitionError):
        db.session.rollback()
        return api_error(E.CONFLICT_STATE, str(error), details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(ImmutableRecordError)
    def _handle_immutable(error: ImmutableRecordError):
        db.session.rollback()
        logger.warning("Blocked %s on immutable %s id=%s", error.operation, error.model, error.record_id)
        return api_error(E.IMMUTABLE, str(error))

    @bp.errorhandler(LicenseError)
    def _handle_license(error: LicenseError):
        db.session.rollback()
        code = E.LICENSE_RESTRICTED if error.status_code == 403 else E.LICENSE_INVALID
        return api_error(code, str(error), status=error.status_code)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
