"""Standardised API error responses.

Usage
-----
    from migas_audit.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Upload not found")
    return api_error(E.VALIDATION_REQUIRED, "start_date and end_date are required")
    return api_error(E.LICENSE_LIMIT, "License limits exceeded", details={"limits": limits})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_      prefix for standard application errors
     • LICENSE_  prefix for license guard / activation errors
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business rule – HTTP 422
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Immutable audit row touched – HTTP 409
    IMMUTABLE = "ERR_IMMUTABLE_RECORD"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"

    # License – HTTP 400 / 403 / 429
    LICENSE_INVALID = "LICENSE_INVALID"
    LICENSE_RESTRICTED = "LICENSE_FEATURE_RESTRICTED"
    LICENSE_LIMIT = "LICENSE_LIMIT_EXCEEDED"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.IMMUTABLE: 409,
    E.INTERNAL: 500,
    E.LICENSE_INVALID: 400,
    E.LICENSE_RESTRICTED: 403,
    E.LICENSE_LIMIT: 429,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (limit breakdown, transition info, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
