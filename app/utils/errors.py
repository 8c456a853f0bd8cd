"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Concept paper not found")
    return api_error(E.VALIDATION_REQUIRED, "remarks is required")
    return workflow_error_response(exc)
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • bare upper-case codes come straight from ``WorkflowError.code``
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business-rule validation – HTTP 422
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"

    # Workflow – status per code below
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    NO_PREVIOUS_STAGE = "NO_PREVIOUS_STAGE"
    ALREADY_INITIALIZED = "ALREADY_INITIALIZED"
    EMPTY_TEMPLATE = "EMPTY_TEMPLATE"
    CHECKPOINT_NOT_FOUND = "CHECKPOINT_NOT_FOUND"
    ALREADY_INSERTED = "ALREADY_INSERTED"
    UNKNOWN_DEADLINE_OPTION = "UNKNOWN_DEADLINE_OPTION"
    CORRUPTED_STATE = "CORRUPTED_STATE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.ILLEGAL_TRANSITION: 409,
    E.NO_PREVIOUS_STAGE: 409,
    E.ALREADY_INITIALIZED: 409,
    E.EMPTY_TEMPLATE: 500,
    E.CHECKPOINT_NOT_FOUND: 409,
    E.ALREADY_INSERTED: 409,
    E.UNKNOWN_DEADLINE_OPTION: 422,
    E.CORRUPTED_STATE: 500,
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
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

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


def workflow_error_response(exc):
    """Render any ``WorkflowError`` through ``api_error`` using its own code."""
    return api_error(exc.code, exc.message, details=exc.details or None)
