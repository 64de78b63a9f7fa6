"""Standardised API error responses.

Usage
-----
    from proposal_workflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Proposal not found")
    return api_error(E.VALIDATION_REQUIRED, "transition_id is required")
    return api_error(E.CONFLICT_STATE, "Condition not met: ...", details={...})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_VERSION: 409,
    E.CONFLICT_STATE: 409,
    E.FORBIDDEN: 403,
    E.INTERNAL: 500,
}

# Exception class name -> error code, used when turning a failed
# TransitionResult into a response.
ERROR_TYPE_CODES: dict[str, str] = {
    "NotFoundError": E.NOT_FOUND,
    "ValidationError": E.VALIDATION_CONSTRAINT,
    "AuthorizationError": E.FORBIDDEN,
    "PreconditionError": E.CONFLICT_STATE,
    "ConflictError": E.CONFLICT_VERSION,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Build ``({"error", "code"[, "details"]}, status)`` for a Flask view.

    The status comes from ``status`` when given, else from the code's
    default mapping, else 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)


def result_error(result):
    """Turn a failed TransitionResult into an ``api_error`` response."""
    code = ERROR_TYPE_CODES.get(result.error_type or "", E.INTERNAL)
    return api_error(code, result.error or "Unknown error occurred")
