"""
Shared blueprint plumbing.

    current_user()             acting user from X-User-* headers
    get_service()              the app's WorkflowService
    json_body()                request JSON object or RequestError
    register_error_handlers()  domain exception -> api_error envelope
"""

from __future__ import annotations

import logging

from flask import current_app, request
from werkzeug.exceptions import HTTPException

from proposal_workflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from proposal_workflow.models.proposal import User, UserRole
from proposal_workflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

EXTENSION_KEY = "proposal_workflow"


class RequestError(Exception):
    """Malformed request (missing header, non-JSON body). Maps to HTTP 400."""

    def __init__(self, message: str, code: str = E.VALIDATION_REQUIRED):
        self.code = code
        super().__init__(message)


def get_service():
    return current_app.extensions[EXTENSION_KEY]


def current_user() -> User:
    """Build the acting user from request headers.

    Authentication happens upstream; these headers are trusted as-is.
    """
    user_id = (request.headers.get("X-User-Id") or "").strip()
    role = (request.headers.get("X-User-Role") or "").strip().upper()
    if not user_id or not role:
        raise RequestError("X-User-Id and X-User-Role headers are required")
    try:
        user_role = UserRole(role)
    except ValueError:
        raise RequestError(f"Unknown role: {role}", code=E.VALIDATION_INVALID) from None
    user = User(
        id=user_id,
        name=request.headers.get("X-User-Name") or user_id,
        role=user_role,
        email=request.headers.get("X-User-Email", ""),
    )
    return get_service().resolve_user(user)


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RequestError("Request body must be a JSON object", code=E.VALIDATION_INVALID)
    return data


def text_field(data: dict, name: str, *, required: bool = False) -> str | None:
    """Stripped string value of ``data[name]``; None when absent and optional."""
    value = data.get(name)
    if value is not None and not isinstance(value, str):
        raise RequestError(f"{name} must be a string", code=E.VALIDATION_INVALID)
    value = (value or "").strip()
    if not value:
        if required:
            raise RequestError(f"{name} is required")
        return None
    return value


def flag_field(data: dict, name: str, default: bool = False) -> bool:
    value = data.get(name, default)
    if not isinstance(value, bool):
        raise RequestError(f"{name} must be a boolean", code=E.VALIDATION_INVALID)
    return value


def register_error_handlers(bp):
    """Attach the standard domain-error handlers to ``bp``."""

    @bp.errorhandler(RequestError)
    def _handle_request_error(error: RequestError):
        return api_error(error.code, str(error))

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(PreconditionError)
    def _handle_precondition(error: PreconditionError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_VERSION, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
