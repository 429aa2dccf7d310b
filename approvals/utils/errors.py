"""Standardised API error responses.

Usage
-----
    from approvals.utils.errors import api_error, register_error_handlers, E

    return api_error(E.VALIDATION_REQUIRED, "outcome is required")
    return api_error(E.UNAUTHENTICATED, "An authenticated user is required")

    register_error_handlers(process_bp)   # maps every engine exception once
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from approvals.core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    InvalidReorderError,
    NoStepsError,
    NotFoundError,
    TerminalStateError,
    UnauthorizedActorError,
    ValidationError,
)
from approvals.integrations.directory import DirectoryUnavailableError

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for every application error
    """

    # Malformed request – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business rule – HTTP 422
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"
    INVALID_REORDER = "ERR_INVALID_REORDER"
    NO_STEPS = "ERR_NO_STEPS"

    # Identity – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    UNAUTHORIZED_ACTOR = "ERR_UNAUTHORIZED_ACTOR"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    TERMINAL_STATE = "ERR_TERMINAL_STATE"
    CONCURRENT_MODIFICATION = "ERR_CONCURRENT_MODIFICATION"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500 / 503
    INTERNAL = "ERR_INTERNAL"
    DIRECTORY_UNAVAILABLE = "ERR_DIRECTORY_UNAVAILABLE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.INVALID_REORDER: 422,
    E.NO_STEPS: 422,
    E.UNAUTHENTICATED: 401,
    E.UNAUTHORIZED_ACTOR: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.TERMINAL_STATE: 409,
    E.CONCURRENT_MODIFICATION: 409,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
    E.DIRECTORY_UNAVAILABLE: 503,
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
        Extra structured payload (missing/extra step ids, versions, ...).

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


# ── Blueprint error handlers ──────────────────────────────────────────
def register_error_handlers(bp) -> None:
    """Map every engine exception to its JSON response on blueprint `bp`."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(InvalidReorderError)
    def _handle_invalid_reorder(error: InvalidReorderError):
        return api_error(E.INVALID_REORDER, str(error), details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(NoStepsError)
    def _handle_no_steps(error: NoStepsError):
        return api_error(E.NO_STEPS, str(error))

    @bp.errorhandler(UnauthorizedActorError)
    def _handle_unauthorized_actor(error: UnauthorizedActorError):
        return api_error(
            E.UNAUTHORIZED_ACTOR, str(error),
            details={"step_order": error.step_order},
        )

    @bp.errorhandler(TerminalStateError)
    def _handle_terminal(error: TerminalStateError):
        return api_error(E.TERMINAL_STATE, str(error), details={"status": error.status})

    @bp.errorhandler(ConcurrentModificationError)
    def _handle_concurrent(error: ConcurrentModificationError):
        details = {}
        if error.expected is not None:
            details = {"expected_version": error.expected, "actual_version": error.actual}
        return api_error(E.CONCURRENT_MODIFICATION, str(error), details=details)

    @bp.errorhandler(DirectoryUnavailableError)
    def _handle_directory(error: DirectoryUnavailableError):
        logger.error("Directory unavailable endpoint=%s error=%s", request.endpoint, error)
        return api_error(E.DIRECTORY_UNAVAILABLE, "User directory is unavailable")

    @bp.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        code = {404: E.NOT_FOUND, 429: E.RATE_LIMITED}.get(error.code, E.VALIDATION_INVALID)
        return api_error(code, error.description or error.name, status=error.code)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
