"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Access request not found")
    return api_error(E.VALIDATION_INVALID, "Invalid input", details={"reason": "..."})

    register_error_handlers(access_request_bp)   # map engine exceptions once
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    BusinessError,
    InvalidStateError,
    NotEligibleError,
    NotFoundError,
    ProtocolExhaustedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Identity – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # State – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Business rules – HTTP 422
    BUSINESS_RULE = "ERR_BUSINESS_RULE"
    NOT_ELIGIBLE = "ERR_NOT_ELIGIBLE"

    # Server – HTTP 500 / 503
    INTERNAL = "ERR_INTERNAL"
    UNAVAILABLE = "ERR_UNAVAILABLE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.BUSINESS_RULE: 422,
    E.NOT_ELIGIBLE: 422,
    E.INTERNAL: 500,
    E.UNAVAILABLE: 503,
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
        Human-readable explanation, safe to show to the requester.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, rule code, ...).

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


def register_error_handlers(bp) -> None:
    """Attach the engine exception → HTTP mapping to a blueprint."""

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(BusinessError)
    def _handle_business(error: BusinessError):
        return api_error(E.BUSINESS_RULE, error.reason, details={"rule": error.code})

    @bp.errorhandler(InvalidStateError)
    def _handle_state(error: InvalidStateError):
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"current_status": error.current_status, "action": error.action},
        )

    @bp.errorhandler(NotEligibleError)
    def _handle_not_eligible(error: NotEligibleError):
        return api_error(E.NOT_ELIGIBLE, str(error))

    @bp.errorhandler(ProtocolExhaustedError)
    def _handle_exhausted(error: ProtocolExhaustedError):
        logger.error("Protocol sequence exhausted: %s", error)
        return api_error(E.UNAVAILABLE, "Daily request capacity reached, try again tomorrow.")

    @bp.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        return api_error(E.VALIDATION_INVALID, error.description or error.name, status=error.code)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
