"""
Access-request exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once and get consistent HTTP status codes everywhere.

A *denied* decision is NOT an exception: it is a successful call that
returns a DENIED record carrying a denial reason.

Usage:
    from app.core.exceptions import NotFoundError, BusinessError

    raise NotFoundError(resource="AccessRequest", resource_id=42)
    raise BusinessError("Justification is too vague", code="JUSTIFICATION_INSUFFICIENT")
"""


class AccessRequestError(Exception):
    """Base class for all errors raised by the access-request engine."""


class NotFoundError(AccessRequestError):
    """Raised when a resource does not exist or is not owned by the caller.

    Used for BOTH genuinely missing records AND ownership mismatches, so a
    requester cannot probe for the existence of another requester's data.

    Args:
        resource: Human-readable entity name (e.g. "AccessRequest", "Module").
        resource_id: The key that was looked up. Included in logs.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(AccessRequestError):
    """Raised when caller input is malformed (sizes, lengths, unknown enums).

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class BusinessError(AccessRequestError):
    """Hard rejection from the rule engine: nothing is persisted.

    Args:
        reason: Human-readable explanation surfaced to the requester.
        code: Machine-readable rule code (e.g. "EXISTING_ACCESS").
    """

    def __init__(self, reason: str, code: str = "BUSINESS_RULE") -> None:
        self.reason = reason
        self.code = code
        super().__init__(reason)


class InvalidStateError(AccessRequestError):
    """Raised when a transition is attempted from the wrong status."""

    def __init__(self, protocol: str, action: str, current: str, reason: str | None = None) -> None:
        msg = f"Cannot {action} request {protocol} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.protocol = protocol
        self.action = action
        self.current_status = current
        self.reason = reason


class NotEligibleError(AccessRequestError):
    """Raised when a renewal is attempted outside the eligibility window."""


class ProtocolExhaustedError(AccessRequestError):
    """Raised when the daily protocol sequence would exceed its 4-digit range."""
