"""Typed error hierarchy for the imprest workflow.

    ImprestError
    +-- ValidationError          bad input shape or range (HTTP 400)
    |   +-- InvalidAmountError
    |   +-- MissingReasonError
    |   +-- MissingCommentsError
    |   +-- EmptyReceiptsError
    |   +-- InvalidReceiptError
    |   +-- InvalidFieldError
    +-- StateError               illegal or stale transition (HTTP 409)
    |   +-- InvalidStateError
    |   +-- StaleStateError
    |   +-- IdempotencyConflictError
    +-- AuthorizationError       authenticated caller lacks the role (HTTP 403)
    |   +-- ForbiddenError
    |   +-- SelfApprovalError
    +-- UnauthenticatedError     missing or invalid credential (HTTP 401)
    +-- NotFoundError            (HTTP 404)
    +-- UpstreamError            storage/transport failure (HTTP 502)

Callers branch on the category class; ``code`` is the machine-readable
identifier carried to API clients.
"""
from __future__ import annotations

from typing import Any


class ImprestError(Exception):
    category: str = "imprest"
    code: str = "IMPREST_ERROR"
    http_status: int = 500

    def __init__(self, message: str, *, field: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
            "field": self.field,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ImprestError):
    category = "validation"
    code = "VALIDATION_FAILED"
    http_status = 400


class InvalidAmountError(ValidationError):
    code = "INVALID_AMOUNT"

    def __init__(self, message: str = "amount must be greater than 0", *, field: str = "amount", **kwargs: Any) -> None:
        super().__init__(message, field=field, **kwargs)


class MissingReasonError(ValidationError):
    code = "MISSING_REASON"

    def __init__(self, message: str = "a rejection reason is required", **kwargs: Any) -> None:
        super().__init__(message, field="reason", **kwargs)


class MissingCommentsError(ValidationError):
    code = "MISSING_COMMENTS"

    def __init__(self, message: str = "comments are required", **kwargs: Any) -> None:
        super().__init__(message, field="comments", **kwargs)


class EmptyReceiptsError(ValidationError):
    code = "EMPTY_RECEIPTS"

    def __init__(self, message: str = "at least one receipt is required", **kwargs: Any) -> None:
        super().__init__(message, field="receipts", **kwargs)


class InvalidReceiptError(ValidationError):
    code = "INVALID_RECEIPT"


class InvalidFieldError(ValidationError):
    code = "INVALID_FIELD"


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class StateError(ImprestError):
    category = "state"
    code = "STATE_CONFLICT"
    http_status = 409


class InvalidStateError(StateError):
    code = "INVALID_STATE"

    def __init__(self, imprest_id: str, status: str, event: str) -> None:
        self.imprest_id = imprest_id
        self.status = status
        self.event = event
        super().__init__(
            f"cannot {event} imprest {imprest_id} while it is {status}",
            details={"imprest_id": imprest_id, "status": status, "event": event},
        )


class StaleStateError(StateError):
    code = "STALE_STATE"

    def __init__(self, imprest_id: str, message: str, **details: Any) -> None:
        self.imprest_id = imprest_id
        super().__init__(message, details={"imprest_id": imprest_id, **details})


class IdempotencyConflictError(StateError):
    code = "IDEMPOTENCY_CONFLICT"


# ---------------------------------------------------------------------------
# Authorization / authentication
# ---------------------------------------------------------------------------


class AuthorizationError(ImprestError):
    category = "authorization"
    code = "FORBIDDEN"
    http_status = 403


class ForbiddenError(AuthorizationError):
    code = "FORBIDDEN"


class SelfApprovalError(AuthorizationError):
    code = "SELF_APPROVAL"


class UnauthenticatedError(ImprestError):
    category = "authentication"
    code = "UNAUTHORIZED"
    http_status = 401


# ---------------------------------------------------------------------------
# Lookup / transport
# ---------------------------------------------------------------------------


class NotFoundError(ImprestError):
    category = "not_found"
    code = "NOT_FOUND"
    http_status = 404


class UpstreamError(ImprestError):
    category = "upstream"
    code = "UPSTREAM_FAILURE"
    http_status = 502
