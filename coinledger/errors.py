"""Ledger error taxonomy and its HTTP rendering."""

from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse


class LedgerError(Exception):
    """Base error with a stable machine-readable code."""

    code = "LEDGER_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Ledger operation failed"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


# Input errors: recoverable by retrying with corrected input.


class ValidationError(LedgerError):
    code = "VALIDATION_ERROR"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid input"


class InvalidAmount(ValidationError):
    code = "INVALID_AMOUNT"
    default_message = "Amount must be a positive number of coins"


class BelowMinimum(ValidationError):
    code = "BELOW_MINIMUM"
    default_message = "Requested coins are below the minimum withdrawal"


class AboveMaximum(ValidationError):
    code = "ABOVE_MAXIMUM"
    default_message = "Requested coins exceed the maximum withdrawal"


class LimitExceeded(ValidationError):
    code = "LIMIT_EXCEEDED"
    default_message = "Withdrawal limit exceeded"


# Business rule and workflow errors.


class InsufficientBalance(LedgerError):
    code = "INSUFFICIENT_BALANCE"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "Insufficient coin balance"


class InvalidTransition(LedgerError):
    code = "INVALID_TRANSITION"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Transition not allowed from the current state"


class ConcurrencyConflict(LedgerError):
    code = "CONCURRENCY_CONFLICT"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Account is busy, retry later"


class DuplicatePaymentReference(LedgerError):
    code = "DUPLICATE_PAYMENT_REFERENCE"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Payment reference was already used by another purchase"


# Configuration errors: operator-caused, never retried or defaulted.


class ConfigurationError(LedgerError):
    code = "CONFIGURATION_ERROR"
    status_code = status.HTTP_409_CONFLICT


class NoMatchingSlab(ConfigurationError):
    code = "NO_MATCHING_SLAB"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "No payout slab covers the requested amount"


class SlabGap(ConfigurationError):
    code = "SLAB_GAP"
    default_message = "Payout slabs leave a gap"


class OverlappingSlabs(ConfigurationError):
    code = "OVERLAPPING_SLABS"
    default_message = "Payout slabs overlap"


class CacheInvalidationFailed(LedgerError):
    """The change is committed but cached catalog reads could not be cleared."""

    code = "CACHE_INVALIDATION_FAILED"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Change saved, but cached catalog data could not be cleared"


# Lookup misses.


class NotFound(LedgerError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class UnknownTier(NotFound):
    code = "UNKNOWN_TIER"
    default_message = "Unknown member tier"


class UnknownGift(NotFound):
    code = "UNKNOWN_GIFT"
    default_message = "Unknown gift"


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    headers = {"Retry-After": "1"} if isinstance(exc, ConcurrencyConflict) else None
    body = {"detail": exc.message, "code": exc.code, "details": exc.details}
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)
