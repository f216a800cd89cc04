from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    AVAILABILITY_CONFLICT = "AVAILABILITY_CONFLICT"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    ALREADY_CANCELLED = "ALREADY_CANCELLED"
    MISSING_RELATED_DATA = "MISSING_RELATED_DATA"
    EXTERNAL_ACCOUNT_MISSING = "EXTERNAL_ACCOUNT_MISSING"
    NO_INVOICE_ASSOCIATED = "NO_INVOICE_ASSOCIATED"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class StorageRentalError(Exception):
    """
    Base exception for all domain-level errors
    raised by the booking and payment core.
    """

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR


class ValidationError(StorageRentalError):
    """Raised for malformed or out-of-range input."""

    kind = ErrorKind.VALIDATION_ERROR


class InvalidWebhookSignatureError(ValidationError):
    """Raised when a payment webhook fails signature verification."""


class NotFoundError(StorageRentalError):
    """Raised when a referenced record does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, identifier: str | None = None):
        self.resource = resource
        self.identifier = identifier

        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message)


class ForbiddenError(StorageRentalError):
    """Raised when the caller's role does not permit the operation."""

    kind = ErrorKind.FORBIDDEN


class AvailabilityConflictError(StorageRentalError):
    """Raised when a date range overlaps an active booking."""

    kind = ErrorKind.AVAILABILITY_CONFLICT


class InvalidStateTransitionError(StorageRentalError):
    """
    Raised when an illegal booking or payment state transition is attempted.
    """

    kind = ErrorKind.INVALID_STATE_TRANSITION

    def __init__(self, from_state: str, to_state: str, reason: str | None = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class AlreadyCancelledError(StorageRentalError):
    """Raised when cancelling a booking that is already cancelled."""

    kind = ErrorKind.ALREADY_CANCELLED


class MissingRelatedDataError(StorageRentalError):
    """Raised when a booking lacks the renter, location or lender needed for invoicing."""

    kind = ErrorKind.MISSING_RELATED_DATA


class ExternalAccountMissingError(StorageRentalError):
    """Raised when renter or lender has not finished payment-provider onboarding."""

    kind = ErrorKind.EXTERNAL_ACCOUNT_MISSING


class NoInvoiceAssociatedError(StorageRentalError):
    """Raised when a payment has no external invoice yet."""

    kind = ErrorKind.NO_INVOICE_ASSOCIATED


class UpstreamFailureError(StorageRentalError):
    """Raised when the payment provider call fails or times out."""

    kind = ErrorKind.UPSTREAM_FAILURE
