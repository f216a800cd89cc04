# storage_rental/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from storage_rental.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    DRAFT = "DRAFT"
    OPEN = "OPEN"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    VOID = "VOID"
    UNCOLLECTIBLE = "UNCOLLECTIBLE"
    FAILED = "FAILED"


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.
    Defines the legal state transitions.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.CANCELLED,
        },
        BookingStatus.CANCELLED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def validate_confirmation(
        cls,
        from_status: BookingStatus,
        payment_id: str | None,
    ) -> None:
        """
        Confirmation additionally needs a payment reference on the booking.
        """
        cls.validate_transition(from_status, BookingStatus.CONFIRMED)
        if not payment_id:
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=BookingStatus.CONFIRMED.value,
                reason="booking has no payment reference",
            )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        """
        Returns True if the state is terminal (no further transitions allowed).
        """
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, status: BookingStatus
    ) -> Set[BookingStatus]:
        """
        Returns allowed next states from current state.
        """
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )


class PaymentStateMachine:
    """
    Payment status follows the processor's reported lifecycle.
    A status never moves backwards except into a failure/void state.
    """

    _ALLOWED_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
        PaymentStatus.DRAFT: {
            PaymentStatus.OPEN,
            PaymentStatus.PROCESSING,
            PaymentStatus.PAID,
            PaymentStatus.VOID,
            PaymentStatus.UNCOLLECTIBLE,
            PaymentStatus.FAILED,
        },
        PaymentStatus.OPEN: {
            PaymentStatus.PROCESSING,
            PaymentStatus.PAID,
            PaymentStatus.VOID,
            PaymentStatus.UNCOLLECTIBLE,
            PaymentStatus.FAILED,
        },
        PaymentStatus.PROCESSING: {
            PaymentStatus.OPEN,
            PaymentStatus.PAID,
            PaymentStatus.VOID,
            PaymentStatus.UNCOLLECTIBLE,
            PaymentStatus.FAILED,
        },
        PaymentStatus.UNCOLLECTIBLE: {
            PaymentStatus.PAID,
            PaymentStatus.VOID,
        },
        PaymentStatus.FAILED: {
            PaymentStatus.PAID,
            PaymentStatus.VOID,
            PaymentStatus.UNCOLLECTIBLE,
        },
        PaymentStatus.PAID: set(),
        PaymentStatus.VOID: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
    ) -> bool:
        if not isinstance(from_status, PaymentStatus) or not isinstance(to_status, PaymentStatus):
            raise TypeError(
                f"Expected PaymentStatus, got {type(from_status)} -> {type(to_status)}"
            )
        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
    ) -> None:
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: PaymentStatus) -> bool:
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @staticmethod
    def is_issued(status: PaymentStatus) -> bool:
        """
        True once the invoice left DRAFT and can back a confirmed booking.
        """
        return status in {
            PaymentStatus.OPEN,
            PaymentStatus.PROCESSING,
            PaymentStatus.PAID,
        }
