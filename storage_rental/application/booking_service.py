import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storage_rental.application.availability_index import AvailabilityIndex
from storage_rental.application.results import ServiceResult, service_boundary
from storage_rental.domain.availability import nights_between
from storage_rental.domain.exceptions import (
    AlreadyCancelledError,
    AvailabilityConflictError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from storage_rental.domain.identity import UserRole
from storage_rental.domain.pricing import CENT
from storage_rental.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    PaymentStateMachine,
)
from storage_rental.infrastructure.db.models import Booking
from storage_rental.infrastructure.repositories.account_repository import AccountRepository
from storage_rental.infrastructure.repositories.booking_repository import BookingRepository
from storage_rental.infrastructure.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)

_OVERLAP_CONSTRAINT = "ex_bookings_no_overlap"


def _require_id(value: str | None, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value


def _require_range(start_date: date | None, end_date: date | None) -> None:
    if not isinstance(start_date, date) or not isinstance(end_date, date):
        raise ValidationError("Start date and end date are required")
    if start_date >= end_date:
        raise ValidationError("Start date must be before end date")


def _require_price(total_price) -> Decimal:
    try:
        price = Decimal(str(total_price))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Total price must be a number") from exc
    if not price.is_finite() or price <= 0:
        raise ValidationError("Total price must be greater than zero")
    if price != price.quantize(CENT):
        raise ValidationError("Total price cannot have more than two decimal places")
    return price


class BookingService:
    """Application service coordinating the booking lifecycle."""

    def __init__(self, db: Session, clock: Callable[[], date] = date.today):
        self.db = db
        self.clock = clock
        self.booking_repository = BookingRepository(db)
        self.payment_repository = PaymentRepository(db)
        self.account_repository = AccountRepository(db)
        self.availability_index = AvailabilityIndex(db)

    # -----------------------------
    # Commands
    # -----------------------------

    @service_boundary
    def create_booking(
        self,
        renter_id: str,
        storage_location_id: str,
        start_date: date,
        end_date: date,
        total_price: Decimal,
    ) -> ServiceResult[Booking]:
        _require_id(renter_id, "Renter ID")
        _require_id(storage_location_id, "Storage location ID")
        _require_range(start_date, end_date)
        price = _require_price(total_price)

        renter = self.account_repository.get_user(renter_id)
        if not renter:
            raise NotFoundError("Renter", renter_id)
        if renter.role != UserRole.RENTER:
            raise ForbiddenError("Only renters can book storage locations")

        location = self.account_repository.lock_storage_location(storage_location_id)
        if not location:
            raise NotFoundError("Storage location", storage_location_id)

        self._ensure_available(storage_location_id, start_date, end_date)

        with self._overlap_guard():
            booking = self.booking_repository.add(
                Booking(
                    renter_id=renter_id,
                    storage_location_id=storage_location_id,
                    start_date=start_date,
                    end_date=end_date,
                    total_price=price,
                    status=BookingStatus.PENDING,
                )
            )
            self.db.commit()
        self.db.refresh(booking)

        logger.info(
            "Booking %s created for location %s (%s -> %s)",
            booking.id,
            storage_location_id,
            start_date,
            end_date,
        )
        return ServiceResult.success(booking, created=True)

    @service_boundary
    def update_booking(
        self,
        booking_id: str,
        start_date: date,
        end_date: date,
        total_price: Decimal,
    ) -> ServiceResult[Booking]:
        _require_id(booking_id, "Booking ID")
        _require_range(start_date, end_date)
        price = _require_price(total_price)

        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=booking.status.value,
                reason="cancelled bookings cannot be changed",
            )

        self.account_repository.lock_storage_location(booking.storage_location_id)
        self._ensure_available(
            booking.storage_location_id,
            start_date,
            end_date,
            exclude_booking_id=booking.id,
        )

        booking.start_date = start_date
        booking.end_date = end_date
        booking.total_price = price
        with self._overlap_guard():
            self.db.commit()
        self.db.refresh(booking)

        logger.info("Booking %s moved to %s -> %s", booking.id, start_date, end_date)
        return ServiceResult.success(booking)

    @service_boundary
    def confirm_booking(
        self,
        booking_id: str,
        payment_id: str | None,
    ) -> ServiceResult[Booking]:
        _require_id(booking_id, "Booking ID")

        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFoundError("Booking", booking_id)

        BookingStateMachine.validate_confirmation(booking.status, payment_id)

        payment = self.payment_repository.get_by_id(payment_id)
        if not payment:
            raise NotFoundError("Payment", payment_id)
        if payment.booking_id != booking.id:
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=BookingStatus.CONFIRMED.value,
                reason="payment belongs to another booking",
            )
        if not payment.external_invoice_id or not PaymentStateMachine.is_issued(payment.status):
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=BookingStatus.CONFIRMED.value,
                reason="invoice has not been issued",
            )

        booking.payment_id = payment.id
        self._transition(booking, BookingStatus.CONFIRMED)
        self.db.commit()
        self.db.refresh(booking)

        logger.info("Booking %s confirmed with payment %s", booking.id, payment.id)
        return ServiceResult.success(booking)

    @service_boundary
    def cancel_booking(self, booking_id: str) -> ServiceResult[Booking]:
        _require_id(booking_id, "Booking ID")

        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        if booking.status == BookingStatus.CANCELLED:
            raise AlreadyCancelledError(f"Booking {booking_id} is already cancelled")

        self._transition(booking, BookingStatus.CANCELLED)
        self.db.commit()
        self.db.refresh(booking)

        logger.info("Booking %s cancelled", booking.id)
        return ServiceResult.success(booking)

    # -----------------------------
    # Queries
    # -----------------------------

    @service_boundary
    def get_by_id(self, booking_id: str) -> ServiceResult[Booking]:
        _require_id(booking_id, "Booking ID")
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        return ServiceResult.success(booking)

    @service_boundary
    def get_all(self) -> ServiceResult[list[Booking]]:
        return ServiceResult.success(self.booking_repository.list_all())

    @service_boundary
    def get_by_renter(self, renter_id: str) -> ServiceResult[list[Booking]]:
        _require_id(renter_id, "Renter ID")
        if not self.account_repository.get_user(renter_id):
            raise NotFoundError("Renter", renter_id)
        return ServiceResult.success(self.booking_repository.list_by_renter(renter_id))

    @service_boundary
    def get_by_storage_location(self, storage_location_id: str) -> ServiceResult[list[Booking]]:
        _require_id(storage_location_id, "Storage location ID")
        if not self.account_repository.get_storage_location(storage_location_id):
            raise NotFoundError("Storage location", storage_location_id)
        return ServiceResult.success(
            self.booking_repository.list_by_storage_location(storage_location_id)
        )

    @service_boundary
    def get_by_status(self, status: BookingStatus) -> ServiceResult[list[Booking]]:
        if not isinstance(status, BookingStatus):
            raise ValidationError(f"Unknown booking status: {status}")
        return ServiceResult.success(self.booking_repository.list_by_status(status))

    @service_boundary
    def get_for_date_range(self, start_date: date, end_date: date) -> ServiceResult[list[Booking]]:
        _require_range(start_date, end_date)
        return ServiceResult.success(
            self.booking_repository.list_for_date_range(start_date, end_date)
        )

    @service_boundary
    def get_active(self) -> ServiceResult[list[Booking]]:
        return ServiceResult.success(self.booking_repository.list_active())

    @service_boundary
    def get_upcoming(self) -> ServiceResult[list[Booking]]:
        return ServiceResult.success(self.booking_repository.list_upcoming(self.clock()))

    @service_boundary
    def get_current(self) -> ServiceResult[list[Booking]]:
        return ServiceResult.success(self.booking_repository.list_current(self.clock()))

    @service_boundary
    def get_expired(self) -> ServiceResult[list[Booking]]:
        return ServiceResult.success(self.booking_repository.list_expired(self.clock()))

    @service_boundary
    def get_starting_within_days(self, days: int) -> ServiceResult[list[Booking]]:
        if not isinstance(days, int) or days < 0:
            raise ValidationError("Days must be zero or greater")
        return ServiceResult.success(
            self.booking_repository.list_starting_within(self.clock(), days)
        )

    @service_boundary
    def check_availability(
        self,
        storage_location_id: str,
        start_date: date,
        end_date: date,
    ) -> ServiceResult[bool]:
        _require_id(storage_location_id, "Storage location ID")
        _require_range(start_date, end_date)
        if not self.account_repository.get_storage_location(storage_location_id):
            raise NotFoundError("Storage location", storage_location_id)
        return ServiceResult.success(
            self.availability_index.is_available(storage_location_id, start_date, end_date)
        )

    @service_boundary
    def calculate_duration(self, booking_id: str) -> ServiceResult[int]:
        _require_id(booking_id, "Booking ID")
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        return ServiceResult.success(nights_between(booking.start_date, booking.end_date))

    # -----------------------------
    # Helpers
    # -----------------------------

    def _ensure_available(
        self,
        storage_location_id: str,
        start_date: date,
        end_date: date,
        exclude_booking_id: str | None = None,
    ) -> None:
        conflicts = self.availability_index.find_overlapping(
            storage_location_id,
            start_date,
            end_date,
            exclude_booking_id=exclude_booking_id,
        )
        if conflicts:
            raise AvailabilityConflictError(
                f"Storage location {storage_location_id} is already booked "
                f"between {start_date} and {end_date}"
            )

    @contextmanager
    def _overlap_guard(self):
        # The exclusion constraint can fire on flush or on commit.
        try:
            yield
        except IntegrityError as exc:
            if _OVERLAP_CONSTRAINT not in str(exc.orig):
                raise
            raise AvailabilityConflictError(
                "Storage location is already booked for these dates"
            ) from exc

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)
