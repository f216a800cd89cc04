# storage_rental/infrastructure/repositories/booking_repository.py

from datetime import date, timedelta

from sqlalchemy.orm import Session, selectinload
from sqlalchemy import select

from storage_rental.infrastructure.db.models import Booking
from storage_rental.domain.state_machine import BookingStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def _list(self, *criteria) -> list[Booking]:
        stmt = select(Booking)
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = (
            stmt.options(
                selectinload(Booking.renter),
                selectinload(Booking.storage_location),
            )
            .order_by(Booking.start_date, Booking.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_by_id(
        self,
        booking_id: str,
        for_update: bool = False,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self.db.flush()
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def list_all(self) -> list[Booking]:
        return self._list()

    def list_by_renter(self, renter_id: str) -> list[Booking]:
        return self._list(Booking.renter_id == renter_id)

    def list_by_storage_location(self, storage_location_id: str) -> list[Booking]:
        return self._list(Booking.storage_location_id == storage_location_id)

    def list_active_by_storage_location(self, storage_location_id: str) -> list[Booking]:
        return self._list(
            Booking.storage_location_id == storage_location_id,
            Booking.status != BookingStatus.CANCELLED,
        )

    def list_by_status(self, status: BookingStatus) -> list[Booking]:
        return self._list(Booking.status == status)

    def list_active(self) -> list[Booking]:
        return self._list(Booking.status != BookingStatus.CANCELLED)

    def list_for_date_range(self, start_date: date, end_date: date) -> list[Booking]:
        # Half-open overlap with [start_date, end_date), any status.
        return self._list(
            Booking.start_date < end_date,
            Booking.end_date > start_date,
        )

    def list_upcoming(self, today: date) -> list[Booking]:
        return self._list(
            Booking.status != BookingStatus.CANCELLED,
            Booking.start_date > today,
        )

    def list_current(self, today: date) -> list[Booking]:
        return self._list(
            Booking.status != BookingStatus.CANCELLED,
            Booking.start_date <= today,
            Booking.end_date >= today,
        )

    def list_expired(self, today: date) -> list[Booking]:
        return self._list(Booking.end_date < today)

    def list_starting_within(self, today: date, days: int) -> list[Booking]:
        return self._list(
            Booking.status != BookingStatus.CANCELLED,
            Booking.start_date >= today,
            Booking.start_date <= today + timedelta(days=days),
        )
