from datetime import date

from sqlalchemy.orm import Session

from storage_rental.domain.availability import overlaps
from storage_rental.infrastructure.db.models import Booking
from storage_rental.infrastructure.repositories.booking_repository import BookingRepository


class AvailabilityIndex:
    """
    Answers whether a storage location is free for a date range.

    Reads run in the caller's transaction. Callers that go on to write
    must hold the storage-location lock first so the answer stays true
    until commit.
    """

    def __init__(self, db: Session):
        self.booking_repository = BookingRepository(db)

    def find_overlapping(
        self,
        storage_location_id: str,
        start_date: date,
        end_date: date,
        exclude_booking_id: str | None = None,
    ) -> list[Booking]:
        return [
            booking
            for booking in self.booking_repository.list_active_by_storage_location(
                storage_location_id
            )
            if booking.id != exclude_booking_id
            and overlaps(start_date, end_date, booking.start_date, booking.end_date)
        ]

    def is_available(
        self,
        storage_location_id: str,
        start_date: date,
        end_date: date,
        exclude_booking_id: str | None = None,
    ) -> bool:
        return not self.find_overlapping(
            storage_location_id,
            start_date,
            end_date,
            exclude_booking_id=exclude_booking_id,
        )
