from datetime import date
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from storage_rental.api.dependencies import (
    get_booking_service,
    get_identity,
    get_payment_gateway,
    get_payment_lookup_service,
    get_payment_service,
    get_raw_body,
)
from storage_rental.api.schemas.schemas import (
    AvailabilityResponse,
    BookingCreate,
    BookingResponse,
    BookingUpdate,
    ConfirmBookingRequest,
    DurationResponse,
    InvoiceUrlResponse,
    PaymentResponse,
    WebhookAck,
)
from storage_rental.application.booking_service import BookingService
from storage_rental.application.payment_service import PaymentService
from storage_rental.application.results import ServiceResult
from storage_rental.domain.exceptions import ErrorKind, StorageRentalError
from storage_rental.domain.identity import Identity
from storage_rental.domain.state_machine import BookingStatus
from storage_rental.infrastructure.db.models import Booking, Payment
from storage_rental.infrastructure.payments.gateway import PaymentGateway


router = APIRouter()
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    ErrorKind.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MISSING_RELATED_DATA: status.HTTP_400_BAD_REQUEST,
    ErrorKind.EXTERNAL_ACCOUNT_MISSING: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NO_INVOICE_ASSOCIATED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.AVAILABILITY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATE_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_CANCELLED: status.HTTP_409_CONFLICT,
    ErrorKind.UPSTREAM_FAILURE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _error(kind: ErrorKind, message: str) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_ERROR.get(kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"error": kind.value, "message": message},
    )


def _unwrap(result: ServiceResult):
    if not result.ok:
        raise _error(result.error, result.message)
    return result.value


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        renter_id=booking.renter_id,
        renter_name=booking.renter.display_name if booking.renter else None,
        storage_location_id=booking.storage_location_id,
        storage_location_name=(
            booking.storage_location.name if booking.storage_location else None
        ),
        start_date=booking.start_date,
        end_date=booking.end_date,
        total_price=booking.total_price,
        status=booking.status.value,
        payment_id=booking.payment_id,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


def _booking_list(result: ServiceResult) -> list[BookingResponse]:
    return [_booking_response(booking) for booking in _unwrap(result)]


def _payment_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        booking_id=payment.booking_id,
        renter_id=payment.renter_id,
        lender_id=payment.lender_id,
        status=payment.status.value,
        amount_charged=payment.amount_charged,
        platform_fee=payment.platform_fee,
        amount_transferred=payment.amount_transferred,
        currency=payment.currency,
        external_invoice_id=payment.external_invoice_id,
        hosted_invoice_url=payment.hosted_invoice_url,
    )


@router.get("/health")
def health():
    return {"status": "ok"}


# -----------------------------
# Bookings
# -----------------------------

@router.post(
    "/bookings",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_booking(
    request: BookingCreate,
    identity: Identity = Depends(get_identity),
    service: BookingService = Depends(get_booking_service),
):
    if not identity.is_renter:
        raise _error(ErrorKind.FORBIDDEN, "Only renters can create bookings")

    booking = _unwrap(
        service.create_booking(
            renter_id=identity.user_id,
            storage_location_id=request.storage_location_id,
            start_date=request.start_date,
            end_date=request.end_date,
            total_price=request.total_price,
        )
    )
    return _booking_response(booking)


@router.get("/bookings", response_model=list[BookingResponse])
def list_bookings(
    booking_status: BookingStatus | None = Query(default=None, alias="status"),
    service: BookingService = Depends(get_booking_service),
):
    if booking_status is None:
        return _booking_list(service.get_all())
    return _booking_list(service.get_by_status(booking_status))


@router.get("/bookings/active", response_model=list[BookingResponse])
def list_active_bookings(service: BookingService = Depends(get_booking_service)):
    return _booking_list(service.get_active())


@router.get("/bookings/upcoming", response_model=list[BookingResponse])
def list_upcoming_bookings(service: BookingService = Depends(get_booking_service)):
    return _booking_list(service.get_upcoming())


@router.get("/bookings/current", response_model=list[BookingResponse])
def list_current_bookings(service: BookingService = Depends(get_booking_service)):
    return _booking_list(service.get_current())


@router.get("/bookings/expired", response_model=list[BookingResponse])
def list_expired_bookings(service: BookingService = Depends(get_booking_service)):
    return _booking_list(service.get_expired())


@router.get("/bookings/starting-within", response_model=list[BookingResponse])
def list_bookings_starting_within(
    days: int = Query(...),
    service: BookingService = Depends(get_booking_service),
):
    return _booking_list(service.get_starting_within_days(days))


@router.get("/bookings/date-range", response_model=list[BookingResponse])
def list_bookings_for_date_range(
    start_date: date = Query(...),
    end_date: date = Query(...),
    service: BookingService = Depends(get_booking_service),
):
    return _booking_list(service.get_for_date_range(start_date, end_date))


@router.get("/bookings/renter/{renter_id}", response_model=list[BookingResponse])
def list_bookings_by_renter(
    renter_id: str,
    service: BookingService = Depends(get_booking_service),
):
    return _booking_list(service.get_by_renter(renter_id))


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
):
    return _booking_response(_unwrap(service.get_by_id(booking_id)))


@router.put("/bookings/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: str,
    request: BookingUpdate,
    identity: Identity = Depends(get_identity),
    service: BookingService = Depends(get_booking_service),
):
    booking = _unwrap(
        service.update_booking(
            booking_id,
            start_date=request.start_date,
            end_date=request.end_date,
            total_price=request.total_price,
        )
    )
    logger.info("Booking %s updated by %s", booking_id, identity.user_id)
    return _booking_response(booking)


@router.post(
    "/bookings/{booking_id}/confirm",
    response_model=BookingResponse,
    dependencies=[Depends(get_identity)],
)
def confirm_booking(
    booking_id: str,
    request: ConfirmBookingRequest,
    service: BookingService = Depends(get_booking_service),
):
    booking = _unwrap(service.confirm_booking(booking_id, request.payment_id))
    return _booking_response(booking)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    identity: Identity = Depends(get_identity),
    service: BookingService = Depends(get_booking_service),
):
    booking = _unwrap(service.cancel_booking(booking_id))
    logger.info("Booking %s cancelled by %s", booking_id, identity.user_id)
    return _booking_response(booking)


@router.get("/bookings/{booking_id}/duration", response_model=DurationResponse)
def get_booking_duration(
    booking_id: str,
    service: BookingService = Depends(get_booking_service),
):
    nights = _unwrap(service.calculate_duration(booking_id))
    return DurationResponse(booking_id=booking_id, nights=nights)


@router.post(
    "/bookings/{booking_id}/invoice",
    response_model=PaymentResponse,
    dependencies=[Depends(get_identity)],
)
def issue_booking_invoice(
    booking_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    payment = _unwrap(service.create_and_issue_invoice(booking_id))
    return _payment_response(payment)


@router.get("/bookings/{booking_id}/payment", response_model=PaymentResponse)
def get_booking_payment(
    booking_id: str,
    service: PaymentService = Depends(get_payment_lookup_service),
):
    return _payment_response(_unwrap(service.get_payment_by_booking(booking_id)))


# -----------------------------
# Storage locations
# -----------------------------

@router.get(
    "/storage-locations/{storage_location_id}/bookings",
    response_model=list[BookingResponse],
)
def list_bookings_by_storage_location(
    storage_location_id: str,
    service: BookingService = Depends(get_booking_service),
):
    return _booking_list(service.get_by_storage_location(storage_location_id))


@router.get(
    "/storage-locations/{storage_location_id}/availability",
    response_model=AvailabilityResponse,
)
def check_storage_location_availability(
    storage_location_id: str,
    start_date: date = Query(...),
    end_date: date = Query(...),
    service: BookingService = Depends(get_booking_service),
):
    available = _unwrap(
        service.check_availability(storage_location_id, start_date, end_date)
    )
    return AvailabilityResponse(
        storage_location_id=storage_location_id,
        start_date=start_date,
        end_date=end_date,
        available=available,
    )


# -----------------------------
# Payments
# -----------------------------

@router.post("/payments/webhook", response_model=WebhookAck)
def payment_webhook(
    body: bytes = Depends(get_raw_body),
    x_razorpay_signature: str | None = Header(default=None),
    x_razorpay_event_id: str | None = Header(default=None),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    service: PaymentService = Depends(get_payment_service),
):
    try:
        event = gateway.parse_webhook(body, x_razorpay_signature, x_razorpay_event_id)
    except StorageRentalError as exc:
        logger.warning("Rejected payment webhook: %s", exc)
        raise _error(exc.kind, str(exc))

    if event is None:
        return WebhookAck(status="ignored")

    payment = _unwrap(service.update_status_from_webhook(event))
    if payment is None:
        return WebhookAck(status="ignored")
    return WebhookAck(status="processed", payment_id=payment.id)


@router.get("/payments/{payment_id}", response_model=PaymentResponse)
def get_payment(
    payment_id: str,
    service: PaymentService = Depends(get_payment_lookup_service),
):
    return _payment_response(_unwrap(service.get_payment(payment_id)))


@router.get("/payments/{payment_id}/invoice-url", response_model=InvoiceUrlResponse)
def get_payment_invoice_url(
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
):
    url = _unwrap(service.get_invoice_url(payment_id))
    return InvoiceUrlResponse(payment_id=payment_id, url=url)
