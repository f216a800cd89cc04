from functools import lru_cache

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from storage_rental import config
from storage_rental.application.booking_service import BookingService
from storage_rental.application.payment_service import PaymentService
from storage_rental.domain.identity import Identity, UserRole
from storage_rental.infrastructure.db.session import SessionLocal
from storage_rental.infrastructure.payments.gateway import PaymentGateway
from storage_rental.infrastructure.payments.razorpay_gateway import RazorpayGateway


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_identity(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Identity:
    """Caller identity as forwarded by the auth gateway in front of this API."""
    if not x_user_id or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id or X-User-Role header.",
        )
    try:
        role = UserRole(x_user_role.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role: {x_user_role}",
        )
    return Identity(user_id=x_user_id, role=role)


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    if not config.RAZORPAY_KEY_ID or not config.RAZORPAY_KEY_SECRET:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Razorpay keys not configured. Set RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET.",
        )
    return RazorpayGateway(
        key_id=config.RAZORPAY_KEY_ID,
        key_secret=config.RAZORPAY_KEY_SECRET,
        webhook_secret=config.RAZORPAY_WEBHOOK_SECRET,
        timeout=config.PAYMENT_GATEWAY_TIMEOUT_SECONDS,
        days_until_due=config.INVOICE_DAYS_UNTIL_DUE,
    )


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(db)


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaymentService:
    return PaymentService(db, gateway, booking_service=booking_service)


def get_payment_lookup_service(
    db: Session = Depends(get_db),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaymentService:
    # Reads never call the provider, so they work without Razorpay keys.
    return PaymentService(db, gateway=None, booking_service=booking_service)


async def get_raw_body(request: Request) -> bytes:
    # Signature checks need the exact bytes that were signed.
    return await request.body()
