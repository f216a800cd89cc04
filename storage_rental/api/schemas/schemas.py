from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    storage_location_id: str
    start_date: date
    end_date: date
    total_price: Decimal


class BookingUpdate(BaseModel):
    start_date: date
    end_date: date
    total_price: Decimal


class ConfirmBookingRequest(BaseModel):
    payment_id: str | None = None


class BookingResponse(BaseModel):
    id: str
    renter_id: str
    renter_name: str | None = None
    storage_location_id: str
    storage_location_name: str | None = None
    start_date: date
    end_date: date
    total_price: Decimal
    status: str
    payment_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PaymentResponse(BaseModel):
    id: str
    booking_id: str
    renter_id: str
    lender_id: str
    status: str
    amount_charged: Decimal
    platform_fee: Decimal
    amount_transferred: Decimal
    currency: str
    external_invoice_id: str | None = None
    hosted_invoice_url: str | None = None


class AvailabilityResponse(BaseModel):
    storage_location_id: str
    start_date: date
    end_date: date
    available: bool


class DurationResponse(BaseModel):
    booking_id: str
    nights: int = Field(ge=0)


class InvoiceUrlResponse(BaseModel):
    payment_id: str
    url: str


class WebhookAck(BaseModel):
    status: Literal["processed", "ignored"]
    payment_id: str | None = None
