# storage_rental/infrastructure/repositories/payment_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from storage_rental.infrastructure.db.models import Payment, PaymentWebhookEvent


class PaymentRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        payment_id: str,
        for_update: bool = False,
    ) -> Payment | None:
        stmt = select(Payment).where(Payment.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_booking_id(
        self,
        booking_id: str,
        for_update: bool = False,
    ) -> Payment | None:
        stmt = select(Payment).where(Payment.booking_id == booking_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_external_invoice_id(
        self,
        invoice_id: str,
        for_update: bool = False,
    ) -> Payment | None:
        stmt = select(Payment).where(Payment.external_invoice_id == invoice_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def add(self, payment: Payment) -> Payment:
        self.db.add(payment)
        self.db.flush()
        return payment

    def has_webhook_event(self, provider: str, event_id: str) -> bool:
        stmt = (
            select(PaymentWebhookEvent.id)
            .where(PaymentWebhookEvent.provider == provider)
            .where(PaymentWebhookEvent.event_id == event_id)
        )
        return self.db.execute(stmt).first() is not None

    def record_webhook_event(
        self,
        provider: str,
        event_id: str,
        event_type: str,
        invoice_id: str,
        payload_hash: str,
        payment_id: str | None,
        status: str = "PROCESSED",
    ) -> PaymentWebhookEvent:
        entry = PaymentWebhookEvent(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            invoice_id=invoice_id,
            payload_hash=payload_hash,
            payment_id=payment_id,
            status=status,
        )
        self.db.add(entry)
        return entry
