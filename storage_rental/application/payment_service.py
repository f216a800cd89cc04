import logging
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storage_rental import config
from storage_rental.application.booking_service import BookingService
from storage_rental.application.results import ServiceResult, service_boundary
from storage_rental.domain.availability import nights_between
from storage_rental.domain.exceptions import (
    ExternalAccountMissingError,
    InvalidStateTransitionError,
    MissingRelatedDataError,
    NoInvoiceAssociatedError,
    NotFoundError,
    UpstreamFailureError,
    ValidationError,
)
from storage_rental.domain.pricing import compute_fee_split
from storage_rental.domain.state_machine import (
    BookingStatus,
    PaymentStateMachine,
    PaymentStatus,
)
from storage_rental.infrastructure.db.models import Booking, Payment
from storage_rental.infrastructure.payments.gateway import (
    InvoiceEvent,
    InvoiceLineItem,
    InvoiceSnapshot,
    PaymentGateway,
)
from storage_rental.infrastructure.repositories.account_repository import AccountRepository
from storage_rental.infrastructure.repositories.booking_repository import BookingRepository
from storage_rental.infrastructure.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)

# Invoice status reported after issuance. Anything else keeps the payment in DRAFT.
_STATUS_FROM_INVOICE = {
    "open": PaymentStatus.OPEN,
    "paid": PaymentStatus.PAID,
    "void": PaymentStatus.VOID,
    "uncollectible": PaymentStatus.UNCOLLECTIBLE,
}

_STATUS_FROM_EVENT = {
    **_STATUS_FROM_INVOICE,
    "processing": PaymentStatus.PROCESSING,
    "failed": PaymentStatus.FAILED,
}


class PaymentService:
    """
    Invoice issuance and reconciliation for bookings.

    Issuance is not transactional end to end. The external invoice id is
    committed as soon as the provider returns it, so a retry after a
    failed finalization resumes with the same invoice instead of creating
    a second one.
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway | None,
        booking_service: BookingService | None = None,
        fee_percent: Decimal = config.PLATFORM_FEE_PERCENT,
        currency: str = config.PAYMENT_CURRENCY,
    ):
        self.db = db
        self.gateway = gateway
        self.booking_service = booking_service or BookingService(db)
        self.fee_percent = fee_percent
        self.currency = currency
        self.booking_repository = BookingRepository(db)
        self.payment_repository = PaymentRepository(db)
        self.account_repository = AccountRepository(db)

    @service_boundary
    def create_and_issue_invoice(self, booking_id: str) -> ServiceResult[Payment]:
        if not booking_id:
            raise ValidationError("Booking ID is required")

        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidStateTransitionError(
                from_state=booking.status.value,
                to_state=BookingStatus.CONFIRMED.value,
                reason="cancelled bookings cannot be invoiced",
            )

        renter = self.account_repository.get_user(booking.renter_id)
        location = self.account_repository.get_storage_location(booking.storage_location_id)
        lender = self.account_repository.get_user(location.lender_id) if location else None
        if not renter or not location or not lender:
            raise MissingRelatedDataError(
                f"Booking {booking_id} is missing its renter, storage location or lender"
            )

        customer_id = self.account_repository.get_billing_customer_id(renter)
        if not customer_id:
            raise ExternalAccountMissingError(
                f"Renter {renter.id} has no billing account with the payment provider"
            )
        payee_account_id = self.account_repository.get_payee_account_id(lender)
        if not payee_account_id:
            raise ExternalAccountMissingError(
                f"Lender {lender.id} has no payout-enabled account with the payment provider"
            )

        payment = self.payment_repository.get_by_booking_id(booking.id, for_update=True)
        if payment and payment.status != PaymentStatus.DRAFT:
            logger.info(
                "Payment %s for booking %s already issued (%s)",
                payment.id,
                booking.id,
                payment.status.value,
            )
            self._confirm_if_issued(booking.id, payment)
            return ServiceResult.success(payment)

        if not payment or not payment.external_invoice_id:
            split = compute_fee_split(booking.total_price, self.fee_percent)

            if not payment:
                payment = self.payment_repository.add(
                    Payment(
                        booking_id=booking.id,
                        renter_id=renter.id,
                        lender_id=lender.id,
                        currency=self.currency,
                        status=PaymentStatus.DRAFT,
                        amount_charged=split.amount_charged,
                        platform_fee=split.platform_fee,
                        amount_transferred=split.amount_transferred,
                    )
                )
                booking.payment_id = payment.id

            payment.apply_fee_split(split)
            line_item = InvoiceLineItem(
                name=f"Storage rental: {location.name}",
                description=(
                    f"{booking.start_date.isoformat()} to {booking.end_date.isoformat()} "
                    f"({nights_between(booking.start_date, booking.end_date)} nights)"
                ),
                amount_minor=split.amount_minor,
                currency=self.currency,
            )
            metadata = {
                "booking_id": booking.id,
                "payment_id": payment.id,
                "lender_id": lender.id,
                "payee_account_id": payee_account_id,
            }

            # Booking row stays locked until the invoice id is stored.
            draft = self.gateway.create_draft_invoice(customer_id, [line_item], metadata)
            payment.external_invoice_id = draft.invoice_id
            if draft.hosted_url:
                payment.hosted_invoice_url = draft.hosted_url
            self.db.commit()

            logger.info(
                "Draft invoice %s created for booking %s (payment %s)",
                draft.invoice_id,
                booking.id,
                payment.id,
            )
        else:
            logger.info(
                "Resuming issuance of invoice %s for payment %s",
                payment.external_invoice_id,
                payment.id,
            )

        payment_id = payment.id
        snapshot = self._finalize(payment.external_invoice_id)

        payment = self.payment_repository.get_by_id(payment_id, for_update=True)
        if snapshot:
            self._apply_snapshot(payment, snapshot)
        self.db.commit()

        self._confirm_if_issued(booking_id, payment)
        return ServiceResult.success(payment)

    @service_boundary
    def update_status_from_webhook(self, event: InvoiceEvent) -> ServiceResult[Payment]:
        provider = self.gateway.provider

        if self.payment_repository.has_webhook_event(provider, event.event_id):
            logger.info("Webhook event %s already processed", event.event_id)
            return ServiceResult.success(None)

        payment = self.payment_repository.get_by_external_invoice_id(
            event.invoice_id,
            for_update=True,
        )
        if not payment:
            logger.warning(
                "Ignoring %s for unknown invoice %s",
                event.event_type,
                event.invoice_id,
            )
            return ServiceResult.success(None)

        target = _STATUS_FROM_EVENT.get(event.status)
        if target is None:
            logger.info("Ignoring unmapped invoice status %r for %s", event.status, payment.id)
        elif target == payment.status:
            pass
        elif PaymentStateMachine.can_transition(payment.status, target):
            logger.info("Payment %s: %s -> %s", payment.id, payment.status.value, target.value)
            payment.status = target
        else:
            logger.warning(
                "Ignoring regression of payment %s from %s to %s",
                payment.id,
                payment.status.value,
                target.value,
            )

        if event.payment_intent_id and not payment.external_payment_intent_id:
            payment.external_payment_intent_id = event.payment_intent_id
        if event.charge_id and not payment.external_charge_id:
            payment.external_charge_id = event.charge_id
        if event.transfer_id and not payment.external_transfer_id:
            payment.external_transfer_id = event.transfer_id

        self.payment_repository.record_webhook_event(
            provider=provider,
            event_id=event.event_id,
            event_type=event.event_type,
            invoice_id=event.invoice_id,
            payload_hash=event.payload_hash,
            payment_id=payment.id,
        )

        try:
            self.db.commit()
        except IntegrityError:
            # Same delivery processed concurrently.
            self.db.rollback()
            logger.info("Webhook event %s already processed", event.event_id)
            return ServiceResult.success(None)

        self._confirm_if_issued(payment.booking_id, payment)
        return ServiceResult.success(payment)

    @service_boundary
    def get_invoice_url(self, payment_id: str) -> ServiceResult[str]:
        if not payment_id:
            raise ValidationError("Payment ID is required")

        payment = self.payment_repository.get_by_id(payment_id)
        if not payment:
            raise NotFoundError("Payment", payment_id)
        if not payment.external_invoice_id:
            raise NoInvoiceAssociatedError(f"Payment {payment_id} has no invoice yet")

        snapshot = self.gateway.get_invoice(payment.external_invoice_id)
        if not snapshot.hosted_url:
            raise UpstreamFailureError(
                f"Payment provider returned no hosted page for invoice {snapshot.invoice_id}"
            )

        if payment.hosted_invoice_url != snapshot.hosted_url:
            payment.hosted_invoice_url = snapshot.hosted_url
            self.db.commit()
        return ServiceResult.success(snapshot.hosted_url)

    @service_boundary
    def get_payment(self, payment_id: str) -> ServiceResult[Payment]:
        payment = self.payment_repository.get_by_id(payment_id)
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return ServiceResult.success(payment)

    @service_boundary
    def get_payment_by_booking(self, booking_id: str) -> ServiceResult[Payment]:
        if not self.booking_repository.get_by_id(booking_id):
            raise NotFoundError("Booking", booking_id)
        payment = self.payment_repository.get_by_booking_id(booking_id)
        if not payment:
            raise NotFoundError("Payment for booking", booking_id)
        return ServiceResult.success(payment)

    def _finalize(self, invoice_id: str) -> InvoiceSnapshot | None:
        try:
            return self.gateway.finalize_invoice(invoice_id)
        except UpstreamFailureError:
            logger.warning("Finalizing invoice %s failed; re-reading its state", invoice_id)

        try:
            return self.gateway.get_invoice(invoice_id)
        except UpstreamFailureError:
            logger.warning("Invoice %s state unknown; payment left in DRAFT", invoice_id)
            return None

    def _apply_snapshot(self, payment: Payment, snapshot: InvoiceSnapshot) -> None:
        if snapshot.hosted_url:
            payment.hosted_invoice_url = snapshot.hosted_url

        target = _STATUS_FROM_INVOICE.get(snapshot.status)
        if target is None or target == payment.status:
            return
        if not PaymentStateMachine.can_transition(payment.status, target):
            logger.warning(
                "Invoice %s reported %s; payment %s stays %s",
                snapshot.invoice_id,
                snapshot.status,
                payment.id,
                payment.status.value,
            )
            return
        payment.status = target

    def _confirm_if_issued(self, booking_id: str, payment: Payment) -> None:
        if not PaymentStateMachine.is_issued(payment.status):
            return

        booking: Booking | None = self.booking_repository.get_by_id(booking_id)
        if not booking or booking.status != BookingStatus.PENDING:
            return

        result = self.booking_service.confirm_booking(booking_id, payment.id)
        if not result.ok:
            logger.warning(
                "Booking %s not confirmed after invoice issuance: %s",
                booking_id,
                result.message,
            )
