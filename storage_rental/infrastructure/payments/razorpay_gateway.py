import hashlib
import json
import logging
from datetime import datetime, timedelta, timezone

import razorpay
import requests

from storage_rental.domain.exceptions import (
    InvalidWebhookSignatureError,
    UpstreamFailureError,
    ValidationError,
)
from storage_rental.infrastructure.payments.gateway import (
    InvoiceEvent,
    InvoiceLineItem,
    InvoiceSnapshot,
    PaymentGateway,
)

logger = logging.getLogger(__name__)

# Razorpay invoice entity status -> provider-neutral status.
_INVOICE_STATUSES = {
    "draft": "draft",
    "issued": "open",
    "partially_paid": "processing",
    "paid": "paid",
    "cancelled": "void",
    "deleted": "void",
    "expired": "uncollectible",
}

# Webhook event -> status it implies, when the entity does not say.
_EVENT_STATUSES = {
    "invoice.paid": "paid",
    "invoice.partially_paid": "processing",
    "invoice.expired": "uncollectible",
    "payment.failed": "failed",
}

_PROVIDER_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
    requests.RequestException,
)


class RazorpayGateway(PaymentGateway):
    provider = "RAZORPAY"

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str | None = None,
        timeout: float = 10.0,
        days_until_due: int = 5,
        client: razorpay.Client | None = None,
    ):
        self.client = client or razorpay.Client(auth=(key_id, key_secret))
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.days_until_due = days_until_due

    def _call(self, action: str, operation, *args, **kwargs) -> dict:
        try:
            return operation(*args, timeout=self.timeout, **kwargs)
        except _PROVIDER_ERRORS as exc:
            logger.error("Razorpay %s failed: %s", action, exc)
            raise UpstreamFailureError(f"Payment provider failed to {action}") from exc

    @staticmethod
    def _snapshot(invoice: dict) -> InvoiceSnapshot:
        raw_status = invoice.get("status") or ""
        return InvoiceSnapshot(
            invoice_id=invoice["id"],
            status=_INVOICE_STATUSES.get(raw_status, raw_status),
            hosted_url=invoice.get("short_url"),
        )

    def create_draft_invoice(
        self,
        customer_id: str,
        line_items: list[InvoiceLineItem],
        metadata: dict[str, str],
    ) -> InvoiceSnapshot:
        if not line_items:
            raise ValidationError("An invoice needs at least one line item")

        expire_by = datetime.now(timezone.utc) + timedelta(days=self.days_until_due)
        payload = {
            "type": "invoice",
            "draft": "1",
            "customer_id": customer_id,
            "currency": line_items[0].currency,
            "description": line_items[0].description,
            "expire_by": int(expire_by.timestamp()),
            "line_items": [
                {
                    "name": item.name,
                    "description": item.description,
                    "amount": item.amount_minor,
                    "currency": item.currency,
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            # Razorpay notes only accept string values.
            "notes": {key: str(value) for key, value in metadata.items()},
        }
        invoice = self._call("create invoice", self.client.invoice.create, payload)
        return self._snapshot(invoice)

    def finalize_invoice(self, invoice_id: str) -> InvoiceSnapshot:
        invoice = self._call("issue invoice", self.client.invoice.issue, invoice_id)
        return self._snapshot(invoice)

    def get_invoice(self, invoice_id: str) -> InvoiceSnapshot:
        invoice = self._call("fetch invoice", self.client.invoice.fetch, invoice_id)
        return self._snapshot(invoice)

    def parse_webhook(
        self,
        body: bytes,
        signature: str | None,
        event_id: str | None = None,
    ) -> InvoiceEvent | None:
        if not self.webhook_secret:
            raise InvalidWebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise InvalidWebhookSignatureError("Missing webhook signature")

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("Webhook body is not valid UTF-8") from exc

        try:
            self.client.utility.verify_webhook_signature(text, signature, self.webhook_secret)
        except razorpay.errors.SignatureVerificationError as exc:
            raise InvalidWebhookSignatureError("Invalid webhook signature") from exc

        try:
            envelope = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError("Webhook body is not valid JSON") from exc
        if not isinstance(envelope, dict):
            raise ValidationError("Webhook body must be a JSON object")

        event_type = envelope.get("event", "")
        payload = envelope.get("payload", {})
        invoice = payload.get("invoice", {}).get("entity", {})
        payment = payload.get("payment", {}).get("entity", {})

        invoice_id = invoice.get("id") or payment.get("invoice_id")
        if not invoice_id:
            logger.info("Ignoring Razorpay event %s without an invoice", event_type)
            return None

        if event_type in _EVENT_STATUSES:
            status = _EVENT_STATUSES[event_type]
        else:
            raw_status = invoice.get("status") or ""
            status = _INVOICE_STATUSES.get(raw_status, raw_status)

        payload_hash = hashlib.sha256(body).hexdigest()
        return InvoiceEvent(
            event_id=event_id or payload_hash,
            event_type=event_type,
            invoice_id=invoice_id,
            status=status,
            payload_hash=payload_hash,
            payment_intent_id=invoice.get("order_id") or payment.get("order_id"),
            charge_id=invoice.get("payment_id") or payment.get("id"),
            transfer_id=None,
        )
