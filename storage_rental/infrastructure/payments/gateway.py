"""Payment collaborator interface.

Adapters only talk to the provider and normalize what it returns. Invoice
statuses are reported in a provider-neutral vocabulary (``draft``, ``open``,
``processing``, ``paid``, ``void``, ``uncollectible``, ``failed``); mapping
them onto local payment statuses is the payment workflow's job.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class InvoiceLineItem:
    name: str
    description: str
    amount_minor: int
    currency: str
    quantity: int = 1


@dataclass(frozen=True)
class InvoiceSnapshot:
    """Invoice state as last reported by the provider."""

    invoice_id: str
    status: str
    hosted_url: str | None = None


@dataclass(frozen=True)
class InvoiceEvent:
    """Asynchronous invoice status change delivered by webhook."""

    event_id: str
    event_type: str
    invoice_id: str
    status: str
    payload_hash: str
    payment_intent_id: str | None = None
    charge_id: str | None = None
    transfer_id: str | None = None


class PaymentGateway(ABC):
    """Abstract base class for invoice-capable payment providers."""

    provider: str

    @abstractmethod
    def create_draft_invoice(
        self,
        customer_id: str,
        line_items: list[InvoiceLineItem],
        metadata: dict[str, str],
    ) -> InvoiceSnapshot:
        """Create an invoice that is not yet visible to the customer.

        Raises:
            UpstreamFailureError: the provider call failed or timed out.
        """

    @abstractmethod
    def finalize_invoice(self, invoice_id: str) -> InvoiceSnapshot:
        """Issue a draft invoice so the customer can pay it."""

    @abstractmethod
    def get_invoice(self, invoice_id: str) -> InvoiceSnapshot:
        """Fetch the current invoice state and hosted page URL."""

    @abstractmethod
    def parse_webhook(
        self,
        body: bytes,
        signature: str | None,
        event_id: str | None = None,
    ) -> InvoiceEvent | None:
        """Verify and decode a webhook delivery.

        Returns None for events that do not concern an invoice.

        Raises:
            InvalidWebhookSignatureError: the signature does not match.
        """
