import os

os.environ["DATABASE_URL"] = "sqlite://"

import json
import hashlib
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from storage_rental.api.dependencies import get_booking_service, get_db, get_payment_gateway
from storage_rental.application.booking_service import BookingService
from storage_rental.application.payment_service import PaymentService
from storage_rental.domain.exceptions import InvalidWebhookSignatureError, UpstreamFailureError
from storage_rental.domain.identity import UserRole
from storage_rental.infrastructure.db.models import Base
from storage_rental.infrastructure.db.session import build_engine
from storage_rental.infrastructure.payments.gateway import (
    InvoiceEvent,
    InvoiceSnapshot,
    PaymentGateway,
)
from storage_rental.infrastructure.repositories.account_repository import AccountRepository


TODAY = date(2024, 6, 3)


class FakeGateway(PaymentGateway):
    """In-memory invoice provider with switchable failures."""

    provider = "FAKE"

    def __init__(self):
        self.invoices: dict[str, str] = {}
        self.created: list[dict] = []
        self.finalize_status = "open"
        self.fail_create = False
        self.fail_finalize = False
        self.finalize_response_lost = False
        self.fail_get = False
        self.hosted_url_enabled = True

    def _snapshot(self, invoice_id: str) -> InvoiceSnapshot:
        url = f"https://pay.example/{invoice_id}" if self.hosted_url_enabled else None
        return InvoiceSnapshot(invoice_id=invoice_id, status=self.invoices[invoice_id], hosted_url=url)

    def create_draft_invoice(self, customer_id, line_items, metadata):
        if self.fail_create:
            raise UpstreamFailureError("create failed")
        invoice_id = f"inv_{len(self.created) + 1}"
        self.created.append(
            {
                "invoice_id": invoice_id,
                "customer_id": customer_id,
                "line_items": line_items,
                "metadata": metadata,
            }
        )
        self.invoices[invoice_id] = "draft"
        return InvoiceSnapshot(invoice_id=invoice_id, status="draft")

    def finalize_invoice(self, invoice_id):
        if self.finalize_response_lost:
            self.invoices[invoice_id] = self.finalize_status
            raise UpstreamFailureError("finalize timed out")
        if self.fail_finalize:
            raise UpstreamFailureError("finalize failed")
        self.invoices[invoice_id] = self.finalize_status
        return self._snapshot(invoice_id)

    def get_invoice(self, invoice_id):
        if self.fail_get:
            raise UpstreamFailureError("fetch failed")
        return self._snapshot(invoice_id)

    def parse_webhook(self, body, signature, event_id=None):
        if signature != "valid":
            raise InvalidWebhookSignatureError("Invalid webhook signature")
        payload = json.loads(body)
        if not payload.get("invoice_id"):
            return None
        payload_hash = hashlib.sha256(body).hexdigest()
        return InvoiceEvent(
            event_id=event_id or payload_hash,
            event_type=payload.get("type", "invoice.updated"),
            invoice_id=payload["invoice_id"],
            status=payload["status"],
            payload_hash=payload_hash,
            charge_id=payload.get("charge_id"),
        )


@pytest.fixture
def invoice_event():
    def _make(invoice_id, status, event_id="evt_1", **ids) -> InvoiceEvent:
        return InvoiceEvent(
            event_id=event_id,
            event_type=f"invoice.{status}",
            invoice_id=invoice_id,
            status=status,
            payload_hash=hashlib.sha256(event_id.encode()).hexdigest(),
            **ids,
        )

    return _make


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def accounts(db_session):
    repo = AccountRepository(db_session)

    renter = repo.add_user("renter@example.com", "Riya Renter", UserRole.RENTER)
    repo.upsert_renter_profile(renter, "cust_riya")
    other_renter = repo.add_user("offline@example.com", "Omar Offline", UserRole.RENTER)
    repo.upsert_renter_profile(other_renter, None)
    lender = repo.add_user("lender@example.com", "Lata Lender", UserRole.LENDER)
    repo.upsert_lender_profile(lender, "acc_lata", payouts_enabled=True)

    location = repo.add_storage_location(
        lender,
        name="Garage L",
        description="Covered garage",
        storage_length=5.0,
        storage_width=3.0,
        storage_height=2.5,
        price=Decimal("100.00"),
    )
    other_location = repo.add_storage_location(
        lender,
        name="Loft M",
        storage_length=3.0,
        storage_width=3.0,
        storage_height=2.0,
        price=Decimal("80.00"),
    )
    db_session.commit()

    return SimpleNamespace(
        renter_id=renter.id,
        other_renter_id=other_renter.id,
        lender_id=lender.id,
        location_id=location.id,
        other_location_id=other_location.id,
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def booking_service(db_session):
    return BookingService(db_session, clock=lambda: TODAY)


@pytest.fixture
def payment_service(db_session, gateway, booking_service):
    return PaymentService(
        db_session,
        gateway,
        booking_service=booking_service,
        fee_percent=Decimal("3"),
        currency="INR",
    )


@pytest.fixture
def client(db_session, gateway, booking_service):
    from storage_rental.main import app

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_booking_service] = lambda: booking_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
