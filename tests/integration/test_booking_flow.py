import json


def _renter(accounts):
    return {"X-User-Id": accounts.renter_id, "X-User-Role": "RENTER"}


def _lender(accounts):
    return {"X-User-Id": accounts.lender_id, "X-User-Role": "LENDER"}


def _book(client, accounts, start="2024-06-01", end="2024-06-08", price="100.00"):
    return client.post(
        "/bookings",
        json={
            "storage_location_id": accounts.location_id,
            "start_date": start,
            "end_date": end,
            "total_price": price,
        },
        headers=_renter(accounts),
    )


def test_booking_flow(client, accounts):
    response = _book(client, accounts)

    assert response.status_code == 201
    booking = response.json()
    assert booking["status"] == "PENDING"
    assert booking["payment_id"] is None
    assert booking["renter_name"] == "Riya Renter"
    assert booking["storage_location_name"] == "Garage L"

    conflict = _book(client, accounts, start="2024-06-05", end="2024-06-10")
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["error"] == "AVAILABILITY_CONFLICT"

    invoice = client.post(f"/bookings/{booking['id']}/invoice", headers=_renter(accounts))
    assert invoice.status_code == 200
    payment = invoice.json()
    assert payment["status"] == "OPEN"
    assert payment["platform_fee"] == "3.00"
    assert payment["amount_transferred"] == "97.00"

    confirmed = client.get(f"/bookings/{booking['id']}")
    assert confirmed.json()["status"] == "CONFIRMED"
    assert confirmed.json()["payment_id"] == payment["id"]

    url = client.get(f"/payments/{payment['id']}/invoice-url")
    assert url.status_code == 200
    assert url.json()["url"] == "https://pay.example/inv_1"

    cancel = client.post(f"/bookings/{booking['id']}/cancel", headers=_renter(accounts))
    assert cancel.status_code == 200
    assert cancel.json()["status"] == "CANCELLED"

    again = client.post(f"/bookings/{booking['id']}/cancel", headers=_renter(accounts))
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "ALREADY_CANCELLED"


def test_create_requires_renter_identity(client, accounts):
    missing = client.post(
        "/bookings",
        json={
            "storage_location_id": accounts.location_id,
            "start_date": "2024-06-01",
            "end_date": "2024-06-08",
            "total_price": "100.00",
        },
    )
    assert missing.status_code == 401

    forbidden = client.post(
        "/bookings",
        json={
            "storage_location_id": accounts.location_id,
            "start_date": "2024-06-01",
            "end_date": "2024-06-08",
            "total_price": "100.00",
        },
        headers=_lender(accounts),
    )
    assert forbidden.status_code == 403


def test_validation_errors_are_bad_requests(client, accounts):
    assert _book(client, accounts, start="2024-06-08", end="2024-06-01").status_code == 400
    assert _book(client, accounts, price="0").status_code == 400
    assert _book(client, accounts, start="not-a-date").status_code == 400


def test_not_found(client, accounts):
    assert client.get("/bookings/missing").status_code == 404
    assert client.get("/payments/missing").status_code == 404
    assert client.get("/storage-locations/missing/bookings").status_code == 404


def test_confirm_without_payment_is_conflict(client, accounts):
    booking = _book(client, accounts).json()

    response = client.post(
        f"/bookings/{booking['id']}/confirm",
        json={},
        headers=_renter(accounts),
    )

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "INVALID_STATE_TRANSITION"


def test_update_booking(client, accounts):
    booking = _book(client, accounts).json()

    response = client.put(
        f"/bookings/{booking['id']}",
        json={"start_date": "2024-06-02", "end_date": "2024-06-09", "total_price": "110.00"},
        headers=_renter(accounts),
    )

    assert response.status_code == 200
    assert response.json()["end_date"] == "2024-06-09"


def test_invoice_for_renter_without_billing_account(client, accounts):
    response = client.post(
        "/bookings",
        json={
            "storage_location_id": accounts.location_id,
            "start_date": "2024-06-01",
            "end_date": "2024-06-08",
            "total_price": "100.00",
        },
        headers={"X-User-Id": accounts.other_renter_id, "X-User-Role": "RENTER"},
    )

    invoice = client.post(
        f"/bookings/{response.json()['id']}/invoice",
        headers=_renter(accounts),
    )

    assert invoice.status_code == 400
    assert invoice.json()["detail"]["error"] == "EXTERNAL_ACCOUNT_MISSING"


def test_upstream_failure_is_bad_gateway(client, accounts, gateway):
    booking = _book(client, accounts).json()
    gateway.fail_create = True

    response = client.post(f"/bookings/{booking['id']}/invoice", headers=_renter(accounts))

    assert response.status_code == 502


def test_invoice_url_upstream_failure(client, accounts, gateway):
    booking = _book(client, accounts).json()
    gateway.fail_finalize = True
    gateway.fail_get = True
    payment = client.post(f"/bookings/{booking['id']}/invoice", headers=_renter(accounts)).json()
    assert payment["status"] == "DRAFT"

    response = client.get(f"/payments/{payment['id']}/invoice-url")

    assert response.status_code == 502


def test_availability_and_duration(client, accounts):
    booking = _book(client, accounts).json()

    busy = client.get(
        f"/storage-locations/{accounts.location_id}/availability",
        params={"start_date": "2024-06-07", "end_date": "2024-06-09"},
    )
    free = client.get(
        f"/storage-locations/{accounts.location_id}/availability",
        params={"start_date": "2024-06-08", "end_date": "2024-06-09"},
    )
    duration = client.get(f"/bookings/{booking['id']}/duration")

    assert busy.json()["available"] is False
    assert free.json()["available"] is True
    assert duration.json()["nights"] == 7


def test_derived_queries(client, accounts):
    _book(client, accounts, start="2024-05-01", end="2024-05-05")
    _book(client, accounts, start="2024-06-10", end="2024-06-12")

    # Clock is fixed at 2024-06-03.
    assert len(client.get("/bookings/expired").json()) == 1
    assert len(client.get("/bookings/upcoming").json()) == 1
    assert len(client.get("/bookings/starting-within", params={"days": 7}).json()) == 1
    assert client.get("/bookings/starting-within", params={"days": -1}).status_code == 400
    assert len(client.get("/bookings", params={"status": "PENDING"}).json()) == 2
    assert len(client.get(f"/bookings/renter/{accounts.renter_id}").json()) == 2


def test_webhook(client, accounts):
    booking = _book(client, accounts).json()
    payment = client.post(f"/bookings/{booking['id']}/invoice", headers=_renter(accounts)).json()
    body = json.dumps({"type": "invoice.paid", "invoice_id": "inv_1", "status": "paid"})

    rejected = client.post(
        "/payments/webhook",
        content=body,
        headers={"X-Razorpay-Signature": "forged"},
    )
    accepted = client.post(
        "/payments/webhook",
        content=body,
        headers={"X-Razorpay-Signature": "valid", "X-Razorpay-Event-Id": "evt_1"},
    )
    replayed = client.post(
        "/payments/webhook",
        content=body,
        headers={"X-Razorpay-Signature": "valid", "X-Razorpay-Event-Id": "evt_1"},
    )
    unrelated = client.post(
        "/payments/webhook",
        content=json.dumps({"type": "refund.created"}),
        headers={"X-Razorpay-Signature": "valid"},
    )

    assert rejected.status_code == 400
    assert accepted.json() == {"status": "processed", "payment_id": payment["id"]}
    assert replayed.json()["status"] == "ignored"
    assert unrelated.json()["status"] == "ignored"
    assert client.get(f"/payments/{payment['id']}").json()["status"] == "PAID"


def test_payment_reads_work_without_provider_keys(client, accounts, monkeypatch):
    from storage_rental import config
    from storage_rental.api.dependencies import get_payment_gateway
    from storage_rental.main import app

    booking = _book(client, accounts).json()
    payment = client.post(f"/bookings/{booking['id']}/invoice", headers=_renter(accounts)).json()

    app.dependency_overrides.pop(get_payment_gateway)
    get_payment_gateway.cache_clear()
    monkeypatch.setattr(config, "RAZORPAY_KEY_ID", None)
    monkeypatch.setattr(config, "RAZORPAY_KEY_SECRET", None)

    assert client.get(f"/payments/{payment['id']}").status_code == 200
    assert client.get(f"/bookings/{booking['id']}/payment").json()["id"] == payment["id"]
    issue = client.post(f"/bookings/{booking['id']}/invoice", headers=_renter(accounts))
    assert issue.status_code == 500
