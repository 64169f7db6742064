from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot
from app.services.refund_service import refund_cents
from app.services.stripe_client import PaymentIntentInfo


def _paid(make_ticket, gateway, slot, intent="pi_1", captured=2000, **fields):
    t = make_ticket(slot, payment_status="paid", stripe_session_id=f"cs_{intent}", stripe_payment_intent_id=intent,
                    **fields)
    gateway.intents[intent] = PaymentIntentInfo(intent, captured, "succeeded")
    return t


def test_refund_amount_is_captured_minus_fee():
    assert refund_cents(2000, 2.5) == 1750
    assert refund_cents(2000, 0) == 2000
    assert refund_cents(100, 5) == 0


def test_refund_cancels_ticket_and_releases_slot(client, db, gateway, auth, make_slot, make_ticket):
    slot = make_slot(max_tickets=10)
    t = _paid(make_ticket, gateway, slot, tickets=3, cancellation_fee=2.5)

    r = client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=auth("admin"))
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["refundStatus"] == "refunded"
    assert data["refundedAmount"] == 17.5
    assert data["cancelTicket"] is True
    assert data["payment"]["kind"] == "refunded"

    call = gateway.refund_calls[0]
    assert call["amount_cents"] == 1750
    assert call["correlation_key"] == t.ticket_id
    assert call["reason"] == "requested_by_customer"
    db.expire_all()
    assert db.get(TimeSlot, slot.id).sold_count == 0


def test_second_refund_is_rejected(client, gateway, auth, make_slot, make_ticket):
    slot = make_slot()
    t = _paid(make_ticket, gateway, slot)
    headers = auth("admin")
    assert client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=headers).status_code == 200
    r = client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=headers)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "already_refunded"
    assert len(gateway.refund_calls) == 1


def test_cash_ticket_cannot_be_refunded(client, auth, make_slot, make_ticket):
    slot = make_slot()
    t = make_ticket(slot, payment_method="cash", payment_status="paid", source="walkin")
    r = client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=auth("admin"))
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "cash_payment"


def test_unpaid_card_ticket_has_nothing_to_refund(client, auth, make_slot, make_ticket):
    slot = make_slot()
    t = make_ticket(slot, stripe_session_id="cs_1")
    r = client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=auth("admin"))
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "missing_payment_intent"


def test_fee_at_or_above_capture_is_rejected_before_stripe(client, db, gateway, auth, make_slot, make_ticket):
    slot = make_slot()
    t = _paid(make_ticket, gateway, slot, captured=200, cancellation_fee=5)
    r = client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=auth("admin"))
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "refund_amount_not_positive"
    assert gateway.refund_calls == []
    db.expire_all()
    assert db.get(Ticket, t.id).refund_status == "none"


def test_gateway_failure_leaves_refund_marker(client, db, gateway, auth, make_slot, make_ticket):
    slot = make_slot()
    t = _paid(make_ticket, gateway, slot)
    gateway.fail_refund = True
    r = client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=auth("admin"))
    assert r.status_code == 502
    db.expire_all()
    t = db.get(Ticket, t.id)
    assert t.refund_status == "requested"
    assert t.cancel_ticket is False

    # retry reuses the idempotency key and completes
    gateway.fail_refund = False
    r = client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=auth("admin"))
    assert r.status_code == 200
    assert r.json()["data"]["refundStatus"] == "refunded"


def test_refund_requires_admin(client, auth, make_slot, make_ticket):
    slot = make_slot()
    t = make_ticket(slot)
    assert client.post(f"/api/v1/tickets/{t.ticket_id}/refund").status_code == 401
    assert client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=auth("staff")).status_code == 403


def test_mass_refund_reports_partial_failures(client, db, gateway, auth, make_slot, make_ticket):
    slot = make_slot(max_tickets=20)
    a = _paid(make_ticket, gateway, slot, intent="pi_a")
    b = _paid(make_ticket, gateway, slot, intent="pi_b")
    cash = make_ticket(slot, payment_method="cash", payment_status="paid", source="walkin")

    r = client.post("/api/v1/refunds/mass-cancel-refund", headers=auth("admin"), json={
        "date": slot.date, "startTime": slot.start_time, "endTime": slot.end_time,
    })
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["totalTicketsProcessed"] == 3
    assert {x["ticketId"] for x in data["refunded"]} == {a.ticket_id, b.ticket_id}
    assert data["failed"] == [{"ticketId": cash.ticket_id, "reason": "Cash payments cannot be refunded online",
                               "code": "cash_payment"}]
    db.expire_all()
    assert db.get(Ticket, cash.id).cancel_ticket is False


def test_cancel_requires_cancellation_protection(client, db, make_slot, make_ticket):
    slot = make_slot(max_tickets=10)
    plain = make_ticket(slot)
    protected = make_ticket(slot, tickets=3, cancellation_enabled=True)

    r = client.put(f"/api/v1/tickets/{plain.ticket_id}/cancel")
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "cancellation_disabled"

    r = client.put(f"/api/v1/tickets/{protected.ticket_id}/cancel")
    assert r.status_code == 200
    assert r.json()["data"]["cancelTicket"] is True
    db.expire_all()
    assert db.get(TimeSlot, slot.id).sold_count == 2

    r = client.put(f"/api/v1/tickets/{protected.ticket_id}/cancel")
    assert r.status_code == 409
    db.expire_all()
    assert db.get(TimeSlot, slot.id).sold_count == 2


def test_cancel_request_is_recorded_for_review(client, auth, make_slot, make_ticket):
    slot = make_slot()
    t = make_ticket(slot)
    r = client.post("/api/v1/cancel-request", json={"ticketId": t.ticket_id, "email": "Sam@Example.com"})
    assert r.status_code == 200
    request_id = r.json()["data"]["id"]

    headers = auth("admin")
    items = client.get("/api/v1/cancel-request", headers=headers).json()["data"]
    assert items[0]["email"] == "sam@example.com"
    assert items[0]["reviewed"] is False
    r = client.put(f"/api/v1/cancel-request/{request_id}/reviewed", headers=headers)
    assert r.json()["data"]["reviewed"] is True


def test_ticket_history_lists_audit_trail(client, gateway, auth, make_slot, make_ticket):
    slot = make_slot()
    t = _paid(make_ticket, gateway, slot)
    headers = auth("admin")
    client.post(f"/api/v1/tickets/{t.ticket_id}/refund", headers=headers)

    r = client.get(f"/api/v1/tickets/{t.ticket_id}/history", headers=headers)
    assert r.status_code == 200
    entries = r.json()["data"]
    assert [e["action"] for e in entries] == ["ticket_refunded"]
    assert entries[0]["details"]["amount_cents"] == 2000
