from sqlalchemy import select

from app.core.config import settings
from app.models.audit_log import AuditLog
from app.models.pending_booking import PendingBooking
from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot


def _slot(db, slot):
    db.expire_all()
    return db.get(TimeSlot, slot.id)


def test_online_checkout_creates_pending_ticket_first(client, db, gateway, make_slot, booking):
    slot = make_slot(max_tickets=10)
    r = client.post("/api/v1/payment/session", json=booking(tickets=2, selectedBundle={
        "name": "Family", "discount": 10, "price": 40, "tickets": 3}))
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["sessionId"] == "cs_test_1"
    assert data["checkoutUrl"].endswith("cs_test_1")
    assert data["ticketId"].startswith("MJX-")

    t = db.execute(select(Ticket).where(Ticket.ticket_id == data["ticketId"])).scalar_one()
    assert t.payment_status == "pending"
    assert t.payment_method == "card"
    assert t.stripe_session_id == "cs_test_1"
    assert t.stripe_payment_intent_id is None
    assert t.admissions == 5
    assert _slot(db, slot).sold_count == 5

    created = gateway.created[0]
    assert created["metadata"] == {"ticketId": data["ticketId"]}
    assert "sessionId={CHECKOUT_SESSION_ID}" in created["success_url"]


def test_checkout_sold_out_is_409_with_remaining(client, db, make_slot, booking):
    slot = make_slot(max_tickets=5, sold=3)
    r = client.post("/api/v1/payment/session", json=booking(tickets=3))
    assert r.status_code == 409
    body = r.json()
    assert body["success"] is False
    assert body["message"] == "Only 2 tickets left."
    assert body["error"]["code"] == "sold_out"
    assert body["error"]["remaining"] == 2
    assert _slot(db, slot).sold_count == 3
    assert db.execute(select(Ticket)).first() is None


def test_checkout_without_tickets_or_bundle_is_400(client, make_slot, booking):
    make_slot()
    r = client.post("/api/v1/payment/session", json=booking(tickets=0))
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"


def test_checkout_for_unknown_slot_is_404(client, booking):
    r = client.post("/api/v1/payment/session", json=booking(startTime="18:00", endTime="19:00"))
    assert r.status_code == 404
    assert r.json()["message"] == "Time slot not found"


def test_malformed_booking_is_400(client, make_slot, booking):
    make_slot()
    r = client.post("/api/v1/payment/session", json=booking(date="01-06-2030"))
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_request"


def test_gateway_failure_cancels_ticket_and_releases_slot(client, db, gateway, make_slot, booking):
    slot = make_slot(max_tickets=10)
    gateway.fail_create = True
    r = client.post("/api/v1/payment/session", json=booking(tickets=4))
    assert r.status_code == 502
    assert r.json()["error"]["code"] == "gateway_error"
    assert r.json()["error"]["retryable"] is True

    t = db.execute(select(Ticket)).scalar_one()
    assert t.cancel_ticket is True
    assert t.stripe_session_id is None
    assert _slot(db, slot).sold_count == 0
    audit = db.execute(select(AuditLog).where(AuditLog.entity_id == t.ticket_id)).scalar_one()
    assert audit.action == "checkout_aborted"


def test_deferred_checkout_parks_booking(client, db, gateway, make_slot, booking, monkeypatch):
    monkeypatch.setattr(settings, "CHECKOUT_DEFER_TICKET", True)
    slot = make_slot(max_tickets=10)
    r = client.post("/api/v1/payment/session", json=booking(tickets=2))
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["ticketId"] is None

    pending = db.execute(select(PendingBooking)).scalar_one()
    assert pending.session_id == data["sessionId"]
    assert pending.admissions == 2
    assert pending.booking_info["email"] == "sam@example.com"
    assert db.execute(select(Ticket)).first() is None
    assert _slot(db, slot).sold_count == 2
    assert gateway.created[0]["metadata"] == {"bookingKind": "deferred"}


def test_deferred_checkout_gateway_failure_releases(client, db, gateway, make_slot, booking, monkeypatch):
    monkeypatch.setattr(settings, "CHECKOUT_DEFER_TICKET", True)
    slot = make_slot(max_tickets=10)
    gateway.fail_create = True
    r = client.post("/api/v1/payment/session", json=booking(tickets=2))
    assert r.status_code == 502
    assert db.execute(select(PendingBooking)).first() is None
    assert _slot(db, slot).sold_count == 0


def test_walkin_cash_is_paid_and_priced_server_side(client, db, transport, auth, make_slot, pricing):
    slot = make_slot(max_tickets=10)
    r = client.post("/api/v1/walkin", headers=auth("staff"), json={
        "date": slot.date, "startTime": slot.start_time, "endTime": slot.end_time,
        "tickets": 2, "socksCount": 2, "paymentMethod": "cash",
        "name": "Desk", "email": "desk@example.com",
    })
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    expected = round(12.5 * 2 + 2.5 * 2 + settings.ADMIN_FEE, 2)
    assert data["pricing"]["amount"] == expected
    assert data["sessionId"] is None

    t = db.execute(select(Ticket).where(Ticket.ticket_id == data["ticketId"])).scalar_one()
    assert t.payment_method == "cash"
    assert t.payment_status == "paid"
    assert t.source == "walkin"
    assert t.amount == expected
    assert _slot(db, slot).sold_count == 2
    assert [m["to"] for m in transport.sent] == ["desk@example.com"]


def test_walkin_card_goes_through_checkout(client, db, gateway, auth, make_slot, pricing):
    slot = make_slot(max_tickets=10)
    r = client.post("/api/v1/walkin", headers=auth("staff"), json={
        "date": slot.date, "startTime": slot.start_time, "endTime": slot.end_time,
        "tickets": 1, "paymentMethod": "card", "name": "Desk",
    })
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["sessionId"] == "cs_test_1"
    assert "walkinTickets" in gateway.created[0]["success_url"]
    t = db.execute(select(Ticket)).scalar_one()
    assert t.payment_status == "pending"
    assert t.source == "walkin"


def test_walkin_skip_slot_check_overbooks(client, db, auth, make_slot, pricing):
    slot = make_slot(max_tickets=2, sold=2)
    r = client.post("/api/v1/walkin", headers=auth("staff"), json={
        "date": slot.date, "startTime": slot.start_time, "endTime": slot.end_time,
        "tickets": 1, "paymentMethod": "cash", "skipSlotCheck": True, "name": "Desk",
    })
    assert r.status_code == 200, r.text
    assert _slot(db, slot).sold_count == 3


def test_walkin_needs_pricing_settings(client, auth, make_slot):
    slot = make_slot()
    r = client.post("/api/v1/walkin", headers=auth("staff"), json={
        "date": slot.date, "startTime": slot.start_time, "endTime": slot.end_time,
        "tickets": 1, "paymentMethod": "cash", "name": "Desk",
    })
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "settings_missing"


def test_walkin_requires_staff_login(client, make_slot):
    slot = make_slot()
    r = client.post("/api/v1/walkin", json={
        "date": slot.date, "startTime": slot.start_time, "endTime": slot.end_time,
        "tickets": 1, "paymentMethod": "cash", "name": "Desk",
    })
    assert r.status_code == 401
    assert r.json()["success"] is False


def test_direct_ticket_is_manual_and_unpaid(client, db, auth, make_slot, booking):
    slot = make_slot(max_tickets=10)
    r = client.post("/api/v1/tickets", headers=auth("staff"), json=booking(tickets=1))
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["source"] == "manual"
    assert data["paymentStatus"] == "pending"
    assert data["payment"] == {"kind": "card-pending", "status": "pending", "sessionId": None}
    assert _slot(db, slot).sold_count == 1
