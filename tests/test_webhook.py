from sqlalchemy import select

from app.core.config import settings
from app.models.email_log import EmailLog
from app.models.pending_booking import PendingBooking
from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot
from app.services.reconciliation_service import reconcile_incomplete_payments, verify_session


def _checkout(client, booking) -> dict:
    r = client.post("/api/v1/payment/session", json=booking())
    assert r.status_code == 200, r.text
    return r.json()["data"]


def _ticket(db, ticket_id) -> Ticket:
    db.expire_all()
    return db.execute(select(Ticket).where(Ticket.ticket_id == ticket_id)).scalar_one()


def _sent_logs(db, ticket_id) -> list:
    return db.execute(
        select(EmailLog).where(EmailLog.ticket_id == ticket_id, EmailLog.status == "SENT")
    ).scalars().all()


def test_bad_signature_is_rejected_without_changes(client, db, gateway, make_slot, booking, event, post_webhook):
    make_slot()
    data = _checkout(client, booking)
    gateway.pay(data["sessionId"], "pi_1")

    r = post_webhook(event(data["sessionId"], {"ticketId": data["ticketId"]}, payment_intent="pi_1"),
                     signature="t=1,v1=forged")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "invalid_signature"
    t = _ticket(db, data["ticketId"])
    assert t.payment_status == "pending"
    assert t.stripe_payment_intent_id is None


def test_event_without_ticket_reference_is_400(client, event, post_webhook):
    r = post_webhook(event("cs_test_x", {}))
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "missing_correlation_key"


def test_event_for_unknown_ticket_is_404(client, event, post_webhook):
    r = post_webhook(event("cs_test_x", {"ticketId": "MJX-NOPE0000"}))
    assert r.status_code == 404


def test_other_event_types_are_acknowledged(client, db, make_slot, booking, event, post_webhook):
    make_slot()
    data = _checkout(client, booking)
    r = post_webhook(event(data["sessionId"], {"ticketId": data["ticketId"]}, event_type="payment_intent.created"))
    assert r.status_code == 200
    assert r.json() == {"received": True}
    assert _ticket(db, data["ticketId"]).payment_status == "pending"


def test_paid_event_marks_ticket_paid_and_emails_once(client, db, gateway, transport, make_slot, booking,
                                                     event, post_webhook):
    make_slot()
    data = _checkout(client, booking)
    gateway.pay(data["sessionId"], "pi_1")
    payload = event(data["sessionId"], {"ticketId": data["ticketId"]}, payment_intent="pi_1")

    assert post_webhook(payload).status_code == 200
    # Stripe redelivers
    assert post_webhook(payload).status_code == 200

    t = _ticket(db, data["ticketId"])
    assert t.payment_status == "paid"
    assert t.stripe_payment_intent_id == "pi_1"
    assert len(_sent_logs(db, t.ticket_id)) == 1
    assert len(transport.sent) == 1
    filenames = [a[0] for a in transport.sent[0]["attachments"]]
    assert f"{t.ticket_id}.pdf" in filenames


def test_refetch_failure_leaves_processing_until_sweep(client, db, gateway, transport, make_slot, booking,
                                                      event, post_webhook):
    make_slot()
    data = _checkout(client, booking)
    gateway.pay(data["sessionId"], "pi_7")
    gateway.fail_retrieve = True

    # event payload carries no payment intent, and the refetch fails
    r = post_webhook(event(data["sessionId"], {"ticketId": data["ticketId"]}, payment_intent=None))
    assert r.status_code == 200
    t = _ticket(db, data["ticketId"])
    assert t.payment_status == "processing"
    assert t.stripe_payment_intent_id is None
    assert transport.sent == []

    gateway.fail_retrieve = False
    stats = reconcile_incomplete_payments(db, gateway, transport)
    assert stats["updated"] == 1
    t = _ticket(db, data["ticketId"])
    assert t.payment_status == "paid"
    assert t.stripe_payment_intent_id == "pi_7"
    assert len(_sent_logs(db, t.ticket_id)) == 1


def test_email_failure_does_not_fail_the_webhook(client, db, gateway, transport, make_slot, booking,
                                                event, post_webhook):
    make_slot()
    data = _checkout(client, booking)
    gateway.pay(data["sessionId"], "pi_1")
    transport.fail = True

    r = post_webhook(event(data["sessionId"], {"ticketId": data["ticketId"]}, payment_intent="pi_1"))
    assert r.status_code == 200
    assert _ticket(db, data["ticketId"]).payment_status == "paid"
    failed = db.execute(select(EmailLog).where(EmailLog.ticket_id == data["ticketId"])).scalar_one()
    assert failed.status == "FAILED"
    assert "SMTP" in failed.error


def test_deferred_booking_promoted_by_webhook(client, db, gateway, make_slot, booking, event, post_webhook,
                                              monkeypatch):
    monkeypatch.setattr(settings, "CHECKOUT_DEFER_TICKET", True)
    slot = make_slot(max_tickets=10)
    data = _checkout(client, booking)
    gateway.pay(data["sessionId"], "pi_9")

    payload = event(data["sessionId"], {"bookingKind": "deferred"}, payment_intent="pi_9")
    assert post_webhook(payload).status_code == 200
    assert post_webhook(payload).status_code == 200

    db.expire_all()
    tickets = db.execute(select(Ticket)).scalars().all()
    assert len(tickets) == 1
    assert tickets[0].stripe_session_id == data["sessionId"]
    assert tickets[0].payment_status == "paid"
    assert db.execute(select(PendingBooking)).first() is None
    # the admission debited at checkout moved with the booking
    assert db.get(TimeSlot, slot.id).sold_count == 2


def test_unpaid_deferred_completion_keeps_booking_parked(client, db, make_slot, booking, event, post_webhook,
                                                        monkeypatch):
    monkeypatch.setattr(settings, "CHECKOUT_DEFER_TICKET", True)
    make_slot()
    data = _checkout(client, booking)

    r = post_webhook(event(data["sessionId"], {"bookingKind": "deferred"}, payment_status="unpaid"))
    assert r.status_code == 200
    db.expire_all()
    assert db.execute(select(PendingBooking)).scalar_one().session_id == data["sessionId"]
    assert db.execute(select(Ticket)).first() is None


def test_verify_payment_applies_gateway_state(client, db, gateway, make_slot, booking):
    make_slot()
    data = _checkout(client, booking)

    r = client.get("/api/v1/payment/verify-payment", params={"sessionId": data["sessionId"]})
    assert r.status_code == 200
    assert r.json()["data"]["paymentStatus"] == "pending"

    gateway.pay(data["sessionId"], "pi_3")
    r = client.get("/api/v1/payment/verify-payment", params={"sessionId": data["sessionId"]})
    body = r.json()["data"]
    assert body["paymentStatus"] == "paid"
    assert body["ticket"]["payment"]["kind"] == "card-paid"
    assert body["ticket"]["payment"]["paymentIntentId"] == "pi_3"


def test_session_result_finds_ticket_by_session(client, make_slot, booking):
    make_slot()
    data = _checkout(client, booking)
    r = client.get(f"/api/v1/payment/session-result/{data['sessionId']}")
    assert r.status_code == 200
    assert r.json()["data"]["ticketId"] == data["ticketId"]
    assert client.get("/api/v1/payment/session-result/cs_unknown").status_code == 404


def test_verify_during_webhook_send_does_not_send_twice(client, db, session_factory, gateway, transport,
                                                       make_slot, booking, event, post_webhook):
    make_slot()
    data = _checkout(client, booking)
    gateway.pay(data["sessionId"], "pi_1")
    deliver = transport.send
    verified = []

    def send(*args, **kwargs):
        # the success page lands while the webhook is still talking to the mail provider
        if not verified:
            other = session_factory()
            try:
                verified.append(verify_session(other, gateway, transport, data["sessionId"]).payment_status)
            finally:
                other.close()
        deliver(*args, **kwargs)

    transport.send = send
    r = post_webhook(event(data["sessionId"], {"ticketId": data["ticketId"]}, payment_intent="pi_1"))
    assert r.status_code == 200
    assert verified == ["paid"]
    assert len(transport.sent) == 1
    db.expire_all()
    assert len(_sent_logs(db, data["ticketId"])) == 1
