from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.core.config import settings
from app.models.pending_booking import PendingBooking
from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot
from app.services.checkout_service import start_online_checkout
from app.services.reconciliation_service import (
    apply_gateway_status,
    close_orphan_checkouts,
    handle_checkout_completed,
    reconcile_incomplete_payments,
    reconcile_pending_bookings,
    reconcile_pending_refunds,
    run_payment_sync,
)
from app.services.stripe_client import RefundInfo, SessionStatus
from app.tasks import worker_jobs


def _snapshot(t: Ticket) -> tuple:
    return (t.payment_status, t.stripe_session_id, t.stripe_payment_intent_id, t.cancel_ticket, t.refund_status)


def _session_event(session_id: str, ticket_id: str) -> dict:
    return {"id": session_id, "payment_status": "paid", "status": "complete", "metadata": {"ticketId": ticket_id}}


def test_webhook_and_sweep_converge_in_either_order(db, gateway, transport, make_slot, booking):
    make_slot(max_tickets=10)
    first = start_online_checkout(db, gateway, booking(tickets=1))
    second = start_online_checkout(db, gateway, booking(tickets=1))
    for data in (first, second):
        gateway.pay(data["sessionId"], f"pi_{data['ticketId']}")

    # webhook, then sweep
    handle_checkout_completed(db, gateway, transport, _session_event(first["sessionId"], first["ticketId"]))
    reconcile_incomplete_payments(db, gateway, transport)
    # sweep, then webhook
    reconcile_incomplete_payments(db, gateway, transport)
    handle_checkout_completed(db, gateway, transport, _session_event(second["sessionId"], second["ticketId"]))

    db.expire_all()
    a = db.execute(select(Ticket).where(Ticket.ticket_id == first["ticketId"])).scalar_one()
    b = db.execute(select(Ticket).where(Ticket.ticket_id == second["ticketId"])).scalar_one()
    assert _snapshot(a) == ("paid", first["sessionId"], f"pi_{first['ticketId']}", False, "none")
    assert _snapshot(b) == ("paid", second["sessionId"], f"pi_{second['ticketId']}", False, "none")
    assert len(transport.sent) == 2


def test_paid_ticket_is_never_downgraded(db, make_slot, make_ticket):
    slot = make_slot()
    t = make_ticket(slot, payment_status="paid", stripe_session_id="cs_1", stripe_payment_intent_id="pi_1")
    changed = apply_gateway_status(db, t, SessionStatus(session_id="cs_1", payment_status="unpaid"), "test")
    assert changed is False
    assert t.payment_status == "paid"
    assert t.stripe_payment_intent_id == "pi_1"


def test_payment_intent_is_never_cleared(db, make_slot, make_ticket):
    slot = make_slot()
    t = make_ticket(slot, payment_status="paid", stripe_session_id="cs_1", stripe_payment_intent_id="pi_1")
    apply_gateway_status(db, t, SessionStatus(session_id="cs_1", payment_status="paid"), "test")
    assert t.stripe_payment_intent_id == "pi_1"
    assert t.payment_status == "paid"


def test_cash_tickets_are_left_alone(db, make_slot, make_ticket):
    slot = make_slot()
    t = make_ticket(slot, payment_method="cash", payment_status="paid", source="walkin")
    status = SessionStatus(session_id="cs_9", payment_status="paid", payment_intent_id="pi_9")
    assert apply_gateway_status(db, t, status, "test") is False
    assert t.stripe_session_id is None


def test_orphan_checkouts_are_cancelled_after_grace(db, make_slot, make_ticket):
    slot = make_slot(max_tickets=10)
    now = datetime.now(timezone.utc)
    old = now - timedelta(minutes=settings.ORPHAN_CHECKOUT_GRACE_MINUTES + 5)
    orphan = make_ticket(slot, tickets=2, created_at=old)
    fresh = make_ticket(slot, tickets=1)
    manual = make_ticket(slot, tickets=1, source="manual", created_at=old)

    assert close_orphan_checkouts(db, now=now) == {"closed": 1}
    db.expire_all()
    assert db.get(Ticket, orphan.id).cancel_ticket is True
    assert db.get(Ticket, fresh.id).cancel_ticket is False
    assert db.get(Ticket, manual.id).cancel_ticket is False
    assert db.get(TimeSlot, slot.id).sold_count == 2


def test_expired_sessions_release_when_enabled(db, gateway, make_slot, booking, monkeypatch):
    slot = make_slot(max_tickets=10)
    data = start_online_checkout(db, gateway, booking(tickets=3))
    gateway.expire(data["sessionId"])

    reconcile_incomplete_payments(db, gateway)
    db.expire_all()
    assert db.get(TimeSlot, slot.id).sold_count == 3

    monkeypatch.setattr(settings, "RELEASE_EXPIRED_CHECKOUTS", True)
    stats = reconcile_incomplete_payments(db, gateway)
    assert stats["expired_released"] == 1
    db.expire_all()
    assert db.get(TimeSlot, slot.id).sold_count == 0


def test_sweep_counts_gateway_failures_and_continues(db, gateway, make_slot, booking):
    make_slot(max_tickets=10)
    broken = start_online_checkout(db, gateway, booking(tickets=1))
    ok = start_online_checkout(db, gateway, booking(tickets=1))
    gateway.sessions.pop(broken["sessionId"])
    gateway.pay(ok["sessionId"], "pi_ok")

    stats = reconcile_incomplete_payments(db, gateway)
    assert stats["checked"] == 2
    assert stats["failed"] == 1
    assert stats["updated"] == 1


def test_refund_marker_is_finalized_when_stripe_refunded(db, gateway, make_slot, make_ticket):
    slot = make_slot(max_tickets=10)
    t = make_ticket(slot, tickets=2, payment_status="paid", stripe_session_id="cs_1", stripe_payment_intent_id="pi_1",
                    refund_status="requested", refund_date=datetime.now(timezone.utc))
    gateway.refunds[t.ticket_id] = RefundInfo("re_1", 1750, "succeeded")

    stats = reconcile_pending_refunds(db, gateway)
    assert stats["finalized"] == 1
    db.expire_all()
    t = db.get(Ticket, t.id)
    assert t.refund_status == "refunded"
    assert t.refunded_amount == 17.5
    assert t.refund_transaction_id == "re_1"
    assert t.cancel_ticket is True
    assert db.get(TimeSlot, slot.id).sold_count == 0


def test_refund_marker_reset_only_after_grace(db, gateway, make_slot, make_ticket):
    slot = make_slot()
    now = datetime.now(timezone.utc)
    t = make_ticket(slot, payment_status="paid", stripe_session_id="cs_1", stripe_payment_intent_id="pi_1",
                    refund_status="requested", refund_date=now - timedelta(minutes=1))

    assert reconcile_pending_refunds(db, gateway, now=now)["reset"] == 0
    assert reconcile_pending_refunds(db, gateway, now=now + timedelta(minutes=10))["reset"] == 1
    db.expire_all()
    t = db.get(Ticket, t.id)
    assert t.refund_status == "none"
    assert t.cancel_ticket is False


def test_lost_deferred_webhook_is_promoted_by_sweep(db, gateway, transport, make_slot, booking, monkeypatch):
    monkeypatch.setattr(settings, "CHECKOUT_DEFER_TICKET", True)
    slot = make_slot(max_tickets=10)
    data = start_online_checkout(db, gateway, booking(tickets=2))
    assert reconcile_pending_bookings(db, gateway, transport)["promoted"] == 0

    gateway.pay(data["sessionId"], "pi_5")
    assert reconcile_pending_bookings(db, gateway, transport)["promoted"] == 1
    db.expire_all()
    t = db.execute(select(Ticket)).scalar_one()
    assert t.payment_status == "paid"
    assert t.stripe_payment_intent_id == "pi_5"
    assert db.execute(select(PendingBooking)).first() is None
    assert db.get(TimeSlot, slot.id).sold_count == 2
    assert len(transport.sent) == 1


def test_expired_deferred_booking_is_dropped_when_enabled(db, gateway, make_slot, booking, monkeypatch):
    monkeypatch.setattr(settings, "CHECKOUT_DEFER_TICKET", True)
    monkeypatch.setattr(settings, "RELEASE_EXPIRED_CHECKOUTS", True)
    slot = make_slot(max_tickets=10)
    data = start_online_checkout(db, gateway, booking(tickets=2))
    gateway.expire(data["sessionId"])

    assert reconcile_pending_bookings(db, gateway)["dropped"] == 1
    db.expire_all()
    assert db.execute(select(PendingBooking)).first() is None
    assert db.get(TimeSlot, slot.id).sold_count == 0


def test_recent_mode_skips_old_tickets(db, gateway, make_slot, make_ticket):
    slot = make_slot()
    now = datetime.now(timezone.utc)
    make_ticket(slot, stripe_session_id="cs_old", created_at=now - timedelta(days=3))
    recent = run_payment_sync(db, gateway, mode="recent", now=now)
    assert recent["payments"]["checked"] == 0
    full = run_payment_sync(db, gateway, mode="end_of_day", now=now)
    assert full["mode"] == "end_of_day"
    assert full["payments"]["checked"] == 1
    assert set(full) == {"mode", "payments", "refunds", "pendingBookings", "orphans"}


def test_worker_job_uses_its_own_session(session_factory, gateway, transport, make_slot, booking, db):
    make_slot(max_tickets=10)
    data = start_online_checkout(db, gateway, booking(tickets=1))
    gateway.pay(data["sessionId"], "pi_w")

    result = worker_jobs.payment_sync("recent", gateway=gateway, transport=transport, session_factory=session_factory)
    assert result["payments"]["updated"] == 1
    db.expire_all()
    assert db.execute(select(Ticket)).scalar_one().payment_status == "paid"
