"""Keeps ticket payment state in line with Stripe.

Two paths reach the same ticket: the ``checkout.session.completed`` webhook
(push) and the payment sync sweep (pull). Both end in ``apply_gateway_status``,
which maps one gateway reading to one ticket state and overwrites rather than
accumulates, so the order in which the two paths run does not change the
result.
"""
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import GatewayError, InvalidRequest, NotFound
from app.models.pending_booking import PendingBooking
from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot
from app.services import inventory_service
from app.services.audit_service import log_audit
from app.services.booking_service import allocate_ticket_id, build_ticket, get_ticket, get_ticket_by_session
from app.services.email_service import MailTransport, send_ticket_confirmation
from app.services.stripe_client import PaymentGateway, SessionStatus

logger = structlog.get_logger().bind(component="reconciliation")

REFUND_MARKER_GRACE = timedelta(minutes=5)


def target_status(status: SessionStatus) -> str:
    if status.is_paid:
        return "paid" if status.payment_intent_id else "processing"
    return "pending"


def apply_gateway_status(db: Session, t: Ticket, status: SessionStatus, actor: str) -> bool:
    """Write the gateway's view of the session onto the ticket. Does not commit.

    Only payment fields move; cancel and refund fields belong to other flows.
    A paid ticket never goes back to pending, and a known payment intent is
    never cleared. Returns True when something changed.
    """
    if t.payment_method == "cash":
        return False
    new_status = target_status(status)
    if t.payment_status == "paid" and new_status != "paid":
        logger.warning("stale_gateway_status_ignored", ticket_id=t.ticket_id, gateway_status=status.payment_status)
        return False

    changed = False
    if status.session_id and t.stripe_session_id != status.session_id:
        t.stripe_session_id = status.session_id
        changed = True
    if status.payment_intent_id and t.stripe_payment_intent_id != status.payment_intent_id:
        t.stripe_payment_intent_id = status.payment_intent_id
        changed = True
    if t.payment_status != new_status:
        previous = t.payment_status
        t.payment_status = new_status
        changed = True
        log_audit(db, actor, f"ticket_{new_status}", "ticket", t.ticket_id, {
            "from": previous,
            "session_id": status.session_id,
            "payment_intent_id": status.payment_intent_id,
        })
        if t.cancel_ticket and new_status == "paid":
            logger.warning("cancelled_ticket_paid", ticket_id=t.ticket_id, session_id=status.session_id)
    return changed


def _maybe_send_confirmation(db: Session, t: Ticket, transport: MailTransport | None):
    if transport is None or t.payment_status != "paid" or t.cancel_ticket or not t.email:
        return
    send_ticket_confirmation(db, t, transport)


def promote_pending_booking(db: Session, pending: PendingBooking, actor: str) -> Ticket:
    """Turn a parked booking into a ticket. Its admission was debited at checkout and moves with it.

    Webhook and sweep may promote the same session concurrently; the unique
    session id lets exactly one insert win and the other reads the winner.
    """
    session_id = pending.session_id
    slot = db.get(TimeSlot, pending.time_slot_id)
    if not slot:
        raise NotFound("Time slot for pending booking not found")
    ticket = build_ticket(slot, pending.booking_info or {}, ticket_id=allocate_ticket_id(db))
    ticket.stripe_session_id = session_id
    db.add(ticket)
    db.delete(pending)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        existing = get_ticket_by_session(db, session_id)
        if existing is None:
            raise
        return existing
    log_audit(db, actor, "pending_booking_promoted", "ticket", ticket.ticket_id, {"session_id": session_id})
    logger.info("pending_booking_promoted", ticket_id=ticket.ticket_id, session_id=session_id)
    return ticket


def _pending_booking(db: Session, session_id: str) -> PendingBooking | None:
    return db.execute(select(PendingBooking).where(PendingBooking.session_id == session_id)).scalar_one_or_none()


def _status_from_event(session: dict) -> SessionStatus:
    pi = session.get("payment_intent")
    return SessionStatus(
        session_id=session.get("id"),
        payment_status=session.get("payment_status") or "unpaid",
        status=session.get("status"),
        payment_intent_id=pi if isinstance(pi, str) else (pi or {}).get("id"),
        captured_amount=session.get("amount_total"),
        metadata=session.get("metadata") or {},
    )


def handle_checkout_completed(db: Session, gateway: PaymentGateway, transport: MailTransport | None,
                              session: dict) -> Ticket | None:
    """Reconcile one ``checkout.session.completed`` event (already authenticated)."""
    session_id = session.get("id")
    metadata = session.get("metadata") or {}
    ticket_key = metadata.get("ticketId")
    deferred = metadata.get("bookingKind") == "deferred"
    if not session_id or not (ticket_key or deferred):
        raise InvalidRequest("Missing ticket reference in session metadata", code="missing_correlation_key")

    if ticket_key:
        t = get_ticket(db, ticket_key)
        pending = None
        if not t:
            raise NotFound("Ticket not found for session")
    else:
        t = get_ticket_by_session(db, session_id)
        pending = None if t else _pending_booking(db, session_id)
        if not t and not pending:
            raise NotFound("No booking found for session")

    try:
        status = gateway.retrieve_session(session_id)
    except GatewayError:
        # The sweep fills in the payment intent later
        status = _status_from_event(session)
        logger.warning("webhook_session_refetch_failed", session_id=session_id)

    if pending is not None:
        if not status.is_paid:
            # async payment methods complete unpaid; the sweep promotes once Stripe reports paid
            logger.info("webhook_unpaid_pending_booking", session_id=session_id)
            return None
        t = promote_pending_booking(db, pending, "stripe")

    apply_gateway_status(db, t, status, "stripe")
    db.commit()
    db.refresh(t)
    logger.info("webhook_reconciled", ticket_id=t.ticket_id, session_id=session_id, payment_status=t.payment_status)

    try:
        _maybe_send_confirmation(db, t, transport)
    except Exception as e:
        # PDF or DB trouble; the email retry sweep covers this ticket
        db.rollback()
        logger.error("webhook_confirmation_error", ticket_id=t.ticket_id, error=str(e))
    return t


def verify_session(db: Session, gateway: PaymentGateway, transport: MailTransport | None, session_id: str) -> Ticket | None:
    """Client-driven check after the Stripe redirect; same mutation as the webhook.

    Returns None while a deferred booking is still unpaid.
    """
    t = get_ticket_by_session(db, session_id)
    pending = None if t else _pending_booking(db, session_id)
    if not t and not pending:
        raise NotFound("No booking found for session")

    status = gateway.retrieve_session(session_id)
    if pending is not None:
        if not status.is_paid:
            return None
        t = promote_pending_booking(db, pending, "verify-payment")

    apply_gateway_status(db, t, status, "verify-payment")
    db.commit()
    db.refresh(t)
    _maybe_send_confirmation(db, t, transport)
    return t


def _aware(dt: datetime | None) -> datetime | None:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def reconcile_incomplete_payments(db: Session, gateway: PaymentGateway, transport: MailTransport | None = None,
                                  since: datetime | None = None) -> dict:
    """Card tickets with a session but no payment intent: the webhook never finished for them."""
    q = select(Ticket).where(
        Ticket.payment_method == "card",
        Ticket.stripe_session_id.is_not(None),
        Ticket.stripe_payment_intent_id.is_(None),
    )
    if since is not None:
        q = q.where(Ticket.created_at >= since)
    tickets = db.execute(q.order_by(Ticket.created_at.asc())).scalars().all()

    stats = {"checked": len(tickets), "updated": 0, "failed": 0, "expired_released": 0}
    for t in tickets:
        ticket_id, session_id = t.ticket_id, t.stripe_session_id
        try:
            status = gateway.retrieve_session(session_id)
            if apply_gateway_status(db, t, status, "payment-sync"):
                stats["updated"] += 1
            if (settings.RELEASE_EXPIRED_CHECKOUTS and status.status == "expired"
                    and t.payment_status == "pending" and not t.cancel_ticket):
                if inventory_service.cancel_and_release(db, t):
                    log_audit(db, "payment-sync", "checkout_expired", "ticket", ticket_id, {"session_id": session_id})
                    stats["expired_released"] += 1
            db.commit()
            _maybe_send_confirmation(db, t, transport)
        except Exception as e:
            db.rollback()
            stats["failed"] += 1
            logger.error("payment_sync_ticket_failed", ticket_id=ticket_id, session_id=session_id, error=str(e))
    return stats


def reconcile_pending_refunds(db: Session, gateway: PaymentGateway, now: datetime | None = None) -> dict:
    """Refund markers left behind when the request died between Stripe and the local write."""
    from app.services.refund_service import finalize_refund

    now = now or datetime.now(timezone.utc)
    tickets = db.execute(select(Ticket).where(Ticket.refund_status == "requested")).scalars().all()
    stats = {"checked": len(tickets), "finalized": 0, "reset": 0, "failed": 0}
    for t in tickets:
        ticket_id = t.ticket_id
        try:
            info = gateway.find_refund(t.stripe_payment_intent_id, ticket_id)
            if info is not None:
                finalize_refund(db, t, info, "payment-sync")
                stats["finalized"] += 1
            elif t.refund_date is None or now - _aware(t.refund_date) >= REFUND_MARKER_GRACE:
                t.refund_status = "none"
                t.refund_date = None
                log_audit(db, "payment-sync", "refund_marker_reset", "ticket", ticket_id, {})
                db.commit()
                stats["reset"] += 1
        except Exception as e:
            db.rollback()
            stats["failed"] += 1
            logger.error("refund_sync_ticket_failed", ticket_id=ticket_id, error=str(e))
    return stats


def reconcile_pending_bookings(db: Session, gateway: PaymentGateway, transport: MailTransport | None = None) -> dict:
    """Deferred checkouts whose webhook was lost (promote) or whose session expired (drop)."""
    pendings = db.execute(select(PendingBooking).order_by(PendingBooking.created_at.asc())).scalars().all()
    stats = {"checked": len(pendings), "promoted": 0, "dropped": 0, "failed": 0}
    for p in pendings:
        session_id = p.session_id
        try:
            status = gateway.retrieve_session(session_id)
            if status.is_paid:
                t = promote_pending_booking(db, p, "payment-sync")
                apply_gateway_status(db, t, status, "payment-sync")
                db.commit()
                stats["promoted"] += 1
                _maybe_send_confirmation(db, t, transport)
            elif status.status == "expired" and settings.RELEASE_EXPIRED_CHECKOUTS:
                inventory_service.release(db, p.time_slot_id, p.admissions)
                db.delete(p)
                db.commit()
                stats["dropped"] += 1
        except Exception as e:
            db.rollback()
            stats["failed"] += 1
            logger.error("pending_booking_sync_failed", session_id=session_id, error=str(e))
    return stats


def close_orphan_checkouts(db: Session, now: datetime | None = None) -> dict:
    """Pending card tickets that never got a Stripe session can never be paid: cancel and release them."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=settings.ORPHAN_CHECKOUT_GRACE_MINUTES)
    orphans = db.execute(
        select(Ticket).where(
            Ticket.payment_method == "card",
            Ticket.payment_status == "pending",
            Ticket.stripe_session_id.is_(None),
            Ticket.cancel_ticket.is_(False),
            Ticket.source.in_(("online", "walkin")),
            Ticket.created_at < cutoff,
        )
    ).scalars().all()
    closed = 0
    for t in orphans:
        if inventory_service.cancel_and_release(db, t):
            log_audit(db, "payment-sync", "orphan_checkout_closed", "ticket", t.ticket_id, {})
            closed += 1
    db.commit()
    if closed:
        logger.info("orphan_checkouts_closed", count=closed)
    return {"closed": closed}


def run_payment_sync(db: Session, gateway: PaymentGateway, transport: MailTransport | None = None,
                     mode: str = "recent", now: datetime | None = None) -> dict:
    """One sweep. ``recent`` looks back PAYMENT_SYNC_RECENT_HOURS; ``end_of_day`` has no age filter."""
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=settings.PAYMENT_SYNC_RECENT_HOURS) if mode == "recent" else None
    result = {
        "mode": mode,
        "payments": reconcile_incomplete_payments(db, gateway, transport, since=since),
        "refunds": reconcile_pending_refunds(db, gateway, now=now),
        "pendingBookings": reconcile_pending_bookings(db, gateway, transport),
        "orphans": close_orphan_checkouts(db, now=now),
    }
    logger.info("payment_sync_done", mode=mode, payments=result["payments"], refunds=result["refunds"])
    return result
