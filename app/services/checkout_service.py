"""Booking creation: admission first, then the Stripe session.

Ticket-first (default): the pending card ticket and its slot debit commit in
one transaction before Stripe is called; the session carries
``metadata.ticketId``. Deferred (``CHECKOUT_DEFER_TICKET``): Stripe is called
first with ``metadata.bookingKind = "deferred"`` and the payload is parked in a
PendingBooking keyed by the session id until payment is confirmed.

If Stripe fails the request undoes its own local write (cancel and release, or
drop the parked booking) and answers 502. A crash between the two steps leaves
a pending ticket without a session id, which ``close_orphan_checkouts`` picks up.
"""
import uuid

import structlog
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import GatewayError
from app.models.pending_booking import PendingBooking
from app.models.ticket import Ticket
from app.services import inventory_service
from app.services.audit_service import log_audit
from app.services.booking_service import allocate_ticket_id, build_ticket, requested_admissions
from app.services.email_service import MailTransport, send_ticket_confirmation
from app.services.settings_service import get_pricing
from app.services.stripe_client import PaymentGateway

logger = structlog.get_logger().bind(component="checkout")


def _success_url(path: str) -> str:
    return f"{settings.FRONTEND_URL}/{path}?session=success&sessionId={{CHECKOUT_SESSION_ID}}"


def _cancel_url(path: str) -> str:
    return f"{settings.FRONTEND_URL}/{path}?session=cancelled"


def _start_session(gateway: PaymentGateway, *, amount: float, email: str, correlation: dict, path: str,
                   description: str):
    return gateway.create_checkout_session(
        amount=amount,
        currency=settings.STRIPE_CURRENCY,
        correlation_key=correlation,
        success_url=_success_url(path),
        cancel_url=_cancel_url(path),
        customer_email=email or None,
        description=description,
    )


def _ticket_first(db: Session, gateway: PaymentGateway, ticket: Ticket, *, path: str) -> dict:
    db.add(ticket)
    db.commit()

    try:
        session = _start_session(
            gateway, amount=ticket.amount, email=ticket.email, correlation={"ticketId": ticket.ticket_id},
            path=path, description=f"{settings.VENUE_NAME} {ticket.date} {ticket.start_time}",
        )
    except GatewayError:
        inventory_service.cancel_and_release(db, ticket)
        log_audit(db, "checkout", "checkout_aborted", "ticket", ticket.ticket_id, {"reason": "gateway_error"})
        db.commit()
        logger.warning("checkout_compensated", ticket_id=ticket.ticket_id)
        raise

    ticket.stripe_session_id = session.session_id
    db.commit()
    logger.info("checkout_started", ticket_id=ticket.ticket_id, session_id=session.session_id)
    return {"sessionId": session.session_id, "checkoutUrl": session.redirect_url, "ticketId": ticket.ticket_id}


def _deferred(db: Session, gateway: PaymentGateway, slot_id: str, admissions: int, booking: dict) -> dict:
    # Admission is debited up front and travels with the PendingBooking.
    db.commit()
    try:
        session = _start_session(
            gateway, amount=float(booking.get("amount") or 0), email=booking.get("email") or "",
            correlation={"bookingKind": "deferred"}, path="tickets",
            description=f"{settings.VENUE_NAME} {booking.get('date')} {booking.get('startTime')}",
        )
    except GatewayError:
        inventory_service.release(db, slot_id, admissions)
        db.commit()
        logger.warning("checkout_compensated", slot_id=slot_id, admissions=admissions)
        raise

    db.add(PendingBooking(
        id=str(uuid.uuid4()),
        session_id=session.session_id,
        time_slot_id=slot_id,
        admissions=admissions,
        booking_info=booking,
    ))
    db.commit()
    logger.info("checkout_started", session_id=session.session_id, deferred=True)
    return {"sessionId": session.session_id, "checkoutUrl": session.redirect_url, "ticketId": None}


def start_online_checkout(db: Session, gateway: PaymentGateway, booking: dict) -> dict:
    admissions = requested_admissions(booking)
    slot = inventory_service.get_slot_or_404(db, booking["date"], booking["startTime"], booking["endTime"])
    inventory_service.admit(db, slot.id, admissions)

    if settings.CHECKOUT_DEFER_TICKET:
        return _deferred(db, gateway, slot.id, admissions, booking)

    ticket = build_ticket(slot, booking, ticket_id=allocate_ticket_id(db))
    return _ticket_first(db, gateway, ticket, path="tickets")


def create_unpaid_ticket(db: Session, booking: dict) -> Ticket:
    """Direct booking without a payment session (admin / legacy frontend)."""
    admissions = requested_admissions(booking)
    slot = inventory_service.get_slot_or_404(db, booking["date"], booking["startTime"], booking["endTime"])
    inventory_service.admit(db, slot.id, admissions)
    ticket = build_ticket(slot, booking, source="manual", ticket_id=allocate_ticket_id(db))
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    return ticket


def price_walkin(db: Session, booking: dict) -> dict:
    """Server-side desk pricing; the walk-in form never sends an amount."""
    pricing = get_pricing(db)
    tickets = int(booking.get("tickets") or 0)
    bundle = booking.get("selectedBundle") or {}
    socks = int(booking.get("socksCount") or 0)
    ticket_total = pricing.ticket_price * tickets
    bundle_price = float(bundle.get("price") or 0)
    socks_total = pricing.socks_price * socks
    subtotal = round(ticket_total + bundle_price + socks_total + settings.ADMIN_FEE, 2)
    return {
        "ticketTotal": round(ticket_total, 2),
        "bundlePrice": bundle_price,
        "socksTotal": round(socks_total, 2),
        "administrationFee": settings.ADMIN_FEE,
        "subtotal": subtotal,
        "amount": subtotal,
    }


def start_walkin(db: Session, gateway: PaymentGateway, transport: MailTransport, booking: dict, actor: str) -> dict:
    admissions = requested_admissions(booking)
    slot = inventory_service.get_slot_or_404(db, booking["date"], booking["startTime"], booking["endTime"])
    prices = price_walkin(db, booking)
    booking = {**booking, "amount": prices["amount"], "subtotal": prices["subtotal"],
               "administrationFee": prices["administrationFee"]}
    inventory_service.admit(db, slot.id, admissions, force=bool(booking.get("skipSlotCheck")))

    if booking.get("paymentMethod") == "cash":
        ticket = build_ticket(slot, booking, source="walkin", payment_method="cash", payment_status="paid",
                              ticket_id=allocate_ticket_id(db))
        db.add(ticket)
        log_audit(db, actor, "walkin_cash_sold", "ticket", ticket.ticket_id, {"amount": ticket.amount})
        db.commit()
        db.refresh(ticket)
        logger.info("walkin_cash_sold", ticket_id=ticket.ticket_id, admissions=admissions)
        if ticket.email:
            send_ticket_confirmation(db, ticket, transport)
        return {"ticketId": ticket.ticket_id, "pricing": prices, "sessionId": None, "checkoutUrl": None}

    ticket = build_ticket(slot, booking, source="walkin", ticket_id=allocate_ticket_id(db))
    result = _ticket_first(db, gateway, ticket, path="walkinTickets")
    return {**result, "pricing": prices}
