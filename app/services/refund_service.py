from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.errors import BookingError, Conflict, Forbidden, InvalidRequest
from app.models.ticket import Ticket
from app.services import inventory_service
from app.services.audit_service import log_audit
from app.services.booking_service import get_ticket_or_404
from app.services.stripe_client import PaymentGateway, RefundInfo

logger = structlog.get_logger().bind(component="refunds")

REFUND_REASON = "requested_by_customer"


def refund_cents(captured_cents: int, cancellation_fee: float) -> int:
    return max(0, int(captured_cents) - int(round((cancellation_fee or 0) * 100)))


def cancel_ticket(db: Session, ticket_id: str, actor: str) -> Ticket:
    """Customer-facing cancel without refund; only for tickets booked with cancellation protection."""
    t = get_ticket_or_404(db, ticket_id)
    if not t.cancellation_enabled:
        raise Forbidden("Cancellation is not enabled for this ticket", code="cancellation_disabled")
    if not inventory_service.cancel_and_release(db, t):
        raise Conflict("Ticket is already cancelled", code="already_cancelled")
    log_audit(db, actor, "ticket_cancelled", "ticket", t.ticket_id, {})
    db.commit()
    db.refresh(t)
    logger.info("ticket_cancelled", ticket_id=t.ticket_id)
    return t


def finalize_refund(db: Session, t: Ticket, info: RefundInfo, actor: str) -> Ticket:
    """Local half of a refund: cancel, release the slot and record the Stripe refund."""
    inventory_service.cancel_and_release(db, t)
    t.refund_status = "refunded"
    t.refunded_amount = round(info.amount / 100, 2)
    t.refund_transaction_id = info.refund_id
    t.refund_date = datetime.now(timezone.utc)
    log_audit(db, actor, "ticket_refunded", "ticket", t.ticket_id, {
        "refund_id": info.refund_id,
        "amount_cents": info.amount,
    })
    db.commit()
    db.refresh(t)
    logger.info("ticket_refunded", ticket_id=t.ticket_id, refund_id=info.refund_id, amount_cents=info.amount)
    return t


def refund_ticket(db: Session, gateway: PaymentGateway, ticket_id: str, actor: str) -> Ticket:
    """Refund the captured amount minus the cancellation fee.

    ``refund_status = requested`` is committed before Stripe is called. If the
    process dies after Stripe refunds but before ``finalize_refund`` commits,
    the payment sync finds the marker and finishes or resets it. Retrying a
    ticket in ``requested`` is allowed: the idempotency key makes Stripe return
    the same refund.
    """
    t = get_ticket_or_404(db, ticket_id)
    if t.refund_status == "refunded":
        raise Conflict("Ticket has already been refunded", code="already_refunded")
    if t.payment_method == "cash":
        raise Conflict("Cash payments cannot be refunded online", code="cash_payment")
    if not t.stripe_payment_intent_id:
        raise Conflict("No payment found for this ticket", code="missing_payment_intent")

    intent = gateway.retrieve_payment_intent(t.stripe_payment_intent_id)
    amount = refund_cents(intent.captured_amount, t.cancellation_fee)
    if amount <= 0:
        raise InvalidRequest("Refund amount must be greater than zero", code="refund_amount_not_positive")

    db.execute(
        update(Ticket)
        .where(Ticket.id == t.id, Ticket.refund_status != "refunded")
        .values(refund_status="requested", refund_date=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(t)
    if t.refund_status == "refunded":
        raise Conflict("Ticket has already been refunded", code="already_refunded")

    # On GatewayError the marker stays; the sweep resolves it.
    info = gateway.create_refund(
        payment_intent_id=t.stripe_payment_intent_id,
        amount_cents=amount,
        reason=REFUND_REASON,
        correlation_key=t.ticket_id,
    )
    return finalize_refund(db, t, info, actor)


def mass_cancel_refund(db: Session, gateway: PaymentGateway, date: str, start_time: str, end_time: str,
                       actor: str) -> dict:
    """Refund every live ticket of a slot; one failure never stops the others."""
    ticket_ids = db.execute(
        select(Ticket.ticket_id).where(
            Ticket.date == date,
            Ticket.start_time == start_time,
            Ticket.end_time == end_time,
            Ticket.cancel_ticket.is_(False),
        ).order_by(Ticket.created_at.asc())
    ).scalars().all()

    refunded, failed = [], []
    for ticket_id in ticket_ids:
        try:
            t = refund_ticket(db, gateway, ticket_id, actor)
            refunded.append({"ticketId": t.ticket_id, "refundedAmount": t.refunded_amount,
                             "refundId": t.refund_transaction_id})
        except BookingError as e:
            db.rollback()
            failed.append({"ticketId": ticket_id, "reason": e.message, "code": e.code})
            logger.warning("mass_refund_ticket_failed", ticket_id=ticket_id, code=e.code)
    logger.info("mass_refund_done", date=date, start_time=start_time, refunded=len(refunded), failed=len(failed))
    return {"totalTicketsProcessed": len(ticket_ids), "refunded": refunded, "failed": failed}
