import uuid
from sqlalchemy.orm import Session
from sqlalchemy import select
from app.core.errors import InvalidRequest, NotFound
from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot
from app.schemas.payment_state import payment_state_of


def make_ticket_id() -> str:
    return "MJX-" + str(uuid.uuid4()).split("-")[0].upper()


def allocate_ticket_id(db: Session) -> str:
    # ticket_id must be unique
    for _ in range(10):
        ref = make_ticket_id()
        if not db.execute(select(Ticket.id).where(Ticket.ticket_id == ref)).first():
            return ref
    raise RuntimeError("could not allocate ticket id")


def requested_admissions(booking: dict) -> int:
    """Direct tickets plus the bundle's included tickets; 400 when the request holds neither."""
    tickets = int(booking.get("tickets") or 0)
    bundle = booking.get("selectedBundle") or None
    if not tickets and not bundle:
        raise InvalidRequest("Either tickets or selectedBundle is required")
    bundle_tickets = int((bundle or {}).get("tickets") or 0)
    total = tickets + bundle_tickets
    if total <= 0:
        raise InvalidRequest("Booking must include at least one admission")
    return total


def build_ticket(slot: TimeSlot, booking: dict, *, source: str = "online", payment_method: str = "card",
                 payment_status: str = "pending", ticket_id: str | None = None) -> Ticket:
    """Ticket row from a booking payload (camelCase keys, as posted or as parked in a PendingBooking)."""
    bundle = booking.get("selectedBundle") or {}
    return Ticket(
        id=str(uuid.uuid4()),
        ticket_id=ticket_id,
        time_slot_id=slot.id,
        date=slot.date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        tickets=int(booking.get("tickets") or 0),
        bundle_name=bundle.get("name"),
        bundle_discount=float(bundle.get("discount") or 0),
        bundle_price=float(bundle.get("price") or 0),
        bundle_tickets=int(bundle.get("tickets") or 0),
        socks_count=int(booking.get("socksCount") or 0),
        cancellation_enabled=bool(booking.get("cancellationEnabled")),
        cancellation_fee=float(booking.get("cancellationFee") or 0),
        administration_fee=float(booking.get("administrationFee") or 0),
        amount=float(booking.get("amount") or 0),
        subtotal=float(booking.get("subtotal") or 0),
        coupon_code=(booking.get("couponCode") or None),
        name=(booking.get("name") or "").strip(),
        surname=(booking.get("surname") or "").strip(),
        email=(booking.get("email") or "").strip().lower(),
        phone=booking.get("phone") or "",
        postal_code=booking.get("postalCode") or "",
        source=source,
        payment_method=payment_method,
        payment_status=payment_status,
    )


def get_ticket(db: Session, ticket_id: str) -> Ticket | None:
    return db.execute(select(Ticket).where(Ticket.ticket_id == ticket_id)).scalar_one_or_none()


def get_ticket_or_404(db: Session, ticket_id: str) -> Ticket:
    t = get_ticket(db, (ticket_id or "").strip())
    if not t:
        raise NotFound("Ticket not found")
    return t


def get_ticket_by_session(db: Session, session_id: str) -> Ticket | None:
    return db.execute(select(Ticket).where(Ticket.stripe_session_id == session_id)).scalar_one_or_none()


def ticket_to_dict(t: Ticket) -> dict:
    return {
        "ticketId": t.ticket_id,
        "date": t.date,
        "startTime": t.start_time,
        "endTime": t.end_time,
        "tickets": t.tickets,
        "selectedBundle": {
            "name": t.bundle_name,
            "discount": t.bundle_discount,
            "price": t.bundle_price,
            "tickets": t.bundle_tickets,
        } if t.bundle_name else None,
        "admissions": t.admissions,
        "socksCount": t.socks_count,
        "cancellationEnabled": t.cancellation_enabled,
        "cancellationFee": t.cancellation_fee,
        "administrationFee": t.administration_fee,
        "amount": t.amount,
        "subtotal": t.subtotal,
        "couponCode": t.coupon_code,
        "name": t.name,
        "surname": t.surname,
        "email": t.email,
        "phone": t.phone,
        "postalCode": t.postal_code,
        "source": t.source,
        "paymentMethod": t.payment_method,
        "paymentStatus": t.payment_status,
        "payment": payment_state_of(t).model_dump(mode="json"),
        "cancelTicket": t.cancel_ticket,
        "isUsed": t.is_used,
        "usedAt": t.used_at.isoformat() if t.used_at else None,
        "refundStatus": t.refund_status,
        "refundedAmount": t.refunded_amount,
        "createdAt": t.created_at.isoformat() if t.created_at else None,
    }
