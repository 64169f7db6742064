import uuid
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, delete, update
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_gateway, require_roles
from app.core.errors import NotFound
from app.models.cancel_request import CancelRequest
from app.models.pending_booking import PendingBooking
from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot
from app.models.user import User
from app.schemas.booking import BookingCreate, CancelRequestCreate, SlotRef, TicketRef
from app.schemas.envelope import ok
from app.services.audit_service import history, log_audit
from app.services.booking_service import get_ticket_or_404, ticket_to_dict
from app.services.checkout_service import create_unpaid_ticket
from app.services.gate_service import verify_ticket
from app.services.refund_service import cancel_ticket, mass_cancel_refund, refund_ticket
from app.services.stripe_client import PaymentGateway

router = APIRouter(tags=["tickets"])


@router.post("/tickets")
def create_ticket(body: BookingCreate, db: Session = Depends(get_db),
                  me: User = Depends(require_roles("admin", "staff"))):
    t = create_unpaid_ticket(db, body.model_dump())
    return ok(ticket_to_dict(t), "Ticket created")


@router.get("/tickets")
def list_tickets(date: Optional[str] = None, email: Optional[str] = None,
                 paymentStatus: Optional[str] = None, limit: int = Query(200, ge=1, le=1000),
                 db: Session = Depends(get_db), me: User = Depends(require_roles("admin", "staff"))):
    q = select(Ticket)
    if date:
        q = q.where(Ticket.date == date)
    if email:
        q = q.where(Ticket.email == email.strip().lower())
    if paymentStatus:
        q = q.where(Ticket.payment_status == paymentStatus)
    items = db.execute(q.order_by(Ticket.created_at.desc()).limit(limit)).scalars().all()
    return ok([ticket_to_dict(t) for t in items])


@router.post("/tickets/verify")
def verify(body: TicketRef, db: Session = Depends(get_db), me: User = Depends(require_roles("admin", "staff"))):
    t = verify_ticket(db, body.ticketId, actor=me.email)
    return ok(ticket_to_dict(t), "Ticket verified")


@router.delete("/tickets")
def delete_all_tickets(db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    """Wipe all bookings (season reset). Slot counters go back to zero with them."""
    deleted = db.execute(delete(Ticket)).rowcount
    db.execute(delete(PendingBooking))
    db.execute(update(TimeSlot).values(sold_count=0))
    log_audit(db, me.email, "tickets_deleted", "ticket", "*", {"count": deleted})
    db.commit()
    return ok({"deleted": deleted}, "All tickets deleted")


@router.get("/tickets/{ticket_id}")
def get_ticket(ticket_id: str, db: Session = Depends(get_db)):
    return ok(ticket_to_dict(get_ticket_or_404(db, ticket_id)))


@router.get("/tickets/{ticket_id}/history")
def ticket_history(ticket_id: str, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    t = get_ticket_or_404(db, ticket_id)
    return ok(history(db, "ticket", t.ticket_id))


@router.put("/tickets/{ticket_id}/cancel")
def cancel(ticket_id: str, db: Session = Depends(get_db)):
    t = cancel_ticket(db, ticket_id, actor="public")
    return ok(ticket_to_dict(t), "Ticket cancelled")


@router.post("/tickets/{ticket_id}/refund")
def refund(ticket_id: str, db: Session = Depends(get_db), gateway: PaymentGateway = Depends(get_gateway),
           me: User = Depends(require_roles("admin"))):
    t = refund_ticket(db, gateway, ticket_id, actor=me.email)
    return ok(ticket_to_dict(t), "Refund processed")


@router.post("/refunds/mass-cancel-refund")
def mass_refund(body: SlotRef, db: Session = Depends(get_db), gateway: PaymentGateway = Depends(get_gateway),
                me: User = Depends(require_roles("admin"))):
    result = mass_cancel_refund(db, gateway, body.date, body.startTime, body.endTime, actor=me.email)
    return ok(result, f"Processed {result['totalTicketsProcessed']} tickets")


@router.post("/cancel-request")
def submit_cancel_request(body: CancelRequestCreate, db: Session = Depends(get_db)):
    t = get_ticket_or_404(db, body.ticketId)
    cr = CancelRequest(id=str(uuid.uuid4()), ticket_id=t.ticket_id, email=body.email.strip().lower(),
                       reason=body.reason or "No reason provided")
    db.add(cr)
    db.commit()
    return ok({"id": cr.id, "ticketId": cr.ticket_id}, "Cancel request submitted")


@router.get("/cancel-request")
def list_cancel_requests(db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    items = db.execute(select(CancelRequest).order_by(CancelRequest.created_at.desc())).scalars().all()
    return ok([
        {
            "id": c.id,
            "ticketId": c.ticket_id,
            "email": c.email,
            "reason": c.reason,
            "reviewed": c.reviewed,
            "createdAt": c.created_at.isoformat() if c.created_at else None,
        }
        for c in items
    ])


@router.put("/cancel-request/{request_id}/reviewed")
def mark_reviewed(request_id: str, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    cr = db.get(CancelRequest, request_id)
    if not cr:
        raise NotFound("Cancel request not found")
    cr.reviewed = True
    db.commit()
    return ok({"id": cr.id, "reviewed": True})
