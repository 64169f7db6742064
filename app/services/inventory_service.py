"""Slot capacity accounting.

Two views of the same number exist. ``remaining_for_slot`` recomputes it from
the tickets table (what the admin screens show). ``TimeSlot.sold_count`` is the
per-slot counter that admission is checked against: ``admit`` moves it with one
conditional UPDATE, so checking capacity and debiting it cannot be split by a
concurrent booking. ``release`` is its inverse and runs once per ticket, when
``cancel_ticket`` flips to true.
"""
from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session
import structlog

from app.core.errors import Conflict, NotFound
from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot

logger = structlog.get_logger().bind(component="inventory")


def find_slot(db: Session, date: str, start_time: str, end_time: str) -> TimeSlot | None:
    return db.execute(
        select(TimeSlot).where(
            TimeSlot.date == date,
            TimeSlot.start_time == start_time,
            TimeSlot.end_time == end_time,
        )
    ).scalar_one_or_none()


def get_slot_or_404(db: Session, date: str, start_time: str, end_time: str) -> TimeSlot:
    slot = find_slot(db, date, start_time, end_time)
    if not slot:
        raise NotFound("Time slot not found")
    return slot


def sold_admissions(db: Session, date: str, start_time: str, end_time: str) -> int:
    """Sum of admissions held by non-cancelled tickets for the slot key, paid or not."""
    total = db.execute(
        select(func.coalesce(func.sum(Ticket.tickets + Ticket.bundle_tickets), 0)).where(
            Ticket.date == date,
            Ticket.start_time == start_time,
            Ticket.end_time == end_time,
            Ticket.cancel_ticket.is_(False),
        )
    ).scalar_one()
    return int(total or 0)


def remaining_for_slot(db: Session, slot: TimeSlot) -> int:
    return int(slot.max_tickets) - sold_admissions(db, slot.date, slot.start_time, slot.end_time)


def admit(db: Session, slot_id: str, admissions: int, *, force: bool = False) -> None:
    """Debit ``admissions`` from the slot or raise Conflict.

    Does not commit: the caller commits the debit together with the ticket
    (or pending booking) that holds it. ``force`` skips the capacity clause
    (walk-in desk override).
    """
    if admissions <= 0:
        return
    stmt = (
        update(TimeSlot)
        .where(TimeSlot.id == slot_id)
        .values(sold_count=TimeSlot.sold_count + admissions)
        .execution_options(synchronize_session=False)
    )
    if not force:
        stmt = stmt.where(TimeSlot.sold_count + admissions <= TimeSlot.max_tickets)
    result = db.execute(stmt)
    if result.rowcount == 1:
        logger.info("slot_admitted", slot_id=slot_id, admissions=admissions, forced=force)
        return

    row = db.execute(select(TimeSlot.max_tickets, TimeSlot.sold_count).where(TimeSlot.id == slot_id)).first()
    if row is None:
        raise NotFound("Time slot not found")
    remaining = max(0, int(row.max_tickets) - int(row.sold_count))
    logger.info("slot_sold_out", slot_id=slot_id, requested=admissions, remaining=remaining)
    raise Conflict(f"Only {remaining} tickets left.", code="sold_out", data={"remaining": remaining})


def release(db: Session, slot_id: str | None, admissions: int) -> None:
    """Give admissions back to the slot, never below zero. Does not commit."""
    if not slot_id or admissions <= 0:
        return
    db.execute(
        update(TimeSlot)
        .where(TimeSlot.id == slot_id)
        .values(sold_count=case((TimeSlot.sold_count > admissions, TimeSlot.sold_count - admissions), else_=0))
        .execution_options(synchronize_session=False)
    )
    logger.info("slot_released", slot_id=slot_id, admissions=admissions)


def resync_slot_counter(db: Session, slot: TimeSlot) -> int:
    """Rewrite the counter from the tickets table. Admin repair; does not commit."""
    sold = sold_admissions(db, slot.date, slot.start_time, slot.end_time)
    slot.sold_count = sold
    return sold


def cancel_and_release(db: Session, ticket: Ticket) -> bool:
    """Flip cancel_ticket false->true and release its admissions exactly once.

    Returns False when another request already cancelled it.
    """
    result = db.execute(
        update(Ticket)
        .where(Ticket.id == ticket.id, Ticket.cancel_ticket.is_(False))
        .values(cancel_ticket=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    release(db, ticket.time_slot_id, ticket.admissions)
    ticket.cancel_ticket = True
    return True
