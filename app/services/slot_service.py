import uuid
from datetime import timedelta

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import Conflict, InvalidRequest, NotFound
from app.models.ticket import Ticket
from app.models.time_slot import TimeSlot
from app.schemas.catalog import BulkSlotsIn, TimeSlotIn, TimeSlotUpdate
from app.services.inventory_service import find_slot, remaining_for_slot, resync_slot_counter


def _check_range(start_time: str, end_time: str):
    if end_time <= start_time:
        raise InvalidRequest("endTime must be after startTime")


def create_slot(db: Session, body: TimeSlotIn) -> TimeSlot:
    _check_range(body.startTime, body.endTime)
    if find_slot(db, body.date, body.startTime, body.endTime):
        raise Conflict("Time slot already exists", code="slot_exists")
    slot = TimeSlot(id=str(uuid.uuid4()), date=body.date, start_time=body.startTime,
                    end_time=body.endTime, max_tickets=body.maxTickets, sold_count=0)
    db.add(slot)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Time slot already exists", code="slot_exists")
    db.refresh(slot)
    return slot


def list_slots(db: Session, date: str | None = None) -> list[TimeSlot]:
    q = select(TimeSlot)
    if date:
        q = q.where(TimeSlot.date == date)
    return list(db.execute(q.order_by(TimeSlot.date.asc(), TimeSlot.start_time.asc())).scalars())


def _has_tickets(db: Session, slot: TimeSlot) -> bool:
    n = db.execute(
        select(func.count(Ticket.id)).where(
            Ticket.date == slot.date, Ticket.start_time == slot.start_time,
            Ticket.end_time == slot.end_time, Ticket.cancel_ticket.is_(False),
        )
    ).scalar_one()
    return n > 0


def update_slot(db: Session, slot_id: str, body: TimeSlotUpdate) -> TimeSlot:
    slot = db.get(TimeSlot, slot_id)
    if not slot:
        raise NotFound("Time slot not found")
    if (body.startTime or body.endTime) and _has_tickets(db, slot):
        raise Conflict("Cannot move a time slot that already has tickets", code="slot_has_tickets")
    start = body.startTime or slot.start_time
    end = body.endTime or slot.end_time
    _check_range(start, end)
    slot.start_time, slot.end_time = start, end
    if body.maxTickets is not None:
        if body.maxTickets < slot.sold_count:
            raise Conflict(f"{slot.sold_count} tickets already sold for this slot", code="below_sold")
        slot.max_tickets = body.maxTickets
    db.commit()
    db.refresh(slot)
    return slot


def delete_slot(db: Session, slot_id: str) -> None:
    slot = db.get(TimeSlot, slot_id)
    if not slot:
        raise NotFound("Time slot not found")
    if _has_tickets(db, slot):
        raise Conflict("Cannot delete a time slot that has tickets", code="slot_has_tickets")
    db.delete(slot)
    db.commit()


def delete_slots_for_date(db: Session, date: str) -> int:
    slots = list_slots(db, date)
    deleted = 0
    for slot in slots:
        if _has_tickets(db, slot):
            continue
        db.delete(slot)
        deleted += 1
    db.commit()
    return deleted


def bulk_create(db: Session, body: BulkSlotsIn) -> dict:
    """Weekday template for Mon-Fri, weekend template for Sat/Sun. Existing slots are kept."""
    created, skipped = 0, 0
    d = body.startDate
    while d <= body.endDate:
        templates = body.weekend if d.weekday() >= 5 else body.weekday
        date_str = d.isoformat()
        for tpl in templates:
            _check_range(tpl.startTime, tpl.endTime)
            if find_slot(db, date_str, tpl.startTime, tpl.endTime):
                skipped += 1
                continue
            db.add(TimeSlot(id=str(uuid.uuid4()), date=date_str, start_time=tpl.startTime,
                            end_time=tpl.endTime, max_tickets=tpl.maxTickets, sold_count=0))
            db.flush()
            created += 1
        d += timedelta(days=1)
    db.commit()
    return {"created": created, "skipped": skipped}


def resync_slot(db: Session, slot_id: str) -> TimeSlot:
    slot = db.get(TimeSlot, slot_id)
    if not slot:
        raise NotFound("Time slot not found")
    resync_slot_counter(db, slot)
    db.commit()
    db.refresh(slot)
    return slot


def slot_to_dict(db: Session, slot: TimeSlot) -> dict:
    return {
        "id": slot.id,
        "date": slot.date,
        "startTime": slot.start_time,
        "endTime": slot.end_time,
        "maxTickets": slot.max_tickets,
        "soldCount": slot.sold_count,
        "remaining": remaining_for_slot(db, slot),
    }
