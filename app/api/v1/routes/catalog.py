import uuid
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import require_roles
from app.core.errors import NotFound
from app.models.ticket_bundle import TicketBundle
from app.models.user import User
from app.schemas.catalog import BulkSlotsIn, BundleCreate, BundleUpdate, SettingIn, TimeSlotIn, TimeSlotUpdate
from app.schemas.envelope import ok
from app.services import slot_service
from app.services.settings_service import get_setting, list_settings, setting_to_dict, upsert_setting

router = APIRouter(tags=["catalog"])


# Time slots
@router.post("/time-slots")
def create_time_slot(body: TimeSlotIn, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    slot = slot_service.create_slot(db, body)
    return ok(slot_service.slot_to_dict(db, slot), "Time slot created")


@router.get("/time-slots")
def list_time_slots(date: Optional[str] = None, db: Session = Depends(get_db)):
    return ok([slot_service.slot_to_dict(db, s) for s in slot_service.list_slots(db, date)])


@router.post("/time-slots/bulk")
def bulk_time_slots(body: BulkSlotsIn, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    return ok(slot_service.bulk_create(db, body), "Time slots generated")


@router.delete("/time-slots/by-date/{date}")
def delete_time_slots_for_date(date: str, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    return ok({"deleted": slot_service.delete_slots_for_date(db, date)})


@router.put("/time-slots/{slot_id}")
def update_time_slot(slot_id: str, body: TimeSlotUpdate, db: Session = Depends(get_db),
                     me: User = Depends(require_roles("admin"))):
    slot = slot_service.update_slot(db, slot_id, body)
    return ok(slot_service.slot_to_dict(db, slot), "Time slot updated")


@router.delete("/time-slots/{slot_id}")
def delete_time_slot(slot_id: str, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    slot_service.delete_slot(db, slot_id)
    return ok(message="Time slot deleted")


@router.post("/time-slots/{slot_id}/resync")
def resync_time_slot(slot_id: str, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    slot = slot_service.resync_slot(db, slot_id)
    return ok(slot_service.slot_to_dict(db, slot), "Slot counter rebuilt from tickets")


# Bundles
def _bundle_out(b: TicketBundle) -> dict:
    return {"id": b.id, "name": b.name, "discountPercent": b.discount_percent, "price": b.price,
            "description": b.description, "tickets": b.tickets}


@router.post("/bundles")
def create_bundle(body: BundleCreate, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    b = TicketBundle(id=str(uuid.uuid4()), name=body.name, discount_percent=body.discountPercent,
                     price=body.price, description=body.description, tickets=body.tickets)
    db.add(b)
    db.commit()
    return ok(_bundle_out(b), "Bundle created")


@router.get("/bundles")
def list_bundles(db: Session = Depends(get_db)):
    items = db.execute(select(TicketBundle).order_by(TicketBundle.price.asc())).scalars().all()
    return ok([_bundle_out(b) for b in items])


@router.put("/bundles/{bundle_id}")
def update_bundle(bundle_id: str, body: BundleUpdate, db: Session = Depends(get_db),
                  me: User = Depends(require_roles("admin"))):
    b = db.get(TicketBundle, bundle_id)
    if not b:
        raise NotFound("Bundle not found")
    data = body.model_dump(exclude_unset=True)
    for key, attr in (("name", "name"), ("discountPercent", "discount_percent"), ("price", "price"),
                      ("description", "description"), ("tickets", "tickets")):
        if key in data and data[key] is not None:
            setattr(b, attr, data[key])
    db.commit()
    return ok(_bundle_out(b), "Bundle updated")


@router.delete("/bundles/{bundle_id}")
def delete_bundle(bundle_id: str, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    b = db.get(TicketBundle, bundle_id)
    if not b:
        raise NotFound("Bundle not found")
    db.delete(b)
    db.commit()
    return ok(message="Bundle deleted")


# Venue settings
@router.post("/settings")
def save_settings(body: SettingIn, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    s, created = upsert_setting(db, body)
    return ok(setting_to_dict(s), "Settings created" if created else "Settings updated")


@router.get("/settings")
def all_settings(db: Session = Depends(get_db)):
    return ok([setting_to_dict(s) for s in list_settings(db)])


@router.get("/settings/{location_name}")
def settings_for_location(location_name: str, db: Session = Depends(get_db)):
    return ok(setting_to_dict(get_setting(db, location_name)))
