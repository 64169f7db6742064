import uuid
from sqlalchemy.orm import Session
from sqlalchemy import select
from app.core.errors import NotFound, ServiceUnavailable
from app.models.setting import Setting
from app.schemas.catalog import SettingIn


def get_pricing(db: Session) -> Setting:
    """Venue pricing used by the walk-in desk. The first configured location wins."""
    s = db.execute(select(Setting).order_by(Setting.created_at.asc()).limit(1)).scalar_one_or_none()
    if not s:
        raise ServiceUnavailable("Venue pricing is not configured", code="settings_missing")
    return s


def get_setting(db: Session, location_name: str) -> Setting:
    s = db.execute(select(Setting).where(Setting.location_name == location_name)).scalar_one_or_none()
    if not s:
        raise NotFound("Settings not found for this location")
    return s


def list_settings(db: Session) -> list[Setting]:
    return list(db.execute(select(Setting).order_by(Setting.location_name.asc())).scalars())


def upsert_setting(db: Session, body: SettingIn) -> tuple[Setting, bool]:
    """Create or update by location name. Returns (setting, created)."""
    s = db.execute(select(Setting).where(Setting.location_name == body.locationName)).scalar_one_or_none()
    created = s is None
    if created:
        s = Setting(id=str(uuid.uuid4()), location_name=body.locationName)
        db.add(s)
    s.address = body.address
    s.start_date = body.startDate
    s.end_date = body.endDate
    s.ticket_price = body.ticketPrice
    s.socks_price = body.socksPrice
    s.cancellation_fee = body.cancellationFee
    db.commit()
    db.refresh(s)
    return s, created


def setting_to_dict(s: Setting) -> dict:
    return {
        "id": s.id,
        "locationName": s.location_name,
        "address": s.address,
        "startDate": s.start_date.isoformat(),
        "endDate": s.end_date.isoformat(),
        "ticketPrice": s.ticket_price,
        "socksPrice": s.socks_price,
        "cancellationFee": s.cancellation_fee,
    }
