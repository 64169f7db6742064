import uuid
from datetime import datetime, timezone

from sqlalchemy import select, update, or_
from sqlalchemy.orm import Session

from app.core.errors import Conflict, InvalidRequest, NotFound
from app.models.discount_voucher import DiscountVoucher
from app.models.ticket import Ticket
from app.schemas.vouchers import VoucherCreate, VoucherUpdate


def _aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _check_rules(discount_type: str, discount_value: float, valid_from: datetime, valid_until: datetime):
    if discount_type == "percentage" and not (0 < discount_value <= 100):
        raise InvalidRequest("Percentage discount must be between 0 and 100")
    if discount_type == "fixed" and discount_value <= 0:
        raise InvalidRequest("Fixed discount must be greater than 0")
    if _aware(valid_until) <= _aware(valid_from):
        raise InvalidRequest("Valid until date must be after valid from date")


def _get_or_404(db: Session, voucher_id: str) -> DiscountVoucher:
    v = db.get(DiscountVoucher, voucher_id)
    if not v:
        raise NotFound("Voucher not found")
    return v


def _code_taken(db: Session, code: str, exclude_id: str | None = None) -> bool:
    q = select(DiscountVoucher.id).where(DiscountVoucher.code == code)
    if exclude_id:
        q = q.where(DiscountVoucher.id != exclude_id)
    return db.execute(q).first() is not None


def create_voucher(db: Session, body: VoucherCreate) -> DiscountVoucher:
    code = body.code.strip().upper()
    _check_rules(body.discountType, body.discountValue, body.validFrom, body.validUntil)
    if _code_taken(db, code):
        raise Conflict("Voucher code already exists", code="voucher_code_exists")
    v = DiscountVoucher(
        id=str(uuid.uuid4()),
        code=code,
        name=body.name.strip(),
        description=body.description,
        discount_type=body.discountType,
        discount_value=body.discountValue,
        minimum_amount=body.minimumAmount,
        maximum_discount=body.maximumDiscount,
        usage_limit=body.usageLimit or -1,  # 0 means unlimited
        used_count=0,
        valid_from=body.validFrom,
        valid_until=body.validUntil,
        is_active=body.isActive,
        applicable_for=body.applicableFor,
    )
    db.add(v)
    db.commit()
    db.refresh(v)
    return v


def update_voucher(db: Session, voucher_id: str, body: VoucherUpdate) -> DiscountVoucher:
    v = _get_or_404(db, voucher_id)
    data = body.model_dump(exclude_unset=True)
    if "code" in data and data["code"]:
        code = data["code"].strip().upper()
        if _code_taken(db, code, exclude_id=v.id):
            raise Conflict("Voucher code already exists", code="voucher_code_exists")
        v.code = code
    mapping = {
        "name": "name", "description": "description", "discountType": "discount_type",
        "discountValue": "discount_value", "minimumAmount": "minimum_amount",
        "maximumDiscount": "maximum_discount", "usageLimit": "usage_limit", "validFrom": "valid_from",
        "validUntil": "valid_until", "isActive": "is_active", "applicableFor": "applicable_for",
    }
    for key, attr in mapping.items():
        if key in data:
            setattr(v, attr, data[key])
    _check_rules(v.discount_type, v.discount_value, v.valid_from, v.valid_until)
    db.commit()
    db.refresh(v)
    return v


def delete_voucher(db: Session, voucher_id: str) -> None:
    v = _get_or_404(db, voucher_id)
    db.delete(v)
    db.commit()


def list_vouchers(db: Session, search: str | None = None, active: bool | None = None) -> list[DiscountVoucher]:
    q = select(DiscountVoucher)
    if search:
        like = f"%{search.strip()}%"
        q = q.where(or_(DiscountVoucher.code.ilike(like), DiscountVoucher.name.ilike(like)))
    if active is not None:
        q = q.where(DiscountVoucher.is_active.is_(active))
    return list(db.execute(q.order_by(DiscountVoucher.created_at.desc())).scalars())


def compute_discount(v: DiscountVoucher, amount: float) -> tuple[float, float]:
    if v.discount_type == "percentage":
        discount = amount * v.discount_value / 100
        if v.maximum_discount and discount > v.maximum_discount:
            discount = v.maximum_discount
    else:
        discount = v.discount_value
    discount = round(min(discount, amount), 2)
    return discount, round(max(0.0, amount - discount), 2)


def validate_voucher(db: Session, code: str, amount: float, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    v = db.execute(
        select(DiscountVoucher).where(DiscountVoucher.code == code.strip().upper(), DiscountVoucher.is_active.is_(True))
    ).scalar_one_or_none()
    if not v:
        raise NotFound("Invalid voucher code", code="invalid_voucher")
    if not (_aware(v.valid_from) <= now <= _aware(v.valid_until)):
        raise InvalidRequest("Voucher is not valid at this time", code="voucher_not_valid_now")
    if v.usage_limit != -1 and v.used_count >= v.usage_limit:
        raise Conflict("Voucher usage limit exceeded", code="usage_limit_exceeded")
    if amount < v.minimum_amount:
        raise InvalidRequest(f"Minimum amount required: €{v.minimum_amount:g}", code="below_minimum_amount")

    discount, final = compute_discount(v, amount)
    return {
        "voucher": voucher_to_dict(v),
        "originalAmount": amount,
        "discountAmount": discount,
        "finalAmount": final,
    }


def increment_usage(db: Session, voucher_id: str) -> DiscountVoucher:
    """Count one redemption; the limit check and increment are one UPDATE."""
    v = _get_or_404(db, voucher_id)
    result = db.execute(
        update(DiscountVoucher)
        .where(
            DiscountVoucher.id == voucher_id,
            or_(DiscountVoucher.usage_limit == -1, DiscountVoucher.used_count < DiscountVoucher.usage_limit),
        )
        .values(used_count=DiscountVoucher.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise Conflict("Voucher usage limit exceeded", code="usage_limit_exceeded")
    db.commit()
    db.refresh(v)
    return v


def voucher_stats(db: Session, voucher_id: str) -> dict:
    v = _get_or_404(db, voucher_id)
    tickets = db.execute(select(Ticket).where(Ticket.coupon_code == v.code)).scalars().all()
    return {
        "voucher": voucher_to_dict(v),
        "usedCount": v.used_count,
        "remainingUses": None if v.usage_limit == -1 else max(0, v.usage_limit - v.used_count),
        "ticketsWithCode": len(tickets),
        "revenue": round(sum(t.amount or 0 for t in tickets if not t.cancel_ticket), 2),
    }


def voucher_to_dict(v: DiscountVoucher) -> dict:
    return {
        "id": v.id,
        "code": v.code,
        "name": v.name,
        "description": v.description,
        "discountType": v.discount_type,
        "discountValue": v.discount_value,
        "minimumAmount": v.minimum_amount,
        "maximumDiscount": v.maximum_discount,
        "usageLimit": v.usage_limit,
        "usedCount": v.used_count,
        "validFrom": _aware(v.valid_from).isoformat(),
        "validUntil": _aware(v.valid_until).isoformat(),
        "isActive": v.is_active,
        "applicableFor": v.applicable_for,
    }
