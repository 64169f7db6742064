from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import require_roles
from app.models.user import User
from app.schemas.envelope import ok
from app.schemas.vouchers import VoucherCreate, VoucherUpdate, VoucherUsage, VoucherValidate
from app.services import voucher_service

router = APIRouter(prefix="/discount-vouchers", tags=["vouchers"])


@router.post("")
def create_voucher(body: VoucherCreate, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    v = voucher_service.create_voucher(db, body)
    return ok(voucher_service.voucher_to_dict(v), "Voucher created")


@router.get("")
def list_vouchers(search: Optional[str] = None, active: Optional[bool] = None, db: Session = Depends(get_db),
                  me: User = Depends(require_roles("admin"))):
    return ok([voucher_service.voucher_to_dict(v) for v in voucher_service.list_vouchers(db, search, active)])


@router.post("/validate")
def validate_voucher(body: VoucherValidate, db: Session = Depends(get_db)):
    return ok(voucher_service.validate_voucher(db, body.code, body.amount), "Voucher is valid")


@router.post("/increment-usage")
def increment_usage(body: VoucherUsage, db: Session = Depends(get_db)):
    v = voucher_service.increment_usage(db, body.voucherId)
    return ok({"id": v.id, "usedCount": v.used_count})


@router.get("/{voucher_id}/stats")
def voucher_stats(voucher_id: str, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    return ok(voucher_service.voucher_stats(db, voucher_id))


@router.put("/{voucher_id}")
def update_voucher(voucher_id: str, body: VoucherUpdate, db: Session = Depends(get_db),
                   me: User = Depends(require_roles("admin"))):
    v = voucher_service.update_voucher(db, voucher_id, body)
    return ok(voucher_service.voucher_to_dict(v), "Voucher updated")


@router.delete("/{voucher_id}")
def delete_voucher(voucher_id: str, db: Session = Depends(get_db), me: User = Depends(require_roles("admin"))):
    voucher_service.delete_voucher(db, voucher_id)
    return ok(message="Voucher deleted")
