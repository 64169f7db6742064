from sqlalchemy import String, Integer, Float, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base


class DiscountVoucher(Base):
    __tablename__ = "discount_vouchers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(40), unique=True, index=True)  # stored upper-case
    name: Mapped[str] = mapped_column(String(120))
    description: Mapped[str] = mapped_column(String(500), default="")
    discount_type: Mapped[str] = mapped_column(String(12))  # percentage|fixed
    discount_value: Mapped[float] = mapped_column(Float)
    minimum_amount: Mapped[float] = mapped_column(Float, default=0)
    maximum_discount: Mapped[float | None] = mapped_column(Float, nullable=True)
    usage_limit: Mapped[int] = mapped_column(Integer, default=-1)  # -1 = unlimited
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    valid_until: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    applicable_for: Mapped[str] = mapped_column(String(12), default="all")  # all|tickets|bundles|socks
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
