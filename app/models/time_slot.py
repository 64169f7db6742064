from sqlalchemy import String, Integer, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base


class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        UniqueConstraint("date", "start_time", "end_time", name="uq_time_slot_date_start_end"),
        CheckConstraint("sold_count >= 0", name="ck_time_slot_sold_nonneg"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    date: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD
    start_time: Mapped[str] = mapped_column(String(5))         # HH:MM
    end_time: Mapped[str] = mapped_column(String(5))           # HH:MM
    max_tickets: Mapped[int] = mapped_column(Integer)
    # Admissions debited by inventory_service.admit; only moved through admit/release.
    sold_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
