from sqlalchemy import String, Integer, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base


class PendingBooking(Base):
    """Booking payload parked until Stripe confirms the session (deferred checkout)."""
    __tablename__ = "pending_bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    time_slot_id: Mapped[str] = mapped_column(String(36), index=True)
    admissions: Mapped[int] = mapped_column(Integer, default=0)  # already debited from the slot
    booking_info: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
