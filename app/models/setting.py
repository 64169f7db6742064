from sqlalchemy import String, Float, Date, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import date, datetime, timezone
from app.db.session import Base

class Setting(Base):
    """Venue pricing; walk-in bookings are priced from the first row."""
    __tablename__ = "settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    location_name: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    address: Mapped[str] = mapped_column(String(255), default="")
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    ticket_price: Mapped[float] = mapped_column(Float)
    socks_price: Mapped[float] = mapped_column(Float)
    cancellation_fee: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
