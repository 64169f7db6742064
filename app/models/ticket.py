from sqlalchemy import String, Integer, Float, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base


class Ticket(Base):
    """One booking attempt. A ticket may admit several people (tickets + bundle tickets)."""
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    ticket_id: Mapped[str] = mapped_column(String(20), unique=True, index=True)  # MJX-XXXXXXXX, never changes

    # Slot key
    time_slot_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    date: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD
    start_time: Mapped[str] = mapped_column(String(5))         # HH:MM
    end_time: Mapped[str] = mapped_column(String(5))           # HH:MM

    tickets: Mapped[int] = mapped_column(Integer, default=0)
    bundle_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    bundle_discount: Mapped[float] = mapped_column(Float, default=0)
    bundle_price: Mapped[float] = mapped_column(Float, default=0)
    bundle_tickets: Mapped[int] = mapped_column(Integer, default=0)

    socks_count: Mapped[int] = mapped_column(Integer, default=0)
    cancellation_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    cancellation_fee: Mapped[float] = mapped_column(Float, default=0)
    administration_fee: Mapped[float] = mapped_column(Float, default=0)
    amount: Mapped[float] = mapped_column(Float, default=0)
    subtotal: Mapped[float] = mapped_column(Float, default=0)
    coupon_code: Mapped[str | None] = mapped_column(String(40), nullable=True)

    name: Mapped[str] = mapped_column(String(100), default="")
    surname: Mapped[str] = mapped_column(String(100), default="")
    email: Mapped[str] = mapped_column(String(320), index=True, default="")
    phone: Mapped[str] = mapped_column(String(40), default="")
    postal_code: Mapped[str] = mapped_column(String(20), default="")

    source: Mapped[str] = mapped_column(String(12), default="online")        # online|walkin|manual
    payment_method: Mapped[str] = mapped_column(String(8), default="card")   # card|cash
    payment_status: Mapped[str] = mapped_column(String(12), default="pending")  # pending|processing|paid

    # Gateway correlation keys; card tickets only
    stripe_session_id: Mapped[str | None] = mapped_column(String(255), unique=True, index=True, nullable=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)

    cancel_ticket: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    refund_status: Mapped[str] = mapped_column(String(12), default="none")  # none|requested|refunded
    refunded_amount: Mapped[float] = mapped_column(Float, default=0)
    refund_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refund_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # set while a confirmation send is in flight, kept once it succeeds
    email_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True, default=lambda: datetime.now(timezone.utc))

    @property
    def admissions(self) -> int:
        return int(self.tickets or 0) + int(self.bundle_tickets or 0)

    @property
    def full_name(self) -> str:
        return f"{(self.name or '').strip()} {(self.surname or '').strip()}".strip()
