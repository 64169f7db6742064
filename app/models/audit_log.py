from sqlalchemy import String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    actor: Mapped[str] = mapped_column(String(320), index=True)  # staff email, "stripe", "payment-sync", "public"
    action: Mapped[str] = mapped_column(String(80), index=True)  # e.g. ticket_paid, ticket_refunded
    entity_type: Mapped[str] = mapped_column(String(40))         # ticket, time_slot, voucher
    entity_id: Mapped[str] = mapped_column(String(64), index=True)
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
