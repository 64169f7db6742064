from sqlalchemy import String, Integer, Float
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base


class TicketBundle(Base):
    __tablename__ = "ticket_bundles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    discount_percent: Mapped[float] = mapped_column(Float)
    price: Mapped[float] = mapped_column(Float)
    description: Mapped[str] = mapped_column(String(500))
    tickets: Mapped[int] = mapped_column(Integer)  # admissions included
