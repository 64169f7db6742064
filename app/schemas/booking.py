from pydantic import BaseModel, Field
from typing import Literal, Optional

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^\d{2}:\d{2}$"


class BundleIn(BaseModel):
    name: str
    discount: float = 0
    price: float = 0
    tickets: int = Field(0, ge=0)


class BookingCreate(BaseModel):
    """Online booking as posted by the checkout page. Amounts are computed client-side."""
    date: str = Field(pattern=DATE_PATTERN)
    startTime: str = Field(pattern=TIME_PATTERN)
    endTime: str = Field(pattern=TIME_PATTERN)
    tickets: int = Field(0, ge=0)
    selectedBundle: Optional[BundleIn] = None
    socksCount: int = Field(0, ge=0)
    cancellationEnabled: bool = False
    cancellationFee: float = Field(0, ge=0)
    administrationFee: float = Field(0, ge=0)
    amount: float = Field(ge=0)
    subtotal: float = 0
    couponCode: Optional[str] = None
    name: str = Field(min_length=1)
    surname: str = Field(min_length=1)
    email: str = Field(min_length=3)  # plain str, staff use .local addresses
    phone: str = ""
    postalCode: str = ""


class WalkinCreate(BaseModel):
    """Desk booking; priced server-side from the venue settings."""
    date: str = Field(pattern=DATE_PATTERN)
    startTime: str = Field(pattern=TIME_PATTERN)
    endTime: str = Field(pattern=TIME_PATTERN)
    tickets: int = Field(0, ge=0)
    selectedBundle: Optional[BundleIn] = None
    socksCount: int = Field(0, ge=0)
    paymentMethod: Literal["cash", "card"] = "cash"
    skipSlotCheck: bool = False
    name: str = Field(min_length=1)
    surname: str = ""
    email: str = ""
    phone: str = ""
    postalCode: str = ""


class TicketRef(BaseModel):
    ticketId: str


class SlotRef(BaseModel):
    date: str = Field(pattern=DATE_PATTERN)
    startTime: str = Field(pattern=TIME_PATTERN)
    endTime: str = Field(pattern=TIME_PATTERN)


class CancelRequestCreate(BaseModel):
    ticketId: str
    email: str
    reason: str = "No reason provided"
