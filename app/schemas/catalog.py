from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from app.schemas.booking import DATE_PATTERN, TIME_PATTERN


class TimeSlotIn(BaseModel):
    date: str = Field(pattern=DATE_PATTERN)
    startTime: str = Field(pattern=TIME_PATTERN)
    endTime: str = Field(pattern=TIME_PATTERN)
    maxTickets: int = Field(ge=0)


class TimeSlotUpdate(BaseModel):
    startTime: Optional[str] = Field(None, pattern=TIME_PATTERN)
    endTime: Optional[str] = Field(None, pattern=TIME_PATTERN)
    maxTickets: Optional[int] = Field(None, ge=0)


class SlotTemplate(BaseModel):
    startTime: str = Field(pattern=TIME_PATTERN)
    endTime: str = Field(pattern=TIME_PATTERN)
    maxTickets: int = Field(ge=0)


class BulkSlotsIn(BaseModel):
    """Generate slots for every day in [startDate, endDate]; weekdays and weekends get their own templates."""
    startDate: date
    endDate: date
    weekday: List[SlotTemplate] = []
    weekend: List[SlotTemplate] = []

    @model_validator(mode="after")
    def _range(self):
        if self.endDate < self.startDate:
            raise ValueError("endDate must be on or after startDate")
        return self


class BundleCreate(BaseModel):
    name: str = Field(min_length=1)
    discountPercent: float = Field(ge=0, le=100)
    price: float = Field(ge=0)
    description: str = ""
    tickets: int = Field(ge=1)


class BundleUpdate(BaseModel):
    name: Optional[str] = None
    discountPercent: Optional[float] = Field(None, ge=0, le=100)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    tickets: Optional[int] = Field(None, ge=1)


class SettingIn(BaseModel):
    locationName: str = Field(min_length=1)
    address: str = ""
    startDate: date
    endDate: date
    ticketPrice: float = Field(ge=0)
    socksPrice: float = Field(ge=0)
    cancellationFee: float = Field(ge=0)
