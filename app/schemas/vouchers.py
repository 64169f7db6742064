from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class VoucherCreate(BaseModel):
    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    discountType: Literal["percentage", "fixed"]
    discountValue: float
    minimumAmount: float = Field(0, ge=0)
    maximumDiscount: Optional[float] = Field(None, ge=0)
    usageLimit: int = Field(-1, ge=-1)
    validFrom: datetime
    validUntil: datetime
    isActive: bool = True
    applicableFor: Literal["all", "tickets", "bundles", "socks"] = "all"


class VoucherUpdate(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    discountType: Optional[Literal["percentage", "fixed"]] = None
    discountValue: Optional[float] = None
    minimumAmount: Optional[float] = Field(None, ge=0)
    maximumDiscount: Optional[float] = Field(None, ge=0)
    usageLimit: Optional[int] = Field(None, ge=-1)
    validFrom: Optional[datetime] = None
    validUntil: Optional[datetime] = None
    isActive: Optional[bool] = None
    applicableFor: Optional[Literal["all", "tickets", "bundles", "socks"]] = None


class VoucherValidate(BaseModel):
    code: str = Field(min_length=1)
    amount: float = Field(ge=0)


class VoucherUsage(BaseModel):
    voucherId: str
