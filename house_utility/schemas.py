from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .models import MONTHS, BillStatus, Role

END_UNIT_MESSAGE = "End unit must be greater than or equal to start unit."
PERIOD_END_MESSAGE = "Period end must be on or after period start."


class LineItemIn(BaseModel):
    # blank keys and non-positive amounts are dropped, not rejected
    key: Optional[str] = ""
    label: Optional[str] = None
    amount: Decimal = Decimal("0")


class ShareIn(BaseModel):
    user_id: int
    amount_due: Decimal = Field(..., ge=0)
    amount_paid: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class BillBase(BaseModel):
    due_date: Optional[date] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    status: Optional[BillStatus] = None
    electricity_units: Optional[int] = Field(None, ge=0)
    electricity_start_unit: Optional[int] = Field(None, ge=0)
    electricity_end_unit: Optional[int] = Field(None, ge=0)
    electricity_rate: Optional[Decimal] = Field(None, ge=0)
    electricity_bill: Optional[Decimal] = Field(None, ge=0)
    line_items: Optional[List[LineItemIn]] = None
    total_due: Optional[Decimal] = Field(None, ge=0)
    returned_amount: Optional[Decimal] = Field(None, ge=0)
    final_total: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None
    shares: Optional[List[ShareIn]] = None

    @field_validator("period_end")
    @classmethod
    def _period_order(cls, value, info):
        start = info.data.get("period_start")
        if value is not None and start is not None and value < start:
            raise ValueError(PERIOD_END_MESSAGE)
        return value

    @field_validator("electricity_end_unit")
    @classmethod
    def _unit_order(cls, value, info):
        start = info.data.get("electricity_start_unit")
        if value is not None and start is not None and value < start:
            raise ValueError(END_UNIT_MESSAGE)
        return value


class BillCreate(BillBase):
    for_month: str = Field(..., min_length=1, max_length=100)


class BillUpdate(BillBase):
    for_month: Optional[str] = Field(None, min_length=1, max_length=100)


class BillShareCreate(BaseModel):
    bill_id: int
    user_id: int
    amount_due: Decimal = Field(..., ge=0)
    amount_paid: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class BillShareUpdate(BaseModel):
    amount_due: Optional[Decimal] = Field(None, ge=0)
    amount_paid: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class PaymentCreate(BaseModel):
    bill_share_id: int
    amount: Decimal = Field(..., gt=0, description="Payment amount")
    paid_on: date
    method: Optional[str] = Field(None, max_length=100, description="Payment method")
    reference: Optional[str] = Field(None, max_length=100, description="External reference")
    notes: Optional[str] = None


class SettingIn(BaseModel):
    key: str = Field(..., min_length=1, max_length=64)
    amount: Decimal = Field(..., ge=0)
    metadata: Optional[Dict[str, Any]] = None


class BillingSettingsUpdate(BaseModel):
    settings: List[SettingIn]


def _check_month(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in MONTHS:
        raise ValueError("Month must be a full English month name, e.g. January.")
    return value


class ReadingCreate(BaseModel):
    month: str
    year: int = Field(..., ge=2000)
    start_unit: int = Field(..., ge=0)
    end_unit: Optional[int] = Field(None, ge=0)

    @field_validator("month")
    @classmethod
    def _known_month(cls, value):
        return _check_month(value)

    @field_validator("end_unit")
    @classmethod
    def _unit_order(cls, value, info):
        start = info.data.get("start_unit")
        if value is not None and start is not None and value < start:
            raise ValueError(END_UNIT_MESSAGE)
        return value


class ReadingUpdate(BaseModel):
    month: Optional[str] = None
    year: Optional[int] = Field(None, ge=2000)
    start_unit: Optional[int] = Field(None, ge=0)
    end_unit: Optional[int] = Field(None, ge=0)

    @field_validator("month")
    @classmethod
    def _known_month(cls, value):
        return _check_month(value)


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=128)
    name: Optional[str] = None
    password: str = Field(..., min_length=6)
    role: Role = Role.resident
    telegram_chat_id: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)
    role: Optional[Role] = None
    telegram_chat_id: Optional[str] = None
    is_active: Optional[bool] = None


class ChatIdIn(BaseModel):
    telegram_chat_id: Optional[str] = Field(None, max_length=64)


class PingMessageIn(BaseModel):
    chat_id: Optional[str] = None
    message: Optional[str] = Field(None, max_length=1000)
