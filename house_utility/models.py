import secrets
import string
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, Numeric, String, Text, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from .currency import ZERO, to_money


def MoneyColumn(precision: int = 12, scale: int = 2):
    return Column(Numeric(precision, scale), nullable=False)


def utcnow() -> datetime:
    # naive UTC, matching what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


MONTHS = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]


class Role(str, Enum):
    super_admin = "super_admin"
    admin = "admin"
    resident = "resident"


ROLE_LABELS = {
    Role.super_admin: "Super Admin",
    Role.admin: "Admin",
    Role.resident: "Resident",
}

ADMIN_ROLES = (Role.super_admin, Role.admin)


def role_from_string(value: Optional[str]) -> Role:
    """Unknown or missing roles are treated as residents."""
    try:
        return Role(value)
    except ValueError:
        return Role.resident


def role_label(value: Optional[str]) -> str:
    return ROLE_LABELS[role_from_string(value)]


class BillStatus(str, Enum):
    draft = "draft"
    issued = "issued"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"


def bill_status_is_closed(status: Optional[str]) -> bool:
    return status == BillStatus.paid.value


class BillShareStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"


REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def new_bill_reference() -> str:
    return "BILL-" + "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(8))


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(sa_column=Column(String(128), unique=True, nullable=False))
    name: str = Field(default="")
    password_hash: str
    role: str = Field(default=Role.resident.value, index=True)  # super_admin admin resident
    telegram_chat_id: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True)
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


def is_admin(user: Optional[User]) -> bool:
    return user is not None and role_from_string(user.role) in ADMIN_ROLES


def is_super_admin(user: Optional[User]) -> bool:
    return user is not None and role_from_string(user.role) == Role.super_admin


def is_resident(user: Optional[User]) -> bool:
    return user is not None and user.role == Role.resident.value


class BillingSetting(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(sa_column=Column(String(64), unique=True, nullable=False))
    label: str
    amount: Decimal = Field(default=ZERO, sa_column=MoneyColumn())
    # "metadata" is reserved on declarative classes
    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ElectricityReading(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("month", "year", name="uq_electricity_reading_month_year"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    month: str = Field(max_length=16)
    year: int
    start_unit: int = Field(default=0)
    end_unit: Optional[int] = None
    recorded_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Bill(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    reference: str = Field(sa_column=Column(String(32), unique=True, nullable=False))
    for_month: str = Field(sa_column=Column(String(100), nullable=False))
    due_date: Optional[date] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    status: str = Field(default=BillStatus.draft.value, index=True)
    electricity_units: int = Field(default=0)
    electricity_start_unit: Optional[int] = None
    electricity_end_unit: Optional[int] = None
    electricity_rate: Decimal = Field(default=ZERO, sa_column=MoneyColumn(10, 2))
    electricity_bill: Decimal = Field(default=ZERO, sa_column=MoneyColumn())
    line_items: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    total_due: Decimal = Field(default=ZERO, sa_column=MoneyColumn())
    returned_amount: Decimal = Field(default=ZERO, sa_column=MoneyColumn())
    final_total: Decimal = Field(default=ZERO, sa_column=MoneyColumn())
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_by: Optional[int] = Field(default=None, foreign_key="user.id")
    updated_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    # soft delete tombstone
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    shares: List["BillShare"] = Relationship(
        back_populates="bill", sa_relationship_kwargs={"cascade": "all, delete"}
    )


class BillShare(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("bill_id", "user_id", name="uq_billshare_bill_user"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    bill_id: int = Field(foreign_key="bill.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    status: str = Field(default=BillShareStatus.pending.value)
    amount_due: Decimal = Field(default=ZERO, sa_column=MoneyColumn())
    amount_paid: Decimal = Field(default=ZERO, sa_column=MoneyColumn())
    last_paid_at: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    bill: Optional[Bill] = Relationship(back_populates="shares")
    user: Optional[User] = Relationship()
    payments: List["Payment"] = Relationship(
        back_populates="share", sa_relationship_kwargs={"cascade": "all, delete"}
    )

    @property
    def outstanding(self) -> Decimal:
        return max(to_money(self.amount_due) - to_money(self.amount_paid), ZERO)


class Payment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    bill_share_id: int = Field(foreign_key="billshare.id", index=True)
    recorded_by: Optional[int] = Field(default=None, foreign_key="user.id")
    amount: Decimal = Field(sa_column=MoneyColumn())
    paid_on: date
    method: str = Field(default="cash", max_length=100)
    reference: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow)

    share: Optional[BillShare] = Relationship(back_populates="payments")
