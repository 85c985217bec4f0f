"""JSON shapes returned by the API.

Money goes out as floats, dates as ISO strings. Status fields are always
whatever the metrics sync stored.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import Session, select

from .currency import to_money
from .models import (
    Bill,
    BillingSetting,
    BillShare,
    ElectricityReading,
    Payment,
    User,
    role_label,
)
from .policy import can


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _money(value) -> float:
    return float(to_money(value))


def user_resource(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "name": user.name,
        "role": user.role,
        "role_label": role_label(user.role),
        "telegram_chat_id": user.telegram_chat_id,
        "is_active": user.is_active,
        "last_login_at": _iso(user.last_login_at),
        "created_at": _iso(user.created_at),
        "abilities": {
            "manage_bills": can(user, "manage_bills"),
            "manage_settings": can(user, "manage_settings"),
            "view_all_records": can(user, "view_all_records"),
        },
    }


def _person(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name or user.username, "role": user.role}


def payment_resource(payment: Payment, share: Optional[BillShare] = None, bill: Optional[Bill] = None) -> Dict[str, Any]:
    out = {
        "id": payment.id,
        "bill_share_id": payment.bill_share_id,
        "amount": _money(payment.amount),
        "paid_on": _iso(payment.paid_on),
        "method": payment.method,
        "reference": payment.reference,
        "notes": payment.notes,
        "recorded_by": payment.recorded_by,
        "created_at": _iso(payment.created_at),
    }
    if share is not None:
        out["bill_share"] = {
            "id": share.id,
            "user_id": share.user_id,
            "bill_id": share.bill_id,
            "bill": {"id": bill.id, "reference": bill.reference, "for_month": bill.for_month}
            if bill is not None
            else None,
        }
    return out


def share_resource(
    share: BillShare,
    user: Optional[User] = None,
    payments: Iterable[Payment] = (),
    bill: Optional[Bill] = None,
) -> Dict[str, Any]:
    out = {
        "id": share.id,
        "bill_id": share.bill_id,
        "user_id": share.user_id,
        "user": _person(user),
        "status": share.status,
        "amount_due": _money(share.amount_due),
        "amount_paid": _money(share.amount_paid),
        "outstanding": _money(share.outstanding),
        "last_paid_at": _iso(share.last_paid_at),
        "notes": share.notes,
        "payments": [payment_resource(p) for p in payments],
    }
    if bill is not None:
        out["bill"] = {
            "id": bill.id,
            "reference": bill.reference,
            "for_month": bill.for_month,
            "due_date": _iso(bill.due_date),
            "status": bill.status,
        }
    return out


def load_share(session: Session, share: BillShare, with_bill: bool = False) -> Dict[str, Any]:
    payments = session.exec(
        select(Payment)
        .where(Payment.bill_share_id == share.id)
        .order_by(Payment.paid_on.desc(), Payment.id.desc())
    ).all()
    bill = session.get(Bill, share.bill_id) if with_bill else None
    return share_resource(share, session.get(User, share.user_id), payments, bill)


def bill_resource(bill: Bill, shares: List[Dict[str, Any]], creator: Optional[User] = None) -> Dict[str, Any]:
    return {
        "id": bill.id,
        "reference": bill.reference,
        "for_month": bill.for_month,
        "status": bill.status,
        "due_date": _iso(bill.due_date),
        "period_start": _iso(bill.period_start),
        "period_end": _iso(bill.period_end),
        "electricity_units": bill.electricity_units,
        "electricity_start_unit": bill.electricity_start_unit,
        "electricity_end_unit": bill.electricity_end_unit,
        "electricity_rate": _money(bill.electricity_rate),
        "electricity_bill": _money(bill.electricity_bill),
        "line_items": bill.line_items or [],
        "total_due": _money(bill.total_due),
        "returned_amount": _money(bill.returned_amount),
        "final_total": _money(bill.final_total),
        "notes": bill.notes,
        "created_by": _person(creator),
        "shares": shares,
        "created_at": _iso(bill.created_at),
        "updated_at": _iso(bill.updated_at),
    }


def load_bill(session: Session, bill: Bill, only_user_id: Optional[int] = None) -> Dict[str, Any]:
    """Render a bill; ``only_user_id`` limits shares to that resident's own."""
    stmt = select(BillShare).where(BillShare.bill_id == bill.id)
    if only_user_id is not None:
        stmt = stmt.where(BillShare.user_id == only_user_id)
    shares = session.exec(stmt.order_by(BillShare.id)).all()
    creator = session.get(User, bill.created_by) if bill.created_by else None
    return bill_resource(bill, [load_share(session, s) for s in shares], creator)


def setting_resource(setting: BillingSetting) -> Dict[str, Any]:
    return {
        "id": setting.id,
        "key": setting.key,
        "label": setting.label,
        "amount": _money(setting.amount),
        "metadata": setting.meta or {},
        "updated_at": _iso(setting.updated_at),
    }


def reading_resource(reading: ElectricityReading, recorder: Optional[User] = None) -> Dict[str, Any]:
    return {
        "id": reading.id,
        "month": reading.month,
        "year": reading.year,
        "start_unit": reading.start_unit,
        "end_unit": reading.end_unit,
        "units_used": reading.end_unit - reading.start_unit if reading.end_unit is not None else None,
        "recorded_by": _person(recorder),
        "created_at": _iso(reading.created_at),
        "updated_at": _iso(reading.updated_at),
    }


def paginated(items: List[Any], page: int, per_page: int, total: int) -> Dict[str, Any]:
    last_page = max((total + per_page - 1) // per_page, 1)
    return {
        "data": items,
        "meta": {"current_page": page, "per_page": per_page, "total": total, "last_page": last_page},
    }
