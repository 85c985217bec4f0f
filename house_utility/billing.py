"""Bill creation and update.

Functions here stage changes on the given session and never commit, so a
route can wrap validation, writes and the metrics sync in one transaction.
"""

import logging
import re
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlmodel import Session, select

from .currency import ZERO, to_money
from .errors import ValidationFailed
from .metrics import bill_shares, compute_final_total, sync_bill
from .models import (
    Bill,
    BillingSetting,
    BillShare,
    BillStatus,
    User,
    new_bill_reference,
    utcnow,
)
from .schemas import END_UNIT_MESSAGE, BillCreate, BillUpdate
from .shares import prepare_shares

logger = logging.getLogger(__name__)

ELECTRICITY_KEY = "electricity"
ELECTRICITY_LABEL = "Electricity"

# meter readings are billed at a flat 10/2 per unit
METER_UNIT_NUMERATOR = Decimal(10)
METER_UNIT_DENOMINATOR = Decimal(2)

MONEY_FIELDS = {"electricity_rate", "electricity_bill", "total_due", "returned_amount", "final_total"}

UPDATABLE_FIELDS = (
    "for_month",
    "due_date",
    "period_start",
    "period_end",
    "status",
    "electricity_units",
    "electricity_start_unit",
    "electricity_end_unit",
    "electricity_rate",
    "electricity_bill",
    "total_due",
    "returned_amount",
    "final_total",
    "notes",
)


def headline(key: str) -> str:
    """``service_charge`` -> ``Service Charge``."""
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", key or "")
    words = [w for w in re.split(r"[\s_\-]+", spaced) if w]
    return " ".join(w[:1].upper() + w[1:] for w in words)


def electricity_from_meter(start_unit: int, end_unit: int) -> Tuple[int, Decimal]:
    units = max(0, end_unit - start_unit)
    amount = to_money(Decimal(units) * METER_UNIT_NUMERATOR / METER_UNIT_DENOMINATOR)
    return units, amount


def derive_electricity(
    start_unit: Optional[int],
    end_unit: Optional[int],
    units: Optional[int],
    rate: Any,
    supplied_bill: Any = None,
) -> Tuple[int, Decimal]:
    """Return ``(units, charge)`` for a bill.

    Meter readings win when both are present. Otherwise units x rate is used,
    unless the caller already supplied a charge.
    """
    if start_unit is not None and end_unit is not None:
        return electricity_from_meter(start_unit, end_unit)
    units = units or 0
    supplied = to_money(supplied_bill)
    if not supplied and units > 0 and to_money(rate) > 0:
        return units, to_money(Decimal(units) * to_money(rate))
    return units, supplied


def normalize_line_items(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    normalized = []
    for item in items:
        key = (item.get("key") or "").strip()
        amount = to_money(item.get("amount"))
        if not key or amount <= 0:
            continue
        normalized.append(
            {
                "key": key,
                "label": item.get("label") or headline(key),
                "amount": float(amount),
            }
        )
    return normalized


def line_items_from_settings(session: Session) -> List[Dict[str, Any]]:
    settings = session.exec(
        select(BillingSetting).where(BillingSetting.amount > 0).order_by(BillingSetting.id)
    ).all()
    return [
        {"key": s.key, "label": s.label, "amount": float(to_money(s.amount))}
        for s in settings
    ]


def line_items_total(items: Iterable[Dict[str, Any]]) -> Decimal:
    return sum((to_money(item.get("amount")) for item in items), ZERO)


def has_electricity_line(items: Iterable[Dict[str, Any]]) -> bool:
    return any(item.get("key") == ELECTRICITY_KEY for item in items)


def unique_bill_reference(session: Session) -> str:
    while True:
        reference = new_bill_reference()
        taken = session.exec(select(Bill.id).where(Bill.reference == reference)).first()
        if taken is None:
            return reference


def _line_item_dicts(payload_items) -> List[Dict[str, Any]]:
    return [item.model_dump() for item in payload_items or []]


def _add_shares(session: Session, bill: Bill, rows: List[Dict[str, Any]]) -> None:
    for row in rows:
        session.add(BillShare(bill_id=bill.id, **row))
    session.flush()


def create_bill(session: Session, payload: BillCreate, actor: User) -> Bill:
    items = normalize_line_items(_line_item_dicts(payload.line_items))
    if not items:
        items = line_items_from_settings(session)

    units, electricity_bill = derive_electricity(
        payload.electricity_start_unit,
        payload.electricity_end_unit,
        payload.electricity_units,
        payload.electricity_rate,
        payload.electricity_bill,
    )
    if electricity_bill > 0 and not has_electricity_line(items):
        items.append(
            {"key": ELECTRICITY_KEY, "label": ELECTRICITY_LABEL, "amount": float(electricity_bill)}
        )

    total_due = to_money(payload.total_due) if payload.total_due is not None else line_items_total(items)
    returned = to_money(payload.returned_amount)
    if payload.final_total is not None:
        final_total = to_money(payload.final_total)
    else:
        final_total = compute_final_total(total_due, returned)

    # absent or null shares fan out to every resident; [] means no shares
    rows = prepare_shares(session, final_total, payload.shares)

    status = payload.status.value if payload.status else BillStatus.issued.value
    bill = Bill(
        reference=unique_bill_reference(session),
        for_month=payload.for_month,
        due_date=payload.due_date,
        period_start=payload.period_start,
        period_end=payload.period_end,
        status=status,
        electricity_units=units,
        electricity_start_unit=payload.electricity_start_unit,
        electricity_end_unit=payload.electricity_end_unit,
        electricity_rate=to_money(payload.electricity_rate),
        electricity_bill=electricity_bill,
        line_items=items,
        total_due=total_due,
        returned_amount=returned,
        final_total=final_total,
        notes=payload.notes,
        created_by=actor.id,
        updated_by=actor.id,
    )
    session.add(bill)
    session.flush()

    _add_shares(session, bill, rows)
    sync_bill(session, bill)
    logger.info(
        "bill %s created by %s: final_total=%s shares=%d",
        bill.reference,
        actor.username,
        bill.final_total,
        len(rows),
    )
    return bill


def update_bill(session: Session, bill: Bill, payload: BillUpdate, actor: User) -> Bill:
    data = payload.model_dump(exclude_unset=True)
    changes: Dict[str, Any] = {
        k: data[k] for k in UPDATABLE_FIELDS if k in data and data[k] is not None
    }
    if "status" in changes:
        changes["status"] = payload.status.value

    # a single meter field is checked and billed against the stored other one
    start = changes.get("electricity_start_unit", bill.electricity_start_unit)
    end = changes.get("electricity_end_unit", bill.electricity_end_unit)
    meter_moved = "electricity_start_unit" in changes or "electricity_end_unit" in changes
    if meter_moved and start is not None and end is not None:
        if end < start:
            raise ValidationFailed(END_UNIT_MESSAGE, {"electricity_end_unit": [END_UNIT_MESSAGE]})
        units, amount = electricity_from_meter(start, end)
        changes["electricity_units"] = units
        changes["electricity_bill"] = amount
    elif "electricity_units" in changes or "electricity_rate" in changes:
        units = changes.get("electricity_units", bill.electricity_units) or 0
        rate = to_money(changes.get("electricity_rate", bill.electricity_rate))
        changes["electricity_bill"] = to_money(Decimal(units) * rate)

    if "line_items" in data:
        changes["line_items"] = normalize_line_items(_line_item_dicts(payload.line_items))
        if "total_due" not in changes:
            changes["total_due"] = line_items_total(changes["line_items"])

    # final_total stays put unless the caller moved total_due or returned_amount
    caller_moved_totals = "total_due" in data and data["total_due"] is not None
    caller_moved_totals = caller_moved_totals or (
        "returned_amount" in data and data["returned_amount"] is not None
    )
    if "final_total" not in changes and caller_moved_totals:
        changes["final_total"] = compute_final_total(
            changes.get("total_due", bill.total_due),
            changes.get("returned_amount", bill.returned_amount),
        )

    replace_shares = "shares" in data
    rows: List[Dict[str, Any]] = []
    if replace_shares:
        final_total = changes.get("final_total", bill.final_total)
        rows = prepare_shares(session, final_total, payload.shares or [])

    for field, value in changes.items():
        setattr(bill, field, to_money(value) if field in MONEY_FIELDS else value)
    if changes or replace_shares:
        bill.updated_by = actor.id
        bill.updated_at = utcnow()
    session.add(bill)
    session.flush()

    if replace_shares:
        for share in bill_shares(session, bill):
            session.delete(share)
        # deletes must hit the table before re-inserting the same (bill, user)
        session.flush()
        _add_shares(session, bill, rows)

    sync_bill(session, bill)
    logger.info(
        "bill %s updated by %s: fields=%s shares_replaced=%s",
        bill.reference,
        actor.username,
        sorted(changes),
        replace_shares,
    )
    return bill


def soft_delete_bill(session: Session, bill: Bill, actor: User) -> Bill:
    bill.deleted_at = utcnow()
    bill.updated_by = actor.id
    session.add(bill)
    logger.info("bill %s deleted by %s", bill.reference, actor.username)
    return bill
