"""Reconciliation of bill and share totals/statuses from the payment ledger.

``sync_share`` and ``sync_bill`` are run after every write that touches
amounts. They only add to the session; the caller owns the transaction.
Running either twice in a row leaves the stored state unchanged.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlmodel import Session, select

from .currency import ZERO, to_money
from .models import Bill, BillShare, BillShareStatus, BillStatus

logger = logging.getLogger(__name__)

# statuses that only ever come from the ledger; anything else was set by a person
DERIVED_BILL_STATUSES = {BillStatus.paid.value, BillStatus.partial.value}


def derive_share_status(amount_paid, amount_due) -> str:
    paid = to_money(amount_paid)
    due = to_money(amount_due)
    if due > 0 and paid >= due:
        return BillShareStatus.paid.value
    if paid > 0:
        return BillShareStatus.partial.value
    return BillShareStatus.pending.value


def derive_bill_status(final_total, total_paid, prior: Optional[str] = None) -> str:
    """Bill status from what has been paid against ``final_total``.

    With nothing paid, a manually set status (draft, issued, overdue) is kept;
    a stale paid/partial falls back to issued.
    """
    final = to_money(final_total)
    paid = to_money(total_paid)
    if final > 0 and paid >= final:
        return BillStatus.paid.value
    if paid > 0:
        return BillStatus.partial.value
    if prior and prior not in DERIVED_BILL_STATUSES:
        return prior
    return BillStatus.issued.value


def compute_final_total(total_due, returned_amount) -> Decimal:
    return max(to_money(total_due) - to_money(returned_amount), ZERO)


def bill_shares(session: Session, bill: Bill):
    return session.exec(
        select(BillShare).where(BillShare.bill_id == bill.id).order_by(BillShare.id)
    ).all()


def sync_bill(session: Session, bill: Bill) -> Bill:
    shares = bill_shares(session, bill)
    total_due_from_shares = sum((to_money(s.amount_due) for s in shares), ZERO)
    total_paid = sum((to_money(s.amount_paid) for s in shares), ZERO)

    if total_due_from_shares > 0:
        bill.total_due = total_due_from_shares

    # final_total is only derived while unset
    if not to_money(bill.final_total):
        bill.final_total = compute_final_total(bill.total_due, bill.returned_amount)

    bill.status = derive_bill_status(bill.final_total, total_paid, bill.status)
    session.add(bill)

    for share in shares:
        share.status = derive_share_status(share.amount_paid, share.amount_due)
        session.add(share)

    logger.debug(
        "synced bill %s: total_due=%s final_total=%s paid=%s status=%s",
        bill.reference,
        bill.total_due,
        bill.final_total,
        total_paid,
        bill.status,
    )
    return bill


def sync_share(session: Session, share: BillShare) -> BillShare:
    share.status = derive_share_status(share.amount_paid, share.amount_due)
    session.add(share)
    session.flush()

    bill = session.get(Bill, share.bill_id)
    if bill is not None:
        sync_bill(session, bill)
    return share
