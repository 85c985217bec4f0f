"""Resident shares of a bill."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlmodel import Session, select

from .currency import ZERO, to_money
from .errors import ValidationFailed, residents_only_error
from .metrics import sync_bill, sync_share
from .models import Bill, BillShare, Role, User, utcnow
from .schemas import ShareIn

logger = logging.getLogger(__name__)


def residents(session: Session) -> List[User]:
    return session.exec(
        select(User).where(User.role == Role.resident.value).order_by(User.id)
    ).all()


def ensure_residents(session: Session, user_ids: Sequence[int], field: str = "shares") -> None:
    """Raise unless every id belongs to an existing resident."""
    wanted = set(user_ids)
    if not wanted:
        return
    users = session.exec(select(User).where(User.id.in_(wanted))).all()
    missing = wanted - {u.id for u in users}
    if missing:
        message = f"Unknown user id(s): {', '.join(str(i) for i in sorted(missing))}."
        raise ValidationFailed(message, {field: [message]})
    if any(u.role != Role.resident.value for u in users):
        raise residents_only_error(field)


def prepare_shares(
    session: Session, final_total, shares: Optional[List[ShareIn]]
) -> List[Dict[str, Any]]:
    """Turn requested shares into rows ready for ``BillShare(**row)``.

    ``None`` splits ``final_total`` evenly across all residents. A list is
    used as given after checking every user is a resident.
    """
    if shares is None:
        people = residents(session)
        final = to_money(final_total)
        per_person = to_money(final / len(people)) if people and final > 0 else ZERO
        return [
            {"user_id": u.id, "amount_due": per_person, "amount_paid": ZERO}
            for u in people
        ]

    user_ids = [s.user_id for s in shares]
    if len(set(user_ids)) != len(user_ids):
        message = "Each resident may only appear once per bill."
        raise ValidationFailed(message, {"shares": [message]})
    ensure_residents(session, user_ids)
    return [
        {
            "user_id": s.user_id,
            "amount_due": to_money(s.amount_due),
            "amount_paid": to_money(s.amount_paid),
            "notes": s.notes,
        }
        for s in shares
    ]


def upsert_share(
    session: Session,
    bill: Bill,
    user_id: int,
    amount_due,
    amount_paid=None,
    notes: Optional[str] = None,
) -> BillShare:
    """Create or overwrite the share of ``user_id`` on ``bill``."""
    ensure_residents(session, [user_id], field="user_id")
    share = session.exec(
        select(BillShare).where(BillShare.bill_id == bill.id, BillShare.user_id == user_id)
    ).first()
    if share is None:
        share = BillShare(bill_id=bill.id, user_id=user_id)
    share.amount_due = to_money(amount_due)
    share.amount_paid = to_money(amount_paid)
    share.notes = notes
    share.updated_at = utcnow()
    session.add(share)
    session.flush()

    sync_bill(session, bill)
    logger.info("share of user %s on bill %s set to %s", user_id, bill.reference, share.amount_due)
    return share


def update_share(session: Session, share: BillShare, changes: Dict[str, Any]) -> BillShare:
    for field in ("amount_due", "amount_paid"):
        if changes.get(field) is not None:
            setattr(share, field, to_money(changes[field]))
    if "notes" in changes:
        share.notes = changes["notes"]
    share.updated_at = utcnow()
    sync_share(session, share)
    logger.info("share %s updated: due=%s paid=%s", share.id, share.amount_due, share.amount_paid)
    return share


def delete_share(session: Session, share: BillShare) -> Optional[Bill]:
    bill = session.get(Bill, share.bill_id)
    session.delete(share)
    session.flush()
    if bill is not None:
        sync_bill(session, bill)
    logger.info("share %s deleted", share.id)
    return bill


def share_totals(shares: Sequence[BillShare]) -> Dict[str, Decimal]:
    due = sum((to_money(s.amount_due) for s in shares), ZERO)
    paid = sum((to_money(s.amount_paid) for s in shares), ZERO)
    return {"total_due": due, "total_paid": paid, "total_outstanding": max(due - paid, ZERO)}
