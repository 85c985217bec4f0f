"""Payment ledger: recording and reversing payments against a share."""

import logging
from datetime import date, datetime, time
from typing import Optional

from sqlmodel import Session, select

from .currency import ZERO, to_money
from .metrics import sync_share
from .models import BillShare, Payment, User
from .schemas import PaymentCreate

logger = logging.getLogger(__name__)

DEFAULT_METHOD = "cash"


def paid_at(paid_on: Optional[date]) -> Optional[datetime]:
    if paid_on is None:
        return None
    return datetime.combine(paid_on, time.min)


def record_payment(session: Session, share: BillShare, payload: PaymentCreate, actor: User) -> Payment:
    payment = Payment(
        bill_share_id=share.id,
        recorded_by=actor.id,
        amount=to_money(payload.amount),
        paid_on=payload.paid_on,
        method=payload.method or DEFAULT_METHOD,
        reference=payload.reference,
        notes=payload.notes,
    )
    session.add(payment)

    share.amount_paid = to_money(share.amount_paid) + payment.amount
    share.last_paid_at = paid_at(payment.paid_on)
    sync_share(session, share)
    session.flush()
    logger.info(
        "payment of %s recorded on share %s by %s (paid now %s)",
        payment.amount,
        share.id,
        actor.username,
        share.amount_paid,
    )
    return payment


def latest_paid_on(session: Session, share: BillShare) -> Optional[date]:
    return session.exec(
        select(Payment.paid_on)
        .where(Payment.bill_share_id == share.id)
        .order_by(Payment.paid_on.desc(), Payment.id.desc())
    ).first()


def reverse_payment(session: Session, payment: Payment, actor: User) -> Optional[BillShare]:
    """Delete ``payment`` and take its amount back off the share."""
    share = session.get(BillShare, payment.bill_share_id)
    amount = to_money(payment.amount)
    session.delete(payment)
    session.flush()

    if share is None:
        return None
    share.amount_paid = max(to_money(share.amount_paid) - amount, ZERO)
    share.last_paid_at = paid_at(latest_paid_on(session, share))
    sync_share(session, share)
    logger.info(
        "payment of %s on share %s reversed by %s (paid now %s)",
        amount,
        share.id,
        actor.username,
        share.amount_paid,
    )
    return share
