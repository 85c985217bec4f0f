from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy import func
from sqlmodel import Session, select

from ..auth import get_current_user
from ..db import engine
from ..errors import NotFound
from ..models import Bill, BillShare, Payment, User
from ..notifications import NotificationService, get_notifier
from ..payments import record_payment, reverse_payment
from ..policy import can, enforce, require_action
from ..resources import paginated, payment_resource
from ..schemas import PaymentCreate
from .shares import get_share_or_404

router = APIRouter(prefix="/api/payments", tags=["payments"])


def _render(session: Session, payment: Payment):
    share = session.get(BillShare, payment.bill_share_id)
    bill = session.get(Bill, share.bill_id) if share else None
    return payment_resource(payment, share, bill)


@router.get("")
def list_payments(
    bill_share_id: Optional[int] = None,
    paginate: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100),
    current_user: User = Depends(get_current_user),
):
    with Session(engine) as session:
        stmt = (
            select(Payment)
            .join(BillShare, BillShare.id == Payment.bill_share_id)
            .join(Bill, Bill.id == BillShare.bill_id)
            .where(Bill.deleted_at.is_(None))
        )
        if bill_share_id is not None:
            stmt = stmt.where(Payment.bill_share_id == bill_share_id)
        if not can(current_user, "view_all_records"):
            stmt = stmt.where(BillShare.user_id == current_user.id)
        stmt = stmt.order_by(Payment.paid_on.desc(), Payment.id.desc())

        if not paginate:
            return [_render(session, p) for p in session.exec(stmt).all()]
        total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
        payments = session.exec(stmt.offset((page - 1) * per_page).limit(per_page)).all()
        return paginated([_render(session, p) for p in payments], page, per_page, total)


@router.post("", status_code=201)
def store_payment(
    payload: PaymentCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    notifier: Optional[NotificationService] = Depends(get_notifier),
):
    with Session(engine) as session:
        share = get_share_or_404(session, payload.bill_share_id)
        enforce(current_user, "create_payment", [share.user_id])
        payment = record_payment(session, share, payload, current_user)
        session.commit()
        session.refresh(payment)
        out = _render(session, payment)

    if notifier is not None:
        background_tasks.add_task(notifier.notify_payment_recorded, payment.id)
    return out


@router.delete("/{payment_id}")
def destroy_payment(payment_id: int, current_user: User = Depends(require_action("delete_payment"))):
    with Session(engine) as session:
        payment = session.get(Payment, payment_id)
        if not payment:
            raise NotFound("Payment not found")
        # payments of a deleted bill are gone with it
        get_share_or_404(session, payment.bill_share_id)
        reverse_payment(session, payment, current_user)
        session.commit()
    return {"message": "Payment removed."}
