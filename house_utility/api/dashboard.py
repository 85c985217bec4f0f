from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from ..auth import get_current_user
from ..currency import currency_config, default_currency
from ..db import engine
from ..models import Bill, BillingSetting, BillShare, User
from ..policy import can
from ..resources import load_bill
from ..shares import share_totals

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

LATEST_BILLS = 5


@router.get("")
def dashboard(current_user: User = Depends(get_current_user)):
    admin = can(current_user, "view_all_records")
    with Session(engine) as session:
        share_stmt = (
            select(BillShare)
            .join(Bill, Bill.id == BillShare.bill_id)
            .where(Bill.deleted_at.is_(None))
        )
        bill_stmt = select(Bill).where(Bill.deleted_at.is_(None))
        if not admin:
            share_stmt = share_stmt.where(BillShare.user_id == current_user.id)
            mine = select(BillShare.bill_id).where(BillShare.user_id == current_user.id)
            bill_stmt = bill_stmt.where(Bill.id.in_(mine))

        totals = share_totals(session.exec(share_stmt).all())
        latest = session.exec(
            bill_stmt.order_by(Bill.created_at.desc(), Bill.id.desc()).limit(LATEST_BILLS)
        ).all()
        only_user_id = None if admin else current_user.id
        settings = session.exec(select(BillingSetting).order_by(BillingSetting.key)).all()

        return {
            "totals": {k: float(v) for k, v in totals.items()},
            "latest_bills": [load_bill(session, b, only_user_id) for b in latest],
            "settings": {
                s.key: {"label": s.label, "amount": float(s.amount)} for s in settings
            },
            "currency": currency_config(default_currency()),
        }
