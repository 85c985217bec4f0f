from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy import func
from sqlmodel import Session, select

from ..auth import get_current_user
from ..billing import create_bill, soft_delete_bill, update_bill
from ..db import engine
from ..errors import NotFound
from ..models import MONTHS, Bill, BillShare, User
from ..notifications import NotificationService, get_notifier
from ..policy import can, enforce, require_action
from ..resources import load_bill, paginated
from ..schemas import BillCreate, BillUpdate

router = APIRouter(prefix="/api/bills", tags=["bills"])


def owned_bill_ids(user: User):
    return select(BillShare.bill_id).where(BillShare.user_id == user.id)


def get_bill_or_404(session: Session, bill_id: int) -> Bill:
    bill = session.get(Bill, bill_id)
    if not bill or bill.deleted_at is not None:
        raise NotFound("Bill not found")
    return bill


def bill_owner_ids(session: Session, bill: Bill):
    return session.exec(select(BillShare.user_id).where(BillShare.bill_id == bill.id)).all()


@router.get("")
def list_bills(
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100),
    status: Optional[str] = None,
    for_month: Optional[str] = None,
    current_user: User = Depends(get_current_user),
):
    admin = can(current_user, "view_all_records")
    with Session(engine) as session:
        stmt = select(Bill).where(Bill.deleted_at.is_(None))
        if admin:
            if status:
                stmt = stmt.where(Bill.status == status)
            if for_month:
                stmt = stmt.where(Bill.for_month.contains(for_month))
        else:
            stmt = stmt.where(Bill.id.in_(owned_bill_ids(current_user)))

        total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
        bills = session.exec(
            stmt.order_by(Bill.created_at.desc(), Bill.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).all()
        only_user_id = None if admin else current_user.id
        items = [load_bill(session, b, only_user_id) for b in bills]
        return paginated(items, page, per_page, total)


@router.get("/month-year-options")
def month_year_options(current_user: User = Depends(get_current_user)):
    current_year = date.today().year
    with Session(engine) as session:
        created = session.exec(select(Bill.created_at).where(Bill.created_at.is_not(None))).all()
    years = set(range(current_year - 2, current_year + 3)) | {c.year for c in created}
    return {
        "months": [{"value": m, "label": m} for m in MONTHS],
        "years": [{"value": y, "label": str(y)} for y in sorted(years, reverse=True)],
    }


@router.get("/{bill_id}")
def show_bill(bill_id: int, current_user: User = Depends(get_current_user)):
    with Session(engine) as session:
        bill = get_bill_or_404(session, bill_id)
        enforce(current_user, "view_bill", bill_owner_ids(session, bill))
        only_user_id = None if can(current_user, "view_all_records") else current_user.id
        return load_bill(session, bill, only_user_id)


@router.post("", status_code=201)
def store_bill(
    payload: BillCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_action("manage_bills")),
    notifier: Optional[NotificationService] = Depends(get_notifier),
):
    with Session(engine) as session:
        bill = create_bill(session, payload, current_user)
        session.commit()
        session.refresh(bill)
        out = load_bill(session, bill)

    if notifier is not None:
        background_tasks.add_task(notifier.notify_bill_created, bill.id)
    return out


@router.api_route("/{bill_id}", methods=["PUT", "PATCH"])
def edit_bill(
    bill_id: int,
    payload: BillUpdate,
    current_user: User = Depends(require_action("manage_bills")),
):
    with Session(engine) as session:
        bill = get_bill_or_404(session, bill_id)
        update_bill(session, bill, payload, current_user)
        session.commit()
        session.refresh(bill)
        return load_bill(session, bill)


@router.delete("/{bill_id}")
def destroy_bill(bill_id: int, current_user: User = Depends(require_action("manage_bills"))):
    with Session(engine) as session:
        bill = get_bill_or_404(session, bill_id)
        soft_delete_bill(session, bill, current_user)
        session.commit()
    return {"message": "Bill deleted successfully."}
