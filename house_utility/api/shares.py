from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlmodel import Session, select

from ..auth import get_current_user
from ..db import engine
from ..errors import NotFound
from ..models import Bill, BillShare, User
from ..policy import can, enforce, require_action
from ..resources import load_share, paginated
from ..schemas import BillShareCreate, BillShareUpdate
from ..shares import delete_share, update_share, upsert_share

router = APIRouter(prefix="/api/bill-shares", tags=["bill-shares"])


def get_share_or_404(session: Session, share_id: int) -> BillShare:
    """Shares of a deleted bill are treated as gone."""
    share = session.get(BillShare, share_id)
    bill = session.get(Bill, share.bill_id) if share else None
    if not share or bill is None or bill.deleted_at is not None:
        raise NotFound("Bill share not found")
    return share


@router.get("")
def list_shares(
    bill_id: Optional[int] = None,
    user_id: Optional[int] = None,
    paginate: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(15, ge=1, le=100),
    current_user: User = Depends(get_current_user),
):
    with Session(engine) as session:
        stmt = (
            select(BillShare)
            .join(Bill, Bill.id == BillShare.bill_id)
            .where(Bill.deleted_at.is_(None))
        )
        if bill_id is not None:
            stmt = stmt.where(BillShare.bill_id == bill_id)
        if user_id is not None:
            stmt = stmt.where(BillShare.user_id == user_id)
        if not can(current_user, "view_all_records"):
            stmt = stmt.where(BillShare.user_id == current_user.id)
        stmt = stmt.order_by(BillShare.created_at.desc(), BillShare.id.desc())

        if not paginate:
            return [load_share(session, s, with_bill=True) for s in session.exec(stmt).all()]
        total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
        shares = session.exec(stmt.offset((page - 1) * per_page).limit(per_page)).all()
        return paginated([load_share(session, s, with_bill=True) for s in shares], page, per_page, total)


@router.get("/{share_id}")
def show_share(share_id: int, current_user: User = Depends(get_current_user)):
    with Session(engine) as session:
        share = get_share_or_404(session, share_id)
        enforce(current_user, "view_share", [share.user_id])
        return load_share(session, share, with_bill=True)


@router.post("", status_code=201)
def store_share(payload: BillShareCreate, current_user: User = Depends(require_action("manage_shares"))):
    with Session(engine) as session:
        bill = session.get(Bill, payload.bill_id)
        if not bill or bill.deleted_at is not None:
            raise NotFound("Bill not found")
        share = upsert_share(
            session, bill, payload.user_id, payload.amount_due, payload.amount_paid, payload.notes
        )
        session.commit()
        session.refresh(share)
        return load_share(session, share, with_bill=True)


@router.api_route("/{share_id}", methods=["PUT", "PATCH"])
def edit_share(
    share_id: int,
    payload: BillShareUpdate,
    current_user: User = Depends(require_action("manage_shares")),
):
    with Session(engine) as session:
        share = get_share_or_404(session, share_id)
        update_share(session, share, payload.model_dump(exclude_unset=True))
        session.commit()
        session.refresh(share)
        return load_share(session, share, with_bill=True)


@router.delete("/{share_id}")
def destroy_share(share_id: int, current_user: User = Depends(require_action("manage_shares"))):
    with Session(engine) as session:
        share = get_share_or_404(session, share_id)
        delete_share(session, share)
        session.commit()
    return {"message": "Share removed."}
