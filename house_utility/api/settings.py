import logging

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from ..auth import get_current_user
from ..currency import to_money
from ..db import engine
from ..models import BillingSetting, User, utcnow
from ..policy import require_action
from ..resources import setting_resource
from ..schemas import BillingSettingsUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing-settings", tags=["billing-settings"])


def settings_payload(session: Session):
    settings = session.exec(select(BillingSetting).order_by(BillingSetting.key)).all()
    return [setting_resource(s) for s in settings]


@router.get("")
def list_settings(current_user: User = Depends(get_current_user)):
    with Session(engine) as session:
        return {"data": settings_payload(session)}


@router.put("")
def upsert_settings(
    payload: BillingSettingsUpdate,
    current_user: User = Depends(require_action("manage_settings")),
):
    with Session(engine) as session:
        for item in payload.settings:
            metadata = item.metadata or {}
            setting = session.exec(select(BillingSetting).where(BillingSetting.key == item.key)).first()
            if setting is None:
                setting = BillingSetting(key=item.key, label=item.key)
            setting.label = metadata.get("label") or item.key
            setting.amount = to_money(item.amount)
            setting.meta = metadata
            setting.updated_at = utcnow()
            session.add(setting)
        session.commit()
        logger.info(
            "billing settings %s updated by %s",
            ", ".join(i.key for i in payload.settings),
            current_user.username,
        )
        return {"message": "Billing settings updated.", "data": settings_payload(session)}
