from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from ..auth import get_current_user
from ..db import engine
from ..models import User
from ..notifications import NotificationService, get_notifier
from ..policy import require_action
from ..schemas import ChatIdIn, PingMessageIn

router = APIRouter(prefix="/api/telegram", tags=["telegram"])


@router.get("/my-chat-id")
def my_chat_id(current_user: User = Depends(get_current_user)):
    return {
        "telegram_chat_id": current_user.telegram_chat_id,
        "has_telegram": bool(current_user.telegram_chat_id),
    }


@router.post("/my-chat-id")
def link_my_chat_id(payload: ChatIdIn, current_user: User = Depends(get_current_user)):
    with Session(engine) as session:
        user = session.get(User, current_user.id)
        user.telegram_chat_id = payload.telegram_chat_id or None
        session.add(user)
        session.commit()
        return {
            "message": "Telegram chat ID updated successfully",
            "telegram_chat_id": user.telegram_chat_id,
        }


@router.post("/test-message")
async def send_ping(
    payload: PingMessageIn,
    current_user: User = Depends(require_action("send_test_message")),
    notifier: Optional[NotificationService] = Depends(get_notifier),
):
    if notifier is None:
        raise HTTPException(status_code=503, detail="Telegram bot is not configured")
    chat_id = payload.chat_id or current_user.telegram_chat_id
    if not chat_id:
        raise HTTPException(status_code=400, detail="No chat id given and none linked to your account")
    sent = await notifier.send_test_message(chat_id, payload.message)
    return {"sent": sent}
