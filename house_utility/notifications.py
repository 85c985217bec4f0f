"""Telegram notifications for residents.

Notifications run after the triggering transaction has committed. A failed
send is logged and otherwise ignored: it never reaches the HTTP caller and
never undoes the billing write.
"""

import html
import logging
import os
from datetime import date
from typing import List, Optional, Sequence, Tuple

from sqlmodel import Session, select
from telegram import Bot
from telegram.constants import ParseMode

from .currency import ZERO, default_currency, format_currency, to_money
from .db import engine
from .models import Bill, BillShare, BillStatus, Payment, Role, User

logger = logging.getLogger(__name__)


def _esc(value) -> str:
    return html.escape(str(value), quote=False)


def _day(value: Optional[date]) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


def format_bill_message(bill: Bill, share: Optional[BillShare], currency: str) -> str:
    lines = [
        "📋 <b>New Bill Created</b>",
        "",
        f"📅 <b>Month:</b> {_esc(bill.for_month)}",
        f"🔖 <b>Reference:</b> {bill.reference}",
    ]
    if bill.due_date:
        lines.append(f"⏰ <b>Due Date:</b> {_day(bill.due_date)}")
    if bill.period_start and bill.period_end:
        lines.append(f"📆 <b>Period:</b> {_day(bill.period_start)} to {_day(bill.period_end)}")

    lines += ["", "💰 <b>Breakdown:</b>"]
    for item in bill.line_items or []:
        label = item.get("label") or item.get("key") or "Unknown"
        lines.append(f"  • {_esc(label)}: {format_currency(item.get('amount'), currency)}")

    if (bill.electricity_units or 0) > 0:
        lines += ["", "⚡ <b>Electricity:</b>"]
        if bill.electricity_start_unit is not None and bill.electricity_end_unit is not None:
            lines.append(f"  • Start Unit: {bill.electricity_start_unit}")
            lines.append(f"  • End Unit: {bill.electricity_end_unit}")
        lines.append(f"  • Units Used: {bill.electricity_units}")
        if to_money(bill.electricity_rate) > 0:
            lines.append(f"  • Rate: {format_currency(bill.electricity_rate, currency)} per unit")
        lines.append(f"  • Amount: {format_currency(bill.electricity_bill, currency)}")

    if share is not None:
        lines += ["", "👥 <b>Your Share:</b>"]
        lines.append(f"  • Amount Due: {format_currency(share.amount_due, currency)}")
        if to_money(share.amount_paid) > 0:
            lines.append(f"  • Amount Paid: {format_currency(share.amount_paid, currency)}")
            if share.outstanding > 0:
                lines.append(f"  • Outstanding: {format_currency(share.outstanding, currency)}")

    if bill.notes:
        lines += ["", f"📝 <b>Notes:</b> {_esc(bill.notes)}"]

    lines += ["", "✅ Bill created successfully!"]
    return "\n".join(lines)


def format_payment_message(payment: Payment, share: BillShare, bill: Bill, currency: str) -> str:
    method = payment.method or "cash"
    lines = [
        "✅ <b>Payment Received</b>",
        "",
        f"Amount: {format_currency(payment.amount, currency)}",
        f"Date: {_day(payment.paid_on)}",
        f"Method: {_esc(method[:1].upper() + method[1:])}",
        f"Bill: {bill.reference}",
        f"Month: {_esc(bill.for_month)}",
        "",
    ]
    if share.outstanding > 0:
        lines.append(f"Outstanding: {format_currency(share.outstanding, currency)}")
    else:
        lines.append("✅ Bill fully paid!")
    return "\n".join(lines)


def format_due_reminder(pending: Sequence[Tuple[BillShare, Bill]], currency: str) -> str:
    lines = ["⏰ <b>Monthly Due Reminder</b>", "", "You have pending bills:", ""]
    total = ZERO
    for share, bill in pending:
        total += share.outstanding
        lines.append(f"📋 {_esc(bill.for_month)} - {bill.reference}")
        lines.append(f"   Due: {format_currency(share.amount_due, currency)}")
        lines.append(f"   Paid: {format_currency(share.amount_paid, currency)}")
        lines.append(f"   Pending: {format_currency(share.outstanding, currency)}")
        if bill.due_date:
            lines.append(f"   Due Date: {_day(bill.due_date)}")
        lines.append("")
    lines.append(f"💰 <b>Total Pending: {format_currency(total, currency)}</b>")
    lines += ["", "Please make your payment soon."]
    return "\n".join(lines)


class NotificationService:
    """Sends billing messages through a ``telegram.Bot``."""

    def __init__(self, bot, currency: Optional[str] = None):
        self.bot = bot
        self.currency = currency or default_currency()

    async def send_message(self, chat_id: str, text: str) -> bool:
        try:
            await self.bot.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.HTML)
        except Exception:
            logger.exception("failed to send Telegram message to chat %s", chat_id)
            return False
        return True

    async def _deliver(self, outbox: List[Tuple[str, str]]) -> int:
        if not outbox:
            return 0
        sent = 0
        async with self.bot:
            for chat_id, text in outbox:
                if await self.send_message(chat_id, text):
                    sent += 1
        return sent

    async def notify_bill_created(self, bill_id: int) -> int:
        """Message every resident on the bill who has linked a chat."""
        try:
            with Session(engine) as session:
                bill = session.get(Bill, bill_id)
                if bill is None:
                    logger.warning("bill %s vanished before notification", bill_id)
                    return 0
                rows = session.exec(
                    select(BillShare, User)
                    .join(User, User.id == BillShare.user_id)
                    .where(BillShare.bill_id == bill.id)
                    .order_by(BillShare.id)
                ).all()
                outbox = [
                    (user.telegram_chat_id, format_bill_message(bill, share, self.currency))
                    for share, user in rows
                    if user.telegram_chat_id
                ]
            sent = await self._deliver(outbox)
        except Exception:
            logger.exception("bill notification for bill %s failed", bill_id)
            return 0
        logger.info("bill %s: notified %d of %d linked residents", bill_id, sent, len(outbox))
        return sent

    async def notify_payment_recorded(self, payment_id: int) -> bool:
        try:
            with Session(engine) as session:
                payment = session.get(Payment, payment_id)
                share = session.get(BillShare, payment.bill_share_id) if payment else None
                bill = session.get(Bill, share.bill_id) if share else None
                user = session.get(User, share.user_id) if share else None
                if bill is None or user is None or not user.telegram_chat_id:
                    return False
                outbox = [
                    (user.telegram_chat_id, format_payment_message(payment, share, bill, self.currency))
                ]
            return await self._deliver(outbox) == 1
        except Exception:
            logger.exception("payment notification for payment %s failed", payment_id)
            return False

    async def send_monthly_due_reminders(self) -> int:
        """Remind each linked resident of their unpaid shares; returns messages sent."""
        try:
            with Session(engine) as session:
                users = session.exec(
                    select(User)
                    .where(User.role == Role.resident.value)
                    .where(User.telegram_chat_id.is_not(None))
                    .where(User.is_active == True)  # noqa: E712
                    .order_by(User.id)
                ).all()
                outbox = []
                for user in users:
                    rows = session.exec(
                        select(BillShare, Bill)
                        .join(Bill, Bill.id == BillShare.bill_id)
                        .where(BillShare.user_id == user.id)
                        .where(Bill.status != BillStatus.paid.value)
                        .where(Bill.deleted_at.is_(None))
                        .order_by(Bill.id)
                    ).all()
                    pending = [(share, bill) for share, bill in rows if share.outstanding > 0]
                    if pending:
                        outbox.append((user.telegram_chat_id, format_due_reminder(pending, self.currency)))
            sent = await self._deliver(outbox)
        except Exception:
            logger.exception("monthly due reminders failed")
            return 0
        logger.info("monthly due reminders: sent %d of %d", sent, len(outbox))
        return sent

    async def send_test_message(self, chat_id: str, text: Optional[str] = None) -> bool:
        text = text or "✅ Test message from the house utility billing service."
        try:
            return await self._deliver([(chat_id, _esc(text))]) == 1
        except Exception:
            logger.exception("test message to chat %s failed", chat_id)
            return False


def get_notifier() -> Optional[NotificationService]:
    """FastAPI dependency; ``None`` when no bot token is configured."""
    token = os.getenv("TELEGRAM_BOT_TOKEN")
    if not token:
        return None
    return NotificationService(Bot(token=token))
