import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from house_utility.auth import get_password_hash
from house_utility.billing import create_bill
from house_utility.db import engine
from house_utility.main import app
from house_utility.models import Bill, BillShare, User
from house_utility.notifications import (
    NotificationService,
    format_bill_message,
    format_due_reminder,
    get_notifier,
)
from house_utility.payments import record_payment
from house_utility.schemas import BillCreate, PaymentCreate

client = TestClient(app)


class DummyBot:
    """Stands in for telegram.Bot; records what would have been sent."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)
        self.opened = 0

    async def __aenter__(self):
        self.opened += 1
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def send_message(self, chat_id, text, parse_mode=None):
        if chat_id in self.fail_for:
            raise RuntimeError("chat not found")
        self.sent.append((chat_id, text, parse_mode))


class BrokenBot(DummyBot):
    async def __aenter__(self):
        raise RuntimeError("network down")


def make_user(username, role="resident", chat_id=None, password="secret1"):
    with Session(engine) as s:
        u = User(
            username=username,
            name=username.title(),
            password_hash=get_password_hash(password),
            role=role,
            telegram_chat_id=chat_id,
        )
        s.add(u)
        s.commit()
        s.refresh(u)
        return u.id


def headers_for(username, password="secret1"):
    r = client.post("/api/auth/token", data={"username": username, "password": password})
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def dummy_bot():
    bot = DummyBot()
    app.dependency_overrides[get_notifier] = lambda: NotificationService(bot, currency="BDT")
    yield bot
    app.dependency_overrides.pop(get_notifier, None)


def test_bill_message_format():
    bill = Bill(
        reference="BILL-ABCD1234",
        for_month="December 2025",
        due_date=datetime.date(2025, 12, 20),
        electricity_units=50,
        electricity_start_unit=100,
        electricity_end_unit=150,
        electricity_bill=Decimal("250.00"),
        line_items=[{"key": "water", "label": "Water", "amount": 1200.0}],
        notes="<pay soon>",
    )
    share = BillShare(bill_id=1, user_id=1, amount_due=Decimal("725.00"), amount_paid=Decimal("25.00"))

    text = format_bill_message(bill, share, "BDT")
    assert "📋 <b>New Bill Created</b>" in text
    assert "🔖 <b>Reference:</b> BILL-ABCD1234" in text
    assert "⏰ <b>Due Date:</b> 2025-12-20" in text
    assert "  • Water: ৳ 1,200.00" in text
    assert "  • Units Used: 50" in text
    assert "  • Amount Due: ৳ 725.00" in text
    assert "  • Outstanding: ৳ 700.00" in text
    assert "&lt;pay soon&gt;" in text
    assert "Rate:" not in text


def test_due_reminder_totals_outstanding():
    bill = Bill(reference="BILL-1", for_month="November 2025")
    shares = [
        (BillShare(bill_id=1, user_id=1, amount_due=Decimal("75"), amount_paid=Decimal("25")), bill),
        (BillShare(bill_id=1, user_id=1, amount_due=Decimal("10"), amount_paid=Decimal("0")), bill),
    ]
    text = format_due_reminder(shares, "USD")
    assert "   Pending: $ 50.00" in text
    assert "💰 <b>Total Pending: $ 60.00</b>" in text


def test_bill_creation_notifies_linked_residents(dummy_bot):
    make_user("admin", role="admin")
    make_user("alice", chat_id="111")
    make_user("bob")

    r = client.post(
        "/api/bills",
        json={"for_month": "December 2025", "line_items": [{"key": "water", "amount": 100}]},
        headers=headers_for("admin"),
    )
    assert r.status_code == 201
    assert [chat for chat, _, _ in dummy_bot.sent] == ["111"]
    chat, text, parse_mode = dummy_bot.sent[0]
    assert parse_mode == "HTML"
    assert "Amount Due: ৳ 50.00" in text


def test_failed_send_does_not_break_the_request(dummy_bot):
    make_user("admin", role="admin")
    make_user("alice", chat_id="111")
    make_user("bob", chat_id="222")
    dummy_bot.fail_for.add("111")

    r = client.post(
        "/api/bills",
        json={"for_month": "December 2025", "line_items": [{"key": "water", "amount": 100}]},
        headers=headers_for("admin"),
    )
    assert r.status_code == 201
    assert [chat for chat, _, _ in dummy_bot.sent] == ["222"]
    with Session(engine) as s:
        assert s.get(Bill, r.json()["id"]) is not None


def test_payment_notifies_payer(dummy_bot):
    make_user("admin", role="admin")
    make_user("alice", chat_id="111")
    bill = client.post(
        "/api/bills",
        json={"for_month": "December 2025", "line_items": [{"key": "water", "amount": 100}]},
        headers=headers_for("admin"),
    ).json()
    dummy_bot.sent.clear()

    r = client.post(
        "/api/payments",
        json={"bill_share_id": bill["shares"][0]["id"], "amount": 100, "paid_on": "2025-12-03"},
        headers=headers_for("alice"),
    )
    assert r.status_code == 201
    assert len(dummy_bot.sent) == 1
    text = dummy_bot.sent[0][1]
    assert "✅ <b>Payment Received</b>" in text
    assert "Method: Cash" in text
    assert "✅ Bill fully paid!" in text


@pytest.mark.asyncio
async def test_monthly_reminders_skip_settled_and_unlinked():
    admin_id = make_user("admin", role="admin")
    alice_id = make_user("alice", chat_id="111")
    make_user("bob", chat_id="222")
    make_user("carol")
    with Session(engine) as s:
        admin = s.get(User, admin_id)
        bill = create_bill(
            s, BillCreate(for_month="December 2025", line_items=[{"key": "water", "amount": 90}]), admin
        )
        alice_share = next(sh for sh in bill.shares if sh.user_id == alice_id)
        record_payment(
            s,
            alice_share,
            PaymentCreate(bill_share_id=alice_share.id, amount=30, paid_on=datetime.date(2025, 12, 1)),
            admin,
        )
        s.commit()

    bot = DummyBot()
    sent = await NotificationService(bot, currency="BDT").send_monthly_due_reminders()
    assert sent == 1
    assert [chat for chat, _, _ in bot.sent] == ["222"]
    assert "Total Pending: ৳ 30.00" in bot.sent[0][1]


@pytest.mark.asyncio
async def test_bot_failures_are_swallowed():
    service = NotificationService(BrokenBot(), currency="BDT")
    assert await service.send_test_message("111") is False
    assert await service.notify_bill_created(424242) == 0
    assert await service.notify_payment_recorded(424242) is False


def test_test_message_endpoint(dummy_bot):
    make_user("admin", role="admin", chat_id="999")
    make_user("alice")

    r = client.post("/api/telegram/test-message", json={}, headers=headers_for("admin"))
    assert r.json() == {"sent": True}
    assert dummy_bot.sent[0][0] == "999"

    r = client.post("/api/telegram/test-message", json={"chat_id": "5", "message": "hi"}, headers=headers_for("admin"))
    assert dummy_bot.sent[-1][:2] == ("5", "hi")

    assert client.post("/api/telegram/test-message", json={}, headers=headers_for("alice")).status_code == 403


def test_test_message_needs_a_bot_and_a_chat():
    make_user("admin", role="admin")
    r = client.post("/api/telegram/test-message", json={"chat_id": "1"}, headers=headers_for("admin"))
    assert r.status_code == 503

    app.dependency_overrides[get_notifier] = lambda: NotificationService(DummyBot())
    try:
        r = client.post("/api/telegram/test-message", json={}, headers=headers_for("admin"))
        assert r.status_code == 400
    finally:
        app.dependency_overrides.pop(get_notifier, None)


def test_get_notifier_reads_token(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    assert get_notifier() is None
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123456:TEST-token")
    assert isinstance(get_notifier(), NotificationService)


def test_bill_message_shows_meter_starting_at_zero():
    bill = Bill(
        reference="BILL-ZERO0001",
        for_month="January 2026",
        electricity_units=40,
        electricity_start_unit=0,
        electricity_end_unit=40,
        electricity_bill=Decimal("200.00"),
    )
    text = format_bill_message(bill, None, "BDT")
    assert "  • Start Unit: 0" in text
    assert "  • End Unit: 40" in text
