from fastapi.testclient import TestClient
from sqlmodel import Session, select

from house_utility.auth import get_password_hash
from house_utility.db import engine
from house_utility.main import app
from house_utility.models import BillingSetting, User
from house_utility.seed import ensure_super_admin, load_seed_amounts, seed_default_settings

client = TestClient(app)


def make_user(username, role="resident", password="secret1"):
    with Session(engine) as s:
        u = User(username=username, name=username.title(), password_hash=get_password_hash(password), role=role)
        s.add(u)
        s.commit()
        s.refresh(u)
        return u.id


def get_token(username, password="secret1"):
    r = client.post("/api/auth/token", data={"username": username, "password": password})
    assert r.status_code == 200
    return r.json()["access_token"]


def headers_for(username):
    return {"Authorization": f"Bearer {get_token(username)}"}


def test_only_super_admin_updates_settings():
    make_user("root", role="super_admin")
    make_user("admin", role="admin")
    body = {
        "settings": [
            {"key": "water", "amount": 100, "metadata": {"label": "Water supply"}},
            {"key": "gas", "amount": 50},
        ]
    }

    assert client.put("/api/billing-settings", json=body, headers=headers_for("admin")).status_code == 403

    r = client.put("/api/billing-settings", json=body, headers=headers_for("root"))
    assert r.status_code == 200, r.text
    data = {s["key"]: s for s in r.json()["data"]}
    assert data["water"]["label"] == "Water supply"
    assert data["water"]["amount"] == 100.0
    assert data["gas"]["label"] == "gas"

    r = client.put(
        "/api/billing-settings",
        json={"settings": [{"key": "gas", "amount": 65.5}]},
        headers=headers_for("root"),
    )
    assert {s["key"]: s["amount"] for s in r.json()["data"]} == {"gas": 65.5, "water": 100.0}


def test_everyone_can_read_settings():
    make_user("alice")
    with Session(engine) as s:
        seed_default_settings(s, {"water": 80})
        s.commit()
    r = client.get("/api/billing-settings", headers=headers_for("alice"))
    keys = [s["key"] for s in r.json()["data"]]
    assert keys == sorted(keys)
    assert {"water", "gas", "internet", "service_charge", "cleaning"} <= set(keys)


def test_negative_setting_amount_is_rejected():
    make_user("root", role="super_admin")
    r = client.put(
        "/api/billing-settings",
        json={"settings": [{"key": "water", "amount": -1}]},
        headers=headers_for("root"),
    )
    assert r.status_code == 422


def test_seeding_keeps_existing_rows(tmp_path):
    seed_file = tmp_path / "seed.json"
    seed_file.write_text('{"base_settings": {"water": 120, "parking": 30}}', encoding="utf-8")
    amounts = load_seed_amounts(str(seed_file))
    assert amounts == {"water": 120, "parking": 30}

    with Session(engine) as s:
        s.add(BillingSetting(key="water", label="Water", amount=10))
        s.flush()
        created = seed_default_settings(s, amounts)
        s.commit()
        assert created == 5
        water = s.exec(select(BillingSetting).where(BillingSetting.key == "water")).one()
        assert float(water.amount) == 10.0

    assert load_seed_amounts(str(tmp_path / "missing.json")) == {}


def test_ensure_super_admin_is_idempotent():
    with Session(engine) as s:
        first = ensure_super_admin(s, "boss", "secret1")
        s.commit()
        again = ensure_super_admin(s, "boss", "other-password")
        assert again.id == first.id
        assert again.role == "super_admin"


def test_reading_lifecycle():
    make_user("admin", role="admin")
    h = headers_for("admin")

    r = client.post(
        "/api/electricity-readings",
        json={"month": "December", "year": 2025, "start_unit": 100, "end_unit": 150},
        headers=h,
    )
    assert r.status_code == 201, r.text
    reading = r.json()["data"]
    assert reading["units_used"] == 50
    assert reading["recorded_by"]["name"] == "Admin"

    dup = client.post(
        "/api/electricity-readings",
        json={"month": "December", "year": 2025, "start_unit": 1},
        headers=h,
    )
    assert dup.status_code == 422

    found = client.get(
        "/api/electricity-readings/by-month-year", params={"month": "December", "year": 2025}, headers=h
    ).json()
    assert found["data"]["id"] == reading["id"]
    missing = client.get(
        "/api/electricity-readings/by-month-year", params={"month": "March", "year": 2025}, headers=h
    ).json()
    assert missing["data"] is None

    bad = client.patch(f"/api/electricity-readings/{reading['id']}", json={"end_unit": 90}, headers=h)
    assert bad.status_code == 422

    r = client.patch(f"/api/electricity-readings/{reading['id']}", json={"end_unit": 180}, headers=h)
    assert r.json()["data"]["units_used"] == 80

    r = client.delete(f"/api/electricity-readings/{reading['id']}", headers=h)
    assert r.json() == {"message": "Electricity reading deleted."}
    assert client.get(f"/api/electricity-readings/{reading['id']}", headers=h).status_code == 404


def test_reading_validation():
    make_user("admin", role="admin")
    h = headers_for("admin")
    assert client.post(
        "/api/electricity-readings", json={"month": "Decembr", "year": 2025, "start_unit": 1}, headers=h
    ).status_code == 422
    r = client.post(
        "/api/electricity-readings",
        json={"month": "May", "year": 2025, "start_unit": 10, "end_unit": 5},
        headers=h,
    )
    assert r.status_code == 422
    assert "End unit must be greater than or equal to start unit." in r.text


def test_readings_are_newest_first_and_admin_only():
    make_user("admin", role="admin")
    make_user("alice")
    h = headers_for("admin")
    for month, year in (("March", 2025), ("January", 2026), ("December", 2025)):
        client.post(
            "/api/electricity-readings", json={"month": month, "year": year, "start_unit": 0}, headers=h
        )

    listing = client.get("/api/electricity-readings", headers=h).json()["data"]
    assert [(r["month"], r["year"]) for r in listing] == [
        ("January", 2026),
        ("December", 2025),
        ("March", 2025),
    ]

    only_2025 = client.get("/api/electricity-readings", params={"year": 2025}, headers=h).json()["data"]
    assert len(only_2025) == 2

    page = client.get(
        "/api/electricity-readings", params={"paginate": True, "per_page": 2, "page": 2}, headers=h
    ).json()
    assert [(r["month"], r["year"]) for r in page["data"]] == [("March", 2025)]
    assert page["meta"]["total"] == 3

    assert client.get("/api/electricity-readings", headers=headers_for("alice")).status_code == 403


def test_dashboard_totals():
    make_user("admin", role="admin")
    alice = make_user("alice")
    make_user("bob")
    h = headers_for("admin")
    with Session(engine) as s:
        s.add(BillingSetting(key="water", label="Water", amount=100))
        s.commit()
    bill = client.post("/api/bills", json={"for_month": "December 2025"}, headers=h).json()
    alice_share = next(s for s in bill["shares"] if s["user_id"] == alice)
    client.post(
        "/api/payments",
        json={"bill_share_id": alice_share["id"], "amount": 20, "paid_on": "2025-12-02"},
        headers=h,
    )

    admin_view = client.get("/api/dashboard", headers=h).json()
    assert admin_view["totals"] == {"total_due": 100.0, "total_paid": 20.0, "total_outstanding": 80.0}
    assert admin_view["settings"]["water"] == {"label": "Water", "amount": 100.0}
    assert admin_view["currency"]["code"] == "BDT"
    assert len(admin_view["latest_bills"]) == 1

    alice_view = client.get("/api/dashboard", headers=headers_for("alice")).json()
    assert alice_view["totals"] == {"total_due": 50.0, "total_paid": 20.0, "total_outstanding": 30.0}
    assert [s["user_id"] for s in alice_view["latest_bills"][0]["shares"]] == [alice]
