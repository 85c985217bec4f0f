import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

from sqlmodel import Session, select

from .auth import get_password_hash
from .billing import headline
from .currency import to_money
from .models import BillingSetting, Role, User, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SETTING_KEYS = ("water", "gas", "internet", "service_charge", "cleaning")


def load_seed_amounts(path: Optional[str] = None) -> Dict[str, object]:
    """Read ``{"base_settings": {key: amount}}`` from SEED_FILE, if any."""
    path = path or os.getenv("SEED_FILE")
    if not path:
        return {}
    seed_path = Path(path)
    if not seed_path.exists():
        logger.warning("seed file %s not found, using zero amounts", seed_path)
        return {}
    payload = json.loads(seed_path.read_text(encoding="utf-8"))
    return payload.get("base_settings") or {}


def seed_default_settings(session: Session, amounts: Optional[Dict[str, object]] = None) -> int:
    """Create missing default billing settings; existing rows are left alone."""
    amounts = amounts if amounts is not None else load_seed_amounts()
    created = 0
    for key in list(DEFAULT_SETTING_KEYS) + [k for k in amounts if k not in DEFAULT_SETTING_KEYS]:
        existing = session.exec(select(BillingSetting).where(BillingSetting.key == key)).first()
        if existing:
            continue
        session.add(
            BillingSetting(
                key=key,
                label=headline(key),
                amount=to_money(amounts.get(key)),
                meta={"source": "seed"},
            )
        )
        created += 1
    if created:
        logger.info("seeded %d billing settings", created)
    return created


def ensure_super_admin(session: Session, username: str, password: str) -> User:
    user = session.exec(select(User).where(User.username == username)).first()
    if user:
        return user
    user = User(
        username=username,
        name="Super Admin",
        password_hash=get_password_hash(password),
        role=Role.super_admin.value,
        created_at=utcnow(),
    )
    session.add(user)
    logger.info("created super admin %s", username)
    return user
