"""Single place deciding who may do what.

Routes call ``enforce`` (or depend on ``require_action``) before touching the
database, and use ``can`` for visibility filters; role checks outside this
module go through these three.
"""

from typing import Iterable, NamedTuple, Optional

from fastapi import Depends, HTTPException, status

from .auth import get_current_user
from .models import User, is_admin, is_super_admin


class Decision(NamedTuple):
    allowed: bool
    reason: str = ""


# resident may act when they own one of the records involved
OWNER_ACTIONS = {"view_bill", "view_share", "create_payment"}

ADMIN_ACTIONS = {
    "manage_bills",
    "manage_shares",
    "delete_payment",
    "manage_readings",
    "view_users",
    "view_all_records",
    "send_test_message",
}

SUPER_ADMIN_ACTIONS = {"manage_settings", "manage_users"}

KNOWN_ACTIONS = OWNER_ACTIONS | ADMIN_ACTIONS | SUPER_ADMIN_ACTIONS


def authorize(actor: Optional[User], action: str, owner_ids: Iterable[int] = ()) -> Decision:
    if actor is None:
        return Decision(False, "Not authenticated")
    if action not in KNOWN_ACTIONS:
        return Decision(False, f"Unknown action: {action}")
    if not actor.is_active:
        return Decision(False, "User is inactive")
    if action in SUPER_ADMIN_ACTIONS:
        if is_super_admin(actor):
            return Decision(True)
        return Decision(False, "Only a super admin may do this")
    if is_admin(actor):
        return Decision(True)
    if action in OWNER_ACTIONS and actor.id in set(owner_ids):
        return Decision(True)
    if action in OWNER_ACTIONS:
        return Decision(False, "Residents may only access their own records")
    return Decision(False, "Insufficient privileges")


def can(actor: Optional[User], action: str, owner_ids: Iterable[int] = ()) -> bool:
    return authorize(actor, action, owner_ids).allowed


def enforce(actor: Optional[User], action: str, owner_ids: Iterable[int] = ()) -> None:
    decision = authorize(actor, action, owner_ids)
    if decision.allowed:
        return
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=decision.reason,
            headers={"WWW-Authenticate": "Bearer"},
        )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason)


def require_action(action: str):
    def _checker(current_user: User = Depends(get_current_user)) -> User:
        enforce(current_user, action)
        return current_user

    return _checker
