"""
auth/admin.py -- Admin-only user management.

Deactivation, role changes and deletion can shrink the admin pool, so each
runs its guard check and its write under store.admin_lock. Activation cannot
reduce the number of active admins and skips the guard.

Roles can only be set to user or subadmin here. New admins come from the
seed CLI (main.py seed-admin), not from the API.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from auth.guard import ensure_not_last_admin
from auth.models import Principal, Role
from core.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("kavyakala.auth.admin")

ASSIGNABLE_ROLES = frozenset({Role.user, Role.subadmin})


def _actor(actor: Principal | None) -> str:
    return str(actor.id) if actor else "-"


def list_users(store: UserStore) -> list[User]:
    return store.list_users()


def activate_user(store: UserStore, user_id: int, actor: Principal | None = None) -> User:
    user = store.update_user(user_id, is_active=True)
    if user is None:
        raise NotFoundError("User not found.")
    logger.info("User activated: user_id=%s by=%s", user_id, _actor(actor))
    return user


def deactivate_user(store: UserStore, user_id: int, actor: Principal | None = None) -> User:
    with store.admin_lock:
        ensure_not_last_admin(store, user_id)
        user = store.update_user(user_id, is_active=False)
    if user is None:
        raise NotFoundError("User not found.")
    logger.info("User deactivated: user_id=%s by=%s", user_id, _actor(actor))
    return user


def parse_assignable_role(role: str | Role) -> Role:
    """Return role as a Role member if it may be assigned through the API."""
    try:
        parsed = Role(role)
    except ValueError:
        parsed = None
    if parsed not in ASSIGNABLE_ROLES:
        raise ValidationError("Invalid role. Only user/subadmin allowed here.")
    return parsed


def change_role(store: UserStore, user_id: int, role: str | Role, actor: Principal | None = None) -> User:
    new_role = parse_assignable_role(role)
    with store.admin_lock:
        ensure_not_last_admin(store, user_id)
        user = store.update_user(user_id, role=new_role)
    if user is None:
        raise NotFoundError("User not found.")
    logger.info("Role changed: user_id=%s role=%s by=%s", user_id, new_role.value, _actor(actor))
    return user


def delete_user(store: UserStore, user_id: int, actor: Principal | None = None) -> None:
    with store.admin_lock:
        ensure_not_last_admin(store, user_id)
        deleted = store.delete_user(user_id)
    if not deleted:
        raise NotFoundError("User not found.")
    logger.info("User deleted: user_id=%s by=%s", user_id, _actor(actor))
