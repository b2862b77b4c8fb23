"""
auth/guard.py -- Last-admin protection.

Any mutation that could remove or demote an administrator (deactivation, role
change, deletion) goes through ensure_not_last_admin() while holding
store.admin_lock, so the count and the mutation cannot interleave with
another guarded mutation in the same process.

The rule follows the target's role, not its active flag: if the target is an
admin and at most one active admin exists, the operation is refused. This
also refuses changes to an inactive admin while only one active admin
remains.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from auth.models import Role
from core.errors import NotFoundError, PolicyViolationError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("kavyakala.auth.guard")


def ensure_not_last_admin(store: UserStore, user_id: int) -> User:
    """Load the target and refuse if it is an admin and the admin pool is down to one.

    Returns the target User so callers do not need a second lookup.
    Raises NotFoundError if the user does not exist, PolicyViolationError if
    the operation would leave no active admin.
    """
    target = store.get_by_id(user_id)
    if target is None:
        raise NotFoundError("User not found.")
    if target.role is Role.admin and store.count_active_admins() <= 1:
        logger.warning("Refused mutation of user_id=%s: last active admin", user_id)
        raise PolicyViolationError()
    return target
