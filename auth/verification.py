"""
auth/verification.py -- Email-verification token lifecycle.

Per-user state machine:

    none --issue--> pending --consume--> none (user.is_verified = True)
                    pending --issue--> pending (previous token overwritten)

The raw token (secrets.token_hex(32), 256 bits) goes into the emailed link
and is never persisted. The store keeps HMAC-SHA256(SECRET_KEY, raw) and an
absolute expiry. HMAC rather than bcrypt: the token is high-entropy, so a
deterministic hash is safe and lets the store find the owner by index.

Expired, consumed and unknown tokens all fail with the same TokenInvalidError.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from core.config import get_settings
from core.errors import NotFoundError, TokenInvalidError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("kavyakala.auth.verification")

_settings = get_settings()


def generate_verification_token() -> str:
    """Return a new raw verification token: 64 hex chars of CSPRNG output."""
    return secrets.token_hex(32)


def hash_verification_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


def verification_expiry(now: datetime | None = None) -> datetime:
    """Absolute expiry for a token issued at now (default: the current time)."""
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=_settings.verification_token_ttl_seconds)


def new_verification_token() -> tuple[str, str, datetime]:
    """Return (raw, hashed, expires) for a fresh token.

    Used when the token is written together with a new account, so the
    record never exists without its pending pair.
    """
    raw = generate_verification_token()
    return raw, hash_verification_token(raw), verification_expiry()


def issue_verification_token(store: UserStore, user_id: int) -> str:
    """Start (or restart) a verification cycle and return the raw token.

    Any previously issued token for this user stops working in the same write.
    Raises NotFoundError if the user does not exist.
    """
    raw, hashed, expires = new_verification_token()
    if not store.set_verification_token(user_id, hashed, expires):
        raise NotFoundError("User not found.")
    logger.info("Verification token issued for user_id=%s", user_id)
    return raw


def consume_verification_token(store: UserStore, raw_token: str) -> User:
    """Redeem a raw token: clear the pending pair and mark the owner verified.

    Raises TokenInvalidError when the token is empty, unknown, expired or
    already used, including when a concurrent request redeemed it first.
    """
    if not raw_token:
        raise TokenInvalidError()
    user = store.consume_verification_token(hash_verification_token(raw_token), datetime.now(timezone.utc))
    if user is None:
        raise TokenInvalidError()
    logger.info("Email verified for user_id=%s", user.id)
    return user
