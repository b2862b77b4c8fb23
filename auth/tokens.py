"""
auth/tokens.py -- Password hashing and session token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the user id (sub), role, and expiry. Verification returns None on any
       failure -- the access-control dependency turns that into a 401. There
       is no server-side session store and no refresh: callers log in again
       once a token expires.

  Passwords: bcrypt directly (no passlib wrapper). Cost factor comes from
       BCRYPT_ROUNDS (default 10). Each call generates a fresh salt that is
       embedded in the hash string. The _DUMMY_HASH constant enables timing
       equalization in check_credentials() so response time does not reveal
       whether an account exists.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup; production mode refuses to start
       without one.

Layer rule: no imports from api/ or notify/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import Principal, Role
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("kavyakala.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_BCRYPT_MAX_BYTES = 72
_SECRET_KEY = _settings.secret_key

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt refuses input longer than 72 bytes. auth.accounts.validate_password
    rejects such passwords before they reach this function.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error, and so
    does a candidate longer than bcrypt accepts: no such password can be stored.
    """
    candidate = plain.encode("utf-8")
    if len(candidate) > _BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(candidate, hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Malformed password hash encountered during verification")
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("kavyakala_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, role: Role, expires_delta: timedelta | None = None) -> str:
    """Encode a signed session JWT carrying {sub, role, exp}.

    Args:
        user_id:       Numeric user ID stored in the DB.
        role:          The account role at issue time.
        expires_delta: Token lifetime. Defaults to Settings.token_expire_seconds.
    """
    lifetime = expires_delta if expires_delta is not None else timedelta(seconds=_settings.token_expire_seconds)
    payload = {
        "sub": str(user_id),
        "role": Role(role).value,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(payload, _SECRET_KEY, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> Principal | None:
    """Verify a session JWT. Returns the Principal or None on any failure.

    Failure covers a bad signature, an elapsed exp, a missing claim, a
    non-numeric subject and a role outside the Role enum.
    """
    try:
        payload = jwt.decode(token, _SECRET_KEY, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "exp" not in payload:
        return None
    try:
        return Principal(id=int(payload["sub"]), role=Role(payload["role"]))
    except (KeyError, TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Credential check (constant-time with respect to account existence)
# ---------------------------------------------------------------------------


def check_credentials(store: UserStore, email_or_handle: str, password: str) -> User | None:
    """Return the matching User if the password is correct, else None.

    Always runs bcrypt whether or not the account exists:
    - Unknown account: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash

    Active and verified flags are NOT checked here; the login flow checks them
    afterwards so that each failure gets its own response.
    """
    user = store.find_by_email_or_handle(email_or_handle)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
