"""
auth/accounts.py -- Account flows: signup, login, email verification, resend,
subadmin creation and profile lookup.

Each flow validates its input first (ValidationError before any store access),
then works through the store, the hasher, the verification manager and the
token issuer. Route handlers stay thin: they parse the request, call one
function here and shape the response.

Notification failures never fail a flow. The mailer reports a bool; a False
becomes a DependencyFailure attached to the result, and the user can ask for
a resend later.

Layer rule: no runtime imports from api/ or notify/. The mailer is passed in.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from auth.models import Principal, Role, User
from auth.tokens import check_credentials, create_access_token, hash_password
from auth.verification import consume_verification_token, issue_verification_token, new_verification_token
from core.errors import (
    ConflictError,
    DependencyFailure,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

if TYPE_CHECKING:
    from auth.store import UserStore
    from notify.mailer import Mailer

logger = logging.getLogger("kavyakala.auth.accounts")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_HANDLE_RE = re.compile(r"^[a-z0-9_.-]+$")

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 72
MAX_PASSWORD_BYTES = 72  # bcrypt refuses longer input


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class SignupResult:
    user: User
    created: bool  # False when an unverified account was re-notified
    email_sent: bool
    dependency_failure: DependencyFailure | None = None


@dataclass
class SessionResult:
    user: User
    access_token: str


@dataclass
class ResendResult:
    user: User
    email_sent: bool
    dependency_failure: DependencyFailure | None = None


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def normalize_email(email: str | None) -> str:
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email is required.")
    if len(email) > 320 or not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email address.")
    return email


def normalize_handle(handle: str | None) -> str:
    handle = (handle or "").strip().lower()
    if not handle:
        raise ValidationError("Handle is required.")
    if len(handle) > 50 or not _HANDLE_RE.match(handle):
        raise ValidationError("Handle may only contain letters, digits, '_', '.' and '-' (max 50).")
    return handle


def validate_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required.")
    if len(name) > 120:
        raise ValidationError("Name must be at most 120 characters.")
    return name


def validate_password(password: str | None) -> str:
    if not password:
        raise ValidationError("Password is required.")
    if not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters."
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
    return password


def _validate_registration(name, email, handle, password) -> tuple[str, str, str, str]:
    return validate_name(name), normalize_email(email), normalize_handle(handle), validate_password(password)


# ---------------------------------------------------------------------------
# Verification email
# ---------------------------------------------------------------------------


def verification_link(link_base: str, raw_token: str) -> str:
    return f"{link_base.rstrip('/')}/{raw_token}"


def verification_email(name: str, link: str) -> tuple[str, str]:
    """Return (text_body, html_body) for a verification message."""
    text_body = (
        f"Welcome to Kavyakala, {name or 'there'}!\n\n"
        f"Please confirm your email address to activate your account:\n{link}\n\n"
        "This link will expire in 24 hours. If you didn't request this, ignore this email."
    )
    safe_link = html.escape(link, quote=True)
    html_body = (
        '<div style="font-family:Arial,Helvetica,sans-serif;line-height:1.6;color:#222;">'
        f"<h2>Welcome to Kavyakala, {html.escape(name or 'there')}!</h2>"
        "<p>Please confirm your email address to activate your account.</p>"
        f'<p><a href="{safe_link}">Verify Email</a></p>'
        f'<p style="word-break:break-all;">{safe_link}</p>'
        "<p>This link will expire in 24 hours.</p>"
        '<hr /><p style="font-size:12px;color:#555;">If you didn\'t request this, ignore this email.</p>'
        "</div>"
    )
    return text_body, html_body


def _send_verification(
    mailer: Mailer, user: User, link_base: str, raw_token: str, subject: str
) -> DependencyFailure | None:
    text_body, html_body = verification_email(user.name, verification_link(link_base, raw_token))
    if mailer.send(user.email, subject, text_body, html_body):
        return None
    logger.warning("Verification email for user_id=%s not sent; resend is available", user.id)
    return DependencyFailure("Verification email could not be sent. Use \"Resend verification\".")


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


def signup(
    store: UserStore,
    mailer: Mailer,
    *,
    name: str,
    email: str,
    handle: str,
    password: str,
    link_base: str,
) -> SignupResult:
    """Register an unverified account and email its verification link.

    If the email or handle belongs to an account that is still unverified,
    the pending token is rotated and the link re-sent instead of failing.
    A verified owner means ConflictError.
    """
    name, email, handle, password = _validate_registration(name, email, handle, password)

    existing = store.find_existing(email, handle)
    if existing is not None:
        if existing.is_verified:
            raise ConflictError()
        raw = issue_verification_token(store, existing.id)
        failure = _send_verification(mailer, existing, link_base, raw, "Verify your email")
        return SignupResult(user=existing, created=False, email_sent=failure is None, dependency_failure=failure)

    raw, hashed, expires = new_verification_token()
    user = store.create_user(
        User(
            name=name,
            email=email,
            handle=handle,
            hashed_password=hash_password(password),
            role=Role.user,
            is_verified=False,
            verification_token_hash=hashed,
            verification_token_expires=expires,
        )
    )
    logger.info("Account created: user_id=%s handle=%s", user.id, user.handle)
    failure = _send_verification(mailer, user, link_base, raw, "Verify your email")
    return SignupResult(user=user, created=True, email_sent=failure is None, dependency_failure=failure)


def login(store: UserStore, email_or_handle: str, password: str) -> SessionResult:
    """Check credentials, then the active flag, then the verified flag.

    Each failure has its own code so clients can tell them apart:
      bad_credentials (401), account_disabled (403), email_not_verified (403).
    """
    if not (email_or_handle or "").strip() or not password:
        raise ValidationError("Missing credentials.")

    user = check_credentials(store, email_or_handle, password)
    if user is None:
        raise UnauthorizedError("Invalid credentials.", code="bad_credentials")
    if not user.is_active:
        raise ForbiddenError("Account disabled.", code="account_disabled")
    if not user.is_verified:
        raise ForbiddenError(
            "Email not verified. Please verify to continue.",
            code="email_not_verified",
            needs_verification=True,
        )
    logger.info("Login: user_id=%s", user.id)
    return SessionResult(user=user, access_token=create_access_token(user.id, user.role))


def verify_email(store: UserStore, raw_token: str) -> SessionResult:
    """Redeem a verification token and sign the user in."""
    user = consume_verification_token(store, raw_token)
    return SessionResult(user=user, access_token=create_access_token(user.id, user.role))


def resend_verification(store: UserStore, mailer: Mailer, *, email: str, link_base: str) -> ResendResult:
    """Rotate the pending token of an unverified account and re-send the link."""
    email = normalize_email(email)
    user = store.get_by_email(email)
    if user is None:
        raise NotFoundError("No account found with that email.")
    if user.is_verified:
        raise ValidationError("Account is already verified.", code="already_verified")

    raw = issue_verification_token(store, user.id)
    failure = _send_verification(mailer, user, link_base, raw, "Verify your email (resend)")
    return ResendResult(user=user, email_sent=failure is None, dependency_failure=failure)


def create_subadmin(
    store: UserStore,
    *,
    name: str,
    email: str,
    handle: str,
    password: str,
    actor: Principal | None = None,
) -> User:
    """Create a pre-verified subadmin account. Subadmins skip email verification."""
    name, email, handle, password = _validate_registration(name, email, handle, password)
    if store.find_existing(email, handle) is not None:
        raise ConflictError()
    user = store.create_user(
        User(
            name=name,
            email=email,
            handle=handle,
            hashed_password=hash_password(password),
            role=Role.subadmin,
            is_verified=True,
        )
    )
    logger.info("Subadmin created: user_id=%s by=%s", user.id, actor.id if actor else "-")
    return user


def get_profile(store: UserStore, principal: Principal) -> User:
    """Return the caller's own account record."""
    user = store.get_by_id(principal.id)
    if user is None:
        raise NotFoundError("User not found.")
    return user


def seed_admin(store: UserStore, *, name: str, email: str, handle: str, password: str) -> tuple[User, bool]:
    """Create the first admin account if none exists.

    Returns (user, created). When an admin already exists it is returned
    unchanged with created=False. The seeded admin is pre-verified.
    """
    existing = store.find_admin()
    if existing is not None:
        return existing, False
    name, email, handle, password = _validate_registration(name, email, handle, password)
    if store.find_existing(email, handle) is not None:
        raise ConflictError()
    user = store.create_user(
        User(
            name=name,
            email=email,
            handle=handle,
            hashed_password=hash_password(password),
            role=Role.admin,
            is_verified=True,
        )
    )
    logger.info("Admin seeded: user_id=%s", user.id)
    return user, True
