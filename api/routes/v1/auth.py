"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup               -- register (unverified) and email a verification link
  POST /api/v1/auth/login                -- password login; returns a bearer token
  GET  /api/v1/auth/verify/{token}       -- redeem verification link; redirect to the app
  POST /api/v1/auth/resend-verification  -- rotate the token and re-send the link
  GET  /api/v1/auth/me                   -- current user (requires auth)

Security:
  POST /login, /signup and /resend-verification are rate-limited per IP.
  Cache-Control: no-store on every response that carries a session token.
  The verify redirect carries the session token in the URL fragment only:
  fragments are not sent to servers or leaked through Referer headers.
  The next= parameter on the redirect is restricted to relative paths.
"""

from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import (
    ErrorDetail,
    LoginRequest,
    LoginResponse,
    ResendVerificationRequest,
    ResendVerificationResponse,
    SignupRequest,
    SignupResponse,
    UserSummary,
)
from auth import accounts
from auth.dependencies import get_current_principal
from auth.models import Principal
from auth.store import UserStore
from core.config import get_settings
from core.errors import DependencyFailure
from notify.mailer import Mailer

# Auth policy:
# - POST /api/v1/auth/signup:               public
# - POST /api/v1/auth/login:                public
# - GET  /api/v1/auth/verify/{token}:       public -- the token itself is the credential
# - POST /api/v1/auth/resend-verification:  public
# - GET  /api/v1/auth/me:                   requires auth (get_current_principal)
router = APIRouter()

_settings = get_settings()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _verify_link_base(request: Request) -> str:
    """Base URL for verification links; API_BASE_URL wins over the request host."""
    base = _settings.api_base_url or str(request.base_url)
    return f"{base.rstrip('/')}/api/v1/auth/verify"


def _safe_next(next_url: str | None) -> str:
    """Validate a post-verification redirect target. Only accept relative paths.

    Rejects absolute URLs and protocol-relative ("//host") URLs, both of which
    would send the user off-site. Browsers read a backslash as "/" and drop
    tabs and newlines, so those variants of "//host" are rejected as well.
    """
    if not next_url or any(ord(ch) < 0x20 or ch == "\x7f" for ch in next_url):
        return "/"
    normalized = next_url.replace("\\", "/")
    if normalized.startswith("/") and not normalized.startswith("//"):
        return next_url
    return "/"


def _failure_detail(failure: DependencyFailure | None) -> ErrorDetail | None:
    if failure is None:
        return None
    return ErrorDetail(code=failure.code, message=failure.message)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.signup_rate_limit)
@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an unverified account and send its verification email.

    201 for a new account. 200 when the email/handle belongs to an account
    that is not verified yet -- the link is rotated and re-sent. 409 when
    it belongs to a verified account.
    """
    user_store: UserStore = request.app.state.user_store
    mailer: Mailer = request.app.state.mailer
    result = accounts.signup(
        user_store,
        mailer,
        name=body.name,
        email=body.email,
        handle=body.handle,
        password=body.password,
        link_base=_verify_link_base(request),
    )
    if result.created:
        message = (
            "Signup successful. Check your email to verify your account."
            if result.email_sent
            else 'Account created, but email could not be sent. Use "Resend verification".'
        )
    else:
        message = (
            "Account exists but is not verified. A new verification email has been sent."
            if result.email_sent
            else 'Account exists but is not verified, and the email could not be sent. Use "Resend verification".'
        )
    return JSONResponse(
        status_code=201 if result.created else 200,
        content=SignupResponse(
            message=message,
            email_sent=result.email_sent,
            dependency_failure=_failure_detail(result.dependency_failure),
        ).model_dump(mode="json"),
    )


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email-or-handle and password; return a bearer token.

    Failure codes: bad_credentials (401), account_disabled (403),
    email_not_verified (403, with needs_verification=true).
    """
    user_store: UserStore = request.app.state.user_store
    result = accounts.login(user_store, body.email_or_handle, body.password)
    resp = JSONResponse(
        content=LoginResponse(
            access_token=result.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            user=UserSummary.from_user(result.user),
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/verify/{token}", name="verify_email")
def verify_email(request: Request, token: str, next: str | None = None) -> RedirectResponse:
    """Redeem a verification link, then redirect to the app signed in.

    Target: {APP_BASE_URL}/auth/callback?verified=1&next=<path>#token=<jwt>
    """
    user_store: UserStore = request.app.state.user_store
    result = accounts.verify_email(user_store, token)
    target = (
        f"{_settings.app_base_url.rstrip('/')}/auth/callback"
        f"?verified=1&next={quote(_safe_next(next), safe='')}"
        f"#token={quote(result.access_token, safe='')}"
    )
    resp = RedirectResponse(target, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Referrer-Policy"] = "no-referrer"
    return resp


@limiter.limit(_settings.signup_rate_limit)
@router.post("/auth/resend-verification", response_model=ResendVerificationResponse)
def resend_verification(request: Request, body: ResendVerificationRequest) -> ResendVerificationResponse:
    """Issue a fresh verification link. The previous link stops working."""
    user_store: UserStore = request.app.state.user_store
    mailer: Mailer = request.app.state.mailer
    result = accounts.resend_verification(
        user_store, mailer, email=body.email, link_base=_verify_link_base(request)
    )
    message = (
        "Verification email sent."
        if result.email_sent
        else "Verification token refreshed, but email could not be sent. Try again later."
    )
    return ResendVerificationResponse(
        message=message,
        email_sent=result.email_sent,
        dependency_failure=_failure_detail(result.dependency_failure),
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserSummary)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> UserSummary:
    """Return identity information for the currently authenticated user."""
    user_store: UserStore = request.app.state.user_store
    return UserSummary.from_user(accounts.get_profile(user_store, principal))
