"""
tests/test_auth_routes.py -- Integration tests for /api/v1/auth/* routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> account flows -> UserStore -> response model serialization and the
error envelope produced by the exception handlers.

Coverage:
  - Signup: 201 new, 200 re-send for unverified, 409 for verified, mail failure
  - Login: 200 with token, 401 bad_credentials, 403 account_disabled,
    403 email_not_verified (with needs_verification), 400 missing input
  - Verify link: 302 to the app callback with the session in the fragment,
    next= restricted to relative paths, second use rejected
  - Resend: 404 unknown email, 400 already verified, rotation
  - Me: 401 without or with a bad token, 200 with {id, name, handle, role}
"""

from __future__ import annotations

from urllib.parse import parse_qs, unquote, urlsplit

import pytest
from conftest import FailingMailer, RecordingMailer, _patch_lifespan, add_user, bearer, raw_token_from
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Role
from auth.store import UserStore
from auth.tokens import decode_access_token

SIGNUP = {"name": "Mira", "email": "mira@example.com", "handle": "mira", "password": "secret123"}


def _verify_path(mailer: RecordingMailer) -> str:
    return f"/api/v1/auth/verify/{raw_token_from(mailer.last)}"


class TestSignup:
    def test_new_account_201(self, client: TestClient, mailer: RecordingMailer) -> None:
        resp = client.post("/api/v1/auth/signup", json=SIGNUP)
        assert resp.status_code == 201
        data = resp.json()
        assert data["email_sent"] is True
        assert data["needs_verification"] is True
        assert data["dependency_failure"] is None
        assert mailer.last["to"] == "mira@example.com"
        # Link is built from the request host when API_BASE_URL is unset.
        assert "http://localhost/api/v1/auth/verify/" in mailer.last["text"]

    def test_unverified_duplicate_200(self, client: TestClient, mailer: RecordingMailer) -> None:
        client.post("/api/v1/auth/signup", json=SIGNUP)
        resp = client.post("/api/v1/auth/signup", json=SIGNUP)
        assert resp.status_code == 200
        assert "not verified" in resp.json()["message"]
        assert len(mailer.sent) == 2

    def test_verified_duplicate_409(self, client: TestClient, store: UserStore) -> None:
        add_user(store, "mira")
        resp = client.post("/api/v1/auth/signup", json=SIGNUP)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_invalid_email_400(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/signup", json={**SIGNUP, "email": "nope"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_multibyte_password_over_72_bytes_400(self, client: TestClient, store: UserStore) -> None:
        resp = client.post("/api/v1/auth/signup", json={**SIGNUP, "password": "é" * 40})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"
        assert store.get_by_email("mira@example.com") is None

    def test_missing_field_422(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/signup", json={"email": "mira@example.com"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_mail_failure_still_creates_account(self, store: UserStore) -> None:
        app.router.lifespan_context = _patch_lifespan(store, FailingMailer())
        with TestClient(app, base_url="http://localhost") as c:
            resp = c.post("/api/v1/auth/signup", json=SIGNUP)
        assert resp.status_code == 201
        data = resp.json()
        assert data["email_sent"] is False
        assert data["dependency_failure"]["code"] == "dependency_failure"
        assert store.get_by_email("mira@example.com") is not None

    def test_unverified_duplicate_with_mail_failure(self, store: UserStore) -> None:
        add_user(store, "mira", is_verified=False)
        app.router.lifespan_context = _patch_lifespan(store, FailingMailer())
        with TestClient(app, base_url="http://localhost") as c:
            resp = c.post("/api/v1/auth/signup", json=SIGNUP)
        assert resp.status_code == 200
        data = resp.json()
        assert data["email_sent"] is False
        assert "could not be sent" in data["message"]
        assert "has been sent" not in data["message"]


class TestLogin:
    def test_success(self, client: TestClient, store: UserStore) -> None:
        user = add_user(store, "kavi")
        resp = client.post("/api/v1/auth/login", json={"emailOrHandle": "kavi", "password": "secret123"})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["user"] == {"id": user.id, "name": "Kavi", "handle": "kavi", "role": "user"}
        assert decode_access_token(data["access_token"]).id == user.id

    def test_snake_case_field_also_accepted(self, client: TestClient, store: UserStore) -> None:
        add_user(store, "kavi")
        resp = client.post("/api/v1/auth/login", json={"email_or_handle": "kavi@example.com", "password": "secret123"})
        assert resp.status_code == 200

    def test_bad_credentials_401(self, client: TestClient, store: UserStore) -> None:
        add_user(store, "kavi")
        resp = client.post("/api/v1/auth/login", json={"emailOrHandle": "kavi", "password": "wrong-pass"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_unknown_account_same_as_wrong_password(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/login", json={"emailOrHandle": "ghost", "password": "secret123"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_disabled_403(self, client: TestClient, store: UserStore) -> None:
        add_user(store, "kavi", is_active=False)
        resp = client.post("/api/v1/auth/login", json={"emailOrHandle": "kavi", "password": "secret123"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_disabled"

    def test_unverified_403_with_flag(self, client: TestClient, store: UserStore) -> None:
        add_user(store, "kavi", is_verified=False)
        resp = client.post("/api/v1/auth/login", json={"emailOrHandle": "kavi", "password": "secret123"})
        assert resp.status_code == 403
        body = resp.json()
        assert body["error"]["code"] == "email_not_verified"
        assert body["needs_verification"] is True

    def test_blank_identifier_400(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/login", json={"emailOrHandle": "   ", "password": "secret123"})
        assert resp.status_code in (400, 422)


class TestVerifyLink:
    def test_redirects_with_session_in_fragment(self, client: TestClient, mailer: RecordingMailer) -> None:
        client.post("/api/v1/auth/signup", json=SIGNUP)
        resp = client.get(_verify_path(mailer), params={"next": "/poems/42"})
        assert resp.status_code == 302
        assert resp.headers["Cache-Control"] == "no-store"
        assert resp.headers["Referrer-Policy"] == "no-referrer"

        location = urlsplit(resp.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == "http://app.test/auth/callback"
        query = parse_qs(location.query)
        assert query["verified"] == ["1"]
        assert query["next"] == ["/poems/42"]
        assert "token" not in query
        token = unquote(location.fragment.removeprefix("token="))
        principal = decode_access_token(token)
        assert principal is not None
        assert principal.role is Role.user

        login = client.post("/api/v1/auth/login", json={"emailOrHandle": "mira", "password": "secret123"})
        assert login.status_code == 200

    @pytest.mark.parametrize(
        "next_url",
        [
            "https://evil.example",
            "//evil.example/x",
            "javascript:alert(1)",
            "/\\evil.example",
            "/\\/evil.example",
            "/\t/evil.example",
        ],
    )
    def test_offsite_next_falls_back_to_root(
        self, client: TestClient, mailer: RecordingMailer, next_url: str
    ) -> None:
        client.post("/api/v1/auth/signup", json=SIGNUP)
        resp = client.get(_verify_path(mailer), params={"next": next_url})
        assert resp.status_code == 302
        assert parse_qs(urlsplit(resp.headers["location"]).query)["next"] == ["/"]

    def test_link_works_once(self, client: TestClient, mailer: RecordingMailer) -> None:
        client.post("/api/v1/auth/signup", json=SIGNUP)
        path = _verify_path(mailer)
        assert client.get(path).status_code == 302
        resp = client.get(path)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "token_invalid"

    def test_unknown_token_400(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/verify/" + "ab" * 32)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "token_invalid"


class TestResend:
    def test_unknown_email_404(self, client: TestClient) -> None:
        resp = client.post("/api/v1/auth/resend-verification", json={"email": "ghost@example.com"})
        assert resp.status_code == 404

    def test_already_verified_400(self, client: TestClient, store: UserStore) -> None:
        add_user(store, "kavi")
        resp = client.post("/api/v1/auth/resend-verification", json={"email": "kavi@example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "already_verified"

    def test_old_link_stops_working(self, client: TestClient, mailer: RecordingMailer) -> None:
        client.post("/api/v1/auth/signup", json=SIGNUP)
        old_path = _verify_path(mailer)
        resp = client.post("/api/v1/auth/resend-verification", json={"email": "mira@example.com"})
        assert resp.status_code == 200
        assert resp.json()["email_sent"] is True
        assert client.get(old_path).status_code == 400
        assert client.get(_verify_path(mailer)).status_code == 302


class TestMe:
    def test_requires_auth(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_bad_token_401(self, client: TestClient) -> None:
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401

    def test_returns_identity(self, client: TestClient, store: UserStore) -> None:
        user = add_user(store, "kavi", role=Role.subadmin)
        resp = client.get("/api/v1/auth/me", headers=bearer(user))
        assert resp.status_code == 200
        assert resp.json() == {"id": user.id, "name": "Kavi", "handle": "kavi", "role": "subadmin"}

    def test_deleted_user_token_does_not_reach_newer_account(self, client: TestClient, store: UserStore) -> None:
        add_user(store, "first")
        gone = add_user(store, "gone")
        headers = bearer(gone)
        store.delete_user(gone.id)
        add_user(store, "newcomer")
        resp = client.get("/api/v1/auth/me", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_lowercase_scheme_accepted(self, client: TestClient, store: UserStore) -> None:
        user = add_user(store, "kavi")
        token = bearer(user)["Authorization"].split(" ", 1)[1]
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"bearer {token}"})
        assert resp.status_code == 200
