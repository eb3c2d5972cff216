"""
tests/test_auth_api.py -- Integration tests for the login, signup, and session endpoints.

These tests exercise the full stack: FastAPI routing -> rate limiter ->
account service -> SessionManager -> UserStore -> response envelope and cookies.

Fixtures used (from conftest.py):
  - api_client: (client, store) -- TestClient on https://testserver with an
    isolated store and a fake Google certificate endpoint
  - make_id_token: mints RS256 ID tokens the fake endpoint can verify
"""

from __future__ import annotations

import hashlib
import time

from fastapi.testclient import TestClient
from sqlalchemy import text

from auth.models import User
from auth.passwords import is_legacy_hash, verify_password
from auth.store import UserStore
from core.errors import StoreUnavailableError

SIGNUP = {"name": "Ann", "email": "ann@x.com", "password": "Abcd123!"}


def _signup(client: TestClient, **overrides):
    return client.post("/api/signup/email", json={**SIGNUP, **overrides})


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# End-to-end
# ---------------------------------------------------------------------------


def test_signup_status_logout_status(api_client: tuple[TestClient, UserStore]) -> None:
    """Signup -> status 200 -> logout 200 -> status with the same token 401."""
    client, _ = api_client
    resp = _signup(client)
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    token = body["token"]
    assert body["user"]["email"] == "ann@x.com"
    assert body["user"]["name"] == "Ann"

    client.cookies.clear()  # prove the Bearer header alone is enough
    status = client.get("/api/status", headers=_bearer(token))
    assert status.status_code == 200
    assert status.json()["user"]["email"] == "ann@x.com"

    assert client.post("/api/logout", headers=_bearer(token)).status_code == 200

    after = client.get("/api/status", headers=_bearer(token))
    assert after.status_code == 401
    assert after.json()["success"] is False
    assert after.json()["error"]["code"] == "not_authenticated"


def test_cookie_session_round_trip(api_client: tuple[TestClient, UserStore]) -> None:
    """The client's cookie jar alone authenticates /status and /token."""
    client, _ = api_client
    token = _signup(client).json()["token"]
    assert client.get("/api/status").status_code == 200
    token_resp = client.get("/api/token")
    assert token_resp.status_code == 200
    assert token_resp.json() == {"success": True, "token": token}
    assert token_resp.headers["cache-control"] == "no-store"


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


class TestSignup:
    def test_session_cookie_attributes(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = _signup(client)
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith(f"session_token={resp.json()['token']}")
        lowered = cookie.lower()
        assert "httponly" in lowered
        assert "secure" in lowered
        assert "samesite=none" in lowered
        assert "path=/" in lowered
        assert "max-age=86400" in lowered

    def test_password_is_stored_salted(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        _signup(client)
        stored = store.get_user_by_email("ann@x.com").password_hash
        assert ":" in stored
        assert verify_password("Abcd123!", stored)

    def test_duplicate_email_409(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        assert _signup(client).status_code == 201
        resp = _signup(client, name="Ann Again")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_email"

    def test_weak_password_lists_every_violation(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        resp = _signup(client, password="abc")
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "weak_password"
        assert len(error["details"]) == 4
        assert store.get_user_by_email("ann@x.com") is None

    def test_missing_fields_400(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = client.post("/api/signup/email", json={"email": "ann@x.com"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_rate_limited_after_ten(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        for i in range(10):
            assert _signup(client, email=f"user{i}@x.com").status_code == 201
        resp = _signup(client, email="user10@x.com")
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert "retry-after" in resp.headers


# ---------------------------------------------------------------------------
# Email login
# ---------------------------------------------------------------------------


class TestEmailLogin:
    def test_login_success(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        signup_token = _signup(client).json()["token"]
        resp = client.post("/api/login/email", json={"email": "ann@x.com", "password": "Abcd123!"})
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "ann@x.com"
        assert resp.json()["token"] != signup_token
        assert "session_token=" in resp.headers["set-cookie"]

    def test_wrong_password_and_unknown_email_look_identical(
        self, api_client: tuple[TestClient, UserStore]
    ) -> None:
        client, _ = api_client
        _signup(client)
        wrong = client.post("/api/login/email", json={"email": "ann@x.com", "password": "Wrong123!"})
        unknown = client.post("/api/login/email", json={"email": "nobody@x.com", "password": "Abcd123!"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"

    def test_missing_password_400(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = client.post("/api/login/email", json={"email": "ann@x.com"})
        assert resp.status_code == 400

    def test_eleventh_attempt_is_rate_limited(self, api_client: tuple[TestClient, UserStore]) -> None:
        """Ten wrong passwords, then even the right password gets 429."""
        client, _ = api_client
        _signup(client)
        for _ in range(10):
            resp = client.post("/api/login/email", json={"email": "ann@x.com", "password": "Wrong123!"})
            assert resp.status_code == 401
        resp = client.post("/api/login/email", json={"email": "ann@x.com", "password": "Abcd123!"})
        assert resp.status_code == 429

    def test_rate_limit_is_per_client_ip(
        self, api_client: tuple[TestClient, UserStore], behind_trusted_proxy
    ) -> None:
        client, _ = api_client
        for _ in range(10):
            client.post("/api/login/email", json={"email": "x@x.com", "password": "p"})
        assert client.post("/api/login/email", json={"email": "x@x.com", "password": "p"}).status_code == 429
        other = client.post(
            "/api/login/email",
            json={"email": "x@x.com", "password": "p"},
            headers={"CF-Connecting-IP": "198.51.100.99"},
        )
        assert other.status_code == 401

    def test_spoofed_forwarding_headers_do_not_reset_the_limit(
        self, api_client: tuple[TestClient, UserStore]
    ) -> None:
        """A direct caller rotating CF-Connecting-IP still shares one budget."""
        client, _ = api_client
        codes = [
            client.post(
                "/api/login/email",
                json={"email": "x@x.com", "password": "p"},
                headers={"CF-Connecting-IP": f"10.0.0.{i}", "X-Forwarded-For": f"10.1.0.{i}"},
            ).status_code
            for i in range(15)
        ]
        assert codes[:10] == [401] * 10
        assert codes[10:] == [429] * 5

    def test_legacy_hash_migrated_on_login(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        legacy = hashlib.sha512(b"Abcd123!").hexdigest()
        store.create_user(User(id="legacy-1", email="old@x.com", name="Old", password_hash=legacy))

        resp = client.post("/api/login/email", json={"email": "old@x.com", "password": "Abcd123!"})
        assert resp.status_code == 200

        migrated = store.get_user_by_id("legacy-1").password_hash
        assert not is_legacy_hash(migrated)
        assert verify_password("Abcd123!", migrated)
        again = client.post("/api/login/email", json={"email": "old@x.com", "password": "Abcd123!"})
        assert again.status_code == 200

    def test_google_only_account_cannot_password_login(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        store.create_user(User(id="sub-9", email="g@x.com", name="G"))
        resp = client.post("/api/login/email", json={"email": "g@x.com", "password": "Abcd123!"})
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Google login and verify
# ---------------------------------------------------------------------------


class TestGoogleLogin:
    def test_login_creates_user_with_subject_id(self, api_client: tuple[TestClient, UserStore], make_id_token) -> None:
        client, store = api_client
        resp = client.post("/api/login/google", json={"credential": make_id_token(sub="g-123", email="gina@x.com")})
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["id"] == "g-123"
        assert body["user"]["email"] == "gina@x.com"
        assert store.get_user_by_id("g-123").password_hash is None

        status = client.get("/api/status", headers=_bearer(body["token"]))
        assert status.json()["user"]["email"] == "gina@x.com"

    def test_token_field_alias_accepted(self, api_client: tuple[TestClient, UserStore], make_id_token) -> None:
        client, _ = api_client
        assert client.post("/api/login/google", json={"token": make_id_token()}).status_code == 200

    def test_repeat_login_updates_profile(self, api_client: tuple[TestClient, UserStore], make_id_token) -> None:
        client, store = api_client
        client.post("/api/login/google", json={"credential": make_id_token(sub="g-1", name="Old Name")})
        client.post("/api/login/google", json={"credential": make_id_token(sub="g-1", name="New Name")})
        assert store.get_user_by_id("g-1").name == "New Name"

    def test_links_existing_email_account(self, api_client: tuple[TestClient, UserStore], make_id_token) -> None:
        client, store = api_client
        user_id = _signup(client).json()["user"]["id"]
        resp = client.post(
            "/api/login/google",
            json={"credential": make_id_token(sub="g-ann", email="ann@x.com", picture="https://img/new")},
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == user_id
        linked = store.get_user_by_id(user_id)
        assert linked.picture == "https://img/new"
        assert verify_password("Abcd123!", linked.password_hash)

    def test_unverified_email_cannot_take_over_account(
        self, api_client: tuple[TestClient, UserStore], make_id_token
    ) -> None:
        client, store = api_client
        user_id = _signup(client, email="victim@x.com", name="Victim").json()["user"]["id"]
        client.cookies.clear()
        token = make_id_token(sub="other-sub", email="victim@x.com", email_verified=False, name="Someone")
        resp = client.post("/api/login/google", json={"credential": token})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_email"
        assert "set-cookie" not in resp.headers
        assert store.get_user_by_id(user_id).name == "Victim"

    def test_missing_token_400(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        assert client.post("/api/login/google", json={}).status_code == 400
        assert client.post("/api/login/google", json={"credential": ""}).status_code == 400

    def test_invalid_tokens_get_one_generic_401(
        self, api_client: tuple[TestClient, UserStore], make_id_token, other_rsa_key
    ) -> None:
        client, store = api_client
        bad_tokens = [
            "garbage",
            make_id_token(exp=int(time.time()) - 5),
            make_id_token(aud="another-client"),
            make_id_token(iss="https://evil.example.com"),
            make_id_token(key=other_rsa_key),
            make_id_token(kid="unknown-kid"),
        ]
        bodies = []
        for token in bad_tokens:
            resp = client.post("/api/login/google", json={"credential": token})
            assert resp.status_code == 401
            bodies.append(resp.json())
        assert all(b == bodies[0] for b in bodies)
        assert bodies[0]["error"] == {"code": "login_failed", "message": "Login failed.", "details": None}
        assert store.get_user_by_email("ann@x.com") is None

    def test_verify_returns_profile_without_session(
        self, api_client: tuple[TestClient, UserStore], make_id_token
    ) -> None:
        client, store = api_client
        resp = client.post("/api/verify", json={"credential": make_id_token(name="Ann", sub="g-v")})
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "ann@x.com"
        assert "set-cookie" not in resp.headers
        assert store.get_user_by_id("g-v") is None

    def test_verify_rejects_bad_token(self, api_client: tuple[TestClient, UserStore], make_id_token) -> None:
        client, _ = api_client
        resp = client.post("/api/verify", json={"token": make_id_token(aud="wrong")})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Login failed."


# ---------------------------------------------------------------------------
# Session gate
# ---------------------------------------------------------------------------


class TestSessionGate:
    def test_status_without_token_401(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        assert client.get("/api/status").status_code == 401

    def test_fingerprint_mismatch_revokes_session(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        token = _signup(client).json()["token"]

        stolen = client.get("/api/status", headers={**_bearer(token), "User-Agent": "EvilBrowser/1.0"})
        assert stolen.status_code == 401
        assert stolen.json()["error"]["code"] == "session_security_violation"
        assert store.get_session_by_token(token) is None

        # The legitimate client is logged out too.
        assert client.get("/api/status", headers=_bearer(token)).status_code == 401

    def test_changed_ip_is_a_mismatch(self, api_client: tuple[TestClient, UserStore], behind_trusted_proxy) -> None:
        client, _ = api_client
        token = _signup(client, email="ip@x.com").json()["token"]
        resp = client.get("/api/status", headers={**_bearer(token), "X-Forwarded-For": "198.51.100.1"})
        assert resp.status_code == 401

    def test_forwarded_ip_from_untrusted_peer_is_ignored(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        token = _signup(client, email="ip@x.com").json()["token"]
        resp = client.get("/api/status", headers={**_bearer(token), "CF-Connecting-IP": "198.51.100.1"})
        assert resp.status_code == 200

    def test_proxy_chain_uses_rightmost_untrusted_hop(
        self, api_client: tuple[TestClient, UserStore], behind_trusted_proxy
    ) -> None:
        """A client-supplied first hop cannot pick the fingerprinted IP."""
        client, _ = api_client
        via_proxy = {"X-Forwarded-For": "203.0.113.7, 10.0.0.5"}
        resp = client.post("/api/signup/email", json={**SIGNUP, "email": "chain@x.com"}, headers=via_proxy)
        token = resp.json()["token"]
        forged = {"X-Forwarded-For": "198.51.100.1, 203.0.113.7, 10.0.0.5"}
        assert client.get("/api/status", headers={**_bearer(token), **forged}).status_code == 200

    def test_bearer_checked_before_cookie(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        _signup(client)  # cookie jar now holds Ann's session
        bob_token = _signup(client, email="bob@x.com", name="Bob").json()["token"]
        _signup(client, email="carol@x.com", name="Carol")  # cookie now Carol
        resp = client.get("/api/status", headers=_bearer(bob_token))
        assert resp.json()["user"]["email"] == "bob@x.com"

    def test_expired_cookie_is_cleared(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, store = api_client
        token = _signup(client).json()["token"]
        session = store.get_session_by_token(token)
        with store.engine.connect() as conn:
            conn.execute(
                text("UPDATE user_sessions SET expires_at = :t WHERE id = :id"),
                {"t": time.time() - 1, "id": session.id},
            )
            conn.commit()
        resp = client.get("/api/status")
        assert resp.status_code == 401
        assert "session_token=" in resp.headers["set-cookie"]
        assert "max-age=-1" in resp.headers["set-cookie"].lower()

    def test_store_outage_is_500_not_401(self, api_client: tuple[TestClient, UserStore], monkeypatch) -> None:
        client, store = api_client
        token = _signup(client).json()["token"]

        def _down(_token):
            raise StoreUnavailableError("database is locked")

        monkeypatch.setattr(store, "get_session_by_token", _down)
        resp = client.get("/api/status", headers=_bearer(token))
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "store_unavailable"
        assert "database is locked" not in resp.text
        assert "set-cookie" not in resp.headers

    def test_token_endpoint_ignores_bearer_header(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        token = _signup(client).json()["token"]
        client.cookies.clear()
        assert client.get("/api/token", headers=_bearer(token)).status_code == 401

    def test_logout_without_session_is_200(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = client.post("/api/logout")
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert "max-age=-1" in resp.headers["set-cookie"].lower()


# ---------------------------------------------------------------------------
# Site origin and form-encoded credentials
# ---------------------------------------------------------------------------


class TestSiteOrigin:
    def test_foreign_origin_rejected_on_every_login_route(
        self, api_client: tuple[TestClient, UserStore], make_id_token
    ) -> None:
        client, store = api_client
        foreign = {"Origin": "https://evil.example.com"}
        requests = [
            ("/api/signup/email", SIGNUP),
            ("/api/login/email", {"email": "ann@x.com", "password": "Abcd123!"}),
            ("/api/login/google", {"credential": make_id_token()}),
        ]
        for path, body in requests:
            resp = client.post(path, json=body, headers=foreign)
            assert resp.status_code == 403, path
            assert resp.json()["error"]["code"] == "unauthorized_origin"
            assert "set-cookie" not in resp.headers
        assert store.get_user_by_email("ann@x.com") is None

    def test_allowed_origin_accepted(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = client.post("/api/signup/email", json=SIGNUP, headers={"Origin": "https://fragrancecollect.com"})
        assert resp.status_code == 201

    def test_foreign_referer_rejected_when_origin_absent(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/login/email",
            json={"email": "ann@x.com", "password": "Abcd123!"},
            headers={"Referer": "https://evil.example.com/phish.html"},
        )
        assert resp.status_code == 403

    def test_allowed_referer_accepted(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/signup/email", json=SIGNUP, headers={"Referer": "https://www.fragrancecollect.com/auth.html"}
        )
        assert resp.status_code == 201

    def test_rejected_origin_does_not_spend_rate_limit(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        for _ in range(12):
            client.post("/api/login/email", json={"email": "a@x.com", "password": "p"}, headers={"Origin": "null"})
        assert client.post("/api/login/email", json={"email": "a@x.com", "password": "p"}).status_code == 401

    def test_google_redirect_form_post(self, api_client: tuple[TestClient, UserStore], make_id_token) -> None:
        client, store = api_client
        resp = client.post(
            "/api/login/google",
            data={"credential": make_id_token(sub="g-form"), "g_csrf_token": "abc"},
            headers={"Origin": "https://accounts.google.com"},
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == "g-form"
        assert store.get_user_by_id("g-form") is not None

    def test_google_origin_not_accepted_for_password_login(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/login/email",
            json={"email": "ann@x.com", "password": "Abcd123!"},
            headers={"Origin": "https://accounts.google.com"},
        )
        assert resp.status_code == 403

    def test_form_post_without_credential_400(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = client.post("/api/verify", data={"g_csrf_token": "abc"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"

    def test_invalid_json_body_400(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/login/google", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 400
