"""
tests/conftest.py -- Shared test fixtures for the Fragrance Collect auth service.

This module provides:
  - rsa_key / public_jwk: a throwaway RS256 signing key and its JWK form
  - make_id_token: mints Google-style ID tokens signed with rsa_key
  - certs_endpoint: a fake Google certificate endpoint (httpx.MockTransport)
  - store: an isolated in-memory UserStore
  - api_client: (TestClient, UserStore) wired through a patched lifespan
  - behind_trusted_proxy: lets tests set CF-Connecting-IP / X-Forwarded-For

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because route handlers reach the store from worker threads
(asyncio.to_thread). Plain :memory: DBs are per-connection and would present
a blank schema to each thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process. Every fixture uses a fresh name.

The TestClient talks to https://testserver because the session cookie is
Secure; httpx does not send Secure cookies over plain http.

DEBUG and GOOGLE_CLIENT_ID must be set before any core/auth/api import so
get_settings() does not refuse to start.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any project import -- get_settings() is cached on first use.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jose import jwk, jwt

from api.limiter import limiter
from api.main import app
from auth.accounts import AccountService
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings
from identity.keyring import KeyRing
from identity.service import IdentityVerifier

TEST_CLIENT_ID = "test-client-id.apps.googleusercontent.com"
TEST_KID = "test-key-1"
CERTS_URL = "https://certs.example.test/oauth2/v3/certs"


# ---------------------------------------------------------------------------
# Signing keys and token minting
# ---------------------------------------------------------------------------


def _generate_private_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def public_jwk_for(private_pem: str, kid: str) -> dict:
    """Return the public half of private_pem as a JWK dict with the given kid."""
    data = jwk.construct(private_pem, algorithm="RS256").public_key().to_dict()
    data["kid"] = kid
    data["use"] = "sig"
    return data


@pytest.fixture(scope="session")
def rsa_key() -> str:
    """PEM-encoded RSA private key shared by the whole test session."""
    return _generate_private_pem()


@pytest.fixture(scope="session")
def other_rsa_key() -> str:
    """A second, unrelated private key -- for forged-signature tests."""
    return _generate_private_pem()


@pytest.fixture(scope="session")
def public_jwk(rsa_key: str) -> dict:
    return public_jwk_for(rsa_key, TEST_KID)


def default_claims(**overrides) -> dict:
    now = int(time.time())
    claims = {
        "iss": "https://accounts.google.com",
        "aud": TEST_CLIENT_ID,
        "sub": "1122334455",
        "email": "ann@x.com",
        "email_verified": True,
        "name": "Ann Example",
        "picture": "https://lh3.googleusercontent.com/a/ann",
        "iat": now,
        "exp": now + 3600,
    }
    claims.update(overrides)
    return claims


@pytest.fixture(scope="session")
def make_id_token(rsa_key: str) -> Callable[..., str]:
    """Return a factory: make_id_token(kid=..., key=..., **claim_overrides) -> compact token."""

    def _make(kid: str | None = TEST_KID, key: str | None = None, **overrides) -> str:
        headers = {"kid": kid} if kid is not None else None
        return jwt.encode(default_claims(**overrides), key or rsa_key, algorithm="RS256", headers=headers)

    return _make


# ---------------------------------------------------------------------------
# Fake certificate endpoint
# ---------------------------------------------------------------------------


class FakeCertsEndpoint:
    """Serves a JWKS document through httpx.MockTransport and counts requests.

    Set `status` to a non-200 code, or `error` to an httpx exception instance,
    to simulate provider outages. Replace `keys` to simulate key rotation.
    """

    def __init__(self, keys: list[dict]) -> None:
        self.keys = list(keys)
        self.calls = 0
        self.status = 200
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.status != 200:
            return httpx.Response(self.status, text="unavailable")
        return httpx.Response(200, json={"keys": self.keys})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture()
def certs_endpoint(public_jwk: dict) -> FakeCertsEndpoint:
    return FakeCertsEndpoint([public_jwk])


@pytest.fixture()
def keyring(certs_endpoint: FakeCertsEndpoint) -> KeyRing:
    return KeyRing(CERTS_URL, http_client=certs_endpoint.client())


@pytest.fixture()
def verifier(keyring: KeyRing) -> IdentityVerifier:
    return IdentityVerifier(keyring, audience=TEST_CLIENT_ID)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_store() -> UserStore:
    """Create an isolated named shared-memory SQLite store."""
    return UserStore(db_url=f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


@pytest.fixture()
def store() -> Generator[UserStore, None, None]:
    user_store = make_test_store()
    yield user_store
    user_store.close()


def _patch_lifespan(user_store: UserStore, keyring: KeyRing):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and a key ring backed by the fake certificate
    endpoint into app.state, so no test touches the real database or Google.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        verifier = IdentityVerifier(keyring, audience=TEST_CLIENT_ID)
        session_manager = SessionManager(user_store)
        app.state.user_store = user_store
        app.state.keyring = keyring
        app.state.verifier = verifier
        app.state.session_manager = session_manager
        app.state.accounts = AccountService(user_store, session_manager, verifier)
        yield

    return test_lifespan


@pytest.fixture()
def behind_trusted_proxy(monkeypatch: pytest.MonkeyPatch) -> None:
    """Treat the TestClient peer ("testclient") as a trusted reverse proxy."""
    monkeypatch.setattr(get_settings(), "trusted_proxies", ["testclient", "10.0.0.0/8"])


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """Rate-limit counters are process-wide; start every test with a clean slate."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture()
def api_client(store: UserStore, keyring: KeyRing) -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, store) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, middleware, and exception handlers against an
    isolated store.
    """
    app.router.lifespan_context = _patch_lifespan(store, keyring)
    with TestClient(app, base_url="https://testserver", raise_server_exceptions=True) as client:
        yield client, store
