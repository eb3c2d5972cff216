"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the shape of a row.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A Fragrance Collect account.

    id is an opaque string: a random UUID for email signups, the provider's
    stable subject ("sub") for accounts first created by Google sign-in.

    email is unique and stored exactly as entered (case is preserved, and
    lookups are case-sensitive).

    password_hash is None for accounts that only ever signed in with Google.
    Stored forms are tagged by shape: "saltHex:hashHex" (PBKDF2) or a bare
    SHA-512 hex digest from the legacy scheme.
    """

    id: str
    email: str
    name: str | None = None
    picture: str | None = None
    password_hash: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def public_profile(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "picture": self.picture}


@dataclass
class Session:
    """A first-party login session, joined with its owner's public profile.

    expires_at and last_activity are epoch seconds (float). The session is
    active while expires_at > now; expires_at == now already counts as expired.

    fingerprint = sha256("<client_ip>:<user_agent>") hex, fixed at creation.
    """

    id: int | None
    user_id: str
    token: str
    expires_at: float
    fingerprint: str
    client_ip: str = "unknown"
    user_agent: str = "unknown"
    last_activity: float | None = None
    created_at: float | None = None
    # Owner profile (populated by the store's session/user join)
    email: str | None = None
    name: str | None = None
    picture: str | None = None

    def user_profile(self) -> dict:
        return {"id": self.user_id, "name": self.name, "email": self.email, "picture": self.picture}


@dataclass
class UserPreferences:
    """Per-user scent preferences (one row per user)."""

    user_id: str
    scent_categories: list[str] = field(default_factory=list)
    intensity: str | None = None
    season: str | None = None
    occasion: str | None = None
    budget_range: str | None = None
    sensitivities: str | None = None
    updated_at: str | None = None


@dataclass
class UserFavorite:
    """A saved fragrance. (user_id, fragrance_id) is unique."""

    user_id: str
    fragrance_id: str
    name: str
    id: int | None = None
    advertiser_name: str | None = None
    description: str | None = None
    image_url: str | None = None
    product_url: str | None = None
    price: float | None = None
    currency: str | None = None
    shipping_availability: str | None = None
    added_at: str | None = None
