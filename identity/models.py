"""
identity/models.py -- Data classes for decoded and verified identity tokens.

Pattern: Data class (pure data container, zero logic). The codec produces a
DecodedToken; the identity service produces a NormalizedIdentity.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class DecodedToken:
    """Untrusted, syntactically decoded compact token.

    signing_input is the ASCII bytes of the first two segments exactly as
    received ("<header>.<payload>"). Signatures are checked against these
    bytes, never against a re-serialization of header/payload.
    """

    header: dict[str, Any]
    payload: dict[str, Any]
    signature: bytes
    signing_input: bytes

    @property
    def key_id(self) -> str | None:
        kid = self.header.get("kid")
        return kid if isinstance(kid, str) else None

    @property
    def algorithm(self) -> str | None:
        alg = self.header.get("alg")
        return alg if isinstance(alg, str) else None


@dataclass(frozen=True)
class NormalizedIdentity:
    """Profile fields projected from a verified identity token.

    subject is the provider's stable user ID ("sub"). email_verified is kept
    for callers that want to refuse unverified addresses.
    """

    email: str
    name: str | None = None
    picture: str | None = None
    subject: str | None = None
    email_verified: bool = False

    def public_profile(self) -> dict[str, str | None]:
        return {"name": self.name, "email": self.email, "picture": self.picture}
