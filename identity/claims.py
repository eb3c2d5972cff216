"""
identity/claims.py -- Issuer, audience, and expiry checks for identity tokens.

Checks run in a fixed order and stop at the first violation:
  1. issuer   -- must be one of the provider's canonical issuer strings
  2. audience -- must equal our client ID exactly
  3. expiry   -- "exp" (epoch seconds) must be strictly greater than now;
                 exp == now is already expired

Issuer first: a foreign issuer is the cheapest and most common forgery signal.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import Any

from core.errors import InvalidAudienceError, InvalidIssuerError, TokenExpiredError

GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")


class ClaimsValidator:
    def __init__(
        self,
        issuers: Iterable[str] = GOOGLE_ISSUERS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.issuers = frozenset(issuers)
        self._clock = clock

    def validate(self, payload: dict[str, Any], expected_audience: str) -> None:
        """Raise the first claim violation found; return None when all checks pass."""
        issuer = payload.get("iss")
        if not isinstance(issuer, str) or issuer not in self.issuers:
            raise InvalidIssuerError(f"Invalid issuer: {issuer!r}")

        audience = payload.get("aud")
        if not expected_audience or audience != expected_audience:
            raise InvalidAudienceError(f"Invalid audience: {audience!r}")

        exp = payload.get("exp")
        # bool is an int subclass; a literal true is not a timestamp.
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise TokenExpiredError("Token has no usable expiry claim.")
        if exp <= self._clock():
            raise TokenExpiredError("Token has expired.")
