"""
identity/service.py -- End-to-end verification of third-party identity tokens.

IdentityVerifier composes the identity/ building blocks in a fixed order:

    decode_token()            -> DecodedToken          (MalformedTokenError)
    KeyRing.resolve_key(kid)  -> Key                   (KeyNotFoundError)
    verify_signature()        -> bool                  (InvalidSignatureError)
    ClaimsValidator.validate()                         (InvalidIssuer/Audience, TokenExpired)
    _project()                -> NormalizedIdentity

The first failing step short-circuits. Whatever the cause, callers receive a
single VerificationFailedError; the specific reason is logged at WARNING and
kept on the exception's `reason` attribute for server-side diagnostics only.

The same verifier serves both the stateless POST /api/verify endpoint and the
session-creating POST /api/login/google endpoint.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from core.errors import (
    InvalidSignatureError,
    KeyNotFoundError,
    MalformedTokenError,
    TokenVerificationError,
    VerificationFailedError,
)
from identity.claims import GOOGLE_ISSUERS, ClaimsValidator
from identity.codec import decode_token
from identity.keyring import KeyRing
from identity.models import DecodedToken, NormalizedIdentity
from identity.signature import verify_signature

logger = logging.getLogger("fragrancecollect.identity")


class IdentityVerifier:
    """Verify identity tokens against one provider's key ring and audience.

    Usage:
        verifier = IdentityVerifier(ring, audience=settings.google_client_id)
        identity = await verifier.verify_identity_token(credential)
    """

    def __init__(
        self,
        keyring: KeyRing,
        audience: str,
        issuers: Iterable[str] = GOOGLE_ISSUERS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.keyring = keyring
        self.audience = audience
        self.claims = ClaimsValidator(issuers, clock=clock)

    async def verify_identity_token(self, token: str, expected_audience: str | None = None) -> NormalizedIdentity:
        """Return the verified identity or raise VerificationFailedError."""
        audience = self.audience if expected_audience is None else expected_audience
        try:
            return await self._verify(token, audience)
        except TokenVerificationError as exc:
            logger.warning("Identity token rejected: %s (%s)", exc.code, exc.message)
            raise VerificationFailedError(exc) from exc

    async def _verify(self, token: str, audience: str) -> NormalizedIdentity:
        decoded = decode_token(token)

        key_id = decoded.key_id
        if key_id is None:
            raise KeyNotFoundError("Token header has no key ID.")
        key = await self.keyring.resolve_key(key_id)
        if key is None:
            raise KeyNotFoundError(f"No signing key for key ID {key_id!r}.")

        if not verify_signature(key, decoded.signature, decoded.signing_input, decoded.algorithm):
            raise InvalidSignatureError("Token signature does not match.")

        self.claims.validate(decoded.payload, audience)
        return _project(decoded)


def _project(decoded: DecodedToken) -> NormalizedIdentity:
    payload: dict[str, Any] = decoded.payload
    email = payload.get("email")
    if not isinstance(email, str) or not email:
        raise MalformedTokenError("Token payload has no email claim.")
    sub = payload.get("sub")
    return NormalizedIdentity(
        email=email,
        name=_optional_str(payload.get("name")),
        picture=_optional_str(payload.get("picture")),
        subject=str(sub) if sub is not None else None,
        email_verified=payload.get("email_verified") in (True, "true"),
    )


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None
