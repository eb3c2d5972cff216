"""
identity/signature.py -- RS256 signature check over the original signing input.

The signed bytes are the first two token segments exactly as received
(DecodedToken.signing_input). Re-encoding the parsed header/payload could
change key order or whitespace and break verification.

verify_signature() returns False for an ordinary mismatch. An unsupported
algorithm or an unusable key raises InvalidSignatureError instead, so callers
can tell "forged" from "misconfigured" in their logs.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

from jose.backends.base import Key
from jose.exceptions import JOSEError

from core.errors import InvalidSignatureError

SUPPORTED_ALGORITHM = "RS256"


def verify_signature(
    key: Key,
    signature: bytes,
    signing_input: bytes,
    algorithm: str | None = SUPPORTED_ALGORITHM,
) -> bool:
    """Return True if signature is a valid RS256 signature of signing_input under key."""
    if algorithm != SUPPORTED_ALGORITHM:
        raise InvalidSignatureError(f"Unsupported token algorithm: {algorithm!r}")
    if not signature:
        return False
    try:
        return bool(key.verify(signing_input, signature))
    except (JOSEError, ValueError, TypeError, AttributeError) as exc:
        raise InvalidSignatureError(f"Verification key is unusable: {exc}") from exc
