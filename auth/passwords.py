"""
auth/passwords.py -- Password hashing, verification, and complexity policy.

Stored forms:
  "saltHex:hashHex"  current scheme. PBKDF2-HMAC-SHA512, 100,000 iterations,
                     16-byte random salt, 64-byte (512-bit) derived key.
  "<128 hex chars>"  legacy scheme. A single unsalted SHA-512 digest. Any
                     stored form without ":" is treated as legacy.

verify_and_update() follows passlib's CryptContext.verify_and_update()
contract: it returns (matched, replacement_hash). replacement_hash is a fresh
PBKDF2 form when a legacy hash matched, else None. The caller persists it,
so each legacy account is migrated on its first successful login.

Every digest comparison goes through hmac.compare_digest.

validate_password_complexity() reports every violated rule, not just the
first. It is applied at signup, before hashing.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

ITERATIONS = 100_000
SALT_BYTES = 16
KEY_BYTES = 64
_HASH_NAME = "sha512"

MIN_PASSWORD_LENGTH = 8
SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def _derive(plain: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac(_HASH_NAME, plain.encode("utf-8"), salt, ITERATIONS, dklen=KEY_BYTES)


def hash_password(plain: str) -> str:
    """Return the salted PBKDF2 stored form of plain."""
    salt = secrets.token_bytes(SALT_BYTES)
    return f"{salt.hex()}:{_derive(plain, salt).hex()}"


def is_legacy_hash(stored: str) -> bool:
    return ":" not in stored


def verify_password(plain: str, stored: str) -> bool:
    """Return True if plain matches stored (either scheme). Never raises on bad input."""
    if not stored:
        return False
    if is_legacy_hash(stored):
        digest = hashlib.sha512(plain.encode("utf-8")).hexdigest()
        return hmac.compare_digest(digest, stored.lower())

    salt_hex, _, hash_hex = stored.partition(":")
    try:
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(hash_hex)
    except ValueError:
        return False
    if not salt or len(expected) != KEY_BYTES:
        return False
    return hmac.compare_digest(_derive(plain, salt), expected)


def verify_and_update(plain: str, stored: str) -> tuple[bool, str | None]:
    """Verify plain against stored; also return a replacement hash for legacy forms.

    Returns:
        (False, None)      no match
        (True, None)       match, stored form is current
        (True, new_hash)   match against a legacy hash -- persist new_hash
    """
    if not verify_password(plain, stored):
        return False, None
    if is_legacy_hash(stored):
        return True, hash_password(plain)
    return True, None


# Timing equalization: account lookups that find no password still pay for
# one full PBKDF2 derivation, so response time does not reveal whether an
# email is registered.
_DUMMY_HASH: str = hash_password("fragrancecollect_timing_dummy")


def burn_verify(plain: str) -> None:
    """Run a verification whose result is discarded."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def validate_password_complexity(password: str) -> list[str]:
    """Return a message for every rule password violates. Empty list means acceptable."""
    errors: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not any(c.isascii() and c.isupper() for c in password):
        errors.append("Password must contain at least one uppercase letter")
    if not any(c.isascii() and c.islower() for c in password):
        errors.append("Password must contain at least one lowercase letter")
    if not any(c.isascii() and c.isdigit() for c in password):
        errors.append("Password must contain at least one number")
    if not any(c in SPECIAL_CHARACTERS for c in password):
        errors.append("Password must contain at least one special character")
    return errors
