"""
identity/keyring.py -- Process-wide cache of the identity provider's signing keys.

KeyRing maps key ID (kid) -> imported RS256 verification key, plus the time of
the last successful bulk fetch from the provider's certificate endpoint.

Refresh rules:
  - When the TTL (default 1 hour) has elapsed since the last bulk fetch, the
    whole cache is cleared before the lookup. A key is never served past its
    TTL without a refresh attempt.
  - On a miss for an unseen kid, the complete key set is fetched again and
    replaces the cache wholesale. This is what absorbs provider key rotation.
  - A failed fetch (network error, timeout, non-2xx, bad JSON) is not retried
    within the same call and yields None -- callers fail closed.

Concurrency:
  One KeyRing instance is shared by every request in the process. Concurrent
  misses are serialised by an asyncio.Lock so only one bulk fetch is in
  flight; waiters re-check the cache once they get the lock.

  The cache is per process. Horizontally scaled deployments keep one
  independent key ring per instance.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx
from jose import jwk
from jose.backends.base import Key
from jose.exceptions import JOSEError

logger = logging.getLogger("fragrancecollect.identity.keyring")

_ALGORITHM = "RS256"


class KeyRing:
    """Cache of verification keys fetched from a JWKS-style certificate endpoint.

    Usage:
        ring = KeyRing("https://www.googleapis.com/oauth2/v3/certs")
        key = await ring.resolve_key(header_kid)   # Key or None
        await ring.close()
    """

    def __init__(
        self,
        certs_url: str,
        *,
        ttl_seconds: float = 3600,
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.certs_url = certs_url
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._keys: dict[str, Key] = {}
        self._last_fetch: float | None = None
        self._lock = asyncio.Lock()
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve_key(self, key_id: str) -> Key | None:
        """Return the verification key for key_id, or None if it cannot be found."""
        self._expire_if_stale()

        key = self._keys.get(key_id)
        if key is not None:
            return key

        async with self._lock:
            # Another request may have refreshed while we waited.
            key = self._keys.get(key_id)
            if key is not None:
                return key
            await self.refresh()
            key = self._keys.get(key_id)

        if key is None:
            logger.warning("Key ID %r not found after refresh (cached kids: %s)", key_id, self.key_ids)
        return key

    async def refresh(self) -> bool:
        """Fetch the full key set and replace the cache. Returns False on failure."""
        try:
            keys_data = await self._fetch_key_set()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Could not fetch signing keys from %s: %s", self.certs_url, exc)
            return False

        new_keys: dict[str, Key] = {}
        for key_data in keys_data:
            imported = _import_key(key_data)
            if imported is not None:
                new_keys[key_data["kid"]] = imported

        self._keys = new_keys
        self._last_fetch = self._clock()
        logger.info("Signing key cache refreshed (%d keys: %s)", len(new_keys), self.key_ids)
        return True

    def clear(self) -> None:
        """Drop every cached key and forget the last fetch time."""
        self._keys = {}
        self._last_fetch = None

    @property
    def key_ids(self) -> list[str]:
        return sorted(self._keys)

    async def close(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _expire_if_stale(self) -> None:
        if self._last_fetch is None:
            return
        if self._clock() - self._last_fetch >= self.ttl_seconds:
            logger.debug("Signing key cache TTL elapsed -- clearing")
            self.clear()

    async def _fetch_key_set(self) -> list[dict[str, Any]]:
        resp = await self._http_client.get(self.certs_url, timeout=self.timeout_seconds)
        resp.raise_for_status()
        body = resp.json()
        keys = body.get("keys") if isinstance(body, dict) else None
        if not isinstance(keys, list):
            raise ValueError("certificate response has no 'keys' list")
        return [k for k in keys if isinstance(k, dict)]


def _import_key(key_data: dict[str, Any]) -> Key | None:
    """Import one JWK as an RS256 verification key. Returns None if unusable."""
    kid = key_data.get("kid")
    if not kid or not isinstance(kid, str):
        logger.warning("Skipping signing key without 'kid'")
        return None
    if key_data.get("kty") != "RSA":
        logger.warning("Skipping non-RSA signing key %s (kty=%s)", kid, key_data.get("kty"))
        return None
    try:
        return jwk.construct(key_data, algorithm=_ALGORITHM)
    except (JOSEError, ValueError, TypeError) as exc:
        logger.warning("Could not import signing key %s: %s", kid, exc)
        return None
