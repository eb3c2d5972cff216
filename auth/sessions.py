"""
auth/sessions.py -- Session Manager: create, resolve, fingerprint, touch, revoke.

Every login method (email/password, Google) ends in create_session(); nothing
else issues first-party tokens.

Session states:
  Active   row exists, expires_at > now, fingerprint intact
  Expired  row exists, expires_at <= now. Not an error: resolve_session()
           simply returns None. Rows are swept lazily on the owner's next
           login (or removed by logout).
  Revoked  row deleted. Terminal. Reached by logout or by a fingerprint
           mismatch on any authenticated request.

Fingerprint:
  sha256("<client_ip>:<user_agent>") as hex, computed at creation and
  recomputed from the current request on every check. A mismatch is a
  security violation: validate() deletes the session before raising, so a
  stolen token is useless from a different client and the owner must
  log in again.

All store calls run in a worker thread via asyncio.to_thread -- UserStore is
synchronous SQLAlchemy and must not block the event loop.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable

from auth.models import Session
from auth.store import UserStore
from core.errors import SessionSecurityViolationError, StoreUnavailableError

logger = logging.getLogger("fragrancecollect.sessions")

DEFAULT_SESSION_TTL_SECONDS = 24 * 60 * 60
_TOKEN_BYTES = 32


def compute_fingerprint(client_ip: str, user_agent: str) -> str:
    """Return the hex fingerprint binding a session to one client context."""
    return hashlib.sha256(f"{client_ip}:{user_agent}".encode("utf-8")).hexdigest()


class SessionManager:
    """Async facade over UserStore's session table.

    Usage:
        manager = SessionManager(store)
        token = await manager.create_session(user.id, ip, ua)
        session = await manager.validate(token, ip, ua)   # None if absent/expired
        await manager.revoke(token)
    """

    def __init__(
        self,
        store: UserStore,
        ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    async def create_session(self, user_id: str, client_ip: str, user_agent: str) -> str:
        """Issue a new session for user_id and return its token.

        The user's already-expired sessions are swept first. Live sessions on
        other devices are left alone.
        """
        now = self._clock()
        swept = await asyncio.to_thread(self.store.delete_expired_sessions, user_id, now)
        if swept:
            logger.debug("Swept %d expired session(s) for user %s", swept, user_id)

        token = secrets.token_urlsafe(_TOKEN_BYTES)
        session = Session(
            id=None,
            user_id=user_id,
            token=token,
            expires_at=now + self.ttl_seconds,
            fingerprint=compute_fingerprint(client_ip, user_agent),
            client_ip=client_ip,
            user_agent=user_agent,
            created_at=now,
            last_activity=now,
        )
        await asyncio.to_thread(self.store.create_session, session)
        logger.info("Session created for user %s", user_id)
        return token

    async def resolve_session(self, token: str) -> Session | None:
        """Return the active session for token, or None if it is absent or expired."""
        if not token:
            return None
        session = await asyncio.to_thread(self.store.get_session_by_token, token)
        if session is None:
            return None
        if session.expires_at <= self._clock():
            return None
        return session

    def check_fingerprint(self, session: Session, client_ip: str, user_agent: str) -> bool:
        """Return True if the current client context matches the one the session was created in."""
        return hmac.compare_digest(session.fingerprint, compute_fingerprint(client_ip, user_agent))

    async def validate(self, token: str, client_ip: str, user_agent: str) -> Session | None:
        """Resolve token and enforce the fingerprint binding.

        Returns None when there is no active session. Raises
        SessionSecurityViolationError, after deleting the session, when the
        fingerprint does not match.
        """
        session = await self.resolve_session(token)
        if session is None:
            return None
        if not self.check_fingerprint(session, client_ip, user_agent):
            await self.revoke(token)
            logger.warning("Session fingerprint mismatch for user %s -- session revoked", session.user_id)
            raise SessionSecurityViolationError()
        return session

    async def touch(self, token: str) -> None:
        """Record activity on the session. Best-effort: failures are logged, not raised."""
        try:
            await asyncio.to_thread(self.store.touch_session, token, self._clock())
        except StoreUnavailableError:
            logger.warning("Could not update session last_activity")

    async def revoke(self, token: str) -> None:
        """Delete the session. Revoking an unknown token is not an error."""
        if not token:
            return
        await asyncio.to_thread(self.store.delete_session, token)
