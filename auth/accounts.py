"""
auth/accounts.py -- Account service: turn credentials into a session.

Three entry points, one exit:
  signup_email()  name/email/password -> new User  -> create_session()
  login_email()   email/password      -> User      -> create_session()
  login_google()  identity token      -> User      -> create_session()

Email login:
  Unknown emails and Google-only accounts (no password_hash) still pay for a
  full PBKDF2 verification against a dummy hash, so timing does not reveal
  which emails are registered. Both cases raise the same
  InvalidCredentialsError as a wrong password.

  A match against a legacy unsalted hash rewrites the stored hash to the
  PBKDF2 form before the session is issued.

Google login (upsert):
  1. user with id == token "sub"        -> refresh name/picture
  2. else user with the token's email   -> link: refresh name/picture, only if
                                           the provider marks the email verified;
                                           otherwise DuplicateUserError (409)
  3. else create a user with id = "sub"

Signup uniqueness:
  The email pre-check gives a friendly 409 in the common case. The UNIQUE
  constraint in auth/store.py closes the race between two concurrent signups;
  its IntegrityError is mapped to the same DuplicateUserError.

PBKDF2 and all store calls run in worker threads (asyncio.to_thread).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.passwords import burn_verify, hash_password, validate_password_complexity, verify_and_update
from auth.sessions import SessionManager
from auth.store import UserStore
from core.errors import DuplicateUserError, InvalidCredentialsError, WeakPasswordError
from identity.models import NormalizedIdentity
from identity.service import IdentityVerifier

logger = logging.getLogger("fragrancecollect.accounts")


class AccountService:
    """Account operations that end in a freshly issued session token.

    Usage:
        accounts = AccountService(store, session_manager, verifier)
        user, token = await accounts.login_email(email, password, ip, ua)
    """

    def __init__(self, store: UserStore, sessions: SessionManager, verifier: IdentityVerifier | None = None) -> None:
        self.store = store
        self.sessions = sessions
        self.verifier = verifier

    # ------------------------------------------------------------------
    # Email + password
    # ------------------------------------------------------------------

    async def signup_email(
        self, name: str, email: str, password: str, client_ip: str, user_agent: str
    ) -> tuple[User, str]:
        errors = validate_password_complexity(password)
        if errors:
            raise WeakPasswordError(errors)

        existing = await asyncio.to_thread(self.store.get_user_by_email, email)
        if existing is not None:
            raise DuplicateUserError()

        password_hash = await asyncio.to_thread(hash_password, password)
        user = User(id=str(uuid.uuid4()), email=email, name=name, password_hash=password_hash)
        try:
            user = await asyncio.to_thread(self.store.create_user, user)
        except IntegrityError as exc:
            raise DuplicateUserError() from exc

        logger.info("New email account created: %s", user.id)
        token = await self.sessions.create_session(user.id, client_ip, user_agent)
        return user, token

    async def login_email(self, email: str, password: str, client_ip: str, user_agent: str) -> tuple[User, str]:
        user = await asyncio.to_thread(self.store.get_user_by_email, email)
        if user is None or not user.password_hash:
            await asyncio.to_thread(burn_verify, password)
            raise InvalidCredentialsError()

        matched, new_hash = await asyncio.to_thread(verify_and_update, password, user.password_hash)
        if not matched:
            logger.info("Failed email login for user %s", user.id)
            raise InvalidCredentialsError()

        if new_hash is not None:
            await asyncio.to_thread(self.store.update_password_hash, user.id, new_hash)
            user.password_hash = new_hash
            logger.info("Migrated legacy password hash for user %s", user.id)

        token = await self.sessions.create_session(user.id, client_ip, user_agent)
        return user, token

    # ------------------------------------------------------------------
    # Google sign-in
    # ------------------------------------------------------------------

    async def login_google(self, credential: str, client_ip: str, user_agent: str) -> tuple[User, str]:
        """Verify a Google ID token, upsert its user, and issue a session.

        Raises VerificationFailedError (uniform 401) for any token problem.
        """
        if self.verifier is None:
            raise RuntimeError("AccountService was built without an IdentityVerifier")
        identity = await self.verifier.verify_identity_token(credential)
        user = await asyncio.to_thread(self._upsert_identity_user, identity)
        token = await self.sessions.create_session(user.id, client_ip, user_agent)
        return user, token

    def _upsert_identity_user(self, identity: NormalizedIdentity) -> User:
        user = self.store.get_user_by_id(identity.subject) if identity.subject else None
        if user is None:
            user = self.store.get_user_by_email(identity.email)
            if user is not None and not identity.email_verified:
                # The provider has not confirmed this address belongs to the token holder.
                logger.warning("Refused to link unverified Google email to existing user %s", user.id)
                raise DuplicateUserError()

        if user is not None:
            self.store.update_user(user.id, name=identity.name or user.name, picture=identity.picture)
            user.name = identity.name or user.name
            user.picture = identity.picture
            return user

        user = User(
            id=identity.subject or str(uuid.uuid4()),
            email=identity.email,
            name=identity.name,
            picture=identity.picture,
        )
        try:
            created = self.store.create_user(user)
        except IntegrityError:
            # A concurrent login for the same account won the insert.
            existing = self.store.get_user_by_email(identity.email)
            if existing is None:
                raise
            if existing.id != user.id and not identity.email_verified:
                raise DuplicateUserError() from None
            return existing
        logger.info("New Google account created: %s", created.id)
        return created
