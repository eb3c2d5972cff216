"""
core/errors.py -- Error taxonomy for identity verification and sessions.

Every error carries a stable machine-readable `code` and the HTTP status the
API layer maps it to. The API exception handler renders all of them through
the same envelope, so route handlers simply raise.

Status classes:
  400  MalformedTokenError, WeakPasswordError
  401  token verification failures, InvalidCredentialsError,
       UnauthenticatedError, SessionSecurityViolationError
  409  DuplicateUserError
  429  RateLimitedError
  500  StoreUnavailableError -- an outage, never reported as "unauthenticated"

Token verification errors keep their detailed reason for server-side logs.
The identity service wraps them in VerificationFailedError, whose public
message is deliberately identical for every cause.

Layer rule: core/ is the kernel. No imports from api/, auth/, or identity/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth core."""

    code: str = "auth_error"
    http_status: int = 400
    public_message: str = "Authentication error."

    def __init__(self, message: str | None = None, *, details: object = None) -> None:
        self.message = message or self.public_message
        self.details = details
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Third-party identity token verification
# ---------------------------------------------------------------------------


class TokenVerificationError(AuthError):
    code = "token_invalid"
    http_status = 401
    public_message = "Token verification failed."


class MalformedTokenError(TokenVerificationError):
    code = "malformed_token"


class KeyNotFoundError(TokenVerificationError):
    code = "key_not_found"


class InvalidSignatureError(TokenVerificationError):
    code = "invalid_signature"


class InvalidIssuerError(TokenVerificationError):
    code = "invalid_issuer"


class InvalidAudienceError(TokenVerificationError):
    code = "invalid_audience"


class TokenExpiredError(TokenVerificationError):
    code = "token_expired"


class VerificationFailedError(AuthError):
    """Uniform wrapper for any verification failure.

    `reason` holds the underlying error for diagnostics. Clients only ever
    see `public_message`.
    """

    code = "login_failed"
    http_status = 401
    public_message = "Login failed."

    def __init__(self, reason: TokenVerificationError) -> None:
        self.reason = reason
        super().__init__(self.public_message)

    def __str__(self) -> str:
        return f"{self.public_message} ({self.reason.code}: {self.reason.message})"


# ---------------------------------------------------------------------------
# First-party credentials and sessions
# ---------------------------------------------------------------------------


class InvalidCredentialsError(AuthError):
    code = "bad_credentials"
    http_status = 401
    public_message = "Invalid email or password."


class UnauthenticatedError(AuthError):
    code = "not_authenticated"
    http_status = 401
    public_message = "Not authenticated."


class SessionSecurityViolationError(AuthError):
    """Fingerprint mismatch. The session has already been revoked when this is raised."""

    code = "session_security_violation"
    http_status = 401
    public_message = "Session security validation failed."


class UnauthorizedOriginError(AuthError):
    """Login or signup posted from a page outside settings.allowed_origins."""

    code = "unauthorized_origin"
    http_status = 403
    public_message = "Unauthorized origin."


class DuplicateUserError(AuthError):
    code = "duplicate_email"
    http_status = 409
    public_message = "A user with this email already exists."


class WeakPasswordError(AuthError):
    """Password rejected by policy. `details` lists every violated rule."""

    code = "weak_password"
    http_status = 400
    public_message = "Password does not meet complexity requirements."

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(self.public_message, details=errors)


class RateLimitedError(AuthError):
    code = "rate_limited"
    http_status = 429
    public_message = "Too many requests."


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class StoreUnavailableError(AuthError):
    code = "store_unavailable"
    http_status = 500
    public_message = "The service is temporarily unavailable."
