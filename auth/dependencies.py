"""
auth/dependencies.py -- FastAPI Depends() helpers for sessions.

Token transport, checked in order:
  1. Authorization: Bearer <token> header -- cross-origin API clients.
  2. "session_token" cookie               -- browsers (HttpOnly, SameSite=None).
The first one that yields a non-empty token wins.

Site origin:
  require_site_origin() guards the login and signup POSTs. The Origin header
  (or, without one, the Referer's scheme://host) must be in
  settings.allowed_origins; CORS alone does not stop the request being sent.

Client context (used for the session fingerprint and the rate-limit key):
  IP:         the socket peer address. When the peer is a trusted proxy
              (settings.trusted_proxies): CF-Connecting-IP, else the rightmost
              X-Forwarded-For hop that is not itself a trusted proxy.
  User-Agent: the header, or "unknown".

get_current_session() is the gate for every session-dependent route. It runs
the fingerprint check before the route body executes; a mismatch revokes the
session and raises SessionSecurityViolationError (401).

Errors are raised as core.errors.AuthError subclasses. api/main.py renders
them through the shared error envelope.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request/Response) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import ipaddress
import logging
from urllib.parse import urlsplit

from fastapi import Request, Response

from auth.models import Session
from auth.sessions import SessionManager
from core.config import get_settings
from core.errors import UnauthenticatedError, UnauthorizedOriginError

logger = logging.getLogger("fragrancecollect.auth")

_BEARER_PREFIX = "Bearer "


# ---------------------------------------------------------------------------
# Client context
# ---------------------------------------------------------------------------


def _is_trusted_proxy(host: str, trusted: list[str]) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        address = None
    for entry in trusted:
        if entry == host:
            return True
        if address is None:
            continue
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def client_ip(request: Request) -> str:
    """Best-effort client IP. Also the slowapi key function (see api/limiter.py).

    Forwarding headers are only read when the socket peer is listed in
    settings.trusted_proxies.
    """
    peer = request.client.host if request.client and request.client.host else "unknown"
    trusted = get_settings().trusted_proxies
    if not trusted or not _is_trusted_proxy(peer, trusted):
        return peer

    cf_ip = request.headers.get("CF-Connecting-IP", "").strip()
    if cf_ip:
        return cf_ip
    # Rightmost hop not added by one of our own proxies.
    hops = [hop.strip() for hop in request.headers.get("X-Forwarded-For", "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if not _is_trusted_proxy(hop, trusted):
            return hop
    return hops[0] if hops else peer


def user_agent(request: Request) -> str:
    return request.headers.get("User-Agent") or "unknown"


def request_origin(request: Request) -> str | None:
    """Return the page origin from the Origin header, else from the Referer.

    Returns None when neither header is present, and "" when the Referer
    cannot be reduced to scheme://host.
    """
    origin = request.headers.get("Origin")
    if origin:
        return origin
    referer = request.headers.get("Referer")
    if not referer:
        return None
    parts = urlsplit(referer)
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def _check_origin(request: Request, allowed: list[str]) -> None:
    origin = request_origin(request)
    if origin is None:
        return
    if origin not in allowed:
        logger.warning("Rejected %s from unauthorized origin %r", request.url.path, origin)
        raise UnauthorizedOriginError()


def require_site_origin(request: Request) -> None:
    """Reject credential-bearing POSTs sent from pages on other sites.

    Requests with neither Origin nor Referer (curl, server-to-server) pass.

    Raises:
        UnauthorizedOriginError  origin not in settings.allowed_origins (403)
    """
    _check_origin(request, get_settings().allowed_origins)


def require_google_login_origin(request: Request) -> None:
    """Like require_site_origin, but Google's redirect-mode form POST is also accepted."""
    settings = get_settings()
    _check_origin(request, [*settings.allowed_origins, *settings.google_redirect_origins])


# ---------------------------------------------------------------------------
# Token extraction
# ---------------------------------------------------------------------------


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith(_BEARER_PREFIX):
        token = auth_header[len(_BEARER_PREFIX) :].strip()
        return token or None
    return None


def cookie_token(request: Request) -> str | None:
    return request.cookies.get(get_settings().session_cookie_name) or None


def extract_session_token(request: Request) -> str | None:
    """Return the session token from the Bearer header, else from the cookie."""
    return bearer_token(request) or cookie_token(request)


# ---------------------------------------------------------------------------
# Session gate
# ---------------------------------------------------------------------------


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


async def get_current_session(request: Request) -> Session:
    """Require an active, fingerprint-intact session.

    Use as a FastAPI dependency:
        @router.get("/api/user/preferences")
        async def route(session: Session = Depends(get_current_session)): ...

    Raises:
        UnauthenticatedError           no token, unknown token, or expired session
        SessionSecurityViolationError  fingerprint mismatch (session already deleted)
    """
    token = extract_session_token(request)
    if not token:
        raise UnauthenticatedError()

    manager = get_session_manager(request)
    session = await manager.validate(token, client_ip(request), user_agent(request))
    if session is None:
        raise UnauthenticatedError("Invalid or expired session.")

    await manager.touch(token)
    return session


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response: Response, token: str) -> None:
    """Write the session token as an HttpOnly cookie on the response.

    samesite="none": the storefront and the auth API live on different
        origins, so the cookie must travel on credentialed cross-site requests.
        Browsers only accept SameSite=None together with Secure.
    max_age: matches the server-side session lifetime.
    """
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_seconds,
        path="/",
        httponly=True,
        secure=settings.secure_cookies,
        samesite="none",
    )


def clear_session_cookie(response: Response) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        value="",
        max_age=-1,
        path="/",
        httponly=True,
        secure=settings.secure_cookies,
        samesite="none",
    )
