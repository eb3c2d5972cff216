"""
api/routes/auth.py -- Login, signup, and session REST endpoints.

Routes (mounted under /api):
  POST /api/signup/email   -- create email account; 201 + session cookie
  POST /api/login/email    -- email/password login; session cookie
  POST /api/login/google   -- Google ID token login; session cookie
  POST /api/verify         -- verify a Google ID token only; no session
  GET  /api/status         -- current session's user (cookie or Bearer)
  GET  /api/token          -- hand the cookie's session token to the page
  POST /api/logout         -- delete the session; clear cookie; always 200

Security:
  Signup and email login are rate-limited per client IP (api/limiter.py).
  The limit is checked before the handler body runs, so a throttled request
  never reaches the store.
  Google login and /verify return one generic 401 for every token problem.
  The specific reason is only logged server-side.
  Signup and both logins answer 403 unauthorized_origin when the Origin (or
  Referer) is not an allowed site; Google login also accepts Google's own
  origin for the redirect-mode form POST.
  Cache-Control: no-store on every response that carries a session token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.limiter import limiter, login_limit, signup_limit
from api.models import (
    AuthResponse,
    EmailLoginRequest,
    EmailSignupRequest,
    IdentityTokenRequest,
    MessageResponse,
    TokenResponse,
    UserOut,
    UserResponse,
)
from auth.accounts import AccountService
from auth.dependencies import (
    clear_session_cookie,
    client_ip,
    cookie_token,
    extract_session_token,
    get_current_session,
    get_session_manager,
    require_google_login_origin,
    require_site_origin,
    set_session_cookie,
    user_agent,
)
from auth.models import Session, User
from core.errors import UnauthenticatedError
from identity.service import IdentityVerifier

# Auth policy:
# - POST /api/signup/email:  public, site origin only, rate-limited
# - POST /api/login/email:   public, site origin only, rate-limited
# - POST /api/login/google:  public, site origin or Google redirect only
# - POST /api/verify:        public
# - GET  /api/status:        requires session (get_current_session)
# - GET  /api/token:         requires session cookie
# - POST /api/logout:        public -- revoking a session needs no prior validation
router = APIRouter()


def _auth_response(user: User, token: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(user=UserOut(**user.public_profile()), token=token).model_dump(),
    )
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Email + password
#
# @limiter.limit must sit BELOW @router.post: FastAPI registers the
# rate-limited wrapper, and slowapi needs the `request: Request` parameter.
# ---------------------------------------------------------------------------


@router.post(
    "/signup/email",
    response_model=AuthResponse,
    status_code=201,
    dependencies=[Depends(require_site_origin)],
)
@limiter.limit(signup_limit)
async def signup_email(request: Request, body: EmailSignupRequest) -> JSONResponse:
    """Create an email/password account and log it in.

    400 weak_password lists every violated complexity rule.
    409 duplicate_email if the address is already registered.
    """
    accounts: AccountService = request.app.state.accounts
    user, token = await accounts.signup_email(
        body.name, body.email, body.password, client_ip(request), user_agent(request)
    )
    return _auth_response(user, token, status_code=201)


@router.post("/login/email", response_model=AuthResponse, dependencies=[Depends(require_site_origin)])
@limiter.limit(login_limit)
async def login_email(request: Request, body: EmailLoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Returns the same bad_credentials error for an unknown email, a Google-only
    account, and a wrong password.
    """
    accounts: AccountService = request.app.state.accounts
    user, token = await accounts.login_email(body.email, body.password, client_ip(request), user_agent(request))
    return _auth_response(user, token)


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


async def identity_credential(request: Request) -> str:
    """Read the ID token from a JSON body or a form-encoded POST.

    Google's redirect mode posts `credential` as application/x-www-form-urlencoded;
    the JavaScript client posts JSON. Bad input of either kind is a 400.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/x-www-form-urlencoded"):
        data: object = dict(await request.form())
    else:
        try:
            data = await request.json()
        except ValueError as exc:
            raise RequestValidationError(
                [{"type": "json_invalid", "loc": ("body",), "msg": "Request body is not valid JSON."}]
            ) from exc
    try:
        return IdentityTokenRequest.model_validate(data).credential
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


@router.post("/login/google", response_model=AuthResponse, dependencies=[Depends(require_google_login_origin)])
async def login_google(request: Request, credential: str = Depends(identity_credential)) -> JSONResponse:
    """Verify a Google ID token, upsert the user, and start a session."""
    accounts: AccountService = request.app.state.accounts
    user, token = await accounts.login_google(credential, client_ip(request), user_agent(request))
    return _auth_response(user, token)


@router.post("/verify", response_model=UserResponse)
async def verify(request: Request, credential: str = Depends(identity_credential)) -> UserResponse:
    """Verify a Google ID token and return its profile. Creates no session or user."""
    verifier: IdentityVerifier = request.app.state.verifier
    identity = await verifier.verify_identity_token(credential)
    return UserResponse(user=UserOut(**identity.public_profile()))


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/status", response_model=UserResponse)
async def status(session: Session = Depends(get_current_session)) -> UserResponse:
    """Return the user behind the current session."""
    return UserResponse(user=UserOut(**session.user_profile()))


@router.get("/token", response_model=TokenResponse)
async def token(request: Request) -> JSONResponse:
    """Return the session token held in the HttpOnly cookie.

    Lets a page on another origin copy the token into an Authorization header.
    Only the cookie is consulted; a Bearer header proves nothing new here.
    """
    session_token = cookie_token(request)
    if not session_token:
        raise UnauthenticatedError()
    manager = get_session_manager(request)
    session = await manager.validate(session_token, client_ip(request), user_agent(request))
    if session is None:
        raise UnauthenticatedError("Invalid or expired session.")
    resp = JSONResponse(content=TokenResponse(token=session_token).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Delete the current session (if any) and clear the cookie. Idempotent."""
    session_token = extract_session_token(request)
    if session_token:
        await get_session_manager(request).revoke(session_token)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    clear_session_cookie(resp)
    return resp
