"""
api/routes/v1/auth.py -- Credential authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup     -- create a local account; sets session cookie
  POST /api/v1/auth/signin     -- email/password login; sets session cookie
  POST /api/v1/auth/signout    -- overwrites the session cookie; 200
  GET  /api/v1/auth/me         -- current user info (requires auth)
  GET  /api/v1/auth/providers  -- list enabled OAuth providers (public)

The handlers are the credential submission boundary. They hand validated
bodies to CredentialAuthService and translate its Ok/Err result:
  Ok                      -> 200/201, cookie written from the outcome
  Err(CONFLICT)           -> 409 conflict
  Err(BAD_REQUEST)        -> 400 bad_request ("Wrong credentials")
  Err(INTERNAL_ERROR)     -> 500 internal_error, generic message only

Security:
  [H2] POST /signin and POST /signup are rate-limited per IP.
  [C1] CredentialAuthService.sign_in() equalizes timing -- never inline
       a lookup + verify here.
  [M5] Cache-Control: no-store on every response that sets a session cookie.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ErrorDetail,
    ErrorResponse,
    MessageResponse,
    OAuthProviderInfo,
    SignInRequest,
    SignUpRequest,
    UserResponse,
)
from auth.credentials import AuthOutcome, CredentialAuthService
from auth.dependencies import get_current_user
from auth.errors import Err, ErrorKind
from auth.models import PublicUser
from auth.oauth import get_enabled_providers
from auth.session import SessionManager
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/signup:     public -- gated by SELF_REGISTRATION_ENABLED
# - POST /api/v1/auth/signin:     public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/signout:    public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/providers:  public -- sign-in page renders OAuth buttons from it
# - GET  /api/v1/auth/me:         requires auth (get_current_user)
router = APIRouter()

_settings = get_settings()

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.CONFLICT: 409,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.OAUTH_FAILURE: 502,
    ErrorKind.INTERNAL_ERROR: 500,
}


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.signup_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(request: Request, body: SignUpRequest) -> JSONResponse:
    """Create a local account and sign the new user in (non-remembered session)."""
    if not _settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )

    service: CredentialAuthService = request.app.state.credential_service
    result = service.sign_up(body.username, body.email, body.password)
    if not result.ok:
        return _error_response(result)
    return _auth_response(result.value, "Account created.", status_code=201)


@limiter.limit(_settings.signin_rate_limit)  # [H2] brute-force mitigation
@router.post("/auth/signin", response_model=AuthResponse)
def signin(request: Request, body: SignInRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Returns the same "Wrong credentials" error for an unknown email and a
    wrong password.
    """
    service: CredentialAuthService = request.app.state.credential_service
    result = service.sign_in(body.email, body.password, remember=body.remember)
    if not result.ok:
        return _error_response(result)
    return _auth_response(result.value, "Logged in successfully.")


@router.post("/auth/signout", response_model=MessageResponse)
def signout(request: Request) -> JSONResponse:
    """Revoke the session by overwriting the cookie."""
    sessions: SessionManager = request.app.state.session_manager
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    sessions.revoke().apply(resp)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the list of configured OAuth providers (empty when none are set)."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers()]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: PublicUser = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return _user_to_response(current_user)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_to_response(user: PublicUser) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        image=user.image,
        email_verified=user.email_verified,
    )


def _auth_response(outcome: AuthOutcome, message: str, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(message=message, user=_user_to_response(outcome.user)).model_dump(),
    )
    outcome.cookie.apply(resp)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _error_response(err: Err) -> JSONResponse:
    resp = JSONResponse(
        status_code=_STATUS_BY_KIND[err.kind],
        content=ErrorResponse(error=ErrorDetail(code=err.kind.value, message=err.message)).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
