"""
api/routes/v1/auth.py -- Login, registration and ephemeral-token redemption endpoints.

Routes:
  POST /api/v1/auth/login            -- password login; returns a Bearer session token
  POST /api/v1/auth/register         -- create an unverified account; emails a verification link
  GET  /api/v1/auth/verify?token=    -- redeem a verification token
  POST /api/v1/auth/forgot-password  -- email a reset link (always 200)
  POST /api/v1/auth/reset-password   -- redeem a reset token and set a new password
  POST /api/v1/auth/complete-invite  -- redeem an invite token and create the account
  GET  /api/v1/auth/me               -- profile of the authenticated caller

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  Unknown username and wrong password share one error ("bad_credentials").
  Cache-Control: no-store on login responses.
  forgot-password answers the same way whether or not the address exists.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    CompleteInviteRequest,
    ErrorDetail,
    ErrorResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from auth.accounts import AccountService
from auth.credentials import CredentialService
from auth.dependencies import require_authenticated
from auth.errors import AccountNotVerified, DuplicateIdentity, Expired, InvalidCredentials, NotFound
from auth.principal import Authenticated
from core.config import get_settings

# Auth policy:
# - every route here is public except GET /auth/me (require_authenticated)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _token_rejected(exc: Exception) -> HTTPException:
    """400 for a verification / reset / invite token that cannot be redeemed."""
    if isinstance(exc, Expired):
        return HTTPException(
            status_code=400,
            detail={"code": "token_expired", "message": "This link has expired. Request a new one."},
        )
    return HTTPException(
        status_code=400,
        detail={"code": "invalid_token", "message": "This link is invalid or has already been used."},
    )


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(_login_rate_limit)  # the router must register the limiter-wrapped function
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a session token.

    Wrong username and wrong password produce the same "bad_credentials"
    error. An unverified account is only reported once the password matched.
    """
    credentials: CredentialService = request.app.state.credentials
    try:
        result = credentials.login(body.username, body.password, request.app.state.clock())
    except InvalidCredentials:
        return _no_store(_error_response(401, "bad_credentials", "Invalid username or password."))
    except AccountNotVerified:
        return _no_store(
            _error_response(403, "account_not_verified", "Account not verified. Please check your email.")
        )

    return _no_store(
        JSONResponse(
            status_code=200,
            content=LoginResponse(
                access_token=result.token,
                token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
                expires_in=request.app.state.codec.ttl_seconds,
                username=result.identity.username,
                role=result.identity.role,
            ).model_dump(),
        )
    )


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )


# ---------------------------------------------------------------------------
# Registration and email verification
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=ProfileResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> ProfileResponse:
    """Create an unverified account and send it a verification link."""
    accounts: AccountService = request.app.state.accounts
    try:
        identity = accounts.register(
            body.username,
            body.password,
            body.role.value,
            body.manager_id,
            request.app.state.clock(),
        )
    except DuplicateIdentity as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": str(exc)},
        ) from exc
    return ProfileResponse.from_identity(identity)


@router.get("/auth/verify", response_model=MessageResponse)
def verify_email(request: Request, token: str = Query(min_length=1, max_length=128)) -> MessageResponse:
    """Redeem the token from a verification link."""
    accounts: AccountService = request.app.state.accounts
    try:
        accounts.verify_email(token, request.app.state.clock())
    except (NotFound, Expired) as exc:
        raise _token_rejected(exc) from exc
    return MessageResponse(message="Email verified successfully.")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Send a reset link. The response does not reveal whether the address is registered."""
    accounts: AccountService = request.app.state.accounts
    accounts.request_password_reset(body.email, request.app.state.clock())
    return MessageResponse(message="If that address is registered, a reset link has been sent.")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    accounts: AccountService = request.app.state.accounts
    try:
        accounts.reset_password(body.token, body.new_password, request.app.state.clock())
    except (NotFound, Expired) as exc:
        raise _token_rejected(exc) from exc
    return MessageResponse(message="Password has been reset.")


# ---------------------------------------------------------------------------
# Invites
# ---------------------------------------------------------------------------


@router.post("/auth/complete-invite", status_code=204)
def complete_invite(request: Request, body: CompleteInviteRequest) -> Response:
    """Accept an invite: create the account with the invited role and a chosen password."""
    accounts: AccountService = request.app.state.accounts
    try:
        accounts.complete_invite(body.token, body.password, request.app.state.clock())
    except (NotFound, Expired) as exc:
        raise _token_rejected(exc) from exc
    except DuplicateIdentity as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": str(exc)},
        ) from exc
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=ProfileResponse)
async def me(principal: Authenticated = Depends(require_authenticated)) -> ProfileResponse:
    """Return the profile of the currently authenticated identity."""
    return ProfileResponse.from_identity(principal.identity)
