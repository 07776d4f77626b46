"""Wallet sign-in API endpoints.

A client proves control of a wallet by signing a timestamped challenge.
On success the server keeps the session and hands out an HttpOnly cookie.
"""
import logging

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from certifychain import config
from certifychain.api.models import (
    AuthStatusResponse,
    LogoutResponse,
    SignInRequest,
    SignInResponse,
)
from certifychain.auth.principal import SESSION_COOKIE_NAME, Principal
from certifychain.auth.session import get_rate_limiter, get_session_store
from certifychain.auth.wallet_auth import verify_signin
from certifychain.db.session import get_db
from certifychain.exceptions import AuthenticationError
from certifychain.store.users import find_or_create_user

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _get_client_ip(request: Request) -> str:
    """Extract client IP from request, considering proxy headers."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


@router.post("/signin", response_model=SignInResponse)
async def signin(
    request: Request,
    body: SignInRequest,
    response: Response,
    db: Session = Depends(get_db),
):
    """Exchange a signed challenge for a session cookie.

    Rate limited per client IP to slow down signature guessing.
    """
    rate_limiter = get_rate_limiter()
    client_ip = _get_client_ip(request)

    if not await rate_limiter.check_rate_limit(client_ip):
        remaining = await rate_limiter.get_lockout_remaining(client_ip)
        return JSONResponse(
            status_code=429,
            content={
                "detail": "Too many failed sign-in attempts. Please try again later.",
                "code": "RATE_LIMITED",
                "retry_after": remaining,
            },
            headers={"Retry-After": str(remaining)},
        )

    wallet = verify_signin(body.message, body.signature, body.address)
    if wallet is None:
        await rate_limiter.record_attempt(client_ip, success=False)
        raise AuthenticationError("Invalid wallet signature")

    await rate_limiter.record_attempt(client_ip, success=True)

    user = find_or_create_user(db, wallet)
    principal = Principal(user_id=user.id, wallet_address=user.wallet_address, name=user.name)
    store = get_session_store()
    await store.cleanup_expired()
    session = await store.create(principal, config.SESSION_TTL_SECONDS)

    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session.session_id,
        httponly=True,
        samesite="lax",
        secure=config.SESSION_COOKIE_SECURE,
        path="/",
        max_age=config.SESSION_TTL_SECONDS,
    )

    log.info(f"Sign-in successful for {wallet} from {client_ip}")

    return SignInResponse(
        success=True,
        user_id=user.id,
        wallet_address=user.wallet_address,
        name=user.name,
        expires_at=session.expires_at.isoformat(),
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(request: Request, response: Response) -> LogoutResponse:
    """Invalidate the current session and clear the cookie."""
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    if session_id:
        await get_session_store().delete(session_id)

    response.delete_cookie(key=SESSION_COOKIE_NAME, path="/")
    return LogoutResponse(success=True, message="Logged out successfully")


@router.get("/status", response_model=AuthStatusResponse)
async def auth_status(request: Request) -> AuthStatusResponse:
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    if session_id:
        session = await get_session_store().get(session_id)
        if session:
            return AuthStatusResponse(
                authenticated=True,
                user_id=session.principal.user_id,
                wallet_address=session.principal.wallet_address,
                name=session.principal.name,
                expires_at=session.expires_at.isoformat(),
            )
    return AuthStatusResponse(authenticated=False)
