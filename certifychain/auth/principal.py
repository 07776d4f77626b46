"""The authenticated caller and the FastAPI dependencies that resolve it."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from certifychain.exceptions import AuthenticationError

SESSION_COOKIE_NAME = "certifychain_session"


@dataclass(frozen=True)
class Principal:
    """A signed-in wallet.

    Attributes:
        user_id: Internal User row id.
        wallet_address: Lower-cased 0x address proven at sign-in.
        name: Display name (shortened address by default).
    """

    user_id: str
    wallet_address: str
    name: Optional[str] = None


async def get_optional_principal(request: Request) -> Optional[Principal]:
    """Principal from the session cookie, or None when there is no live session."""
    from certifychain.auth.session import get_session_store

    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    if not session_id:
        return None
    session = await get_session_store().get(session_id)
    if session is None:
        return None
    return session.principal


async def require_principal(request: Request) -> Principal:
    """FastAPI dependency for endpoints that need a signed-in wallet."""
    principal = await get_optional_principal(request)
    if principal is None:
        raise AuthenticationError("Sign in required")
    return principal
