# auth/middleware.py
"""
FastAPI authentication gate.

Provides:
- Session cookie handling
- `require_user_id` dependency for protected routes

The gate only establishes identity; it makes no permission decisions.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request, Response

from auth.errors import NotAuthenticatedError, SessionInvalidError
from auth.tokens import TokenError, TokenService

# Cookie configuration
SESSION_COOKIE_NAME = "token"
SESSION_COOKIE_MAX_AGE = 7 * 24 * 60 * 60  # 7 days in seconds


def _cookie_policy(production: bool) -> dict:
    # Cross-site frontends need SameSite=None, which browsers only accept with Secure
    return {
        "httponly": True,
        "secure": production,
        "samesite": "none" if production else "strict",
    }


def get_session_token(request: Request) -> Optional[str]:
    """Extract the session token from request cookies."""
    return request.cookies.get(SESSION_COOKIE_NAME) or None


def set_session_cookie(response: Response, token: str, production: bool = False) -> None:
    """Set the HTTP-only session cookie on a response."""
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=SESSION_COOKIE_MAX_AGE,
        **_cookie_policy(production),
    )


def clear_session_cookie(response: Response, production: bool = False) -> None:
    """Clear the session cookie from a response."""
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        **_cookie_policy(production),
    )


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


async def require_user_id(request: Request) -> str:
    """
    FastAPI dependency: ID of the signed-in user (required).

    Raises:
        NotAuthenticatedError: No session cookie
        SessionInvalidError: Cookie present but the token was rejected;
            the error response also clears the cookie
    """
    token = get_session_token(request)
    if not token:
        raise NotAuthenticatedError()

    try:
        return get_token_service(request).verify(token)
    except TokenError as e:
        raise SessionInvalidError() from e
