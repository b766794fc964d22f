"""
Session token helpers.

Session issuance lives outside this service. Callers present an
``auth_token`` cookie of the form ``<username>[_<issued-at>]`` and the
username is the tenant identifier for every user-owned resource.
"""

from typing import Optional

from starlette.requests import Request

AUTH_COOKIE = "auth_token"


def username_from_token(token: Optional[str]) -> Optional[str]:
    """Extract the username from a session token."""
    if not token:
        return None
    username = token.split("_", 1)[0].strip()
    return username or None


def request_username(request: Request) -> Optional[str]:
    """Username of the caller, or None when no session cookie is present."""
    return username_from_token(request.cookies.get(AUTH_COOKIE))
