"""
Session and repository tokens.

Users sign in with GitHub OAuth (see routers/auth.py); afterwards the API
identifies them by an HS256 JWT we issue ourselves, carried in the
HTTP-only "jwt" cookie or an Authorization: Bearer header.

Two kinds of token exist:
- session tokens (scope "user"): a signed-in dashboard user, 7 days
- repository tokens (scope "repo"): stored as the ENV_ACCESS_TOKEN Actions
  secret so the CI runner can fetch env vars and upload its build for that
  one repository, 365 days
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import HTTPException, Request

from frontbase.config import AUTH_TOKEN_TTL_DAYS, JWT_SECRET, REPO_TOKEN_TTL_DAYS

ALGORITHM = "HS256"
COOKIE_NAME = "jwt"

USER_SCOPE = "user"
REPO_SCOPE = "repo"


@dataclass
class CurrentUser:
    user_id: str
    scope: str = USER_SCOPE
    repo_id: int | None = None

    @property
    def is_repo_token(self) -> bool:
        return self.scope == REPO_SCOPE


def _encode(claims: dict, ttl: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {**claims, "iat": now, "exp": now + ttl}
    return jwt.encode(payload, JWT_SECRET, algorithm=ALGORITHM)


def create_access_token(user_id: str) -> str:
    return _encode({"sub": user_id, "scope": USER_SCOPE}, timedelta(days=AUTH_TOKEN_TTL_DAYS))


def create_repo_token(user_id: str, repo_id: int) -> str:
    return _encode(
        {"sub": user_id, "scope": REPO_SCOPE, "repo_id": repo_id},
        timedelta(days=REPO_TOKEN_TTL_DAYS),
    )


def decode_token(token: str) -> CurrentUser:
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: no user ID")
    return CurrentUser(
        user_id=user_id,
        scope=payload.get("scope", USER_SCOPE),
        repo_id=payload.get("repo_id"),
    )


def _token_from(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.cookies.get(COOKIE_NAME)


async def get_current_principal(request: Request) -> CurrentUser:
    """
    FastAPI dependency accepting either a session or a repository token.

    Routes that take it must check the repository with require_repo_access().
    """
    token = _token_from(request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing auth token")
    return decode_token(token)


async def get_current_user(request: Request) -> CurrentUser:
    """
    FastAPI dependency for dashboard routes: only session tokens pass.

    Usage:
        @router.get("/my-stuff")
        async def my_stuff(user: CurrentUser = Depends(get_current_user)):
            ...
    """
    principal = await get_current_principal(request)
    if principal.is_repo_token:
        raise HTTPException(status_code=403, detail="Repository tokens cannot access this endpoint")
    return principal


def require_repo_access(principal: CurrentUser, repo_id: int) -> None:
    """A repository token only works for the repository it was minted for."""
    if principal.is_repo_token and principal.repo_id != repo_id:
        raise HTTPException(status_code=403, detail="Token is not valid for this repository")
