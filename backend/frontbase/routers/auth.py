"""
GitHub sign-in.

    GET  /api/auth/github/login     redirect to GitHub's consent screen
    GET  /api/auth/github/callback  GitHub redirects back here with ?code=&state=
    GET  /api/auth/me               the signed-in user
    POST /api/auth/logout           drop the session cookie

The OAuth token GitHub hands us is stored on the user row; every later
GitHub call (repository listing, workflow setup, run polling) acts as that
user.
"""

import logging
import secrets
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from frontbase.auth import COOKIE_NAME, CurrentUser, create_access_token, get_current_user
from frontbase.config import (
    AUTH_TOKEN_TTL_DAYS,
    BACKEND_URL,
    COOKIE_SECURE,
    FRONTEND_URL,
    GITHUB_OAUTH_CLIENT_ID,
    GITHUB_OAUTH_SCOPES,
)
from frontbase.database import get_db
from frontbase.schemas import UserResponse
from frontbase.services import record_store
from frontbase.services.container import Services, get_services
from frontbase.services.github_service import OAUTH_AUTHORIZE_URL, exchange_oauth_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

STATE_COOKIE = "oauth_state"
STATE_TTL_SECONDS = 600


def _callback_url() -> str:
    return f"{BACKEND_URL.rstrip('/')}/api/auth/github/callback"


@router.get("/github/login")
async def github_login():
    if not GITHUB_OAUTH_CLIENT_ID:
        raise HTTPException(status_code=500, detail="GitHub OAuth is not configured")

    state = secrets.token_urlsafe(24)
    params = {
        "client_id": GITHUB_OAUTH_CLIENT_ID,
        "redirect_uri": _callback_url(),
        "scope": GITHUB_OAUTH_SCOPES,
        "state": state,
    }
    response = RedirectResponse(f"{OAUTH_AUTHORIZE_URL}?{urlencode(params)}")
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=STATE_TTL_SECONDS,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
    )
    return response


@router.get("/github/callback")
async def github_callback(
    request: Request,
    code: str = Query(...),
    state: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    """
    Finish the OAuth dance.

    Exchanges the code for a GitHub token, creates or refreshes the user,
    then sets our own session cookie and sends the browser to the dashboard.
    """
    expected = request.cookies.get(STATE_COOKIE)
    if not state or not expected or not secrets.compare_digest(state, expected):
        raise HTTPException(status_code=400, detail="Invalid OAuth state")

    token = await exchange_oauth_code(services.http, code, _callback_url())
    github = services.github(token)
    profile = await github.get_user()
    email = profile.get("email") or await github.get_primary_email()

    user = await record_store.upsert_github_user(db, profile, email, token)
    logger.info("GitHub user %s signed in (user %s)", user.handle, user.id)

    response = RedirectResponse(f"{FRONTEND_URL.rstrip('/')}/dashboard")
    response.delete_cookie(STATE_COOKIE)
    response.set_cookie(
        COOKIE_NAME,
        create_access_token(user.id),
        max_age=AUTH_TOKEN_TTL_DAYS * 24 * 3600,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
    )
    return response


@router.get("/me", response_model=UserResponse)
async def me(
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await record_store.get_user(db, current.user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User no longer exists")
    return user


@router.post("/logout")
async def logout():
    response = JSONResponse({"message": "Logged out"})
    response.delete_cookie(COOKIE_NAME)
    return response
