"""
Sign-in with Slack or Google.

The signed-in user is kept in the Starlette session cookie. Signing in with
Slack also stores the member's user token (xoxp-), Fernet-encrypted, so daily
reports can be posted as the member.
"""

import logging
import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse

from config import settings
from ..integrations.slack import usable_user_token
from ..utils.encryption import decrypt_token, encrypt_token

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_USER_KEY = "user"
SESSION_STATE_KEY = "oauth_state"

SLACK_AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"
SLACK_TOKEN_URL = "https://slack.com/api/oauth.v2.access"
SLACK_USERS_INFO_URL = "https://slack.com/api/users.info"
SLACK_USER_SCOPE = "chat:write,channels:read,users:read,users:read.email"

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

HTTP_TIMEOUT = 30.0


class OAuthError(Exception):
    """Token exchange or profile lookup failed."""
    pass


def _first(*values: Any) -> str:
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def _redirect_uri(request: Request, provider: str) -> str:
    base = settings.base_url.rstrip("/") or str(request.base_url).rstrip("/")
    return f"{base}/auth/{provider}/callback"


def _new_state(request: Request, provider: str) -> str:
    state = secrets.token_urlsafe(32)
    request.session[SESSION_STATE_KEY] = {"provider": provider, "value": state}
    return state


def _check_state(request: Request, provider: str, state: Optional[str]) -> None:
    stored = request.session.pop(SESSION_STATE_KEY, None) or {}
    if not state or stored.get("provider") != provider or stored.get("value") != state:
        raise HTTPException(status_code=400, detail="Invalid state")


def get_session_user(request: Request) -> Optional[Dict[str, Any]]:
    return request.session.get(SESSION_USER_KEY)


def session_slack_token(user: Dict[str, Any]) -> Optional[str]:
    """Decrypted Slack user token of a session user, if any."""
    return decrypt_token(user.get("slackUserAccessToken"))


async def get_current_user(request: Request) -> Dict[str, Any]:
    """Dependency: the signed-in user, 401 otherwise."""
    user = get_session_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


# ============================================================================
# Slack
# ============================================================================

async def exchange_slack_code(code: str, redirect_uri: str) -> Dict[str, Any]:
    """Exchange a Slack OAuth code and build the session user."""
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        response = await client.post(
            SLACK_TOKEN_URL,
            data={
                "client_id": settings.slack_client_id,
                "client_secret": settings.slack_client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        tokens = response.json()
        if not tokens.get("ok"):
            raise OAuthError(f"Slack token exchange failed: {tokens.get('error')}")

        authed_user = tokens.get("authed_user") or {}
        user_token = usable_user_token(authed_user.get("access_token"))
        slack_user_id = _first(authed_user.get("id"))
        team_id = _first((tokens.get("team") or {}).get("id"), authed_user.get("team_id"))

        profile: Dict[str, Any] = {}
        if user_token and slack_user_id:
            info_response = await client.get(
                SLACK_USERS_INFO_URL,
                params={"user": slack_user_id},
                headers={"Authorization": f"Bearer {user_token}"},
            )
            info = info_response.json()
            if info.get("ok"):
                profile = info.get("user") or {}
            else:
                logger.warning(f"Slack users.info failed for {slack_user_id}: {info.get('error')}")

    user_profile = profile.get("profile") or {}
    return {
        "id": slack_user_id,
        "name": _first(profile.get("real_name"), user_profile.get("real_name"), profile.get("name"), slack_user_id),
        "email": _first(user_profile.get("email")),
        "slackUserId": slack_user_id,
        "slackTeamId": team_id,
        "slackUserAccessToken": user_token,
        "provider": "slack",
    }


@router.get("/auth/slack/login")
async def slack_login(request: Request):
    """Start Slack sign-in."""
    if not settings.slack_client_id:
        raise HTTPException(status_code=503, detail="Slack sign-in is not configured")

    params = {
        "client_id": settings.slack_client_id,
        "user_scope": SLACK_USER_SCOPE,
        "redirect_uri": _redirect_uri(request, "slack"),
        "state": _new_state(request, "slack"),
    }
    return RedirectResponse(url=f"{SLACK_AUTHORIZE_URL}?{urlencode(params)}")


@router.get("/auth/slack/callback")
async def slack_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """Handle the Slack OAuth redirect."""
    if error:
        raise HTTPException(status_code=400, detail=f"Slack sign-in failed: {error}")
    _check_state(request, "slack", state)
    if not code:
        raise HTTPException(status_code=400, detail="Missing code")

    try:
        user = await exchange_slack_code(code, _redirect_uri(request, "slack"))
    except (OAuthError, httpx.HTTPError, ValueError) as e:
        logger.error(f"Slack OAuth callback error: {e}")
        raise HTTPException(status_code=400, detail="Slack sign-in failed")

    user_token = user.get("slackUserAccessToken")
    request.session[SESSION_USER_KEY] = {
        **user,
        "slackUserAccessToken": encrypt_token(user_token) if user_token else None,
    }
    logger.info(f"Signed in via Slack: {user['slackUserId']} (user token: {bool(user_token)})")
    return RedirectResponse(url="/")


# ============================================================================
# Google
# ============================================================================

async def exchange_google_code(code: str, redirect_uri: str) -> Dict[str, Any]:
    """Exchange a Google OAuth code and build the session user."""
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
        )
        if response.status_code != 200:
            raise OAuthError(f"Google token exchange failed: {response.text}")

        access_token = response.json().get("access_token")
        if not access_token:
            raise OAuthError("Google token response has no access token")

        userinfo_response = await client.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if userinfo_response.status_code != 200:
            raise OAuthError(f"Google userinfo failed: {userinfo_response.text}")
        userinfo = userinfo_response.json()

    email = _first(userinfo.get("email"))
    return {
        "id": _first(userinfo.get("id"), email),
        "name": _first(userinfo.get("name"), email),
        "email": email,
        "slackUserId": "",
        "slackTeamId": "",
        "slackUserAccessToken": None,
        "provider": "google",
    }


@router.get("/auth/google/login")
async def google_login(request: Request):
    """Start Google sign-in."""
    if not settings.google_client_id:
        raise HTTPException(status_code=503, detail="Google sign-in is not configured")

    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": _redirect_uri(request, "google"),
        "response_type": "code",
        "scope": "openid email profile",
        "state": _new_state(request, "google"),
        "prompt": "select_account",
    }
    return RedirectResponse(url=f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}")


@router.get("/auth/google/callback")
async def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """Handle the Google OAuth redirect."""
    if error:
        raise HTTPException(status_code=400, detail=f"Google sign-in failed: {error}")
    _check_state(request, "google", state)
    if not code:
        raise HTTPException(status_code=400, detail="Missing code")

    try:
        user = await exchange_google_code(code, _redirect_uri(request, "google"))
    except (OAuthError, httpx.HTTPError, ValueError) as e:
        logger.error(f"Google OAuth callback error: {e}")
        raise HTTPException(status_code=400, detail="Google sign-in failed")

    request.session[SESSION_USER_KEY] = user
    logger.info(f"Signed in via Google: {user['email']}")
    return RedirectResponse(url="/")


# ============================================================================
# Session
# ============================================================================

@router.get("/auth/logout")
async def logout(request: Request):
    request.session.clear()
    return RedirectResponse(url="/")


@router.get("/api/me")
async def me(request: Request):
    """The signed-in user without secrets."""
    user = get_session_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    public = {k: v for k, v in user.items() if k != "slackUserAccessToken"}
    public["hasSlackUserToken"] = bool(session_slack_token(user))
    return {"data": public}
