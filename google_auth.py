"""
Google OAuth2 sign-in — the identity provider for quest sessions.

Flow:
  1. Frontend calls /auth/google → gets the Google consent URL
  2. Google redirects back to /auth/google/callback with an auth code
  3. Backend exchanges the code for tokens and reads the user's profile
  4. The resulting Identity keys the saved quest

Env vars needed:
  GOOGLE_CLIENT_ID
  GOOGLE_CLIENT_SECRET
  GOOGLE_REDIRECT_URI   (e.g. http://localhost:8000/auth/google/callback)
  FRONTEND_URL          (e.g. http://localhost:5173)
"""

from __future__ import annotations

import os
import logging

from dotenv import load_dotenv
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from models import Identity

load_dotenv()

logger = logging.getLogger(__name__)

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:8000/auth/google/callback")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]

# Signed-in identities by OAuth session id. Tokens are not kept.
_sessions: dict[str, Identity] = {}


def is_configured() -> bool:
    """Check if Google OAuth is configured."""
    return bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET)


def _get_client_config():
    return {
        "web": {
            "client_id": GOOGLE_CLIENT_ID,
            "client_secret": GOOGLE_CLIENT_SECRET,
            "redirect_uris": [GOOGLE_REDIRECT_URI],
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
        }
    }


def get_auth_url(session_id: str) -> str:
    """Generate Google OAuth2 consent URL."""
    flow = Flow.from_client_config(_get_client_config(), scopes=SCOPES)
    flow.redirect_uri = GOOGLE_REDIRECT_URI
    auth_url, _ = flow.authorization_url(
        include_granted_scopes="true",
        prompt="select_account",
        state=session_id,
    )
    return auth_url


def identity_from_userinfo(user_info: dict) -> Identity:
    return Identity(
        id=user_info.get("id", ""),
        name=user_info.get("name", ""),
        picture_url=user_info.get("picture", ""),
    )


def exchange_code(code: str, session_id: str) -> Identity:
    """Exchange auth code for tokens and return the signed-in identity."""
    flow = Flow.from_client_config(_get_client_config(), scopes=SCOPES)
    flow.redirect_uri = GOOGLE_REDIRECT_URI
    flow.fetch_token(code=code)

    creds = flow.credentials

    service = build("oauth2", "v2", credentials=creds)
    user_info = service.userinfo().get().execute()
    identity = identity_from_userinfo(user_info)
    if not identity.id:
        raise ValueError("Google did not return a user id")

    _sessions[session_id] = identity
    logger.info(f"Signed in {identity.name or identity.id}")
    return identity


def get_identity(session_id: str) -> Identity | None:
    return _sessions.get(session_id)


def forget(session_id: str) -> None:
    _sessions.pop(session_id, None)

