"""Request dependencies shared by the billing routers."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from billing.auth.jwt import token_from_request, verify_access_token
from billing.config import Settings
from billing.users import UserRepository


def get_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise RuntimeError("Settings are not configured")
    return settings


def get_user_repo(request: Request) -> UserRepository:
    repo = getattr(request.app.state, "user_repo", None)
    if repo is None:
        raise RuntimeError("User repository is not configured")
    return repo


def current_user_id(request: Request) -> str:
    """Resolve the authenticated caller; the subject must be a known user."""

    token = token_from_request(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_token")
    user_id = verify_access_token(token, secret=get_settings(request).jwt_secret)
    if not get_user_repo(request).exists(user_id):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown_user")
    return user_id
