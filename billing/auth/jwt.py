"""HS256 access tokens identifying the caller of the billing API."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status


class JWTError(HTTPException):
    """HTTP exception used for token validation errors."""

    def __init__(self, detail: str, status_code: int = status.HTTP_401_UNAUTHORIZED) -> None:
        super().__init__(status_code=status_code, detail=detail)


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _base64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _require_secret(secret: str) -> bytes:
    if not secret:
        raise JWTError("auth_not_configured", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return secret.encode("utf-8")


def _encode(payload: Dict[str, Any], secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    header_segment = _base64url(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_segment = _base64url(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_segment}.{payload_segment}".encode("ascii")
    signature = hmac.new(_require_secret(secret), signing_input, hashlib.sha256).digest()
    return f"{header_segment}.{payload_segment}.{_base64url(signature)}"


def _decode(token: str, secret: str) -> Dict[str, Any]:
    try:
        header_segment, payload_segment, signature_segment = token.split(".")
    except ValueError as exc:
        raise JWTError("invalid_token_format") from exc

    signing_input = f"{header_segment}.{payload_segment}".encode("ascii")
    expected_signature = hmac.new(_require_secret(secret), signing_input, hashlib.sha256).digest()
    try:
        provided_signature = _base64url_decode(signature_segment)
    except ValueError as exc:
        raise JWTError("invalid_token_signature") from exc

    if not hmac.compare_digest(expected_signature, provided_signature):
        raise JWTError("invalid_token_signature")

    try:
        payload: Dict[str, Any] = json.loads(_base64url_decode(payload_segment))
    except ValueError as exc:
        raise JWTError("invalid_token_payload") from exc

    return payload


def issue_access_token(user_id: str, *, secret: str, expire_minutes: int = 30) -> str:
    """Issue an access token whose subject is ``user_id``."""

    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expire_minutes)).timestamp()),
    }
    return _encode(payload, secret)


def verify_access_token(token: str, *, secret: str) -> str:
    """Validate ``token`` and return its subject."""

    payload = _decode(token, secret)
    if payload.get("type") != "access":
        raise JWTError("invalid_token_type")
    exp = payload.get("exp")
    if exp is None:
        raise JWTError("missing_expiration")
    if int(time.time()) >= int(exp):
        raise JWTError("token_expired")
    subject = payload.get("sub")
    if not subject or not isinstance(subject, str):
        raise JWTError("invalid_subject")
    return subject


def token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if header and header.startswith("Bearer "):
        return header.split(" ", 1)[1]
    return request.cookies.get("access_token")
