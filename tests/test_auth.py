import time

import pytest

from billing.auth import jwt as jwt_utils
from billing.auth.jwt import JWTError, issue_access_token, verify_access_token


def test_issue_and_verify_round_trip():
    token = issue_access_token("u1", secret="secret", expire_minutes=5)

    assert verify_access_token(token, secret="secret") == "u1"


def test_wrong_secret_rejected():
    token = issue_access_token("u1", secret="secret")

    with pytest.raises(JWTError) as excinfo:
        verify_access_token(token, secret="other")
    assert excinfo.value.detail == "invalid_token_signature"


def test_expired_token_rejected(monkeypatch):
    token = issue_access_token("u1", secret="secret", expire_minutes=1)
    real_time = time.time
    monkeypatch.setattr(jwt_utils.time, "time", lambda: real_time() + 120)

    with pytest.raises(JWTError) as excinfo:
        verify_access_token(token, secret="secret")
    assert excinfo.value.detail == "token_expired"


def test_malformed_token_rejected():
    with pytest.raises(JWTError) as excinfo:
        verify_access_token("only-one-part", secret="secret")
    assert excinfo.value.detail == "invalid_token_format"


def test_missing_secret_is_service_unavailable():
    with pytest.raises(JWTError) as excinfo:
        issue_access_token("u1", secret="")
    assert excinfo.value.status_code == 503
    assert excinfo.value.detail == "auth_not_configured"
