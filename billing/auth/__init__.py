"""Caller identification for the billing API."""

from .jwt import JWTError, issue_access_token, token_from_request, verify_access_token

__all__ = ["JWTError", "issue_access_token", "token_from_request", "verify_access_token"]
