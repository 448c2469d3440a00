"""Gateway checksum codec (``X-VERIFY`` header)."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from enum import Enum
from typing import Any, Mapping

SEPARATOR = "###"


class SigningContext(str, Enum):
    """Path markers mixed into the checksum so a signature is bound to one use."""

    CREATE_ORDER = "/pg/v1/pay"
    WEBHOOK = "/pg/v1/webhook"


def canonicalize(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8")
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def encode_payload(payload: Any) -> str:
    """Base64 transport encoding used in request bodies and checksums."""

    return base64.b64encode(canonicalize(payload).encode("utf-8")).decode("ascii")


class SignatureCodec:
    """Sign and verify gateway payloads with rotatable salt keys.

    A checksum is ``sha256_hex(base64(payload) + context + key) + "###" + index``.
    """

    def __init__(self, keys: Mapping[str, str], active_index: str) -> None:
        self._keys = {str(index): key for index, key in keys.items() if key}
        self._active_index = str(active_index)

    def sign(self, payload: Any, context: SigningContext) -> str:
        key = self._keys.get(self._active_index)
        if not key:
            raise ValueError(f"no signing key configured for index {self._active_index}")
        return f"{self._digest(payload, context, key)}{SEPARATOR}{self._active_index}"

    def verify(self, payload: Any, signature: str | None, context: SigningContext) -> bool:
        if not signature:
            return False
        digest, sep, index = signature.strip().rpartition(SEPARATOR)
        if not sep or not digest:
            return False
        key = self._keys.get(index)
        if not key:
            return False
        try:
            expected = self._digest(payload, context, key)
        except (UnicodeDecodeError, TypeError, ValueError):
            return False
        return hmac.compare_digest(expected, digest.lower())

    @staticmethod
    def _digest(payload: Any, context: SigningContext, key: str) -> str:
        material = f"{encode_payload(payload)}{SigningContext(context).value}{key}"
        return hashlib.sha256(material.encode("utf-8")).hexdigest()
