"""HTTP client for the hosted pay-page gateway."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from billing.errors import GatewayError

from .signature import SignatureCodec, SigningContext, encode_payload

logger = logging.getLogger(__name__)

PAY_PATH = "/pg/v1/pay"


@dataclass(frozen=True)
class GatewayOrderResult:
    """Parsed response of a create-order call."""

    redirect_url: str
    signature: str
    raw: Mapping[str, Any]


def _log_retry_attempt(retry_state: RetryCallState) -> None:
    if retry_state.attempt_number == 1:
        return
    logger.info(
        {
            "event": "retry",
            "operation": "gateway_create_order",
            "attempt": retry_state.attempt_number,
        }
    )


class GatewayClient:
    """Create pay-page orders; only transport failures are retried."""

    def __init__(
        self,
        *,
        codec: SignatureCodec,
        merchant_id: str,
        base_url: str,
        timeout: float = 10.0,
        http_client_factory: Callable[[], httpx.AsyncClient] | None = None,
        attempts: int = 3,
        wait: wait_base | None = None,
    ) -> None:
        self._codec = codec
        self._merchant_id = merchant_id
        self._base_url = base_url.rstrip("/")
        self._http_client_factory = http_client_factory or (lambda: httpx.AsyncClient(timeout=timeout))
        self._attempts = attempts
        self._wait = wait or wait_exponential(multiplier=0.5, max=4)

    def build_payload(
        self,
        *,
        transaction_id: str,
        user_id: str,
        amount: int,
        callback_url: str,
        redirect_url: str,
    ) -> dict[str, Any]:
        return {
            "merchantId": self._merchant_id,
            "merchantTransactionId": transaction_id,
            "merchantUserId": user_id,
            "amount": int(amount),
            "redirectUrl": redirect_url,
            "redirectMode": "POST",
            "callbackUrl": callback_url,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }

    async def create_order(
        self,
        *,
        transaction_id: str,
        user_id: str,
        amount: int,
        callback_url: str,
        redirect_url: str,
    ) -> GatewayOrderResult:
        payload = self.build_payload(
            transaction_id=transaction_id,
            user_id=user_id,
            amount=amount,
            callback_url=callback_url,
            redirect_url=redirect_url,
        )
        body = {"request": encode_payload(payload)}
        signature = self._codec.sign(payload, SigningContext.CREATE_ORDER)
        headers = {"Content-Type": "application/json", "X-VERIFY": signature}

        try:
            response = await self._post(body, headers)
        except httpx.TransportError as exc:
            logger.warning(
                {"event": "gateway_unreachable", "transaction_id": transaction_id, "error": str(exc)}
            )
            raise GatewayError(f"gateway unreachable: {exc.__class__.__name__}") from exc

        return self._parse(response, signature)

    async def _post(self, body: Mapping[str, Any], headers: Mapping[str, str]) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._attempts),
            wait=self._wait,
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
            before=_log_retry_attempt,
        )
        async for attempt in retrying:
            with attempt:
                async with self._http_client_factory() as client:
                    return await client.post(f"{self._base_url}{PAY_PATH}", json=dict(body), headers=dict(headers))
        raise GatewayError("gateway call was not attempted")

    @staticmethod
    def _parse(response: httpx.Response, signature: str) -> GatewayOrderResult:
        if response.status_code < 200 or response.status_code >= 300:
            raise GatewayError(f"gateway returned HTTP {response.status_code}")
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise GatewayError("gateway returned malformed body") from exc
        if not isinstance(data, dict):
            raise GatewayError("gateway returned malformed body")
        if data.get("success") is not True:
            message = data.get("message") or data.get("code") or "unknown error"
            raise GatewayError(f"gateway rejected order: {message}")

        details = data.get("data")
        if not isinstance(details, dict):
            details = {}
        redirect_info = (details.get("instrumentResponse") or {}).get("redirectInfo") or {}
        redirect_url = redirect_info.get("url")
        if not redirect_url:
            raise GatewayError("gateway response missing redirect url")
        return GatewayOrderResult(
            redirect_url=str(redirect_url),
            signature=signature,
            raw=data,
        )
