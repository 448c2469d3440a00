import base64
import json
from datetime import datetime, timedelta, timezone

import httpx

from billing.auth.jwt import issue_access_token
from billing.payments.signature import SignatureCodec, SigningContext

SALT_KEY = "test-salt-key"
JWT_SECRET = "test-jwt-secret"
PAY_PAGE_URL = "https://mercury-uat.phonepe.com/transact/pay?token=abc123"


class FrozenClock:
    """Manually advanced clock shared by every component of a test app."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(tz=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway:
    """httpx handler standing in for the pay-page API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.payloads: list[dict] = []
        self.mode = "success"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        payload = json.loads(base64.b64decode(json.loads(request.content)["request"]))
        self.payloads.append(payload)
        if self.mode == "http_error":
            return httpx.Response(500, json={"success": False, "code": "INTERNAL_SERVER_ERROR"})
        if self.mode == "rejected":
            return httpx.Response(200, json={"success": False, "code": "BAD_REQUEST", "message": "Invalid amount"})
        if self.mode == "malformed":
            return httpx.Response(200, content=b"<html>oops</html>")
        if self.mode == "transport_error":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(
            200,
            json={
                "success": True,
                "code": "PAYMENT_INITIATED",
                "data": {
                    "merchantId": payload["merchantId"],
                    "merchantTransactionId": payload["merchantTransactionId"],
                    "instrumentResponse": {"type": "PAY_PAGE", "redirectInfo": {"url": PAY_PAGE_URL, "method": "GET"}},
                },
            },
        )

    def factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), timeout=5.0)


def auth_headers(user_id: str) -> dict[str, str]:
    token = issue_access_token(user_id, secret=JWT_SECRET)
    return {"Authorization": f"Bearer {token}"}


def signed_callback(payload: dict, key: str = SALT_KEY, index: str = "1") -> tuple[str, dict[str, str]]:
    body = json.dumps(payload, separators=(",", ":"))
    signature = SignatureCodec({index: key}, index).sign(body, SigningContext.WEBHOOK)
    return body, {"Content-Type": "application/json", "X-VERIFY": signature}


def callback_payload(transaction_id: str, amount: int = 2900, status: str = "PAYMENT_SUCCESS") -> dict:
    succeeded = status == "PAYMENT_SUCCESS"
    return {
        "merchantId": "MERCHANTUAT",
        "merchantTransactionId": transaction_id,
        "transactionId": "T2410181230456789",
        "amount": amount,
        "status": status,
        "responseCode": "SUCCESS" if succeeded else "PAYMENT_ERROR",
        "responseMessage": "Payment completed" if succeeded else "Payment failed",
        "paymentInstrument": {"type": "UPI", "utr": "206378866112"},
    }
