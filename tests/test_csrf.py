from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

from billing.payments.csrf import PaymentUrlGuard

NOW = datetime(2024, 10, 18, 12, 0, tzinfo=timezone.utc)
PAY_URL = "https://mercury-uat.phonepe.com/transact/pay?token=abc123"


def _guard() -> PaymentUrlGuard:
    return PaymentUrlGuard("salt-secret", "phonepe.com", clock=lambda: NOW)


def test_token_valid_until_thirty_minutes():
    guard = _guard()
    token = guard.issue("ORDER_1", now=NOW)

    assert guard.validate(token, "ORDER_1", now=NOW + timedelta(minutes=29, seconds=59)) is True
    assert guard.validate(token, "ORDER_1", now=NOW + timedelta(minutes=30)) is False


def test_token_bound_to_order_and_secret():
    guard = _guard()
    token = guard.issue("ORDER_1", now=NOW)
    other = PaymentUrlGuard("different-secret", "phonepe.com")

    assert guard.validate(token, "ORDER_2", now=NOW) is False
    assert other.validate(token, "ORDER_1", now=NOW) is False


def test_malformed_or_future_tokens_rejected():
    guard = _guard()
    future = guard.issue("ORDER_1", now=NOW + timedelta(minutes=10))

    assert guard.validate("", "ORDER_1", now=NOW) is False
    assert guard.validate("not-a-token", "ORDER_1", now=NOW) is False
    assert guard.validate("abc.def", "ORDER_1", now=NOW) is False
    assert guard.validate(future, "ORDER_1", now=NOW) is False


def test_secure_url_keeps_existing_query_and_validates():
    guard = _guard()
    url = guard.secure_url(PAY_URL, "ORDER_1", now=NOW)
    query = parse_qs(urlsplit(url).query)

    assert query["token"] == ["abc123"]
    assert query["orderId"] == ["ORDER_1"]
    assert query["csrf"][0].startswith(query["timestamp"][0] + ".")
    assert guard.validate_url(url, "ORDER_1", now=NOW + timedelta(minutes=5)) is True


def test_validate_url_requires_gateway_host():
    guard = _guard()
    url = guard.secure_url("https://phonepe.com.evil.example/pay", "ORDER_1", now=NOW)
    subdomain = guard.secure_url("https://api.phonepe.com/pay", "ORDER_1", now=NOW)

    assert guard.validate_url(url, "ORDER_1", now=NOW) is False
    assert guard.validate_url(subdomain, "ORDER_1", now=NOW) is True


def test_validate_url_requires_every_parameter():
    guard = _guard()
    token = guard.issue("ORDER_1", now=NOW)
    timestamp = token.split(".")[0]

    assert guard.validate_url(f"https://phonepe.com/pay?csrf={token}&orderId=ORDER_1", "ORDER_1", now=NOW) is False
    assert guard.validate_url(f"https://phonepe.com/pay?csrf={token}&timestamp={timestamp}", "ORDER_1", now=NOW) is False
    assert (
        guard.validate_url(
            f"https://phonepe.com/pay?csrf={token}&orderId=ORDER_2&timestamp={timestamp}", "ORDER_1", now=NOW
        )
        is False
    )


def test_validate_url_rejects_expired_link():
    guard = _guard()
    url = guard.secure_url(PAY_URL, "ORDER_1", now=NOW)

    assert guard.validate_url(url, "ORDER_1", now=NOW + timedelta(minutes=31)) is False
