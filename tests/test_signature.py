import base64
import hashlib
import json

from billing.payments.signature import SignatureCodec, SigningContext, canonicalize, encode_payload


def _codec() -> SignatureCodec:
    return SignatureCodec({"1": "salt-one", "2": "salt-two"}, "1")


def test_sign_matches_gateway_checksum_scheme():
    body = '{"amount":2900,"merchantTransactionId":"TXN_1"}'
    signature = _codec().sign(body, SigningContext.CREATE_ORDER)

    encoded = base64.b64encode(body.encode("utf-8")).decode("ascii")
    expected = hashlib.sha256(f"{encoded}/pg/v1/paysalt-one".encode("utf-8")).hexdigest()
    assert signature == f"{expected}###1"


def test_verify_round_trip_for_raw_body():
    codec = _codec()
    body = b'{"status":"PAYMENT_SUCCESS","amount":2900}'
    signature = codec.sign(body, SigningContext.WEBHOOK)

    assert codec.verify(body, signature, SigningContext.WEBHOOK) is True
    assert codec.verify(body.decode("utf-8"), signature, SigningContext.WEBHOOK) is True


def test_signature_is_bound_to_context():
    codec = _codec()
    body = '{"amount":2900}'
    signature = codec.sign(body, SigningContext.CREATE_ORDER)

    assert codec.verify(body, signature, SigningContext.WEBHOOK) is False


def test_tampered_body_fails_verification():
    codec = _codec()
    signature = codec.sign('{"amount":2900}', SigningContext.WEBHOOK)

    assert codec.verify('{"amount":1900}', signature, SigningContext.WEBHOOK) is False


def test_verify_rejects_missing_or_unknown_key_index():
    codec = _codec()
    body = '{"amount":2900}'
    digest = codec.sign(body, SigningContext.WEBHOOK).split("###")[0]

    assert codec.verify(body, "", SigningContext.WEBHOOK) is False
    assert codec.verify(body, None, SigningContext.WEBHOOK) is False
    assert codec.verify(body, digest, SigningContext.WEBHOOK) is False
    assert codec.verify(body, f"{digest}###9", SigningContext.WEBHOOK) is False


def test_rotated_key_still_verifies():
    old = SignatureCodec({"1": "salt-one"}, "1")
    rotated = SignatureCodec({"1": "salt-one", "2": "salt-two"}, "2")
    body = '{"amount":2900}'

    assert rotated.verify(body, old.sign(body, SigningContext.WEBHOOK), SigningContext.WEBHOOK) is True
    assert rotated.sign(body, SigningContext.WEBHOOK).endswith("###2")


def test_mappings_are_canonicalised_before_signing():
    codec = _codec()
    first = {"b": 1, "a": 2}
    second = {"a": 2, "b": 1}

    assert canonicalize(first) == '{"a":2,"b":1}'
    assert codec.sign(first, SigningContext.CREATE_ORDER) == codec.sign(second, SigningContext.CREATE_ORDER)
    assert json.loads(base64.b64decode(encode_payload(first))) == second


def test_undecodable_bytes_do_not_raise():
    codec = _codec()
    signature = codec.sign("x", SigningContext.WEBHOOK)

    assert codec.verify(b"\xff\xfe", signature, SigningContext.WEBHOOK) is False
