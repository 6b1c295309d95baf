"""
Signature codec tests.
"""

import hashlib
import hmac

from coursepay.app.domain.payments.signature import canonicalize, sign, verify, encode_component

SECRET = "SECRETKEY"


def _params():
    return {
        "vnp_TxnRef": "abc123",
        "vnp_Amount": "50000000",
        "vnp_OrderInfo": "Thanh toan don hang abc123",
        "vnp_Command": "pay",
    }


def test_canonical_string_sorted_and_plus_encoded():
    assert canonicalize(_params()) == (
        "vnp_Amount=50000000"
        "&vnp_Command=pay"
        "&vnp_OrderInfo=Thanh+toan+don+hang+abc123"
        "&vnp_TxnRef=abc123"
    )


def test_canonical_string_ignores_hash_fields():
    params = _params()
    params["vnp_SecureHash"] = "deadbeef"
    params["vnp_SecureHashType"] = "HmacSHA512"
    assert canonicalize(params) == canonicalize(_params())


def test_encode_component_matches_encode_uri_component():
    assert encode_component("a b") == "a+b"
    assert encode_component("http://x.vn/cb?a=1") == "http%3A%2F%2Fx.vn%2Fcb%3Fa%3D1"
    assert encode_component("-_.!~*'()") == "-_.!~*'()"
    assert encode_component("đ") == "%C4%91"


def test_sign_is_lowercase_hmac_sha512():
    params = _params()
    expected = hmac.new(SECRET.encode(), canonicalize(params).encode(), hashlib.sha512).hexdigest()
    signature = sign(params, SECRET)
    assert signature == expected
    assert signature == signature.lower()
    assert len(signature) == 128


def test_verify_round_trip():
    params = _params()
    signature = sign(params, SECRET)
    assert verify(params, signature, SECRET)
    assert verify(params, signature.upper(), SECRET)


def test_verify_rejects_tampered_value():
    params = _params()
    signature = sign(params, SECRET)
    params["vnp_Amount"] = "50000100"
    assert not verify(params, signature, SECRET)


def test_verify_rejects_wrong_secret_and_empty_signature():
    params = _params()
    assert not verify(params, sign(params, "OTHER"), SECRET)
    assert not verify(params, "", SECRET)
    assert not verify(params, "not-hex-ü", SECRET)
