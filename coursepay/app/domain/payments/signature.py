"""
VNPay signature codec.

VNPay signs the query string built from every `vnp_*` parameter except the
hash fields themselves. Keys are sorted, values are encoded the way
JavaScript's encodeURIComponent does with spaces rendered as '+', and the
result is signed with HMAC-SHA512.
"""

import hashlib
import hmac
from typing import Mapping, Any
from urllib.parse import quote

HASH_FIELDS = frozenset({"vnp_SecureHash", "vnp_SecureHashType"})

# Characters encodeURIComponent leaves untouched besides alphanumerics
_UNRESERVED = "-_.!~*'()"


def encode_component(value: Any) -> str:
    """Percent-encode a key or value, spaces as '+'."""
    return quote(str(value), safe=_UNRESERVED).replace("%20", "+")


def canonicalize(params: Mapping[str, Any]) -> str:
    """
    Build the canonical string that VNPay signs.

    Args:
        params: Gateway parameters; hash fields and None values are ignored

    Returns:
        `k1=v1&k2=v2...` with keys sorted by their encoded form
    """
    encoded = {
        encode_component(key): encode_component(value)
        for key, value in params.items()
        if key not in HASH_FIELDS and value is not None
    }
    return "&".join(f"{key}={encoded[key]}" for key in sorted(encoded))


def sign(params: Mapping[str, Any], secret: str) -> str:
    """Return the lowercase hex HMAC-SHA512 of the canonical string."""
    return hmac.new(
        secret.encode("utf-8"),
        canonicalize(params).encode("utf-8"),
        hashlib.sha512,
    ).hexdigest()


def verify(params: Mapping[str, Any], signature: str, secret: str) -> bool:
    """
    Check a gateway signature in constant time.

    The comparison is case-insensitive on the hex digest; an empty signature
    never verifies.
    """
    if not signature:
        return False
    expected = sign(params, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.lower().encode("utf-8"))
