"""
ncsa-hmac: HMAC request authentication for HTTP-style requests.

Canonicalizes request attributes into a fixed string-to-sign, signs it with
a shared secret and verifies presented signatures using the NCSA.HMAC
authorization scheme.
"""

from ncsa_hmac.common.hmac import (
    DEFAULT_FORMAT,
    SCHEME,
    CanonicalFormat,
    KeyPair,
    SignableRequest,
    SigningHash,
    averify,
    canonicalize,
    sign,
    verify,
)

__version__ = "1.0.0"

__all__ = [
    "DEFAULT_FORMAT",
    "SCHEME",
    "CanonicalFormat",
    "KeyPair",
    "SignableRequest",
    "SigningHash",
    "averify",
    "canonicalize",
    "sign",
    "verify",
]
