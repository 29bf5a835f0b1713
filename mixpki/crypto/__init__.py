"""Key material for :mod:`mixpki`.

Thin wrappers around :pypi:`cryptography`: Ed25519 for every signature the
directory carries, X25519 for the link and mix keys inside descriptors.
"""

from __future__ import annotations

import hashlib

from .ecdh import X25519KeyPair, x25519_public_from_bytes
from .eddsa import PUBLIC_KEY_SIZE, SIGNATURE_SIZE, SigningKey, verify_signature


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


__all__ = [
    "PUBLIC_KEY_SIZE",
    "SIGNATURE_SIZE",
    "SigningKey",
    "X25519KeyPair",
    "sha256",
    "verify_signature",
    "x25519_public_from_bytes",
]
