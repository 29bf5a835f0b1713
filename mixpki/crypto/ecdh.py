"""X25519 keys used as descriptor link and mix keys."""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from mixpki.errors import VerificationError

KEY_SIZE = 32


@dataclass(frozen=True, slots=True)
class X25519KeyPair:
    """An X25519 key pair."""

    private: x25519.X25519PrivateKey
    public: x25519.X25519PublicKey

    @classmethod
    def generate(cls) -> "X25519KeyPair":
        private = x25519.X25519PrivateKey.generate()
        return cls(private=private, public=private.public_key())

    def public_bytes(self) -> bytes:
        """Return the raw 32-byte public key."""

        return self.public.public_bytes(Encoding.Raw, PublicFormat.Raw)


def x25519_public_from_bytes(data: bytes) -> x25519.X25519PublicKey:
    """Parse an X25519 public key from 32 raw bytes."""

    if len(data) != KEY_SIZE:
        raise VerificationError(f"X25519 public key must be {KEY_SIZE} bytes")
    try:
        return x25519.X25519PublicKey.from_public_bytes(data)
    except ValueError as e:  # pragma: no cover
        raise VerificationError("invalid X25519 public key") from e
