"""Test configuration for mixpki package."""

from typing import Callable

import pytest

from mixpki.client import DirectoryClient
from mixpki.crypto import SigningKey, X25519KeyPair
from mixpki.ledger import MemoryLedger
from mixpki.s11n import PROVIDER_LAYER, MixDescriptor

DescriptorFactory = Callable[..., tuple[SigningKey, MixDescriptor]]


@pytest.fixture
def authority() -> SigningKey:
    """Provide a directory authority signing key."""
    return SigningKey.generate()


@pytest.fixture
def ledger(authority) -> MemoryLedger:
    """Provide a fresh in-memory ledger that publishes its own documents."""
    return MemoryLedger(authority=authority)


@pytest.fixture
def client(ledger) -> DirectoryClient:
    """Provide a directory client bound to the in-memory ledger."""
    return DirectoryClient(ledger)


@pytest.fixture
def make_descriptor() -> DescriptorFactory:
    """Provide a factory of ``(identity_key, descriptor)`` pairs.

    Descriptors carry a mix key for every epoch listed in ``epochs``.
    """

    counter = iter(range(1, 1_000_000))

    def factory(
        *epochs: int,
        layer: int = 0,
        name: str | None = None,
        key: SigningKey | None = None,
        **overrides,
    ) -> tuple[SigningKey, MixDescriptor]:
        key = key or SigningKey.generate()
        index = next(counter)
        fields = dict(
            name=f"node{index}" if name is None else name,
            identity_key=key.public_bytes(),
            link_key=X25519KeyPair.generate().public_bytes(),
            mix_keys={e: X25519KeyPair.generate().public_bytes() for e in (epochs or (1,))},
            addresses={"tcp4": [f"127.0.0.1:{29000 + index}"]},
            layer=layer,
        )
        fields.update(overrides)
        return key, MixDescriptor(**fields)

    return factory


@pytest.fixture
def make_provider(make_descriptor) -> DescriptorFactory:
    """Provide a factory of provider descriptors."""

    def factory(*epochs: int, **overrides) -> tuple[SigningKey, MixDescriptor]:
        return make_descriptor(*epochs, layer=PROVIDER_LAYER, **overrides)

    return factory
