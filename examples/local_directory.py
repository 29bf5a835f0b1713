#!/usr/bin/env python3
"""Local directory example.

This example runs the directory client against an in-memory ledger:
a mix node and a provider publish their descriptors for the next epoch,
the ledger rolls over and publishes a signed document, and the client
fetches and verifies it.
"""

import asyncio
import sys
from pathlib import Path

# Add the parent directory to the path so we can import mixpki
sys.path.insert(0, str(Path(__file__).parent.parent))

from mixpki import DirectoryClient, DocumentVerifier, MemoryLedger, MixDescriptor, now
from mixpki.config import LoggingConfig
from mixpki.crypto import SigningKey, X25519KeyPair
from mixpki.errors import NoDocumentError
from mixpki.log import configure_logging
from mixpki.retry import fetch_current_document
from mixpki.s11n import PROVIDER_LAYER


def make_node(name: str, epoch: int, layer: int, port: int) -> tuple[SigningKey, MixDescriptor]:
    key = SigningKey.generate()
    descriptor = MixDescriptor(
        name=name,
        identity_key=key.public_bytes(),
        link_key=X25519KeyPair.generate().public_bytes(),
        mix_keys={epoch: X25519KeyPair.generate().public_bytes()},
        addresses={"tcp4": [f"127.0.0.1:{port}"]},
        layer=layer,
    )
    return key, descriptor


async def local_directory_example():
    """Publish two descriptors and read back the verified document."""
    print("mixpki Local Directory Example")
    print("=" * 40)

    configure_logging(LoggingConfig(level="INFO"))

    # 1. Ledger and client
    print("\n1. Starting in-memory ledger...")
    authority = SigningKey.generate()
    ledger = MemoryLedger(authority=authority)
    client = DirectoryClient(
        ledger,
        verifier=DocumentVerifier(authorities=frozenset({authority.public_bytes()})),
    )
    epoch, elapsed = await client.get_epoch()
    print(f"   ✓ Epoch {epoch}, {elapsed} blocks in")

    # 2. Publish descriptors for the next epoch
    print("\n2. Publishing descriptors for the next epoch...")
    target = epoch + 1
    for name, layer, port in (("mix1", 0, 29483), ("provider1", PROVIDER_LAYER, 29484)):
        key, descriptor = make_node(name, target, layer, port)
        result = await client.post(target, key, descriptor)
        print(f"   ✓ {name} committed at height {result.height}")

    # 3. The document does not exist until the epoch starts
    print("\n3. Fetching before rollover...")
    try:
        await client.get(target)
    except NoDocumentError as e:
        print(f"   ✓ {e}")

    # 4. Roll the ledger over and fetch the current document
    print("\n4. Advancing to the next epoch...")
    ledger.advance(ledger.heights_per_epoch)
    current = await now(client)
    print(f"   ✓ Epoch {current.epoch}, {current.remaining} remaining")

    doc = await fetch_current_document(client)
    print(f"   ✓ Document for epoch {doc.epoch}:")
    for descriptor in doc.descriptors:
        role = "provider" if descriptor.is_provider else f"layer {descriptor.layer}"
        print(f"     - {descriptor.name} ({role}) {descriptor.addresses}")

    print("\nDone.")


if __name__ == "__main__":
    asyncio.run(local_directory_example())
