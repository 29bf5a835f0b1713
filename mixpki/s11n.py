"""Mix descriptors, directory documents and their signed serialized forms.

Both descriptors and documents travel inside the same signed envelope, a
canonical JSON object::

    {"payload": <base64>, "public_key": <hex>, "signature": <hex>, "type": <str>}

The Ed25519 signature covers ``type || 0x00 || payload`` so that a signed
descriptor can never be replayed as a document or the other way round. A
descriptor is signed by its own identity key; a document by a directory
authority. Documents embed the signed descriptor envelopes verbatim, which
lets every reader re-check each node's own signature.
"""

from __future__ import annotations

import base64
import binascii
import ipaddress
import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol

from mixpki.crypto import (
    PUBLIC_KEY_SIZE,
    SigningKey,
    verify_signature,
    x25519_public_from_bytes,
)
from mixpki.errors import FormatError, InvalidDescriptorError, VerificationError

PROVIDER_LAYER = 255
TRANSPORTS = frozenset({"tcp", "tcp4", "tcp6", "onion"})

DESCRIPTOR_TYPE = "mix-descriptor"
DOCUMENT_TYPE = "consensus-document"


def _canonical_json(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def _b64d(s: Any) -> bytes:
    if not isinstance(s, str):
        raise FormatError("expected base64 text")
    try:
        return base64.b64decode(s.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise FormatError("invalid base64") from e


def _hexd(s: Any, what: str) -> bytes:
    if not isinstance(s, str):
        raise FormatError(f"{what} must be hex text")
    try:
        return bytes.fromhex(s)
    except ValueError as e:
        raise FormatError(f"{what} is not hex") from e


def _seal(key: SigningKey, kind: str, payload: bytes) -> bytes:
    signature = key.sign(kind.encode("ascii") + b"\x00" + payload)
    return _canonical_json(
        {
            "type": kind,
            "payload": _b64e(payload),
            "public_key": key.public_bytes().hex(),
            "signature": signature.hex(),
        }
    )


def _open(raw: bytes, kind: str) -> tuple[bytes, bytes]:
    """Check an envelope and return ``(signer_public_key, payload)``."""

    try:
        env = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError(f"{kind} envelope is not valid JSON") from e
    if not isinstance(env, dict):
        raise FormatError(f"{kind} envelope must be a JSON object")
    if env.get("type") != kind:
        raise FormatError(f"expected a {kind} envelope, got {env.get('type')!r}")

    payload = _b64d(env.get("payload"))
    public_key = _hexd(env.get("public_key"), "envelope public key")
    signature = _hexd(env.get("signature"), "envelope signature")
    if not verify_signature(public_key, signature, kind.encode("ascii") + b"\x00" + payload):
        raise VerificationError(f"{kind} signature is invalid")
    return public_key, payload


@dataclass(frozen=True)
class MixDescriptor:
    """One node's routing and identity record for an epoch."""

    name: str
    identity_key: bytes
    link_key: bytes
    mix_keys: Mapping[int, bytes]
    addresses: Mapping[str, list[str]]
    layer: int
    load_weight: int = 0
    kaetzchen: Mapping[str, Mapping[str, Any]] | None = None
    registration_http_addresses: list[str] = field(default_factory=list)

    @property
    def is_provider(self) -> bool:
        return self.layer == PROVIDER_LAYER

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "identity_key": self.identity_key.hex(),
            "link_key": self.link_key.hex(),
            "mix_keys": {str(epoch): key.hex() for epoch, key in self.mix_keys.items()},
            "addresses": {t: list(addrs) for t, addrs in self.addresses.items()},
            "layer": self.layer,
            "load_weight": self.load_weight,
            "kaetzchen": None if self.kaetzchen is None else {k: dict(v) for k, v in self.kaetzchen.items()},
            "registration_http_addresses": list(self.registration_http_addresses),
        }

    @classmethod
    def from_dict(cls, blob: Mapping[str, Any]) -> "MixDescriptor":
        try:
            mix_keys = {int(epoch): _hexd(key, "mix key") for epoch, key in dict(blob["mix_keys"]).items()}
            addresses = {str(t): [str(a) for a in addrs] for t, addrs in dict(blob["addresses"]).items()}
            kaetzchen = blob.get("kaetzchen")
            return cls(
                name=str(blob["name"]),
                identity_key=_hexd(blob["identity_key"], "identity key"),
                link_key=_hexd(blob["link_key"], "link key"),
                mix_keys=mix_keys,
                addresses=addresses,
                layer=int(blob["layer"]),
                load_weight=int(blob.get("load_weight", 0)),
                kaetzchen=None if kaetzchen is None else {str(k): dict(v) for k, v in dict(kaetzchen).items()},
                registration_http_addresses=[str(a) for a in blob.get("registration_http_addresses") or []],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FormatError(f"malformed mix descriptor: {e}") from e


@dataclass(frozen=True)
class SignedDescriptor:
    descriptor: MixDescriptor
    raw: bytes


@dataclass(frozen=True)
class Document:
    """The signed directory for one epoch."""

    epoch: int
    topology: tuple[tuple[SignedDescriptor, ...], ...] = ()
    providers: tuple[SignedDescriptor, ...] = ()
    send_rate_per_minute: int = 0
    mu: float = 0.0
    mu_max_delay: int = 0
    lambda_p: float = 0.0
    lambda_p_max_delay: int = 0
    lambda_l: float = 0.0
    lambda_l_max_delay: int = 0
    lambda_d: float = 0.0
    lambda_d_max_delay: int = 0
    lambda_m: float = 0.0
    lambda_m_max_delay: int = 0
    shared_random_value: bytes = b""

    @property
    def descriptors(self) -> list[MixDescriptor]:
        mixes = [sd.descriptor for layer in self.topology for sd in layer]
        return mixes + [sd.descriptor for sd in self.providers]

    @property
    def signed_descriptors(self) -> list[bytes]:
        mixes = [sd.raw for layer in self.topology for sd in layer]
        return mixes + [sd.raw for sd in self.providers]

    def get_node(self, name: str) -> MixDescriptor:
        for desc in self.descriptors:
            if desc.name == name:
                return desc
        raise KeyError(name)

    def registration_providers(self) -> list[MixDescriptor]:
        return [sd.descriptor for sd in self.providers if sd.descriptor.registration_http_addresses]

    def _parameters(self) -> dict[str, Any]:
        return {
            "send_rate_per_minute": self.send_rate_per_minute,
            "mu": self.mu,
            "mu_max_delay": self.mu_max_delay,
            "lambda_p": self.lambda_p,
            "lambda_p_max_delay": self.lambda_p_max_delay,
            "lambda_l": self.lambda_l,
            "lambda_l_max_delay": self.lambda_l_max_delay,
            "lambda_d": self.lambda_d,
            "lambda_d_max_delay": self.lambda_d_max_delay,
            "lambda_m": self.lambda_m,
            "lambda_m_max_delay": self.lambda_m_max_delay,
        }

    def to_payload(self) -> bytes:
        body = self._parameters()
        body["epoch"] = self.epoch
        body["topology"] = [[_b64e(sd.raw) for sd in layer] for layer in self.topology]
        body["providers"] = [_b64e(sd.raw) for sd in self.providers]
        body["shared_random_value"] = self.shared_random_value.hex()
        return _canonical_json(body)


def _check_address(transport: str, address: str) -> None:
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise InvalidDescriptorError(f"address {address!r} is not host:port")
    try:
        port_num = int(port)
    except ValueError as e:
        raise InvalidDescriptorError(f"address {address!r} has a bad port") from e
    if not 0 < port_num < 65536:
        raise InvalidDescriptorError(f"address {address!r} has a bad port")

    host = host.strip("[]")
    try:
        if transport == "tcp4":
            ipaddress.IPv4Address(host)
        elif transport == "tcp6":
            ipaddress.IPv6Address(host)
    except ValueError as e:
        raise InvalidDescriptorError(f"address {address!r} is not valid for {transport}") from e
    if transport == "onion" and not host.endswith(".onion"):
        raise InvalidDescriptorError(f"address {address!r} is not an onion address")


def is_descriptor_well_formed(descriptor: MixDescriptor, epoch: int) -> None:
    """Raise :class:`InvalidDescriptorError` unless ``descriptor`` is usable for ``epoch``."""

    if not descriptor.name:
        raise InvalidDescriptorError("descriptor is missing a name")
    if len(descriptor.identity_key) != PUBLIC_KEY_SIZE:
        raise InvalidDescriptorError(f"{descriptor.name}: identity key must be {PUBLIC_KEY_SIZE} bytes")
    try:
        x25519_public_from_bytes(descriptor.link_key)
    except VerificationError as e:
        raise InvalidDescriptorError(f"{descriptor.name}: invalid link key") from e

    if epoch not in descriptor.mix_keys:
        raise InvalidDescriptorError(f"{descriptor.name}: missing mix key for epoch {epoch}")
    for key_epoch, key in descriptor.mix_keys.items():
        try:
            x25519_public_from_bytes(key)
        except VerificationError as e:
            raise InvalidDescriptorError(f"{descriptor.name}: invalid mix key for epoch {key_epoch}") from e

    if not descriptor.addresses:
        raise InvalidDescriptorError(f"{descriptor.name}: no addresses")
    for transport, addrs in descriptor.addresses.items():
        if transport not in TRANSPORTS:
            raise InvalidDescriptorError(f"{descriptor.name}: unknown transport {transport!r}")
        if not addrs:
            raise InvalidDescriptorError(f"{descriptor.name}: empty address list for {transport}")
        for address in addrs:
            _check_address(transport, address)

    if not (0 <= descriptor.layer < PROVIDER_LAYER or descriptor.is_provider):
        raise InvalidDescriptorError(f"{descriptor.name}: invalid layer {descriptor.layer}")
    if not descriptor.is_provider and (descriptor.kaetzchen or descriptor.registration_http_addresses):
        raise InvalidDescriptorError(f"{descriptor.name}: only providers may offer services")
    if descriptor.load_weight < 0:
        raise InvalidDescriptorError(f"{descriptor.name}: negative load weight")


def sign_descriptor(signing_key: SigningKey, descriptor: MixDescriptor) -> bytes:
    if signing_key.public_bytes() != descriptor.identity_key:
        raise InvalidDescriptorError(f"{descriptor.name}: signing key does not match identity key")
    return _seal(signing_key, DESCRIPTOR_TYPE, _canonical_json(descriptor.to_dict()))


def verify_descriptor(raw: bytes) -> MixDescriptor:
    public_key, payload = _open(raw, DESCRIPTOR_TYPE)
    try:
        blob = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError("descriptor payload is not valid JSON") from e
    if not isinstance(blob, dict):
        raise FormatError("descriptor payload must be a JSON object")
    descriptor = MixDescriptor.from_dict(blob)
    if descriptor.identity_key != public_key:
        raise VerificationError(f"{descriptor.name}: descriptor not signed by its identity key")
    return descriptor


def build_document(epoch: int, signed_descriptors: Iterable[bytes], **parameters: Any) -> Document:
    """Arrange signed descriptors into a document for ``epoch``.

    Mixes are grouped by layer and ordered by identity key; providers go to
    their own list. Keyword arguments set the mixing parameters.
    """

    layers: dict[int, list[SignedDescriptor]] = {}
    providers: list[SignedDescriptor] = []
    for raw in signed_descriptors:
        sd = SignedDescriptor(descriptor=verify_descriptor(raw), raw=raw)
        if sd.descriptor.is_provider:
            providers.append(sd)
        else:
            layers.setdefault(sd.descriptor.layer, []).append(sd)

    def order(sd: SignedDescriptor) -> bytes:
        return sd.descriptor.identity_key

    n_layers = max(layers) + 1 if layers else 0
    topology = tuple(tuple(sorted(layers.get(i, []), key=order)) for i in range(n_layers))
    return Document(epoch=epoch, topology=topology, providers=tuple(sorted(providers, key=order)), **parameters)


def sign_document(signing_key: SigningKey, document: Document) -> bytes:
    return _seal(signing_key, DOCUMENT_TYPE, document.to_payload())


def _list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise FormatError(f"document {what} must be a list")
    return value


def _parameter(body: Mapping[str, Any], name: str, default: int | float) -> int | float:
    value = body.get(name, default)
    # bool is an int subclass; never accept it as a number.
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            raise FormatError(f"document parameter {name!r} must be an integer")
        return value
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise FormatError(f"document parameter {name!r} must be a number")
    return float(value)


def _parse_signed(raw_b64: Any, epoch: int) -> SignedDescriptor:
    raw = _b64d(raw_b64)
    descriptor = verify_descriptor(raw)
    try:
        is_descriptor_well_formed(descriptor, epoch)
    except InvalidDescriptorError as e:
        raise VerificationError(f"document carries a malformed descriptor: {e}") from e
    return SignedDescriptor(descriptor=descriptor, raw=raw)


def verify_and_parse_document(raw: bytes, authorities: Iterable[bytes] | None = None) -> Document:
    """Verify a signed document and every descriptor inside it.

    Args:
        raw: Signed document envelope.
        authorities: Public keys allowed to sign documents. ``None`` accepts
            any valid signer.

    Raises:
        FormatError: ``raw`` cannot be decoded.
        VerificationError: A signature is invalid, the signer is not an
            authority, or an embedded descriptor is unusable for the epoch.
    """

    signer, payload = _open(raw, DOCUMENT_TYPE)
    if authorities is not None and signer not in set(authorities):
        raise VerificationError("document not signed by a known authority")

    try:
        body = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError("document payload is not valid JSON") from e
    if not isinstance(body, dict):
        raise FormatError("document payload must be a JSON object")

    epoch = body.get("epoch")
    if not isinstance(epoch, int) or isinstance(epoch, bool) or epoch < 0:
        raise FormatError("document epoch must be a non-negative integer")
    parameters = {
        name: _parameter(body, name, default) for name, default in Document(epoch=0)._parameters().items()
    }

    topology = []
    for index, layer in enumerate(_list(body.get("topology"), "topology")):
        parsed = tuple(_parse_signed(item, epoch) for item in _list(layer, f"layer {index}"))
        for sd in parsed:
            if sd.descriptor.layer != index:
                raise VerificationError(f"{sd.descriptor.name}: listed in layer {index}, claims layer {sd.descriptor.layer}")
        topology.append(parsed)

    providers = tuple(_parse_signed(item, epoch) for item in _list(body.get("providers"), "providers"))
    for sd in providers:
        if not sd.descriptor.is_provider:
            raise VerificationError(f"{sd.descriptor.name}: listed as provider but is not one")

    return Document(
        epoch=epoch,
        topology=tuple(topology),
        providers=providers,
        shared_random_value=_hexd(body.get("shared_random_value", ""), "shared random value"),
        **parameters,
    )


class Verifier(Protocol):
    """Document verifier contract consumed by the directory client."""

    def is_descriptor_well_formed(self, descriptor: MixDescriptor, epoch: int) -> None: ...

    def sign_descriptor(self, signing_key: SigningKey, descriptor: MixDescriptor) -> bytes: ...

    def verify_and_parse_document(self, raw: bytes) -> Document: ...


@dataclass
class DocumentVerifier:
    """Default :class:`Verifier`, optionally pinned to a set of authority keys."""

    authorities: frozenset[bytes] | None = None

    def is_descriptor_well_formed(self, descriptor: MixDescriptor, epoch: int) -> None:
        is_descriptor_well_formed(descriptor, epoch)

    def sign_descriptor(self, signing_key: SigningKey, descriptor: MixDescriptor) -> bytes:
        return sign_descriptor(signing_key, descriptor)

    def verify_and_parse_document(self, raw: bytes) -> Document:
        return verify_and_parse_document(raw, self.authorities)
