"""Wire codec for ledger queries, transactions and epoch records.

Queries and transactions travel as canonical JSON (sorted keys, compact
separators) so that the same value always encodes to the same bytes; the
transaction signature covers that canonical form. The epoch record is the
16-byte value the ledger stores under its epoch key::

    [0:8)   unsigned varint epoch, zero padded
    [8:16)  signed (zig-zag) varint starting block height, zero padded

Varints follow Go's ``encoding/binary`` layout.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any

from mixpki.crypto import SigningKey, sha256, verify_signature
from mixpki.errors import FormatError

PROTOCOL_VERSION = "1"

EPOCH_RECORD_SIZE = 16
_SLOT_SIZE = 8
_U64_MASK = (1 << 64) - 1


class Command(IntEnum):
    PUBLISH_MIX_DESCRIPTOR = 0
    ADD_CONSENSUS_DOCUMENT = 1
    GET_EPOCH = 3
    GET_CONSENSUS = 4


QUERY_COMMANDS = frozenset({Command.GET_EPOCH, Command.GET_CONSENSUS})
TRANSACTION_COMMANDS = frozenset({Command.PUBLISH_MIX_DESCRIPTOR, Command.ADD_CONSENSUS_DOCUMENT})


def encode_uvarint(value: int) -> bytes:
    if value < 0 or value > _U64_MASK:
        raise ValueError("uvarint value out of range")
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode_uvarint(data: bytes) -> tuple[int, int]:
    """Decode an unsigned varint from the start of ``data``.

    Returns ``(value, bytes_consumed)``. Raises :class:`FormatError` when the
    varint is truncated or overflows 64 bits.
    """

    value = 0
    shift = 0
    for i, b in enumerate(data):
        if i == 10 or (i == 9 and b > 1):
            raise FormatError("varint overflows 64 bits")
        if b < 0x80:
            return value | (b << shift), i + 1
        value |= (b & 0x7F) << shift
        shift += 7
    raise FormatError("truncated varint")


def encode_varint(value: int) -> bytes:
    if value < -(1 << 63) or value >= (1 << 63):
        raise ValueError("varint value out of range")
    ux = (value << 1) & _U64_MASK
    if value < 0:
        ux ^= _U64_MASK
    return encode_uvarint(ux)


def decode_varint(data: bytes) -> tuple[int, int]:
    ux, n = decode_uvarint(data)
    x = ux >> 1
    if ux & 1:
        x = ~x
    return x, n


def _pad_slot(encoded: bytes, what: str) -> bytes:
    if len(encoded) > _SLOT_SIZE:
        raise ValueError(f"{what} does not fit in an {_SLOT_SIZE}-byte varint slot")
    return encoded + b"\x00" * (_SLOT_SIZE - len(encoded))


@dataclass(frozen=True)
class EpochRecord:
    epoch: int
    starting_height: int

    def encode(self) -> bytes:
        return _pad_slot(encode_uvarint(self.epoch), "epoch") + _pad_slot(
            encode_varint(self.starting_height), "starting height"
        )

    @staticmethod
    def decode(data: bytes) -> "EpochRecord":
        if len(data) != EPOCH_RECORD_SIZE:
            raise FormatError(
                f"epoch record must be {EPOCH_RECORD_SIZE} bytes, got {len(data)}"
            )
        epoch, _ = decode_uvarint(data[:_SLOT_SIZE])
        starting_height, _ = decode_varint(data[_SLOT_SIZE:])
        return EpochRecord(epoch=epoch, starting_height=starting_height)


def _canonical_json(obj: dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _load_object(data: bytes, what: str) -> dict[str, Any]:
    try:
        obj = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise FormatError(f"{what} is not valid JSON") from e
    if not isinstance(obj, dict):
        raise FormatError(f"{what} must be a JSON object")
    return obj


def _field(obj: dict[str, Any], name: str, kind: type, what: str) -> Any:
    value = obj.get(name)
    # bool is an int subclass; reject it explicitly for numeric fields.
    if not isinstance(value, kind) or isinstance(value, bool):
        raise FormatError(f"{what} field {name!r} must be {kind.__name__}")
    return value


def _command(value: int, allowed: frozenset[Command], what: str) -> Command:
    try:
        command = Command(value)
    except ValueError as e:
        raise FormatError(f"unknown {what} command {value}") from e
    if command not in allowed:
        raise FormatError(f"command {command.name} is not a {what} command")
    return command


def _hex_field(obj: dict[str, Any], name: str) -> bytes:
    try:
        return bytes.fromhex(_field(obj, name, str, "transaction"))
    except ValueError as e:
        raise FormatError(f"transaction field {name!r} is not hex") from e


@dataclass(frozen=True)
class Query:
    version: str
    epoch: int
    command: Command
    payload: str = ""

    def encode(self) -> bytes:
        return _canonical_json(
            {
                "version": self.version,
                "epoch": self.epoch,
                "command": int(self.command),
                "payload": self.payload,
            }
        )

    @staticmethod
    def decode(data: bytes) -> "Query":
        obj = _load_object(data, "query")
        epoch = _field(obj, "epoch", int, "query")
        if not 0 <= epoch <= _U64_MASK:
            raise FormatError("query epoch out of range")
        return Query(
            version=_field(obj, "version", str, "query"),
            epoch=epoch,
            command=_command(_field(obj, "command", int, "query"), QUERY_COMMANDS, "query"),
            payload=_field(obj, "payload", str, "query"),
        )


@dataclass(frozen=True)
class Transaction:
    """A ledger write.

    ``payload`` is hex text. The signature is made by ``public_key`` over
    :meth:`signing_message`, which covers every other field.
    """

    version: str
    epoch: int
    command: Command
    payload: str
    public_key: bytes = b""
    signature: bytes = b""

    def _body(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "epoch": self.epoch,
            "command": int(self.command),
            "payload": self.payload,
            "public_key": self.public_key.hex(),
        }

    def signing_message(self) -> bytes:
        return _canonical_json(self._body())

    def sign(self, key: SigningKey) -> "Transaction":
        """Return a signed copy of this transaction."""

        unsigned = replace(self, public_key=key.public_bytes(), signature=b"")
        return replace(unsigned, signature=key.sign(unsigned.signing_message()))

    def is_verified(self) -> bool:
        if not self.signature:
            return False
        return verify_signature(self.public_key, self.signature, self.signing_message())

    def payload_bytes(self) -> bytes:
        try:
            return bytes.fromhex(self.payload)
        except ValueError as e:
            raise FormatError("transaction payload is not hex") from e

    def encode(self) -> bytes:
        body = self._body()
        body["signature"] = self.signature.hex()
        return _canonical_json(body)

    @staticmethod
    def decode(data: bytes) -> "Transaction":
        obj = _load_object(data, "transaction")
        epoch = _field(obj, "epoch", int, "transaction")
        if not 0 <= epoch <= _U64_MASK:
            raise FormatError("transaction epoch out of range")
        tx = Transaction(
            version=_field(obj, "version", str, "transaction"),
            epoch=epoch,
            command=_command(
                _field(obj, "command", int, "transaction"), TRANSACTION_COMMANDS, "transaction"
            ),
            payload=_field(obj, "payload", str, "transaction"),
            public_key=_hex_field(obj, "public_key"),
            signature=_hex_field(obj, "signature"),
        )
        tx.payload_bytes()
        return tx


def build_query(epoch: int, command: Command) -> Query:
    if command not in QUERY_COMMANDS:
        raise ValueError(f"{command!r} is not a query command")
    return Query(version=PROTOCOL_VERSION, epoch=epoch, command=command, payload="")


def build_transaction(epoch: int, command: Command, payload: bytes) -> Transaction:
    """Build an unsigned transaction; sign it before broadcasting."""

    if command not in TRANSACTION_COMMANDS:
        raise ValueError(f"{command!r} is not a transaction command")
    return Transaction(
        version=PROTOCOL_VERSION,
        epoch=epoch,
        command=command,
        payload=payload.hex(),
    )


def transaction_hash(tx_bytes: bytes) -> bytes:
    """Identifier a ledger reports inclusion under."""

    return sha256(tx_bytes)
