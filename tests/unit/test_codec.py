"""Unit tests for mixpki.codec module."""

from dataclasses import replace

import pytest

from mixpki.codec import (
    EPOCH_RECORD_SIZE,
    PROTOCOL_VERSION,
    Command,
    EpochRecord,
    Query,
    Transaction,
    build_query,
    build_transaction,
    decode_uvarint,
    decode_varint,
    encode_uvarint,
    encode_varint,
    transaction_hash,
)
from mixpki.crypto import SigningKey, sha256
from mixpki.errors import FormatError


class TestVarint:
    """Test Go-compatible varint encoding."""

    @pytest.mark.parametrize(
        "value,encoded",
        [
            (0, b"\x00"),
            (1, b"\x01"),
            (127, b"\x7f"),
            (128, b"\x80\x01"),
            (300, b"\xac\x02"),
            (2**64 - 1, b"\xff" * 9 + b"\x01"),
        ],
    )
    def test_uvarint_vectors(self, value, encoded):
        """Test unsigned varints against known encodings."""
        assert encode_uvarint(value) == encoded
        assert decode_uvarint(encoded) == (value, len(encoded))

    @pytest.mark.parametrize(
        "value,encoded",
        [
            (0, b"\x00"),
            (-1, b"\x01"),
            (1, b"\x02"),
            (-2, b"\x03"),
            (63, b"\x7e"),
            (-64, b"\x7f"),
            (64, b"\x80\x01"),
            (100, b"\xc8\x01"),
        ],
    )
    def test_varint_vectors(self, value, encoded):
        """Test zig-zag signed varints against known encodings."""
        assert encode_varint(value) == encoded
        assert decode_varint(encoded) == (value, len(encoded))

    def test_decode_stops_at_first_terminal_byte(self):
        """Test trailing padding is not consumed."""
        assert decode_uvarint(b"\x05\x00\x00") == (5, 1)

    def test_truncated_varint(self):
        """Test a varint without a terminal byte is rejected."""
        with pytest.raises(FormatError):
            decode_uvarint(b"\x80\x80")
        with pytest.raises(FormatError):
            decode_uvarint(b"")

    def test_overflowing_varint(self):
        """Test varints beyond 64 bits are rejected."""
        with pytest.raises(FormatError):
            decode_uvarint(b"\xff" * 9 + b"\x02")
        with pytest.raises(FormatError):
            decode_uvarint(b"\xff" * 10 + b"\x01")

    def test_out_of_range_values(self):
        with pytest.raises(ValueError):
            encode_uvarint(-1)
        with pytest.raises(ValueError):
            encode_uvarint(2**64)
        with pytest.raises(ValueError):
            encode_varint(2**63)


class TestEpochRecord:
    """Test the 16-byte epoch record."""

    def test_layout(self):
        """Test each value sits zero padded in its own 8-byte slot."""
        record = EpochRecord(epoch=5, starting_height=100)
        expected = b"\x05" + b"\x00" * 7 + b"\xc8\x01" + b"\x00" * 6
        assert record.encode() == expected
        assert len(expected) == EPOCH_RECORD_SIZE
        assert EpochRecord.decode(expected) == record

    def test_negative_starting_height(self):
        record = EpochRecord(epoch=1, starting_height=-3)
        assert EpochRecord.decode(record.encode()) == record

    def test_largest_values_that_fit(self):
        """Test 56-bit values still fit their slots."""
        record = EpochRecord(epoch=2**56 - 1, starting_height=2**55 - 1)
        assert EpochRecord.decode(record.encode()) == record

    def test_value_too_large_for_slot(self):
        with pytest.raises(ValueError):
            EpochRecord(epoch=2**56, starting_height=0).encode()

    @pytest.mark.parametrize("size", [0, 8, 15, 17, 32])
    def test_wrong_length(self, size):
        """Test records that are not exactly 16 bytes are rejected."""
        with pytest.raises(FormatError):
            EpochRecord.decode(b"\x00" * size)

    def test_slot_without_terminal_byte(self):
        """Test a varint running past its slot is rejected."""
        with pytest.raises(FormatError):
            EpochRecord.decode(b"\xff" * 8 + b"\x00" * 8)


class TestQuery:
    """Test query encoding."""

    def test_canonical_encoding(self):
        """Test the same query always encodes to the same bytes."""
        query = build_query(7, Command.GET_CONSENSUS)
        assert query.encode() == b'{"command":4,"epoch":7,"payload":"","version":"1"}'
        assert Query.decode(query.encode()) == query

    def test_get_epoch_query(self):
        query = build_query(0, Command.GET_EPOCH)
        assert query.version == PROTOCOL_VERSION
        assert query.command is Command.GET_EPOCH

    def test_build_rejects_transaction_command(self):
        with pytest.raises(ValueError):
            build_query(1, Command.PUBLISH_MIX_DESCRIPTOR)

    @pytest.mark.parametrize(
        "data",
        [
            b"not json",
            b"[]",
            b'{"command":4,"epoch":-1,"payload":"","version":"1"}',
            b'{"command":4,"epoch":true,"payload":"","version":"1"}',
            b'{"command":0,"epoch":1,"payload":"","version":"1"}',
            b'{"command":9,"epoch":1,"payload":"","version":"1"}',
            b'{"command":4,"epoch":1,"version":"1"}',
        ],
    )
    def test_decode_rejects_malformed(self, data):
        """Test malformed queries raise FormatError."""
        with pytest.raises(FormatError):
            Query.decode(data)


class TestTransaction:
    """Test transaction signing and encoding."""

    @pytest.fixture
    def key(self):
        return SigningKey.generate()

    def test_unsigned_is_not_verified(self):
        tx = build_transaction(3, Command.PUBLISH_MIX_DESCRIPTOR, b"descriptor")
        assert tx.payload == b"descriptor".hex()
        assert tx.is_verified() is False

    def test_sign_and_verify(self, key):
        """Test a signed transaction verifies under its own key."""
        tx = build_transaction(3, Command.PUBLISH_MIX_DESCRIPTOR, b"descriptor").sign(key)
        assert tx.public_key == key.public_bytes()
        assert tx.is_verified() is True
        assert tx.payload_bytes() == b"descriptor"

    def test_tampering_breaks_signature(self, key):
        """Test every signed field is covered by the signature."""
        tx = build_transaction(3, Command.PUBLISH_MIX_DESCRIPTOR, b"descriptor").sign(key)
        assert replace(tx, epoch=4).is_verified() is False
        assert replace(tx, payload=b"other".hex()).is_verified() is False
        assert replace(tx, command=Command.ADD_CONSENSUS_DOCUMENT).is_verified() is False
        assert replace(tx, public_key=SigningKey.generate().public_bytes()).is_verified() is False

    def test_encode_decode(self, key):
        tx = build_transaction(9, Command.ADD_CONSENSUS_DOCUMENT, b"\x00\x01doc").sign(key)
        decoded = Transaction.decode(tx.encode())
        assert decoded == tx
        assert decoded.is_verified() is True

    def test_build_rejects_query_command(self):
        with pytest.raises(ValueError):
            build_transaction(1, Command.GET_CONSENSUS, b"")

    def test_decode_rejects_bad_payload(self, key):
        tx = replace(build_transaction(1, Command.PUBLISH_MIX_DESCRIPTOR, b""), payload="zz")
        with pytest.raises(FormatError):
            Transaction.decode(tx.encode())

    def test_decode_rejects_query_command(self):
        with pytest.raises(FormatError):
            Transaction.decode(build_query(1, Command.GET_CONSENSUS).encode())

    def test_transaction_hash(self, key):
        tx_bytes = build_transaction(1, Command.PUBLISH_MIX_DESCRIPTOR, b"x").sign(key).encode()
        assert transaction_hash(tx_bytes) == sha256(tx_bytes)
        assert len(transaction_hash(tx_bytes)) == 32
