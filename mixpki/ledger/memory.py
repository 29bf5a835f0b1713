"""Deterministic in-process ledger.

:class:`MemoryLedger` plays both the ledger application and a trusted
connector to it. Every read it serves is authoritative, so there is no proof
to check. It is meant for tests and local development: each test builds its
own instance and hands it to a :class:`~mixpki.client.DirectoryClient`.

Admission checks what a mempool can check without executing: encoding,
signature and epoch window. Inclusion executes the transaction against the
state of the block it lands in, which is where duplicates are caught.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from mixpki.codec import Command, EpochRecord, Query, Transaction, transaction_hash
from mixpki.crypto import SigningKey
from mixpki.errors import FormatError, PKIError, TransportError, VerificationError
from mixpki.ledger.interfaces import AdmissionResponse, InclusionResponse, QueryResponse
from mixpki.s11n import (
    build_document,
    is_descriptor_well_formed,
    sign_document,
    verify_and_parse_document,
    verify_descriptor,
)

logger = logging.getLogger(__name__)

ERR_ENCODING = 1
ERR_UNAUTHORIZED = 2
ERR_INVALID_EPOCH = 3
ERR_DUPLICATE = 4
ERR_INVALID_CONTENT = 5
ERR_NOT_FOUND = 6


class _Rejected(Exception):
    def __init__(self, code: int, log: str) -> None:
        super().__init__(log)
        self.code = code
        self.log = log


@dataclass
class MemoryLedger:
    """In-memory directory ledger.

    Attributes:
        heights_per_epoch: Blocks per epoch.
        authority: Key used to sign generated documents. Without one the
            ledger only serves documents added by transaction.
        document_parameters: Mixing parameters stamped on generated documents.
        latency: Seconds every call sleeps before answering.
        fail_proofs: Make every read fail proof verification.
    """

    heights_per_epoch: int = 5
    epoch: int = 1
    height: int = 1
    authority: SigningKey | None = None
    document_parameters: dict[str, Any] = field(default_factory=dict)
    latency: float = 0.0
    fail_proofs: bool = False

    starting_height: int = field(init=False)
    descriptors: dict[int, dict[bytes, bytes]] = field(default_factory=dict)
    documents: dict[int, bytes] = field(default_factory=dict)
    calls: Counter = field(default_factory=Counter)
    _pending: dict[bytes, Transaction] = field(default_factory=dict, repr=False)
    _results: dict[bytes, InclusionResponse] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if self.heights_per_epoch <= 0:
            raise ValueError("heights_per_epoch must be positive")
        self.starting_height = self.height

    async def _delay(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)

    async def query_with_proof(self, path: str, data: bytes, *, prove: bool = True) -> QueryResponse:
        self.calls["query"] += 1
        await self._delay()
        if self.fail_proofs:
            raise VerificationError("state proof does not match trusted header")

        try:
            query = Query.decode(data)
        except FormatError as e:
            return QueryResponse(value=b"", height=self.height, code=ERR_ENCODING, log=str(e))

        if query.command == Command.GET_EPOCH:
            record = EpochRecord(epoch=self.epoch, starting_height=self.starting_height)
            return QueryResponse(value=record.encode(), height=self.height)

        doc = self.documents.get(query.epoch)
        if doc is None:
            return QueryResponse(value=b"", height=self.height, code=ERR_NOT_FOUND, log="document not found")
        return QueryResponse(value=doc, height=self.height)

    async def broadcast(self, tx_bytes: bytes) -> AdmissionResponse:
        self.calls["broadcast"] += 1
        await self._delay()
        tx_hash = transaction_hash(tx_bytes)
        try:
            tx = self._check(tx_bytes)
        except _Rejected as e:
            logger.debug("admission rejected %s: %s", tx_hash.hex(), e.log)
            return AdmissionResponse(tx_hash=tx_hash, code=e.code, log=e.log)
        self._pending[tx_hash] = tx
        return AdmissionResponse(tx_hash=tx_hash)

    async def await_inclusion(self, tx_hash: bytes) -> InclusionResponse:
        self.calls["inclusion"] += 1
        await self._delay()
        if tx_hash in self._pending:
            self.commit_block()
        try:
            return self._results[tx_hash]
        except KeyError:
            raise TransportError(f"transaction {tx_hash.hex()} not found") from None

    def _check(self, tx_bytes: bytes) -> Transaction:
        try:
            tx = Transaction.decode(tx_bytes)
        except FormatError as e:
            raise _Rejected(ERR_ENCODING, str(e)) from e
        if not tx.is_verified():
            raise _Rejected(ERR_UNAUTHORIZED, "transaction signature is invalid")
        if tx.epoch not in (self.epoch, self.epoch + 1):
            raise _Rejected(ERR_INVALID_EPOCH, f"epoch {tx.epoch} outside [{self.epoch}, {self.epoch + 1}]")
        return tx

    def _deliver(self, tx: Transaction) -> None:
        payload = tx.payload_bytes()
        if tx.command == Command.PUBLISH_MIX_DESCRIPTOR:
            try:
                desc = verify_descriptor(payload)
                is_descriptor_well_formed(desc, tx.epoch)
            except PKIError as e:
                raise _Rejected(ERR_INVALID_CONTENT, str(e)) from e
            if desc.identity_key != tx.public_key:
                raise _Rejected(ERR_UNAUTHORIZED, "descriptor posted by a foreign key")
            posted = self.descriptors.setdefault(tx.epoch, {})
            if desc.identity_key in posted:
                raise _Rejected(ERR_DUPLICATE, f"descriptor for {desc.name} already posted")
            posted[desc.identity_key] = payload
            return

        try:
            doc = verify_and_parse_document(payload)
        except PKIError as e:
            raise _Rejected(ERR_INVALID_CONTENT, str(e)) from e
        if doc.epoch != tx.epoch:
            raise _Rejected(ERR_INVALID_EPOCH, f"document for epoch {doc.epoch} posted under {tx.epoch}")
        if tx.epoch in self.documents:
            raise _Rejected(ERR_DUPLICATE, f"document for epoch {tx.epoch} already exists")
        self.documents[tx.epoch] = payload

    def commit_block(self) -> int:
        """Execute every admitted transaction in a new block; return its height."""

        self.height += 1
        pending, self._pending = self._pending, {}
        for tx_hash, tx in pending.items():
            try:
                self._deliver(tx)
            except _Rejected as e:
                logger.debug("delivery rejected %s: %s", tx_hash.hex(), e.log)
                self._results[tx_hash] = InclusionResponse(height=self.height, code=e.code, log=e.log)
            else:
                self._results[tx_hash] = InclusionResponse(height=self.height)

        if self.height - self.starting_height >= self.heights_per_epoch:
            self.epoch += 1
            self.starting_height = self.height
            logger.debug("epoch %d starts at height %d", self.epoch, self.height)
            if self.authority is not None and self.epoch not in self.documents:
                self.publish_document(self.epoch)
        return self.height

    def advance(self, blocks: int = 1) -> None:
        for _ in range(blocks):
            self.commit_block()

    def publish_document(self, epoch: int) -> bytes:
        """Build and sign the document for ``epoch`` from its posted descriptors."""

        if self.authority is None:
            raise RuntimeError("ledger has no authority key")
        doc = build_document(epoch, self.descriptors.get(epoch, {}).values(), **self.document_parameters)
        raw = sign_document(self.authority, doc)
        self.documents[epoch] = raw
        return raw
