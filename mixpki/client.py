"""Directory client: verified reads and confirmed writes against the PKI ledger."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from mixpki.codec import Command, EpochRecord, Transaction, build_query, build_transaction
from mixpki.config import ClientConfig
from mixpki.crypto import SigningKey
from mixpki.errors import (
    AdmissionRejectedError,
    CommitRejectedError,
    DeadlineExceededError,
    EpochMismatchError,
    InconsistencyError,
    NoDocumentError,
    TransportError,
    UnsignedTransactionError,
)
from mixpki.ledger import AdmissionResponse, InclusionResponse, LedgerConnector, broadcast_and_commit
from mixpki.s11n import Document, DocumentVerifier, MixDescriptor, Verifier

T = TypeVar("T")


@dataclass(frozen=True)
class CommitResult:
    """A transaction that made it into a block."""

    tx_hash: bytes
    height: int
    admission: AdmissionResponse
    inclusion: InclusionResponse


class DirectoryClient:
    """
    Client for the ledger-anchored mix network directory.

    The client composes a :class:`~mixpki.ledger.LedgerConnector`, which
    proves every read against a trusted header, with a document
    :class:`~mixpki.s11n.Verifier`, which checks signatures. It keeps no
    state between calls: every :meth:`get` is verified from scratch and a
    write is never retried.

    Every operation takes ``timeout`` in seconds (defaults to
    ``config.request_timeout``) covering the whole call. Expiry raises
    :class:`~mixpki.errors.DeadlineExceededError`.

    Example:
        >>> client = DirectoryClient(MemoryLedger(authority=SigningKey.generate()))
        >>> epoch, elapsed_height = await client.get_epoch()
        >>> doc = await client.get(epoch)
    """

    def __init__(
        self,
        connector: LedgerConnector,
        *,
        verifier: Optional[Verifier] = None,
        config: Optional[ClientConfig] = None,
        logger: Optional[logging.Logger] = None,
        query_path: str = "",
    ) -> None:
        self.connector = connector
        self.verifier = verifier or DocumentVerifier()
        self.config = config or ClientConfig()
        self.log = logger or logging.getLogger(__name__)
        self.query_path = query_path

    async def _within(self, aw: Awaitable[T], timeout: Optional[float], what: str) -> T:
        if timeout is None:
            timeout = self.config.request_timeout
        try:
            return await asyncio.wait_for(aw, timeout)
        except asyncio.TimeoutError as e:
            raise DeadlineExceededError(f"{what}: deadline of {timeout}s exceeded") from e

    async def get_epoch(self, *, timeout: Optional[float] = None) -> tuple[int, int]:
        """
        Read the current epoch from the ledger.

        Returns:
            ``(epoch, elapsed_height)`` where ``elapsed_height`` is the number
            of blocks between the epoch's first block and the block the
            answer was served at.

        Raises:
            TransportError: The query failed or the ledger returned an error.
            FormatError: The epoch record is not 16 well-formed bytes.
            InconsistencyError: The epoch starts above the served height.
        """
        return await self._within(self._get_epoch(), timeout, "get_epoch")

    async def _get_epoch(self) -> tuple[int, int]:
        query = build_query(0, Command.GET_EPOCH)
        self.log.debug("Query: %s", query)
        resp = await self.connector.query_with_proof(self.query_path, query.encode(), prove=True)
        if not resp.ok:
            raise TransportError(f"epoch query failed with code {resp.code}: {resp.log}")

        record = EpochRecord.decode(resp.value)
        if record.starting_height > resp.height:
            raise InconsistencyError(
                f"epoch {record.epoch} starts at height {record.starting_height}, "
                f"above response height {resp.height}"
            )
        return record.epoch, resp.height - record.starting_height

    async def get(self, epoch: int, *, timeout: Optional[float] = None) -> Document:
        """
        Fetch and verify the document for ``epoch``.

        Raises:
            NoDocumentError: The ledger has no document for ``epoch``.
            VerificationError: A proof or signature check failed.
            EpochMismatchError: The verified document is for another epoch.
        """
        doc, _ = await self.get_raw(epoch, timeout=timeout)
        return doc

    async def get_raw(self, epoch: int, *, timeout: Optional[float] = None) -> tuple[Document, bytes]:
        """Like :meth:`get`, also returning the verified serialized document."""
        return await self._within(self._get(epoch), timeout, "get")

    async def _get(self, epoch: int) -> tuple[Document, bytes]:
        self.log.debug("Get(%d)", epoch)
        query = build_query(epoch, Command.GET_CONSENSUS)
        resp = await self.connector.query_with_proof(self.query_path, query.encode(), prove=True)
        if not resp.ok:
            raise NoDocumentError(epoch, code=resp.code, log=resp.log)

        # The proof only covers the bytes; the embedded epoch is trusted once
        # the document signature has been checked.
        doc = self.verifier.verify_and_parse_document(resp.value)
        if doc.epoch != epoch:
            self.log.warning("Get() returned document for wrong epoch: %d", doc.epoch)
            raise EpochMismatchError(epoch, doc.epoch)
        self.log.debug("Document for epoch %d: %d descriptors", epoch, len(doc.descriptors))
        return doc, resp.value

    async def post(
        self,
        epoch: int,
        signing_key: SigningKey,
        descriptor: MixDescriptor,
        *,
        timeout: Optional[float] = None,
    ) -> CommitResult:
        """
        Publish ``descriptor`` for ``epoch``.

        The descriptor is checked for well-formedness before anything is
        signed, then signed with ``signing_key`` (which must be its identity
        key) and posted in a transaction signed by the same key.

        Raises:
            InvalidDescriptorError: ``descriptor`` is not usable for ``epoch``.
            AdmissionRejectedError: The mempool refused the transaction.
            CommitRejectedError: The transaction failed in its block.
        """
        self.log.debug("Post(%d, %s, %s)", epoch, signing_key.public_bytes().hex(), descriptor.name)
        self.verifier.is_descriptor_well_formed(descriptor, epoch)
        signed = self.verifier.sign_descriptor(signing_key, descriptor)
        tx = build_transaction(epoch, Command.PUBLISH_MIX_DESCRIPTOR, signed).sign(signing_key)
        return await self.post_tx(tx, timeout=timeout)

    async def post_tx(self, tx: Transaction, *, timeout: Optional[float] = None) -> CommitResult:
        """
        Broadcast a signed transaction and wait until it is committed.

        Raises:
            UnsignedTransactionError: ``tx`` carries no valid signature. No
                network call is made.
            AdmissionRejectedError: Admission failed; inclusion is not awaited.
            CommitRejectedError: Admission passed but inclusion failed.
        """
        self.log.debug("PostTx(%d, %s)", tx.epoch, tx.command.name)
        if not tx.is_verified():
            raise UnsignedTransactionError("transaction is not signed, did you forget signing?")
        return await self._within(self._post_tx(tx), timeout, "post_tx")

    async def _post_tx(self, tx: Transaction) -> CommitResult:
        admission, inclusion = await broadcast_and_commit(self.connector, tx.encode())
        if inclusion is None:
            raise AdmissionRejectedError(admission.code, admission.log)
        if not inclusion.ok:
            raise CommitRejectedError(inclusion.code, inclusion.log, height=inclusion.height)
        self.log.info("Transaction %s committed at height %d", admission.tx_hash.hex(), inclusion.height)
        return CommitResult(
            tx_hash=admission.tx_hash,
            height=inclusion.height,
            admission=admission,
            inclusion=inclusion,
        )

    def deserialize(self, raw: bytes) -> Document:
        """Verify and parse a serialized document without an epoch check."""
        return self.verifier.verify_and_parse_document(raw)
