from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

CODE_OK = 0


@dataclass(frozen=True)
class QueryResponse:
    """A proof-verified read served at ``height``."""

    value: bytes
    height: int
    code: int = CODE_OK
    log: str = ""

    @property
    def ok(self) -> bool:
        return self.code == CODE_OK


@dataclass(frozen=True)
class AdmissionResponse:
    """Outcome of mempool admission."""

    tx_hash: bytes
    code: int = CODE_OK
    log: str = ""

    @property
    def ok(self) -> bool:
        return self.code == CODE_OK


@dataclass(frozen=True)
class InclusionResponse:
    """Outcome of block inclusion."""

    height: int
    code: int = CODE_OK
    log: str = ""

    @property
    def ok(self) -> bool:
        return self.code == CODE_OK


class LedgerConnector(Protocol):
    """Trusted access to the replicated ledger.

    Implementations own header-chain trust. ``query_with_proof`` must check
    the returned value's inclusion proof against a trusted header and raise
    :class:`~mixpki.errors.VerificationError` rather than return unverified
    data. Network failures surface as :class:`~mixpki.errors.TransportError`.

    Writes are split in two phases so that a caller can stop after a failed
    admission without waiting for a block.
    """

    async def query_with_proof(self, path: str, data: bytes, *, prove: bool = True) -> QueryResponse: ...

    async def broadcast(self, tx_bytes: bytes) -> AdmissionResponse: ...

    async def await_inclusion(self, tx_hash: bytes) -> InclusionResponse: ...
