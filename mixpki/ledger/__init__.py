"""Ledger connectors.

The directory client only talks to a :class:`LedgerConnector`. Two
implementations ship with the package: :class:`RPCLedgerConnector` for a
live network behind a light-client proxy, and :class:`MemoryLedger` for
tests and local development.
"""

from __future__ import annotations

from .interfaces import (
    CODE_OK,
    AdmissionResponse,
    InclusionResponse,
    LedgerConnector,
    QueryResponse,
)
from .memory import MemoryLedger
from .rpc import RPCLedgerConnector


async def broadcast_and_commit(
    connector: LedgerConnector, tx_bytes: bytes
) -> tuple[AdmissionResponse, InclusionResponse | None]:
    """Run both write phases; the inclusion result is None when admission fails."""

    admission = await connector.broadcast(tx_bytes)
    if not admission.ok:
        return admission, None
    return admission, await connector.await_inclusion(admission.tx_hash)


__all__ = [
    "CODE_OK",
    "AdmissionResponse",
    "InclusionResponse",
    "LedgerConnector",
    "MemoryLedger",
    "QueryResponse",
    "RPCLedgerConnector",
    "broadcast_and_commit",
]
