"""Ledger connector speaking Tendermint-style JSON-RPC over HTTP.

Point it at a proof-verifying light-client proxy. The proxy holds the trusted
header chain, checks each ``abci_query`` proof against it and refuses to
answer otherwise; this connector never sees unverified state. As a guard
against being pointed at a plain full node, a successful query answer that
carries no proof operations is refused.

Blocking HTTP calls run on a worker thread so the connector can be awaited.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any

import requests

from mixpki.config import LedgerConfig
from mixpki.errors import ConfigError, DeadlineExceededError, TransportError, VerificationError
from mixpki.ledger.interfaces import AdmissionResponse, InclusionResponse, QueryResponse

logger = logging.getLogger(__name__)


def _int(value: Any, what: str) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError) as e:
        raise TransportError(f"malformed {what} in RPC response") from e


def _b64(value: Any, what: str) -> bytes:
    if not value:
        return b""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise TransportError(f"malformed {what} in RPC response") from e


@dataclass
class RPCLedgerConnector:
    """JSON-RPC connector.

    Attributes:
        rpc_address: Base URL of the light-client proxy, e.g.
            ``http://127.0.0.1:8888``.
        request_timeout: Per-HTTP-request timeout in seconds.
        inclusion_poll_interval: Seconds between ``tx_search`` lookups while waiting
            for a block.
        inclusion_timeout: Upper bound on the inclusion wait in seconds.
        require_proof: Refuse query answers without proof operations.
    """

    rpc_address: str
    request_timeout: float = 10.0
    inclusion_poll_interval: float = 1.0
    inclusion_timeout: float = 60.0
    require_proof: bool = True
    session: requests.Session = field(default_factory=requests.Session)
    _ids: itertools.count = field(default_factory=lambda: itertools.count(1), repr=False)

    @classmethod
    def from_config(cls, config: LedgerConfig, session: requests.Session | None = None) -> "RPCLedgerConnector":
        """Build a connector from the ``ledger`` configuration section."""

        errors = config.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        return cls(
            rpc_address=config.rpc_address,
            request_timeout=config.request_timeout,
            inclusion_poll_interval=config.inclusion_poll_interval,
            inclusion_timeout=config.inclusion_timeout,
            require_proof=config.require_proof,
            session=session or requests.Session(),
        )

    def _call(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        request = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self.session.post(self.rpc_address, json=request, timeout=self.request_timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.Timeout as e:
            raise DeadlineExceededError(f"{method}: request timed out") from e
        except (requests.RequestException, ValueError) as e:
            raise TransportError(f"{method}: {e}") from e

        if not isinstance(body, dict):
            raise TransportError(f"{method}: malformed RPC response")
        error = body.get("error")
        if error:
            detail = f"{error.get('message', '')} {error.get('data', '')}".strip() if isinstance(error, dict) else str(error)
            raise TransportError(f"{method}: {detail}")
        result = body.get("result")
        if not isinstance(result, dict):
            raise TransportError(f"{method}: RPC response has no result")
        return result

    def _query(self, path: str, data: bytes, prove: bool) -> QueryResponse:
        result = self._call("abci_query", {"path": path, "data": data.hex(), "prove": prove})
        response = result.get("response")
        if not isinstance(response, dict):
            raise TransportError("abci_query: response missing")

        code = _int(response.get("code"), "code")
        if prove and self.require_proof and code == 0 and not response.get("proofOps"):
            raise VerificationError("abci_query answer carries no proof")
        return QueryResponse(
            value=_b64(response.get("value"), "value"),
            height=_int(response.get("height"), "height"),
            code=code,
            log=str(response.get("log") or ""),
        )

    def _broadcast(self, tx_bytes: bytes) -> AdmissionResponse:
        result = self._call("broadcast_tx_sync", {"tx": base64.b64encode(tx_bytes).decode("ascii")})
        try:
            tx_hash = bytes.fromhex(str(result.get("hash", "")))
        except ValueError as e:
            raise TransportError("broadcast_tx_sync: malformed hash") from e
        return AdmissionResponse(
            tx_hash=tx_hash,
            code=_int(result.get("code"), "code"),
            log=str(result.get("log") or ""),
        )

    def _inclusion(self, result: dict[str, Any]) -> InclusionResponse | None:
        txs = result.get("txs") or []
        if not isinstance(txs, list):
            raise TransportError("tx_search: malformed txs")
        if not txs:
            return None
        found = txs[0]
        if not isinstance(found, dict):
            raise TransportError("tx_search: malformed txs")
        tx_result = found.get("tx_result") or {}
        if not isinstance(tx_result, dict):
            raise TransportError("tx_search: malformed tx_result")
        return InclusionResponse(
            height=_int(found.get("height"), "height"),
            code=_int(tx_result.get("code"), "code"),
            log=str(tx_result.get("log") or ""),
        )

    async def query_with_proof(self, path: str, data: bytes, *, prove: bool = True) -> QueryResponse:
        logger.debug("abci_query path=%r prove=%s", path, prove)
        return await asyncio.to_thread(self._query, path, data, prove)

    async def broadcast(self, tx_bytes: bytes) -> AdmissionResponse:
        return await asyncio.to_thread(self._broadcast, tx_bytes)

    async def await_inclusion(self, tx_hash: bytes) -> InclusionResponse:
        """Poll ``tx_search`` until the transaction lands in a block.

        Each poll is a single request on a worker thread; the wait between
        polls happens on the event loop, so cancelling the caller stops
        polling.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.inclusion_timeout
        params = {
            "query": f"tx.hash='{tx_hash.hex().upper()}'",
            "prove": False,
            "page": "1",
            "per_page": "1",
            "order_by": "asc",
        }
        while True:
            result = await asyncio.to_thread(self._call, "tx_search", params)
            inclusion = self._inclusion(result)
            if inclusion is not None:
                return inclusion
            if loop.time() >= deadline:
                raise DeadlineExceededError(
                    f"transaction {tx_hash.hex()} not included within {self.inclusion_timeout}s"
                )
            await asyncio.sleep(self.inclusion_poll_interval)

    def close(self) -> None:
        self.session.close()
