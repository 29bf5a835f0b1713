"""Shared exceptions for :mod:`mixpki`.

Every failure the directory client can report is a subclass of
:class:`PKIError`, so callers can tell a transient network problem apart
from a peer that served bad data or a ledger that refused a write.
"""

from __future__ import annotations


class PKIError(Exception):
    """Base error for directory operations."""


class TransportError(PKIError):
    """Raised when the ledger could not be reached or answered abnormally.

    Transport failures are safe to retry.
    """


class DeadlineExceededError(TransportError):
    """Raised when a caller-supplied deadline expires mid-call."""


class FormatError(PKIError):
    """Raised for malformed records and envelopes."""


class InconsistencyError(PKIError):
    """Raised when a ledger answer contradicts itself.

    Typically the epoch record claims to start above the height the answer
    was served at, which points to a stale or misbehaving node.
    """


class VerificationError(PKIError):
    """Raised when a proof or signature check fails. Never retried."""


class EpochMismatchError(PKIError):
    """Raised when a verified document belongs to another epoch."""

    def __init__(self, requested: int, received: int) -> None:
        super().__init__(f"requested document for epoch {requested}, got epoch {received}")
        self.requested = requested
        self.received = received


class NoDocumentError(PKIError):
    """Raised when the ledger holds no document for an epoch.

    Expected for epochs that have not been published yet.
    """

    def __init__(self, epoch: int, *, code: int = 0, log: str = "") -> None:
        msg = f"no document for epoch {epoch}"
        if log:
            msg = f"{msg}: {log}"
        super().__init__(msg)
        self.epoch = epoch
        self.code = code
        self.log = log


class InvalidDescriptorError(PKIError):
    """Raised when a mix descriptor is not well formed."""


class UnsignedTransactionError(PKIError):
    """Raised when an unsigned transaction is handed to the client."""


class LedgerRejectedError(PKIError):
    """Base for writes the ledger refused; carries the ledger status."""

    phase = "ledger"

    def __init__(self, code: int, log: str = "") -> None:
        msg = f"transaction rejected at {self.phase} with code {code}"
        if log:
            msg = f"{msg}: {log}"
        super().__init__(msg)
        self.code = code
        self.log = log


class AdmissionRejectedError(LedgerRejectedError):
    """Raised when mempool admission fails."""

    phase = "admission"


class CommitRejectedError(LedgerRejectedError):
    """Raised when an admitted transaction fails on block inclusion."""

    phase = "commit"

    def __init__(self, code: int, log: str = "", *, height: int = 0) -> None:
        super().__init__(code, log)
        self.height = height


class ConfigError(PKIError):
    """Raised for invalid configuration."""


class RetryExhaustedError(PKIError):
    """Raised when bounded polling gives up."""

    def __init__(self, attempts: int, last_error: Exception | None) -> None:
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
