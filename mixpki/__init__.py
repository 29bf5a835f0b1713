"""mixpki: verified directory client for a ledger-anchored mix network PKI."""

__version__ = "0.1.0"

from .client import CommitResult, DirectoryClient
from .config import Config
from .epochtime import EpochTime, now
from .ledger import MemoryLedger, RPCLedgerConnector
from .s11n import Document, DocumentVerifier, MixDescriptor

__all__ = [
    "CommitResult",
    "Config",
    "DirectoryClient",
    "Document",
    "DocumentVerifier",
    "EpochTime",
    "MemoryLedger",
    "MixDescriptor",
    "RPCLedgerConnector",
    "now",
]
