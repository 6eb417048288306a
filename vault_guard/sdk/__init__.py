"""
SDK for Vault Guard.

Clients for the external services the engine depends on.
"""

from .content_store import ContentStore, KuboContentStore
from .vault_client import (
    LedgerError,
    LedgerReadError,
    LedgerWriteError,
    TransactionResult,
    VaultLedgerClient,
    get_ledger_client,
    reset_ledger_client,
)

__all__ = [
    "ContentStore",
    "KuboContentStore",
    "LedgerError",
    "LedgerReadError",
    "LedgerWriteError",
    "TransactionResult",
    "VaultLedgerClient",
    "get_ledger_client",
    "reset_ledger_client",
]
