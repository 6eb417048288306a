"""
Data models for storage layer.

Defines the mirrored account and the stored object catalog entry.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class Account:
    """Local mirror of a vault account.

    The ledger is authoritative. ``balance`` is None until it has been
    fetched from the ledger once; ``consumption`` only ever holds a value
    that was confirmed on, or read from, the ledger.
    """
    address: str
    balance: Optional[int]
    consumption: int
    created_at: datetime


@dataclass(frozen=True)
class StoredObject:
    """Catalog entry for a content-addressed file owned by an account.

    Records are soft-deleted and never purged.
    """
    file_id: str
    owner: str
    cid: str
    name: str
    size: int
    extension: str
    created_at: datetime
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
