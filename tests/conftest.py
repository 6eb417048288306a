"""
Shared fixtures: temporary mirror database and in-memory collaborators.
"""

import hashlib
import os

import pytest

from vault_guard.sdk.vault_client import LedgerReadError, LedgerWriteError, TransactionResult
from vault_guard.storage.repository import AccountRepository, ObjectRepository, initialize_schema

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20

WEI = 10 ** 18
MIB = 1024 * 1024


class FakeLedger:
    """In-memory vault with the same interface as VaultLedgerClient."""

    def __init__(self):
        self.balances = {}
        self.consumption = {}
        self.writes = []
        self.settle_calls = 0
        self.settle_success = True
        self.settle_error = None
        self.read_error = None
        self.write_error = None
        self.revert_writes = False

    def balance_of(self, address):
        if self.read_error:
            raise LedgerReadError(self.read_error)
        return self.balances.get(address.lower(), 0)

    def consumption_of(self, address):
        if self.read_error:
            raise LedgerReadError(self.read_error)
        return self.consumption.get(address.lower(), 0)

    def set_consumption(self, address, bytes_used):
        if self.write_error:
            raise LedgerWriteError(self.write_error)
        tx_hash = f"0x{len(self.writes) + 1:064x}"
        self.writes.append((address.lower(), bytes_used))
        if self.revert_writes:
            return TransactionResult(tx_hash=tx_hash, success=False)
        self.consumption[address.lower()] = bytes_used
        return TransactionResult(tx_hash=tx_hash, success=True, block_number=len(self.writes))

    def settle(self):
        self.settle_calls += 1
        if self.settle_error:
            raise LedgerWriteError(self.settle_error)
        return TransactionResult(tx_hash="0xsettle", success=self.settle_success)


class FakeContentStore:
    """Content store addressing bytes by their sha256."""

    def __init__(self):
        self.stored = {}
        self.removed = []
        self.remove_ok = True

    def hash(self, data):
        return "bafk" + hashlib.sha256(data).hexdigest()[:40]

    def put(self, data):
        cid = self.hash(data)
        self.stored[cid] = data
        return cid

    def remove(self, cid):
        self.removed.append(cid)
        return self.remove_ok


@pytest.fixture
def db_path(tmp_path):
    path = os.path.join(str(tmp_path), "test.db")
    initialize_schema(path)
    return path


@pytest.fixture
def accounts(db_path):
    return AccountRepository(db_path)


@pytest.fixture
def objects(db_path):
    return ObjectRepository(db_path)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def content_store():
    return FakeContentStore()
