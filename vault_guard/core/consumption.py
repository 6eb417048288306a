"""
Consumption delta operations used by the upload and delete flows.

Each operation reads the live ledger consumption, computes the new value,
writes it to the vault and waits for the receipt. The account mirror is only
updated after the vault confirmed the write.
"""

import logging
import threading
import weakref

from .address import normalize_address
from .numeric import to_bounded_number
from ..sdk.vault_client import LedgerWriteError
from ..storage.repository import AccountRepository

logger = logging.getLogger(__name__)

# Per-address locks shared by every tracker in the process. An entry lives
# only while some operation holds or waits on its lock.
_address_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_address_locks_guard = threading.Lock()


class ConsumptionTracker:
    """Read-modify-write of per-address consumption against the vault.

    Operations on the same address are serialized by a per-address lock, so
    concurrent uploads, deletes and remediation cannot overwrite each other's
    delta. The locks are process-wide: separate trackers over the same vault
    still serialize. Different addresses never contend.
    """

    def __init__(self, ledger, accounts: AccountRepository):
        """
        Args:
            ledger: Vault ledger client
            accounts: Account mirror repository
        """
        self.ledger = ledger
        self.accounts = accounts

    def increase(self, address: str, delta_bytes: int) -> int:
        """Add ``delta_bytes`` to the address's consumption.

        Returns:
            The new ledger consumption
        """
        holder = normalize_address(address)
        _check_delta(delta_bytes)
        with self._lock_for(holder):
            current = self.ledger.consumption_of(holder)
            return self._write(holder, current + delta_bytes)

    def decrease(self, address: str, delta_bytes: int) -> int:
        """Subtract ``delta_bytes`` from the address's consumption, flooring at zero.

        Returns:
            The new ledger consumption
        """
        holder = normalize_address(address)
        _check_delta(delta_bytes)
        with self._lock_for(holder):
            current = self.ledger.consumption_of(holder)
            return self._write(holder, max(current - delta_bytes, 0))

    def set_consumption(self, address: str, bytes_used: int) -> int:
        """Overwrite the address's consumption with an absolute value."""
        holder = normalize_address(address)
        if bytes_used < 0:
            raise ValueError("bytes_used must be >= 0")
        with self._lock_for(holder):
            return self._write(holder, bytes_used)

    def _write(self, holder: str, next_value: int) -> int:
        result = self.ledger.set_consumption(holder, next_value)
        if not result.success:
            raise LedgerWriteError(
                f"setConsumption reverted for {holder}", tx_hash=result.tx_hash
            )
        self.accounts.set_consumption(holder, to_bounded_number(next_value))
        logger.info(
            "Consumption updated: address=%s bytes=%d tx=%s", holder, next_value, result.tx_hash
        )
        return next_value

    def _lock_for(self, holder: str) -> threading.Lock:
        with _address_locks_guard:
            lock = _address_locks.get(holder)
            if lock is None:
                lock = threading.Lock()
                _address_locks[holder] = lock
            return lock


def _check_delta(delta_bytes: int) -> None:
    if delta_bytes < 0:
        raise ValueError("delta_bytes must be >= 0")
