"""
Periodic settlement and negative-balance remediation.

Each tick:
1. Settle - trigger the vault's pay() and wait for the receipt
2. Scan - accounts whose mirrored consumption is above zero
3. Refresh - fetch the balance of accounts whose mirror has none, or zero
4. Remediate - zero consumption and tombstone objects of negative balances

A failed settlement skips the rest of the tick. Every account, and every
remediation step within an account, is guarded on its own so one bad
account never stops the sweep. The next tick is the retry.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from .consumption import ConsumptionTracker
from .numeric import to_bounded_number
from ..storage.models import Account
from ..storage.repository import AccountRepository, ObjectRepository

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """Summary of one reconciliation tick."""
    started_at: datetime
    settled: bool = False
    settlement_tx: Optional[str] = None
    candidates: int = 0
    refreshed: List[str] = field(default_factory=list)
    remediated: List[str] = field(default_factory=list)
    # (address, step, error message)
    failures: List[Tuple[str, str, str]] = field(default_factory=list)


class Reconciler:
    """Settles the vault and remediates accounts whose balance went negative."""

    def __init__(
        self,
        ledger,
        accounts: AccountRepository,
        objects: ObjectRepository,
        tracker: Optional[ConsumptionTracker] = None
    ):
        self.ledger = ledger
        self.accounts = accounts
        self.objects = objects
        self.tracker = tracker or ConsumptionTracker(ledger, accounts)

    def run_tick(self) -> TickReport:
        """Run one settlement and remediation pass. Never raises."""
        report = TickReport(started_at=datetime.now())

        try:
            result = self.ledger.settle()
        except Exception as e:
            logger.error("Settlement failed, skipping remediation: %s", e, exc_info=True)
            report.failures.append(("", "settle", str(e)))
            return report

        report.settlement_tx = result.tx_hash
        if not result.success:
            logger.error("Settlement reverted, skipping remediation: tx=%s", result.tx_hash)
            report.failures.append(("", "settle", f"reverted tx={result.tx_hash}"))
            return report

        report.settled = True
        logger.info("Settlement confirmed: tx=%s", result.tx_hash)

        try:
            candidates = self.accounts.find_consuming()
        except Exception as e:
            logger.error("Could not load consuming accounts: %s", e, exc_info=True)
            report.failures.append(("", "scan", str(e)))
            return report

        report.candidates = len(candidates)
        for account in candidates:
            try:
                self._check_account(account, report)
            except Exception as e:
                logger.error(
                    "Reconciliation failed: address=%s error=%s", account.address, e, exc_info=True
                )
                report.failures.append((account.address, "check", str(e)))

        logger.info(
            "Reconciliation tick done: candidates=%d refreshed=%d remediated=%d failures=%d",
            report.candidates, len(report.refreshed), len(report.remediated), len(report.failures)
        )
        return report

    def remediate(self, address: str, report: Optional[TickReport] = None) -> TickReport:
        """Zero the consumption of an account and tombstone its objects.

        Steps are attempted independently. An account that is already zeroed
        produces no ledger transaction and no changes.
        """
        report = report or TickReport(started_at=datetime.now())

        def _step(name, action) -> bool:
            try:
                action()
                return True
            except Exception as e:
                logger.error(
                    "Remediation step failed: address=%s step=%s error=%s",
                    address, name, e, exc_info=True
                )
                report.failures.append((address, name, str(e)))
                return False

        results = [
            _step("ledger", lambda: self._zero_ledger(address)),
            _step("objects", lambda: self._tombstone_objects(address)),
            _step("mirror", lambda: self.accounts.set_consumption(address, 0)),
        ]

        # Listed only if at least one step succeeded
        if any(results):
            report.remediated.append(address)
        return report

    def _check_account(self, account: Account, report: TickReport) -> None:
        balance = account.balance
        # Unset and zero both count as not yet fetched
        if not balance:
            balance = to_bounded_number(self.ledger.balance_of(account.address))
            self.accounts.set_balance(account.address, balance)
            report.refreshed.append(account.address)

        if balance < 0:
            logger.warning(
                "Negative balance, zeroing consumption: address=%s balance=%d",
                account.address, balance
            )
            self.remediate(account.address, report)

    def _zero_ledger(self, address: str) -> None:
        if self.ledger.consumption_of(address) == 0:
            return
        self.tracker.set_consumption(address, 0)

    def _tombstone_objects(self, address: str) -> None:
        removed = self.objects.tombstone_owner(address)
        if removed:
            logger.warning("Tombstoned objects: address=%s count=%d", address, len(removed))


class ReconciliationLoop:
    """Runs Reconciler ticks on a daemon thread at a fixed interval.

    The first tick runs one interval after start(). stop() interrupts the
    wait between ticks; a tick in progress runs to completion.
    """

    def __init__(self, reconciler: Reconciler, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self.run_forever, name="vault-reconciliation", daemon=True
        )
        self._thread.start()
        logger.info("Reconciliation loop started: interval=%ss", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Reconciliation loop stopped")

    def run_forever(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.reconciler.run_tick()
            except Exception:
                # run_tick guards itself; never let the thread die
                logger.exception("Unexpected error in reconciliation tick")
