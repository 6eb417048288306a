"""
Tests for settlement and negative-balance remediation.
"""

import sqlite3
import time
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from vault_guard.core.reconciliation import Reconciler, ReconciliationLoop
from vault_guard.storage.models import StoredObject

from conftest import ALICE, BOB, MIB


def store(objects, file_id, owner, cid, size=MIB):
    objects.insert(StoredObject(
        file_id=file_id, owner=owner, cid=cid, name=f"{file_id}.bin",
        size=size, extension="bin", created_at=datetime.now()
    ))


@pytest.fixture
def reconciler(ledger, accounts, objects):
    return Reconciler(ledger, accounts, objects)


class TestSettlement:
    """Test settlement gating of the tick."""

    def test_settlement_failure_skips_remediation(self, reconciler, ledger, accounts):
        ledger.settle_error = "rpc down"
        accounts.set_consumption(ALICE, MIB)
        accounts.set_balance(ALICE, -5)

        report = reconciler.run_tick()

        assert report.settled is False
        assert report.remediated == []
        assert ledger.writes == []
        assert accounts.get(ALICE).consumption == MIB

    def test_reverted_settlement_skips_remediation(self, reconciler, ledger, accounts):
        ledger.settle_success = False
        accounts.set_consumption(ALICE, MIB)
        accounts.set_balance(ALICE, -5)

        report = reconciler.run_tick()

        assert report.settled is False
        assert report.settlement_tx == "0xsettle"
        assert accounts.get(ALICE).consumption == MIB

    def test_successful_settlement_reported(self, reconciler, ledger):
        report = reconciler.run_tick()

        assert ledger.settle_calls == 1
        assert report.settled is True
        assert report.candidates == 0
        assert report.failures == []


class TestBalanceRefresh:
    """Test lazy population of the mirrored balance."""

    def test_unset_balance_fetched_once(self, reconciler, ledger, accounts):
        accounts.set_consumption(ALICE, MIB)
        ledger.balances[ALICE] = 3 * 10 ** 15

        report = reconciler.run_tick()

        assert report.refreshed == [ALICE]
        assert accounts.get(ALICE).balance == 3 * 10 ** 15

        ledger.balances[ALICE] = 0
        report = reconciler.run_tick()
        assert report.refreshed == []
        assert accounts.get(ALICE).balance == 3 * 10 ** 15

    def test_cached_zero_balance_refetched(self, reconciler, ledger, accounts, objects):
        """A mirrored balance of zero is read again and can trigger remediation."""
        ledger.consumption[ALICE] = MIB
        ledger.balances[ALICE] = -7
        accounts.set_consumption(ALICE, MIB)
        accounts.set_balance(ALICE, 0)

        report = reconciler.run_tick()

        assert report.refreshed == [ALICE]
        assert accounts.get(ALICE).balance == -7
        assert report.remediated == [ALICE]
        assert ledger.consumption[ALICE] == 0

    def test_idle_accounts_not_scanned(self, reconciler, ledger, accounts):
        accounts.get_or_create(BOB)
        report = reconciler.run_tick()
        assert report.candidates == 0
        assert accounts.get(BOB).balance is None


class TestRemediation:
    """Test zeroing of negative-balance accounts."""

    def test_negative_balance_scenario(self, reconciler, ledger, accounts, objects):
        """Mirrored balance -5: ledger and mirror zeroed, objects tombstoned."""
        ledger.consumption[ALICE] = 2 * MIB
        accounts.set_consumption(ALICE, 2 * MIB)
        accounts.set_balance(ALICE, -5)
        store(objects, "f1", ALICE, "c1")
        store(objects, "f2", ALICE, "c2")
        store(objects, "f3", BOB, "c3")

        report = reconciler.run_tick()

        assert report.remediated == [ALICE]
        assert ledger.consumption[ALICE] == 0
        assert accounts.get(ALICE).consumption == 0
        assert objects.list_active(ALICE) == []
        assert objects.get("f1").is_deleted is True
        assert len(objects.list_active(BOB)) == 1

        writes_before = list(ledger.writes)
        second = reconciler.run_tick()
        assert second.remediated == []
        assert second.candidates == 0
        assert ledger.writes == writes_before

    def test_remediation_twice_is_noop(self, reconciler, ledger, accounts, objects):
        ledger.consumption[ALICE] = MIB
        accounts.set_consumption(ALICE, MIB)
        store(objects, "f1", ALICE, "c1")

        reconciler.remediate(ALICE)
        writes_after_first = list(ledger.writes)
        report = reconciler.remediate(ALICE)

        assert report.failures == []
        assert ledger.writes == writes_after_first
        assert ledger.consumption[ALICE] == 0
        assert accounts.get(ALICE).consumption == 0

    def test_positive_balance_untouched(self, reconciler, ledger, accounts):
        ledger.consumption[ALICE] = MIB
        accounts.set_consumption(ALICE, MIB)
        accounts.set_balance(ALICE, 5 * 10 ** 15)

        report = reconciler.run_tick()

        assert report.remediated == []
        assert ledger.consumption[ALICE] == MIB

    def test_ledger_step_failure_does_not_block_others(self, reconciler, ledger, accounts, objects):
        """Each remediation step is attempted even if an earlier one fails."""
        ledger.consumption[ALICE] = MIB
        ledger.write_error = "reverted"
        accounts.set_consumption(ALICE, MIB)
        accounts.set_balance(ALICE, -1)
        store(objects, "f1", ALICE, "c1")

        report = reconciler.run_tick()

        assert [(a, step) for a, step, _ in report.failures] == [(ALICE, "ledger")]
        assert objects.list_active(ALICE) == []
        assert accounts.get(ALICE).consumption == 0

    def test_fully_failed_remediation_not_listed(self, ledger):
        ledger.consumption[ALICE] = MIB
        ledger.write_error = "reverted"
        accounts = MagicMock()
        accounts.set_consumption.side_effect = sqlite3.OperationalError("database is locked")
        objects = MagicMock()
        objects.tombstone_owner.side_effect = sqlite3.OperationalError("database is locked")

        report = Reconciler(ledger, accounts, objects).remediate(ALICE)

        assert report.remediated == []
        assert [step for _, step, _ in report.failures] == ["ledger", "objects", "mirror"]

    def test_failing_account_does_not_abort_tick(self, ledger, accounts, objects):
        """A balance read failure for one account leaves the others processed."""
        class FlakyLedger(type(ledger)):
            def balance_of(self, address):
                if address == ALICE:
                    raise ConnectionError("timeout")
                return super().balance_of(address)

        flaky = FlakyLedger()
        flaky.consumption[BOB] = MIB
        accounts.set_consumption(ALICE, MIB)
        accounts.set_consumption(BOB, MIB)
        accounts.set_balance(BOB, -3)

        report = Reconciler(flaky, accounts, objects).run_tick()

        assert report.settled is True
        assert [(a, step) for a, step, _ in report.failures] == [(ALICE, "check")]
        assert report.remediated == [BOB]
        assert flaky.consumption[BOB] == 0


class TestReconciliationLoop:
    """Test the background loop lifecycle."""

    def test_loop_runs_ticks_and_stops(self):
        reconciler = MagicMock()
        loop = ReconciliationLoop(reconciler, interval_seconds=0.01)

        loop.start()
        deadline = time.time() + 2
        while reconciler.run_tick.call_count < 2 and time.time() < deadline:
            time.sleep(0.01)
        loop.stop(timeout=2)

        assert reconciler.run_tick.call_count >= 2
        assert loop.running is False

    def test_loop_survives_tick_exception(self):
        reconciler = MagicMock()
        reconciler.run_tick.side_effect = [RuntimeError("boom"), None, None, None]
        loop = ReconciliationLoop(reconciler, interval_seconds=0.01)

        loop.start()
        deadline = time.time() + 2
        while reconciler.run_tick.call_count < 2 and time.time() < deadline:
            time.sleep(0.01)
        loop.stop(timeout=2)

        assert reconciler.run_tick.call_count >= 2

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            ReconciliationLoop(MagicMock(), interval_seconds=0)
