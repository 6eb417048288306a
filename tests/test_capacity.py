"""
Tests for upload admission against the vault ledger.
"""

import pytest
from web3 import Web3

from vault_guard.core.address import InvalidAddressError
from vault_guard.core.capacity import has_capacity
from vault_guard.sdk.vault_client import LedgerReadError

from conftest import ALICE, MIB, WEI


class TestHasCapacity:
    """Test the capacity formula and its inputs."""

    @pytest.mark.parametrize("balance,consumption,extra", [
        (0, 0, 0),
        (0, 0, 1),
        (WEI, 0, MIB),
        (WEI - 1, 0, MIB),
        (WEI, 1, MIB),
        (5 * WEI, 3 * MIB, 2 * MIB),
        (5 * WEI, 3 * MIB, 2 * MIB + 1),
        (953674316406, 0, 1),
        (953674316405, 0, 1),
    ])
    def test_matches_formula(self, ledger, balance, consumption, extra):
        """has_capacity iff balance >= floor((consumption + extra) * 10^18 / 2^20)."""
        ledger.balances[ALICE] = balance
        ledger.consumption[ALICE] = consumption

        expected = balance >= ((consumption + extra) * 10 ** 18) // 2 ** 20
        assert has_capacity(ledger, ALICE, extra) is expected

    def test_zero_balance_denies_one_mib(self, ledger):
        """Empty vault cannot store 1 MiB: 0 < 10^18."""
        assert has_capacity(ledger, ALICE, MIB) is False

    def test_uses_ledger_not_mirror(self, ledger, accounts):
        """A stale mirror claiming zero consumption does not grant capacity."""
        accounts.set_consumption(ALICE, 0)
        ledger.balances[ALICE] = WEI
        ledger.consumption[ALICE] = MIB

        assert has_capacity(ledger, ALICE, 1) is False

    def test_checksum_address_accepted(self, ledger):
        ledger.balances[ALICE] = WEI
        assert has_capacity(ledger, Web3.to_checksum_address(ALICE), MIB) is True

    def test_invalid_address_raises(self, ledger):
        with pytest.raises(InvalidAddressError):
            has_capacity(ledger, "0x1234", 10)

    def test_negative_bytes_raises(self, ledger):
        with pytest.raises(ValueError, match="additional_bytes must be >= 0"):
            has_capacity(ledger, ALICE, -1)

    def test_read_failure_propagates(self, ledger):
        """No fallback value is invented when the ledger is unreachable."""
        ledger.read_error = "rpc down"
        with pytest.raises(LedgerReadError):
            has_capacity(ledger, ALICE, 1)
