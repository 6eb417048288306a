"""
Vault contract client.

Typed access to the on-chain vault: balance and consumption reads,
consumption writes and the settlement trigger. Writes are signed locally
and waited on until a receipt is available.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from ..config.loader import LedgerConfig
from ..core.address import checksum_address

logger = logging.getLogger(__name__)


VAULT_CONTRACT_ABI = [
    {
        "type": "function", "name": "token", "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "type": "function", "name": "balances", "stateMutability": "view",
        "inputs": [{"name": "holder", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function", "name": "consumptionBytes", "stateMutability": "view",
        "inputs": [{"name": "holder", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function", "name": "setConsumption", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "holder", "type": "address"},
            {"name": "bytesUsed", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function", "name": "pay", "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [],
    },
]

TOKEN_CONTRACT_ABI = [
    {
        "type": "function", "name": "approve", "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

# Failures of the RPC transport or the node that are worth surfacing as ledger errors
_RPC_ERRORS = (Web3Exception, requests.RequestException, ConnectionError, TimeoutError, ValueError)


class LedgerError(Exception):
    """Base class for vault ledger failures."""


class LedgerReadError(LedgerError):
    """A view call could not be completed. Retryable."""


class LedgerWriteError(LedgerError):
    """A transaction was not submitted, not confirmed in time, or reverted."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of a mined vault transaction."""
    tx_hash: str
    success: bool
    block_number: Optional[int] = None


class VaultLedgerClient:
    """Client for the vault contract.

    Transaction submission is serialized through a single lock so the signer's
    nonce sequence stays consistent across threads. Waiting for receipts
    happens outside the lock.
    """

    def __init__(self, config: LedgerConfig, signer: Any = None, web3: Optional[Web3] = None):
        """Initialize the vault client.

        Args:
            config: Ledger connection settings
            signer: Local account used to sign writes (None for read-only use)
            web3: Pre-built Web3 instance (defaults to an HTTP provider on rpc_url)
        """
        self.config = config
        self.web3 = web3 or Web3(
            Web3.HTTPProvider(config.rpc_url, request_kwargs={"timeout": 30})
        )
        self.vault_address = checksum_address(config.vault_address)
        self.vault = self.web3.eth.contract(address=self.vault_address, abi=VAULT_CONTRACT_ABI)
        self.signer = signer
        self._send_lock = threading.Lock()

    @classmethod
    def from_environment(
        cls,
        config: LedgerConfig,
        environ: Optional[Dict[str, str]] = None,
        web3: Optional[Web3] = None
    ) -> "VaultLedgerClient":
        """Build a client whose signer key comes from SIGNER_PRIVATE_KEY."""
        env = os.environ if environ is None else environ
        key = env.get("SIGNER_PRIVATE_KEY", "").strip()
        signer = Account.from_key(key) if key else None
        if signer is None:
            logger.warning("SIGNER_PRIVATE_KEY not set; vault client is read-only")
        return cls(config, signer=signer, web3=web3)

    def balance_of(self, address: str) -> int:
        """Escrowed token balance of an address, in wei."""
        holder = checksum_address(address)
        return self._read("balances", lambda: self.vault.functions.balances(holder).call())

    def consumption_of(self, address: str) -> int:
        """Bytes the vault is currently billing an address for."""
        holder = checksum_address(address)
        return self._read(
            "consumptionBytes", lambda: self.vault.functions.consumptionBytes(holder).call()
        )

    def token_address(self) -> str:
        return self._read_raw("token", lambda: self.vault.functions.token().call())

    def set_consumption(self, address: str, bytes_used: int) -> TransactionResult:
        """Overwrite the consumption of an address and wait for the receipt.

        Raises:
            ValueError: If bytes_used is negative
            LedgerWriteError: If the transaction could not be submitted or confirmed
        """
        if bytes_used < 0:
            raise ValueError("bytes_used must be >= 0")
        holder = checksum_address(address)
        return self._transact(
            "setConsumption", self.vault.functions.setConsumption(holder, int(bytes_used))
        )

    def settle(self) -> TransactionResult:
        """Trigger the vault's periodic payment and wait for the receipt."""
        return self._transact("pay", self.vault.functions.pay())

    def approve(self, amount: int) -> TransactionResult:
        """Approve the vault to pull ``amount`` wei of its token from the signer."""
        token = self.web3.eth.contract(
            address=Web3.to_checksum_address(self.token_address()), abi=TOKEN_CONTRACT_ABI
        )
        return self._transact("approve", token.functions.approve(self.vault_address, int(amount)))

    def _read(self, label: str, call: Callable[[], Any]) -> int:
        return int(self._read_raw(label, call))

    def _read_raw(self, label: str, call: Callable[[], Any]) -> Any:
        attempts = self.config.read_retries + 1
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                return call()
            except _RPC_ERRORS as e:
                last_error = e
                logger.warning(
                    "Vault read failed: call=%s attempt=%d/%d error=%s",
                    label, attempt + 1, attempts, e
                )
                if attempt + 1 < attempts:
                    time.sleep(self.config.retry_backoff_seconds * (2 ** attempt))
        raise LedgerReadError(f"{label} failed after {attempts} attempt(s): {last_error}") from last_error

    def _transact(self, label: str, function: Any) -> TransactionResult:
        if self.signer is None:
            raise LedgerWriteError(f"{label} requires a signer; set SIGNER_PRIVATE_KEY")

        try:
            with self._send_lock:
                tx = function.build_transaction({
                    "from": self.signer.address,
                    "nonce": self.web3.eth.get_transaction_count(self.signer.address, "pending"),
                    "chainId": self.web3.eth.chain_id,
                })
                signed = self.signer.sign_transaction(tx)
                raw_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        except _RPC_ERRORS as e:
            raise LedgerWriteError(f"{label} submission failed: {e}") from e

        tx_hash = Web3.to_hex(raw_hash)
        logger.debug("Vault transaction sent: call=%s tx=%s", label, tx_hash)

        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(
                raw_hash, timeout=self.config.confirmation_timeout_seconds
            )
        except TimeExhausted as e:
            raise LedgerWriteError(
                f"{label} not confirmed within {self.config.confirmation_timeout_seconds}s",
                tx_hash=tx_hash
            ) from e
        except _RPC_ERRORS as e:
            raise LedgerWriteError(f"{label} confirmation failed: {e}", tx_hash=tx_hash) from e

        return TransactionResult(
            tx_hash=tx_hash,
            success=receipt["status"] == 1,
            block_number=receipt.get("blockNumber")
        )


# Process-wide client, shared by request handlers and the reconciliation loop
_default_client: Optional[VaultLedgerClient] = None
_default_client_lock = threading.Lock()


def get_ledger_client(config: LedgerConfig) -> VaultLedgerClient:
    """Get the shared vault client, creating it on first use.

    Args:
        config: Ledger settings used if the client does not exist yet

    Returns:
        The process-wide VaultLedgerClient
    """
    global _default_client
    with _default_client_lock:
        if _default_client is None:
            _default_client = VaultLedgerClient.from_environment(config)
        return _default_client


def reset_ledger_client() -> None:
    """Drop the shared client, e.g. after rotating the signer key."""
    global _default_client
    with _default_client_lock:
        _default_client = None
