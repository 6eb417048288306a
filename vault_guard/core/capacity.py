"""
Upload admission against paid vault capacity.

Admission is always decided on live ledger values. The account mirror can
lag behind settlement and concurrent writes, so trusting it here could grant
capacity the user has not paid for.
"""

import logging

from .address import normalize_address
from .pricing import tokens_required

logger = logging.getLogger(__name__)


def has_capacity(ledger, address: str, additional_bytes: int) -> bool:
    """Check whether ``additional_bytes`` more fits the address's escrowed balance.

    Args:
        ledger: Vault ledger client (balance_of / consumption_of)
        address: Wallet address of the uploader
        additional_bytes: Size of the prospective write

    Returns:
        True iff balance >= tokens_required(consumption + additional_bytes)

    Raises:
        InvalidAddressError: If the address is malformed
        ValueError: If additional_bytes is negative
        LedgerReadError: If the ledger could not be read; callers must deny
    """
    holder = normalize_address(address)
    if additional_bytes < 0:
        raise ValueError("additional_bytes must be >= 0")

    balance = ledger.balance_of(holder)
    consumption = ledger.consumption_of(holder)
    required = tokens_required(consumption + additional_bytes)

    allowed = balance >= required
    if not allowed:
        logger.info(
            "Capacity denied: address=%s balance=%d consumption=%d requested=%d required=%d",
            holder, balance, consumption, additional_bytes, required
        )
    return allowed
