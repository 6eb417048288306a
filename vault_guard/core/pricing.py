"""
Pricing calculations for vault storage.

The vault charges one token per mebibyte per settlement period. Tokens have
18 decimals, so the conversion below must match the contract's integer
arithmetic exactly.
"""

from decimal import Decimal

TOKEN_DECIMALS = 18
WEI_PER_TOKEN = 10 ** TOKEN_DECIMALS
BYTES_PER_MIB = 1024 * 1024


def tokens_required(total_bytes: int) -> int:
    """Tokens (in wei) needed to cover ``total_bytes`` of consumption.

    Integer floor division, identical to the vault's pay() formula.

    Raises:
        ValueError: If total_bytes is negative
    """
    if total_bytes < 0:
        raise ValueError("total_bytes must be >= 0")
    return (total_bytes * WEI_PER_TOKEN) // BYTES_PER_MIB


def hourly_cost(size_bytes: int, settlement_interval_seconds: float) -> float:
    """Whole tokens per hour that storing ``size_bytes`` costs.

    Used for display only (live upload feed), never for accounting.
    """
    mib = Decimal(size_bytes) / Decimal(BYTES_PER_MIB)
    hours = Decimal(str(settlement_interval_seconds)) / Decimal(3600)
    return float(mib / hours)
