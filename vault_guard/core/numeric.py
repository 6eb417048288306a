"""
Bridge between unbounded ledger integers and the bounded mirror.

Ledger values are uint256. The mirror holds values within the range that
JSON consumers and document stores can represent exactly (IEEE-754 doubles).
Values outside that range saturate rather than wrap or fail.

Mirror values are for display and indexing only. Admission and settlement
decisions always use the raw ledger integer.
"""

MAX_SAFE_INTEGER = 2 ** 53 - 1
MIN_SAFE_INTEGER = -MAX_SAFE_INTEGER


def to_bounded_number(value: int) -> int:
    """Clamp a ledger integer into the safe mirror range.

    Args:
        value: Arbitrary-precision integer read from or written to the ledger

    Returns:
        The value itself when representable, otherwise the nearest bound
    """
    if value > MAX_SAFE_INTEGER:
        return MAX_SAFE_INTEGER
    if value < MIN_SAFE_INTEGER:
        return MIN_SAFE_INTEGER
    return int(value)
