"""
Wallet address validation and normalization.
"""

from web3 import Web3


class InvalidAddressError(ValueError):
    """Raised for malformed wallet addresses. Caller error, never retried."""


def normalize_address(address: str) -> str:
    """Validate a hex wallet address and return its lower-case form.

    The lower-case form is the key for the account mirror and the object
    catalog.

    Raises:
        InvalidAddressError: If the address is not a 20-byte hex address
    """
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidAddressError(f"Invalid wallet address: {address!r}")
    return address.lower()


def checksum_address(address: str) -> str:
    """EIP-55 form of a validated address, as contract calls expect."""
    return Web3.to_checksum_address(normalize_address(address))
