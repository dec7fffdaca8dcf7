"""
EVM constants and small hex helpers shared by the relayer.
"""

from typing import Union

from eth_utils import is_hex_address

#: The all-zero bytes32 handle: an uninitialized encrypted value.
ZERO_HASH: str = "0x" + "00" * 32

#: Default EIP-712 domain name used for user-decryption challenges.
DECRYPTION_DOMAIN_NAME: str = "Decryption"

#: Default EIP-712 domain version used for user-decryption challenges.
DECRYPTION_DOMAIN_VERSION: str = "1"

#: Primary EIP-712 type of a user-decryption challenge.
USER_DECRYPT_PRIMARY_TYPE: str = "UserDecryptRequestVerification"


def to_hex(value: Union[bytes, bytearray, str]) -> str:
    """
    Convert bytes or a hex-like string to a 0x-prefixed hex string.

    Args:
        value: Raw bytes or a hex string with or without ``0x``.

    Returns:
        Lower-case 0x-prefixed hex string.
    """
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value.lower() if value.startswith("0x") else "0x" + value.lower()


def is_zero_handle(handle: Union[bytes, str, int]) -> bool:
    """Return True for the all-zero bytes32 handle in any accepted encoding."""
    return handle_to_hex(handle) == ZERO_HASH


def is_valid_evm_address(addr: object) -> bool:
    """
    Check whether ``addr`` is a syntactically valid EVM address.

    Accepts 0x-prefixed, 42-character hex strings; checksum is not enforced.
    """
    return isinstance(addr, str) and addr.startswith("0x") and is_hex_address(addr)


def shorten(value: str, head: int = 6, tail: int = 4) -> str:
    """Abbreviate an address or id for log lines (``0x1234...abcd``)."""
    if len(value) <= head + tail:
        return value
    return f"{value[:head]}...{value[-tail:]}"


def handle_to_hex(handle: Union[bytes, bytearray, str, int]) -> str:
    """
    Normalize a handle returned by a contract call to 0x-prefixed bytes32 hex.

    View functions may surface a handle as raw ``bytes32``, as its hex
    string, or as a ``uint256``.
    """
    if isinstance(handle, bool):
        raise TypeError("A boolean is not a handle")
    if isinstance(handle, int):
        if handle < 0 or handle >= 2 ** 256:
            raise ValueError(f"Handle {handle} is not a uint256")
        return "0x" + format(handle, "064x")
    if isinstance(handle, (bytes, bytearray)):
        return "0x" + bytes(handle).rjust(32, b"\x00").hex()
    return "0x" + to_hex(handle)[2:].rjust(64, "0")
