"""
EVM Off-Chain Signing and Recovery Utilities

Local helpers for the two signature schemes the relayer speaks:

- EIP-191 ``personal_sign`` over the canonical request message, used to
  authenticate every read/mutate request.
- EIP-712 typed data, used for the user-decryption challenge.

All cryptographic operations are performed in-process using ``eth_account``;
no RPC calls are made.
"""

from typing import Any, Dict, Union

from eth_account import Account
from eth_account.messages import encode_defunct, encode_typed_data
from eth_account.signers.local import LocalAccount

from .constants import to_hex
from .standards import normalize_typed_data


def normalize_private_key(private_key: str) -> str:
    """Return ``private_key`` with a ``0x`` prefix."""
    key = private_key.strip()
    return key if key.startswith("0x") else f"0x{key}"


def account_from_key(private_key: str) -> LocalAccount:
    """
    Build a local account from a hex private key.

    Args:
        private_key: secp256k1 key, with or without ``0x``.

    Raises:
        ValueError: If the key is not a valid secp256k1 private key.
    """
    try:
        return Account.from_key(normalize_private_key(private_key))
    except Exception as e:
        raise ValueError(f"Invalid private key: {type(e).__name__}") from e


def addresses_equal(left: str, right: str) -> bool:
    """Case-insensitive EVM address comparison."""
    return left.lower() == right.lower()


# ---------------------------------------------------------------------------
# EIP-191 personal_sign
# ---------------------------------------------------------------------------

def sign_request_message(signer: Union[LocalAccount, str], message: str) -> str:
    """
    Sign ``message`` with EIP-191 ``personal_sign``.

    Args:
        signer: ``LocalAccount`` or hex private key.
        message: UTF-8 text to sign.

    Returns:
        0x-prefixed 65-byte signature.
    """
    account = signer if isinstance(signer, LocalAccount) else account_from_key(signer)
    signed = account.sign_message(encode_defunct(text=message))
    return to_hex(bytes(signed.signature))


def recover_message_signer(message: str, signature: str) -> str:
    """
    Recover the address that produced an EIP-191 ``signature`` over ``message``.

    Raises:
        ValueError: If the signature is malformed or unrecoverable.
    """
    try:
        return Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        raise ValueError(f"Unrecoverable signature: {type(e).__name__}") from e


# ---------------------------------------------------------------------------
# EIP-712 typed data
# ---------------------------------------------------------------------------

def sign_typed_data(signer: Union[LocalAccount, str], typed_data: Dict[str, Any]) -> str:
    """
    Sign an EIP-712 document (``{types, primaryType, domain, message}``).

    Partial documents (no ``EIP712Domain`` type) are completed first.

    Returns:
        0x-prefixed 65-byte signature.
    """
    account = signer if isinstance(signer, LocalAccount) else account_from_key(signer)
    signable = encode_typed_data(full_message=normalize_typed_data(typed_data))
    signed = account.sign_message(signable)
    return to_hex(bytes(signed.signature))


def recover_typed_data_signer(typed_data: Dict[str, Any], signature: str) -> str:
    """
    Recover the signer of an EIP-712 document.

    Raises:
        ValueError: If the document cannot be encoded or the signature is
            malformed.
    """
    try:
        signable = encode_typed_data(full_message=normalize_typed_data(typed_data))
        return Account.recover_message(signable, signature=signature)
    except Exception as e:
        raise ValueError(f"Unrecoverable typed-data signature: {type(e).__name__}") from e
