from dataclasses import dataclass, field
from typing import Dict, Any, List

from .constants import (
    DECRYPTION_DOMAIN_NAME,
    DECRYPTION_DOMAIN_VERSION,
    USER_DECRYPT_PRIMARY_TYPE,
)


# -----------------------------
# EIP-712 Domain
# -----------------------------

_DOMAIN_FIELD_TYPES: Dict[str, str] = {
    "name": "string",
    "version": "string",
    "chainId": "uint256",
    "verifyingContract": "address",
    "salt": "bytes32",
}


@dataclass
class EIP712Domain:
    """
    EIP-712 domain separator.
    Used to prevent signature replay across domains.
    """
    name: str
    version: str
    chainId: int
    verifyingContract: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chainId,
            "verifyingContract": self.verifyingContract,
        }


def domain_type_fields(domain: Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Derive the ``EIP712Domain`` type definition from the keys present in ``domain``.

    Field order follows the EIP-712 specification, not the dict order.
    """
    return [
        {"name": name, "type": type_}
        for name, type_ in _DOMAIN_FIELD_TYPES.items()
        if name in domain
    ]


# -----------------------------
# User decryption request
# -----------------------------

@dataclass
class UserDecryptRequestMessage:
    """
    Message payload of a user-decryption challenge.

    Binds an engine public key to a contract scope and a validity window.

    Attributes:
        publicKey: Engine public key being authorized (hex bytes).
        contractAddresses: Contracts whose handles may be decrypted.
        startTimestamp: Unix timestamp at which the window opens.
        durationDays: Window length in days.
    """
    publicKey: str
    contractAddresses: List[str]
    startTimestamp: int
    durationDays: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "publicKey": self.publicKey,
            "contractAddresses": list(self.contractAddresses),
            "startTimestamp": self.startTimestamp,
            "durationDays": self.durationDays,
        }


@dataclass
class UserDecryptTypedData:
    """
    Container for a user-decryption challenge usable with EIP-712 signing routines.

    ``to_dict()`` returns the ``{types, primaryType, domain, message}`` layout
    accepted by ``eth_account`` and ``eth_signTypedData_v4``.
    """
    domain: EIP712Domain
    message: UserDecryptRequestMessage

    primary_type: str = USER_DECRYPT_PRIMARY_TYPE

    types: Dict[str, List[Dict[str, str]]] = field(
        default_factory=lambda: {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            USER_DECRYPT_PRIMARY_TYPE: [
                {"name": "publicKey", "type": "bytes"},
                {"name": "contractAddresses", "type": "address[]"},
                {"name": "startTimestamp", "type": "uint256"},
                {"name": "durationDays", "type": "uint256"},
            ],
        }
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": self.types,
            "primaryType": self.primary_type,
            "domain": self.domain.to_dict(),
            "message": self.message.to_dict(),
        }


def build_user_decrypt_typed_data(
    *,
    public_key: str,
    contract_addresses: List[str],
    start_timestamp: int,
    duration_days: int,
    chain_id: int,
    verifying_contract: str,
    domain_name: str = DECRYPTION_DOMAIN_NAME,
    domain_version: str = DECRYPTION_DOMAIN_VERSION,
) -> UserDecryptTypedData:
    """Assemble a user-decryption challenge from its parts."""
    return UserDecryptTypedData(
        domain=EIP712Domain(
            name=domain_name,
            version=domain_version,
            chainId=chain_id,
            verifyingContract=verifying_contract,
        ),
        message=UserDecryptRequestMessage(
            publicKey=public_key,
            contractAddresses=list(contract_addresses),
            startTimestamp=start_timestamp,
            durationDays=duration_days,
        ),
    )


def normalize_typed_data(document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a full EIP-712 message from a possibly partial engine document.

    Engines commonly omit the ``EIP712Domain`` entry from ``types`` (ethers
    derives it) and sometimes ``primaryType``. Both are filled in here so the
    result can be hashed by ``eth_account``.

    Raises:
        ValueError: If the document lacks a domain, types or message.
    """
    for key in ("domain", "types", "message"):
        if key not in document:
            raise ValueError(f"typed data is missing '{key}'")

    types = dict(document["types"])
    if "EIP712Domain" not in types:
        types["EIP712Domain"] = domain_type_fields(document["domain"])

    primary_type = document.get("primaryType")
    if not primary_type:
        candidates = [name for name in types if name != "EIP712Domain"]
        if len(candidates) != 1:
            raise ValueError("typed data has no primaryType and more than one struct type")
        primary_type = candidates[0]

    return {
        "types": types,
        "primaryType": primary_type,
        "domain": dict(document["domain"]),
        "message": dict(document["message"]),
    }
