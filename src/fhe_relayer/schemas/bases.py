"""
Base Schema Models for the FHE Relayer

This module defines the core data models shared by the relayer engine,
the HTTP surface and the client helpers.

Core Classes:
    - CanonicalModel: Pydantic base model with deterministic JSON serialization
    - DecryptionPermission: Time-bounded decryption credential (keypair + signature)
    - PendingChallenge: Unsigned EIP-712 challenge awaiting the owner's signature
    - SessionStatus: pending_signature / ready
    - EncryptedInputs: Handles and proof returned by the engine's input builder
    - TransactionStatus / TransactionConfirmation: On-chain execution outcome

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

SECONDS_PER_DAY = 86400


class CanonicalModel(BaseModel):
    """
    Pydantic base model with canonical JSON serialization.

    Produces sorted-key, whitespace-free JSON so that the same model always
    serializes to the same bytes.

    Example:
        class MyModel(CanonicalModel):
            name: str
            value: int

        MyModel(name="test", value=123).to_canonical_json()
        # '{"name":"test","value":123}'
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to a canonical JSON string.

        Returns:
            str: JSON string with sorted keys and no extra whitespace.
        """
        data = self.model_dump(mode="json")
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Returns:
            Dict[str, Any]: Dictionary with all model fields.
        """
        return self.model_dump()


class DecryptionPermission(CanonicalModel):
    """
    Credential authorizing user decryption for a contract scope.

    The owner signed an EIP-712 document binding ``public_key`` to
    ``contract_addresses`` for ``duration_days`` starting at
    ``start_timestamp``. The private half of the keypair stays with the
    holder of this object and is never serialized into responses.

    Attributes:
        public_key: Engine public key (hex)
        private_key: Engine private key (hex), hidden from repr
        signature: Owner's EIP-712 signature over the challenge
        contract_addresses: Contracts the permission covers
        user_address: Owner address
        start_timestamp: Unix start of the validity window
        duration_days: Length of the validity window in days
    """

    public_key: str = Field(..., description="Engine public key")
    private_key: str = Field(..., repr=False, description="Engine private key")
    signature: str = Field(..., description="EIP-712 signature by the owner")
    contract_addresses: List[str] = Field(..., min_length=1, description="Contract scope")
    user_address: str = Field(..., description="Owner address")
    start_timestamp: int = Field(..., ge=0, description="Validity start (unix)")
    duration_days: int = Field(..., ge=1, description="Validity length in days")

    @property
    def expires_at(self) -> int:
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY

    def is_valid(self, now: Optional[float] = None) -> bool:
        """Return True while ``now < start + duration * 86400``."""
        current = time.time() if now is None else now
        return current < self.expires_at

    def covers(self, contract_address: str) -> bool:
        """Check whether ``contract_address`` is inside the permission scope."""
        target = contract_address.lower()
        return any(address.lower() == target for address in self.contract_addresses)


class PendingChallenge(CanonicalModel):
    """
    Authorization challenge issued to a pure-relay session.

    Holds the freshly generated keypair server-side together with the
    typed-data document the owner must sign with ``eth_signTypedData_v4``.
    """

    public_key: str = Field(..., description="Engine public key being authorized")
    private_key: str = Field(..., repr=False, description="Engine private key (server-side only)")
    contract_addresses: List[str] = Field(..., min_length=1, description="Contract scope")
    start_timestamp: int = Field(..., ge=0, description="Validity start (unix)")
    duration_days: int = Field(..., ge=1, description="Validity length in days")
    typed_data: Dict[str, Any] = Field(..., description="EIP-712 document: domain, types, primaryType, message")

    def to_authorization(self) -> Dict[str, Any]:
        """Public view of the challenge, safe to send to the client."""
        return {
            "type": "eip712",
            "publicKey": self.public_key,
            "startTimestamp": self.start_timestamp,
            "durationDays": self.duration_days,
            "contractAddresses": list(self.contract_addresses),
            "typedData": self.typed_data,
        }


class EncryptedInputs(BaseModel):
    """
    Result of ``encrypt()`` on an engine input builder.

    Attributes:
        handles: One 32-byte handle per value fed to the builder, in order
        proof: Single input proof covering all handles
    """

    handles: List[bytes] = Field(default_factory=list, description="Encrypted value handles")
    proof: bytes = Field(..., description="Input proof")


class SessionStatus(str, Enum):
    """
    Lifecycle state of a relayer session.

    Attributes:
        PENDING_SIGNATURE: Waiting for the owner to sign the decryption challenge
        READY: Operations may be executed
    """
    PENDING_SIGNATURE = "pending_signature"
    READY = "ready"


class TransactionStatus(str, Enum):
    """
    Enumeration of possible transaction execution statuses.

    Attributes:
        SUCCESS: Transaction executed successfully on-chain
        FAILED: Transaction reverted on-chain
        TIMEOUT: Transaction confirmation timed out
        NETWORK_ERROR: Network error during transaction submission
    """
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"


class TransactionConfirmation(CanonicalModel):
    """
    Outcome of a contract transaction submitted by the relayer.

    Attributes:
        status: Transaction execution status
        tx_hash: Transaction hash (0x-prefixed hex string)
        block_number: Block containing the transaction
        gas_used: Gas consumed by the transaction
        error_message: Error details if the transaction failed
    """

    status: TransactionStatus = Field(..., description="Transaction execution status")
    tx_hash: str = Field(..., description="Transaction hash (0x-prefixed hex string)")
    block_number: Optional[int] = Field(None, ge=0, description="Block number containing transaction")
    gas_used: Optional[int] = Field(None, ge=0, description="Actual gas consumed by transaction")
    error_message: Optional[str] = Field(None, description="Error message if transaction failed")

    def is_success(self) -> bool:
        return self.status == TransactionStatus.SUCCESS
