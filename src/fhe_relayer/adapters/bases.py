"""
Abstract Base Classes for Relayer Adapters

Defines the interfaces of the two external collaborators the relayer depends on:

Core Classes:
    - CryptoEngine: The homomorphic encryption engine (keypairs, EIP-712
      challenges, encrypted inputs, user decryption). Treated as a black box.
    - EncryptedInputBuilder: Per-(contract, user) builder returned by the engine.
    - ContractGateway: Thin contract-call client (view calls and transactions).

Concrete engines wrap a real FHE SDK or, for development and tests,
``MockCryptoEngine``. ``EVMContractGateway`` implements the gateway over
``AsyncWeb3``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from ..schemas.bases import EncryptedInputs, TransactionConfirmation

#: Cleartext value types the engine can return or encrypt.
PlainValue = Union[int, bool, str]

#: One ABI function/event descriptor as found in a JSON ABI.
AbiEntry = Mapping[str, Any]


class EngineKeypair(BaseModel):
    """Keypair produced by ``CryptoEngine.generate_keypair``."""

    public_key: str = Field(..., description="Engine public key (hex)")
    private_key: str = Field(..., repr=False, description="Engine private key (hex)")


class EncryptedInputBuilder(ABC):
    """
    Accumulates cleartext values for a single encrypted-input proof.

    Values are encrypted in the order they are added; ``encrypt()`` returns
    one handle per value and a single proof covering all of them.
    """

    @abstractmethod
    def add_bool(self, value: bool) -> "EncryptedInputBuilder":
        pass

    @abstractmethod
    def add8(self, value: int) -> "EncryptedInputBuilder":
        pass

    @abstractmethod
    def add16(self, value: int) -> "EncryptedInputBuilder":
        pass

    @abstractmethod
    def add32(self, value: int) -> "EncryptedInputBuilder":
        pass

    @abstractmethod
    def add64(self, value: int) -> "EncryptedInputBuilder":
        pass

    @abstractmethod
    def add128(self, value: int) -> "EncryptedInputBuilder":
        pass

    @abstractmethod
    def add256(self, value: int) -> "EncryptedInputBuilder":
        pass

    @abstractmethod
    def add_address(self, value: str) -> "EncryptedInputBuilder":
        pass

    @abstractmethod
    async def encrypt(self) -> EncryptedInputs:
        """Finalize the builder into handles plus one proof."""
        pass


class CryptoEngine(ABC):
    """
    Abstract interface of the external FHE engine.

    The relayer never inspects ciphertexts; it only moves handles, keys and
    signatures between the client, the chain and this engine.
    """

    @abstractmethod
    def generate_keypair(self) -> EngineKeypair:
        """Generate a fresh keypair for a user-decryption request."""
        pass

    @abstractmethod
    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> Dict[str, Any]:
        """
        Build the EIP-712 challenge binding ``public_key`` to a contract scope.

        Returns:
            Typed-data document with ``domain``, ``types``, ``message`` and,
            optionally, ``primaryType``.
        """
        pass

    @abstractmethod
    def create_encrypted_input(self, contract_address: str, user_address: str) -> EncryptedInputBuilder:
        """Open an input builder scoped to ``(contract_address, user_address)``."""
        pass

    @abstractmethod
    async def user_decrypt(
        self,
        handle_contract_pairs: List[Tuple[str, str]],
        private_key: str,
        public_key: str,
        signature: str,
        contract_addresses: Sequence[str],
        user_address: str,
        start_timestamp: int,
        duration_days: int,
    ) -> Dict[str, PlainValue]:
        """
        Decrypt handles the user is authorized for.

        Args:
            handle_contract_pairs: ``(handle_hex, contract_address)`` pairs.

        Returns:
            Mapping of handle hex string to cleartext value.
        """
        pass


class ContractGateway(ABC):
    """
    Thin contract-call client used by the operation executor.

    Implementations must not retry transactions on their own; the executor
    decides what a failure means for the session nonce.
    """

    chain_id: int

    @abstractmethod
    async def call(
        self,
        contract_address: str,
        abi: Sequence[AbiEntry],
        function_name: str,
        args: Sequence[Any] = (),
    ) -> Any:
        """Execute a read-only contract call and return its decoded result."""
        pass

    @abstractmethod
    async def transact(
        self,
        contract_address: str,
        abi: Sequence[AbiEntry],
        function_name: str,
        args: Sequence[Any],
        private_key: str,
    ) -> TransactionConfirmation:
        """Sign, broadcast and await a state-changing contract call."""
        pass
