"""
In-Process Mock Crypto Engine

A deterministic stand-in for a real FHE engine, used for local development
(the relayer's ``mock`` mode) and tests. It performs no homomorphic
encryption: cleartexts are kept in an in-memory ledger keyed by random
handles. It does, however, enforce the same authorization rules a real
engine does before releasing a value:

- the keypair presented must be the one that was generated,
- the EIP-712 signature must recover to the requesting user,
- the permission window must be open,
- every handle must belong to a contract inside the signed scope.
"""

import asyncio
import secrets
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_utils import keccak, to_checksum_address

from ..schemas.bases import SECONDS_PER_DAY, EncryptedInputs
from .bases import CryptoEngine, EncryptedInputBuilder, EngineKeypair, PlainValue
from .evm.constants import is_valid_evm_address, to_hex
from .evm.signatures import addresses_equal, recover_typed_data_signer
from .evm.standards import build_user_decrypt_typed_data

#: Arbitrary verifying contract used in the mock EIP-712 domain.
MOCK_VERIFYING_CONTRACT = "0x0000000000000000000000000000000000000d3c"

_PUBLIC_KEY_DOMAIN = b"mock-fhe-public-key"
_PROOF_DOMAIN = b"mock-fhe-input-proof"


def _derive_public_key(private_key: bytes) -> bytes:
    return keccak(_PUBLIC_KEY_DOMAIN + private_key)


class MockEncryptedInput(EncryptedInputBuilder):
    """Input builder that validates bit widths and records cleartexts."""

    def __init__(self, engine: "MockCryptoEngine", contract_address: str, user_address: str) -> None:
        self._engine = engine
        self._contract_address = contract_address
        self._user_address = user_address
        self._values: List[PlainValue] = []

    def _add_uint(self, value: int, bits: int) -> "MockEncryptedInput":
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"euint{bits} expects an integer, got {type(value).__name__}")
        if not 0 <= value < 2 ** bits:
            raise ValueError(f"Value {value} does not fit in euint{bits}")
        self._values.append(value)
        return self

    def add_bool(self, value: bool) -> "MockEncryptedInput":
        if value not in (True, False, 0, 1):
            raise ValueError(f"ebool expects a boolean, got {value!r}")
        self._values.append(bool(value))
        return self

    def add8(self, value: int) -> "MockEncryptedInput":
        return self._add_uint(value, 8)

    def add16(self, value: int) -> "MockEncryptedInput":
        return self._add_uint(value, 16)

    def add32(self, value: int) -> "MockEncryptedInput":
        return self._add_uint(value, 32)

    def add64(self, value: int) -> "MockEncryptedInput":
        return self._add_uint(value, 64)

    def add128(self, value: int) -> "MockEncryptedInput":
        return self._add_uint(value, 128)

    def add256(self, value: int) -> "MockEncryptedInput":
        return self._add_uint(value, 256)

    def add_address(self, value: str) -> "MockEncryptedInput":
        if not is_valid_evm_address(value):
            raise ValueError(f"eaddress expects an EVM address, got {value!r}")
        self._values.append(to_checksum_address(value))
        return self

    async def encrypt(self) -> EncryptedInputs:
        self._engine.encrypt_calls += 1
        handles = [
            self._engine.store(self._contract_address, value)
            for value in self._values
        ]
        raw_handles = [bytes.fromhex(handle[2:]) for handle in handles]
        proof = keccak(_PROOF_DOMAIN + b"".join(raw_handles))
        return EncryptedInputs(handles=raw_handles, proof=proof)


class MockCryptoEngine(CryptoEngine):
    """
    Ledger-backed engine for development and tests.

    Attributes:
        chain_id: Chain id written into the EIP-712 domain
        encrypt_calls: Number of ``encrypt()`` calls served
        decrypt_calls: Number of ``user_decrypt`` calls served
    """

    def __init__(
        self,
        chain_id: int = 11155111,
        *,
        verifying_contract: str = MOCK_VERIFYING_CONTRACT,
        decrypt_delay: float = 0.0,
        clock=time.time,
    ) -> None:
        self.chain_id = chain_id
        self.verifying_contract = to_checksum_address(verifying_contract)
        self.decrypt_delay = decrypt_delay
        self.encrypt_calls = 0
        self.decrypt_calls = 0
        self._clock = clock
        self._ledger: Dict[str, Tuple[str, PlainValue]] = {}

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def store(self, contract_address: str, value: PlainValue) -> str:
        """
        Record ``value`` as encrypted state of ``contract_address``.

        Returns:
            Fresh non-zero bytes32 handle (hex).
        """
        handle = to_hex(keccak(bytes.fromhex(contract_address[2:]) + secrets.token_bytes(32)))
        self._ledger[handle] = (contract_address.lower(), value)
        return handle

    def peek(self, handle: str) -> Optional[PlainValue]:
        """Return the cleartext behind ``handle`` without authorization (tests only)."""
        entry = self._ledger.get(to_hex(handle))
        return entry[1] if entry else None

    # ------------------------------------------------------------------
    # CryptoEngine
    # ------------------------------------------------------------------

    def generate_keypair(self) -> EngineKeypair:
        private_key = secrets.token_bytes(32)
        return EngineKeypair(
            public_key=to_hex(_derive_public_key(private_key)),
            private_key=to_hex(private_key),
        )

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> Dict[str, Any]:
        return build_user_decrypt_typed_data(
            public_key=public_key,
            contract_addresses=[to_checksum_address(address) for address in contract_addresses],
            start_timestamp=start_timestamp,
            duration_days=duration_days,
            chain_id=self.chain_id,
            verifying_contract=self.verifying_contract,
        ).to_dict()

    def create_encrypted_input(self, contract_address: str, user_address: str) -> MockEncryptedInput:
        if not is_valid_evm_address(contract_address) or not is_valid_evm_address(user_address):
            raise ValueError("Encrypted inputs require valid contract and user addresses")
        return MockEncryptedInput(self, contract_address, user_address)

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
        self.decrypt_calls += 1
        if self.decrypt_delay:
            await asyncio.sleep(self.decrypt_delay)

        if to_hex(_derive_public_key(bytes.fromhex(private_key[2:]))) != to_hex(public_key):
            raise ValueError("Keypair mismatch")

        typed_data = self.create_eip712(public_key, contract_addresses, start_timestamp, duration_days)
        signer = recover_typed_data_signer(typed_data, signature)
        if not addresses_equal(signer, user_address):
            raise ValueError("Decryption request was not signed by the user")

        now = self._clock()
        if not start_timestamp <= now < start_timestamp + duration_days * SECONDS_PER_DAY:
            raise ValueError("Decryption request is outside its validity window")

        scope = {address.lower() for address in contract_addresses}
        results: Dict[str, PlainValue] = {}
        for handle, contract_address in handle_contract_pairs:
            if contract_address.lower() not in scope:
                raise ValueError(f"Contract {contract_address} is not in the signed scope")
            key = to_hex(handle)
            entry = self._ledger.get(key)
            if entry is None or entry[0] != contract_address.lower():
                raise ValueError(f"Unknown handle {key}")
            results[key] = entry[1]
        return results
