from .bases import (
    AbiEntry,
    ContractGateway,
    CryptoEngine,
    EncryptedInputBuilder,
    EngineKeypair,
    PlainValue,
)
from .engine import EngineHandle
from .mock_engine import MockCryptoEngine, MockEncryptedInput
from .evm import EVMContractGateway

__all__ = [
    "AbiEntry",
    "ContractGateway",
    "CryptoEngine",
    "EncryptedInputBuilder",
    "EngineKeypair",
    "PlainValue",
    "EngineHandle",
    "MockCryptoEngine",
    "MockEncryptedInput",
    "EVMContractGateway",
]
