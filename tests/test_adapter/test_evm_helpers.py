"""
EVM helper tests: hex/handle normalization, signing and typed-data completion.
"""

from unittest.mock import AsyncMock, Mock

import pytest
from web3.exceptions import TransactionNotFound

from fhe_relayer.adapters.evm.constants import (
    ZERO_HASH,
    handle_to_hex,
    is_valid_evm_address,
    is_zero_handle,
    shorten,
    to_hex,
)
from fhe_relayer.adapters.evm.gateway import EVMContractGateway
from fhe_relayer.adapters.evm.signatures import (
    account_from_key,
    recover_message_signer,
    recover_typed_data_signer,
    sign_request_message,
    sign_typed_data,
)
from fhe_relayer.adapters.evm.standards import normalize_typed_data
from fhe_relayer.adapters.mock_engine import MockCryptoEngine
from fhe_relayer.schemas.bases import TransactionStatus

from relayer_mocks import COUNTER_ADDRESS, OWNER_ACCOUNT, OWNER_ADDRESS, OWNER_PRIVATE_KEY


# ==================== Constants ====================

def test_to_hex():
    assert to_hex(b"\x01\xab") == "0x01ab"
    assert to_hex("ABCD") == "0xabcd"
    assert to_hex("0xAbCd") == "0xabcd"


def test_handle_to_hex_encodings():
    raw = bytes(31) + b"\x05"
    expected = "0x" + "00" * 31 + "05"

    assert handle_to_hex(raw) == expected
    assert handle_to_hex(b"\x05") == expected
    assert handle_to_hex(5) == expected
    assert handle_to_hex("0x05") == expected

    with pytest.raises(TypeError):
        handle_to_hex(True)
    with pytest.raises(ValueError):
        handle_to_hex(-1)


def test_zero_handle_detection():
    assert is_zero_handle(ZERO_HASH)
    assert is_zero_handle(bytes(32))
    assert is_zero_handle(0)
    assert not is_zero_handle("0x" + "00" * 31 + "01")


def test_address_validation():
    assert is_valid_evm_address(COUNTER_ADDRESS)
    assert is_valid_evm_address(COUNTER_ADDRESS.lower())
    assert not is_valid_evm_address(COUNTER_ADDRESS[2:])
    assert not is_valid_evm_address(None)


def test_shorten():
    assert shorten(OWNER_ADDRESS) == f"{OWNER_ADDRESS[:6]}...{OWNER_ADDRESS[-4:]}"
    assert shorten("short") == "short"


# ==================== Signatures ====================

def test_personal_sign_roundtrip():
    signature = sign_request_message(OWNER_PRIVATE_KEY, "hello relayer")
    assert signature.startswith("0x") and len(signature) == 132
    assert recover_message_signer("hello relayer", signature) == OWNER_ADDRESS


def test_recover_message_signer_malformed():
    with pytest.raises(ValueError):
        recover_message_signer("hello", "0x00")


def test_account_from_key_without_prefix():
    assert account_from_key(OWNER_PRIVATE_KEY[2:]).address == OWNER_ADDRESS
    with pytest.raises(ValueError):
        account_from_key("0x1234")


def test_typed_data_without_domain_type_is_completed():
    engine = MockCryptoEngine()
    document = engine.create_eip712(engine.generate_keypair().public_key, [COUNTER_ADDRESS], 100, 1)
    partial = dict(document)
    partial["types"] = {k: v for k, v in document["types"].items() if k != "EIP712Domain"}
    del partial["primaryType"]

    full = normalize_typed_data(partial)
    assert full["primaryType"] == "UserDecryptRequestVerification"
    assert [field["name"] for field in full["types"]["EIP712Domain"]] == [
        "name", "version", "chainId", "verifyingContract",
    ]

    signature = sign_typed_data(OWNER_ACCOUNT, partial)
    assert recover_typed_data_signer(document, signature) == OWNER_ADDRESS


def test_normalize_typed_data_requires_message():
    with pytest.raises(ValueError):
        normalize_typed_data({"domain": {}, "types": {}})


# ==================== Gateway ====================

def make_web3() -> Mock:
    web3 = Mock()
    web3.eth = Mock()
    web3.eth.send_raw_transaction = AsyncMock(return_value=b"\x11" * 32)
    return web3


@pytest.mark.asyncio
async def test_gateway_confirms_after_pending_receipt():
    web3 = make_web3()
    web3.eth.get_transaction_receipt = AsyncMock(side_effect=[
        TransactionNotFound("pending"),
        {"status": 1, "blockNumber": 7, "gasUsed": 50000},
    ])
    gateway = EVMContractGateway(rpc_url="", chain_id=1, poll_interval=0, web3=web3)

    confirmation = await gateway._send_and_confirm(b"raw")

    assert confirmation.status == TransactionStatus.SUCCESS
    assert confirmation.tx_hash == "0x" + "11" * 32
    assert confirmation.block_number == 7


@pytest.mark.asyncio
async def test_gateway_reports_revert():
    web3 = make_web3()
    web3.eth.get_transaction_receipt = AsyncMock(return_value={"status": 0, "blockNumber": 8, "gasUsed": 1})
    gateway = EVMContractGateway(rpc_url="", chain_id=1, poll_interval=0, web3=web3)

    confirmation = await gateway._send_and_confirm(b"raw")

    assert confirmation.status == TransactionStatus.FAILED
    assert not confirmation.is_success()


@pytest.mark.asyncio
async def test_gateway_times_out():
    web3 = make_web3()
    web3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("pending"))
    gateway = EVMContractGateway(rpc_url="", chain_id=1, receipt_attempts=3, poll_interval=0, web3=web3)

    confirmation = await gateway._send_and_confirm(b"raw")

    assert confirmation.status == TransactionStatus.TIMEOUT
    assert web3.eth.get_transaction_receipt.await_count == 3


@pytest.mark.asyncio
async def test_gateway_broadcast_failure():
    web3 = make_web3()
    web3.eth.send_raw_transaction = AsyncMock(side_effect=ConnectionError("rpc down"))
    gateway = EVMContractGateway(rpc_url="", chain_id=1, web3=web3)

    confirmation = await gateway._send_and_confirm(b"raw")

    assert confirmation.status == TransactionStatus.NETWORK_ERROR
    assert "rpc down" in confirmation.error_message


def test_gateway_requires_rpc_url():
    with pytest.raises(ValueError):
        EVMContractGateway(rpc_url="", chain_id=1)
