"""
Operation executor tests.

Covers both trust models end to end against the mock engine and the fake
counter gateway, plus the nonce rules: a request must carry the current
nonce, success advances it by exactly one and any failure leaves it alone.
"""

import asyncio

import pytest

from fhe_relayer.adapters.engine import EngineHandle
from fhe_relayer.adapters.evm.signatures import sign_typed_data
from fhe_relayer.engine.authenticator import RequestAuthenticator
from fhe_relayer.engine.events import OperationFailedEvent, ReadCompletedEvent
from fhe_relayer.engine.exceptions import (
    AuthorizationRequired,
    DecryptionFailure,
    EncryptionFailure,
    EngineUnavailable,
    InvalidArguments,
    InvalidNonce,
    SignatureMismatch,
    TransactionFailure,
    UnknownOperation,
    UnknownSession,
)
from fhe_relayer.engine.executors import CLIENT_SIGN, OperationExecutor
from fhe_relayer.engine.sessions import SERVER_CUSTODY
from fhe_relayer.schemas.bases import SECONDS_PER_DAY, SessionStatus

from relayer_mocks import (
    COUNTER_ABI,
    COUNTER_ADDRESS,
    OWNER_ACCOUNT,
    OWNER_ADDRESS,
    OWNER_PRIVATE_KEY,
    STRANGER_ACCOUNT,
    STRANGER_ADDRESS,
    sign_request,
)


async def open_custody(executor):
    return await executor.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY)


async def open_relay(executor, authorize: bool = True):
    session = await executor.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS)
    if authorize:
        await executor.authorize(session.id, sign_typed_data(OWNER_ACCOUNT, session.pending.typed_data))
    return session


async def read(executor, session, operation="getCount", nonce=None, account=OWNER_ACCOUNT):
    nonce = session.nonce if nonce is None else nonce
    return await executor.read(session.id, operation, sign_request(session.id, operation, [], nonce, account), nonce)


async def mutate(executor, session, operation, values, nonce=None, account=OWNER_ACCOUNT):
    nonce = session.nonce if nonce is None else nonce
    signature = sign_request(session.id, operation, values, nonce, account)
    return await executor.mutate(session.id, operation, values, signature, nonce)


# ==================== Server custody ====================

@pytest.mark.asyncio
async def test_server_custody_increment_then_read(executor, gateway):
    """Scenario: increment by 5 with the bound key, then read 5 back."""
    session = await open_custody(executor)

    result = await mutate(executor, session, "increment", [5])

    assert result.mode == SERVER_CUSTODY
    assert result.next_nonce == 1
    assert result.tx_hash.startswith("0x")
    assert result.block_number == 100
    assert gateway.transactions[0]["sender"] == OWNER_ADDRESS
    assert session.nonce == 1

    value = await read(executor, session)
    assert value.value == 5
    assert value.next_nonce == 2
    assert session.nonce == 2


@pytest.mark.asyncio
async def test_consecutive_mutations_accumulate(executor):
    session = await open_custody(executor)
    await mutate(executor, session, "increment", [5])
    await mutate(executor, session, "increment", [7])
    await mutate(executor, session, "decrement", [2])

    assert (await read(executor, session)).value == 10
    assert session.nonce == 4


@pytest.mark.asyncio
async def test_read_zero_handle_skips_engine(executor, engine):
    session = await open_custody(executor)

    result = await read(executor, session)

    assert result.value == 0
    assert result.handle == "0x" + "00" * 32
    assert engine.decrypt_calls == 0
    assert session.permission is None
    assert result.next_nonce == 1


@pytest.mark.asyncio
async def test_reverted_transaction_keeps_nonce(executor, gateway):
    session = await open_custody(executor)
    gateway.revert_next = True

    with pytest.raises(TransactionFailure) as exc_info:
        await mutate(executor, session, "increment", [5])

    assert exc_info.value.details["status"] == "failed"
    assert session.nonce == 0
    # the same nonce is accepted again
    assert (await mutate(executor, session, "increment", [5])).next_nonce == 1


# ==================== Pure relay ====================

@pytest.mark.asyncio
async def test_pure_relay_returns_prepared_call(executor, gateway, engine):
    """Scenario: pure relay prepares [handle, proof] for the client to submit."""
    session = await open_relay(executor)

    result = await mutate(executor, session, "increment", [3])

    assert result.mode == CLIENT_SIGN
    assert result.tx_hash is None
    assert result.contract_address == COUNTER_ADDRESS
    assert result.function_name == "increment"
    handle, proof = result.params
    assert engine.peek("0x" + handle.hex()) == 3
    assert isinstance(proof, bytes)
    assert gateway.transactions == []
    assert session.nonce == 1

    # client submits it with its own key
    await gateway.transact(COUNTER_ADDRESS, COUNTER_ABI, "increment", result.params, OWNER_PRIVATE_KEY)
    assert (await read(executor, session)).value == 3


@pytest.mark.asyncio
async def test_pending_session_rejects_operations(executor, engine):
    session = await open_relay(executor, authorize=False)

    with pytest.raises(AuthorizationRequired) as exc_info:
        await read(executor, session)
    assert exc_info.value.details["authorization"]["publicKey"] == session.pending.public_key

    with pytest.raises(AuthorizationRequired):
        await mutate(executor, session, "increment", [1])

    assert session.nonce == 0
    assert engine.encrypt_calls == 0


@pytest.mark.asyncio
async def test_bad_challenge_signature_keeps_session_pending(executor):
    session = await open_relay(executor, authorize=False)

    with pytest.raises(SignatureMismatch):
        await executor.authorize(session.id, sign_typed_data(STRANGER_ACCOUNT, session.pending.typed_data))

    assert session.status is SessionStatus.PENDING_SIGNATURE
    with pytest.raises(AuthorizationRequired):
        await read(executor, session)


@pytest.mark.asyncio
async def test_expired_permission_requires_new_challenge(executor, gateway, clock):
    session = await open_relay(executor)
    gateway.set_count(COUNTER_ADDRESS, 9)
    assert (await read(executor, session)).value == 9

    clock.advance(SECONDS_PER_DAY + 1)
    with pytest.raises(AuthorizationRequired) as exc_info:
        await read(executor, session)
    assert session.nonce == 1

    challenge = exc_info.value.details["authorization"]
    await executor.authorize(session.id, sign_typed_data(OWNER_ACCOUNT, challenge["typedData"]))
    assert (await read(executor, session)).value == 9
    assert session.nonce == 2


# ==================== Nonce rules ====================

@pytest.mark.asyncio
async def test_stale_nonce_rejected(executor):
    session = await open_custody(executor)
    await read(executor, session)

    with pytest.raises(InvalidNonce) as exc_info:
        await read(executor, session, nonce=0)
    assert exc_info.value.details == {"expected": 1, "provided": 0}
    assert session.nonce == 1


@pytest.mark.asyncio
async def test_future_nonce_rejected(executor):
    session = await open_custody(executor)

    with pytest.raises(InvalidNonce):
        await mutate(executor, session, "increment", [1], nonce=5)
    assert session.nonce == 0


@pytest.mark.asyncio
async def test_replayed_request_rejected(executor):
    session = await open_custody(executor)
    signature = sign_request(session.id, "increment", [5], 0)
    await executor.mutate(session.id, "increment", [5], signature, 0)

    with pytest.raises(InvalidNonce):
        await executor.mutate(session.id, "increment", [5], signature, 0)
    assert session.nonce == 1


@pytest.mark.asyncio
async def test_wrong_signer_rejected(executor):
    session = await open_custody(executor)

    with pytest.raises(SignatureMismatch):
        await mutate(executor, session, "increment", [5], account=STRANGER_ACCOUNT)
    assert session.nonce == 0


@pytest.mark.asyncio
async def test_failures_leave_nonce_unchanged(executor, engine):
    session = await open_custody(executor)

    with pytest.raises(UnknownOperation):
        await mutate(executor, session, "explode", [])
    with pytest.raises(UnknownOperation):
        await read(executor, session, operation="missingView")
    with pytest.raises(InvalidArguments):
        await mutate(executor, session, "increment", [])
    with pytest.raises(InvalidArguments):
        await mutate(executor, session, "increment", [2 ** 40])

    assert session.nonce == 0
    assert engine.encrypt_calls == 0


@pytest.mark.asyncio
async def test_encryption_failure_leaves_nonce_unchanged(executor, engine, monkeypatch):
    session = await open_custody(executor)

    def broken(contract_address, user_address):
        raise RuntimeError("no public key")

    monkeypatch.setattr(engine, "create_encrypted_input", broken)

    with pytest.raises(EncryptionFailure):
        await mutate(executor, session, "increment", [1])
    assert session.nonce == 0


@pytest.mark.asyncio
async def test_decryption_failure_leaves_nonce_unchanged(executor, gateway, engine):
    session = await open_custody(executor)
    # handle that the engine never issued
    gateway.state["getCount"] = "0x" + "ab" * 32

    with pytest.raises(DecryptionFailure):
        await read(executor, session)
    assert session.nonce == 0


@pytest.mark.asyncio
async def test_concurrent_requests_with_same_nonce(executor):
    """Only one of two requests carrying the same nonce can succeed."""
    session = await open_custody(executor)

    results = await asyncio.gather(
        mutate(executor, session, "increment", [1], nonce=0),
        mutate(executor, session, "increment", [2], nonce=0),
        return_exceptions=True,
    )

    successes = [item for item in results if not isinstance(item, Exception)]
    failures = [item for item in results if isinstance(item, Exception)]
    assert len(successes) == 1
    assert isinstance(failures[0], InvalidNonce)
    assert session.nonce == 1


# ==================== Lifecycle ====================

@pytest.mark.asyncio
async def test_close_session_then_read(executor):
    session = await open_custody(executor)
    await executor.close_session(session.id)

    with pytest.raises(UnknownSession):
        await read(executor, session)


@pytest.mark.asyncio
async def test_events_published(executor):
    seen = []

    async def record(event, deps):
        seen.append(type(event))

    executor.event_bus.hook(ReadCompletedEvent, record)
    executor.event_bus.hook(OperationFailedEvent, record)
    session = await open_custody(executor)

    await read(executor, session)
    with pytest.raises(InvalidNonce):
        await read(executor, session, nonce=0)

    assert seen == [ReadCompletedEvent, OperationFailedEvent]


@pytest.mark.asyncio
async def test_mixed_function_keeps_plain_arguments(executor, gateway):
    session = await open_custody(executor)

    result = await mutate(executor, session, "transferTo", [77, 500, STRANGER_ADDRESS])

    args = gateway.transactions[0]["args"]
    assert result.next_nonce == 1
    assert args[0] == 77
    assert args[2] == STRANGER_ADDRESS
    assert len(args) == 4


# ==================== Engine failures ====================

@pytest.mark.asyncio
async def test_engine_down_keeps_nonce(sessions, authorization, gateway):
    """An engine that never initializes fails the mutate as retryable and leaves the nonce."""
    async def broken_engine():
        raise ConnectionError("engine bundle not reachable")

    seen = []

    async def record(event, deps):
        seen.append(event.kind)

    down = OperationExecutor(
        sessions,
        authorization,
        RequestAuthenticator(),
        EngineHandle(broken_engine, max_attempts=1),
        gateway,
    )
    down.event_bus.hook(OperationFailedEvent, record)
    session = await open_custody(down)

    with pytest.raises(EngineUnavailable) as exc_info:
        await mutate(down, session, "increment", [5])

    assert exc_info.value.retryable
    assert session.nonce == 0
    assert seen == ["engine_unavailable"]
    assert gateway.transactions == []


@pytest.mark.asyncio
async def test_keypair_failure_on_read_is_decryption_failure(executor, engine, monkeypatch):
    """Custody reads re-sign with a fresh keypair; an engine error there keeps a kind."""
    session = await open_custody(executor)
    await mutate(executor, session, "increment", [1])

    def no_keypair():
        raise RuntimeError("keygen crashed")

    monkeypatch.setattr(engine, "generate_keypair", no_keypair)

    with pytest.raises(DecryptionFailure) as exc_info:
        await read(executor, session)

    assert exc_info.value.details == {"exception": "RuntimeError"}
    assert session.permission is None
    assert session.nonce == 1


@pytest.mark.asyncio
async def test_keypair_failure_on_open_relay(executor, engine, monkeypatch):
    def no_keypair():
        raise RuntimeError("keygen crashed")

    monkeypatch.setattr(engine, "generate_keypair", no_keypair)

    with pytest.raises(DecryptionFailure):
        await open_relay(executor, authorize=False)
    assert len(executor.sessions) == 0


@pytest.mark.asyncio
async def test_view_call_failure_is_not_a_transaction_failure(executor, gateway, monkeypatch):
    session = await open_custody(executor)

    async def unreachable(*args, **kwargs):
        raise ConnectionError("rpc down")

    monkeypatch.setattr(gateway, "call", unreachable)

    with pytest.raises(DecryptionFailure) as exc_info:
        await read(executor, session)

    assert not isinstance(exc_info.value, TransactionFailure)
    assert "View call getCount failed" in exc_info.value.message
    assert session.nonce == 0
