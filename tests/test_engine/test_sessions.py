"""
Session lifecycle and decryption-authorization handshake tests.
"""

import pytest

from fhe_relayer.adapters.evm.signatures import sign_typed_data
from fhe_relayer.engine.exceptions import (
    AuthorizationRequired,
    IdentityMismatch,
    InvalidArguments,
    NothingToAuthorize,
    SignatureMismatch,
    UnknownSession,
)
from fhe_relayer.engine.sessions import PURE_RELAY, SERVER_CUSTODY
from fhe_relayer.schemas.bases import SECONDS_PER_DAY, SessionStatus

from relayer_mocks import (
    COUNTER_ABI,
    COUNTER_ADDRESS,
    OWNER_ACCOUNT,
    OWNER_ADDRESS,
    OWNER_PRIVATE_KEY,
    SESSION_TTL,
    STRANGER_ACCOUNT,
    STRANGER_PRIVATE_KEY,
)


# ==================== Opening ====================

@pytest.mark.asyncio
async def test_open_pure_relay_session(sessions):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS.lower())

    assert session.status is SessionStatus.PENDING_SIGNATURE
    assert session.mode == PURE_RELAY
    assert session.nonce == 0
    assert session.owner == OWNER_ADDRESS
    assert session.pending is not None
    assert session.pending.contract_addresses == [COUNTER_ADDRESS]
    assert session.id in sessions


@pytest.mark.asyncio
async def test_open_server_custody_session(sessions):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY)

    assert session.status is SessionStatus.READY
    assert session.mode == SERVER_CUSTODY
    assert session.pending is None
    assert session.permission is None


@pytest.mark.asyncio
async def test_open_session_key_without_prefix(sessions):
    session = await sessions.open_session(
        COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY[2:]
    )
    assert session.mode == SERVER_CUSTODY


@pytest.mark.asyncio
async def test_open_session_key_owner_mismatch(sessions):
    with pytest.raises(IdentityMismatch):
        await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, STRANGER_PRIVATE_KEY)
    assert len(sessions) == 0


@pytest.mark.asyncio
async def test_open_session_malformed_key(sessions):
    with pytest.raises(IdentityMismatch):
        await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, "0xnot-a-key")


@pytest.mark.asyncio
@pytest.mark.parametrize("contract, owner", [
    ("0x1234", OWNER_ADDRESS),
    (COUNTER_ADDRESS, "owner"),
])
async def test_open_session_invalid_addresses(sessions, contract, owner):
    with pytest.raises(InvalidArguments):
        await sessions.open_session(contract, COUNTER_ABI, owner)


# ==================== Lookup and expiry ====================

def test_get_unknown_session(sessions):
    with pytest.raises(UnknownSession):
        sessions.get_session("missing")


@pytest.mark.asyncio
async def test_idle_session_expires(sessions, clock):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY)

    clock.advance(SESSION_TTL - 1)
    sessions.touch(sessions.get_session(session.id))
    clock.advance(SESSION_TTL - 1)
    assert sessions.get_session(session.id) is session

    clock.advance(SESSION_TTL + 1)
    with pytest.raises(UnknownSession):
        sessions.get_session(session.id)
    assert session.id not in sessions


@pytest.mark.asyncio
async def test_purge_expired(sessions, clock):
    await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY)
    clock.advance(SESSION_TTL + 1)
    await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY)

    assert len(sessions) == 1
    assert sessions.purge_expired() == 0


@pytest.mark.asyncio
async def test_close_session(sessions):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS)
    sessions.close_session(session.id)

    with pytest.raises(UnknownSession):
        sessions.get_session(session.id)
    with pytest.raises(UnknownSession):
        sessions.close_session(session.id)


@pytest.mark.asyncio
async def test_snapshot_hides_key_material(sessions):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY)
    snapshot = session.snapshot()

    assert snapshot["mode"] == SERVER_CUSTODY
    assert OWNER_PRIVATE_KEY not in repr(snapshot)
    assert OWNER_PRIVATE_KEY not in repr(session)


# ==================== Authorization handshake ====================

@pytest.mark.asyncio
async def test_complete_challenge(sessions, authorization, clock):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS)
    challenge = session.pending
    signature = sign_typed_data(OWNER_ACCOUNT, challenge.typed_data)

    status = await authorization.complete_challenge(session, signature)

    assert status is SessionStatus.READY
    assert session.pending is None
    assert session.permission.public_key == challenge.public_key
    assert session.permission.start_timestamp == int(clock())
    assert session.permission.covers(COUNTER_ADDRESS.lower())


@pytest.mark.asyncio
async def test_challenge_signed_by_stranger_stays_pending(sessions, authorization):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS)
    signature = sign_typed_data(STRANGER_ACCOUNT, session.pending.typed_data)

    with pytest.raises(SignatureMismatch):
        await authorization.complete_challenge(session, signature)

    assert session.status is SessionStatus.PENDING_SIGNATURE
    assert session.permission is None


@pytest.mark.asyncio
@pytest.mark.parametrize("signature", ["", "0xdeadbeef"])
async def test_challenge_with_malformed_signature(sessions, authorization, signature):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS)

    with pytest.raises(SignatureMismatch):
        await authorization.complete_challenge(session, signature)
    assert session.status is SessionStatus.PENDING_SIGNATURE


@pytest.mark.asyncio
async def test_complete_challenge_twice_is_idempotent(sessions, authorization):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS)
    signature = sign_typed_data(OWNER_ACCOUNT, session.pending.typed_data)
    await authorization.complete_challenge(session, signature)
    permission = session.permission

    assert await authorization.complete_challenge(session, "0xanything") is SessionStatus.READY
    assert session.permission is permission


@pytest.mark.asyncio
async def test_nothing_to_authorize(sessions, authorization):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY)

    with pytest.raises(NothingToAuthorize):
        await authorization.complete_challenge(session, "0x00")


@pytest.mark.asyncio
async def test_server_custody_signs_its_own_permission(sessions, authorization, engine):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY)

    permission = await authorization.ensure_permission(session)

    assert permission.user_address == OWNER_ADDRESS
    assert session.permission is permission
    assert await authorization.ensure_permission(session) is permission


@pytest.mark.asyncio
async def test_expired_server_custody_permission_is_replaced(sessions, authorization, clock):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS, OWNER_PRIVATE_KEY)
    first = await authorization.ensure_permission(session)

    clock.advance(SECONDS_PER_DAY)
    second = await authorization.ensure_permission(session)

    assert second is not first
    assert second.start_timestamp == int(clock())
    assert second.is_valid(clock())


@pytest.mark.asyncio
async def test_expired_pure_relay_permission_issues_new_challenge(sessions, authorization, clock):
    session = await sessions.open_session(COUNTER_ADDRESS, COUNTER_ABI, OWNER_ADDRESS)
    first_challenge = session.pending
    await authorization.complete_challenge(session, sign_typed_data(OWNER_ACCOUNT, first_challenge.typed_data))

    clock.advance(SECONDS_PER_DAY)
    with pytest.raises(AuthorizationRequired) as exc_info:
        await authorization.ensure_permission(session)

    assert session.permission is None
    assert session.status is SessionStatus.PENDING_SIGNATURE
    assert session.pending.public_key != first_challenge.public_key
    assert exc_info.value.details["authorization"]["publicKey"] == session.pending.public_key

    await authorization.complete_challenge(session, sign_typed_data(OWNER_ACCOUNT, session.pending.typed_data))
    assert (await authorization.ensure_permission(session)).is_valid(clock())
