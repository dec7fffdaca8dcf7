"""
Operation Executor

Orchestrates the two signed operations of a session:

- read: authenticate, call the view function for a handle, decrypt it with
  the session's permission.
- mutate: authenticate, encrypt the arguments, then either submit the
  transaction with the bound key (server-custody) or hand the prepared call
  back for client-side signing (pure-relay).

Each operation runs under the session lock. The nonce advances by one only
when the operation succeeds; any failure leaves it where it was.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional, Sequence

from ..adapters.bases import ContractGateway, PlainValue
from ..adapters.engine import EngineHandle
from ..adapters.evm.constants import handle_to_hex, is_zero_handle, shorten, to_hex
from ..schemas.bases import SessionStatus
from .authenticator import RequestAuthenticator
from .authorization import AuthorizationManager
from .classifier import build_encrypted_args, classify, find_function
from .events import (
    BaseEvent,
    Dependencies,
    EventBus,
    MutateCompletedEvent,
    OperationFailedEvent,
    ReadCompletedEvent,
    SessionAuthorizedEvent,
    SessionClosedEvent,
    SessionOpenedEvent,
)
from .exceptions import (
    AuthorizationRequired,
    DecryptionFailure,
    RelayerError,
    TransactionFailure,
)
from .sessions import SERVER_CUSTODY, Session, SessionManager

logger = logging.getLogger(__name__)

CLIENT_SIGN = "client-sign"


@dataclass
class ReadResult:
    handle: str
    value: PlainValue
    next_nonce: int


@dataclass
class MutateResult:
    """
    Outcome of a mutation.

    ``mode`` is ``server-custody`` (``tx_hash``/``block_number`` set) or
    ``client-sign`` (``params`` holds the final positional arguments for
    ``function_name`` on ``contract_address``).
    """

    mode: str
    next_nonce: int
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    contract_address: Optional[str] = None
    function_name: Optional[str] = None
    params: Optional[List[Any]] = None


class OperationExecutor:
    """
    Entry point used by the HTTP layer for every session operation.

    Usage:
        executor = OperationExecutor(sessions, authorization, authenticator, engine, gateway)
        session = await executor.open_session(contract, abi, owner, key)
        result = await executor.read(session.id, "getCount", signature, nonce=0)
    """

    def __init__(
        self,
        sessions: SessionManager,
        authorization: AuthorizationManager,
        authenticator: RequestAuthenticator,
        engine: EngineHandle,
        gateway: ContractGateway,
        event_bus: Optional[EventBus] = None,
    ):
        self.sessions = sessions
        self.authorization = authorization
        self.authenticator = authenticator
        self.engine = engine
        self.gateway = gateway
        self.event_bus = event_bus or EventBus()
        self.deps = Dependencies(chain_id=gateway.chain_id, sessions=sessions)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def open_session(
        self,
        contract_address: str,
        abi: Sequence[Any],
        owner: str,
        transaction_key: Optional[str] = None,
    ) -> Session:
        session = await self.sessions.open_session(contract_address, abi, owner, transaction_key)
        await self._publish(SessionOpenedEvent(
            session_id=session.id,
            owner=session.owner,
            contract_address=session.contract_address,
            mode=session.mode,
            status=session.status.value,
        ))
        return session

    async def authorize(self, session_id: str, signature: str) -> Session:
        """Complete the pending challenge of ``session_id`` with the owner's signature."""
        session = self.sessions.get_session(session_id)
        async with session.lock:
            was_pending = session.pending is not None
            await self.authorization.complete_challenge(session, signature)
            self.sessions.touch(session)
        if was_pending:
            await self._publish(SessionAuthorizedEvent(session_id=session.id, owner=session.owner))
        return session

    async def close_session(self, session_id: str) -> None:
        session = self.sessions.get_session(session_id)
        async with session.lock:
            self.sessions.close_session(session_id)
        await self._publish(SessionClosedEvent(session_id=session_id))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def read(self, session_id: str, operation: str, signature: str, nonce: int) -> ReadResult:
        """
        Read and decrypt the handle returned by view function ``operation``.

        Raises:
            AuthorizationRequired: Session pending, or its permission expired
                and a new challenge was issued.
            InvalidNonce, SignatureMismatch: Authentication failed.
            UnknownOperation: ``operation`` is not in the ABI.
            DecryptionFailure: The engine failed or returned nothing.
        """
        session = self.sessions.get_session(session_id)
        async with self._operation(session, operation):
            self._require_ready(session)
            self.authenticator.verify(session, operation, [], signature, nonce)
            find_function(session.abi, operation)

            handle = await self._call_for_handle(session, operation)
            if is_zero_handle(handle):
                value: PlainValue = 0
            else:
                value = await self._decrypt(session, handle)
            next_nonce = session.nonce + 1

        await self._publish(ReadCompletedEvent(
            session_id=session.id, operation=operation, handle=handle, next_nonce=next_nonce,
        ))
        return ReadResult(handle=handle, value=value, next_nonce=next_nonce)

    async def mutate(
        self,
        session_id: str,
        operation: str,
        values: Optional[Sequence[Any]],
        signature: str,
        nonce: int,
    ) -> MutateResult:
        """
        Encrypt ``values`` for ``operation`` and execute or prepare the call.

        Raises:
            AuthorizationRequired: Session pending.
            InvalidNonce, SignatureMismatch: Authentication failed.
            UnknownOperation, InvalidArguments: ABI lookup or argument mismatch.
            EncryptionFailure: The engine failed to encrypt.
            TransactionFailure: The transaction did not succeed on-chain.
        """
        values = list(values or [])
        session = self.sessions.get_session(session_id)
        async with self._operation(session, operation):
            self._require_ready(session)
            self.authenticator.verify(session, operation, values, signature, nonce)

            classification = classify(session.abi, operation)
            engine = await self.engine.get()
            params = await build_encrypted_args(
                engine.create_encrypted_input,
                session.contract_address,
                session.owner,
                values,
                classification,
            )
            next_nonce = session.nonce + 1

            if session.mode == SERVER_CUSTODY:
                result = await self._submit(session, operation, params, next_nonce)
            else:
                result = MutateResult(
                    mode=CLIENT_SIGN,
                    next_nonce=next_nonce,
                    contract_address=session.contract_address,
                    function_name=operation,
                    params=params,
                )

        await self._publish(MutateCompletedEvent(
            session_id=session.id,
            operation=operation,
            mode=result.mode,
            tx_hash=result.tx_hash,
            block_number=result.block_number,
            next_nonce=next_nonce,
        ))
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _operation(self, session: Session, operation: str) -> AsyncIterator[None]:
        """Hold the session lock; advance the nonce on success, restore it otherwise."""
        async with session.lock:
            before = session.nonce
            try:
                yield
            except RelayerError as e:
                session.nonce = before
                logger.debug(
                    "%s on session %s failed: %s (%s)", operation, shorten(session.id, 8, 4), e.message, e.kind,
                )
                await self._publish(OperationFailedEvent(
                    session_id=session.id, operation=operation, kind=e.kind, error_message=e.message,
                ))
                raise
            except BaseException:
                session.nonce = before
                raise
            session.nonce = before + 1
            self.sessions.touch(session)

    @staticmethod
    def _require_ready(session: Session) -> None:
        if session.status is SessionStatus.PENDING_SIGNATURE:
            raise AuthorizationRequired(
                "Session authorization pending. Complete the signature challenge first.",
                details={"authorization": session.pending.to_authorization()},
            )

    async def _call_for_handle(self, session: Session, operation: str) -> str:
        try:
            raw = await self.gateway.call(session.contract_address, session.abi, operation)
        except RelayerError:
            raise
        except Exception as e:
            raise DecryptionFailure(
                f"View call {operation} failed: {e}", details={"exception": type(e).__name__},
            ) from e
        try:
            return handle_to_hex(raw)
        except (TypeError, ValueError) as e:
            raise DecryptionFailure(f"{operation} did not return an encrypted handle") from e

    async def _decrypt(self, session: Session, handle: str) -> PlainValue:
        permission = await self.authorization.ensure_permission(session)
        engine = await self.engine.get()
        try:
            results = await engine.user_decrypt(
                [(handle, session.contract_address)],
                permission.private_key,
                permission.public_key,
                permission.signature,
                permission.contract_addresses,
                permission.user_address,
                permission.start_timestamp,
                permission.duration_days,
            )
        except RelayerError:
            raise
        except Exception as e:
            raise DecryptionFailure(
                f"FHE decrypt failed: {e}", details={"exception": type(e).__name__},
            ) from e

        normalized = {handle_to_hex(key): value for key, value in results.items()}
        if normalized.get(handle) is None:
            raise DecryptionFailure("FHE decrypt returned empty result", details={"handle": handle})
        return normalized[handle]

    async def _submit(self, session: Session, operation: str, params: List[Any], next_nonce: int) -> MutateResult:
        try:
            confirmation = await self.gateway.transact(
                session.contract_address,
                session.abi,
                operation,
                params,
                to_hex(bytes(session.signer.key)),
            )
        except RelayerError:
            raise
        except Exception as e:
            raise TransactionFailure(f"Transaction {operation} failed: {e}") from e

        if not confirmation.is_success():
            raise TransactionFailure(
                confirmation.error_message or f"Transaction {confirmation.status.value}",
                details={"tx_hash": confirmation.tx_hash, "status": confirmation.status.value},
            )
        return MutateResult(
            mode=SERVER_CUSTODY,
            next_nonce=next_nonce,
            tx_hash=confirmation.tx_hash,
            block_number=confirmation.block_number,
        )

    async def _publish(self, event: BaseEvent) -> None:
        try:
            await self.event_bus.publish(event, self.deps)
        except Exception:
            logger.exception("Event handler failed for %r", event)
