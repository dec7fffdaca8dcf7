"""
Session Manager

A session binds an owner address to one target contract and its ABI, and
carries the per-session nonce used for replay protection.

Two trust models are supported:

- server-custody: the owner handed over a transaction key; the session is
  ready immediately and the key signs transactions and decryption
  permissions.
- pure-relay: no key; the session starts ``pending_signature`` with an
  EIP-712 challenge the owner must sign from their own wallet.

Sessions live in process memory and are evicted after ``ttl_seconds`` of
inactivity.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from ..adapters.bases import AbiEntry
from ..adapters.evm.constants import is_valid_evm_address, shorten
from ..adapters.evm.signatures import account_from_key, addresses_equal
from ..schemas.bases import DecryptionPermission, PendingChallenge, SessionStatus
from .authorization import AuthorizationManager
from .exceptions import IdentityMismatch, InvalidArguments, UnknownSession

logger = logging.getLogger(__name__)

SERVER_CUSTODY = "server-custody"
PURE_RELAY = "pure-relay"


@dataclass(eq=False)
class Session:
    """
    Server-side state of one client session.

    ``nonce``, ``pending`` and ``permission`` are only mutated while
    ``lock`` is held.
    """

    contract_address: str
    abi: List[Dict[str, Any]]
    owner: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    nonce: int = 0
    signer: Optional[LocalAccount] = field(default=None, repr=False)
    pending: Optional[PendingChallenge] = field(default=None, repr=False)
    permission: Optional[DecryptionPermission] = field(default=None, repr=False)
    created_at: float = 0.0
    last_used: float = 0.0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def status(self) -> SessionStatus:
        if self.pending is not None:
            return SessionStatus.PENDING_SIGNATURE
        return SessionStatus.READY

    @property
    def mode(self) -> str:
        return SERVER_CUSTODY if self.signer is not None else PURE_RELAY

    def snapshot(self) -> Dict[str, Any]:
        """Public view of the session (no key material)."""
        permission = self.permission
        return {
            "session_id": self.id,
            "contract_address": self.contract_address,
            "owner": self.owner,
            "nonce": self.nonce,
            "status": self.status,
            "mode": self.mode,
            "permission_expires_at": permission.expires_at if permission else None,
            "created_at": int(self.created_at),
            "last_used": int(self.last_used),
        }


class SessionManager:
    """
    Process-wide session registry.

    Example:
        manager = SessionManager(AuthorizationManager(engine_handle))
        session = await manager.open_session(contract, abi, owner)
        session.status   # SessionStatus.PENDING_SIGNATURE
    """

    def __init__(
        self,
        authorization: AuthorizationManager,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self._authorization = authorization
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def open_session(
        self,
        contract_address: str,
        abi: Sequence[AbiEntry],
        owner: str,
        transaction_key: Optional[str] = None,
    ) -> Session:
        """
        Create a session for ``owner`` on ``contract_address``.

        Args:
            transaction_key: Optional owner key enabling server-custody mode.

        Raises:
            InvalidArguments: Malformed contract or owner address.
            IdentityMismatch: ``transaction_key`` is malformed or does not
                belong to ``owner``.
            DecryptionFailure: The engine could not issue the challenge.
        """
        if not is_valid_evm_address(contract_address):
            raise InvalidArguments("Invalid contract address", details={"contract_address": contract_address})
        if not is_valid_evm_address(owner):
            raise InvalidArguments("Invalid user address", details={"owner": owner})

        self.purge_expired()

        signer = None
        pending = None
        if transaction_key:
            try:
                signer = account_from_key(transaction_key)
            except ValueError as e:
                raise IdentityMismatch("Transaction key is not a valid private key") from e
            if not addresses_equal(signer.address, owner):
                raise IdentityMismatch(
                    "Private key doesn't match user address",
                    details={"owner": owner},
                )
        else:
            pending = await self._authorization.create_challenge([contract_address])

        now = self._clock()
        session = Session(
            contract_address=to_checksum_address(contract_address),
            abi=[dict(entry) for entry in abi],
            owner=to_checksum_address(owner),
            signer=signer,
            pending=pending,
            created_at=now,
            last_used=now,
        )
        self._sessions[session.id] = session
        logger.info(
            "Session %s opened for %s on %s (%s)",
            shorten(session.id, 8, 4), shorten(session.owner), shorten(session.contract_address), session.mode,
        )
        return session

    def get_session(self, session_id: str) -> Session:
        """
        Raises:
            UnknownSession: Absent or idle for longer than the TTL.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSession("Session not found", details={"session_id": session_id})
        if self._is_expired(session, self._clock()):
            del self._sessions[session_id]
            logger.info("Session %s expired", shorten(session_id, 8, 4))
            raise UnknownSession("Session expired", details={"session_id": session_id})
        return session

    def touch(self, session: Session) -> None:
        session.last_used = self._clock()

    def close_session(self, session_id: str) -> Session:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise UnknownSession("Session not found", details={"session_id": session_id})
        logger.info("Session %s closed", shorten(session_id, 8, 4))
        return session

    def purge_expired(self) -> int:
        """Drop idle sessions. Returns how many were removed."""
        now = self._clock()
        expired = [sid for sid, session in self._sessions.items() if self._is_expired(session, now)]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Purged %d expired sessions", len(expired))
        return len(expired)

    def _is_expired(self, session: Session, now: float) -> bool:
        return now - session.last_used > self._ttl_seconds
