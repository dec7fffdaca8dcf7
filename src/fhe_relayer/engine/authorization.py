"""
Decryption Authorization Manager

Owns the two-phase handshake that turns a freshly generated engine keypair
into a time-bounded ``DecryptionPermission``:

1. ``create_challenge`` generates the keypair and the EIP-712 document the
   session owner must sign.
2. ``complete_challenge`` checks the owner's signature and stores the
   permission on the session.

Server-custody sessions skip the round trip: ``ensure_permission`` signs the
challenge with the bound transaction key.
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Sequence, Tuple

from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from ..adapters.bases import CryptoEngine, EngineKeypair
from ..adapters.engine import EngineHandle
from ..adapters.evm.constants import shorten
from ..adapters.evm.signatures import addresses_equal, recover_typed_data_signer, sign_typed_data
from ..schemas.bases import DecryptionPermission, PendingChallenge, SessionStatus
from .exceptions import (
    AuthorizationRequired,
    DecryptionFailure,
    NothingToAuthorize,
    RelayerError,
    SignatureMismatch,
)

if TYPE_CHECKING:
    from .sessions import Session

logger = logging.getLogger(__name__)

DEFAULT_DURATION_DAYS = 365


def _keypair_and_challenge(
    engine: CryptoEngine, scope: Sequence[str], start: int, duration_days: int
) -> Tuple[EngineKeypair, Dict[str, Any]]:
    try:
        keypair = engine.generate_keypair()
        typed_data = engine.create_eip712(keypair.public_key, scope, start, duration_days)
    except RelayerError:
        raise
    except Exception as e:
        raise DecryptionFailure(
            f"FHE keypair or challenge generation failed: {e}",
            details={"exception": type(e).__name__},
        ) from e
    return keypair, typed_data


def sign_permission(
    engine: CryptoEngine,
    account: LocalAccount,
    contract_addresses: Sequence[str],
    duration_days: int = DEFAULT_DURATION_DAYS,
    now: Optional[float] = None,
) -> DecryptionPermission:
    """
    Generate a keypair and sign its decryption challenge with ``account``.

    Used wherever the signing key is at hand: server-custody sessions and
    client-side decryptors.
    """
    start = int(time.time() if now is None else now)
    scope = [to_checksum_address(address) for address in contract_addresses]
    keypair, typed_data = _keypair_and_challenge(engine, scope, start, duration_days)
    return DecryptionPermission(
        public_key=keypair.public_key,
        private_key=keypair.private_key,
        signature=sign_typed_data(account, typed_data),
        contract_addresses=scope,
        user_address=account.address,
        start_timestamp=start,
        duration_days=duration_days,
    )


class AuthorizationManager:
    """
    Issues challenges and maintains the decryption permission of each session.

    Callers hold the session lock around every method that takes a session.
    """

    def __init__(
        self,
        engine: EngineHandle,
        duration_days: int = DEFAULT_DURATION_DAYS,
        clock: Callable[[], float] = time.time,
    ):
        if duration_days < 1:
            raise ValueError("duration_days must be >= 1")
        self._engine = engine
        self._duration_days = duration_days
        self._clock = clock

    @property
    def duration_days(self) -> int:
        return self._duration_days

    async def create_challenge(self, contract_scope: Sequence[str]) -> PendingChallenge:
        """
        Generate a keypair and the EIP-712 challenge binding it to ``contract_scope``.

        The private key stays in the returned object; only
        ``PendingChallenge.to_authorization()`` is sent to clients.

        Raises:
            DecryptionFailure: The engine could not issue a keypair or challenge.
        """
        engine = await self._engine.get()
        scope = [to_checksum_address(address) for address in contract_scope]
        start = int(self._clock())
        keypair, typed_data = _keypair_and_challenge(engine, scope, start, self._duration_days)
        return PendingChallenge(
            public_key=keypair.public_key,
            private_key=keypair.private_key,
            contract_addresses=scope,
            start_timestamp=start,
            duration_days=self._duration_days,
            typed_data=typed_data,
        )

    async def complete_challenge(self, session: "Session", signature: str) -> SessionStatus:
        """
        Convert the session's pending challenge into a permission.

        Already-authorized sessions are left untouched.

        Raises:
            NothingToAuthorize: No challenge and no permission on the session.
            SignatureMismatch: The signature does not recover to the owner;
                the challenge stays pending.
        """
        challenge = session.pending
        if challenge is None:
            if session.permission is not None:
                return SessionStatus.READY
            raise NothingToAuthorize("Session does not require authorization")

        if not signature:
            raise SignatureMismatch("Missing challenge signature")
        try:
            signer = recover_typed_data_signer(challenge.typed_data, signature)
        except ValueError as e:
            raise SignatureMismatch(f"Invalid challenge signature: {e}") from e
        if not addresses_equal(signer, session.owner):
            raise SignatureMismatch(
                "Challenge was not signed by the session owner",
                details={"recovered": signer},
            )

        session.permission = DecryptionPermission(
            public_key=challenge.public_key,
            private_key=challenge.private_key,
            signature=signature,
            contract_addresses=challenge.contract_addresses,
            user_address=session.owner,
            start_timestamp=challenge.start_timestamp,
            duration_days=challenge.duration_days,
        )
        session.pending = None
        logger.info("Session %s authorized by %s", shorten(session.id, 8, 4), shorten(session.owner))
        return SessionStatus.READY

    async def ensure_permission(self, session: "Session") -> DecryptionPermission:
        """
        Return a usable permission for ``session``.

        Expired permissions are discarded. Server-custody sessions get a new
        one transparently; pure-relay sessions get a new challenge and must
        sign it.

        Raises:
            AuthorizationRequired: A challenge is pending, with the challenge
                in ``details["authorization"]``.
            DecryptionFailure: The engine could not issue a keypair or challenge.
        """
        now = self._clock()
        permission = session.permission
        if permission is not None:
            if permission.is_valid(now):
                return permission
            logger.info("Decryption permission of session %s expired", shorten(session.id, 8, 4))
            session.permission = None

        if session.pending is None and session.signer is not None:
            engine = await self._engine.get()
            session.permission = sign_permission(
                engine, session.signer, [session.contract_address], self._duration_days, now
            )
            return session.permission

        if session.pending is None:
            session.pending = await self.create_challenge([session.contract_address])

        raise AuthorizationRequired(
            "Session authorization pending. Complete the signature challenge first.",
            details={"authorization": session.pending.to_authorization()},
        )
