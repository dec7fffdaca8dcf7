"""
Client-side user decryption.

``UserDecryptor`` decrypts handles directly against a crypto engine with a
locally held account, reusing one decryption permission per contract scope
until it expires (load-or-sign).
"""

import logging
import time
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from eth_account.signers.local import LocalAccount

from ..adapters.bases import PlainValue
from ..adapters.engine import EngineHandle
from ..adapters.evm.constants import handle_to_hex, is_zero_handle, shorten
from ..adapters.evm.signatures import account_from_key
from ..engine.authorization import DEFAULT_DURATION_DAYS, sign_permission
from ..engine.exceptions import DecryptionFailure, RelayerError
from ..schemas.bases import DecryptionPermission

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

AWAITING_AUTHORIZATION = "awaiting_authorization"
DECRYPTING = "decrypting"

PermissionKey = Tuple[str, Tuple[str, ...]]


class PermissionStore:
    """In-memory store of decryption permissions keyed by (user, contract scope)."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._permissions: Dict[PermissionKey, DecryptionPermission] = {}

    @staticmethod
    def key(user_address: str, contract_addresses: Sequence[str]) -> PermissionKey:
        return user_address.lower(), tuple(sorted(address.lower() for address in contract_addresses))

    def load(self, user_address: str, contract_addresses: Sequence[str]) -> Optional[DecryptionPermission]:
        """Return a still-valid permission, dropping an expired one."""
        key = self.key(user_address, contract_addresses)
        permission = self._permissions.get(key)
        if permission is not None and not permission.is_valid(self._clock()):
            del self._permissions[key]
            return None
        return permission

    def save(self, permission: DecryptionPermission) -> None:
        self._permissions[self.key(permission.user_address, permission.contract_addresses)] = permission

    def clear(self) -> None:
        self._permissions.clear()


class UserDecryptor:
    """
    Decrypts handles for one account on one chain.

    Usage:
        decryptor = UserDecryptor(EngineHandle(load_engine), account, chain_id=11155111)
        value = await decryptor.decrypt(handle, contract_address)
    """

    def __init__(
        self,
        engine: EngineHandle,
        account: Union[LocalAccount, str],
        chain_id: int,
        duration_days: int = DEFAULT_DURATION_DAYS,
        store: Optional[PermissionStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self.account = account if isinstance(account, LocalAccount) else account_from_key(account)
        self.chain_id = chain_id
        self.duration_days = duration_days
        self.store = store or PermissionStore(clock)
        self._clock = clock

    @property
    def identity(self) -> Tuple[int, str]:
        """``(chain_id, account address)`` scoping every cached value."""
        return self.chain_id, self.account.address

    def switch(self, account: Union[LocalAccount, str, None] = None, chain_id: Optional[int] = None) -> None:
        """Change the active account and/or chain."""
        if account is not None:
            self.account = account if isinstance(account, LocalAccount) else account_from_key(account)
        if chain_id is not None:
            self.chain_id = chain_id

    async def load_or_sign(
        self, contract_addresses: Sequence[str], account: Optional[LocalAccount] = None
    ) -> DecryptionPermission:
        """Return the stored permission for this scope or sign a new one (default: the active account)."""
        account = account or self.account
        permission = self.store.load(account.address, contract_addresses)
        if permission is not None:
            return permission
        engine = await self.engine.get()
        permission = sign_permission(
            engine, account, contract_addresses, self.duration_days, self._clock()
        )
        self.store.save(permission)
        logger.info(
            "Signed decryption permission for %s (%d contracts)",
            shorten(account.address), len(permission.contract_addresses),
        )
        return permission

    async def decrypt(
        self,
        handle: Union[str, bytes, int],
        contract_address: str,
        on_status: Optional[StatusCallback] = None,
        account: Optional[LocalAccount] = None,
    ) -> PlainValue:
        """
        Decrypt one handle of ``contract_address``.

        The all-zero handle is 0 and never reaches the engine. ``account``
        defaults to the active account, read once before the first await.

        Raises:
            DecryptionFailure: The engine failed or returned nothing.
        """
        if is_zero_handle(handle):
            return 0
        handle_hex = handle_to_hex(handle)
        account = account or self.account

        if self.store.load(account.address, [contract_address]) is None and on_status:
            on_status(AWAITING_AUTHORIZATION)
        permission = await self.load_or_sign([contract_address], account)

        if on_status:
            on_status(DECRYPTING)
        engine = await self.engine.get()
        try:
            results = await engine.user_decrypt(
                [(handle_hex, contract_address)],
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
            raise DecryptionFailure(f"FHE decrypt failed: {e}", details={"exception": type(e).__name__}) from e

        value = {handle_to_hex(key): item for key, item in results.items()}.get(handle_hex)
        if value is None:
            raise DecryptionFailure("Empty decrypt result", details={"handle": handle_hex})
        return value
