"""
Decrypted-Value Cache

Memoizes decrypted values keyed by ``(chain, account, contract, handle)``
with a TTL, and guarantees at most one in-flight decrypt per key.

Concurrent ``decrypt`` calls for the same key share one ``asyncio.Task``;
each caller awaits it through ``asyncio.shield`` so a caller that gives up
(timeout, cancellation) never cancels the decrypt for the others. The
in-flight entry is released by a done-callback, which runs however the task
ends.
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Union

from eth_account.signers.local import LocalAccount

from ..adapters.bases import PlainValue
from ..adapters.evm.constants import handle_to_hex, is_zero_handle
from .decryption import UserDecryptor

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60.0


class DecryptStatus(str, Enum):
    """
    Progress of a decrypt for one key.

    Attributes:
        IDLE: Nothing cached and nothing in flight
        AWAITING_AUTHORIZATION: Waiting for the decryption permission signature
        DECRYPTING: Engine call in progress
        READY: A fresh value is cached
        FAILED: The last attempt failed
    """
    IDLE = "idle"
    AWAITING_AUTHORIZATION = "awaiting_authorization"
    DECRYPTING = "decrypting"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class CacheKey:
    chain_id: int
    account: str
    contract: str
    handle: str

    @classmethod
    def create(cls, chain_id: int, account: str, contract: str, handle: Union[str, bytes, int]) -> "CacheKey":
        """Build a key with lower-cased addresses and a bytes32 hex handle."""
        return cls(chain_id, account.lower(), contract.lower(), handle_to_hex(handle))


@dataclass
class CacheEntry:
    value: PlainValue
    timestamp: float
    chain_id: int
    account: str


class DecryptedValueCache:
    """
    Process-local cache of decrypted values.

    Usage:
        cache = DecryptedValueCache(decryptor, ttl_seconds=60)
        value = await cache.decrypt(handle, contract)   # engine call
        value = await cache.decrypt(handle, contract)   # served from cache
    """

    def __init__(
        self,
        decryptor: Optional[UserDecryptor] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.decryptor = decryptor
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, "asyncio.Task[PlainValue]"] = {}
        self._status: Dict[CacheKey, DecryptStatus] = {}
        self._errors: Dict[CacheKey, BaseException] = {}

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def get(self, key: CacheKey) -> Optional[PlainValue]:
        """Return the cached value, or ``None`` when missing or stale (stale entries are evicted)."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp > self.ttl_seconds:
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: CacheKey, value: PlainValue) -> CacheEntry:
        entry = CacheEntry(value=value, timestamp=self._clock(), chain_id=key.chain_id, account=key.account)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: CacheKey) -> bool:
        self._status.pop(key, None)
        self._errors.pop(key, None)
        return self._entries.pop(key, None) is not None

    def invalidate_scope(self, chain_id: int, account: str) -> int:
        """Drop every entry cached for ``(chain_id, account)``."""
        account = account.lower()
        stale = [key for key in self._entries if key.chain_id == chain_id and key.account == account]
        for key in stale:
            self.invalidate(key)
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self._status.clear()
        self._errors.clear()

    # ------------------------------------------------------------------
    # Decryption
    # ------------------------------------------------------------------

    def key_for(self, handle: Union[str, bytes, int], contract_address: str) -> CacheKey:
        """Key of ``handle`` under the decryptor's current chain and account."""
        chain_id, account = self._require_decryptor().identity
        return CacheKey.create(chain_id, account, contract_address, handle)

    def in_flight(self, key: CacheKey) -> bool:
        return key in self._inflight

    def status(self, handle: Union[str, bytes, int], contract_address: str) -> DecryptStatus:
        key = self.key_for(handle, contract_address)
        if key in self._inflight:
            return self._status.get(key, DecryptStatus.DECRYPTING)
        if self.get(key) is not None:
            return DecryptStatus.READY
        if key in self._errors:
            return DecryptStatus.FAILED
        return DecryptStatus.IDLE

    def last_error(self, handle: Union[str, bytes, int], contract_address: str) -> Optional[BaseException]:
        return self._errors.get(self.key_for(handle, contract_address))

    async def decrypt(self, handle: Union[str, bytes, int], contract_address: str) -> PlainValue:
        """
        Return the value behind ``handle``, decrypting at most once per key.

        Failures are not cached; the next call tries again.
        """
        decryptor = self._require_decryptor()
        account = decryptor.account
        key = CacheKey.create(decryptor.chain_id, account.address, contract_address, handle)
        cached = self.get(key)
        if cached is not None:
            return cached

        if is_zero_handle(handle):
            self.put(key, 0)
            return 0

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, contract_address, account))
            self._inflight[key] = task
            self._status[key] = DecryptStatus.DECRYPTING
            task.add_done_callback(functools.partial(self._release, key))
        return await asyncio.shield(task)

    async def aclose(self) -> None:
        """Cancel every in-flight decrypt."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, key: CacheKey, contract_address: str, account: LocalAccount) -> PlainValue:
        def on_status(status: str) -> None:
            self._status[key] = DecryptStatus(status)

        value = await self._require_decryptor().decrypt(
            key.handle, contract_address, on_status=on_status, account=account,
        )
        self.put(key, value)
        return value

    def _release(self, key: CacheKey, task: "asyncio.Task[PlainValue]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        self._status.pop(key, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._errors[key] = error
            logger.warning("Decrypt of %s failed: %s", key.handle, error)
        else:
            self._errors.pop(key, None)

    def _require_decryptor(self) -> UserDecryptor:
        if self.decryptor is None:
            raise RuntimeError("DecryptedValueCache needs a UserDecryptor to decrypt")
        return self.decryptor
