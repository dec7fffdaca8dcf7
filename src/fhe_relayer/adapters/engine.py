"""
Shared, lazily initialized handle to the crypto engine.

An ``EngineHandle`` is created once at process start and passed to every
component that needs the engine. Initialization (loading key material,
fetching public parameters) may take seconds; it runs at most once at a time
behind a shared task, and every concurrent caller awaits that same task.
A failed initialization is forgotten so the next caller starts over.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..engine.exceptions import EngineUnavailable
from .bases import CryptoEngine

logger = logging.getLogger(__name__)

EngineFactory = Callable[[], Awaitable[CryptoEngine]]


class EngineHandle:
    """
    Lazy singleton wrapper around a ``CryptoEngine`` factory.

    Example:
        async def load_engine() -> CryptoEngine:
            return await SomeSdk.create(rpc_url)

        handle = EngineHandle(load_engine)
        engine = await handle.get()   # initializes once, then cached
    """

    def __init__(
        self,
        factory: EngineFactory,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
    ) -> None:
        """
        Args:
            factory: Coroutine function producing a ready engine.
            max_attempts: Initialization attempts per ``get()`` call.
            backoff_seconds: Base delay, doubled after every failed attempt.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._factory = factory
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._engine: Optional[CryptoEngine] = None
        self._pending: Optional["asyncio.Task[CryptoEngine]"] = None

    @classmethod
    def from_engine(cls, engine: CryptoEngine) -> "EngineHandle":
        """Wrap an engine that is already initialized."""
        async def _ready() -> CryptoEngine:
            return engine

        handle = cls(_ready)
        handle._engine = engine
        return handle

    @property
    def is_ready(self) -> bool:
        return self._engine is not None

    async def get(self) -> CryptoEngine:
        """
        Return the engine, initializing it on first use.

        Raises:
            EngineUnavailable: If every initialization attempt failed.
        """
        if self._engine is not None:
            return self._engine

        last_error = EngineUnavailable("Crypto engine initialization failed")
        for attempt in range(self._max_attempts):
            try:
                return await self._initialize_once()
            except EngineUnavailable as e:
                last_error = e
                if attempt + 1 < self._max_attempts:
                    delay = self._backoff_seconds * (2 ** attempt)
                    logger.warning(
                        "Engine initialization failed (attempt %d/%d), retrying in %.2fs",
                        attempt + 1, self._max_attempts, delay,
                    )
                    await asyncio.sleep(delay)
        raise last_error

    async def _initialize_once(self) -> CryptoEngine:
        if self._engine is not None:
            return self._engine

        if self._pending is None:
            logger.info("Initializing crypto engine")
            self._pending = asyncio.ensure_future(self._factory())
        task = self._pending

        try:
            engine = await asyncio.shield(task)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._pending is task:
                self._pending = None
            raise EngineUnavailable(
                f"Crypto engine initialization failed: {e}",
                details={"exception": type(e).__name__},
            ) from e

        if self._engine is None:
            self._engine = engine
            logger.info("Crypto engine ready")
        self._pending = None
        return engine
