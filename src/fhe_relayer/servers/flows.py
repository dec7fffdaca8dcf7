"""
Built-in event hooks for the relayer.

Logs the session lifecycle and operation outcomes. Addresses and session
ids are shortened; decrypted values and key material are never logged.
"""

import logging

from ..adapters.evm.constants import shorten
from ..engine.events import (
    Dependencies,
    EventBus,
    MutateCompletedEvent,
    OperationFailedEvent,
    ReadCompletedEvent,
    SessionAuthorizedEvent,
    SessionClosedEvent,
    SessionOpenedEvent,
)

logger = logging.getLogger("fhe_relayer.events")


# ==================== Event Hooks ====================

async def log_session_opened(event: SessionOpenedEvent, deps: Dependencies) -> None:
    logger.info(
        "[Session] %s opened by %s (%s, %s)",
        shorten(event.session_id, 8, 4), shorten(event.owner), event.mode, event.status,
    )


async def log_session_authorized(event: SessionAuthorizedEvent, deps: Dependencies) -> None:
    logger.info("[Session] %s authorized", shorten(event.session_id, 8, 4))


async def log_session_closed(event: SessionClosedEvent, deps: Dependencies) -> None:
    logger.info("[Session] %s closed", shorten(event.session_id, 8, 4))


async def log_read(event: ReadCompletedEvent, deps: Dependencies) -> None:
    logger.info(
        "[Read] %s handle %s, next nonce %d",
        event.operation, shorten(event.handle, 10, 6), event.next_nonce,
    )


async def log_mutate(event: MutateCompletedEvent, deps: Dependencies) -> None:
    if event.tx_hash:
        logger.info(
            "[Mutate] %s mined in block %s (%s), next nonce %d",
            event.operation, event.block_number, event.tx_hash, event.next_nonce,
        )
    else:
        logger.info("[Mutate] %s prepared for %s, next nonce %d", event.operation, event.mode, event.next_nonce)


async def log_failure(event: OperationFailedEvent, deps: Dependencies) -> None:
    logger.warning(
        "[%s] session %s failed with %s: %s",
        event.operation, shorten(event.session_id, 8, 4), event.kind, event.error_message,
    )


# ==================== Event Bus Setup ====================

def setup_event_bus(enable_logging: bool = True) -> EventBus:
    """
    Create an event bus with the built-in hooks registered.

    Args:
        enable_logging: Register the logging hooks (default: True).

    Returns:
        EventBus ready to be passed to ``OperationExecutor``.
    """
    bus = EventBus()
    if enable_logging:
        bus.hook(SessionOpenedEvent, log_session_opened)
        bus.hook(SessionAuthorizedEvent, log_session_authorized)
        bus.hook(SessionClosedEvent, log_session_closed)
        bus.hook(ReadCompletedEvent, log_read)
        bus.hook(MutateCompletedEvent, log_mutate)
        bus.hook(OperationFailedEvent, log_failure)
    return bus
