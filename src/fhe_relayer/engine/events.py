"""
Lifecycle events published by the operation executor.

Events carry their own data; hooks and subscribers receive the event plus a
read-only ``Dependencies`` container. Applications observe the relayer by
registering hooks (see ``servers.flows`` for the default logging hooks).
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

# ==================== Base Event ====================

class BaseEvent(ABC):
    """Base class for all events in the system."""

    @abstractmethod
    def __repr__(self) -> str:
        """String representation of the event."""
        pass


# ==================== Session Events ====================

class SessionOpenedEvent(BaseModel, BaseEvent):
    """A session was created."""
    session_id: str
    owner: str
    contract_address: str
    mode: str
    status: str

    def __repr__(self) -> str:
        return f"SessionOpenedEvent(session={self.session_id}, mode={self.mode}, status={self.status})"


class SessionAuthorizedEvent(BaseModel, BaseEvent):
    """A pure-relay session completed its challenge."""
    session_id: str
    owner: str

    def __repr__(self) -> str:
        return f"SessionAuthorizedEvent(session={self.session_id})"


class SessionClosedEvent(BaseModel, BaseEvent):
    """A session was closed by its client."""
    session_id: str

    def __repr__(self) -> str:
        return f"SessionClosedEvent(session={self.session_id})"


# ==================== Operation Events ====================

class ReadCompletedEvent(BaseModel, BaseEvent):
    """A read returned a decrypted value. The value itself is not carried."""
    session_id: str
    operation: str
    handle: str
    next_nonce: int

    def __repr__(self) -> str:
        return f"ReadCompletedEvent(session={self.session_id}, operation={self.operation})"


class MutateCompletedEvent(BaseModel, BaseEvent):
    """A mutation was executed on-chain or prepared for client signing."""
    session_id: str
    operation: str
    mode: str
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    next_nonce: int

    def __repr__(self) -> str:
        return f"MutateCompletedEvent(session={self.session_id}, operation={self.operation}, mode={self.mode})"


class OperationFailedEvent(BaseModel, BaseEvent):
    """An operation failed; the session nonce was left unchanged."""
    session_id: str
    operation: str
    kind: str
    error_message: str

    def __repr__(self) -> str:
        return f"OperationFailedEvent(session={self.session_id}, kind={self.kind})"


# ==================== Dependencies ====================

@dataclass(frozen=True)
class Dependencies:
    """Read-only context handed to every hook and subscriber."""
    chain_id: Optional[int] = None
    sessions: Optional[Any] = None


# ==================== Event Bus ====================

EventHandlerFunc = Callable[[BaseEvent, Dependencies], Awaitable[Optional[Any]]]
EventHookFunc = Callable[[BaseEvent, Dependencies], Awaitable[None]]


class EventBus:
    """
    Routes relayer events to hooks and subscribers by exact event type.

    Hooks are side-effect callbacks (logging, auditing) awaited together
    before any subscriber runs. Subscribers run concurrently and may return
    a value; ``dispatch`` yields those values in completion order.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[type, List[EventHandlerFunc]] = defaultdict(list)
        self._hooks: Dict[type, List[EventHookFunc]] = defaultdict(list)

    @staticmethod
    def _require_coroutine(func: Callable) -> None:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"Handler must be a coroutine function, got {type(func).__name__}")

    def subscribe(self, event_class: type[BaseEvent], handler: EventHandlerFunc) -> None:
        """
        Raises:
            TypeError: If ``handler`` is not declared ``async``.
        """
        self._require_coroutine(handler)
        self._subscribers[event_class].append(handler)

    def hook(self, event_class: type[BaseEvent], hook_func: EventHookFunc) -> None:
        """
        Raises:
            TypeError: If ``hook_func`` is not declared ``async``.
        """
        self._require_coroutine(hook_func)
        self._hooks[event_class].append(hook_func)

    async def dispatch(self, event: BaseEvent, deps: Dependencies) -> AsyncGenerator[Optional[Any], None]:
        event_type = type(event)
        if self._hooks.get(event_type):
            await asyncio.gather(*(hook(event, deps) for hook in self._hooks[event_type]))

        pending = [handler(event, deps) for handler in self._subscribers.get(event_type, ())]
        for finished in asyncio.as_completed(pending):
            yield await finished

    async def publish(self, event: BaseEvent, deps: Dependencies) -> List[Optional[Any]]:
        """Dispatch ``event`` and collect every subscriber result."""
        return [result async for result in self.dispatch(event, deps)]
