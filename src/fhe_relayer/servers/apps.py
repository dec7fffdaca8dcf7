"""
FHE Relayer Server - FastAPI wrapper around the operation executor.

Exposes the session, authorization and read/mutate routes under ``/v1`` and
renders every ``RelayerError`` as ``{"error", "kind", "retryable", "details"}``
with the error's HTTP status.
"""

import time
from typing import Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from ..adapters.bases import ContractGateway, CryptoEngine
from ..adapters.engine import EngineHandle
from ..adapters.evm.gateway import EVMContractGateway
from ..config import RelayerSettings
from ..engine.authenticator import RequestAuthenticator
from ..engine.authorization import AuthorizationManager
from ..engine.events import BaseEvent, EventBus
from ..engine.exceptions import RelayerError
from ..engine.executors import OperationExecutor
from ..engine.sessions import SessionManager
from ..schemas.https import (
    AuthorizationChallenge,
    AuthorizeRequest,
    AuthorizeResponse,
    ErrorResponse,
    MutateRequest,
    MutateResponse,
    OpenSessionRequest,
    OpenSessionResponse,
    ReadRequest,
    ReadResponse,
    SessionInfoResponse,
    to_json_safe,
)
from .flows import setup_event_bus
from .security import api_key_dependency

ERROR_RESPONSES = {
    status: {"model": ErrorResponse} for status in (400, 401, 403, 404, 409, 500, 502, 503)
}


class RelayerServer(FastAPI):
    """FastAPI server relaying FHE reads and mutations for thin clients."""

    def __init__(
        self,
        engine: EngineHandle,
        gateway: ContractGateway,
        settings: Optional[RelayerSettings] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
        prefix: str = "/v1",
        **fastapi_kwargs
    ):
        """Initialize the relayer server.

        Args:
            engine: Shared crypto engine handle
            gateway: Contract gateway used for view calls and transactions
            settings: Relayer settings (default: ``RelayerSettings()``)
            event_bus: Event bus (default: bus with logging hooks)
            clock: Time source for sessions and permissions
            prefix: Route prefix (default: /v1)
            **fastapi_kwargs: FastAPI arguments (title, version, etc.)
        """
        self.settings = settings or RelayerSettings()
        self.engine = engine
        self.gateway = gateway
        self.event_bus = event_bus or setup_event_bus()

        authorization = AuthorizationManager(engine, self.settings.decryption_duration_days, clock)
        self.sessions = SessionManager(authorization, self.settings.session_ttl_seconds, clock)
        self.executor = OperationExecutor(
            self.sessions,
            authorization,
            RequestAuthenticator(self.settings.protocol_tag),
            engine,
            gateway,
            self.event_bus,
        )

        super().__init__(**fastapi_kwargs)

        self.add_exception_handler(RelayerError, self._handle_relayer_error)
        self._setup_routes(prefix)

    @classmethod
    def from_settings(
        cls,
        engine_factory: Callable[[], Awaitable[CryptoEngine]],
        settings: Optional[RelayerSettings] = None,
        **kwargs
    ) -> "RelayerServer":
        """Build a server talking to ``settings.rpc_url`` with a lazily created engine.

        Raises:
            ConfigurationError: If ``RPC_URL`` is not configured.
        """
        settings = settings or RelayerSettings.from_env()
        gateway = EVMContractGateway(
            rpc_url=settings.require_rpc_url(),
            chain_id=settings.chain_id,
            request_timeout=settings.rpc_timeout,
        )
        engine = EngineHandle(engine_factory, max_attempts=settings.engine_init_attempts)
        return cls(engine=engine, gateway=gateway, settings=settings, **kwargs)

    def subscribe(self, event_class: type[BaseEvent], handler: Callable) -> None:
        """Register event handler.

        Args:
            event_class: Event type to handle
            handler: Async function(event, deps)
        """
        self.event_bus.subscribe(event_class, handler)

    def add_hook(self, event_class: type[BaseEvent], hook: Callable) -> None:
        """Register event hook for side effects.

        Example:
            ```python
            async def audit(event, deps):
                await audit_log.write(repr(event))

            app.add_hook(MutateCompletedEvent, audit)
            ```
        """
        self.event_bus.hook(event_class, hook)

    def hook(self, event_class: type[BaseEvent]) -> Callable:
        """Decorator for registering event hooks.

        Example:
            @app.hook(SessionOpenedEvent)
            async def on_open(event, deps):
                metrics.sessions.inc()
        """
        def decorator(hook_func: Callable) -> Callable:
            self.event_bus.hook(event_class, hook_func)
            return hook_func
        return decorator

    @staticmethod
    async def _handle_relayer_error(request: Request, exc: RelayerError) -> JSONResponse:
        body = ErrorResponse.model_validate(exc.to_dict())
        return JSONResponse(status_code=exc.status_code, content=to_json_safe(body.model_dump(exclude_none=True)))

    def _setup_routes(self, prefix: str) -> None:
        """Register the session and operation routes under ``prefix``."""
        router = APIRouter(
            prefix=prefix,
            dependencies=[Depends(api_key_dependency(self.settings.api_keys))],
            responses=ERROR_RESPONSES,
        )
        executor = self.executor

        @router.post("/sessions", response_model=OpenSessionResponse, response_model_exclude_none=True)
        async def open_session(body: OpenSessionRequest) -> OpenSessionResponse:
            session = await executor.open_session(
                body.contract_address,
                body.abi,
                body.user_address,
                body.user_private_key,
            )
            authorization = None
            if session.pending is not None:
                authorization = AuthorizationChallenge.model_validate(session.pending.to_authorization())
            return OpenSessionResponse(
                session_id=session.id,
                chain_id=self.gateway.chain_id,
                nonce=session.nonce,
                status=session.status,
                authorization=authorization,
            )

        @router.get("/sessions/{session_id}", response_model=SessionInfoResponse)
        async def get_session(session_id: str) -> SessionInfoResponse:
            session = executor.sessions.get_session(session_id)
            return SessionInfoResponse.model_validate(session.snapshot())

        @router.delete("/sessions/{session_id}", status_code=204)
        async def close_session(session_id: str) -> Response:
            await executor.close_session(session_id)
            return Response(status_code=204)

        @router.post("/sessions/{session_id}/authorize", response_model=AuthorizeResponse)
        async def authorize(session_id: str, body: AuthorizeRequest) -> AuthorizeResponse:
            session = await executor.authorize(session_id, body.signature)
            return AuthorizeResponse(status=session.status, nonce=session.nonce)

        @router.post("/fhe/read", response_model=ReadResponse)
        async def read(body: ReadRequest) -> ReadResponse:
            result = await executor.read(body.session_id, body.function_name, body.signature, body.nonce)
            return ReadResponse(
                handle=result.handle,
                value=to_json_safe(result.value),
                next_nonce=result.next_nonce,
            )

        @router.post("/fhe/mutate", response_model=MutateResponse, response_model_exclude_none=True)
        async def mutate(body: MutateRequest) -> MutateResponse:
            result = await executor.mutate(
                body.session_id, body.function_name, body.values, body.signature, body.nonce,
            )
            if result.tx_hash is not None:
                return MutateResponse(
                    next_nonce=result.next_nonce,
                    tx_hash=result.tx_hash,
                    block_number=result.block_number,
                )
            return MutateResponse(
                next_nonce=result.next_nonce,
                mode=result.mode,
                contract_address=result.contract_address,
                function_name=result.function_name,
                params=to_json_safe(result.params),
            )

        self.include_router(router)
