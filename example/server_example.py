import logging

from fhe_relayer.adapters import EngineHandle, EVMContractGateway, MockCryptoEngine
from fhe_relayer.config import RelayerSettings
from fhe_relayer.engine.events import MutateCompletedEvent, OperationFailedEvent, SessionOpenedEvent
from fhe_relayer.servers import RelayerServer, create_api_key, save_key_to_env

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

settings = RelayerSettings.from_env()
if not settings.api_keys:
    api_key = create_api_key()
    settings.api_keys = [api_key]
    save_key_to_env("RELAYER_API_KEYS", api_key)
    print("Generated API key (saved to .env):", api_key)


async def load_engine():
    """Swap in a real FHE SDK here; the mock keeps cleartexts in memory."""
    return MockCryptoEngine(settings.chain_id)


# ✨ Initialize app - session, authorize, read and mutate routes live under /v1
app = RelayerServer(
    engine=EngineHandle(load_engine, max_attempts=settings.engine_init_attempts),
    gateway=EVMContractGateway(
        rpc_url=settings.rpc_url or "http://localhost:8545",
        chain_id=settings.chain_id,
        request_timeout=settings.rpc_timeout,
    ),
    settings=settings,
    title="FHE Relayer",
)


# Optional: Add event hooks for custom logic
@app.hook(SessionOpenedEvent)
async def on_session_opened(event, deps):
    """Log when sessions are opened."""
    print(f"✅ Session opened: {event!r}")


@app.hook(MutateCompletedEvent)
async def on_mutate(event, deps):
    """Log when mutations complete."""
    print(f"✅ Mutation {event.operation} done ({event.mode}), tx={event.tx_hash}")


@app.hook(OperationFailedEvent)
async def on_failure(event, deps):
    """Log when operations fail."""
    print(f"❌ {event.operation} failed: {event.kind} {event.error_message}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="localhost", port=settings.port, log_level="info")
