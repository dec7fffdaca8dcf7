from .apps import RelayerServer
from .flows import setup_event_bus
from .security import create_api_key, save_key_to_env, verify_api_key

__all__ = [
    "RelayerServer",
    "setup_event_bus",
    "create_api_key",
    "save_key_to_env",
    "verify_api_key",
]
