"""
Relayer Configuration Management

Loads relayer settings from the process environment (and a local ``.env``
file when present). Values are validated once at startup so a misconfigured
relayer fails before it accepts any session.

Environment Variables:
    - RPC_URL: JSON-RPC endpoint used by the EVM gateway
    - CHAIN_ID: EVM chain id (default 11155111, Sepolia)
    - PORT: HTTP port for the relayer (default 4000)
    - RELAYER_API_KEYS: Optional comma-separated API keys guarding every route
    - DECRYPTION_DURATION_DAYS: Validity window of decryption permissions
    - SESSION_TTL_SECONDS: Idle lifetime of a session
    - PROTOCOL_TAG: Prefix of the canonical request message
    - RPC_TIMEOUT: RPC request timeout in seconds
    - ENGINE_INIT_ATTEMPTS: Crypto engine initialization attempts
"""

import os
from typing import List, Optional

import dotenv
from pydantic import BaseModel, Field, ValidationError

from .engine.authenticator import DEFAULT_PROTOCOL_TAG
from .engine.exceptions import ConfigurationError

dotenv.load_dotenv()

DEFAULT_CHAIN_ID = 11155111


class RelayerSettings(BaseModel):
    """Validated relayer settings."""

    rpc_url: Optional[str] = Field(None, description="JSON-RPC endpoint URL")
    chain_id: int = Field(DEFAULT_CHAIN_ID, ge=1, description="EVM chain id")
    port: int = Field(4000, ge=1, le=65535, description="HTTP listen port")
    api_keys: List[str] = Field(default_factory=list, description="Accepted x-relayer-key values")
    decryption_duration_days: int = Field(365, ge=1, description="Permission validity in days")
    session_ttl_seconds: int = Field(86400, ge=1, description="Idle session lifetime")
    protocol_tag: str = Field(DEFAULT_PROTOCOL_TAG, min_length=1, description="Canonical message prefix")
    rpc_timeout: int = Field(60, ge=1, description="RPC request timeout (seconds)")
    engine_init_attempts: int = Field(3, ge=1, description="Engine initialization attempts")

    @classmethod
    def from_env(cls) -> "RelayerSettings":
        """
        Build settings from environment variables.

        Returns:
            RelayerSettings populated from the environment with defaults
            for anything unset.

        Raises:
            ConfigurationError: If a variable is present but invalid.
        """
        raw = {
            "rpc_url": os.getenv("RPC_URL"),
            "chain_id": os.getenv("CHAIN_ID"),
            "port": os.getenv("PORT"),
            "api_keys": parse_api_keys(os.getenv("RELAYER_API_KEYS")),
            "decryption_duration_days": os.getenv("DECRYPTION_DURATION_DAYS"),
            "session_ttl_seconds": os.getenv("SESSION_TTL_SECONDS"),
            "protocol_tag": os.getenv("PROTOCOL_TAG"),
            "rpc_timeout": os.getenv("RPC_TIMEOUT"),
            "engine_init_attempts": os.getenv("ENGINE_INIT_ATTEMPTS"),
        }
        try:
            return cls(**{key: value for key, value in raw.items() if value is not None})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid relayer configuration: {e}") from e

    def require_rpc_url(self) -> str:
        """Return the RPC URL or fail loudly when it is not configured."""
        if not self.rpc_url:
            raise ConfigurationError("RPC_URL must be set to reach the chain")
        return self.rpc_url


def parse_api_keys(value: Optional[str]) -> List[str]:
    """Split a comma-separated key list, dropping blanks."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]
