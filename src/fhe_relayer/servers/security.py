import hmac
import secrets
import string
from pathlib import Path
from typing import Callable, Optional, Sequence

import dotenv
from fastapi import Header

from ..engine.exceptions import InvalidApiKey


def create_api_key(
    *,
    prefix: str = "rk_",
    length: int = 32,
) -> str:
    """
    Generate a relayer API key.

    Args:
        prefix: String prepended to the random part.
        length: Number of random alphanumeric characters.

    Returns:
        A random key suitable for ``RELAYER_API_KEYS``.
    """
    alphabet = string.ascii_letters + string.digits
    return prefix + "".join(secrets.choice(alphabet) for _ in range(length))


def save_key_to_env(key_name: str, key_value: str, env_file: str = ".env") -> None:
    """
    Write ``key_name=key_value`` into ``env_file``, replacing an existing entry.

    The file is created when missing.
    """
    Path(env_file).touch(exist_ok=True)
    dotenv.set_key(env_file, key_name, key_value, quote_mode="never")


def verify_api_key(provided: Optional[str], accepted: Sequence[str]) -> None:
    """
    Check ``provided`` against the configured keys in constant time.

    An empty ``accepted`` list disables the check.

    Raises:
        InvalidApiKey: If keys are configured and ``provided`` matches none.
    """
    if not accepted:
        return
    if not provided:
        raise InvalidApiKey("Missing API key")
    # no early exit
    matched = False
    for key in accepted:
        if hmac.compare_digest(provided.encode(), key.encode()):
            matched = True
    if not matched:
        raise InvalidApiKey("Invalid API key")


def api_key_dependency(accepted: Sequence[str]) -> Callable:
    """Build a FastAPI dependency enforcing the ``x-relayer-key`` header."""
    keys = list(accepted)

    async def require_api_key(x_relayer_key: Optional[str] = Header(default=None)) -> None:
        verify_api_key(x_relayer_key, keys)

    return require_api_key
