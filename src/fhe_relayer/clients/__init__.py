"""
Client module for the FHE relayer.

Provides a remote relayer client plus local decryption helpers with a
decrypted-value cache.
"""

from .http_client import RemoteFheClient
from .decryption import PermissionStore, UserDecryptor
from .cache import CacheKey, CacheEntry, DecryptStatus, DecryptedValueCache

__all__ = [
    "RemoteFheClient",
    "PermissionStore",
    "UserDecryptor",
    "CacheKey",
    "CacheEntry",
    "DecryptStatus",
    "DecryptedValueCache",
]
