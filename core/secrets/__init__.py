"""Secret backends module.

Backend clients register themselves against the store variant they serve;
``core.secrets.resolver.StoreResolver`` picks the right one for a store.
"""

# Public API
from core.secrets.exceptions import (
    AuthError,
    BackendError,
    MergeError,
    SecretNotFoundError,
    SecretSyncError,
    UpsertError,
)
from core.secrets.registry import register_backend, get_backend

__all__ = [
    "AuthError",
    "BackendError",
    "MergeError",
    "SecretNotFoundError",
    "SecretSyncError",
    "UpsertError",
    "register_backend",
    "get_backend",
]
