"""
Storage Services Package

Provides the abstract storage port and its implementations.
Google Drive/Sheets is the production backend; the in-memory driver and
the caching proxy implement the same port.
"""

from splitledger.services.storage.interface import (
    AccessDeniedError,
    ConnectionError,
    NotFoundError,
    RateLimitedError,
    RemoteStoragePort,
    StorageError,
)
from splitledger.services.storage.cache_proxy import CachingStorageProxy
from splitledger.services.storage.google_workspace import (
    GoogleWorkspaceClient,
    GoogleWorkspaceStorage,
)
from splitledger.services.storage.memory import InMemoryDrive, InMemoryStorage

__all__ = [
    # Interface
    "RemoteStoragePort",
    # Exceptions
    "AccessDeniedError",
    "ConnectionError",
    "NotFoundError",
    "RateLimitedError",
    "StorageError",
    # Implementations
    "CachingStorageProxy",
    "GoogleWorkspaceClient",
    "GoogleWorkspaceStorage",
    "InMemoryDrive",
    "InMemoryStorage",
]
