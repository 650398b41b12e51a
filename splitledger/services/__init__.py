"""Services package."""

from splitledger.services.storage import (
    AccessDeniedError,
    CachingStorageProxy,
    ConnectionError,
    GoogleWorkspaceClient,
    GoogleWorkspaceStorage,
    InMemoryDrive,
    InMemoryStorage,
    NotFoundError,
    RateLimitedError,
    RemoteStoragePort,
    StorageError,
)

__all__ = [
    "AccessDeniedError",
    "CachingStorageProxy",
    "ConnectionError",
    "GoogleWorkspaceClient",
    "GoogleWorkspaceStorage",
    "InMemoryDrive",
    "InMemoryStorage",
    "NotFoundError",
    "RateLimitedError",
    "RemoteStoragePort",
    "StorageError",
]
