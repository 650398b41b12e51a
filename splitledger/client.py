"""
SplitLedger Client

The single entry point callers use.

DESIGN DECISION: The client is built explicitly by whoever needs one and
holds no global state. Storage, identity and cache options are injected;
`create_client` is the composition root that fills them in from
configuration.

When caching is enabled, the storage port is wrapped in a
CachingStorageProxy once and that same instance is handed to every
component, so a write through the group repository invalidates reads made
through any ledger service.
"""

import logging
from typing import Optional

import structlog

from splitledger.audit import AuditLogger
from splitledger.config import Settings, get_settings
from splitledger.groups import GroupRepository
from splitledger.ledger import LedgerRepository, LedgerService
from splitledger.models.group import Preferences, User
from splitledger.services.storage import (
    CachingStorageProxy,
    GoogleWorkspaceClient,
    GoogleWorkspaceStorage,
    RemoteStoragePort,
)
from splitledger.validation import ExpenseValidator


logger = structlog.get_logger(__name__)


class SplitLedgerClient:
    """
    Facade over groups and ledgers for one user.

    Args:
        storage: Backend implementing RemoteStoragePort
        user: The account acting on the store
        enable_cache: Wrap storage in a read-through cache
        cache_ttl_ms: Freshness window of cached reads
        audit_logger: Shared audit logger
        default_preferences: Preferences for a first-time settings document

    Usage:
        client = SplitLedgerClient(storage, user)
        group = await client.groups.create("Trip", [MemberInput(email="bob@example.com")])
        await client.ledger(group.id).add_expense(...)
    """

    def __init__(
        self,
        storage: RemoteStoragePort,
        user: User,
        enable_cache: bool = True,
        cache_ttl_ms: int = 60000,
        audit_logger: Optional[AuditLogger] = None,
        default_preferences: Optional[Preferences] = None,
    ):
        if enable_cache:
            storage = CachingStorageProxy(storage, ttl_ms=cache_ttl_ms)

        self._storage = storage
        self._user = user
        self._audit = (audit_logger or AuditLogger()).bind(user.email)
        self._validator = ExpenseValidator()
        self._groups = GroupRepository(
            storage,
            user,
            audit_logger=self._audit,
            default_preferences=default_preferences,
        )

    @property
    def storage(self) -> RemoteStoragePort:
        """The port every component uses (the cache proxy when enabled)."""
        return self._storage

    @property
    def user(self) -> User:
        return self._user

    @property
    def groups(self) -> GroupRepository:
        return self._groups

    def ledger(self, group_id: str) -> LedgerService:
        """Ledger operations for one group."""
        return LedgerService(
            LedgerRepository(self._storage, group_id),
            self._user,
            validator=self._validator,
            audit_logger=self._audit,
        )


def create_client(
    user: User,
    storage: Optional[RemoteStoragePort] = None,
    settings: Optional[Settings] = None,
    enable_cache: Optional[bool] = None,
    cache_ttl_ms: Optional[int] = None,
) -> SplitLedgerClient:
    """
    Build a client from configuration.

    Explicit arguments win over configured values. Without a storage, the
    Google Workspace backend is built from GOOGLE_WORKSPACE_* settings.
    """
    settings = settings or get_settings()
    cache_settings = settings.cache
    app_settings = settings.app

    logging.getLogger("splitledger").setLevel(app_settings.log_level)

    if storage is None:
        storage = GoogleWorkspaceStorage(GoogleWorkspaceClient(settings.google_workspace))

    client = SplitLedgerClient(
        storage,
        user,
        enable_cache=cache_settings.enabled if enable_cache is None else enable_cache,
        cache_ttl_ms=cache_settings.ttl_ms if cache_ttl_ms is None else cache_ttl_ms,
        default_preferences=Preferences(
            default_currency=app_settings.default_currency,
            locale=app_settings.default_locale,
        ),
    )
    logger.debug(
        "client_created",
        email=user.email,
        storage=type(storage).__name__,
        cache=isinstance(client.storage, CachingStorageProxy),
    )
    return client
