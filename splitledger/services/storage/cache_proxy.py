"""
Read-Through Caching Proxy

DESIGN DECISION: The UI re-reads the same spreadsheet ranges constantly
(dashboard, expense list, balances) while the Sheets API is rate-limited.
The proxy implements the same RemoteStoragePort as the real backend and
sits in front of it, so nothing above it knows whether a cache exists.

GUARANTEES:
- Only range reads (batch_get_values) are cached.
- A cached entry is never served without asking the backend for the
  document's modified-time marker; only a matching marker inside the
  freshness window is a hit.
- Every write drops all entries of the written document BEFORE it is
  delegated, so a later read in the same process never sees data older
  than the write.
- A failed read never creates or refreshes an entry.
- Callers get copies; editing a result never changes the cache.

TRADEOFFS:
- The cache is process-local and never evicted except by TTL expiry and
  writes. Long-running processes grow it without bound.
- Invalidation protects one call path. Concurrent writers race as usual.
"""

import copy
import time
from typing import Any, Callable, Optional

import structlog

from splitledger.services.storage.interface import RemoteStoragePort


logger = structlog.get_logger(__name__)


class CacheEntry:
    """One cached batch read, with the marker it was validated against."""

    __slots__ = ("key", "modified_time", "data", "fetched_at")

    def __init__(self, key: str, modified_time: str, data: list[dict], fetched_at: float):
        self.key = key
        self.modified_time = modified_time
        self.data = data
        self.fetched_at = fetched_at


class CachingStorageProxy(RemoteStoragePort):
    """
    Caching decorator around any RemoteStoragePort.

    Args:
        delegate: The storage actually talking to the backend
        ttl_ms: Freshness window; older entries are re-fetched unconditionally
        clock: Monotonic clock in seconds (injectable for tests)
    """

    def __init__(
        self,
        delegate: RemoteStoragePort,
        ttl_ms: int = 60000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._delegate = delegate
        self._ttl_seconds = ttl_ms / 1000.0
        self._clock = clock
        self._cache: dict[str, CacheEntry] = {}

    @property
    def delegate(self) -> RemoteStoragePort:
        return self._delegate

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    @staticmethod
    def _cache_key(spreadsheet_id: str, ranges: list[str]) -> str:
        # Request order is kept: the response is positional
        canonical = ",".join(r.strip() for r in ranges)
        return f"{spreadsheet_id}:batch_get_values:{canonical}"

    def invalidate(self, file_id: str) -> None:
        """Drop every cached entry of one document."""
        prefix = f"{file_id}:"
        stale = [key for key in self._cache if key.startswith(prefix)]
        for key in stale:
            del self._cache[key]
        if stale:
            logger.debug("cache_invalidated", file_id=file_id, entries=len(stale))

    def clear(self) -> None:
        self._cache.clear()

    # -------------------------------------------------------------------------
    # Cached read
    # -------------------------------------------------------------------------

    async def batch_get_values(self, spreadsheet_id: str, ranges: list[str]) -> list[dict]:
        key = self._cache_key(spreadsheet_id, ranges)
        now = self._clock()
        entry = self._cache.get(key)

        if entry is not None and now - entry.fetched_at < self._ttl_seconds:
            try:
                current = await self._delegate.get_last_modified(spreadsheet_id)
                if current and current == entry.modified_time:
                    logger.debug("cache_hit", spreadsheet_id=spreadsheet_id)
                    return copy.deepcopy(entry.data)
            except Exception as e:
                # Can't prove freshness, so refetch
                logger.debug(
                    "cache_staleness_check_failed",
                    spreadsheet_id=spreadsheet_id,
                    error=str(e),
                )

        logger.debug("cache_miss", spreadsheet_id=spreadsheet_id)
        data = await self._delegate.batch_get_values(spreadsheet_id, ranges)

        try:
            modified_time = await self._delegate.get_last_modified(spreadsheet_id) or ""
        except Exception as e:
            # Empty marker never matches, so the entry revalidates next time
            logger.debug(
                "cache_marker_fetch_failed",
                spreadsheet_id=spreadsheet_id,
                error=str(e),
            )
            modified_time = ""

        self._cache[key] = CacheEntry(key, modified_time, copy.deepcopy(data), now)
        return data

    # -------------------------------------------------------------------------
    # Pass-through reads and creates
    # -------------------------------------------------------------------------

    async def list_files(self, query: str, fields: Optional[str] = None) -> list[dict]:
        return await self._delegate.list_files(query, fields)

    async def get_file(
        self,
        file_id: str,
        alt: Optional[str] = None,
        fields: Optional[str] = None,
    ) -> Any:
        return await self._delegate.get_file(file_id, alt=alt, fields=fields)

    async def create_file(
        self,
        name: str,
        mime_type: str,
        properties: Optional[dict[str, str]] = None,
        content: Optional[str] = None,
    ) -> str:
        return await self._delegate.create_file(name, mime_type, properties, content)

    async def get_last_modified(self, file_id: str) -> str:
        return await self._delegate.get_last_modified(file_id)

    async def create_permission(
        self,
        file_id: str,
        role: str,
        permission_type: str,
        email_address: Optional[str] = None,
    ) -> dict:
        return await self._delegate.create_permission(file_id, role, permission_type, email_address)

    async def list_permissions(self, file_id: str) -> list[dict]:
        return await self._delegate.list_permissions(file_id)

    async def delete_permission(self, file_id: str, permission_id: str) -> None:
        await self._delegate.delete_permission(file_id, permission_id)

    async def create_spreadsheet(
        self,
        title: str,
        sheet_titles: list[str],
        properties: Optional[dict[str, str]] = None,
    ) -> str:
        return await self._delegate.create_spreadsheet(title, sheet_titles, properties)

    async def get_spreadsheet(self, spreadsheet_id: str, fields: Optional[str] = None) -> dict:
        return await self._delegate.get_spreadsheet(spreadsheet_id, fields)

    # -------------------------------------------------------------------------
    # Writes: invalidate first, then delegate
    # -------------------------------------------------------------------------

    async def update_file(
        self,
        file_id: str,
        metadata: Optional[dict] = None,
        content: Optional[str] = None,
    ) -> Optional[dict]:
        self.invalidate(file_id)
        return await self._delegate.update_file(file_id, metadata, content)

    async def delete_file(self, file_id: str) -> None:
        self.invalidate(file_id)
        await self._delegate.delete_file(file_id)

    async def batch_update_values(self, spreadsheet_id: str, data: list[dict]) -> None:
        self.invalidate(spreadsheet_id)
        await self._delegate.batch_update_values(spreadsheet_id, data)

    async def append_values(self, spreadsheet_id: str, range_: str, values: list[list]) -> None:
        self.invalidate(spreadsheet_id)
        await self._delegate.append_values(spreadsheet_id, range_, values)

    async def update_values(self, spreadsheet_id: str, range_: str, values: list[list]) -> None:
        self.invalidate(spreadsheet_id)
        await self._delegate.update_values(spreadsheet_id, range_, values)

    async def batch_update_spreadsheet(self, spreadsheet_id: str, requests: list[dict]) -> None:
        self.invalidate(spreadsheet_id)
        await self._delegate.batch_update_spreadsheet(spreadsheet_id, requests)
