"""
Abstract Remote Storage Interface

DESIGN DECISION: We define an abstract interface for the remote store.
This allows us to:
1. Talk to Google Drive/Sheets in production
2. Use in-memory storage for testing and offline demos
3. Add caching layers transparently (a proxy implements the same interface)
4. Keep group and ledger logic decoupled from the transport

The interface mirrors the shape of the Drive and Sheets APIs on purpose:
files with properties and permissions, and spreadsheets addressed by
A1 ranges. Implementations raise the StorageError family below and the
core never retries or masks them.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class RemoteStoragePort(ABC):
    """
    Abstract interface for the document store.

    Any storage implementation (Google Workspace, in-memory, a caching
    proxy) must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_files(self, query: str, fields: Optional[str] = None) -> list[dict]:
        """
        List files visible to the current account.

        Args:
            query: Drive query string, e.g.
                "properties has { key='splitledger_type' and value='group' } and trashed = false"
            fields: Optional partial-response selector

        Returns:
            File resources (id, name, createdTime, owners, capabilities, properties)
        """
        pass

    @abstractmethod
    async def get_file(
        self,
        file_id: str,
        alt: Optional[str] = None,
        fields: Optional[str] = None,
    ) -> Any:
        """
        Get file metadata, or its parsed JSON content when alt="media".

        Raises:
            NotFoundError: If the file doesn't exist or isn't visible
        """
        pass

    @abstractmethod
    async def create_file(
        self,
        name: str,
        mime_type: str,
        properties: Optional[dict[str, str]] = None,
        content: Optional[str] = None,
    ) -> str:
        """
        Create a file and return its id.
        """
        pass

    @abstractmethod
    async def get_last_modified(self, file_id: str) -> str:
        """
        Get the file's modified-time marker.

        The marker is opaque and changes on every write to the file.
        """
        pass

    @abstractmethod
    async def update_file(
        self,
        file_id: str,
        metadata: Optional[dict] = None,
        content: Optional[str] = None,
    ) -> Optional[dict]:
        """
        Update file metadata (name, properties) and/or replace its content.
        """
        pass

    @abstractmethod
    async def delete_file(self, file_id: str) -> None:
        """Delete a file. Only the owner may do this."""
        pass

    # -------------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_permission(
        self,
        file_id: str,
        role: str,
        permission_type: str,
        email_address: Optional[str] = None,
    ) -> dict:
        """
        Grant access to a file.

        Args:
            role: "reader" | "writer" | "owner"
            permission_type: "user" | "anyone"
            email_address: Required when permission_type is "user"

        Returns:
            The permission resource (id, role, type, emailAddress, displayName)
        """
        pass

    @abstractmethod
    async def list_permissions(self, file_id: str) -> list[dict]:
        pass

    @abstractmethod
    async def delete_permission(self, file_id: str, permission_id: str) -> None:
        pass

    # -------------------------------------------------------------------------
    # Spreadsheets
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_spreadsheet(
        self,
        title: str,
        sheet_titles: list[str],
        properties: Optional[dict[str, str]] = None,
    ) -> str:
        """
        Create a spreadsheet with the given tabs and return its id.
        """
        pass

    @abstractmethod
    async def get_spreadsheet(self, spreadsheet_id: str, fields: Optional[str] = None) -> dict:
        """
        Get spreadsheet structure ({"properties": {...}, "sheets": [...]}).
        """
        pass

    @abstractmethod
    async def batch_get_values(self, spreadsheet_id: str, ranges: list[str]) -> list[dict]:
        """
        Read several A1 ranges at once.

        Returns:
            One value range per requested range, in request order.
            Each is {"range": str, "values": list[list]}; "values" may be
            missing when the range is empty.
        """
        pass

    @abstractmethod
    async def batch_update_values(self, spreadsheet_id: str, data: list[dict]) -> None:
        """
        Write several ranges at once.

        Args:
            data: [{"range": "Members!A2", "values": [[...], ...]}, ...]
        """
        pass

    @abstractmethod
    async def append_values(self, spreadsheet_id: str, range_: str, values: list[list]) -> None:
        """Append rows after the last row of the range's sheet."""
        pass

    @abstractmethod
    async def update_values(self, spreadsheet_id: str, range_: str, values: list[list]) -> None:
        """Overwrite the rows starting at the range's first cell."""
        pass

    @abstractmethod
    async def batch_update_spreadsheet(self, spreadsheet_id: str, requests: list[dict]) -> None:
        """Apply structural requests (e.g. deleteDimension) to a spreadsheet."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class AccessDeniedError(StorageError):
    """The account is not allowed to perform this operation."""
    pass


class RateLimitedError(StorageError):
    """The backend rejected the request because of its rate limit."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
