"""
In-Memory Storage Implementation

A faithful stand-in for Google Drive + Sheets, used by tests and for
running the client without credentials.

DESIGN DECISION: State lives in an `InMemoryDrive` shared by everyone;
each account gets its own `InMemoryStorage` view of it. This is what
makes ownership, sharing and "the file disappeared for me" scenarios
testable without a real backend.

Supported subset:
- Drive queries made of `name = '...'`, `properties has { key='k' and value='v' }`
  and `trashed = false` clauses joined by `and`
- A1 ranges of the form `Sheet!A2:Z`, `Sheet!A5:Z5`, `Sheet!A1`, `Sheet`
- The `deleteDimension` spreadsheet request
"""

import copy
import json
import re
from datetime import datetime, timedelta
from itertools import count
from typing import Any, Optional

from pydantic import BaseModel, Field

from splitledger.models.group import utcnow
from splitledger.services.storage.interface import (
    AccessDeniedError,
    NotFoundError,
    RemoteStoragePort,
    StorageError,
)


SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"

_NAME_CLAUSE = re.compile(r"name\s*=\s*'((?:[^'\\]|\\.)*)'")
_PROPERTY_CLAUSE = re.compile(
    r"properties\s+has\s*\{\s*key\s*=\s*'((?:[^'\\]|\\.)*)'\s+and\s+value\s*=\s*'((?:[^'\\]|\\.)*)'\s*\}"
)
_TRASHED_CLAUSE = re.compile(r"trashed\s*=\s*(true|false)")
_ROW_NUMBER = re.compile(r"[A-Za-z]+(\d+)")


def _unescape(value: str) -> str:
    return value.replace("\\'", "'").replace("\\\\", "\\")


def _split_range(range_: str) -> tuple[str, int]:
    """'Members!A2:Z' -> ('Members', 1); row index is zero-based."""
    sheet_name, _, cells = range_.partition("!")
    sheet_name = sheet_name.strip().strip("'")
    match = _ROW_NUMBER.match(cells.strip()) if cells else None
    start = int(match.group(1)) - 1 if match else 0
    return sheet_name, start


class StoredFile(BaseModel):
    """A Drive file, optionally with spreadsheet tabs."""

    id: str
    name: str
    mime_type: str
    owner_email: str
    created_time: datetime
    modified_time: datetime
    properties: dict[str, str] = Field(default_factory=dict)
    content: Optional[str] = None
    permissions: list[dict] = Field(default_factory=list)
    trashed: bool = False

    # Spreadsheet data: tab title -> rows, tab title -> sheetId
    sheets: dict[str, list[list]] = Field(default_factory=dict)
    sheet_ids: dict[str, int] = Field(default_factory=dict)


class InMemoryDrive:
    """Backend state shared by all accounts."""

    def __init__(self):
        self.files: dict[str, StoredFile] = {}
        self._ids = count(1)
        self._last_modified: Optional[datetime] = None

    def next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def next_modified_time(self) -> datetime:
        """Strictly increasing timestamps, even for back-to-back writes."""
        now = utcnow()
        if self._last_modified is not None and now <= self._last_modified:
            now = self._last_modified + timedelta(microseconds=1)
        self._last_modified = now
        return now

    def touch(self, stored: StoredFile) -> None:
        stored.modified_time = self.next_modified_time()

    def storage_for(self, account_email: str) -> "InMemoryStorage":
        return InMemoryStorage(self, account_email)


class InMemoryStorage(RemoteStoragePort):
    """
    One account's view of an InMemoryDrive.

    Args:
        drive: Shared backend state (a private one is created if omitted)
        account_email: The account acting on the drive
    """

    def __init__(self, drive: Optional[InMemoryDrive] = None, account_email: str = "me@example.com"):
        self._drive = drive or InMemoryDrive()
        self._email = account_email

    @property
    def drive(self) -> InMemoryDrive:
        return self._drive

    # -------------------------------------------------------------------------
    # Access helpers
    # -------------------------------------------------------------------------

    def _can_see(self, stored: StoredFile) -> bool:
        if stored.owner_email == self._email:
            return True
        for perm in stored.permissions:
            if perm.get("type") == "anyone":
                return True
            if perm.get("emailAddress") == self._email:
                return True
        return False

    def _get_visible(self, file_id: str) -> StoredFile:
        stored = self._drive.files.get(file_id)
        if stored is None or not self._can_see(stored):
            raise NotFoundError(f"File not found: {file_id}")
        return stored

    def _get_spreadsheet(self, spreadsheet_id: str) -> StoredFile:
        stored = self._get_visible(spreadsheet_id)
        if stored.mime_type != SPREADSHEET_MIME_TYPE:
            raise StorageError(f"File is not a spreadsheet: {spreadsheet_id}")
        return stored

    def _to_resource(self, stored: StoredFile) -> dict:
        is_owner = stored.owner_email == self._email
        return {
            "id": stored.id,
            "name": stored.name,
            "mimeType": stored.mime_type,
            "createdTime": stored.created_time.isoformat(timespec="microseconds"),
            "modifiedTime": stored.modified_time.isoformat(timespec="microseconds"),
            "owners": [{"emailAddress": stored.owner_email}],
            "capabilities": {"canDelete": is_owner, "canEdit": True},
            "properties": dict(stored.properties),
        }

    @staticmethod
    def _matches(stored: StoredFile, query: str) -> bool:
        for match in _NAME_CLAUSE.finditer(query):
            if stored.name != _unescape(match.group(1)):
                return False
        for match in _PROPERTY_CLAUSE.finditer(query):
            key, value = _unescape(match.group(1)), _unescape(match.group(2))
            if stored.properties.get(key) != value:
                return False
        trashed = _TRASHED_CLAUSE.search(query)
        if trashed and stored.trashed != (trashed.group(1) == "true"):
            return False
        return True

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    async def list_files(self, query: str, fields: Optional[str] = None) -> list[dict]:
        return [
            self._to_resource(stored)
            for stored in self._drive.files.values()
            if self._can_see(stored) and self._matches(stored, query)
        ]

    async def get_file(
        self,
        file_id: str,
        alt: Optional[str] = None,
        fields: Optional[str] = None,
    ) -> Any:
        stored = self._get_visible(file_id)
        if alt == "media":
            if not stored.content:
                return {}
            return json.loads(stored.content)
        return self._to_resource(stored)

    async def create_file(
        self,
        name: str,
        mime_type: str,
        properties: Optional[dict[str, str]] = None,
        content: Optional[str] = None,
    ) -> str:
        now = self._drive.next_modified_time()
        stored = StoredFile(
            id=self._drive.next_id("file"),
            name=name,
            mime_type=mime_type,
            owner_email=self._email,
            created_time=now,
            modified_time=now,
            properties=dict(properties or {}),
            content=content,
        )
        self._drive.files[stored.id] = stored
        return stored.id

    async def get_last_modified(self, file_id: str) -> str:
        return self._get_visible(file_id).modified_time.isoformat(timespec="microseconds")

    async def update_file(
        self,
        file_id: str,
        metadata: Optional[dict] = None,
        content: Optional[str] = None,
    ) -> Optional[dict]:
        stored = self._get_visible(file_id)
        if metadata:
            if "name" in metadata:
                stored.name = metadata["name"]
            for key, value in (metadata.get("properties") or {}).items():
                # Drive semantics: a null value removes the property
                if value is None:
                    stored.properties.pop(key, None)
                else:
                    stored.properties[key] = str(value)
            if "trashed" in metadata:
                stored.trashed = bool(metadata["trashed"])
        if content is not None:
            stored.content = content
        self._drive.touch(stored)
        return self._to_resource(stored)

    async def delete_file(self, file_id: str) -> None:
        stored = self._get_visible(file_id)
        if stored.owner_email != self._email:
            raise AccessDeniedError(f"Only the owner can delete {file_id}")
        del self._drive.files[file_id]

    # -------------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------------

    async def create_permission(
        self,
        file_id: str,
        role: str,
        permission_type: str,
        email_address: Optional[str] = None,
    ) -> dict:
        stored = self._get_visible(file_id)
        if permission_type == "user" and not email_address:
            raise StorageError("A user permission needs an email address")
        permission = {
            "id": self._drive.next_id("perm"),
            "role": role,
            "type": permission_type,
        }
        if email_address:
            permission["emailAddress"] = email_address
            permission["displayName"] = email_address.split("@")[0]
        stored.permissions.append(permission)
        return dict(permission)

    async def list_permissions(self, file_id: str) -> list[dict]:
        stored = self._get_visible(file_id)
        owner = {
            "id": "owner",
            "role": "owner",
            "type": "user",
            "emailAddress": stored.owner_email,
        }
        return [owner] + [dict(p) for p in stored.permissions]

    async def delete_permission(self, file_id: str, permission_id: str) -> None:
        stored = self._get_visible(file_id)
        remaining = [p for p in stored.permissions if p["id"] != permission_id]
        if len(remaining) == len(stored.permissions):
            raise NotFoundError(f"Permission not found: {permission_id}")
        stored.permissions = remaining

    # -------------------------------------------------------------------------
    # Spreadsheets
    # -------------------------------------------------------------------------

    async def create_spreadsheet(
        self,
        title: str,
        sheet_titles: list[str],
        properties: Optional[dict[str, str]] = None,
    ) -> str:
        spreadsheet_id = await self.create_file(title, SPREADSHEET_MIME_TYPE, properties)
        stored = self._drive.files[spreadsheet_id]
        for index, sheet_title in enumerate(sheet_titles, start=1):
            stored.sheets[sheet_title] = []
            stored.sheet_ids[sheet_title] = index
        return spreadsheet_id

    async def get_spreadsheet(self, spreadsheet_id: str, fields: Optional[str] = None) -> dict:
        stored = self._get_spreadsheet(spreadsheet_id)
        return {
            "spreadsheetId": stored.id,
            "properties": {"title": stored.name},
            "sheets": [
                {"properties": {"title": title, "sheetId": sheet_id}}
                for title, sheet_id in stored.sheet_ids.items()
            ],
        }

    def _rows(self, stored: StoredFile, sheet_name: str) -> list[list]:
        if sheet_name not in stored.sheets:
            raise StorageError(f"Unable to parse range: sheet '{sheet_name}' does not exist")
        return stored.sheets[sheet_name]

    async def batch_get_values(self, spreadsheet_id: str, ranges: list[str]) -> list[dict]:
        stored = self._get_spreadsheet(spreadsheet_id)
        result = []
        for range_ in ranges:
            sheet_name, start = _split_range(range_)
            rows = self._rows(stored, sheet_name)[start:]
            # Like the Sheets API: trailing empty rows are dropped
            while rows and not rows[-1]:
                rows = rows[:-1]
            value_range = {"range": range_}
            if rows:
                value_range["values"] = [list(row) if row else [] for row in copy.deepcopy(rows)]
            result.append(value_range)
        return result

    def _write_rows(self, stored: StoredFile, range_: str, values: list[list]) -> None:
        sheet_name, start = _split_range(range_)
        rows = self._rows(stored, sheet_name)
        while len(rows) < start + len(values):
            rows.append([])
        for offset, row in enumerate(values):
            rows[start + offset] = list(row)

    async def batch_update_values(self, spreadsheet_id: str, data: list[dict]) -> None:
        stored = self._get_spreadsheet(spreadsheet_id)
        for item in data:
            self._write_rows(stored, item["range"], item["values"])
        self._drive.touch(stored)

    async def append_values(self, spreadsheet_id: str, range_: str, values: list[list]) -> None:
        stored = self._get_spreadsheet(spreadsheet_id)
        sheet_name, _ = _split_range(range_)
        rows = self._rows(stored, sheet_name)
        while rows and not rows[-1]:
            rows.pop()
        rows.extend(list(row) for row in values)
        self._drive.touch(stored)

    async def update_values(self, spreadsheet_id: str, range_: str, values: list[list]) -> None:
        stored = self._get_spreadsheet(spreadsheet_id)
        self._write_rows(stored, range_, values)
        self._drive.touch(stored)

    async def batch_update_spreadsheet(self, spreadsheet_id: str, requests: list[dict]) -> None:
        stored = self._get_spreadsheet(spreadsheet_id)
        titles_by_id = {sheet_id: title for title, sheet_id in stored.sheet_ids.items()}
        for request in requests:
            if "deleteDimension" not in request:
                raise StorageError(f"Unsupported spreadsheet request: {list(request)}")
            target = request["deleteDimension"]["range"]
            title = titles_by_id.get(target["sheetId"])
            if title is None:
                raise StorageError(f"No sheet with id {target['sheetId']}")
            if target.get("dimension", "ROWS") != "ROWS":
                raise StorageError("Only row deletion is supported")
            del stored.sheets[title][target["startIndex"]:target["endIndex"]]
        self._drive.touch(stored)
