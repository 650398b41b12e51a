"""
Google Workspace Storage Implementation

DESIGN DECISION: Google Drive + Sheets is the only backend because:
1. Users own their data; every group is a spreadsheet in their Drive
2. Sharing a group is just Drive sharing
3. Non-technical members can open the ledger directly in Sheets
4. No server to run

TRADEOFFS:
- No transactions (row writes are ordered carefully instead)
- Rate limits are tight (hence the caching proxy and the retries here)
- Row positions shift under concurrent deletes

gspread handles authentication and the authorized session; the Drive v3
and Sheets v4 REST endpoints are called through its HTTP client so the
whole port is served by one authorized transport.
"""

import asyncio
from typing import Any, Optional
from urllib.parse import quote

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from splitledger.config import GoogleWorkspaceSettings, get_settings
from splitledger.services.storage.interface import (
    AccessDeniedError,
    ConnectionError,
    NotFoundError,
    RateLimitedError,
    RemoteStoragePort,
    StorageError,
)


DRIVE_API = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

FILE_FIELDS = "id,name,mimeType,createdTime,modifiedTime,owners,capabilities,properties"

logger = structlog.get_logger(__name__)


def _status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, gspread.exceptions.APIError):
        response = getattr(exc, "response", None)
        return getattr(response, "status_code", None)
    return None


def _is_transient(exc: BaseException) -> bool:
    status = _status_of(exc)
    return status is not None and (status == 429 or status >= 500)


def _translate(exc: gspread.exceptions.APIError, context: str) -> StorageError:
    status = _status_of(exc)
    message = f"{context}: {exc}"
    if status == 404:
        return NotFoundError(message)
    if status in (401, 403):
        return AccessDeniedError(message)
    if status == 429:
        return RateLimitedError(message)
    return StorageError(message)


class GoogleWorkspaceClient:
    """
    Low-level Google client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleWorkspaceSettings] = None):
        settings = settings or get_settings().google_workspace
        self._credentials_path = settings.credentials_path
        self._max_attempts = settings.request_max_attempts
        self._timeout = settings.request_timeout_seconds
        self._client: Optional[gspread.Client] = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish the authorized session.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                credentials = Credentials.from_service_account_file(
                    self._credentials_path,
                    scopes=SCOPES,
                )
                self._client = gspread.authorize(credentials)
                self._client.set_timeout(self._timeout)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Workspace: {e}")

        return self._client

    def request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        data: Optional[str] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        """
        Perform one authorized request, retrying rate limits and 5xx.

        Returns the decoded JSON body, or None for empty responses.
        """

        @retry(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            reraise=True,
        )
        def _send():
            return self.connect().http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                data=data,
                headers=headers,
            )

        response = _send()
        if not response.content:
            return None
        return response.json()


class GoogleWorkspaceStorage(RemoteStoragePort):
    """
    Drive v3 / Sheets v4 implementation of the storage port.

    Blocking HTTP calls run in a worker thread so the event loop stays free.
    """

    def __init__(self, client: Optional[GoogleWorkspaceClient] = None):
        self._client = client or GoogleWorkspaceClient()

    async def _call(self, context: str, method: str, url: str, **kwargs) -> Any:
        try:
            return await asyncio.to_thread(self._client.request, method, url, **kwargs)
        except gspread.exceptions.APIError as e:
            error = _translate(e, context)
            logger.warning(
                "google_request_failed",
                context=context,
                status=_status_of(e),
                error_type=type(error).__name__,
            )
            raise error from e

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    async def list_files(self, query: str, fields: Optional[str] = None) -> list[dict]:
        files: list[dict] = []
        page_token = None
        while True:
            params = {
                "q": query,
                "fields": f"nextPageToken,files({fields or FILE_FIELDS})",
                "pageSize": 100,
            }
            if page_token:
                params["pageToken"] = page_token
            body = await self._call("list files", "get", f"{DRIVE_API}/files", params=params) or {}
            files.extend(body.get("files", []))
            page_token = body.get("nextPageToken")
            if not page_token:
                return files

    async def get_file(
        self,
        file_id: str,
        alt: Optional[str] = None,
        fields: Optional[str] = None,
    ) -> Any:
        params = {"alt": alt} if alt else {"fields": fields or FILE_FIELDS}
        return await self._call(f"get file {file_id}", "get", f"{DRIVE_API}/files/{file_id}", params=params)

    async def create_file(
        self,
        name: str,
        mime_type: str,
        properties: Optional[dict[str, str]] = None,
        content: Optional[str] = None,
    ) -> str:
        metadata = {"name": name, "mimeType": mime_type}
        if properties:
            metadata["properties"] = properties
        created = await self._call("create file", "post", f"{DRIVE_API}/files", json_body=metadata)
        file_id = created["id"]
        if content is not None:
            await self._upload(file_id, content, mime_type)
        return file_id

    async def _upload(self, file_id: str, content: str, mime_type: str = "application/json") -> None:
        await self._call(
            f"upload content {file_id}",
            "patch",
            f"{DRIVE_UPLOAD_API}/files/{file_id}",
            params={"uploadType": "media"},
            data=content,
            headers={"Content-Type": mime_type},
        )

    async def get_last_modified(self, file_id: str) -> str:
        body = await self._call(
            f"get modified time {file_id}",
            "get",
            f"{DRIVE_API}/files/{file_id}",
            params={"fields": "modifiedTime"},
        )
        return (body or {}).get("modifiedTime", "")

    async def update_file(
        self,
        file_id: str,
        metadata: Optional[dict] = None,
        content: Optional[str] = None,
    ) -> Optional[dict]:
        result = None
        if metadata:
            result = await self._call(
                f"update file {file_id}",
                "patch",
                f"{DRIVE_API}/files/{file_id}",
                params={"fields": FILE_FIELDS},
                json_body=metadata,
            )
        if content is not None:
            await self._upload(file_id, content)
        return result

    async def delete_file(self, file_id: str) -> None:
        await self._call(f"delete file {file_id}", "delete", f"{DRIVE_API}/files/{file_id}")

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
        body = {"role": role, "type": permission_type}
        if email_address:
            body["emailAddress"] = email_address
        return await self._call(
            f"share file {file_id}",
            "post",
            f"{DRIVE_API}/files/{file_id}/permissions",
            params={"sendNotificationEmail": "false", "fields": "id,role,type,emailAddress,displayName"},
            json_body=body,
        )

    async def list_permissions(self, file_id: str) -> list[dict]:
        body = await self._call(
            f"list permissions {file_id}",
            "get",
            f"{DRIVE_API}/files/{file_id}/permissions",
            params={"fields": "permissions(id,role,type,emailAddress,displayName)"},
        )
        return (body or {}).get("permissions", [])

    async def delete_permission(self, file_id: str, permission_id: str) -> None:
        await self._call(
            f"unshare file {file_id}",
            "delete",
            f"{DRIVE_API}/files/{file_id}/permissions/{permission_id}",
        )

    # -------------------------------------------------------------------------
    # Spreadsheets
    # -------------------------------------------------------------------------

    async def create_spreadsheet(
        self,
        title: str,
        sheet_titles: list[str],
        properties: Optional[dict[str, str]] = None,
    ) -> str:
        body = {
            "properties": {"title": title},
            "sheets": [{"properties": {"title": sheet_title}} for sheet_title in sheet_titles],
        }
        created = await self._call("create spreadsheet", "post", SHEETS_API, json_body=body)
        spreadsheet_id = created["spreadsheetId"]
        if properties:
            # Sheets can't set Drive properties at creation time
            await self.update_file(spreadsheet_id, {"properties": properties})
        return spreadsheet_id

    async def get_spreadsheet(self, spreadsheet_id: str, fields: Optional[str] = None) -> dict:
        params = {"fields": fields} if fields else None
        return await self._call(
            f"get spreadsheet {spreadsheet_id}",
            "get",
            f"{SHEETS_API}/{spreadsheet_id}",
            params=params,
        )

    async def batch_get_values(self, spreadsheet_id: str, ranges: list[str]) -> list[dict]:
        body = await self._call(
            f"read ranges {spreadsheet_id}",
            "get",
            f"{SHEETS_API}/{spreadsheet_id}/values:batchGet",
            params=[("ranges", r) for r in ranges],
        )
        return (body or {}).get("valueRanges", [])

    async def batch_update_values(self, spreadsheet_id: str, data: list[dict]) -> None:
        await self._call(
            f"write ranges {spreadsheet_id}",
            "post",
            f"{SHEETS_API}/{spreadsheet_id}/values:batchUpdate",
            json_body={"valueInputOption": "RAW", "data": data},
        )

    async def append_values(self, spreadsheet_id: str, range_: str, values: list[list]) -> None:
        await self._call(
            f"append rows {spreadsheet_id}",
            "post",
            f"{SHEETS_API}/{spreadsheet_id}/values/{quote(range_, safe='')}:append",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json_body={"values": values},
        )

    async def update_values(self, spreadsheet_id: str, range_: str, values: list[list]) -> None:
        await self._call(
            f"update rows {spreadsheet_id}",
            "put",
            f"{SHEETS_API}/{spreadsheet_id}/values/{quote(range_, safe='')}",
            params={"valueInputOption": "RAW"},
            json_body={"values": values},
        )

    async def batch_update_spreadsheet(self, spreadsheet_id: str, requests: list[dict]) -> None:
        await self._call(
            f"update spreadsheet {spreadsheet_id}",
            "post",
            f"{SHEETS_API}/{spreadsheet_id}:batchUpdate",
            json_body={"requests": requests},
        )

