"""
Group & Settings Models for SplitLedger

A group is a spreadsheet in somebody's Google Drive. The user's list of
groups is a projection of what Drive lets them see, cached in a small JSON
settings document so the UI does not have to list Drive on every screen.

DESIGN DECISION: Python attributes are snake_case, but everything we persist
(the settings JSON, sheet headers) keeps the camelCase names other clients
of the same Drive files already write. Field aliases bridge the two.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# PERSISTENCE CONSTANTS
# =============================================================================

GROUP_TITLE_PREFIX = "SplitLedger - "
SETTINGS_FILE_NAME = "splitledger-settings.json"
SETTINGS_MIME_TYPE = "application/json"

# Drive app properties used to tag our files
FILE_TYPE_PROPERTY = "splitledger_type"
ACCOUNT_PROPERTY = "splitledger_account"
GROUP_FILE_TYPE = "group"
SETTINGS_FILE_TYPE = "settings"
GROUP_SCHEMA_VERSION = "1.0"

REQUIRED_SHEETS = ("Expenses", "Settlements", "Members")

EXPENSE_COLUMNS = ["id", "date", "description", "amount", "paidBy", "category", "splits", "meta"]
SETTLEMENT_COLUMNS = ["id", "date", "fromUserId", "toUserId", "amount", "method", "notes"]
MEMBER_COLUMNS = ["userId", "email", "name", "role", "joinedAt"]

SETTINGS_VERSION = 1


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def strip_group_prefix(title: str) -> str:
    """Turn a spreadsheet title back into the group's display name."""
    if title.startswith(GROUP_TITLE_PREFIX):
        return title[len(GROUP_TITLE_PREFIX):]
    return title


# =============================================================================
# IDENTITY & MEMBERSHIP
# =============================================================================

class MemberRole(str, Enum):
    """Role of a member inside one group."""
    OWNER = "owner"
    MEMBER = "member"


class User(BaseModel):
    """
    The authenticated identity acting on the store.

    Token acquisition happens elsewhere; we only need to know who we are.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1, description="Stable account id")
    email: str = Field(..., min_length=3, description="Account email, keys the settings file")
    name: str = ""
    username: str = ""
    picture: Optional[str] = None


class Member(BaseModel):
    """
    A row of the Members sheet.

    Immutable once created except for `role`.
    """
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    user_id: str = Field(..., alias="userId")
    email: str = ""
    name: str = ""
    role: MemberRole = MemberRole.MEMBER
    joined_at: datetime = Field(default_factory=utcnow, alias="joinedAt")


class MemberInput(BaseModel):
    """Somebody to invite, by email or by a free-form username."""
    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = None
    username: Optional[str] = None

    @property
    def key(self) -> str:
        return self.email or self.username or ""


class Group(BaseModel):
    """Projection of a group returned to callers after create/join."""

    id: str
    name: str
    description: str = ""
    created_by: str = ""
    participants: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    is_owner: bool = False


# =============================================================================
# USER SETTINGS DOCUMENT
# =============================================================================

class GroupCacheEntry(BaseModel):
    """
    Lightweight projection of a group kept in the settings document.

    Participants are deliberately left out to keep the payload small.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    role: MemberRole = MemberRole.MEMBER
    last_accessed: Optional[datetime] = Field(default=None, alias="lastAccessed")


class Preferences(BaseModel):
    """User preferences. Unknown keys written by other clients are preserved."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    default_currency: str = Field(default="USD", alias="defaultCurrency")
    locale: str = "system"
    theme: Literal["light", "dark", "system"] = "system"
    ai_provider: Literal["auto", "byok", "local", "cloud", "disabled"] = Field(
        default="auto",
        alias="aiProvider",
    )


class UserSettings(BaseModel):
    """
    One per account, stored as a single JSON file in the user's Drive.

    Created lazily on first access; never hard-deleted.
    """
    model_config = ConfigDict(populate_by_name=True)

    version: int = SETTINGS_VERSION
    active_group_id: Optional[str] = Field(default=None, alias="activeGroupId")
    group_cache: list[GroupCacheEntry] = Field(default_factory=list, alias="groupCache")
    preferences: Preferences = Field(default_factory=Preferences)
    last_updated: Optional[datetime] = Field(default=None, alias="lastUpdated")

    def find_group(self, group_id: str) -> Optional[GroupCacheEntry]:
        for entry in self.group_cache:
            if entry.id == group_id:
                return entry
        return None

    def to_document(self) -> dict:
        """Serialize with the on-disk (camelCase) key names."""
        return self.model_dump(mode="json", by_alias=True)
