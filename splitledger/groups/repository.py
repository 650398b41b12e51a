"""
Group Repository / Reconciler

Answers "which groups does this user belong to" from the settings document
(one small JSON file per account) instead of listing Drive every time,
while staying eventually correct against what Drive actually shows.

RECONCILIATION (runs on every get_settings):
- Remote groups not in the cache are added, newest first, in front of the
  existing entries. The role comes from file ownership.
- Cached entries whose file is gone or no longer visible are pruned.
- Renamed groups get their cached name refreshed.
- An active group that no longer resolves falls back to the first entry.
- The document is written only when something changed, so repeated calls
  reach a fixed point.

ORDERING: every mutation writes the group file first and the settings
document second. A crash in between leaves Drive authoritative and the
next reconciliation repairs the cache: the cache may lag, it never lies.
"""

import json
from datetime import datetime
from typing import Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError

from splitledger.audit import AuditLogger
from splitledger.errors import (
    GroupNotFoundError,
    InvalidGroupError,
    MemberHasExpensesError,
    MemberNotFoundError,
    OwnerActionError,
)
from splitledger.ledger.repository import (
    EXPENSES_SHEET,
    MEMBERS_SHEET,
    SETTLEMENTS_SHEET,
    LedgerRepository,
    member_to_row,
)
from splitledger.models.audit import AuditEventType
from splitledger.models.group import (
    ACCOUNT_PROPERTY,
    EXPENSE_COLUMNS,
    FILE_TYPE_PROPERTY,
    GROUP_FILE_TYPE,
    GROUP_SCHEMA_VERSION,
    GROUP_TITLE_PREFIX,
    MEMBER_COLUMNS,
    REQUIRED_SHEETS,
    SETTINGS_FILE_NAME,
    SETTINGS_FILE_TYPE,
    SETTINGS_MIME_TYPE,
    SETTLEMENT_COLUMNS,
    Group,
    GroupCacheEntry,
    Member,
    MemberInput,
    MemberRole,
    Preferences,
    User,
    UserSettings,
    strip_group_prefix,
    utcnow,
)
from splitledger.services.storage.interface import NotFoundError, RemoteStoragePort


logger = structlog.get_logger(__name__)


def _quote(value: str) -> str:
    """Escape a value for use inside a Drive query string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


GROUPS_QUERY = (
    f"properties has {{ key='{FILE_TYPE_PROPERTY}' and value='{GROUP_FILE_TYPE}' }} "
    "and trashed = false"
)


class GroupRepository:
    """
    Group lifecycle and the per-account settings document.

    Args:
        storage: Storage port shared with the rest of the client
        user: The account acting on the store
        audit_logger: Receives an event for every mutation
        default_preferences: Preferences for a freshly synthesized document
    """

    def __init__(
        self,
        storage: RemoteStoragePort,
        user: User,
        audit_logger: Optional[AuditLogger] = None,
        default_preferences: Optional[Preferences] = None,
    ):
        self._storage = storage
        self._user = user
        self._audit = (audit_logger or AuditLogger()).bind(user.email)
        self._default_preferences = default_preferences or Preferences()
        self._settings_file_id: Optional[str] = None
        self._snapshot: Optional[UserSettings] = None

    @property
    def active_group_id(self) -> Optional[str]:
        """Active group as known locally, including optimistic changes."""
        return self._snapshot.active_group_id if self._snapshot else None

    # -------------------------------------------------------------------------
    # Settings document
    # -------------------------------------------------------------------------

    def _settings_query(self) -> str:
        return (
            f"name = '{SETTINGS_FILE_NAME}' "
            f"and properties has {{ key='{ACCOUNT_PROPERTY}' and value='{_quote(self._user.email)}' }} "
            "and trashed = false"
        )

    def _default_settings(self) -> UserSettings:
        return UserSettings(preferences=self._default_preferences.model_copy(deep=True))

    async def _find_settings_file(self) -> Optional[str]:
        if self._settings_file_id is None:
            files = await self._storage.list_files(self._settings_query())
            if files:
                self._settings_file_id = files[0]["id"]
        return self._settings_file_id

    async def _load_settings(self) -> tuple[UserSettings, bool]:
        """
        Read the settings document.

        Returns (settings, needs_write). A missing or unreadable document is
        replaced by defaults, which then need to be written.
        """
        file_id = await self._find_settings_file()
        if file_id is None:
            logger.debug("settings_missing", email=self._user.email)
            return self._default_settings(), True

        try:
            document = await self._storage.get_file(file_id, alt="media")
        except NotFoundError:
            # Deleted between listing and reading
            self._settings_file_id = None
            return self._default_settings(), True

        try:
            if not isinstance(document, dict) or not document.get("version"):
                raise ValueError("missing version")
            return UserSettings.model_validate(document), False
        except (ValidationError, ValueError) as e:
            self._audit.log_error("settings_unreadable", str(e), {"file_id": file_id})
            return self._default_settings(), True

    async def _write_settings(self, settings: UserSettings) -> None:
        settings.last_updated = utcnow()
        content = json.dumps(settings.to_document(), indent=2)

        file_id = await self._find_settings_file()
        if file_id is not None:
            try:
                await self._storage.update_file(file_id, content=content)
                return
            except NotFoundError:
                self._settings_file_id = None

        self._settings_file_id = await self._storage.create_file(
            SETTINGS_FILE_NAME,
            SETTINGS_MIME_TYPE,
            {FILE_TYPE_PROPERTY: SETTINGS_FILE_TYPE, ACCOUNT_PROPERTY: self._user.email},
            content,
        )

    async def _persist(self, settings: UserSettings) -> None:
        await self._write_settings(settings)
        self._snapshot = settings.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def _role_of(self, file: dict) -> MemberRole:
        owners = file.get("owners") or []
        if any(owner.get("emailAddress") == self._user.email for owner in owners):
            return MemberRole.OWNER
        if (file.get("capabilities") or {}).get("canDelete"):
            return MemberRole.OWNER
        return MemberRole.MEMBER

    def _apply_remote_groups(self, settings: UserSettings, files: list[dict]) -> bool:
        """Bring the group cache in line with the remote listing. Returns True if changed."""
        remote = {file["id"]: file for file in files}
        cached_ids = {entry.id for entry in settings.group_cache}

        added = [
            GroupCacheEntry(
                id=file["id"],
                name=strip_group_prefix(file.get("name", "")),
                role=self._role_of(file),
                last_accessed=_parse_time(file.get("createdTime")),
            )
            for file in files
            if file["id"] not in cached_ids
        ]
        added.sort(key=lambda entry: entry.last_accessed.timestamp() if entry.last_accessed else 0, reverse=True)

        removed = [entry.id for entry in settings.group_cache if entry.id not in remote]
        kept = [entry for entry in settings.group_cache if entry.id in remote]

        refreshed = False
        for entry in kept:
            name = strip_group_prefix(remote[entry.id].get("name", entry.name))
            if name and name != entry.name:
                entry.name = name
                refreshed = True
            role = self._role_of(remote[entry.id])
            if role != entry.role:
                entry.role = role
                refreshed = True

        settings.group_cache = added + kept
        active_changed = self._fix_active_group(settings)

        if added or removed:
            logger.debug(
                "groups_reconciled",
                added=[entry.id for entry in added],
                removed=removed,
            )
            self._audit.log_groups_reconciled([entry.id for entry in added], removed)

        return bool(added or removed or refreshed or active_changed)

    @staticmethod
    def _fix_active_group(settings: UserSettings) -> bool:
        active = settings.active_group_id
        if active is not None and settings.find_group(active) is not None:
            return False
        replacement = settings.group_cache[0].id if settings.group_cache else None
        settings.active_group_id = replacement
        return replacement != active

    async def _load_reconciled(self) -> tuple[UserSettings, bool]:
        settings, needs_write = await self._load_settings()
        files = await self._storage.list_files(GROUPS_QUERY)
        changed = self._apply_remote_groups(settings, files)
        return settings, needs_write or changed

    async def get_settings(self) -> UserSettings:
        """
        Load the user's settings, reconciled against Drive.

        Writes the document back only if it was missing, unreadable or
        changed by reconciliation.
        """
        settings, needs_write = await self._load_reconciled()
        if needs_write:
            await self._persist(settings)
        else:
            self._snapshot = settings.model_copy(deep=True)
        return settings.model_copy(deep=True)

    async def reconcile_groups(self) -> UserSettings:
        """Run reconciliation now; same result as get_settings."""
        return await self.get_settings()

    async def _known_settings(self) -> UserSettings:
        """Local snapshot if we have one, otherwise a reconciled load."""
        if self._snapshot is not None:
            return self._snapshot.model_copy(deep=True)
        settings, needs_write = await self._load_reconciled()
        if needs_write:
            await self._persist(settings)
        else:
            self._snapshot = settings.model_copy(deep=True)
        return settings

    async def _require_cached(self, group_id: str) -> tuple[UserSettings, GroupCacheEntry]:
        settings = await self._known_settings()
        entry = settings.find_group(group_id)
        if entry is None:
            raise GroupNotFoundError(group_id)
        return settings, entry

    # -------------------------------------------------------------------------
    # Settings mutations
    # -------------------------------------------------------------------------

    async def save_settings(self, settings: UserSettings) -> None:
        """Persist the given settings as-is (last_updated is stamped)."""
        settings = settings.model_copy(deep=True)
        await self._persist(settings)
        self._audit.log_settings_change(AuditEventType.SETTINGS_SAVED, settings.active_group_id)

    async def update_active_group(self, group_id: str) -> None:
        """
        Switch the active group.

        The change is visible through `active_group_id` before the write
        completes. No listing or reconciliation happens.
        """
        if self._snapshot is None:
            settings, _ = await self._load_settings()
            self._snapshot = settings

        entry = self._snapshot.find_group(group_id)
        if entry is None:
            raise GroupNotFoundError(group_id)

        self._snapshot.active_group_id = group_id
        entry.last_accessed = utcnow()

        await self._write_settings(self._snapshot.model_copy(deep=True))
        self._audit.log_settings_change(AuditEventType.ACTIVE_GROUP_CHANGED, group_id)

    # -------------------------------------------------------------------------
    # Group lifecycle
    # -------------------------------------------------------------------------

    def _member_row_for_input(self, member: MemberInput, display_name: Optional[str]) -> Member:
        if member.email:
            user_id = member.email
        else:
            user_id = member.username or f"user-{uuid4()}"
        return Member(
            user_id=user_id,
            email=member.email or "",
            name=display_name or member.username or member.email or "Unknown",
            role=MemberRole.MEMBER,
        )

    async def _invite(self, group_id: str, member: MemberInput) -> Member:
        """Share the file with an email invitee, then build their member row."""
        display_name = None
        if member.email:
            permission = await self._storage.create_permission(group_id, "writer", "user", member.email)
            display_name = permission.get("displayName")
        return self._member_row_for_input(member, display_name)

    async def create(self, name: str, members: Optional[list[MemberInput]] = None) -> Group:
        """
        Create a group spreadsheet owned by the current user.

        Email invitees get writer access; everyone gets a Members row.
        The new group is put first in the cache and becomes active.
        """
        group_id = await self._storage.create_spreadsheet(
            f"{GROUP_TITLE_PREFIX}{name}",
            list(REQUIRED_SHEETS),
            {FILE_TYPE_PROPERTY: GROUP_FILE_TYPE, "version": GROUP_SCHEMA_VERSION},
        )

        owner = Member(
            user_id=self._user.id,
            email=self._user.email,
            name=self._user.name,
            role=MemberRole.OWNER,
        )
        rows = [owner]
        seen = {self._user.email, self._user.id}
        for member in members or []:
            if not member.key or member.key in seen:
                continue
            seen.add(member.key)
            rows.append(await self._invite(group_id, member))

        await self._storage.batch_update_values(group_id, [
            {"range": f"{EXPENSES_SHEET}!A1", "values": [EXPENSE_COLUMNS]},
            {"range": f"{SETTLEMENTS_SHEET}!A1", "values": [SETTLEMENT_COLUMNS]},
            {"range": f"{MEMBERS_SHEET}!A1", "values": [MEMBER_COLUMNS]},
            {"range": f"{MEMBERS_SHEET}!A2", "values": [member_to_row(m) for m in rows]},
        ])

        settings, _ = await self._load_reconciled()
        settings.group_cache = [entry for entry in settings.group_cache if entry.id != group_id]
        settings.group_cache.insert(0, GroupCacheEntry(
            id=group_id,
            name=name,
            role=MemberRole.OWNER,
            last_accessed=utcnow(),
        ))
        settings.active_group_id = group_id
        await self._persist(settings)

        self._audit.log_group_created(group_id, name, len(rows))
        return Group(
            id=group_id,
            name=name,
            created_by=self._user.id,
            participants=[m.user_id for m in rows],
            is_owner=True,
        )

    async def update_group(
        self,
        group_id: str,
        name: str,
        members: Optional[list[MemberInput]] = None,
    ) -> None:
        """
        Rename a group and, if `members` is given, sync its membership.

        Invitees not yet in the group are shared and appended. Non-owner
        members missing from `members` lose their row and their access.
        """
        settings, entry = await self._require_cached(group_id)

        await self._storage.update_file(group_id, {"name": f"{GROUP_TITLE_PREFIX}{name}"})

        added: list[str] = []
        removed: list[str] = []
        if members is not None:
            added, removed = await self._sync_members(group_id, members)

        if entry.name != name:
            entry.name = name
            await self._persist(settings)

        self._audit.log_group_updated(group_id, name, added, removed)

    async def _sync_members(
        self,
        group_id: str,
        desired: list[MemberInput],
    ) -> tuple[list[str], list[str]]:
        ledger = LedgerRepository(self._storage, group_id)
        current = await ledger.get_members_with_rows()

        keep: set[str] = set()
        added: list[str] = []
        for wanted in desired:
            if not wanted.key:
                continue
            existing = next(
                (
                    m for _, m in current
                    if (wanted.email and m.email == wanted.email)
                    or (wanted.username and m.user_id == wanted.username)
                ),
                None,
            )
            if existing is not None:
                keep.add(existing.user_id)
                continue
            if wanted.key in keep:
                continue
            member = await self._invite(group_id, wanted)
            await ledger.append_member(member)
            keep.add(member.user_id)
            added.append(member.user_id)

        doomed = [
            (row, m) for row, m in current
            if m.user_id not in keep and m.role != MemberRole.OWNER
        ]
        # Bottom-up so earlier deletes don't shift later rows
        doomed.sort(key=lambda item: item[0], reverse=True)
        for row, member in doomed:
            await ledger.delete_row(MEMBERS_SHEET, row)
            if member.email:
                await self._revoke(group_id, member.email)

        return added, [m.user_id for _, m in doomed]

    async def _revoke(self, group_id: str, email: str) -> bool:
        permissions = await self._storage.list_permissions(group_id)
        revoked = False
        for permission in permissions:
            if permission.get("emailAddress") == email and permission.get("role") != "owner":
                await self._storage.delete_permission(group_id, permission["id"])
                revoked = True
        return revoked

    async def delete_group(self, group_id: str) -> None:
        """
        Remove a group from this user's list.

        The owner deletes the spreadsheet. A member only gives up their own
        access; their Members row stays so the group's balances still add up.
        """
        settings, entry = await self._require_cached(group_id)

        unshared_only = entry.role != MemberRole.OWNER
        try:
            if unshared_only:
                await self._revoke(group_id, self._user.email)
            else:
                await self._storage.delete_file(group_id)
        except NotFoundError:
            # Already gone remotely; only the local entry is left to drop
            logger.info("group_already_removed", group_id=group_id)

        settings.group_cache = [e for e in settings.group_cache if e.id != group_id]
        if settings.active_group_id == group_id:
            settings.active_group_id = None
        self._fix_active_group(settings)
        await self._persist(settings)

        self._audit.log_group_deleted(group_id, unshared_only)

    async def leave_group(self, group_id: str) -> None:
        """
        Leave a group for good: drop this user's Members row and access.

        Only allowed while the user has no expenses in the group, so the
        remaining balances still add up without them.

        Raises:
            GroupNotFoundError: The group is not cached
            MemberNotFoundError: The user has no Members row
            OwnerActionError: The user owns the group
            MemberHasExpensesError: The user paid for or shares an expense
        """
        settings, _ = await self._require_cached(group_id)

        ledger = LedgerRepository(self._storage, group_id)
        data = await ledger.load()
        me = next(
            (m for m in data.members if m.user_id == self._user.id or (m.email and m.email == self._user.email)),
            None,
        )
        if me is None:
            raise MemberNotFoundError(self._user.id)
        if me.role == MemberRole.OWNER:
            raise OwnerActionError("Owners cannot leave their own group; delete it instead.")
        if any(
            e.paid_by_user_id == me.user_id or any(s.user_id == me.user_id and s.amount > 0 for s in e.splits)
            for e in data.expenses
        ):
            raise MemberHasExpensesError(me.user_id, group_id)

        await ledger.delete_row(MEMBERS_SHEET, data.member_rows[me.user_id])
        await self._revoke(group_id, self._user.email)

        settings.group_cache = [e for e in settings.group_cache if e.id != group_id]
        self._fix_active_group(settings)
        await self._persist(settings)

        self._audit.log_group_left(group_id)

    async def join_group(self, group_id: str) -> Group:
        """
        Join a group shared with this user (e.g. through a link).

        Adds the user to the Members sheet if needed, caches the group and
        makes it active.
        """
        try:
            meta = await self._storage.get_file(group_id)
        except NotFoundError:
            raise GroupNotFoundError(group_id)

        properties = meta.get("properties") or {}
        if properties.get(FILE_TYPE_PROPERTY) != GROUP_FILE_TYPE:
            raise InvalidGroupError(group_id)

        ledger = LedgerRepository(self._storage, group_id)
        members = await ledger.get_members()
        me = next(
            (m for m in members if m.user_id == self._user.id or m.email == self._user.email),
            None,
        )
        if me is None:
            me = Member(
                user_id=self._user.id,
                email=self._user.email,
                name=self._user.name,
                role=MemberRole.MEMBER,
            )
            await ledger.append_member(me)
            members.append(me)

        name = strip_group_prefix(meta.get("name", ""))
        settings, _ = await self._load_reconciled()
        entry = settings.find_group(group_id)
        settings.group_cache = [e for e in settings.group_cache if e.id != group_id]
        settings.group_cache.insert(0, GroupCacheEntry(
            id=group_id,
            name=name,
            role=entry.role if entry else self._role_of(meta),
            last_accessed=utcnow(),
        ))
        settings.active_group_id = group_id
        await self._persist(settings)

        self._audit.log_group_joined(group_id, name)
        owner = next((m for m in members if m.role == MemberRole.OWNER), None)
        return Group(
            id=group_id,
            name=name,
            created_by=owner.user_id if owner else "",
            participants=[m.user_id for m in members],
            is_owner=me.role == MemberRole.OWNER,
        )

    # -------------------------------------------------------------------------
    # Link sharing
    # -------------------------------------------------------------------------

    async def get_group_sharing(self, group_id: str) -> bool:
        """True if anyone with the link can open the group."""
        permissions = await self._storage.list_permissions(group_id)
        return any(p.get("type") == "anyone" for p in permissions)

    async def set_group_sharing(self, group_id: str, public: bool) -> None:
        permissions = await self._storage.list_permissions(group_id)
        anyone = [p for p in permissions if p.get("type") == "anyone"]

        if public and not anyone:
            await self._storage.create_permission(group_id, "writer", "anyone")
        elif not public:
            for permission in anyone:
                await self._storage.delete_permission(group_id, permission["id"])

        self._audit.log_group_sharing_changed(group_id, public)
