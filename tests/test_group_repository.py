"""
Tests for the group repository and settings reconciliation.

Two accounts (alice, bob) share one in-memory drive, so sharing,
unsharing and deletion by another user can be observed from both sides.
"""

import json
from decimal import Decimal

import pytest

from splitledger.errors import (
    GroupNotFoundError,
    InvalidGroupError,
    MemberHasExpensesError,
    MemberNotFoundError,
    OwnerActionError,
)
from splitledger.groups import GroupRepository
from splitledger.ledger import LedgerRepository, LedgerService
from splitledger.models.group import (
    ACCOUNT_PROPERTY,
    GROUP_TITLE_PREFIX,
    SETTINGS_FILE_NAME,
    MemberInput,
    MemberRole,
    Preferences,
)
from splitledger.models.ledger import ExpenseCreate, ExpenseSplit
from splitledger.services.storage import InMemoryStorage, NotFoundError, StorageError


class FlakyStorage(InMemoryStorage):
    """In-memory storage whose metadata/content updates can be made to fail."""

    fail_updates = False

    async def update_file(self, file_id, metadata=None, content=None):
        if self.fail_updates:
            raise StorageError("backend unavailable")
        return await super().update_file(file_id, metadata, content)


async def settings_document(storage, email):
    files = await storage.list_files(
        f"name = '{SETTINGS_FILE_NAME}' and properties has {{ key='{ACCOUNT_PROPERTY}' and value='{email}' }}"
    )
    assert len(files) == 1
    return files[0]["id"], await storage.get_file(files[0]["id"], alt="media")


class TestSettingsDocument:
    """Tests for loading and persisting the settings document."""

    @pytest.mark.asyncio
    async def test_first_load_synthesizes_and_persists_defaults(self, alice_groups, alice_storage):
        """Test that a missing document is created with defaults."""
        settings = await alice_groups.get_settings()

        assert settings.group_cache == []
        assert settings.active_group_id is None
        assert settings.preferences.default_currency == "USD"

        _, document = await settings_document(alice_storage, "alice@example.com")
        assert document["version"] == 1
        assert document["groupCache"] == []
        assert "activeGroupId" in document

    @pytest.mark.asyncio
    async def test_default_preferences_are_configurable(self, alice_storage, alice):
        repo = GroupRepository(alice_storage, alice, default_preferences=Preferences(default_currency="EUR"))
        settings = await repo.get_settings()
        assert settings.preferences.default_currency == "EUR"

    @pytest.mark.asyncio
    async def test_unreadable_document_is_replaced(self, alice_groups, alice_storage):
        """Test that a document without a version is treated as missing."""
        await alice_storage.create_file(
            SETTINGS_FILE_NAME,
            "application/json",
            {ACCOUNT_PROPERTY: "alice@example.com"},
            json.dumps({"garbage": True}),
        )

        settings = await alice_groups.get_settings()

        assert settings.version == 1
        _, document = await settings_document(alice_storage, "alice@example.com")
        assert document["version"] == 1

    @pytest.mark.asyncio
    async def test_documents_are_per_account(self, alice_groups, bob_groups, alice_storage, bob_storage):
        await alice_groups.create("Alice only")
        bob_settings = await bob_groups.get_settings()
        assert bob_settings.group_cache == []
        await settings_document(bob_storage, "bob@example.com")

    @pytest.mark.asyncio
    async def test_returned_settings_are_a_copy(self, alice_groups):
        """Test that mutating the result doesn't change the repository state."""
        group = await alice_groups.create("Trip")
        settings = await alice_groups.get_settings()
        settings.active_group_id = "tampered"
        assert alice_groups.active_group_id == group.id

    @pytest.mark.asyncio
    async def test_save_settings_round_trip(self, alice_groups, alice_storage, alice):
        settings = await alice_groups.get_settings()
        settings.preferences.theme = "dark"
        await alice_groups.save_settings(settings)

        reloaded = await GroupRepository(alice_storage, alice).get_settings()
        assert reloaded.preferences.theme == "dark"
        assert reloaded.last_updated is not None


class TestCreateAndDelete:
    """Tests for the group lifecycle."""

    @pytest.mark.asyncio
    async def test_created_group_is_cached_as_owner(self, alice_groups):
        group = await alice_groups.create("Trip")

        settings = await alice_groups.get_settings()

        assert group.is_owner
        assert [(e.id, e.name, e.role) for e in settings.group_cache] == [(group.id, "Trip", MemberRole.OWNER)]
        assert settings.active_group_id == group.id

    @pytest.mark.asyncio
    async def test_create_lays_out_sheets_and_members(self, alice_groups, alice_storage, bob_storage):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com"), MemberInput(username="carl")])

        meta = await alice_storage.get_file(group.id)
        assert meta["name"] == f"{GROUP_TITLE_PREFIX}Trip"
        assert meta["properties"]["splitledger_type"] == "group"

        members = await LedgerRepository(alice_storage, group.id).get_members()
        assert [(m.user_id, m.role) for m in members] == [
            ("u-alice", MemberRole.OWNER),
            ("bob@example.com", MemberRole.MEMBER),
            ("carl", MemberRole.MEMBER),
        ]
        assert members[1].name == "bob"
        assert group.participants == ["u-alice", "bob@example.com", "carl"]

        # Email invitees get access, usernames don't
        await bob_storage.get_file(group.id)

    @pytest.mark.asyncio
    async def test_new_group_goes_first(self, alice_groups):
        first = await alice_groups.create("First")
        second = await alice_groups.create("Second")
        settings = await alice_groups.get_settings()
        assert [e.id for e in settings.group_cache] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_owner_delete_removes_file_and_entry(self, alice_groups, alice_storage):
        keep = await alice_groups.create("Keep")
        doomed = await alice_groups.create("Doomed")

        await alice_groups.delete_group(doomed.id)

        settings = await alice_groups.get_settings()
        assert [e.id for e in settings.group_cache] == [keep.id]
        assert settings.active_group_id == keep.id
        with pytest.raises(NotFoundError):
            await alice_storage.get_file(doomed.id)

    @pytest.mark.asyncio
    async def test_member_delete_only_unshares(self, alice_groups, bob_groups, alice_storage, bob_storage):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])
        await bob_groups.get_settings()

        await bob_groups.delete_group(group.id)

        assert (await bob_groups.get_settings()).group_cache == []
        with pytest.raises(NotFoundError):
            await bob_storage.get_file(group.id)
        # Alice still has the group, and bob's ledger row stays
        members = await LedgerRepository(alice_storage, group.id).get_members()
        assert "bob@example.com" in [m.user_id for m in members]

    @pytest.mark.asyncio
    async def test_owner_delete_of_vanished_file_drops_entry(self, alice_groups, alice_storage):
        """Test that a file removed elsewhere is still cleaned up locally."""
        keep = await alice_groups.create("Keep")
        gone = await alice_groups.create("Gone")
        await alice_storage.delete_file(gone.id)

        await alice_groups.delete_group(gone.id)

        settings = await alice_groups.get_settings()
        assert [e.id for e in settings.group_cache] == [keep.id]
        assert settings.active_group_id == keep.id

    @pytest.mark.asyncio
    async def test_member_delete_of_vanished_file_drops_entry(self, alice_groups, bob_groups, bob_storage):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])
        await bob_groups.get_settings()
        await alice_groups.delete_group(group.id)

        await bob_groups.delete_group(group.id)

        _, document = await settings_document(bob_storage, "bob@example.com")
        assert document["groupCache"] == []
        assert document["activeGroupId"] is None

    @pytest.mark.asyncio
    async def test_unknown_group_is_a_domain_error(self, alice_groups):
        await alice_groups.get_settings()
        with pytest.raises(GroupNotFoundError):
            await alice_groups.delete_group("nope")
        with pytest.raises(GroupNotFoundError):
            await alice_groups.update_group("nope", "Name")
        with pytest.raises(GroupNotFoundError):
            await alice_groups.update_active_group("nope")


class TestReconciliation:
    """Tests for bringing the cache in line with Drive."""

    @pytest.mark.asyncio
    async def test_shared_group_appears_as_member(self, alice_groups, bob_groups):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])

        settings = await bob_groups.get_settings()

        assert [(e.id, e.name, e.role) for e in settings.group_cache] == [(group.id, "Trip", MemberRole.MEMBER)]
        assert settings.active_group_id == group.id

    @pytest.mark.asyncio
    async def test_added_groups_are_newest_first(self, alice_groups, bob_groups):
        older = await alice_groups.create("Older", [MemberInput(email="bob@example.com")])
        newer = await alice_groups.create("Newer", [MemberInput(email="bob@example.com")])

        settings = await bob_groups.get_settings()

        assert [e.id for e in settings.group_cache] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_vanished_group_is_pruned(self, alice_groups, bob_groups):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])
        await bob_groups.get_settings()

        await alice_groups.delete_group(group.id)
        settings = await bob_groups.get_settings()

        assert settings.group_cache == []
        assert settings.active_group_id is None

    @pytest.mark.asyncio
    async def test_renamed_group_refreshes_cached_name(self, alice_groups, bob_groups):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])
        await bob_groups.get_settings()

        await alice_groups.update_group(group.id, "Road trip")

        settings = await bob_groups.get_settings()
        assert settings.group_cache[0].name == "Road trip"

    @pytest.mark.asyncio
    async def test_ownership_transfer_refreshes_cached_role(self, drive, alice_groups, bob_groups):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])
        await bob_groups.get_settings()

        stored = drive.files[group.id]
        stored.owner_email = "bob@example.com"
        stored.permissions.append(
            {"id": "perm-alice", "role": "writer", "type": "user", "emailAddress": "alice@example.com"}
        )

        assert (await bob_groups.get_settings()).group_cache[0].role == MemberRole.OWNER
        assert (await alice_groups.get_settings()).group_cache[0].role == MemberRole.MEMBER

    @pytest.mark.asyncio
    async def test_reconcile_reaches_a_fixed_point(self, alice_groups, bob_groups, bob_storage):
        """Test that a second pass changes nothing and writes nothing."""
        await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])
        first = await bob_groups.reconcile_groups()
        settings_id, _ = await settings_document(bob_storage, "bob@example.com")
        marker = await bob_storage.get_last_modified(settings_id)

        second = await bob_groups.reconcile_groups()

        assert second.group_cache == first.group_cache
        assert second.active_group_id == first.active_group_id
        assert await bob_storage.get_last_modified(settings_id) == marker


class TestUpdateGroup:
    """Tests for renaming and membership sync."""

    @pytest.mark.asyncio
    async def test_rename_updates_file_and_cache(self, alice_groups, alice_storage):
        group = await alice_groups.create("Trip")

        await alice_groups.update_group(group.id, "Ski trip")

        assert (await alice_storage.get_file(group.id))["name"] == f"{GROUP_TITLE_PREFIX}Ski trip"
        assert (await alice_groups.get_settings()).group_cache[0].name == "Ski trip"

    @pytest.mark.asyncio
    async def test_membership_sync(self, alice_groups, alice_storage, bob_storage):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])

        await alice_groups.update_group(group.id, "Trip", [MemberInput(email="carol@example.com")])

        members = await LedgerRepository(alice_storage, group.id).get_members()
        assert [m.user_id for m in members] == ["u-alice", "carol@example.com"]
        with pytest.raises(NotFoundError):
            await bob_storage.get_file(group.id)
        emails = [p.get("emailAddress") for p in await alice_storage.list_permissions(group.id)]
        assert "carol@example.com" in emails
        assert "bob@example.com" not in emails

    @pytest.mark.asyncio
    async def test_existing_members_are_kept(self, alice_groups, alice_storage):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])

        await alice_groups.update_group(group.id, "Trip", [MemberInput(email="bob@example.com")])

        members = await LedgerRepository(alice_storage, group.id).get_members()
        assert [m.user_id for m in members] == ["u-alice", "bob@example.com"]

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_cache_untouched(self, drive, alice):
        """Test that the remote write happens before the settings write."""
        storage = FlakyStorage(drive, alice.email)
        repo = GroupRepository(storage, alice)
        group = await repo.create("Trip")

        storage.fail_updates = True
        with pytest.raises(StorageError):
            await repo.update_group(group.id, "Renamed")

        storage.fail_updates = False
        assert (await repo.get_settings()).group_cache[0].name == "Trip"


class TestActiveGroup:
    """Tests for update_active_group."""

    @pytest.mark.asyncio
    async def test_switch_is_persisted(self, alice_groups, alice_storage, alice):
        first = await alice_groups.create("First")
        await alice_groups.create("Second")

        await alice_groups.update_active_group(first.id)

        assert alice_groups.active_group_id == first.id
        fresh = GroupRepository(alice_storage, alice)
        assert (await fresh.get_settings()).active_group_id == first.id

    @pytest.mark.asyncio
    async def test_switch_is_applied_locally_first(self, drive, alice):
        """Test that the local state changes even if the write fails."""
        storage = FlakyStorage(drive, alice.email)
        repo = GroupRepository(storage, alice)
        first = await repo.create("First")
        await repo.create("Second")

        storage.fail_updates = True
        with pytest.raises(StorageError):
            await repo.update_active_group(first.id)

        assert repo.active_group_id == first.id

    @pytest.mark.asyncio
    async def test_switch_does_not_list_groups(self, alice_groups, alice_storage, monkeypatch):
        group = await alice_groups.create("Trip")
        calls = []
        original = alice_storage.list_files

        async def counting_list_files(query, fields=None):
            calls.append(query)
            return await original(query, fields)

        monkeypatch.setattr(alice_storage, "list_files", counting_list_files)
        await alice_groups.update_active_group(group.id)

        assert calls == []


class TestJoinAndSharing:
    """Tests for link sharing and joining."""

    @pytest.mark.asyncio
    async def test_join_through_link(self, alice_groups, bob_groups, alice_storage):
        group = await alice_groups.create("Trip")
        await alice_groups.set_group_sharing(group.id, True)
        assert await alice_groups.get_group_sharing(group.id) is True

        joined = await bob_groups.join_group(group.id)

        assert joined.participants == ["u-alice", "u-bob"]
        assert joined.created_by == "u-alice"
        assert not joined.is_owner
        settings = await bob_groups.get_settings()
        assert settings.active_group_id == group.id
        assert settings.group_cache[0].role == MemberRole.MEMBER

    @pytest.mark.asyncio
    async def test_join_twice_adds_one_row(self, alice_groups, bob_groups, alice_storage):
        group = await alice_groups.create("Trip")
        await alice_groups.set_group_sharing(group.id, True)

        await bob_groups.join_group(group.id)
        await bob_groups.join_group(group.id)

        members = await LedgerRepository(alice_storage, group.id).get_members()
        assert [m.user_id for m in members] == ["u-alice", "u-bob"]

    @pytest.mark.asyncio
    async def test_disabling_link_hides_group(self, alice_groups, bob_groups):
        group = await alice_groups.create("Trip")
        await alice_groups.set_group_sharing(group.id, True)
        await bob_groups.join_group(group.id)

        await alice_groups.set_group_sharing(group.id, False)

        assert await alice_groups.get_group_sharing(group.id) is False
        assert (await bob_groups.get_settings()).group_cache == []

    @pytest.mark.asyncio
    async def test_join_rejects_non_group_files(self, alice_storage, bob_groups):
        file_id = await alice_storage.create_file("random.json", "application/json")
        await alice_storage.create_permission(file_id, "reader", "anyone")

        with pytest.raises(InvalidGroupError):
            await bob_groups.join_group(file_id)

    @pytest.mark.asyncio
    async def test_join_invisible_group(self, bob_groups):
        with pytest.raises(GroupNotFoundError):
            await bob_groups.join_group("missing")


class TestLeaveGroup:
    """Tests for leaving a group as a member."""

    @pytest.mark.asyncio
    async def test_member_leaves(self, alice_groups, bob_groups, alice_storage, bob_storage):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])
        await bob_groups.get_settings()

        await bob_groups.leave_group(group.id)

        members = await LedgerRepository(alice_storage, group.id).get_members()
        assert [m.user_id for m in members] == ["u-alice"]
        with pytest.raises(NotFoundError):
            await bob_storage.get_file(group.id)
        assert (await bob_groups.get_settings()).group_cache == []

    @pytest.mark.asyncio
    async def test_owner_cannot_leave(self, alice_groups):
        group = await alice_groups.create("Trip")
        with pytest.raises(OwnerActionError):
            await alice_groups.leave_group(group.id)

    @pytest.mark.asyncio
    async def test_member_with_expenses_cannot_leave(self, alice_groups, bob_groups, alice_storage, alice):
        group = await alice_groups.create("Trip", [MemberInput(email="bob@example.com")])
        await LedgerService(LedgerRepository(alice_storage, group.id), alice).add_expense(ExpenseCreate(
            description="Taxi",
            amount=Decimal("20"),
            paid_by_user_id="u-alice",
            splits=[ExpenseSplit(user_id="bob@example.com", amount=Decimal("20"))],
        ))
        await bob_groups.get_settings()

        with pytest.raises(MemberHasExpensesError):
            await bob_groups.leave_group(group.id)

    @pytest.mark.asyncio
    async def test_link_visitor_without_row(self, alice_groups, bob_groups):
        """Test that seeing a shared link doesn't make you a member."""
        group = await alice_groups.create("Trip")
        await alice_groups.set_group_sharing(group.id, True)
        await bob_groups.get_settings()

        with pytest.raises(MemberNotFoundError):
            await bob_groups.leave_group(group.id)
