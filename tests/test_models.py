"""
Tests for SplitLedger models

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows against the in-memory storage driver
3. No real API calls in tests
"""

import pytest
from decimal import Decimal

from pydantic import ValidationError

from splitledger.models.group import (
    GroupCacheEntry,
    Member,
    MemberInput,
    MemberRole,
    Preferences,
    User,
    UserSettings,
    strip_group_prefix,
)
from splitledger.models.ledger import (
    Expense,
    ExpenseCreate,
    ExpenseSplit,
    SettlementCreate,
    ValidationIssue,
    ValidationResult,
)
from splitledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestGroupModels:
    """Tests for group and settings models."""

    def test_user_strips_whitespace(self):
        """Test that whitespace is stripped from identity fields."""
        user = User(id=" u1 ", email="  a@example.com ")
        assert user.id == "u1"
        assert user.email == "a@example.com"

    def test_member_accepts_sheet_header_names(self):
        """Test that camelCase sheet headers populate snake_case fields."""
        member = Member.model_validate({"userId": "u1", "email": "a@x", "role": "owner"})
        assert member.user_id == "u1"
        assert member.role == MemberRole.OWNER

    def test_member_input_key(self):
        assert MemberInput(email="a@x", username="alias").key == "a@x"
        assert MemberInput(username="alias").key == "alias"
        assert MemberInput().key == ""

    def test_strip_group_prefix(self):
        assert strip_group_prefix("SplitLedger - Trip") == "Trip"
        assert strip_group_prefix("Someone's sheet") == "Someone's sheet"

    def test_settings_document_uses_camel_case(self):
        """Test that the persisted document keeps the shared key names."""
        settings = UserSettings(
            active_group_id="g1",
            group_cache=[GroupCacheEntry(id="g1", name="Trip", role=MemberRole.OWNER)],
        )
        document = settings.to_document()
        assert document["activeGroupId"] == "g1"
        assert document["groupCache"][0] == {"id": "g1", "name": "Trip", "role": "owner", "lastAccessed": None}
        assert document["preferences"]["defaultCurrency"] == "USD"
        assert "lastUpdated" in document

    def test_settings_document_round_trip(self):
        document = UserSettings(active_group_id="g1").to_document()
        assert UserSettings.model_validate(document).active_group_id == "g1"

    def test_preferences_keep_unknown_keys(self):
        """Test that keys written by other clients survive a rewrite."""
        prefs = Preferences.model_validate({"defaultCurrency": "EUR", "compactMode": True})
        dumped = prefs.model_dump(by_alias=True)
        assert dumped["defaultCurrency"] == "EUR"
        assert dumped["compactMode"] is True

    def test_preferences_reject_unknown_theme(self):
        with pytest.raises(ValidationError):
            Preferences(theme="neon")

    def test_find_group(self):
        settings = UserSettings(group_cache=[GroupCacheEntry(id="g1", name="Trip")])
        assert settings.find_group("g1").name == "Trip"
        assert settings.find_group("g2") is None


class TestLedgerModels:
    """Tests for expense and settlement models."""

    def test_stored_expense_accepts_mismatched_splits(self):
        """Test that stored records are not validated against their amount."""
        expense = Expense(
            amount=Decimal("22.59"),
            paid_by_user_id="u1",
            splits=[ExpenseSplit(user_id="u1", amount=Decimal("11.30"))],
        )
        assert expense.id

    def test_expense_create_rejects_negative_split(self):
        """Test that negative shares are rejected."""
        with pytest.raises(ValidationError):
            ExpenseCreate(
                description="Dinner",
                amount=Decimal("10"),
                paid_by_user_id="u1",
                splits=[ExpenseSplit(user_id="u1", amount=Decimal("-1"))],
            )

    def test_expense_create_requires_positive_amount(self):
        with pytest.raises(ValidationError):
            ExpenseCreate(
                description="Dinner",
                amount=Decimal("0"),
                paid_by_user_id="u1",
                splits=[ExpenseSplit(user_id="u1", amount=Decimal("0"))],
            )

    def test_expense_create_requires_splits(self):
        with pytest.raises(ValidationError):
            ExpenseCreate(description="Dinner", amount=Decimal("10"), paid_by_user_id="u1", splits=[])

    def test_expense_create_from_aliases(self):
        data = ExpenseCreate.model_validate({
            "description": "  Taxi  ",
            "amount": "12.50",
            "paidByUserId": "u1",
            "splits": [{"userId": "u1", "amount": "12.50"}],
        })
        assert data.description == "Taxi"
        assert data.splits[0].amount == Decimal("12.50")
        assert data.category == "General"

    def test_settlement_create_defaults(self):
        settlement = SettlementCreate(from_user_id="u2", to_user_id="u1", amount=Decimal("5"))
        assert settlement.method == "cash"
        assert settlement.date is None


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.GROUP_CREATED,
            description="Group created",
        )
        assert event.event_type == AuditEventType.GROUP_CREATED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_ADDED,
            description="Expense added",
            group_id="g1",
            details={"amount": "30.00"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "expense_added"
        assert log_dict["group_id"] == "g1"
        assert log_dict["details"]["amount"] == "30.00"

    def test_audit_event_builder_group_deleted(self):
        """Test that unsharing and deleting are told apart."""
        unshared = AuditEventBuilder.group_deleted("g1", unshared_only=True, actor_email="a@x")
        deleted = AuditEventBuilder.group_deleted("g1", unshared_only=False, actor_email="a@x")
        assert unshared.description == "Group unshared"
        assert deleted.description == "Group deleted"
        assert unshared.entity_id == "g1"

    def test_audit_event_builder_ledger_record_changed(self):
        event = AuditEventBuilder.ledger_record_changed(
            AuditEventType.SETTLEMENT_DELETED, "g1", "settlement", "s1", "a@x"
        )
        assert event.description == "Settlement deleted"
        assert event.details == {}
        assert event.entity_id == "s1"

    def test_audit_event_builder_settings_changed(self):
        event = AuditEventBuilder.settings_changed(AuditEventType.ACTIVE_GROUP_CHANGED, "a@x", "g2")
        assert event.description == "Active group changed"
        assert event.details == {"active_group_id": "g2"}

    def test_system_error_severity(self):
        event = AuditEventBuilder.system_error("StorageError", "quota exceeded")
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "quota exceeded"


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            issues=[
                ValidationIssue(
                    field="splits",
                    issue_type="duplicate_split",
                    message="u1 appears twice",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1
        assert result.is_valid is False

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            issues=[
                ValidationIssue(
                    field="splits",
                    issue_type="split_mismatch",
                    message="Splits don't add up",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
        assert len(result.warnings) == 1

    def test_severity_is_restricted(self):
        with pytest.raises(ValidationError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
