"""
Tests for the upstream expense validator.
"""

from decimal import Decimal

import pytest

from splitledger.models.group import Member
from splitledger.models.ledger import Expense, ExpenseCreate, ExpenseSplit
from splitledger.validation import ExpenseValidator


MEMBERS = [Member(user_id="u1"), Member(user_id="u2")]


@pytest.fixture
def validator():
    return ExpenseValidator()


def payload(amount="20", payer="u1", splits=(("u1", "10"), ("u2", "10"))):
    return ExpenseCreate(
        description="Lunch",
        amount=Decimal(amount),
        paid_by_user_id=payer,
        splits=[ExpenseSplit(user_id=uid, amount=Decimal(a)) for uid, a in splits],
    )


def issue_types(result):
    return sorted(issue.issue_type for issue in result.issues)


class TestStructuralStage:
    """Error-level checks that block a write."""

    def test_clean_expense_passes(self, validator):
        result = validator.validate(payload(), MEMBERS)
        assert result.is_valid
        assert result.issues == []

    def test_duplicate_split_user(self, validator):
        """Test that each duplicated user is reported once."""
        result = validator.validate(payload(splits=(("u1", "5"), ("u1", "5"), ("u1", "10"))), MEMBERS)
        assert issue_types(result) == ["duplicate_split"]
        assert result.has_errors

    def test_all_zero_splits(self, validator):
        result = validator.validate(payload(splits=(("u1", "0"), ("u2", "0"))), MEMBERS)
        assert "empty_split" in issue_types(result)
        assert result.error_count == 1


class TestConsistencyStage:
    """Warning-level checks that are reported only."""

    def test_split_mismatch_is_a_warning(self, validator):
        result = validator.validate(payload(amount="22.59", splits=(("u1", "11.30"), ("u2", "11.30"))), MEMBERS)
        assert issue_types(result) == ["split_mismatch"]
        assert result.is_valid

    def test_sub_cent_difference_is_tolerated(self, validator):
        """Test that thirds rounding to the amount raise nothing."""
        result = validator.validate(
            payload(amount="100", splits=(("u1", "33.333"), ("u2", "66.666"))),
            MEMBERS,
        )
        assert result.issues == []

    def test_unknown_payer_and_split_user(self, validator):
        result = validator.validate(payload(payer="ghost", splits=(("u1", "10"), ("u3", "10"))), MEMBERS)
        assert issue_types(result) == ["unknown_member", "unknown_member"]
        assert {issue.field for issue in result.warnings} == {"paid_by_user_id", "splits"}

    def test_membership_skipped_without_members(self, validator):
        result = validator.validate(payload(payer="ghost"))
        assert result.issues == []

    def test_works_on_stored_expenses(self, validator):
        """Test that a stored Expense can be validated as well."""
        expense = Expense(amount=Decimal("10"), paid_by_user_id="u1", splits=[])
        result = validator.validate(expense, MEMBERS)
        assert issue_types(result) == ["split_mismatch"]


class TestSummary:
    """Tests for the plain-text summary."""

    def test_summary_for_clean_result(self, validator):
        assert validator.get_user_friendly_summary(validator.validate(payload(), MEMBERS)) == "All checks passed."

    def test_summary_lists_errors_then_warnings(self, validator):
        result = validator.validate(payload(amount="30", splits=(("u1", "10"), ("u1", "10"))), MEMBERS)

        summary = validator.get_user_friendly_summary(result)

        assert summary.startswith("The expense can't be saved:")
        assert "Merge the shares into a single split" in summary
        assert summary.index("Please double-check:") > summary.index("u1 appears in more than one split")
