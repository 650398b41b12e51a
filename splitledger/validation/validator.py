"""
Two-Stage Expense Validation

DESIGN DECISION: The ledger engine accepts whatever is stored, including
expenses whose splits don't add up to their amount; balances stay zero-sum
regardless. Validation therefore lives upstream, in front of writes, and
never changes how balances are computed.

STAGE 1 - STRUCTURAL (errors, block the write):
- The same member appears in two splits
- Every split is zero, so nobody owes anything

STAGE 2 - CONSISTENCY (warnings, reported only):
- sum(splits) differs from the expense amount
- The payer or a split user is not a member of the group

IMPORTANT: Validation NEVER silently fixes issues.
It reports them and lets the caller decide.
"""

from decimal import Decimal
from typing import Optional, Protocol

from splitledger.models.group import Member
from splitledger.models.ledger import ExpenseSplit, ValidationIssue, ValidationResult


CENT = Decimal("0.01")


class ExpenseLike(Protocol):
    amount: Decimal
    paid_by_user_id: str
    splits: list[ExpenseSplit]


class ExpenseValidator:
    """
    Validates an expense payload against the group's members.

    Works on anything shaped like an expense (ExpenseCreate, Expense).
    """

    def _validate_structure(self, expense: ExpenseLike) -> list[ValidationIssue]:
        issues = []

        seen = set()
        duplicates = []
        for split in expense.splits:
            if split.user_id in seen and split.user_id not in duplicates:
                duplicates.append(split.user_id)
            seen.add(split.user_id)
        for user_id in duplicates:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="duplicate_split",
                message=f"{user_id} appears in more than one split",
                severity="error",
                suggested_fix="Merge the shares into a single split",
            ))

        if expense.splits and all(split.amount == 0 for split in expense.splits):
            issues.append(ValidationIssue(
                field="splits",
                issue_type="empty_split",
                message="Every split is zero, so the expense would not be shared",
                severity="error",
                suggested_fix="Assign the amount to at least one member",
            ))

        return issues

    def _validate_consistency(
        self,
        expense: ExpenseLike,
        members: Optional[list[Member]],
    ) -> list[ValidationIssue]:
        issues = []

        split_total = sum((split.amount for split in expense.splits), Decimal("0"))
        if abs(split_total - expense.amount) >= CENT:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="split_mismatch",
                message=f"Splits add up to {split_total} but the expense amount is {expense.amount}",
                severity="warning",
                suggested_fix="Balances follow the splits; adjust them if the amount is right",
            ))

        # Membership can only be checked when we know the members
        if members:
            member_ids = {member.user_id for member in members}
            if expense.paid_by_user_id not in member_ids:
                issues.append(ValidationIssue(
                    field="paid_by_user_id",
                    issue_type="unknown_member",
                    message=f"Payer {expense.paid_by_user_id} is not a member of this group",
                    severity="warning",
                ))
            for split in expense.splits:
                if split.user_id not in member_ids:
                    issues.append(ValidationIssue(
                        field="splits",
                        issue_type="unknown_member",
                        message=f"{split.user_id} is not a member of this group",
                        severity="warning",
                    ))

        return issues

    def validate(
        self,
        expense: ExpenseLike,
        members: Optional[list[Member]] = None,
    ) -> ValidationResult:
        """
        Run both stages.

        Args:
            expense: The expense payload to check
            members: Current group members; membership checks are skipped if None

        Returns:
            ValidationResult with all issues found
        """
        issues = self._validate_structure(expense)
        issues.extend(self._validate_consistency(expense, members))
        return ValidationResult(issues=issues)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Plain-text summary suitable for showing to the user."""
        if not result.issues:
            return "All checks passed."

        lines = []
        errors = [issue for issue in result.issues if issue.severity == "error"]
        if errors:
            lines.append("The expense can't be saved:")
            for issue in errors:
                lines.append(f"  - {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"    {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please double-check:")
            for issue in result.warnings:
                lines.append(f"  - {issue.message}")

        return "\n".join(lines)
