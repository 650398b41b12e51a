"""
Domain Errors

Transport failures are raised by the storage layer (see
`splitledger.services.storage.interface`) and propagate untouched.
The errors here describe requests that make no sense against the
current state of a group or of the user's settings.
"""

from typing import Optional

from splitledger.models.ledger import ValidationResult


class SplitLedgerError(Exception):
    """Base exception for domain errors."""
    pass


class GroupNotFoundError(SplitLedgerError):
    """The user's settings have no record of this group."""

    def __init__(self, group_id: str):
        self.group_id = group_id
        super().__init__(f"Group not found in settings: {group_id}")


class InvalidGroupError(SplitLedgerError):
    """The file exists but is not a SplitLedger group."""

    def __init__(self, file_id: str, reason: str = "missing group metadata"):
        self.file_id = file_id
        super().__init__(f"File {file_id} is not a valid group: {reason}")


class ExpenseNotFoundError(SplitLedgerError):
    def __init__(self, expense_id: str):
        self.expense_id = expense_id
        super().__init__(f"Expense not found: {expense_id}")


class SettlementNotFoundError(SplitLedgerError):
    def __init__(self, settlement_id: str):
        self.settlement_id = settlement_id
        super().__init__(f"Settlement not found: {settlement_id}")


class MemberNotFoundError(SplitLedgerError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Member not found: {user_id}")


class NotAGroupMemberError(SplitLedgerError):
    """The acting user is not listed in the group's Members sheet."""

    def __init__(self, user_email: str, group_id: str):
        self.user_email = user_email
        self.group_id = group_id
        super().__init__(f"{user_email} is not a member of group {group_id}")


class OwnerActionError(SplitLedgerError):
    """The action is not allowed for (or against) the group owner."""
    pass


class MemberHasExpensesError(SplitLedgerError):
    """The member still appears in expenses and cannot leave."""

    def __init__(self, user_id: str, group_id: str):
        self.user_id = user_id
        self.group_id = group_id
        super().__init__(f"{user_id} has expenses in group {group_id}")


class ConflictError(SplitLedgerError):
    """The record was modified by someone else since it was read."""

    def __init__(self, message: str = "Data has been modified by another user."):
        super().__init__(message)


class ExpenseValidationError(SplitLedgerError):
    """The expense payload has error-level validation issues."""

    def __init__(self, result: ValidationResult, message: Optional[str] = None):
        self.result = result
        if message is None:
            message = "; ".join(i.message for i in result.issues if i.severity == "error")
        super().__init__(message)
