"""
Data Models Package

This package contains all Pydantic models used in SplitLedger.
All data flowing through the system must conform to these schemas.
"""

from splitledger.models.group import (
    EXPENSE_COLUMNS,
    GROUP_TITLE_PREFIX,
    MEMBER_COLUMNS,
    REQUIRED_SHEETS,
    SETTINGS_FILE_NAME,
    SETTLEMENT_COLUMNS,
    Group,
    GroupCacheEntry,
    Member,
    MemberInput,
    MemberRole,
    Preferences,
    User,
    UserSettings,
)
from splitledger.models.ledger import (
    Expense,
    ExpenseCreate,
    ExpenseSplit,
    ExpenseUpdate,
    ExpenseUserStatus,
    LedgerSummary,
    Settlement,
    SettlementCreate,
    SettlementSuggestion,
    SettlementUpdate,
    ValidationIssue,
    ValidationResult,
)
from splitledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Persistence constants
    "EXPENSE_COLUMNS",
    "GROUP_TITLE_PREFIX",
    "MEMBER_COLUMNS",
    "REQUIRED_SHEETS",
    "SETTINGS_FILE_NAME",
    "SETTLEMENT_COLUMNS",
    # Group models
    "Group",
    "GroupCacheEntry",
    "Member",
    "MemberInput",
    "MemberRole",
    "Preferences",
    "User",
    "UserSettings",
    # Ledger models
    "Expense",
    "ExpenseCreate",
    "ExpenseSplit",
    "ExpenseUpdate",
    "ExpenseUserStatus",
    "LedgerSummary",
    "Settlement",
    "SettlementCreate",
    "SettlementSuggestion",
    "SettlementUpdate",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
