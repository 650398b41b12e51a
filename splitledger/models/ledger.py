"""
Ledger Models for SplitLedger

Expenses and settlements of one group, plus the read models the ledger
engine produces from them.

DESIGN DECISION: Money is Decimal everywhere. Sheets hand us floats and
strings; they are converted once at the boundary so the engine can do exact
arithmetic and guarantee that balances sum to zero.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from splitledger.models.group import utcnow


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# CORE LEDGER RECORDS
# =============================================================================

class ExpenseSplit(BaseModel):
    """The portion of an expense attributed to one member."""
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    amount: Decimal = Decimal("0")


class Expense(BaseModel):
    """
    A row of the Expenses sheet.

    `sum(splits)` should equal `amount`, but nothing here enforces it:
    stored data written by other clients is accepted as-is.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    description: str = ""
    amount: Decimal = Decimal("0")
    paid_by_user_id: str = Field(..., alias="paidByUserId")
    category: str = ""
    date: datetime = Field(default_factory=utcnow)
    splits: list[ExpenseSplit] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")


class Settlement(BaseModel):
    """A direct payment reducing `from_user_id`'s debt to `to_user_id`."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    date: datetime = Field(default_factory=utcnow)
    from_user_id: str = Field(..., alias="fromUserId")
    to_user_id: str = Field(..., alias="toUserId")
    amount: Decimal = Decimal("0")
    method: str = "cash"
    notes: Optional[str] = None


# =============================================================================
# INPUT DTOs
# =============================================================================

class ExpenseCreate(BaseModel):
    """Payload for a new expense. Stricter than the stored record."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0)
    paid_by_user_id: str = Field(..., min_length=1, alias="paidByUserId")
    category: str = "General"
    date: datetime = Field(default_factory=utcnow)
    splits: list[ExpenseSplit] = Field(..., min_length=1)

    @field_validator('splits')
    @classmethod
    def validate_split_amounts(cls, v: list[ExpenseSplit]) -> list[ExpenseSplit]:
        """Negative shares make no sense for an expense."""
        for split in v:
            if split.amount < 0:
                raise ValueError(f"Split amount for {split.user_id} cannot be negative")
        return v


class ExpenseUpdate(BaseModel):
    """Partial update of an expense; None means keep the stored value."""
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    description: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    paid_by_user_id: Optional[str] = Field(default=None, alias="paidByUserId")
    category: Optional[str] = None
    date: Optional[datetime] = None
    splits: Optional[list[ExpenseSplit]] = None


class SettlementCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    from_user_id: str = Field(..., min_length=1, alias="fromUserId")
    to_user_id: str = Field(..., min_length=1, alias="toUserId")
    amount: Decimal = Field(..., gt=0)
    date: Optional[datetime] = None
    method: str = "cash"
    notes: Optional[str] = Field(default=None, max_length=500)


class SettlementUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    from_user_id: Optional[str] = Field(default=None, alias="fromUserId")
    to_user_id: Optional[str] = Field(default=None, alias="toUserId")
    amount: Optional[Decimal] = Field(default=None, gt=0)
    date: Optional[datetime] = None
    method: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)


# =============================================================================
# ENGINE READ MODELS
# =============================================================================

class ExpenseUserStatus(BaseModel):
    """How a single expense affects one user."""

    status: Literal["payer", "debtor", "none"]
    amount_paid: Decimal = Decimal("0")
    lent_amount: Decimal = Decimal("0")
    amount_owed: Decimal = Decimal("0")


class SettlementSuggestion(BaseModel):
    """A payment that would reduce outstanding balances."""

    from_user_id: str
    to_user_id: str
    amount: Decimal


class LedgerSummary(BaseModel):
    total_volume: Decimal
    expense_count: int = Field(ge=0)
    settlement_count: int = Field(ge=0)
    member_count: int = Field(ge=0)
    is_balanced: bool


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'split_mismatch', 'unknown_member')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="How the user could resolve this"
    )


class ValidationResult(BaseModel):
    """
    Outcome of validating an expense payload before it is written.

    Warnings never block the write; errors do.
    """

    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]

    @property
    def is_valid(self) -> bool:
        return not self.has_errors
