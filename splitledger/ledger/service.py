"""
Ledger Service

Expense and settlement operations for one group, on behalf of one user.

Edits and deletes address records by sheet row. Because a row number is
only valid until somebody deletes a row above it, every edit first
re-reads the row and refuses to touch it if the id no longer matches
(ConflictError). Expense edits can also carry the `updated_at` the caller
last saw; a newer stored value means someone else got there first.
"""

from datetime import datetime
from typing import Optional

import structlog

from splitledger.audit import AuditLogger
from splitledger.errors import (
    ConflictError,
    ExpenseNotFoundError,
    ExpenseValidationError,
    NotAGroupMemberError,
    SettlementNotFoundError,
)
from splitledger.ledger.engine import Ledger
from splitledger.ledger.repository import EXPENSES_SHEET, SETTLEMENTS_SHEET, LedgerRepository
from splitledger.models.audit import AuditEventType
from splitledger.models.group import Member, User, as_utc, utcnow
from splitledger.models.ledger import (
    Expense,
    ExpenseCreate,
    ExpenseUpdate,
    Settlement,
    SettlementCreate,
    SettlementUpdate,
)
from splitledger.validation import ExpenseValidator


logger = structlog.get_logger(__name__)


class LedgerService:
    """
    Business operations over a group's ledger.

    Args:
        repository: Sheet access for the group
        user: The account acting on the ledger
        validator: Upstream expense validation (a default one is used if None)
        audit_logger: Receives an event for every mutation
    """

    def __init__(
        self,
        repository: LedgerRepository,
        user: User,
        validator: Optional[ExpenseValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repository = repository
        self._user = user
        self._validator = validator or ExpenseValidator()
        self._audit = (audit_logger or AuditLogger()).bind(user.email)

    @property
    def group_id(self) -> str:
        return self._repository.group_id

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_expenses(self) -> list[Expense]:
        return await self._repository.get_expenses()

    async def get_settlements(self) -> list[Settlement]:
        return await self._repository.get_settlements()

    async def get_members(self) -> list[Member]:
        return await self._repository.get_members()

    async def get_ledger(self) -> Ledger:
        """Snapshot of the whole group, ready for balance queries."""
        data = await self._repository.load()
        return Ledger(data.expenses, data.settlements, data.members)

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def _is_me(self, member: Member) -> bool:
        return member.user_id == self._user.id or (bool(member.email) and member.email == self._user.email)

    def _validate(self, expense, members: list[Member]) -> None:
        result = self._validator.validate(expense, members)
        if result.has_errors:
            raise ExpenseValidationError(result)
        for issue in result.warnings:
            logger.warning(
                "expense_validation_warning",
                group_id=self.group_id,
                field=issue.field,
                issue_type=issue.issue_type,
                message=issue.message,
            )

    async def add_expense(self, data: ExpenseCreate) -> Expense:
        """
        Record a new expense.

        Raises:
            NotAGroupMemberError: The current user is not in the group
            ExpenseValidationError: The payload has error-level issues
        """
        members = await self._repository.get_members()
        if not any(self._is_me(m) for m in members):
            raise NotAGroupMemberError(self._user.email, self.group_id)

        self._validate(data, members)

        now = utcnow()
        expense = Expense(
            description=data.description,
            amount=data.amount,
            paid_by_user_id=data.paid_by_user_id,
            category=data.category,
            date=data.date,
            splits=data.splits,
            created_at=now,
            updated_at=now,
        )
        await self._repository.append_expense(expense)

        self._audit.log_ledger_change(
            AuditEventType.EXPENSE_ADDED, self.group_id, "expense", expense.id, str(expense.amount)
        )
        return expense

    async def _locate_expense(self, expense_id: str) -> tuple[int, Expense]:
        found = await self._repository.find_expense(expense_id)
        if found is None:
            raise ExpenseNotFoundError(expense_id)
        row, _ = found
        # The row must still hold the same record
        current = await self._repository.read_row(EXPENSES_SHEET, row)
        if current is None or current.id != expense_id:
            raise ConflictError("Expense row shifted; reload and try again.")
        return row, current

    async def update_expense(
        self,
        expense_id: str,
        changes: ExpenseUpdate,
        expected_last_modified: Optional[datetime] = None,
    ) -> Expense:
        """
        Apply a partial update.

        Args:
            expense_id: Expense to change
            changes: Fields to change; None fields are left alone
            expected_last_modified: `updated_at` the caller last saw (naive means UTC)

        Raises:
            ExpenseNotFoundError: No such expense
            ConflictError: The row moved, or was modified after `expected_last_modified`
        """
        row, current = await self._locate_expense(expense_id)

        if expected_last_modified is not None and as_utc(current.updated_at) > as_utc(expected_last_modified):
            raise ConflictError()

        updated = Expense.model_validate({
            **current.model_dump(),
            **changes.model_dump(exclude_none=True),
            "id": current.id,
            "created_at": current.created_at,
            "updated_at": utcnow(),
        })
        self._validate(updated, await self._repository.get_members())

        await self._repository.update_expense(row, updated)
        self._audit.log_ledger_change(
            AuditEventType.EXPENSE_UPDATED, self.group_id, "expense", expense_id, str(updated.amount)
        )
        return updated

    async def delete_expense(self, expense_id: str) -> None:
        row, _ = await self._locate_expense(expense_id)
        await self._repository.delete_row(EXPENSES_SHEET, row)
        self._audit.log_ledger_change(AuditEventType.EXPENSE_DELETED, self.group_id, "expense", expense_id)

    # -------------------------------------------------------------------------
    # Settlements
    # -------------------------------------------------------------------------

    async def add_settlement(self, data: SettlementCreate) -> Settlement:
        settlement = Settlement(
            date=data.date or utcnow(),
            from_user_id=data.from_user_id,
            to_user_id=data.to_user_id,
            amount=data.amount,
            method=data.method,
            notes=data.notes,
        )
        await self._repository.append_settlement(settlement)
        self._audit.log_ledger_change(
            AuditEventType.SETTLEMENT_ADDED, self.group_id, "settlement", settlement.id, str(settlement.amount)
        )
        return settlement

    async def _locate_settlement(self, settlement_id: str) -> tuple[int, Settlement]:
        found = await self._repository.find_settlement(settlement_id)
        if found is None:
            raise SettlementNotFoundError(settlement_id)
        row, _ = found
        current = await self._repository.read_row(SETTLEMENTS_SHEET, row)
        if current is None or current.id != settlement_id:
            raise ConflictError("Settlement row shifted; reload and try again.")
        return row, current

    async def update_settlement(self, settlement_id: str, changes: SettlementUpdate) -> Settlement:
        row, current = await self._locate_settlement(settlement_id)
        updated = Settlement.model_validate({
            **current.model_dump(),
            **changes.model_dump(exclude_none=True),
            "id": current.id,
        })
        await self._repository.update_settlement(row, updated)
        self._audit.log_ledger_change(
            AuditEventType.SETTLEMENT_UPDATED, self.group_id, "settlement", settlement_id, str(updated.amount)
        )
        return updated

    async def delete_settlement(self, settlement_id: str) -> None:
        row, _ = await self._locate_settlement(settlement_id)
        await self._repository.delete_row(SETTLEMENTS_SHEET, row)
        self._audit.log_ledger_change(
            AuditEventType.SETTLEMENT_DELETED, self.group_id, "settlement", settlement_id
        )
