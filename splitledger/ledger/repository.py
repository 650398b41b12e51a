"""
Ledger Repository

Reads and writes one group's Expenses, Settlements and Members sheets.

Row 1 of each sheet holds the column headers; records start at row 2.
Records are addressed by their 1-based sheet row number, which is only
stable until somebody deletes a row above it. Callers re-read a row and
compare ids before editing it.

Rows written by other clients are mapped leniently: a malformed number
becomes 0, malformed JSON becomes an empty value and an unknown role
becomes "member". A row without an id is skipped.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from splitledger.ledger.engine import to_decimal
from splitledger.models.group import Member, MemberRole, as_utc, utcnow
from splitledger.models.ledger import Expense, ExpenseSplit, Settlement
from splitledger.services.storage.interface import RemoteStoragePort, StorageError


EXPENSES_SHEET = "Expenses"
SETTLEMENTS_SHEET = "Settlements"
MEMBERS_SHEET = "Members"

FIRST_DATA_ROW = 2
SYNC_TRIGGER_PROPERTY = "_lastSyncTrigger"

logger = structlog.get_logger(__name__)


# =============================================================================
# CELL PARSING
# =============================================================================

def _cell(row: list, index: int) -> str:
    """Handle short rows gracefully: Sheets drops trailing empty cells."""
    try:
        value = row[index]
    except IndexError:
        return ""
    return "" if value is None else str(value)


def _parse_decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return to_decimal(value)
    except ValueError:
        return Decimal("0")


def _parse_datetime(value: str, default: Optional[datetime] = None) -> datetime:
    if value:
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    return default or utcnow()


def _parse_json(value: str, default: Any) -> Any:
    if not value:
        return default
    try:
        parsed = json.loads(value)
    except ValueError:
        return default
    return parsed if isinstance(parsed, type(default)) else default


def _money(value: Decimal) -> float:
    # JSON cells hold plain numbers so other clients can read them
    return float(value)


# =============================================================================
# ROW MAPPERS
# =============================================================================

def expense_from_row(row: list) -> Optional[Expense]:
    expense_id = _cell(row, 0)
    if not expense_id:
        return None

    splits = []
    for item in _parse_json(_cell(row, 6), []):
        if isinstance(item, dict) and item.get("userId"):
            splits.append(ExpenseSplit(
                user_id=str(item["userId"]),
                amount=_parse_decimal(item.get("amount")),
            ))

    meta = _parse_json(_cell(row, 7), {})
    created_at = _parse_datetime(str(meta.get("createdAt") or ""))
    date = _parse_datetime(_cell(row, 1), default=created_at)

    return Expense(
        id=expense_id,
        date=date,
        description=_cell(row, 2),
        amount=_parse_decimal(_cell(row, 3)),
        paid_by_user_id=_cell(row, 4),
        category=_cell(row, 5),
        splits=splits,
        created_at=created_at,
        updated_at=_parse_datetime(str(meta.get("lastModified") or ""), default=created_at),
    )


def expense_to_row(expense: Expense) -> list:
    splits = [{"userId": s.user_id, "amount": _money(s.amount)} for s in expense.splits]
    meta = {
        "createdAt": expense.created_at.isoformat(),
        "lastModified": expense.updated_at.isoformat(),
    }
    return [
        expense.id,
        expense.date.isoformat(),
        expense.description,
        str(expense.amount),
        expense.paid_by_user_id,
        expense.category,
        json.dumps(splits),
        json.dumps(meta),
    ]


def settlement_from_row(row: list) -> Optional[Settlement]:
    settlement_id = _cell(row, 0)
    if not settlement_id:
        return None
    return Settlement(
        id=settlement_id,
        date=_parse_datetime(_cell(row, 1)),
        from_user_id=_cell(row, 2),
        to_user_id=_cell(row, 3),
        amount=_parse_decimal(_cell(row, 4)),
        method=_cell(row, 5) or "cash",
        notes=_cell(row, 6) or None,
    )


def settlement_to_row(settlement: Settlement) -> list:
    return [
        settlement.id,
        settlement.date.isoformat(),
        settlement.from_user_id,
        settlement.to_user_id,
        str(settlement.amount),
        settlement.method,
        settlement.notes or "",
    ]


def member_from_row(row: list) -> Optional[Member]:
    user_id = _cell(row, 0)
    if not user_id:
        return None
    try:
        role = MemberRole(_cell(row, 3))
    except ValueError:
        role = MemberRole.MEMBER
    return Member(
        user_id=user_id,
        email=_cell(row, 1),
        name=_cell(row, 2),
        role=role,
        joined_at=_parse_datetime(_cell(row, 4)),
    )


def member_to_row(member: Member) -> list:
    return [
        member.user_id,
        member.email,
        member.name,
        member.role.value,
        member.joined_at.isoformat(),
    ]


_READERS = {
    EXPENSES_SHEET: expense_from_row,
    SETTLEMENTS_SHEET: settlement_from_row,
    MEMBERS_SHEET: member_from_row,
}


# =============================================================================
# REPOSITORY
# =============================================================================

class LedgerData(BaseModel):
    """Everything stored in one group, with each record's sheet row."""

    expenses: list[Expense] = Field(default_factory=list)
    settlements: list[Settlement] = Field(default_factory=list)
    members: list[Member] = Field(default_factory=list)
    expense_rows: dict[str, int] = Field(default_factory=dict)
    settlement_rows: dict[str, int] = Field(default_factory=dict)
    member_rows: dict[str, int] = Field(default_factory=dict)


class LedgerRepository:
    """
    Sheet access for a single group.

    Args:
        storage: The (usually cache-proxied) storage port
        group_id: Spreadsheet id of the group
    """

    def __init__(self, storage: RemoteStoragePort, group_id: str):
        self._storage = storage
        self._group_id = group_id
        self._sheet_ids: Optional[dict[str, int]] = None

    @property
    def group_id(self) -> str:
        return self._group_id

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @staticmethod
    def _data_range(sheet: str) -> str:
        return f"{sheet}!A{FIRST_DATA_ROW}:Z"

    @staticmethod
    def _row_range(sheet: str, row: int) -> str:
        return f"{sheet}!A{row}:Z{row}"

    @staticmethod
    def _parse_sheet(sheet: str, value_range: dict) -> list[tuple[int, Any]]:
        reader = _READERS[sheet]
        records = []
        for offset, row in enumerate(value_range.get("values", [])):
            record = reader(row)
            if record is not None:
                records.append((FIRST_DATA_ROW + offset, record))
        return records

    async def _read_sheet(self, sheet: str) -> list[tuple[int, Any]]:
        value_ranges = await self._storage.batch_get_values(self._group_id, [self._data_range(sheet)])
        return self._parse_sheet(sheet, value_ranges[0] if value_ranges else {})

    async def load(self) -> LedgerData:
        """Read all three sheets in a single batch request."""
        sheets = [EXPENSES_SHEET, SETTLEMENTS_SHEET, MEMBERS_SHEET]
        value_ranges = await self._storage.batch_get_values(
            self._group_id,
            [self._data_range(sheet) for sheet in sheets],
        )
        parsed = {
            sheet: self._parse_sheet(sheet, value_ranges[i] if i < len(value_ranges) else {})
            for i, sheet in enumerate(sheets)
        }
        return LedgerData(
            expenses=[e for _, e in parsed[EXPENSES_SHEET]],
            settlements=[s for _, s in parsed[SETTLEMENTS_SHEET]],
            members=[m for _, m in parsed[MEMBERS_SHEET]],
            expense_rows={e.id: row for row, e in parsed[EXPENSES_SHEET]},
            settlement_rows={s.id: row for row, s in parsed[SETTLEMENTS_SHEET]},
            member_rows={m.user_id: row for row, m in parsed[MEMBERS_SHEET]},
        )

    async def get_expenses(self) -> list[Expense]:
        return [expense for _, expense in await self._read_sheet(EXPENSES_SHEET)]

    async def get_settlements(self) -> list[Settlement]:
        return [settlement for _, settlement in await self._read_sheet(SETTLEMENTS_SHEET)]

    async def get_members(self) -> list[Member]:
        return [member for _, member in await self._read_sheet(MEMBERS_SHEET)]

    async def get_members_with_rows(self) -> list[tuple[int, Member]]:
        return await self._read_sheet(MEMBERS_SHEET)

    async def find_expense(self, expense_id: str) -> Optional[tuple[int, Expense]]:
        for row, expense in await self._read_sheet(EXPENSES_SHEET):
            if expense.id == expense_id:
                return row, expense
        return None

    async def find_settlement(self, settlement_id: str) -> Optional[tuple[int, Settlement]]:
        for row, settlement in await self._read_sheet(SETTLEMENTS_SHEET):
            if settlement.id == settlement_id:
                return row, settlement
        return None

    async def read_row(self, sheet: str, row: int) -> Optional[Any]:
        """Re-read a single row, e.g. to detect that rows shifted."""
        value_ranges = await self._storage.batch_get_values(self._group_id, [self._row_range(sheet, row)])
        values = value_ranges[0].get("values", []) if value_ranges else []
        if not values:
            return None
        return _READERS[sheet](values[0])

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def touch(self) -> None:
        """Bump the group file's modified time so other clients resync."""
        await self._storage.update_file(
            self._group_id,
            {"properties": {SYNC_TRIGGER_PROPERTY: utcnow().isoformat()}},
        )

    async def _append(self, sheet: str, row: list) -> None:
        await self._storage.append_values(self._group_id, f"{sheet}!A1", [row])
        await self.touch()

    async def _update(self, sheet: str, row_number: int, row: list) -> None:
        await self._storage.update_values(self._group_id, self._row_range(sheet, row_number), [row])
        await self.touch()

    async def _sheet_id(self, sheet: str) -> int:
        if self._sheet_ids is None:
            spreadsheet = await self._storage.get_spreadsheet(self._group_id, fields="sheets.properties")
            self._sheet_ids = {
                s["properties"]["title"]: s["properties"]["sheetId"]
                for s in spreadsheet.get("sheets", [])
            }
        if sheet not in self._sheet_ids:
            raise StorageError(f"Sheet '{sheet}' not found in group {self._group_id}")
        return self._sheet_ids[sheet]

    async def delete_row(self, sheet: str, row: int) -> None:
        sheet_id = await self._sheet_id(sheet)
        await self._storage.batch_update_spreadsheet(self._group_id, [{
            "deleteDimension": {
                "range": {
                    "sheetId": sheet_id,
                    "dimension": "ROWS",
                    "startIndex": row - 1,
                    "endIndex": row,
                }
            }
        }])
        logger.debug("sheet_row_deleted", group_id=self._group_id, sheet=sheet, row=row)
        await self.touch()

    async def append_expense(self, expense: Expense) -> None:
        await self._append(EXPENSES_SHEET, expense_to_row(expense))

    async def update_expense(self, row: int, expense: Expense) -> None:
        await self._update(EXPENSES_SHEET, row, expense_to_row(expense))

    async def append_settlement(self, settlement: Settlement) -> None:
        await self._append(SETTLEMENTS_SHEET, settlement_to_row(settlement))

    async def update_settlement(self, row: int, settlement: Settlement) -> None:
        await self._update(SETTLEMENTS_SHEET, row, settlement_to_row(settlement))

    async def append_member(self, member: Member) -> None:
        await self._append(MEMBERS_SHEET, member_to_row(member))
