"""
Ledger Engine

Pure balance arithmetic over one group's members, expenses and settlements.

Balances are signed: positive means the member is owed money, negative
means they owe money.

DESIGN DECISION: Splits are the source of truth for debt. For every split
that does not belong to the payer, the payer is credited and the split's
user is debited by the SAME cent-rounded amount. Each transfer is therefore
zero-sum on its own and the balances always add up to exactly zero, even
when an expense's `amount` disagrees with the sum of its splits. The
payer's own split creates no debt.

All arithmetic is Decimal. Nothing here touches storage.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from splitledger.models.group import Member
from splitledger.models.ledger import (
    Expense,
    ExpenseUserStatus,
    LedgerSummary,
    Settlement,
    SettlementSuggestion,
)


CENT = Decimal("0.01")
ZERO = Decimal("0")

Amount = Union[Decimal, int, float, str]


def to_decimal(value: Amount) -> Decimal:
    """
    Convert sheet/user input to Decimal.

    Strings may use either ',' or '.' as the decimal mark.
    Floats go through their shortest repr so 0.1 stays 0.1.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, int):
        return Decimal(value)
    text = str(value).strip().replace(",", ".")
    try:
        return Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Not a valid amount: {value!r}")


def round_currency(value: Amount) -> Decimal:
    """Round to cents, half away from zero."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_balances(
    members: list[Member],
    expenses: list[Expense],
    settlements: list[Settlement],
) -> dict[str, Decimal]:
    """
    Net balance per member.

    Every member starts at zero. A transfer (split or settlement) is only
    applied when both of its ends are members, so user ids that are not in
    `members` never contribute.
    """
    balances = {member.user_id: ZERO for member in members}

    def transfer(creditor: str, debtor: str, amount: Decimal) -> None:
        if creditor in balances and debtor in balances:
            balances[creditor] += amount
            balances[debtor] -= amount

    for expense in expenses:
        payer = expense.paid_by_user_id
        for split in expense.splits:
            if split.user_id == payer:
                continue
            transfer(payer, split.user_id, round_currency(split.amount))

    for settlement in settlements:
        # from pays to: from's debt shrinks, to's claim shrinks
        transfer(settlement.from_user_id, settlement.to_user_id, round_currency(settlement.amount))

    return {user_id: round_currency(balance) for user_id, balance in balances.items()}


def _split_of(expense: Expense, user_id: str) -> Decimal:
    for split in expense.splits:
        if split.user_id == user_id:
            return split.amount
    return ZERO


def calculate_total_spent(user_id: str, expenses: list[Expense]) -> Decimal:
    """Sum of the user's own shares, rounded once at the end."""
    return round_currency(sum((_split_of(e, user_id) for e in expenses), ZERO))


def get_expense_user_status(expense: Expense, user_id: str) -> ExpenseUserStatus:
    """How one expense looks from one member's point of view."""
    if expense.paid_by_user_id == user_id:
        lent = sum((s.amount for s in expense.splits if s.user_id != user_id), ZERO)
        return ExpenseUserStatus(
            status="payer",
            amount_paid=round_currency(expense.amount),
            lent_amount=round_currency(lent),
        )

    share = _split_of(expense, user_id)
    if share > 0:
        return ExpenseUserStatus(status="debtor", amount_owed=round_currency(share))

    return ExpenseUserStatus(status="none")


def suggest_settlement_strategy(
    user_id: str,
    balances: dict[str, Decimal],
    members: list[Member],
) -> Optional[SettlementSuggestion]:
    """
    One payment that moves `user_id` towards zero.

    A debtor pays whoever is owed the most; a creditor collects from
    whoever owes the most. Returns None when the user is already settled
    or has nobody to settle with.
    """
    own = balances.get(user_id, ZERO)
    if abs(own) < CENT:
        return None

    others = [m.user_id for m in members if m.user_id != user_id]
    if not others:
        return None

    if own < 0:
        target = max(others, key=lambda uid: balances.get(uid, ZERO))
    else:
        target = min(others, key=lambda uid: balances.get(uid, ZERO))

    amount = min(abs(own), abs(balances.get(target, ZERO)))
    return SettlementSuggestion(
        from_user_id=user_id if own < 0 else target,
        to_user_id=target if own < 0 else user_id,
        amount=round_currency(amount),
    )


def get_direct_settlement_details(
    current_user_id: str,
    current_balance: Decimal,
    other_user_id: str,
    other_balance: Decimal,
) -> SettlementSuggestion:
    """
    Settlement between two specific members.

    The amount is the overlap of their balances when one owes and the other
    is owed, otherwise zero. The direction follows the current user's sign.
    """
    amount = ZERO
    if (current_balance < 0 < other_balance) or (other_balance < 0 < current_balance):
        amount = min(abs(current_balance), abs(other_balance))

    if current_balance < 0:
        from_user_id, to_user_id = current_user_id, other_user_id
    else:
        from_user_id, to_user_id = other_user_id, current_user_id

    return SettlementSuggestion(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        amount=round_currency(amount),
    )


def distribute_amount(total: Amount, count: int) -> list[Decimal]:
    """
    Split `total` into `count` cent amounts that add up to it exactly.

    Leftover cents go to the first parts: 10.00 / 3 -> 3.34, 3.33, 3.33.
    """
    if count <= 0:
        return []

    total_cents = int(round_currency(total) * 100)
    base, remainder = divmod(total_cents, count)
    return [
        (Decimal(base + (1 if i < remainder else 0)) / 100).quantize(CENT)
        for i in range(count)
    ]


class Ledger:
    """
    Read-only view over one group's records.

    Balances are computed once and memoized; build a new Ledger after the
    underlying records change.
    """

    def __init__(
        self,
        expenses: list[Expense],
        settlements: list[Settlement],
        members: list[Member],
    ):
        self._expenses = list(expenses)
        self._settlements = list(settlements)
        self._members = list(members)
        self._balances: Optional[dict[str, Decimal]] = None

    @property
    def expenses(self) -> list[Expense]:
        return self._expenses

    @property
    def settlements(self) -> list[Settlement]:
        return self._settlements

    @property
    def members(self) -> list[Member]:
        return self._members

    @property
    def balances(self) -> dict[str, Decimal]:
        if self._balances is None:
            self._balances = calculate_balances(self._members, self._expenses, self._settlements)
        return dict(self._balances)

    def get_user_balance(self, user_id: str) -> Decimal:
        return self.balances.get(user_id, ZERO)

    def get_total_spent(self, user_id: str) -> Decimal:
        return calculate_total_spent(user_id, self._expenses)

    def get_expense_status(self, expense_id: str, user_id: str) -> ExpenseUserStatus:
        for expense in self._expenses:
            if expense.id == expense_id:
                return get_expense_user_status(expense, user_id)
        return ExpenseUserStatus(status="none")

    def get_settle_up_suggestion(self, user_id: str) -> Optional[SettlementSuggestion]:
        return suggest_settlement_strategy(user_id, self.balances, self._members)

    def get_summary(self) -> LedgerSummary:
        balances = self.balances
        return LedgerSummary(
            total_volume=round_currency(sum((e.amount for e in self._expenses), ZERO)),
            expense_count=len(self._expenses),
            settlement_count=len(self._settlements),
            member_count=len(self._members),
            is_balanced=sum(balances.values(), ZERO) == 0,
        )
