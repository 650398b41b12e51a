"""
Ledger package: balance engine, sheet persistence and the ledger service.
"""

from splitledger.ledger.engine import (
    Ledger,
    calculate_balances,
    calculate_total_spent,
    distribute_amount,
    get_direct_settlement_details,
    get_expense_user_status,
    round_currency,
    suggest_settlement_strategy,
)
from splitledger.ledger.repository import LedgerData, LedgerRepository
from splitledger.ledger.service import LedgerService

__all__ = [
    # Engine
    "Ledger",
    "calculate_balances",
    "calculate_total_spent",
    "distribute_amount",
    "get_direct_settlement_details",
    "get_expense_user_status",
    "round_currency",
    "suggest_settlement_strategy",
    # Persistence
    "LedgerData",
    "LedgerRepository",
    "LedgerService",
]
