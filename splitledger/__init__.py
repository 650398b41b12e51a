"""
SplitLedger - Source Package

Shared expense tracking for small groups, persisted in the members' own
Google Drive. There is no server-side database: every group is a
spreadsheet and every user's group index is a JSON settings file.

DESIGN PRINCIPLES:
1. The remote store is the source of truth
2. Local caches may lag, they must never lie
3. Balances always sum to exactly zero
4. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "SplitLedger Team"

from splitledger.client import SplitLedgerClient, create_client

__all__ = ["SplitLedgerClient", "create_client"]
