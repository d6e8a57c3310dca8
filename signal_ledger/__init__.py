"""
Signal Ledger
=============

Personal trading-result tracker: daily signal P&L, withdrawals and rewards
feed a date-indexed ledger whose running balance is rebuilt on every change.

  ledger/      : DateKey helpers, models, LedgerStore, migrations, snapshots
  persistence/ : key-value adapters (memory, SQLite)
  analysis/    : equity/forecast curves and operations KPIs
  backup/      : client for the remote snapshot store
"""

from signal_ledger.ledger import (
    DayRecord,
    LedgerSettings,
    LedgerStore,
    ThirdSignalWindow,
)
from signal_ledger.persistence import MemoryAdapter, SqliteAdapter

__version__ = "0.4.0"

__all__ = [
    "DayRecord", "LedgerSettings", "LedgerStore", "ThirdSignalWindow",
    "MemoryAdapter", "SqliteAdapter",
]
