from signal_ledger.ledger.models import (
    DayRecord,
    LedgerSettings,
    ThirdSignalWindow,
    recompute_days,
    to_number,
)
from signal_ledger.ledger.store import LedgerStore, compute_remaining
from signal_ledger.ledger.migrations import CURRENT_SCHEMA_VERSION, migrate_state
from signal_ledger.ledger.snapshot import build_state_from_snapshot

__all__ = [
    "DayRecord", "LedgerSettings", "ThirdSignalWindow",
    "recompute_days", "to_number",
    "LedgerStore", "compute_remaining",
    "CURRENT_SCHEMA_VERSION", "migrate_state",
    "build_state_from_snapshot",
]
