from signal_ledger.persistence.adapters import (
    PersistenceAdapter,
    MemoryAdapter,
    SqliteAdapter,
)

__all__ = ["PersistenceAdapter", "MemoryAdapter", "SqliteAdapter"]
