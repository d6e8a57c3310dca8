"""
Shared fixtures for the ledger test suite.

All stores run against a fixed "today" (2025-01-10) and a fixed set of
defaults so window arithmetic and balances are deterministic.
"""

from __future__ import annotations

from datetime import date

import pytest

from signal_ledger.ledger.models import LedgerSettings
from signal_ledger.ledger.store import LedgerStore
from signal_ledger.persistence.adapters import MemoryAdapter, SqliteAdapter
from signal_ledger.utils.config import reload_settings

TODAY = date(2025, 1, 10)
PRIMARY_KEY = "plantsq2-store"


@pytest.fixture
def defaults() -> LedgerSettings:
    return LedgerSettings(start_date="2025-01-01", initial_portfolio=1000.0, forecast_window=7)


@pytest.fixture
def memory_adapter() -> MemoryAdapter:
    return MemoryAdapter()


@pytest.fixture
def sqlite_adapter(tmp_path):
    adapter = SqliteAdapter(str(tmp_path / "ledger.db"))
    yield adapter
    adapter.close()


@pytest.fixture
def make_store(defaults):
    """Factory: a store bound to ``adapter`` (init() already run)."""
    def _make(adapter=None, **kwargs) -> LedgerStore:
        kwargs.setdefault("defaults", defaults)
        kwargs.setdefault("today", lambda: TODAY)
        kwargs.setdefault("storage_key", PRIMARY_KEY)
        kwargs.setdefault("debounce_seconds", 0)
        return LedgerStore(adapter, **kwargs).init()
    return _make


@pytest.fixture
def store(make_store, memory_adapter) -> LedgerStore:
    return make_store(memory_adapter)


@pytest.fixture
def fast_retries(monkeypatch):
    """Backup client settings without backoff delays."""
    monkeypatch.setenv("LEDGER_RETRY_DELAY", "0")
    monkeypatch.setenv("LEDGER_MAX_RETRIES", "2")
    monkeypatch.setenv("LEDGER_RATE_LIMIT_BACKUP", "100")
    settings = reload_settings()
    yield settings
    monkeypatch.undo()
    reload_settings()
