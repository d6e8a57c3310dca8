"""
Ledger Store — owner of settings, the third-signal window and day records
========================================================================

Every mutation goes through this class. After any change to a day record
(or to the initial portfolio) the running balance is rebuilt for all days
in ascending date order; the new mapping is swapped in only once the pass
has completed, so readers never observe a half-updated ledger.

Persistence is write-behind: each mutation marks the state dirty and asks
for a save. With ``persist_debounce_seconds == 0`` every mutation is
written immediately; otherwise writes are coalesced and ``flush()`` (or
``flush_if_due()`` from a scheduler) pushes the pending state. Adapter
failures are logged and the in-memory state stays authoritative.
"""

from __future__ import annotations
import logging
import time
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from signal_ledger.ledger import migrations, snapshot
from signal_ledger.ledger.dates import (
    DateLike, add_days, days_between, normalize_date_key, today_key,
)
from signal_ledger.ledger.models import (
    GATED_SIGNAL_INDEX, WINDOW_LENGTH_DAYS, DayRecord, LedgerSettings,
    ThirdSignalWindow, clamp_forecast_window, clean_signals, days_from_dict,
    days_to_dict, recompute_days, to_amount, to_number,
)
from signal_ledger.persistence.adapters import PersistenceAdapter
from signal_ledger.utils.config import get_settings
from signal_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger("ledger_store")


def compute_remaining(window: ThirdSignalWindow, now: Optional[DateLike] = None) -> int:
    """Days left in the window as seen from ``now``, clamped to [0, 5].

    A window that has not started yet reports the full 5 days.
    """
    if not window.active or not window.start_date:
        return 0
    end = add_days(window.start_date, WINDOW_LENGTH_DAYS)
    diff = days_between(today_key(now), end)
    return max(0, min(WINDOW_LENGTH_DAYS, diff))


class LedgerStore:
    """
    Date-indexed ledger with a deterministic running balance.
    Single-threaded: every operation runs to completion before returning.
    """

    def __init__(
        self,
        adapter: Optional[PersistenceAdapter] = None,
        storage_key: Optional[str] = None,
        legacy_keys: Optional[Iterable[str]] = None,
        defaults: Optional[LedgerSettings] = None,
        debounce_seconds: Optional[float] = None,
        today: Optional[Callable[[], date]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        cfg = get_settings()
        self._storage_key = storage_key or cfg.storage_key
        self._legacy_keys = tuple(legacy_keys if legacy_keys is not None else cfg.legacy_storage_keys)
        self._defaults = defaults or LedgerSettings(
            start_date=cfg.default_start_date,
            initial_portfolio=cfg.default_initial_portfolio,
            forecast_window=cfg.default_forecast_window,
        )
        self._debounce = cfg.persist_debounce_seconds if debounce_seconds is None else debounce_seconds
        self._today = today or date.today
        self._clock = clock or time.monotonic

        self._settings = LedgerSettings.from_dict(None, self._defaults)
        self._window = ThirdSignalWindow()
        self._days: Dict[str, DayRecord] = {}

        self._adapter = adapter
        self._dirty = False
        self._last_save: Optional[float] = None
        self._recovery_attempted = False

    # ─── LIFECYCLE ──────────────────────────────────────────────

    def init(self, adapter: Optional[PersistenceAdapter] = None) -> "LedgerStore":
        """Load persisted state (migrating it) and run legacy recovery once."""
        if adapter is not None:
            self._adapter = adapter
        if self._adapter is None:
            logger.info("LedgerStore running without persistence")
            return self

        state = migrations.load_persisted(self._adapter, self._storage_key, self._defaults)
        if state is not None:
            self._apply_state(state)
            logger.info("LedgerStore loaded %d days from %s", len(self._days), self._storage_key)

        if not self._days and not self._recovery_attempted:
            self._recovery_attempted = True
            recovered = migrations.recover_from_legacy(
                self._adapter, self._legacy_keys, self._defaults)
            if recovered is not None:
                key, legacy_state = recovered
                self._apply_state(legacy_state)
                self._dirty = True
                self.flush()
                logger.info("Adopted %d days from legacy key %s", len(self._days), key)
        return self

    def dispose(self):
        """Flush pending writes and detach from the adapter."""
        if self._dirty:
            self.flush()
        self._adapter = None

    def __enter__(self) -> "LedgerStore":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()

    # ─── PERSISTENCE ────────────────────────────────────────────

    @property
    def storage_key(self) -> str:
        return self._storage_key

    @property
    def dirty(self) -> bool:
        return self._dirty

    def to_state(self) -> Dict[str, Any]:
        return {
            "settings": self._settings.to_dict(),
            migrations.WINDOW_FIELD: self._window.to_dict(),
            "days": days_to_dict(self._days),
        }

    def _apply_state(self, state: Dict[str, Any]):
        self._settings = LedgerSettings.from_dict(state.get("settings"), self._defaults)
        window = state.get(migrations.WINDOW_FIELD)
        if window is None:
            window = state.get("thirdSignal")
        self._window = ThirdSignalWindow.from_dict(window)
        self._days = recompute_days(days_from_dict(state.get("days")), self._settings.initial_portfolio)

    def _schedule_save(self):
        self._dirty = True
        if self._adapter is None:
            return
        if self._save_due():
            self.flush()

    def _save_due(self) -> bool:
        if self._debounce <= 0 or self._last_save is None:
            return True
        return self._clock() - self._last_save >= self._debounce

    def flush_if_due(self) -> bool:
        if self._dirty and self._adapter is not None and self._save_due():
            return self.flush()
        return False

    def flush(self) -> bool:
        """Write the current state now. Returns False when there is no adapter or the write failed."""
        if self._adapter is None:
            return False
        try:
            self._adapter.save(self._storage_key, migrations.wrap_envelope(self.to_state()))
        except (PersistenceError, OSError) as e:
            logger.error("Failed to persist ledger state: %s", e)
            return False
        self._dirty = False
        self._last_save = self._clock()
        return True

    def _commit_days(self, days: Dict[str, DayRecord]):
        self._days = recompute_days(days, self._settings.initial_portfolio)
        logger.debug("Ledger recomputed: %d days, balance %.2f", len(self._days), self.current_balance())
        self._schedule_save()

    # ─── SETTINGS ───────────────────────────────────────────────

    @property
    def settings(self) -> LedgerSettings:
        return LedgerSettings(self._settings.start_date, self._settings.initial_portfolio,
                              self._settings.forecast_window)

    def set_start_date(self, start_date: DateLike):
        self._settings.start_date = normalize_date_key(start_date)
        self._schedule_save()

    def set_initial_portfolio(self, value: Any):
        self._settings.initial_portfolio = to_number(value)
        self._commit_days(self._days)

    def set_forecast_window(self, n: Any):
        self._settings.forecast_window = clamp_forecast_window(n, self._defaults.forecast_window)
        self._schedule_save()

    # ─── THIRD-SIGNAL WINDOW ────────────────────────────────────

    @property
    def window(self) -> ThirdSignalWindow:
        return ThirdSignalWindow(self._window.active, self._window.start_date)

    def activate_window(self, start_date: Optional[DateLike] = None):
        start = normalize_date_key(start_date) if start_date else today_key(self._today())
        self._window = ThirdSignalWindow(active=True, start_date=start)
        logger.info("Third-signal window activated from %s", start)
        self._schedule_save()

    def set_window_start_date(self, start_date: Optional[DateLike]):
        start = normalize_date_key(start_date) if start_date else None
        # ThirdSignalWindow drops `active` when the start date is cleared
        self._window = ThirdSignalWindow(active=self._window.active, start_date=start)
        self._schedule_save()

    def deactivate_window(self):
        self._window = ThirdSignalWindow()
        logger.info("Third-signal window deactivated")
        self._schedule_save()

    def remaining_window_days(self, reference_date: Optional[DateLike] = None) -> int:
        """Pure query; see tick_window_expiry() for the expiry side effect."""
        return compute_remaining(self._window, reference_date or self._today())

    def tick_window_expiry(self, today: Optional[DateLike] = None) -> bool:
        """Deactivate the window once it has run out as of today. Returns True if it did."""
        if not self._window.active:
            return False
        if compute_remaining(self._window, today or self._today()) > 0:
            return False
        self.deactivate_window()
        return True

    def is_window_active_on(self, day: DateLike) -> bool:
        if not self._window.active or not self._window.start_date:
            return False
        offset = days_between(self._window.start_date, day)
        return 0 <= offset < WINDOW_LENGTH_DAYS

    def gate_signals(self, day: DateLike, values: Iterable[Any]) -> List[float]:
        """Clean the four values, zeroing the third when the window is closed on ``day``."""
        signals = clean_signals(values)
        if not self.is_window_active_on(day):
            signals[GATED_SIGNAL_INDEX] = 0.0
        return signals

    # ─── DAY RECORDS ────────────────────────────────────────────

    def save_day(self, day: DateLike, values: Iterable[Any]) -> DayRecord:
        key = normalize_date_key(day)
        days = dict(self._days)
        existing = days.get(key)
        days[key] = DayRecord(
            signals=clean_signals(values),
            withdrawal=existing.withdrawal if existing else 0.0,
            reward=existing.reward if existing else 0.0,
        )
        self._commit_days(days)
        logger.info("Day saved: %s sum=%.2f", key, self._days[key].daily_sum)
        return self._days[key].copy()

    def clear_day(self, day: DateLike) -> bool:
        key = normalize_date_key(day)
        days = dict(self._days)
        removed = days.pop(key, None) is not None
        self._commit_days(days)
        if removed:
            logger.info("Day cleared: %s", key)
        return removed

    def _adjust_amount(self, day: DateLike, field: str, amount: Any, cumulative: bool):
        key = normalize_date_key(day)
        days = dict(self._days)
        record = days[key].copy() if key in days else DayRecord()
        value = abs(to_number(amount)) if cumulative else to_amount(amount)
        if cumulative:
            if value <= 0:
                return
            value += getattr(record, field)
        setattr(record, field, value)
        days[key] = record
        self._commit_days(days)

    def add_withdrawal(self, day: DateLike, amount: Any):
        self._adjust_amount(day, "withdrawal", amount, cumulative=True)

    def add_reward(self, day: DateLike, amount: Any):
        self._adjust_amount(day, "reward", amount, cumulative=True)

    def set_withdrawal(self, day: DateLike, amount: Any):
        self._adjust_amount(day, "withdrawal", amount, cumulative=False)

    def _clear_amount(self, day: DateLike, field: str) -> bool:
        key = normalize_date_key(day)
        if key not in self._days:
            return False
        days = dict(self._days)
        record = days[key].copy()
        setattr(record, field, 0.0)
        days[key] = record
        self._commit_days(days)
        return True

    def clear_withdrawal(self, day: DateLike) -> bool:
        return self._clear_amount(day, "withdrawal")

    def clear_reward(self, day: DateLike) -> bool:
        return self._clear_amount(day, "reward")

    # ─── READS ──────────────────────────────────────────────────

    def get_day(self, day: DateLike) -> Optional[DayRecord]:
        record = self._days.get(normalize_date_key(day))
        return record.copy() if record else None

    def day_keys(self) -> List[str]:
        return sorted(self._days)

    def days(self) -> Dict[str, DayRecord]:
        """Copies of all records in ascending date order."""
        return {k: self._days[k].copy() for k in sorted(self._days)}

    def current_balance(self) -> float:
        if not self._days:
            return self._settings.initial_portfolio
        return self._days[max(self._days)].portfolio_after

    # ─── SNAPSHOTS ──────────────────────────────────────────────

    def export_snapshot(self) -> Dict[str, Any]:
        return snapshot.build_export(self._settings, self._window, self._days)

    def import_snapshot(self, doc: Any) -> int:
        """Replace the whole state from a snapshot and flush it. Returns the day count.

        Raises ImportParseError with the state untouched when ``doc`` is unusable.
        """
        settings, window, days = snapshot.build_state_from_snapshot(
            doc, self._settings, self._window)
        self._settings, self._window, self._days = settings, window, days
        self._dirty = True
        self.flush()
        logger.info("Snapshot imported: %d days", len(days))
        return len(days)
