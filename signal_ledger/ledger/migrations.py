"""
Schema migrations for the persisted ledger state.

Persisted envelope: {"state": {...}, "version": N}. On load the state is
upgraded by applying every step in MIGRATIONS whose target version is above
the persisted one, in ascending order. Steps are pure (dict in, new dict
out), idempotent, and tolerate missing or malformed fields.

Versions:
  1. backfill startDate / initialPortfolio when uninitialized
  2. legacy fourthSignal / thirdSignal  ->  thirdSignalWindow
  3. every day has a numeric withdrawal
  4. every day has a numeric reward

Legacy recovery: when the primary key holds no days, an ordered list of
historical keys is tried once; the first one with days wins.
"""

from __future__ import annotations
import copy
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from signal_ledger.ledger.models import LedgerSettings, to_amount, to_number
from signal_ledger.persistence.adapters import PersistenceAdapter
from signal_ledger.utils.exceptions import PersistenceError

logger = logging.getLogger("ledger_migrations")

CURRENT_SCHEMA_VERSION = 4
WINDOW_FIELD = "thirdSignalWindow"
LEGACY_WINDOW_FIELDS = ("thirdSignal", "fourthSignal")
LEGACY_KEYS = ("plantsq-store", "plantsq_store", "plantsq")

State = Dict[str, Any]
MigrationStep = Callable[[State, LedgerSettings], State]
LegacySource = Callable[[Optional[str]], Optional[State]]


def _days_of(state: State) -> Dict[str, Any]:
    days = state.get("days")
    return days if isinstance(days, dict) else {}


# ─── STEPS ───────────────────────────────────────────────────

def backfill_settings(state: State, defaults: LedgerSettings) -> State:
    """v1: fill an uninitialized startDate / initialPortfolio."""
    settings = state.get("settings")
    settings = dict(settings) if isinstance(settings, dict) else {}
    if not settings.get("startDate"):
        settings["startDate"] = defaults.start_date
    if not to_number(settings.get("initialPortfolio")):
        settings["initialPortfolio"] = defaults.initial_portfolio
    if settings.get("forecastWindow") is None:
        settings["forecastWindow"] = defaults.forecast_window
    return {**state, "settings": settings}


def rename_window_field(state: State, defaults: LedgerSettings) -> State:
    """v2: the window used to be stored as fourthSignal / thirdSignal."""
    rest = {k: v for k, v in state.items() if k not in LEGACY_WINDOW_FIELDS}
    window = state.get(WINDOW_FIELD)
    for legacy in LEGACY_WINDOW_FIELDS:
        if isinstance(window, dict):
            break
        window = state.get(legacy)
    if not isinstance(window, dict):
        window = {"active": False, "startDate": None}
    rest[WINDOW_FIELD] = dict(window)
    return rest


def _ensure_day_amount(field: str) -> MigrationStep:
    def step(state: State, defaults: LedgerSettings) -> State:
        new_days = {}
        for key, entry in _days_of(state).items():
            entry = dict(entry) if isinstance(entry, dict) else {}
            entry[field] = to_amount(entry.get(field))
            new_days[key] = entry
        return {**state, "days": new_days}
    step.__name__ = f"ensure_{field}"
    step.__doc__ = f"Every day record carries a numeric {field} (default 0)."
    return step


ensure_withdrawal = _ensure_day_amount("withdrawal")
ensure_reward = _ensure_day_amount("reward")

MIGRATIONS: Dict[int, MigrationStep] = {
    1: backfill_settings,
    2: rename_window_field,
    3: ensure_withdrawal,
    4: ensure_reward,
}


def migrate_state(state: Any, from_version: Any,
                  defaults: Optional[LedgerSettings] = None) -> State:
    """Apply every step above ``from_version``. Unknown future versions pass through."""
    defaults = defaults or LedgerSettings()
    if not isinstance(state, dict):
        state = {}
    try:
        version = int(from_version)
    except (TypeError, ValueError):
        version = 0
    result = copy.deepcopy(state)
    for target in sorted(MIGRATIONS):
        if version < target:
            result = MIGRATIONS[target](result, defaults)
            logger.debug("Applied migration to v%d", target)
    if version < CURRENT_SCHEMA_VERSION:
        logger.info("Migrated ledger state v%d -> v%d", max(version, 0), CURRENT_SCHEMA_VERSION)
    return result


# ─── ENVELOPE ────────────────────────────────────────────────

def wrap_envelope(state: State) -> Dict[str, Any]:
    return {"state": state, "version": CURRENT_SCHEMA_VERSION}


def unwrap_envelope(raw: Any) -> Optional[Tuple[State, int]]:
    """Accept an envelope, a bare state dict or JSON text. Returns (state, version)."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (TypeError, ValueError):
            return None
    if not isinstance(raw, dict):
        return None
    if isinstance(raw.get("state"), dict):
        try:
            version = int(raw.get("version", 0))
        except (TypeError, ValueError):
            version = 0
        return raw["state"], version
    # Bare state documents carry no version: run the whole chain
    return raw, 0


def load_persisted(adapter: PersistenceAdapter, key: str,
                   defaults: Optional[LedgerSettings] = None) -> Optional[State]:
    """Read and migrate the state under ``key``. Failures are logged, never raised."""
    try:
        raw = adapter.load_raw(key)
    except PersistenceError as e:
        logger.error("Failed to read persisted state %s: %s", key, e)
        return None
    if not raw:
        return None
    unwrapped = unwrap_envelope(raw)
    if unwrapped is None:
        logger.error("Persisted state under %s is unreadable, using defaults", key)
        return None
    state, version = unwrapped
    return migrate_state(state, version, defaults)


# ─── LEGACY RECOVERY ─────────────────────────────────────────

def legacy_source(defaults: Optional[LedgerSettings] = None) -> LegacySource:
    """Pure (raw text) -> Optional[state]: a migrated state with non-empty days, or None."""
    def source(raw: Optional[str]) -> Optional[State]:
        if not raw:
            return None
        unwrapped = unwrap_envelope(raw)
        if unwrapped is None:
            return None
        state, version = unwrapped
        if not _days_of(state):
            return None
        return migrate_state(state, version, defaults)
    return source


def recover_from_legacy(adapter: PersistenceAdapter,
                        keys: Iterable[str] = LEGACY_KEYS,
                        defaults: Optional[LedgerSettings] = None,
                        ) -> Optional[Tuple[str, State]]:
    """Try each legacy key in order; return (key, state) for the first with days."""
    source = legacy_source(defaults)
    tried: List[str] = []
    for key in keys:
        tried.append(key)
        try:
            raw = adapter.load_raw(key)
        except PersistenceError as e:
            logger.warning("Legacy key %s unreadable: %s", key, e)
            continue
        state = source(raw)
        if state is not None:
            logger.info("Recovered ledger state from legacy key %s", key)
            return key, state
    logger.debug("No legacy state found in %s", tried)
    return None
