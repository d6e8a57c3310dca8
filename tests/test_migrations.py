"""
Schema migration chain, persisted envelope handling and legacy-key recovery.
"""

import copy
import json

import pytest

from signal_ledger.ledger import migrations
from signal_ledger.ledger.migrations import (
    CURRENT_SCHEMA_VERSION,
    MIGRATIONS,
    migrate_state,
    recover_from_legacy,
    unwrap_envelope,
)
from signal_ledger.persistence.adapters import MemoryAdapter
from signal_ledger.utils.exceptions import PersistenceError

from conftest import PRIMARY_KEY


def v0_state():
    return {
        "settings": {"startDate": None, "initialPortfolio": 0},
        "fourthSignal": {"active": True, "startDate": "2025-08-01"},
        "days": {
            "2025-08-01": {"signals": [1, 2, 3, 4], "dailySum": 10},
            "2025-08-02": {"signals": [1, 0, 0, 0], "withdrawal": "5"},
        },
    }


class TestMigrationChain:

    def test_dispatch_table_is_ordered_and_complete(self):
        assert sorted(MIGRATIONS) == list(range(1, CURRENT_SCHEMA_VERSION + 1))

    def test_v0_runs_every_step(self, defaults):
        out = migrate_state(v0_state(), 0, defaults)
        assert out["settings"]["startDate"] == "2025-01-01"
        assert out["settings"]["initialPortfolio"] == 1000.0
        assert out["settings"]["forecastWindow"] == 7
        assert out["thirdSignalWindow"] == {"active": True, "startDate": "2025-08-01"}
        assert "fourthSignal" not in out
        assert out["days"]["2025-08-01"]["withdrawal"] == 0
        assert out["days"]["2025-08-01"]["reward"] == 0
        assert out["days"]["2025-08-02"]["withdrawal"] == 5.0

    def test_v2_skips_earlier_steps(self, defaults):
        state = {"settings": {}, "days": {"2025-08-01": {"signals": [1, 0, 0, 0]}}}
        out = migrate_state(state, 2, defaults)
        assert out["settings"] == {}
        assert "thirdSignalWindow" not in out
        assert out["days"]["2025-08-01"]["withdrawal"] == 0
        assert out["days"]["2025-08-01"]["reward"] == 0

    def test_backfill_keeps_existing_values(self, defaults):
        state = {"settings": {"startDate": "2024-05-05", "initialPortfolio": 0, "forecastWindow": 3}}
        out = migrate_state(state, 0, defaults)
        assert out["settings"]["startDate"] == "2024-05-05"
        assert out["settings"]["initialPortfolio"] == 1000.0
        assert out["settings"]["forecastWindow"] == 3

    def test_third_signal_preferred_over_fourth(self, defaults):
        state = {"thirdSignal": {"active": False, "startDate": "2025-01-02"},
                 "fourthSignal": {"active": True, "startDate": "2024-01-01"}}
        out = migrate_state(state, 1, defaults)
        assert out["thirdSignalWindow"] == {"active": False, "startDate": "2025-01-02"}
        assert "thirdSignal" not in out and "fourthSignal" not in out

    def test_missing_window_gets_default(self, defaults):
        out = migrate_state({}, 1, defaults)
        assert out["thirdSignalWindow"] == {"active": False, "startDate": None}

    def test_idempotent_on_current_state(self, defaults):
        once = migrate_state(v0_state(), 0, defaults)
        twice = migrate_state(once, 0, defaults)
        assert twice == once
        assert migrate_state(once, CURRENT_SCHEMA_VERSION, defaults) == once

    def test_future_version_passes_through(self, defaults):
        state = {"settings": {"whatever": 1}, "days": {"x": "y"}}
        assert migrate_state(state, CURRENT_SCHEMA_VERSION + 5, defaults) == state

    def test_input_not_mutated(self, defaults):
        state = v0_state()
        before = copy.deepcopy(state)
        migrate_state(state, 0, defaults)
        assert state == before

    @pytest.mark.parametrize("state", [None, "garbage", [], {"days": "nope"}, {"days": {"2025-01-01": None}}])
    def test_malformed_input_never_raises(self, state, defaults):
        out = migrate_state(state, "not-a-version", defaults)
        assert isinstance(out, dict)
        assert isinstance(out["days"], dict)


class TestEnvelope:

    def test_unwrap_envelope(self):
        state, version = unwrap_envelope({"state": {"days": {}}, "version": 3})
        assert state == {"days": {}}
        assert version == 3

    def test_unwrap_bare_state_and_text(self):
        assert unwrap_envelope('{"days": {}}') == ({"days": {}}, 0)

    def test_unwrap_garbage(self):
        assert unwrap_envelope("{not json") is None
        assert unwrap_envelope(42) is None


class SpyAdapter(MemoryAdapter):
    def __init__(self, initial=None, failing=()):
        super().__init__(initial)
        self.reads = []
        self.failing = set(failing)

    def load_raw(self, key):
        self.reads.append(key)
        if key in self.failing:
            raise PersistenceError("disk on fire")
        return super().load_raw(key)


def legacy_doc(days, version=4):
    return json.dumps({"state": {"settings": {"startDate": "2025-07-30", "initialPortfolio": 500},
                                 "thirdSignal": {"active": False, "startDate": None},
                                 "days": days},
                       "version": version})


class TestLegacyRecovery:

    def test_first_non_empty_legacy_key_wins(self, defaults):
        adapter = MemoryAdapter({
            "plantsq-store": legacy_doc({}),
            "plantsq_store": legacy_doc({"2025-08-01": {"signals": [1, 0, 0, 0]}}),
            "plantsq": legacy_doc({"2025-08-09": {"signals": [9, 0, 0, 0]}}),
        })
        key, state = recover_from_legacy(adapter, migrations.LEGACY_KEYS, defaults)
        assert key == "plantsq_store"
        assert list(state["days"]) == ["2025-08-01"]

    def test_unreadable_key_is_skipped(self, defaults):
        adapter = SpyAdapter({"plantsq": legacy_doc({"2025-08-01": {"signals": [1, 0, 0, 0]}})},
                             failing={"plantsq-store"})
        key, _ = recover_from_legacy(adapter, migrations.LEGACY_KEYS, defaults)
        assert key == "plantsq"

    def test_store_adopts_legacy_state_and_persists(self, make_store):
        adapter = MemoryAdapter({
            "plantsq-store": legacy_doc({"2025-08-01": {"signals": [10, 0, 0, 0]}}, version=1),
        })
        store = make_store(adapter)
        assert store.day_keys() == ["2025-08-01"]
        assert store.settings.initial_portfolio == 500
        assert store.current_balance() == 510
        persisted = adapter.load(PRIMARY_KEY)
        assert persisted["version"] == CURRENT_SCHEMA_VERSION
        assert "2025-08-01" in persisted["state"]["days"]

    def test_recovery_skipped_when_primary_has_days(self, make_store):
        primary = {"state": {"days": {"2025-01-02": {"signals": [1, 0, 0, 0]}}}, "version": 4}
        adapter = SpyAdapter({
            PRIMARY_KEY: primary,
            "plantsq": legacy_doc({"2025-08-01": {"signals": [1, 0, 0, 0]}}),
        })
        store = make_store(adapter)
        assert store.day_keys() == ["2025-01-02"]
        assert "plantsq" not in adapter.reads

    def test_recovery_runs_at_most_once(self, make_store):
        adapter = SpyAdapter()
        store = make_store(adapter)
        first_reads = list(adapter.reads)
        assert first_reads.count("plantsq") == 1
        store.init()
        assert adapter.reads.count("plantsq") == 1
        assert adapter.save_count == 0

    def test_unreadable_primary_falls_back_to_defaults(self, make_store):
        adapter = SpyAdapter(failing={PRIMARY_KEY})
        store = make_store(adapter)
        assert store.day_keys() == []
        assert store.settings.initial_portfolio == 1000

    def test_corrupt_primary_falls_back_to_defaults(self, make_store):
        adapter = MemoryAdapter({PRIMARY_KEY: "{definitely not json"})
        store = make_store(adapter)
        assert store.current_balance() == 1000
