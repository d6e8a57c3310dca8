"""
Snapshot export/import.

A snapshot is a self-describing JSON document:
  {"version": 1, "exportedAt": ISO-8601, "settings": {...},
   "thirdSignalWindow": {...}, "days": {...}}

Import never trusts derived fields: dailySum is rebuilt from signals and
portfolioAfter from the incoming initialPortfolio.
"""

from __future__ import annotations
import copy
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from signal_ledger.ledger import migrations
from signal_ledger.ledger.models import (
    DayRecord, LedgerSettings, ThirdSignalWindow, days_from_dict, days_to_dict,
    recompute_days,
)
from signal_ledger.utils.exceptions import ImportParseError

SNAPSHOT_VERSION = 1


def build_export(settings: LedgerSettings, window: ThirdSignalWindow,
                 days: Dict[str, DayRecord]) -> Dict[str, Any]:
    return copy.deepcopy({
        "version": SNAPSHOT_VERSION,
        "exportedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "settings": settings.to_dict(),
        "thirdSignalWindow": window.to_dict(),
        "days": days_to_dict(days),
    })


def dumps_snapshot(doc: Dict[str, Any], indent: int = 2) -> str:
    return json.dumps(doc, indent=indent, ensure_ascii=False)


def parse_snapshot(doc: Any, defaults: Optional[LedgerSettings] = None) -> Dict[str, Any]:
    """Accept a dict or JSON text carrying a 'days' object.

    A persisted {"state", "version"} envelope is unwrapped and migrated first.
    Anything else is an ImportParseError.
    """
    if isinstance(doc, (bytes, bytearray)):
        doc = doc.decode("utf-8", errors="replace")
    if isinstance(doc, str):
        try:
            doc = json.loads(doc)
        except ValueError as e:
            raise ImportParseError(f"Snapshot is not valid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise ImportParseError(f"Snapshot must be a JSON object, got {type(doc).__name__}")
    envelope = isinstance(doc.get("state"), dict) and "version" in doc
    body = doc["state"] if envelope else doc
    if "days" not in body:
        raise ImportParseError("Snapshot has no 'days' object")
    if not isinstance(body["days"], dict):
        raise ImportParseError("Snapshot 'days' must be an object keyed by date")
    if envelope:
        state, version = migrations.unwrap_envelope(doc)
        return migrations.migrate_state(state, version, defaults)
    return doc


def build_state_from_snapshot(
    doc: Any,
    fallback_settings: LedgerSettings,
    fallback_window: ThirdSignalWindow,
) -> Tuple[LedgerSettings, ThirdSignalWindow, Dict[str, DayRecord]]:
    """Parse and rebuild a complete ledger state without touching any store."""
    incoming = parse_snapshot(doc, fallback_settings)

    raw_settings = incoming.get("settings")
    settings = LedgerSettings.from_dict(raw_settings, fallback_settings)

    raw_window = incoming.get("thirdSignalWindow", incoming.get("thirdSignal"))
    window = (ThirdSignalWindow.from_dict(raw_window) if isinstance(raw_window, dict)
              else ThirdSignalWindow(fallback_window.active, fallback_window.start_date))

    days = recompute_days(days_from_dict(incoming.get("days") or {}), settings.initial_portfolio)
    return settings, window, days
