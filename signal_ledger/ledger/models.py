"""
Ledger Data Models
==================

LedgerSettings    : start date, initial portfolio, forecast window
ThirdSignalWindow : the 5-day optional third-signal window
DayRecord         : one calendar day: four signals, withdrawal, reward

All models are dataclasses with to_dict()/from_dict(). The dict shape uses
the camelCase field names of the persisted/exported JSON document, and
from_dict() never raises on missing or malformed fields.
"""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from signal_ledger.ledger.dates import is_date_key, normalize_date_key

SIGNAL_COUNT = 4
GATED_SIGNAL_INDEX = 2          # third signal, counts only inside the window
WINDOW_LENGTH_DAYS = 5


def to_number(value: Any) -> float:
    """Coerce free-form input to a float; anything unusable becomes 0.0.

    Strings with a comma are read in European format ("1.234,5" -> 1234.5).
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        text = value.strip().replace(" ", "")
        if not text:
            return 0.0
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        try:
            result = float(text)
        except ValueError:
            return 0.0
    else:
        try:
            result = float(value)
        except (TypeError, ValueError):
            return 0.0
    if math.isnan(result) or math.isinf(result):
        return 0.0
    return result


def to_amount(value: Any) -> float:
    """Coerce to a non-negative amount (withdrawal/reward fields)."""
    return max(0.0, to_number(value))


def clean_signals(values: Optional[Iterable[Any]]) -> List[float]:
    """Exactly SIGNAL_COUNT coerced floats; missing entries are 0."""
    cleaned: List[float] = []
    if values is not None and not isinstance(values, (str, bytes, dict)):
        try:
            cleaned = [to_number(v) for v in values]
        except TypeError:
            cleaned = []
    cleaned = cleaned[:SIGNAL_COUNT]
    cleaned.extend([0.0] * (SIGNAL_COUNT - len(cleaned)))
    return cleaned


@dataclass
class LedgerSettings:
    start_date: str = "2025-07-30"
    initial_portfolio: float = 2361.0
    forecast_window: int = 7

    def to_dict(self) -> dict:
        return {
            "startDate": self.start_date,
            "initialPortfolio": self.initial_portfolio,
            "forecastWindow": self.forecast_window,
        }

    @classmethod
    def from_dict(cls, d: Optional[dict], defaults: Optional["LedgerSettings"] = None) -> "LedgerSettings":
        base = defaults or cls()
        if not isinstance(d, dict):
            return cls(base.start_date, base.initial_portfolio, base.forecast_window)
        start = d.get("startDate")
        start_date = normalize_date_key(start) if is_date_key(start) else base.start_date
        initial = to_number(d["initialPortfolio"]) if "initialPortfolio" in d else base.initial_portfolio
        window = clamp_forecast_window(d.get("forecastWindow"), base.forecast_window)
        return cls(start_date=start_date, initial_portfolio=initial, forecast_window=window)


def clamp_forecast_window(value: Any, default: int = 7) -> int:
    n = int(to_number(value))
    if n == 0:
        n = default
    return max(1, n)


@dataclass
class ThirdSignalWindow:
    """Invariant: active implies start_date is set."""
    active: bool = False
    start_date: Optional[str] = None

    def __post_init__(self):
        if self.active and not self.start_date:
            self.active = False

    def to_dict(self) -> dict:
        return {"active": self.active, "startDate": self.start_date}

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "ThirdSignalWindow":
        if not isinstance(d, dict):
            return cls()
        start = d.get("startDate")
        start_date = normalize_date_key(start) if is_date_key(start) else None
        return cls(active=bool(d.get("active")), start_date=start_date)


@dataclass
class DayRecord:
    signals: List[float] = field(default_factory=lambda: [0.0] * SIGNAL_COUNT)
    daily_sum: float = 0.0
    withdrawal: float = 0.0
    reward: float = 0.0
    portfolio_after: float = 0.0    # derived by the recompute pass

    def __post_init__(self):
        self.signals = clean_signals(self.signals)
        self.withdrawal = to_amount(self.withdrawal)
        self.reward = to_amount(self.reward)
        self.compute_sum()

    def compute_sum(self):
        self.daily_sum = sum(self.signals)

    @property
    def net_change(self) -> float:
        return self.daily_sum - self.withdrawal + self.reward

    def copy(self) -> "DayRecord":
        return DayRecord(list(self.signals), self.daily_sum, self.withdrawal,
                         self.reward, self.portfolio_after)

    def to_dict(self) -> dict:
        return {
            "signals": list(self.signals),
            "dailySum": self.daily_sum,
            "withdrawal": self.withdrawal,
            "reward": self.reward,
            "portfolioAfter": self.portfolio_after,
        }

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "DayRecord":
        # dailySum is never trusted: __post_init__ rebuilds it from signals
        if not isinstance(d, dict):
            return cls()
        return cls(
            signals=d.get("signals"),
            withdrawal=d.get("withdrawal"),
            reward=d.get("reward"),
            portfolio_after=to_number(d.get("portfolioAfter")),
        )


def days_from_dict(raw: Any) -> Dict[str, DayRecord]:
    """Build a DayRecord mapping, dropping keys that are not dates.

    Loose keys that normalize to the same day ("2025-1-5", "2025-01-05")
    are merged field by field.
    """
    days: Dict[str, DayRecord] = {}
    if not isinstance(raw, dict):
        return days
    for key, value in raw.items():
        if not is_date_key(key):
            continue
        norm = normalize_date_key(key)
        record = DayRecord.from_dict(value)
        prev = days.get(norm)
        if prev is not None:
            record = DayRecord(
                signals=[a + b for a, b in zip(prev.signals, record.signals)],
                withdrawal=prev.withdrawal + record.withdrawal,
                reward=prev.reward + record.reward,
            )
        days[norm] = record
    return days


def days_to_dict(days: Dict[str, DayRecord]) -> Dict[str, dict]:
    return {k: days[k].to_dict() for k in sorted(days)}


def recompute_days(days: Dict[str, DayRecord], initial_portfolio: float) -> Dict[str, DayRecord]:
    """Running balance over all days in ascending date order. Returns a new mapping."""
    acc = to_number(initial_portfolio)
    result: Dict[str, DayRecord] = {}
    for key in sorted(days):
        record = days[key].copy()
        record.compute_sum()
        acc += record.net_change
        record.portfolio_after = acc
        result[key] = record
    return result
