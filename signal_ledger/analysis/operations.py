"""
Operations table and KPIs, optionally filtered to one month ("YYYY-MM").
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from signal_ledger.ledger.dates import month_key
from signal_ledger.ledger.models import DayRecord

SIGNAL_NAMES = ("Signal 1", "Signal 2", "Signal 3", "Signal 4")
WITHDRAWAL_LABEL = "Withdrawal"
REWARD_LABEL = "Reward"
EMPTY_LABEL = "-"


@dataclass
class OperationRow:
    date: str
    label: str
    result: float
    daily_sum: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OperationsSummary:
    month: str = ""
    days_count: int = 0
    total_pl: float = 0.0
    total_withdrawn: float = 0.0
    total_rewards: float = 0.0
    net: float = 0.0
    positive_days: int = 0
    negative_days: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _in_month(key: str, month: Optional[str]) -> bool:
    return not month or key.startswith(month)


def available_months(days: Dict[str, DayRecord]) -> List[str]:
    return sorted({month_key(k) for k in days})


def operation_rows(days: Dict[str, DayRecord], month: Optional[str] = None) -> List[OperationRow]:
    """One row per non-zero signal, withdrawal and reward; a placeholder for empty days."""
    rows: List[OperationRow] = []
    for key in sorted(days):
        if not _in_month(key, month):
            continue
        record = days[key]
        for idx, value in enumerate(record.signals):
            if value == 0:
                continue
            name = SIGNAL_NAMES[idx] if idx < len(SIGNAL_NAMES) else f"Signal {idx + 1}"
            rows.append(OperationRow(key, name, value, record.daily_sum))
        if record.withdrawal > 0:
            rows.append(OperationRow(key, WITHDRAWAL_LABEL, -record.withdrawal, record.daily_sum))
        if record.reward > 0:
            rows.append(OperationRow(key, REWARD_LABEL, record.reward, record.daily_sum))
        if not any(v != 0 for v in record.signals) and record.withdrawal <= 0 and record.reward <= 0:
            rows.append(OperationRow(key, EMPTY_LABEL, 0.0, record.daily_sum))
    return rows


def operations_summary(days: Dict[str, DayRecord], month: Optional[str] = None) -> OperationsSummary:
    summary = OperationsSummary(month=month or "")
    for key, record in days.items():
        if not _in_month(key, month):
            continue
        summary.days_count += 1
        summary.total_pl += record.daily_sum
        summary.total_withdrawn += record.withdrawal
        summary.total_rewards += record.reward
        if record.daily_sum > 0:
            summary.positive_days += 1
        elif record.daily_sum < 0:
            summary.negative_days += 1
    summary.net = summary.total_pl - summary.total_withdrawn + summary.total_rewards
    return summary
