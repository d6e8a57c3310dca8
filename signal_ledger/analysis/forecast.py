"""
Equity curves for chart collaborators.

real_equity_curve : recorded balance per calendar day, from the start date
                    through the last recorded day
forecast_curve    : compounded projection: three signals a day, each
                    risking 1% of the balance for a 58% return on it
combined_curve    : both series on one date index (real is NaN past the
                    last recorded day)
"""

from __future__ import annotations
import logging
from typing import Dict, Optional

import numpy as np
import pandas as pd

from signal_ledger.ledger.dates import DateLike, add_days, date_range, normalize_date_key
from signal_ledger.ledger.models import DayRecord, LedgerSettings
from signal_ledger.ledger.store import LedgerStore

logger = logging.getLogger("ledger_forecast")

RISK_PER_SIGNAL = 0.01
RETURN_ON_RISK = 0.58
SIGNALS_PER_DAY = 3
DAILY_FACTOR = (1 + RISK_PER_SIGNAL * RETURN_ON_RISK) ** SIGNALS_PER_DAY

HORIZON_AFTER_LAST_DAY = 60
MIN_HORIZON_DAYS = 120


def _unpack(source, settings: Optional[LedgerSettings]):
    if isinstance(source, LedgerStore):
        return source.days(), settings or source.settings
    if settings is None:
        raise ValueError("settings are required when passing a plain day mapping")
    return source, settings


def default_horizon_end(days: Dict[str, DayRecord], settings: LedgerSettings) -> str:
    """Later of (last recorded day + 60) and (start date + 120)."""
    by_start = add_days(settings.start_date, MIN_HORIZON_DAYS)
    if not days:
        return by_start
    by_last = add_days(max(days), HORIZON_AFTER_LAST_DAY)
    return max(by_start, by_last)


def real_equity_curve(source, settings: Optional[LedgerSettings] = None) -> pd.DataFrame:
    """Balance at the end of each calendar day. Days before the start date fold into the first point."""
    days, settings = _unpack(source, settings)
    start = settings.start_date
    end = max(days) if days else start
    if end < start:
        end = start
    index = list(date_range(start, end))

    net = pd.Series(0.0, index=index)
    opening = float(settings.initial_portfolio)
    for key, record in days.items():
        if key < start:
            opening += record.net_change
        else:
            net.loc[key] += record.net_change

    real = (opening + net.cumsum()).round(2)
    df = pd.DataFrame({"real": real.values}, index=pd.to_datetime(index))
    df.index.name = "date"
    return df


def forecast_curve(source, settings: Optional[LedgerSettings] = None,
                   horizon_end: Optional[DateLike] = None) -> pd.DataFrame:
    """Compounded projection. Each day's withdrawal is taken before growth; rewards are ignored."""
    days, settings = _unpack(source, settings)
    end = normalize_date_key(horizon_end) if horizon_end else default_horizon_end(days, settings)
    index = list(date_range(settings.start_date, end))

    values = np.zeros(len(index))
    current = round(float(settings.initial_portfolio), 2)
    for i, key in enumerate(index):
        if i > 0:
            record = days.get(key)
            withdrawal = record.withdrawal if record else 0.0
            current = round((current - withdrawal) * DAILY_FACTOR, 2)
        values[i] = current

    df = pd.DataFrame({"forecast": values}, index=pd.to_datetime(index))
    df.index.name = "date"
    return df


def combined_curve(source, settings: Optional[LedgerSettings] = None,
                   horizon_end: Optional[DateLike] = None) -> pd.DataFrame:
    forecast = forecast_curve(source, settings, horizon_end)
    real = real_equity_curve(source, settings)
    df = forecast.join(real, how="left")
    logger.debug("Combined curve: %d rows through %s", len(df), df.index[-1].date() if len(df) else None)
    return df


def projected_balance(source, settings: Optional[LedgerSettings] = None,
                      days_ahead: Optional[int] = None) -> float:
    """Forecast value ``days_ahead`` (default: forecast window) after the last recorded day."""
    days, settings = _unpack(source, settings)
    ahead = settings.forecast_window if days_ahead is None else max(0, int(days_ahead))
    anchor = max(days) if days else settings.start_date
    target = add_days(max(anchor, settings.start_date), ahead)
    curve = forecast_curve(days, settings, horizon_end=target)
    return float(curve["forecast"].iloc[-1])
