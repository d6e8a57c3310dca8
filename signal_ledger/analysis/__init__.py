from signal_ledger.analysis.forecast import (
    combined_curve,
    forecast_curve,
    projected_balance,
    real_equity_curve,
)
from signal_ledger.analysis.operations import (
    available_months,
    operation_rows,
    operations_summary,
)

__all__ = [
    "combined_curve", "forecast_curve", "projected_balance", "real_equity_curve",
    "available_months", "operation_rows", "operations_summary",
]
