"""
Result containers for CashflowLab runs.

A run produces one :class:`TrialResult` per Monte Carlo trial. Each trial
optionally carries its per-month trace (:class:`MonthRecord`); the pandas
views (:meth:`TrialResult.trace_frame`, :meth:`RunResult.to_frame`) are built
on demand.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from .events import Event
from .kinds import TransactionType
from .ledger import AssetOrder
from .specs import Transaction
from .utils import month_range

TRACE_FLOWS = ["net_flow", "tax_due", "liquidation_demand", "buys", "sells"]
TRACE_STOCKS = [
    "cash",
    "portfolio_value",
    "net_worth",
    "reserve_target",
    "loss_carryforward_general",
    "loss_carryforward_stocks",
]


@dataclass
class MonthRecord:
    """Snapshot of one trial after one completed month."""

    t: np.datetime64
    phase_id: str
    cash: float
    portfolio_value: float
    net_flow: float
    tax_due: float
    liquidation_demand: float
    reserve_target: float
    loss_carryforward_general: float
    loss_carryforward_stocks: float
    factor_levels: dict[str, float] = field(default_factory=dict)
    holdings: dict[str, dict[str, float]] = field(default_factory=dict)
    orders: list[AssetOrder] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)

    @property
    def net_worth(self) -> float:
        return self.cash + self.portfolio_value

    def to_row(self) -> dict[str, Any]:
        buys = sells = 0.0
        for tx in self.transactions:
            if tx.type == TransactionType.BUY:
                buys += tx.total_amount
            elif tx.type == TransactionType.SELL:
                sells += tx.total_amount
        row = {
            "phase_id": self.phase_id,
            "cash": self.cash,
            "portfolio_value": self.portfolio_value,
            "net_worth": self.net_worth,
            "net_flow": self.net_flow,
            "tax_due": self.tax_due,
            "liquidation_demand": self.liquidation_demand,
            "reserve_target": self.reserve_target,
            "loss_carryforward_general": self.loss_carryforward_general,
            "loss_carryforward_stocks": self.loss_carryforward_stocks,
            "buys": buys,
            "sells": sells,
        }
        for fid, level in self.factor_levels.items():
            row[f"factor:{fid}"] = level
        return row


@dataclass
class TrialResult:
    """Final state (and optional trace) of one Monte Carlo trial."""

    trial: int
    status: str = "ok"
    error: str | None = None
    error_type: str | None = None
    failed_month: np.datetime64 | None = None
    months_simulated: int = 0
    final_cash: float = 0.0
    final_portfolio_value: float = 0.0
    loss_carryforward_general: float = 0.0
    loss_carryforward_stocks: float = 0.0
    total_tax: float = 0.0
    min_cash: float = 0.0
    holdings: dict[str, dict[str, float]] = field(default_factory=dict)
    trace: list[MonthRecord] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "ok"

    @property
    def final_net_worth(self) -> float:
        return self.final_cash + self.final_portfolio_value

    def summary(self) -> dict[str, Any]:
        return {
            "trial": self.trial,
            "status": self.status,
            "error": self.error,
            "error_type": self.error_type,
            "failed_month": None if self.failed_month is None else str(self.failed_month),
            "months_simulated": self.months_simulated,
            "final_cash": self.final_cash,
            "final_portfolio_value": self.final_portfolio_value,
            "final_net_worth": self.final_net_worth,
            "loss_carryforward_general": self.loss_carryforward_general,
            "loss_carryforward_stocks": self.loss_carryforward_stocks,
            "total_tax": self.total_tax,
            "min_cash": self.min_cash,
        }

    def trace_frame(self) -> pd.DataFrame:
        """Monthly trace as a DataFrame with a monthly PeriodIndex."""
        if not self.trace:
            return pd.DataFrame(columns=TRACE_STOCKS + TRACE_FLOWS)
        index = pd.PeriodIndex([str(r.t) for r in self.trace], freq="M", name="t")
        return pd.DataFrame([r.to_row() for r in self.trace], index=index)

    def transactions_frame(self) -> pd.DataFrame:
        rows = []
        for record in self.trace:
            for tx in record.transactions:
                rows.append(tx.to_dict())
        return pd.DataFrame(
            rows,
            columns=[
                "id",
                "t",
                "type",
                "quantity",
                "price_per_unit",
                "total_amount",
                "tax_amount",
            ],
        )

    def events(self) -> list[Event]:
        return [e for record in self.trace for e in record.events]


@dataclass
class RunResult:
    """Outcome of a batch of Monte Carlo trials."""

    trials: list[TrialResult]
    seed: int
    months: int
    start: np.datetime64
    currency_code: str = "EUR"

    def __len__(self) -> int:
        return len(self.trials)

    def succeeded(self) -> list[TrialResult]:
        return [t for t in self.trials if t.succeeded]

    def failed(self) -> list[TrialResult]:
        return [t for t in self.trials if not t.succeeded]

    @property
    def has_failures(self) -> bool:
        return any(not t.succeeded for t in self.trials)

    def to_frame(self) -> pd.DataFrame:
        """One row per trial, indexed by trial number."""
        frame = pd.DataFrame([t.summary() for t in self.trials])
        if frame.empty:
            return frame
        return frame.set_index("trial")

    def net_worth_paths(self) -> pd.DataFrame:
        """Months x trials matrix of net worth (traced, successful trials only)."""
        months = month_range(self.start, self.months)
        index = pd.PeriodIndex(months.astype(str), freq="M", name="t")
        columns = {
            t.trial: t.trace_frame()["net_worth"] for t in self.succeeded() if t.trace
        }
        return pd.DataFrame(columns, index=index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "seed": self.seed,
            "months": self.months,
            "start": str(self.start),
            "currency": self.currency_code,
            "trials": [t.summary() for t in self.trials],
        }


def aggregate_trace(df: pd.DataFrame, freq: str = "Y") -> pd.DataFrame:
    """
    Aggregate a monthly trace with financial semantics.

    Stocks (cash, values, carryforwards) take the period-end value; flows
    (net flow, tax, trades) are summed over the period.

    Example:
        >>> yearly = aggregate_trace(result.trials[0].trace_frame(), "Y")
    """
    if not isinstance(df.index, pd.PeriodIndex):
        df = df.copy()
        df.index = df.index.to_period("M")
    if freq.upper() in ["M", "MONTHLY"]:
        return df

    agg = {col: ("sum" if col in TRACE_FLOWS else "last") for col in df.columns}
    out = df.groupby(df.index.asfreq(freq)).agg(agg)
    return out.reindex(columns=df.columns)


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder for numpy scalars and arrays, datetime64 and pandas frames."""

    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.datetime64):
            return str(obj)
        elif isinstance(obj, pd.DataFrame):
            return obj.to_dict("records")
        elif isinstance(obj, pd.Series):
            return obj.to_dict()
        return super().default(obj)
