"""
KPI calculation utilities for Monte Carlo scenario analysis.

Trace-level functions operate on the monthly frame returned by
:meth:`TrialResult.trace_frame`; run-level functions operate on a
:class:`RunResult` or on a months x trials matrix such as
:meth:`RunResult.net_worth_paths`.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import pandas as pd

from .core.results import RunResult


def success_rate(run: RunResult, min_net_worth: float = 0.0) -> float:
    """
    Share of trials that completed and ended with net worth above a floor.

    Args:
        run: Result of Scenario.run
        min_net_worth: Terminal net worth a trial must exceed to count

    Returns:
        Fraction in [0, 1] (0.0 for an empty run)
    """
    if not run.trials:
        return 0.0
    ok = sum(
        1 for t in run.trials if t.succeeded and t.final_net_worth > min_net_worth
    )
    return ok / len(run.trials)


def terminal_wealth(run: RunResult) -> pd.Series:
    """Final net worth of every successful trial, indexed by trial."""
    return pd.Series(
        {t.trial: t.final_net_worth for t in run.succeeded()},
        name="final_net_worth",
        dtype=float,
    )


def percentile_bands(
    paths: pd.DataFrame,
    percentiles: Sequence[float] = (5, 25, 50, 75, 95),
) -> pd.DataFrame:
    """
    Per-month percentiles across trials.

    Args:
        paths: Months x trials matrix (e.g. RunResult.net_worth_paths())
        percentiles: Percentiles in [0, 100]

    Returns:
        DataFrame indexed like ``paths`` with one column per percentile ('p5', ...)
    """
    if paths.empty:
        return pd.DataFrame(index=paths.index, columns=[f"p{p:g}" for p in percentiles])
    values = np.percentile(paths.to_numpy(dtype=float), list(percentiles), axis=1)
    return pd.DataFrame(
        {f"p{p:g}": row for p, row in zip(percentiles, values)}, index=paths.index
    )


def max_drawdown(series_or_df: pd.Series | pd.DataFrame) -> pd.Series:
    """
    Calculate maximum drawdown from peak.

    For a Series, returns the maximum drawdown.
    For a DataFrame, returns maximum drawdown per column (e.g. per trial).

    Args:
        series_or_df: Series or DataFrame with values to analyze

    Returns:
        Series with maximum drawdown values (<= 0)
    """

    def _drawdown(values: pd.Series) -> float:
        running_max = values.expanding().max()
        drawdown = (values - running_max) / running_max.where(running_max > 0)
        return float(drawdown.min()) if drawdown.notna().any() else np.nan

    if isinstance(series_or_df, pd.Series):
        return pd.Series(
            [_drawdown(series_or_df)],
            index=[series_or_df.name or "value"],
            name="max_drawdown",
        )

    results = {}
    for col in series_or_df.columns:
        if pd.api.types.is_numeric_dtype(series_or_df[col]):
            results[col] = _drawdown(series_or_df[col])
        else:
            results[col] = np.nan
    return pd.Series(results, name="max_drawdown")


def liquidity_runway(
    df: pd.DataFrame,
    lookback_months: int = 6,
    cash_col: str = "cash",
    flow_col: str = "net_flow",
) -> pd.Series:
    """
    Months the cash balance would last at the recent rate of net outflows.

    Liquidity runway = cash / rolling_average(net_outflows, lookback_months)

    Args:
        df: Monthly trace frame
        lookback_months: Number of months to average net outflows over
        cash_col: Column name for the cash balance
        flow_col: Column name for the signed monthly net cashflow

    Returns:
        Series with the runway in months (inf while there are no net outflows)
    """
    outflows = (-df[flow_col]).clip(lower=0.0)
    rolling = outflows.rolling(window=lookback_months, min_periods=1).mean()
    runway = np.where(rolling > 0, df[cash_col] / rolling.where(rolling > 0), np.inf)
    return pd.Series(runway, index=df.index, name="liquidity_runway_months")


def tax_burden_cum(
    df: pd.DataFrame,
    taxes_col: str = "tax_due",
    sells_col: str = "sells",
) -> pd.Series:
    """
    Cumulative tax paid as a share of cumulative sale proceeds.

    Args:
        df: Monthly trace frame
        taxes_col: Column name for tax paid per month
        sells_col: Column name for sale proceeds per month

    Returns:
        Series with the cumulative tax burden (0 before the first sale)
    """
    cum_tax = df[taxes_col].cumsum()
    cum_sells = df[sells_col].cumsum()
    burden = np.where(cum_sells > 0, cum_tax / cum_sells.where(cum_sells > 0), 0.0)
    return pd.Series(burden, index=df.index, name="tax_burden_cum_pct")


def cumulative_tax(df: pd.DataFrame, taxes_col: str = "tax_due") -> pd.Series:
    """Running total of capital-gains tax paid."""
    return df[taxes_col].cumsum().rename("tax_cum")


def shortfall_months(df: pd.DataFrame, demand_col: str = "liquidation_demand") -> int:
    """Number of months in which cash fell below the reserve target."""
    return int((df[demand_col] > 0).sum())
