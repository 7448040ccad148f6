"""
CashflowLab - Monte Carlo simulation of household finances

CashflowLab projects a household's finances decades ahead under uncertain
markets. Each simulated month runs a fixed four-stage pipeline:

- **Factors**: correlated GBM / Ornstein-Uhlenbeck economic factors advance
  one step (Cholesky-correlated shocks)
- **Ledger**: assets are repriced from their factors, pending orders execute
  against per-asset FIFO tax lots, and German-style capital-gains tax is
  settled against the equity and general loss carryforwards
- **Cashflow**: income/expense streams and one-off events are netted against
  a cash reserve target; shortfalls become a liquidation demand
- **Rebalancing**: the lifecycle phase's target allocation (with glide path)
  is compared with current holdings and orders are emitted for next month

Quick Start:
    ```python
    import json
    from cashflowlab import Scenario

    with open("scenario.json") as f:
        scenario = Scenario.from_dict(json.load(f))

    result = scenario.run(trials=500, seed=42)
    print(result.to_frame().describe())
    ```

License:
    This is a proof-of-concept for educational and research purposes.
"""

# Version information
__version__ = "0.1.0"
__author__ = "CashflowLab Team"
__description__ = "Monte Carlo household cashflow simulation with FIFO tax lots"

from .core import (
    ConfigError,
    DanglingProfileReference,
    Event,
    InsufficientLotQuantity,
    InvalidCorrelationMatrix,
    LedgerError,
    NoActivePhaseAtStart,
    NoCostBasisAvailable,
    RunResult,
    Scenario,
    SimulationState,
    TrialResult,
    ValidationReport,
    kinds,
    month_range,
)
from .kpi import (
    cumulative_tax,
    liquidity_runway,
    max_drawdown,
    percentile_bands,
    shortfall_months,
    success_rate,
    tax_burden_cum,
    terminal_wealth,
)

# Define what gets imported with "from cashflowlab import *"
__all__ = [
    # Core classes
    "Scenario",
    "SimulationState",
    "RunResult",
    "TrialResult",
    "Event",
    "ValidationReport",
    # Errors
    "ConfigError",
    "InvalidCorrelationMatrix",
    "NoActivePhaseAtStart",
    "DanglingProfileReference",
    "LedgerError",
    "InsufficientLotQuantity",
    "NoCostBasisAvailable",
    # KPI utilities
    "success_rate",
    "terminal_wealth",
    "percentile_bands",
    "max_drawdown",
    "liquidity_runway",
    "tax_burden_cum",
    "cumulative_tax",
    "shortfall_months",
    # Utility functions
    "month_range",
    "kinds",
]
