"""
Context classes for CashflowLab simulation.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

import numpy as np

from .ledger import AssetOrder, Portfolio
from .tax import TaxContext


@dataclass
class SimulationState:
    """
    Mutable state of one Monte Carlo trial.

    Every pipeline stage reads and updates this object; nothing else holds
    mutable simulation state. Each trial works on its own deep copy of the
    initial state, so trials never share portfolio or tax data.

    Attributes:
        t: Month that will be simulated next (np.datetime64[M])
        cash: Liquid cash balance
        portfolio: Asset holdings with their transaction logs
        tax: Loss carryforward pots and allowance usage
        levels: Factor levels in factor-id order
        index: Cashflow indexation multipliers in factor-id order
        pending_orders: Orders to execute at the start of the next month
        event_months: Realized month of every one-off cashflow event
        month: Number of months completed
        phase_id: Id of the lifecycle phase active in the last month
    """

    t: np.datetime64
    cash: float
    portfolio: Portfolio
    tax: TaxContext
    levels: np.ndarray
    index: np.ndarray
    pending_orders: list[AssetOrder] = field(default_factory=list)
    event_months: dict[str, np.datetime64] = field(default_factory=dict)
    month: int = 0
    phase_id: str | None = None
    cumulative_tax: float = 0.0

    @property
    def net_worth(self) -> float:
        return self.cash + self.portfolio.total_value()

    def copy(self) -> SimulationState:
        return copy.deepcopy(self)
