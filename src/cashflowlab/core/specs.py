"""
Specification classes for CashflowLab scenarios.

These dataclasses are the validated configuration objects the engine consumes.
They are built once per scenario (usually through
:meth:`cashflowlab.core.scenario.Scenario.from_dict`) and are never mutated
during a run. ``__post_init__`` only coerces plain JSON values (strings,
ISO dates, nested dicts) into the typed representation; range and
required-field checks belong to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

import numpy as np

from .kinds import (
    CashflowInterval,
    CashflowType,
    StochasticModel,
    TaxType,
    TransactionType,
)
from .utils import to_date, to_month


@dataclass(frozen=True)
class EconomicFactor:
    """
    Stochastic market factor (e.g. 'MSCI_World', 'Inflation').

    For GBM ``expected_return`` is the drift mu; for OU it is the long-run
    mean the process reverts to. ``mean_reversion_speed`` is ignored for GBM.
    """

    id: str
    name: str = ""
    model: StochasticModel = StochasticModel.GBM
    expected_return: float = 0.0
    volatility: float = 0.0
    mean_reversion_speed: float = 0.0
    initial_value: float = 100.0

    def __post_init__(self):
        object.__setattr__(self, "model", StochasticModel.parse(self.model))


@dataclass(frozen=True)
class CorrelationSpec:
    """Pearson correlation between two factors (unordered pair)."""

    factor_a: str
    factor_b: str
    correlation: float = 0.0


@dataclass(frozen=True)
class AssetClass:
    """Allocation bucket (e.g. 'Aktien_Welt', 'Sicherheitsbaustein')."""

    id: str
    name: str = ""
    target_weight: float = 0.0
    color: str | None = None


@dataclass(frozen=True)
class AllocationProfile:
    """Named target allocation: asset-class id -> weight."""

    id: str
    name: str = ""
    weights: dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        # accept the original list-of-entries shape as well
        weights = self.weights
        if isinstance(weights, list):
            weights = {e["asset_class_id"]: e["target_weight"] for e in weights}
        object.__setattr__(
            self, "weights", {str(k): float(v) for k, v in weights.items()}
        )


@dataclass(frozen=True)
class TaxProfile:
    """Tax parameters of a lifecycle phase (German flat capital-gains tax)."""

    id: str
    name: str = ""
    capital_gains_tax_rate: float = 0.26375
    tax_free_allowance: float = 1000.0  # per calendar year
    income_tax_rate: float = 0.0
    base_interest_rate: float = 0.0  # Basiszins for the Vorabpauschale


@dataclass(frozen=True)
class StrategyProfile:
    """Liquidity and rebalancing rules of a lifecycle phase."""

    id: str
    name: str = ""
    cash_reserve_months: int = 3
    rebalancing_threshold: float = 0.05
    minimum_transaction_amount: float = 50.0
    lookahead_months: int = 0


@dataclass(frozen=True)
class LifecyclePhase:
    """
    Lifecycle phase selected by the household's age.

    ``glidepath_months`` is the number of months *before this phase starts*
    during which the target allocation moves linearly from the preceding
    phase's allocation to this one. 0 means an immediate switch.
    """

    id: str
    start_age: int
    tax_profile_id: str
    strategy_profile_id: str
    allocation_profile_id: str = ""
    allocation_overrides: dict[str, float] = field(default_factory=dict)
    glidepath_months: int = 0

    def __post_init__(self):
        overrides = self.allocation_overrides
        if isinstance(overrides, list):
            overrides = {e["asset_class_id"]: e["target_weight"] for e in overrides}
        object.__setattr__(
            self,
            "allocation_overrides",
            {str(k): float(v) for k, v in overrides.items()},
        )


@dataclass(frozen=True)
class CashflowStream:
    """Recurring income or expense (salary, rent, yearly insurance)."""

    id: str
    name: str = ""
    type: CashflowType = CashflowType.EXPENSE
    amount: float = 0.0
    interval: CashflowInterval = CashflowInterval.MONTHLY
    start_date: date | None = None
    end_date: date | None = None
    economic_factor_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "type", CashflowType(self.type))
        object.__setattr__(self, "interval", CashflowInterval(self.interval))
        if self.start_date is not None:
            object.__setattr__(self, "start_date", to_date(self.start_date))
        if self.end_date is not None:
            object.__setattr__(self, "end_date", to_date(self.end_date))

    @property
    def sign(self) -> float:
        return 1.0 if self.type == CashflowType.INCOME else -1.0

    @property
    def monthly_equivalent(self) -> float:
        """Unsigned amount spread evenly over the months of a year."""
        if self.interval == CashflowInterval.YEARLY:
            return self.amount / 12.0
        return self.amount


@dataclass(frozen=True)
class CashflowEvent:
    """
    One-off planned cashflow (car purchase, inheritance).

    The realized month is ``target_date`` shifted by an offset drawn uniformly
    from ``[earliest_month_offset, latest_month_offset]`` once per trial.
    """

    id: str
    name: str = ""
    type: CashflowType = CashflowType.EXPENSE
    amount: float = 0.0
    target_date: date | None = None
    earliest_month_offset: int | None = None
    latest_month_offset: int | None = None
    economic_factor_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "type", CashflowType(self.type))
        if self.target_date is not None:
            object.__setattr__(self, "target_date", to_date(self.target_date))

    @property
    def sign(self) -> float:
        return 1.0 if self.type == CashflowType.INCOME else -1.0


@dataclass(frozen=True)
class Transaction:
    """
    Immutable entry in an asset's transaction log.

    For buys and sells ``quantity`` and ``price_per_unit`` are set and
    ``total_amount`` is their product. Distributions and prepayments carry the
    taxable amount in ``total_amount``.
    """

    id: str
    t: np.datetime64
    type: TransactionType
    quantity: float = 0.0
    price_per_unit: float = 0.0
    total_amount: float = 0.0
    tax_amount: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "t", to_month(self.t))
        object.__setattr__(self, "type", TransactionType(self.type))
        if not self.total_amount and self.quantity and self.price_per_unit:
            object.__setattr__(
                self, "total_amount", self.quantity * self.price_per_unit
            )

    @property
    def signed_quantity(self) -> float:
        if self.type == TransactionType.BUY:
            return self.quantity
        if self.type == TransactionType.SELL:
            return -self.quantity
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "t": str(self.t),
            "type": self.type.value,
            "quantity": self.quantity,
            "price_per_unit": self.price_per_unit,
            "total_amount": self.total_amount,
            "tax_amount": self.tax_amount,
        }


@dataclass(frozen=True)
class AssetSpec:
    """
    A concrete holding (ETF, fund) linked to an economic factor.

    Several assets may share a factor; they then share its price path but
    keep their own quantity and transaction history.
    """

    id: str
    asset_class_id: str
    economic_factor_id: str
    name: str = ""
    tax_type: TaxType = TaxType.EQUITY_FUND
    is_active_savings_instrument: bool = False
    transactions: tuple[Transaction, ...] = ()
    current_price: float | None = None
    distribution_yield_pa: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "tax_type", TaxType(self.tax_type))
        txs = []
        for i, tx in enumerate(self.transactions):
            if isinstance(tx, dict):
                tx = dict(tx)
                tx.setdefault("id", f"{self.id}-init-{i}")
                tx = Transaction(**tx)
            txs.append(tx)
        # oldest first; stable for same-month entries
        txs.sort(key=lambda tx: tx.t)
        object.__setattr__(self, "transactions", tuple(txs))


@dataclass(frozen=True)
class SimulationParameters:
    """Time horizon and initial state of a scenario."""

    simulation_start: date
    simulation_end: date
    date_of_birth: date
    initial_liquid_cash: float = 0.0
    currency_code: str = "EUR"
    initial_loss_carryforward_general: float = 0.0
    initial_loss_carryforward_stocks: float = 0.0
    random_seed: int = 0
    monte_carlo_iterations: int = 1

    def __post_init__(self):
        for name in ("simulation_start", "simulation_end", "date_of_birth"):
            object.__setattr__(self, name, to_date(getattr(self, name)))
