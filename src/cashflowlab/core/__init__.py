"""
Core module for CashflowLab.

This module contains the monthly step engine: factor paths, the tax-lot
ledger, the cashflow planner, the rebalancing engine and the scenario loop
that composes them.
"""

from . import kinds
from .cashflow import CashflowPlanner, LiquidityPlan, realize_event_months
from .context import SimulationState
from .errors import (
    ConfigError,
    DanglingProfileReference,
    InsufficientLotQuantity,
    InvalidCorrelationMatrix,
    LedgerError,
    NoActivePhaseAtStart,
    NoCostBasisAvailable,
)
from .events import Event
from .factors import FactorPathGenerator, build_correlation_matrix, cholesky_lower
from .ledger import AssetHolding, AssetOrder, Portfolio, TaxLotLedger
from .lifecycle import GlidePosition, PhaseSchedule
from .rebalancing import (
    ClassOrder,
    RebalanceDecision,
    compute_orders,
    glidepath_fraction,
    interpolate_weights,
    route_orders,
    target_weights,
)
from .registry import ProfileRegistry
from .results import (
    MonthRecord,
    NumpyEncoder,
    RunResult,
    TrialResult,
    aggregate_trace,
)
from .scenario import Scenario
from .specs import (
    AllocationProfile,
    AssetClass,
    AssetSpec,
    CashflowEvent,
    CashflowStream,
    CorrelationSpec,
    EconomicFactor,
    LifecyclePhase,
    SimulationParameters,
    StrategyProfile,
    TaxProfile,
    Transaction,
)
from .tax import RealizedGains, TaxContext, TaxSettlement
from .utils import month_range
from .validation import ValidationReport, validate_scenario

__all__ = [
    # Errors
    "ConfigError",
    "InvalidCorrelationMatrix",
    "NoActivePhaseAtStart",
    "DanglingProfileReference",
    "LedgerError",
    "InsufficientLotQuantity",
    "NoCostBasisAvailable",
    # Specs
    "EconomicFactor",
    "CorrelationSpec",
    "AssetClass",
    "AllocationProfile",
    "TaxProfile",
    "StrategyProfile",
    "LifecyclePhase",
    "CashflowStream",
    "CashflowEvent",
    "Transaction",
    "AssetSpec",
    "SimulationParameters",
    # Engine components
    "FactorPathGenerator",
    "build_correlation_matrix",
    "cholesky_lower",
    "AssetHolding",
    "AssetOrder",
    "Portfolio",
    "TaxLotLedger",
    "RealizedGains",
    "TaxContext",
    "TaxSettlement",
    "CashflowPlanner",
    "LiquidityPlan",
    "realize_event_months",
    "PhaseSchedule",
    "GlidePosition",
    "ClassOrder",
    "RebalanceDecision",
    "compute_orders",
    "route_orders",
    "target_weights",
    "glidepath_fraction",
    "interpolate_weights",
    "ProfileRegistry",
    # Scenario, state and results
    "Scenario",
    "SimulationState",
    "Event",
    "MonthRecord",
    "TrialResult",
    "RunResult",
    "NumpyEncoder",
    "aggregate_trace",
    # Validation
    "ValidationReport",
    "validate_scenario",
    # Utils
    "month_range",
    "kinds",
]
