"""
Scenario engine for the monthly household simulation.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .cashflow import CashflowPlanner, realize_event_months
from .context import SimulationState
from .errors import ConfigError, LedgerError
from .events import Event
from .factors import FactorPathGenerator
from .ledger import Portfolio, TaxLotLedger
from .lifecycle import PhaseSchedule
from .rebalancing import compute_orders, route_orders, targets_for_position
from .registry import ProfileRegistry
from .results import MonthRecord, RunResult, TrialResult
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
)
from .tax import TaxContext
from .utils import months_between, to_month
from .validation import ValidationReport, validate_scenario

logger = logging.getLogger(__name__)


def _build(spec_cls, items: list[dict] | None, section: str) -> list:
    out = []
    for cfg in items or []:
        try:
            out.append(spec_cls(**cfg))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid entry in '{section}': {exc}") from exc
    return out


@dataclass
class Scenario:
    """
    Household finance scenario driven by the monthly step engine.

    The scenario holds immutable configuration only. Every Monte Carlo trial
    runs on its own :class:`~cashflowlab.core.context.SimulationState` copy
    and its own random stream, so trials are independent and reproducible.

    Each simulated month runs four stages in fixed order:
    1. Advance the correlated economic factors
    2. Reprice the portfolio, execute last month's orders and settle tax
    3. Net cashflows against the cash reserve target
    4. Compute rebalancing orders for the next month

    Attributes:
        id: Unique identifier for the scenario
        name: Human-readable name for the scenario
        parameters: Time horizon, household data and initial state
        factors: Economic factors driving prices and indexation
        correlations: Pairwise factor correlations
        asset_classes: Allocation buckets
        allocation_profiles: Target allocations referenced by phases
        tax_profiles: Tax profiles referenced by phases
        strategy_profiles: Strategy profiles referenced by phases
        phases: Lifecycle phases selected by age
        streams: Recurring cashflows
        events: One-off cashflows
        assets: Holdings with their initial transaction history
    """

    id: str
    name: str
    parameters: SimulationParameters
    factors: list[EconomicFactor] = field(default_factory=list)
    correlations: list[CorrelationSpec] = field(default_factory=list)
    asset_classes: list[AssetClass] = field(default_factory=list)
    allocation_profiles: list[AllocationProfile] = field(default_factory=list)
    tax_profiles: list[TaxProfile] = field(default_factory=list)
    strategy_profiles: list[StrategyProfile] = field(default_factory=list)
    phases: list[LifecyclePhase] = field(default_factory=list)
    streams: list[CashflowStream] = field(default_factory=list)
    events: list[CashflowEvent] = field(default_factory=list)
    assets: list[AssetSpec] = field(default_factory=list)
    _registry: ProfileRegistry | None = field(
        default=None, init=False, repr=False, compare=False
    )
    _schedule: PhaseSchedule | None = field(
        default=None, init=False, repr=False, compare=False
    )
    _generator: FactorPathGenerator | None = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        """Index profiles and sort phases once."""
        self._registry = ProfileRegistry(
            tax_profiles=self.tax_profiles,
            strategy_profiles=self.strategy_profiles,
            allocation_profiles=self.allocation_profiles,
            asset_classes=self.asset_classes,
            factors=self.factors,
        )
        self._schedule = PhaseSchedule(self.phases, self.parameters.date_of_birth)
        self._ledger = TaxLotLedger(self.currency_code)
        self._planner = CashflowPlanner(self.streams, self.events, self.currency_code)
        self._weights_cache: dict[str, dict[str, float]] = {}

    @classmethod
    def from_dict(cls, data: dict) -> Scenario:
        """
        Create a Scenario from a dictionary specification.

        Args:
            data: Dictionary containing scenario specification with keys:
                - id, name: Scenario identification (optional)
                - parameters: SimulationParameters fields
                - economic_factors, correlations, asset_classes
                - allocation_profiles, tax_profiles, strategy_profiles
                - lifecycle_phases, cashflow_streams, cashflow_events
                - assets: Asset fields, each with an optional 'transactions' list

        Returns:
            Configured Scenario instance

        Raises:
            ConfigError: If a section contains unknown or malformed fields
        """
        if "parameters" not in data:
            raise ConfigError("Scenario is missing the 'parameters' section")
        try:
            parameters = SimulationParameters(**data["parameters"])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid 'parameters': {exc}") from exc

        return cls(
            id=data.get("id", "scenario"),
            name=data.get("name", "Unnamed Scenario"),
            parameters=parameters,
            factors=_build(EconomicFactor, data.get("economic_factors"), "economic_factors"),
            correlations=_build(CorrelationSpec, data.get("correlations"), "correlations"),
            asset_classes=_build(AssetClass, data.get("asset_classes"), "asset_classes"),
            allocation_profiles=_build(
                AllocationProfile, data.get("allocation_profiles"), "allocation_profiles"
            ),
            tax_profiles=_build(TaxProfile, data.get("tax_profiles"), "tax_profiles"),
            strategy_profiles=_build(
                StrategyProfile, data.get("strategy_profiles"), "strategy_profiles"
            ),
            phases=_build(LifecyclePhase, data.get("lifecycle_phases"), "lifecycle_phases"),
            streams=_build(CashflowStream, data.get("cashflow_streams"), "cashflow_streams"),
            events=_build(CashflowEvent, data.get("cashflow_events"), "cashflow_events"),
            assets=_build(AssetSpec, data.get("assets"), "assets"),
        )

    # -- configuration ---------------------------------------------------

    @property
    def registry(self) -> ProfileRegistry:
        return self._registry

    @property
    def schedule(self) -> PhaseSchedule:
        return self._schedule

    @property
    def currency_code(self) -> str:
        return self.parameters.currency_code

    @property
    def start_month(self) -> np.datetime64:
        return to_month(self.parameters.simulation_start)

    @property
    def months(self) -> int:
        """Whole months from simulation start to simulation end."""
        return months_between(
            self.parameters.simulation_start, self.parameters.simulation_end
        )

    @property
    def generator(self) -> FactorPathGenerator:
        """Factor generator; the Cholesky factor is computed on first access."""
        if self._generator is None:
            self._generator = FactorPathGenerator(self.factors, self.correlations)
        return self._generator

    def validate(self, mode: str = "raise") -> ValidationReport:
        """
        Validate the configuration before any month is simulated.

        Args:
            mode: "raise" raises the first ConfigError, "warn" only emits
                warnings, "report" just returns the report

        Returns:
            ValidationReport with errors and warnings

        Example:
            >>> report = scenario.validate(mode="report")
            >>> report.get_exit_code()
            0
        """
        if mode not in ("raise", "warn", "report"):
            raise ValueError(f"Unknown validation mode: {mode}")
        report = validate_scenario(self)
        if mode == "report":
            return report
        for message in report.warnings:
            warnings.warn(message, stacklevel=2)
        if mode == "warn":
            for error in report.errors:
                warnings.warn(str(error), stacklevel=2)
        else:
            report.raise_first()
        return report

    # -- simulation ------------------------------------------------------

    def initial_state(self) -> SimulationState:
        """Initial trial state; event months are drawn per trial later."""
        gen = self.generator
        return SimulationState(
            t=self.start_month,
            cash=float(self.parameters.initial_liquid_cash),
            portfolio=Portfolio.from_specs(self.assets, self.factors),
            tax=TaxContext.from_parameters(self.parameters),
            levels=gen.initial_levels(),
            index=np.ones(len(gen)),
        )

    def run(
        self,
        trials: int | None = None,
        seed: int | None = None,
        months: int | None = None,
        trace: bool = False,
    ) -> RunResult:
        """
        Run a batch of independent Monte Carlo trials.

        Args:
            trials: Number of trials (default: parameters.monte_carlo_iterations)
            seed: Root seed (default: parameters.random_seed); each trial gets
                its own child stream via ``SeedSequence.spawn``
            months: Months to simulate (default: start to end of the horizon)
            trace: Keep the per-month records of every trial

        Returns:
            RunResult with one TrialResult per trial

        Raises:
            ConfigError: If the configuration is invalid (nothing is simulated)
        """
        self.validate(mode="raise")
        trials = self.parameters.monte_carlo_iterations if trials is None else trials
        seed = self.parameters.random_seed if seed is None else seed
        months = self.months if months is None else months
        if trials < 1:
            raise ValueError(f"trials must be >= 1, got {trials}")
        if months < 0:
            raise ValueError(f"months must be >= 0, got {months}")

        logger.info(
            "Running scenario '%s': %d trial(s) x %d month(s), seed %d",
            self.id,
            trials,
            months,
            seed,
        )
        initial = self.initial_state()
        children = np.random.SeedSequence(seed).spawn(trials)
        results = [
            self.run_trial(i, np.random.default_rng(child), months, trace, initial)
            for i, child in enumerate(children)
        ]
        failed = sum(1 for r in results if not r.succeeded)
        if failed:
            logger.warning("%d of %d trial(s) failed", failed, trials)
        return RunResult(
            trials=results,
            seed=seed,
            months=months,
            start=self.start_month,
            currency_code=self.currency_code,
        )

    def run_trial(
        self,
        trial: int,
        rng: np.random.Generator,
        months: int,
        trace: bool = False,
        initial: SimulationState | None = None,
    ) -> TrialResult:
        """
        Simulate one trial on a private copy of the initial state.

        A LedgerError abandons the trial: it is reported as failed together
        with the month in which it occurred.
        """
        state = (initial or self.initial_state()).copy()
        state.event_months = realize_event_months(self.events, rng)
        result = TrialResult(trial=trial, min_cash=state.cash)

        try:
            for _ in range(months):
                record = self.step_month(state, rng)
                result.min_cash = min(result.min_cash, state.cash)
                if trace:
                    result.trace.append(record)
            state.portfolio.check_invariants()
        except LedgerError as exc:
            result.status = "failed"
            result.error = str(exc)
            result.error_type = type(exc).__name__
            result.failed_month = state.t
            logger.warning("Trial %d failed in %s: %s", trial, state.t, exc)

        result.months_simulated = state.month
        result.final_cash = state.cash
        result.final_portfolio_value = state.portfolio.total_value()
        result.loss_carryforward_general = state.tax.loss_carryforward_general
        result.loss_carryforward_stocks = state.tax.loss_carryforward_stocks
        result.total_tax = state.cumulative_tax
        result.holdings = state.portfolio.snapshot()
        return result

    def step_month(
        self,
        state: SimulationState,
        rng: np.random.Generator | None = None,
        z: np.ndarray | None = None,
    ) -> MonthRecord:
        """
        Simulate month ``state.t`` and advance the state to the next month.

        Args:
            state: Trial state, updated in place
            rng: Random generator for the factor shocks
            z: Pre-drawn independent normals (replaces the draw from ``rng``)

        Returns:
            MonthRecord for the completed month
        """
        t = state.t
        gen = self.generator
        logged: list[Event] = []

        # 1. factors
        state.levels = gen.advance(state.levels, rng, z=z)
        state.index = gen.index_step(state.index, state.levels)
        levels = gen.as_dict(state.levels)
        index = gen.as_dict(state.index)

        position = self.schedule.glide_position(t)
        phase = position.active
        if state.phase_id is not None and phase.id != state.phase_id:
            logged.append(
                Event(
                    t,
                    "phase_change",
                    f"Lifecycle phase '{state.phase_id}' -> '{phase.id}'",
                    {"from": state.phase_id, "to": phase.id},
                )
            )
        tax_profile = self.registry.tax_profile(phase.tax_profile_id)
        strategy = self.registry.strategy_profile(phase.strategy_profile_id)

        # 2. valuation, orders and tax
        booked = self._ledger.apply_month(
            state.portfolio, levels, state.pending_orders, state.tax, tax_profile, t
        )
        state.pending_orders = []
        state.cash += booked.cash_delta
        state.cumulative_tax += booked.tax_due
        logged.extend(booked.events)

        # 3. cashflows
        plan = self._planner.net_cashflows(
            state.cash, strategy, t, state.event_months, index
        )
        state.cash = plan.new_cash
        logged.extend(plan.events)

        # 4. rebalancing
        weights = targets_for_position(position, self.registry, self._weights_cache)
        decision = compute_orders(
            state.portfolio.value_by_class(weights),
            weights,
            strategy,
            liquidation_demand=plan.liquidation_demand,
            investable_cash=plan.surplus,
        )
        orders, routing_events = route_orders(decision.orders, state.portfolio, t)
        logged.extend(routing_events)
        if decision.unmet_demand > 0:
            logged.append(
                Event(
                    t,
                    "unmet_liquidity",
                    f"Portfolio cannot cover shortfall of {decision.unmet_demand:,.2f}",
                    {"unmet_demand": decision.unmet_demand},
                )
            )
        state.pending_orders = orders

        record = MonthRecord(
            t=t,
            phase_id=phase.id,
            cash=state.cash,
            portfolio_value=state.portfolio.total_value(),
            net_flow=plan.net_flow,
            tax_due=booked.tax_due,
            liquidation_demand=plan.liquidation_demand,
            reserve_target=plan.reserve_target,
            loss_carryforward_general=state.tax.loss_carryforward_general,
            loss_carryforward_stocks=state.tax.loss_carryforward_stocks,
            factor_levels=levels,
            holdings=state.portfolio.snapshot(),
            orders=list(orders),
            transactions=booked.transactions,
            events=logged,
        )

        state.phase_id = phase.id
        state.t = t + np.timedelta64(1, "M")
        state.month += 1
        return record

    def summary(self) -> dict[str, Any]:
        """Lightweight description for API/CLI usage."""
        return {
            "id": self.id,
            "name": self.name,
            "start": str(self.start_month),
            "months": self.months,
            "currency": self.currency_code,
            "factors": [f.id for f in self.generator.factors],
            "assets": sorted(a.id for a in self.assets),
            "phases": [p.id for p in self.schedule.phases],
            "trials": self.parameters.monte_carlo_iterations,
            "seed": self.parameters.random_seed,
        }
