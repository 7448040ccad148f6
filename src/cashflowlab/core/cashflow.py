"""
Cashflow and liquidity planning.

Streams and one-off events are netted into liquid cash once per month. When
the resulting balance falls below the strategy's reserve target the shortfall
becomes a liquidation demand that the rebalancing engine must raise.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import numpy as np

from .currency import MONEY_TOLERANCE, round_money
from .events import Event
from .kinds import CashflowInterval, CashflowType
from .specs import CashflowEvent, CashflowStream, StrategyProfile
from .utils import month_of_year, to_month

logger = logging.getLogger(__name__)


def stream_is_active(stream: CashflowStream, t: np.datetime64) -> bool:
    """True if ``stream`` pays in month ``t``."""
    if stream.start_date is not None and t < to_month(stream.start_date):
        return False
    if stream.end_date is not None and t > to_month(stream.end_date):
        return False
    if stream.interval == CashflowInterval.YEARLY:
        pay_month = stream.start_date.month if stream.start_date else 1
        return month_of_year(t) == pay_month
    return True


def indexation(factor_id: str | None, index: Mapping[str, float] | None) -> float:
    if factor_id is None or not index:
        return 1.0
    return float(index.get(factor_id, 1.0))


def realize_event_months(
    events: Iterable[CashflowEvent], rng: np.random.Generator
) -> dict[str, np.datetime64]:
    """
    Draw the realized month of every dated event once per trial.

    Offsets are drawn uniformly (inclusive) in ascending event-id order, so
    the result is reproducible for a given generator state.

    Returns:
        Event id -> realized month
    """
    months: dict[str, np.datetime64] = {}
    for event in sorted(events, key=lambda e: e.id):
        if event.target_date is None:
            continue
        lo = event.earliest_month_offset or 0
        hi = event.latest_month_offset or 0
        if lo > hi:
            lo, hi = hi, lo
        offset = int(rng.integers(lo, hi + 1)) if hi > lo else lo
        months[event.id] = to_month(event.target_date) + np.timedelta64(offset, "M")
    return months


@dataclass(frozen=True)
class LiquidityPlan:
    """Result of netting one month's cashflows."""

    new_cash: float
    liquidation_demand: float
    reserve_target: float
    net_flow: float = 0.0
    monthly_expense: float = 0.0
    upcoming_outflows: float = 0.0
    events: list[Event] = field(default_factory=list)

    @property
    def surplus(self) -> float:
        """Cash above the reserve target (0 when short)."""
        return max(0.0, self.new_cash - self.reserve_target)


class CashflowPlanner:
    """
    Nets scheduled streams and one-off events against liquid cash.

    Args:
        streams: Recurring income and expense streams
        events: One-off cashflow events
        currency_code: Currency used to round booked amounts
    """

    def __init__(
        self,
        streams: Iterable[CashflowStream] = (),
        events: Iterable[CashflowEvent] = (),
        currency_code: str = "EUR",
    ):
        self.streams = tuple(sorted(streams, key=lambda s: s.id))
        self.events = tuple(sorted(events, key=lambda e: e.id))
        self.currency_code = currency_code

    def stream_amount(
        self,
        stream: CashflowStream,
        t: np.datetime64,
        index: Mapping[str, float] | None = None,
    ) -> float:
        """Signed amount booked by ``stream`` in month ``t``."""
        if not stream_is_active(stream, t):
            return 0.0
        amount = stream.amount * indexation(stream.economic_factor_id, index)
        return stream.sign * round_money(amount, self.currency_code)

    def monthly_expense(
        self, t: np.datetime64, index: Mapping[str, float] | None = None
    ) -> float:
        """Average monthly expense of the streams running in month ``t``."""
        total = 0.0
        for stream in self.streams:
            if stream.type != CashflowType.EXPENSE:
                continue
            if stream.start_date is not None and t < to_month(stream.start_date):
                continue
            if stream.end_date is not None and t > to_month(stream.end_date):
                continue
            total += stream.monthly_equivalent * indexation(
                stream.economic_factor_id, index
            )
        return total

    def upcoming_outflows(
        self,
        t: np.datetime64,
        lookahead_months: int,
        event_months: Mapping[str, np.datetime64],
        index: Mapping[str, float] | None = None,
    ) -> float:
        """Expense events realized in the window (t, t + lookahead]."""
        if lookahead_months <= 0:
            return 0.0
        horizon = t + np.timedelta64(lookahead_months, "M")
        total = 0.0
        for event in self.events:
            if event.type != CashflowType.EXPENSE:
                continue
            month = event_months.get(event.id)
            if month is not None and t < month <= horizon:
                total += event.amount * indexation(event.economic_factor_id, index)
        return total

    def net_cashflows(
        self,
        liquid_cash: float,
        strategy: StrategyProfile,
        t: np.datetime64,
        event_months: Mapping[str, np.datetime64] | None = None,
        index: Mapping[str, float] | None = None,
    ) -> LiquidityPlan:
        """
        Book this month's streams and events and size the liquidation demand.

        Args:
            liquid_cash: Cash before this month's flows
            strategy: Strategy profile of the active phase
            t: Simulated month
            event_months: Realized month per event id (see realize_event_months)
            index: Factor id -> indexation multiplier

        Returns:
            LiquidityPlan with the new cash balance and the shortfall below
            the reserve target
        """
        event_months = event_months or {}
        logged: list[Event] = []

        net = 0.0
        for stream in self.streams:
            net += self.stream_amount(stream, t, index)

        for event in self.events:
            if event_months.get(event.id) != t:
                continue
            amount = event.sign * round_money(
                event.amount * indexation(event.economic_factor_id, index),
                self.currency_code,
            )
            net += amount
            logged.append(
                Event(
                    t,
                    "cashflow_event",
                    f"{event.name or event.id}: {amount:+,.2f}",
                    {"event_id": event.id, "amount": amount},
                )
            )

        new_cash = liquid_cash + net
        expense = self.monthly_expense(t, index)
        upcoming = self.upcoming_outflows(
            t, strategy.lookahead_months, event_months, index
        )
        reserve = strategy.cash_reserve_months * expense + upcoming

        shortfall = reserve - new_cash
        demand = shortfall if shortfall > MONEY_TOLERANCE else 0.0
        if demand:
            logger.debug("%s: cash %.2f below reserve %.2f", t, new_cash, reserve)
            logged.append(
                Event(
                    t,
                    "liquidity_shortfall",
                    f"Cash {new_cash:,.2f} below reserve target {reserve:,.2f}",
                    {"demand": demand, "reserve_target": reserve},
                )
            )

        return LiquidityPlan(
            new_cash=new_cash,
            liquidation_demand=demand,
            reserve_target=reserve,
            net_flow=net,
            monthly_expense=expense,
            upcoming_outflows=upcoming,
            events=logged,
        )
