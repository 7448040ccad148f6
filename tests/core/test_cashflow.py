"""
Tests for cashflow netting, reserve targets and event timing.
"""

import numpy as np
import pytest

from cashflowlab.core.cashflow import (
    CashflowPlanner,
    realize_event_months,
    stream_is_active,
)
from cashflowlab.core.specs import CashflowEvent, CashflowStream, StrategyProfile

M = np.datetime64


def expense(amount=1000.0, **kwargs):
    return CashflowStream(id=kwargs.pop("id", "living"), type="Expense", amount=amount, **kwargs)


def strategy(reserve_months=3, lookahead=0):
    return StrategyProfile(
        id="s", cash_reserve_months=reserve_months, lookahead_months=lookahead
    )


class TestStreamActivity:
    """When a recurring stream pays."""

    def test_monthly_within_window(self):
        stream = expense(start_date="2026-03-01", end_date="2026-06-30")
        assert not stream_is_active(stream, M("2026-02"))
        assert stream_is_active(stream, M("2026-03"))
        assert stream_is_active(stream, M("2026-06"))
        assert not stream_is_active(stream, M("2026-07"))

    def test_yearly_pays_in_start_month(self):
        stream = expense(interval="Yearly", start_date="2026-04-15")
        assert stream_is_active(stream, M("2026-04"))
        assert not stream_is_active(stream, M("2026-05"))
        assert stream_is_active(stream, M("2027-04"))

    def test_yearly_without_start_pays_in_january(self):
        stream = expense(interval="Yearly")
        assert stream_is_active(stream, M("2027-01"))
        assert not stream_is_active(stream, M("2027-02"))


class TestNetCashflows:
    """Netting against liquid cash and the reserve target."""

    def test_cash_above_reserve(self):
        """Scenario cash 4000, expense 1000, reserve 3 months: no demand."""
        planner = CashflowPlanner([expense()])
        plan = planner.net_cashflows(4000.0, strategy(), M("2026-01"))
        assert plan.new_cash == 3000.0
        assert plan.reserve_target == 3000.0
        assert plan.liquidation_demand == 0.0
        assert plan.surplus == 0.0
        assert plan.events == []

    def test_shortfall_becomes_liquidation_demand(self):
        planner = CashflowPlanner([expense()])
        plan = planner.net_cashflows(3500.0, strategy(reserve_months=6), M("2026-01"))
        assert plan.new_cash == 2500.0
        assert plan.reserve_target == 6000.0
        assert plan.liquidation_demand == pytest.approx(3500.0)
        assert [e.kind for e in plan.events] == ["liquidity_shortfall"]

    def test_income_creates_surplus(self):
        salary = CashflowStream(id="salary", type="Income", amount=3000.0)
        planner = CashflowPlanner([salary, expense()])
        plan = planner.net_cashflows(4000.0, strategy(), M("2026-01"))
        assert plan.net_flow == 2000.0
        assert plan.surplus == pytest.approx(3000.0)

    def test_yearly_expense_counts_monthly_in_reserve(self):
        insurance = expense(id="insurance", amount=1200.0, interval="Yearly")
        planner = CashflowPlanner([insurance])
        assert planner.monthly_expense(M("2026-06")) == pytest.approx(100.0)

    def test_indexed_stream(self):
        """Streams linked to a factor scale with its indexation multiplier."""
        stream = expense(economic_factor_id="CPI")
        planner = CashflowPlanner([stream])
        assert planner.stream_amount(stream, M("2026-01"), {"CPI": 1.1}) == -1100.0
        assert planner.stream_amount(stream, M("2026-01"), {}) == -1000.0

    def test_upcoming_event_raises_reserve(self):
        """Expense events inside the lookahead window are held in cash."""
        car = CashflowEvent(id="car", type="Expense", amount=5000.0, target_date="2026-06-01")
        planner = CashflowPlanner([expense()], [car])
        months = {"car": M("2026-06")}

        before = planner.net_cashflows(
            10000.0, strategy(lookahead=6), M("2026-03"), months
        )
        assert before.upcoming_outflows == 5000.0
        assert before.reserve_target == 8000.0

        due = planner.net_cashflows(10000.0, strategy(lookahead=6), M("2026-06"), months)
        assert due.upcoming_outflows == 0.0
        assert due.net_flow == -6000.0
        assert [e.kind for e in due.events] == ["cashflow_event"]

    def test_event_outside_lookahead_is_ignored(self):
        car = CashflowEvent(id="car", type="Expense", amount=5000.0, target_date="2027-06-01")
        planner = CashflowPlanner([], [car])
        months = {"car": M("2027-06")}
        assert planner.upcoming_outflows(M("2026-03"), 6, months) == 0.0
        assert planner.upcoming_outflows(M("2026-03"), 0, months) == 0.0


class TestEventMonths:
    """Per-trial realization of one-off event dates."""

    def test_without_offsets_event_lands_on_target(self):
        event = CashflowEvent(id="e", target_date="2030-05-20")
        months = realize_event_months([event], np.random.default_rng(0))
        assert months == {"e": M("2030-05")}

    def test_offsets_stay_within_bounds(self):
        event = CashflowEvent(
            id="e",
            target_date="2030-05-01",
            earliest_month_offset=-3,
            latest_month_offset=2,
        )
        seen = set()
        for seed in range(200):
            month = realize_event_months([event], np.random.default_rng(seed))["e"]
            seen.add(int((month - M("2030-05")).astype(int)))
        assert seen <= set(range(-3, 3))
        assert len(seen) > 1

    def test_draws_are_reproducible(self):
        events = [
            CashflowEvent(id=eid, target_date="2030-01-01", earliest_month_offset=-12, latest_month_offset=12)
            for eid in ("b", "a")
        ]
        first = realize_event_months(events, np.random.default_rng(5))
        second = realize_event_months(list(reversed(events)), np.random.default_rng(5))
        assert first == second

    def test_undated_events_are_skipped(self):
        assert realize_event_months([CashflowEvent(id="x")], np.random.default_rng(0)) == {}
