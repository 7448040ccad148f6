"""
End-to-end tests of the monthly pipeline and Monte Carlo runs.
"""

import math

import numpy as np
import pandas as pd
import pytest

from cashflowlab import Scenario
from cashflowlab.core.errors import InsufficientLotQuantity
from cashflowlab.core.kinds import TransactionType
from cashflowlab.core.ledger import TaxLotLedger


class TestSingleMonth:
    """One deterministic month with zero shocks."""

    def test_reference_month(self, scenario_dict):
        """
        One GBM factor (mu 7 %, sigma 15 %), one fully allocated ETF, cash 4000,
        expense 1000 and a three-month reserve: the month ends exactly at the
        reserve target and no orders are emitted.
        """
        scenario = Scenario.from_dict(scenario_dict())
        state = scenario.initial_state()
        record = scenario.step_month(state, z=np.zeros(1))

        expected_price = 100.0 * math.exp((0.07 - 0.5 * 0.15**2) / 12.0)
        assert state.portfolio["etf"].price == pytest.approx(expected_price)
        assert state.portfolio["etf"].price == pytest.approx(100.49, abs=0.01)
        assert state.cash == 3000.0
        assert state.pending_orders == []
        assert record.liquidation_demand == 0.0
        assert record.reserve_target == 3000.0
        assert record.portfolio_value == pytest.approx(10 * expected_price)
        assert record.phase_id == "work"
        assert state.t == np.datetime64("2026-02")
        assert state.month == 1

    def test_surplus_is_invested_next_month(self, scenario_dict):
        cfg = scenario_dict(
            cashflow_streams=[
                {"id": "salary", "type": "Income", "amount": 3000.0},
                {"id": "living", "type": "Expense", "amount": 1000.0},
            ]
        )
        scenario = Scenario.from_dict(cfg)
        state = scenario.initial_state()

        first = scenario.step_month(state, z=np.zeros(1))
        assert state.cash == 6000.0
        assert [o.amount for o in first.orders] == [pytest.approx(3000.0)]

        second = scenario.step_month(state, z=np.zeros(1))
        assert [tx.type for tx in second.transactions] == [TransactionType.BUY]
        assert state.cash == pytest.approx(5000.0)
        assert state.portfolio["etf"].quantity > 10.0

    def test_shortfall_forces_sells(self, scenario_dict):
        cfg = scenario_dict(parameters={"initial_liquid_cash": 0.0})
        cfg["assets"][0]["transactions"][0]["quantity"] = 100
        scenario = Scenario.from_dict(cfg)
        state = scenario.initial_state()

        first = scenario.step_month(state, z=np.zeros(1))
        assert first.liquidation_demand == pytest.approx(4000.0)
        assert first.orders and all(o.forced and o.amount < 0 for o in first.orders)
        assert "liquidity_shortfall" in [e.kind for e in first.events]

        second = scenario.step_month(state, z=np.zeros(1))
        sells = [tx for tx in second.transactions if tx.type == TransactionType.SELL]
        assert len(sells) == 1
        assert sells[0].quantity == pytest.approx(first.orders[0].quantity)

    def test_phase_change_is_reported(self, scenario_dict):
        cfg = scenario_dict(
            parameters={"date_of_birth": "1960-01-01"},
            lifecycle_phases=[
                {
                    "id": "work",
                    "start_age": 18,
                    "tax_profile_id": "de",
                    "strategy_profile_id": "default",
                    "allocation_profile_id": "all-equity",
                },
                {
                    "id": "retirement",
                    "start_age": 67,
                    "tax_profile_id": "de",
                    "strategy_profile_id": "default",
                    "allocation_profile_id": "all-equity",
                },
            ],
        )
        result = Scenario.from_dict(cfg).run(trials=1, seed=1, months=14, trace=True)
        trace = result.trials[0].trace
        assert trace[11].phase_id == "work"
        assert trace[12].phase_id == "retirement"
        assert "phase_change" in [e.kind for e in trace[12].events]


class TestMonteCarlo:
    """Seeded multi-trial runs."""

    def test_same_seed_same_results(self, scenario_dict):
        scenario = Scenario.from_dict(scenario_dict())
        first = scenario.run(trials=3, seed=7, months=24)
        second = scenario.run(trials=3, seed=7, months=24)
        pd.testing.assert_frame_equal(first.to_frame(), second.to_frame())

    def test_trials_differ(self, scenario_dict):
        """Each trial draws its own factor path."""
        result = Scenario.from_dict(scenario_dict()).run(
            trials=3, seed=7, months=24, trace=True
        )
        finals = [t.trace[-1].factor_levels["Aktien_Welt"] for t in result.trials]
        assert len(set(finals)) == 3

    def test_defaults_come_from_parameters(self, scenario_dict):
        scenario = Scenario.from_dict(scenario_dict())
        result = scenario.run()
        assert len(result) == 2
        assert result.seed == 42
        assert result.months == 24
        assert all(t.months_simulated == 24 for t in result.trials)

    def test_trace_frame(self, scenario_dict):
        result = Scenario.from_dict(scenario_dict()).run(trials=1, seed=3, months=12, trace=True)
        frame = result.trials[0].trace_frame()
        assert len(frame) == 12
        assert isinstance(frame.index, pd.PeriodIndex)
        assert str(frame.index[0]) == "2026-01"
        assert {"cash", "net_worth", "tax_due", "factor:Aktien_Welt"} <= set(frame.columns)
        txs = result.trials[0].transactions_frame()
        assert list(txs.columns) == [
            "id", "t", "type", "quantity", "price_per_unit", "total_amount", "tax_amount"
        ]
        paths = result.net_worth_paths()
        assert paths.shape == (12, 1)
        assert str(paths.index[0]) == "2026-01"
        assert str(paths.index[-1]) == "2026-12"
        assert paths[0].tolist() == frame["net_worth"].tolist()

    def test_invalid_arguments(self, scenario_dict):
        scenario = Scenario.from_dict(scenario_dict())
        with pytest.raises(ValueError):
            scenario.run(trials=0)
        with pytest.raises(ValueError):
            scenario.run(months=-1)


class TestTrialIsolation:
    """A ledger error fails one trial; the others are unaffected."""

    def test_failed_trial_does_not_stop_the_run(self, scenario_dict, monkeypatch):
        scenario = Scenario.from_dict(scenario_dict())
        clean = scenario.run(trials=3, seed=11, months=3)

        original = TaxLotLedger.apply_month
        calls = {"n": 0}

        def flaky(self, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 5:  # trial 1, second month
                raise InsufficientLotQuantity("etf", 50.0, 10.0)
            return original(self, *args, **kwargs)

        monkeypatch.setattr(TaxLotLedger, "apply_month", flaky)
        result = scenario.run(trials=3, seed=11, months=3)

        assert result.has_failures
        failed = result.trials[1]
        assert failed.status == "failed"
        assert failed.error_type == "InsufficientLotQuantity"
        assert failed.failed_month == np.datetime64("2026-02")
        assert failed.months_simulated == 1

        for i in (0, 2):
            assert result.trials[i].succeeded
            assert result.trials[i].summary() == clean.trials[i].summary()
        assert [t.trial for t in result.failed()] == [1]
