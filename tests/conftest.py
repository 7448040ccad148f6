"""
Shared scenario builders for the test suite.
"""

import copy

import pytest


BASE_SCENARIO = {
    "id": "test",
    "name": "Single equity ETF",
    "parameters": {
        "simulation_start": "2026-01-01",
        "simulation_end": "2028-01-01",
        "date_of_birth": "1990-01-01",
        "initial_liquid_cash": 4000.0,
        "currency_code": "EUR",
        "random_seed": 42,
        "monte_carlo_iterations": 2,
    },
    "economic_factors": [
        {
            "id": "Aktien_Welt",
            "model": "GeometricBrownianMotion",
            "expected_return": 0.07,
            "volatility": 0.15,
            "initial_value": 100.0,
        }
    ],
    "correlations": [],
    "asset_classes": [{"id": "equity", "target_weight": 1.0}],
    "allocation_profiles": [{"id": "all-equity", "weights": {"equity": 1.0}}],
    "tax_profiles": [
        {"id": "de", "capital_gains_tax_rate": 0.25, "tax_free_allowance": 1000.0}
    ],
    "strategy_profiles": [
        {
            "id": "default",
            "cash_reserve_months": 3,
            "rebalancing_threshold": 0.05,
            "minimum_transaction_amount": 50.0,
        }
    ],
    "lifecycle_phases": [
        {
            "id": "work",
            "start_age": 18,
            "tax_profile_id": "de",
            "strategy_profile_id": "default",
            "allocation_profile_id": "all-equity",
        }
    ],
    "cashflow_streams": [
        {"id": "living", "type": "Expense", "amount": 1000.0, "interval": "Monthly"}
    ],
    "cashflow_events": [],
    "assets": [
        {
            "id": "etf",
            "asset_class_id": "equity",
            "economic_factor_id": "Aktien_Welt",
            "tax_type": "EquityFund",
            "is_active_savings_instrument": True,
            "transactions": [
                {"t": "2025-01-01", "type": "Buy", "quantity": 10, "price_per_unit": 100.0}
            ],
        }
    ],
}


@pytest.fixture
def scenario_dict():
    """Factory returning a fresh deep copy of the base scenario configuration."""

    def make(**sections):
        cfg = copy.deepcopy(BASE_SCENARIO)
        for key, value in sections.items():
            if key == "parameters":
                cfg["parameters"].update(value)
            else:
                cfg[key] = value
        return cfg

    return make
