"""
Tests for FIFO tax lots, the portfolio and the month-level ledger driver.
"""

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from cashflowlab.core.errors import (
    InsufficientLotQuantity,
    LedgerError,
    NoCostBasisAvailable,
)
from cashflowlab.core.kinds import TransactionType
from cashflowlab.core.ledger import AssetHolding, AssetOrder, Portfolio, TaxLotLedger
from cashflowlab.core.specs import AssetSpec, EconomicFactor, TaxProfile
from cashflowlab.core.tax import TaxContext

M = np.datetime64


def spec(
    id="etf",
    transactions=None,
    tax_type="EquityFund",
    savings=True,
    factor="F",
    **kwargs,
):
    if transactions is None:
        transactions = [
            {"t": "2020-01", "type": "Buy", "quantity": 10, "price_per_unit": 100.0},
            {"t": "2021-01", "type": "Buy", "quantity": 10, "price_per_unit": 120.0},
        ]
    return AssetSpec(
        id=id,
        asset_class_id="equity",
        economic_factor_id=factor,
        tax_type=tax_type,
        is_active_savings_instrument=savings,
        transactions=transactions,
        **kwargs,
    )


def holding_at(price, **kwargs):
    h = AssetHolding(spec(**kwargs))
    h.reprice(price)
    return h


class TestFifoMatching:
    """Sells consume the oldest lots first."""

    def test_sale_spanning_two_lots(self):
        """15 units consume lot 1 fully and 5 units of lot 2."""
        h = holding_at(150.0)
        sale = h.sell(M("2026-03"), 15.0)

        assert [m.quantity for m in sale.matches] == [10.0, 5.0]
        assert sale.cost_basis == pytest.approx(1000.0 + 600.0)
        assert sale.proceeds == pytest.approx(2250.0)
        assert sale.gain == pytest.approx(650.0)
        assert h.quantity == pytest.approx(5.0)

        lots = list(h.open_lots())
        assert len(lots) == 1
        assert lots[0][0].price_per_unit == 120.0
        assert lots[0][1] == pytest.approx(5.0)

    def test_split_lot_remainder_is_consumed_next(self):
        """The partially consumed lot is matched before any later lot."""
        h = holding_at(150.0)
        h.sell(M("2026-03"), 15.0)
        sale = h.sell(M("2026-04"), 5.0)
        assert sale.cost_basis == pytest.approx(600.0)
        assert h.quantity == 0.0
        assert list(h.open_lots()) == []

    def test_historical_sells_consume_lots(self):
        """Sells in the initial history move the cursor before the run."""
        h = AssetHolding(
            spec(
                transactions=[
                    {"t": "2020-01", "type": "Buy", "quantity": 10, "price_per_unit": 100.0},
                    {"t": "2020-06", "type": "Sell", "quantity": 4, "price_per_unit": 110.0},
                ]
            )
        )
        assert h.quantity == pytest.approx(6.0)
        lots = list(h.open_lots())
        assert lots[0][1] == pytest.approx(6.0)

    def test_log_is_append_only_and_ordered(self):
        """New transactions cannot be older than the log tail."""
        h = holding_at(100.0)
        h.buy(M("2026-05"), 1.0)
        with pytest.raises(LedgerError):
            h.buy(M("2026-04"), 1.0)

    def test_quantity_matches_log(self):
        h = holding_at(100.0)
        h.sell(M("2026-01"), 3.5)
        h.buy(M("2026-02"), 2.0)
        assert h.held_quantity_from_log() == pytest.approx(h.quantity)
        assert h.quantity == pytest.approx(18.5)

    @given(
        weights=st.lists(
            st.floats(min_value=0.01, max_value=1.0), min_size=1, max_size=8
        )
    )
    @settings(max_examples=100, deadline=None)
    def test_split_sales_realize_the_same_gain(self, weights):
        """Selling in pieces realizes the same total gain as one sale."""
        h = holding_at(150.0)
        total = h.quantity
        parts = [total * w / sum(weights) for w in weights]

        gain = 0.0
        for part in parts[:-1]:
            gain += h.sell(M("2026-01"), part).gain
        gain += h.sell(M("2026-01"), h.quantity).gain

        assert gain == pytest.approx(20 * 150.0 - 2200.0, abs=1e-6)
        assert h.quantity == 0.0


class TestSellErrors:
    """Inconsistent sells fail without touching the holding."""

    def test_insufficient_quantity_leaves_state_unchanged(self):
        h = holding_at(100.0)
        with pytest.raises(InsufficientLotQuantity) as exc_info:
            h.sell(M("2026-01"), 25.0)
        assert exc_info.value.requested == 25.0
        assert exc_info.value.held == pytest.approx(20.0)
        assert h.quantity == pytest.approx(20.0)
        assert len(h.transactions) == 2
        assert len(list(h.open_lots())) == 2

    def test_float_noise_is_tolerated(self):
        """A request a hair above the holding sells exactly the holding."""
        h = holding_at(100.0)
        sale = h.sell(M("2026-01"), 20.0 * (1 + 1e-12))
        assert sale.quantity == pytest.approx(20.0)
        assert h.quantity == 0.0

    def test_no_cost_basis(self):
        """An asset without buy lots cannot be sold."""
        h = AssetHolding(spec(transactions=[]))
        h.reprice(100.0)
        h.quantity = 1.0  # corrupted state: units without lots
        with pytest.raises(NoCostBasisAvailable):
            h.sell(M("2026-01"), 1.0)

    def test_non_positive_quantity(self):
        h = holding_at(100.0)
        with pytest.raises(ValueError):
            h.sell(M("2026-01"), 0.0)

    def test_buy_at_non_positive_price(self):
        h = holding_at(0.0)
        with pytest.raises(LedgerError):
            h.buy(M("2026-01"), 1.0)


class TestPortfolio:
    """Valuation and grouping of holdings."""

    def test_price_scaling_from_current_price(self):
        """current_price pins the start price; the factor drives it afterwards."""
        factors = [EconomicFactor(id="F", initial_value=100.0)]
        portfolio = Portfolio.from_specs([spec(current_price=50.0)], factors)
        assert portfolio["etf"].price == pytest.approx(50.0)
        portfolio.reprice({"F": 110.0})
        assert portfolio["etf"].price == pytest.approx(55.0)

    def test_value_by_class_and_order(self):
        factors = [EconomicFactor(id="F", initial_value=100.0)]
        portfolio = Portfolio.from_specs([spec(id="b"), spec(id="a")], factors)
        assert [h.id for h in portfolio] == ["a", "b"]
        assert portfolio.total_value() == pytest.approx(4000.0)
        assert portfolio.value_by_class(["bonds"]) == {
            "bonds": 0.0,
            "equity": pytest.approx(4000.0),
        }
        portfolio.check_invariants()

    def test_invariant_violation_is_reported(self):
        factors = [EconomicFactor(id="F", initial_value=100.0)]
        portfolio = Portfolio.from_specs([spec()], factors)
        portfolio["etf"].quantity += 1.0
        with pytest.raises(LedgerError):
            portfolio.check_invariants()


class TestTaxLotLedger:
    """Month-level order execution and tax settlement."""

    def setup_method(self):
        self.ledger = TaxLotLedger("EUR")
        self.factors = [EconomicFactor(id="F", initial_value=100.0)]
        self.profile = TaxProfile(
            id="de", capital_gains_tax_rate=0.25, tax_free_allowance=0.0
        )

    def portfolio(self, *specs):
        return Portfolio.from_specs(specs, self.factors)

    def test_sells_execute_before_buys_and_tax_is_paid(self):
        one_lot = [{"t": "2020-01", "type": "Buy", "quantity": 10, "price_per_unit": 100.0}]
        portfolio = self.portfolio(
            spec(id="a", transactions=one_lot), spec(id="b", transactions=[])
        )
        orders = [
            AssetOrder("b", "equity", 500.0),
            AssetOrder("a", "equity", -2000.0, quantity=10.0),
        ]
        result = self.ledger.apply_month(
            portfolio, {"F": 200.0}, orders, TaxContext(), self.profile, M("2026-03")
        )

        assert [tx.type for tx in result.transactions] == [
            TransactionType.SELL,
            TransactionType.BUY,
        ]
        # gain 1000, 30 % exempt, 25 % tax
        assert result.tax_due == 175.0
        assert result.cash_delta == pytest.approx(2000.0 - 175.0 - 500.0)
        assert portfolio["a"].quantity == 0.0
        assert portfolio["b"].quantity == pytest.approx(2.5)
        assert [e.kind for e in result.events] == ["sell", "buy", "tax"]

    def test_sell_quantity_is_fixed_at_generation(self):
        """A price drop changes proceeds, not the units sold."""
        portfolio = self.portfolio(spec())
        order = AssetOrder("etf", "equity", -1000.0, quantity=10.0)
        result = self.ledger.apply_month(
            portfolio, {"F": 50.0}, [order], TaxContext(), self.profile, M("2026-03")
        )
        assert result.sales[0].quantity == 10.0
        assert result.sales[0].proceeds == pytest.approx(500.0)
        # 500 proceeds against a 1000 cost basis
        assert result.realized.equity == pytest.approx(-350.0)

    def test_distributions_are_paid_and_taxed(self):
        portfolio = self.portfolio(
            spec(tax_type="None", distribution_yield_pa=0.12)
        )
        result = self.ledger.apply_month(
            portfolio, {"F": 100.0}, [], TaxContext(), self.profile, M("2026-03")
        )
        # 2000 value x 1 % monthly
        assert result.transactions[0].type == TransactionType.DIVIDEND
        assert result.realized.general == pytest.approx(20.0)
        assert result.tax_due == 5.0
        assert result.cash_delta == pytest.approx(15.0)

    def test_prepayment_in_january_and_credit_on_sale(self):
        """The Vorabpauschale is charged in January and credited on sale."""
        profile = TaxProfile(
            id="de",
            capital_gains_tax_rate=0.25,
            tax_free_allowance=0.0,
            base_interest_rate=0.02,
        )
        one_lot = [{"t": "2020-01", "type": "Buy", "quantity": 10, "price_per_unit": 100.0}]
        portfolio = self.portfolio(spec(transactions=one_lot))
        ctx = TaxContext()

        self.ledger.apply_month(portfolio, {"F": 100.0}, [], ctx, profile, M("2026-01"))
        result = self.ledger.apply_month(
            portfolio, {"F": 110.0}, [], ctx, profile, M("2027-01")
        )

        # base 100 * 2 % * 70 % = 1.40 per unit, below the 10.00 increase
        assert result.transactions[0].type == TransactionType.TAX_PREPAYMENT
        assert result.transactions[0].total_amount == pytest.approx(14.0)
        assert result.tax_due == pytest.approx(round(14.0 * 0.7 * 0.25, 2))
        assert portfolio["etf"].prepaid_base == pytest.approx(14.0)

        sale = portfolio["etf"].sell(M("2027-02"), 10.0)
        assert sale.prepayment_credit == pytest.approx(14.0)
        assert sale.gain == pytest.approx(1100.0 - 1000.0 - 14.0)
        assert portfolio["etf"].prepaid_base == pytest.approx(0.0)

    def test_no_prepayment_without_base_rate(self):
        portfolio = self.portfolio(spec())
        ctx = TaxContext()
        self.ledger.apply_month(portfolio, {"F": 100.0}, [], ctx, self.profile, M("2026-01"))
        result = self.ledger.apply_month(
            portfolio, {"F": 110.0}, [], ctx, self.profile, M("2027-01")
        )
        assert result.transactions == []
        assert result.settlement is None

    def test_inconsistent_order_raises(self):
        portfolio = self.portfolio(spec())
        order = AssetOrder("etf", "equity", -5000.0, quantity=50.0)
        with pytest.raises(InsufficientLotQuantity):
            self.ledger.apply_month(
                portfolio, {"F": 100.0}, [order], TaxContext(), self.profile, M("2026-01")
            )
