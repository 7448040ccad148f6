"""
Portfolio valuation and tax-lot ledger.

Each asset keeps an append-only, chronologically ordered transaction log.
Sells are matched against buy lots oldest-first (FIFO) through a cursor that
points at the next unconsumed lot; when a sale only consumes part of a lot the
cursor remembers the lot's remaining quantity instead of rewriting history.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

import numpy as np

from .currency import MONEY_TOLERANCE, round_money
from .errors import InsufficientLotQuantity, LedgerError, NoCostBasisAvailable
from .events import Event
from .kinds import TransactionType
from .specs import AssetSpec, EconomicFactor, TaxProfile, Transaction
from .tax import (
    FUND_TAX_TYPES,
    PREPAYMENT_BASE_SHARE,
    RealizedGains,
    TaxContext,
    TaxSettlement,
)
from .utils import month_of_year, months_between, year_of

logger = logging.getLogger(__name__)

QUANTITY_TOLERANCE = 1e-9  # relative, for float noise in value-sized sells


@dataclass(frozen=True)
class LotMatch:
    """Part of a buy lot consumed by a sale."""

    lot_id: str
    quantity: float
    price_per_unit: float

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.price_per_unit


@dataclass
class SaleResult:
    """Realized outcome of one FIFO sale."""

    asset_id: str
    quantity: float
    proceeds: float
    cost_basis: float
    prepayment_credit: float
    matches: list[LotMatch]

    @property
    def gain(self) -> float:
        return self.proceeds - self.cost_basis - self.prepayment_credit


@dataclass(frozen=True)
class AssetOrder:
    """
    Order against a single asset, sized in currency.

    Negative amounts sell, positive amounts buy. Sells also carry the unit
    ``quantity`` fixed when the order was generated, so a price move before
    execution changes the proceeds but never the units sold. ``forced`` marks
    sells raised to cover a liquidity shortfall.
    """

    asset_id: str
    asset_class_id: str
    amount: float
    quantity: float | None = None
    forced: bool = False

    @property
    def is_sell(self) -> bool:
        return self.amount < 0


class AssetHolding:
    """
    Runtime state of one asset: quantity, price and the FIFO lot cursor.

    Args:
        spec: Asset configuration including its initial transaction history
        price_scale: Multiplier turning the linked factor level into a price
    """

    def __init__(self, spec: AssetSpec, price_scale: float = 1.0):
        self.spec = spec
        self.id = spec.id
        self.price_scale = price_scale
        self.price = 0.0
        self.quantity = 0.0
        self.transactions: list[Transaction] = []
        self._buy_positions: list[int] = []
        self._lot_cursor = 0
        self._cursor_remaining: float | None = None
        self.prepaid_base = 0.0
        self.year_open_price: float | None = None
        self.year_open_month: np.datetime64 | None = None
        self.year_distribution_per_unit = 0.0

        for tx in spec.transactions:
            self._replay(tx)

    # -- history ---------------------------------------------------------

    def _replay(self, tx: Transaction) -> None:
        """Record an initial transaction, consuming lots for historical sells."""
        if tx.type == TransactionType.SELL:
            self._check_sellable(tx.quantity)
            _, cursor, remaining = self._match_fifo(tx.quantity)
            self._lot_cursor, self._cursor_remaining = cursor, remaining
        self._append(tx)

    def _append(self, tx: Transaction) -> None:
        if self.transactions and tx.t < self.transactions[-1].t:
            raise LedgerError(
                self.id, f"transaction {tx.id} at {tx.t} is older than the log tail"
            )
        if tx.type == TransactionType.BUY:
            self._buy_positions.append(len(self.transactions))
        self.transactions.append(tx)
        self.quantity += tx.signed_quantity

    def _next_tx_id(self, t: np.datetime64, kind: str) -> str:
        return f"{self.id}:{t}:{kind}:{len(self.transactions)}"

    def open_lots(self) -> Iterator[tuple[Transaction, float]]:
        """Yield (buy transaction, remaining quantity) oldest-first."""
        for k in range(self._lot_cursor, len(self._buy_positions)):
            tx = self.transactions[self._buy_positions[k]]
            if k == self._lot_cursor and self._cursor_remaining is not None:
                yield tx, self._cursor_remaining
            else:
                yield tx, tx.quantity

    def held_quantity_from_log(self) -> float:
        """Signed sum of buy/sell quantities (must equal ``quantity``)."""
        return sum(tx.signed_quantity for tx in self.transactions)

    # -- valuation -------------------------------------------------------

    @property
    def value(self) -> float:
        return self.quantity * self.price

    def reprice(self, factor_level: float) -> None:
        self.price = self.price_scale * factor_level

    # -- FIFO ------------------------------------------------------------

    def _check_sellable(self, quantity: float) -> float:
        if quantity <= 0:
            raise ValueError(f"{self.id}: sell quantity must be > 0, got {quantity}")
        if not self._buy_positions:
            raise NoCostBasisAvailable(self.id)
        tolerance = QUANTITY_TOLERANCE * max(1.0, self.quantity)
        if quantity > self.quantity + tolerance:
            raise InsufficientLotQuantity(self.id, quantity, self.quantity)
        return min(quantity, self.quantity)

    def _match_fifo(
        self, quantity: float
    ) -> tuple[list[LotMatch], int, float | None]:
        """
        Walk open lots oldest-first without mutating state.

        Returns:
            (matches, new cursor, remaining quantity of the lot at the cursor)
        """
        matches: list[LotMatch] = []
        remaining_to_sell = quantity
        cursor = self._lot_cursor
        cursor_remaining = self._cursor_remaining
        while remaining_to_sell > 0 and cursor < len(self._buy_positions):
            lot = self.transactions[self._buy_positions[cursor]]
            available = lot.quantity if cursor_remaining is None else cursor_remaining
            take = min(available, remaining_to_sell)
            matches.append(LotMatch(lot.id, take, lot.price_per_unit))
            remaining_to_sell -= take
            left = available - take
            if left <= QUANTITY_TOLERANCE * max(1.0, lot.quantity):
                cursor += 1
                cursor_remaining = None
            else:
                cursor_remaining = left
        return matches, cursor, cursor_remaining

    def sell(self, t: np.datetime64, quantity: float) -> SaleResult:
        """
        Sell ``quantity`` units at the current price, matching lots FIFO.

        Either the whole order executes or nothing changes.

        Raises:
            NoCostBasisAvailable: If the asset has no recorded buy lots
            InsufficientLotQuantity: If more units are requested than held
        """
        quantity = self._check_sellable(quantity)
        matches, cursor, remaining = self._match_fifo(quantity)

        cost_basis = sum(m.cost_basis for m in matches)
        credit = self.prepaid_base * (quantity / self.quantity) if self.quantity else 0.0
        proceeds = quantity * self.price

        tx = Transaction(
            id=self._next_tx_id(t, "sell"),
            t=t,
            type=TransactionType.SELL,
            quantity=quantity,
            price_per_unit=self.price,
            total_amount=proceeds,
        )
        self._append(tx)
        self._lot_cursor, self._cursor_remaining = cursor, remaining
        self.prepaid_base -= credit
        if self.quantity <= QUANTITY_TOLERANCE:
            self.quantity = 0.0
        return SaleResult(self.id, quantity, proceeds, cost_basis, credit, matches)

    def buy(self, t: np.datetime64, quantity: float) -> Transaction:
        """Append a new buy lot at the current price (no tax consequence)."""
        if quantity <= 0:
            raise ValueError(f"{self.id}: buy quantity must be > 0, got {quantity}")
        if self.price <= 0:
            raise LedgerError(self.id, f"cannot buy at non-positive price {self.price}")
        tx = Transaction(
            id=self._next_tx_id(t, "buy"),
            t=t,
            type=TransactionType.BUY,
            quantity=quantity,
            price_per_unit=self.price,
            total_amount=quantity * self.price,
        )
        self._append(tx)
        return tx

    def record(self, t: np.datetime64, kind: TransactionType, amount: float) -> Transaction:
        """Append a distribution or prepayment entry (no lot consumption)."""
        tx = Transaction(
            id=self._next_tx_id(t, kind.value.lower()),
            t=t,
            type=kind,
            quantity=self.quantity,
            total_amount=amount,
        )
        self._append(tx)
        return tx

    def __repr__(self) -> str:
        return (
            f"AssetHolding(id='{self.id}', quantity={self.quantity:.6f}, "
            f"price={self.price:.4f})"
        )


class Portfolio:
    """
    Collection of asset holdings, iterated in asset-id order.

    Example:
        ```python
        portfolio = Portfolio.from_specs(assets, factors)
        portfolio.reprice({"MSCI_World": 101.2})
        portfolio.value_by_class()
        ```
    """

    def __init__(self, holdings: Iterable[AssetHolding]):
        self.holdings: dict[str, AssetHolding] = {
            h.id: h for h in sorted(holdings, key=lambda h: h.id)
        }

    @classmethod
    def from_specs(
        cls, assets: Iterable[AssetSpec], factors: Iterable[EconomicFactor]
    ) -> Portfolio:
        initial = {f.id: f.initial_value for f in factors}
        holdings = []
        for spec in assets:
            level = initial[spec.economic_factor_id]
            scale = 1.0
            if spec.current_price is not None and level:
                scale = spec.current_price / level
            holding = AssetHolding(spec, price_scale=scale)
            holding.reprice(level)
            holdings.append(holding)
        return cls(holdings)

    def __iter__(self) -> Iterator[AssetHolding]:
        return iter(self.holdings.values())

    def __getitem__(self, asset_id: str) -> AssetHolding:
        return self.holdings[asset_id]

    def __len__(self) -> int:
        return len(self.holdings)

    def reprice(self, factor_levels: dict[str, float]) -> None:
        for h in self:
            h.reprice(factor_levels[h.spec.economic_factor_id])

    def total_value(self) -> float:
        return sum(h.value for h in self)

    def value_by_class(self, class_ids: Iterable[str] = ()) -> dict[str, float]:
        out = {cid: 0.0 for cid in class_ids}
        for h in self:
            out[h.spec.asset_class_id] = out.get(h.spec.asset_class_id, 0.0) + h.value
        return out

    def holdings_in_class(self, class_id: str) -> list[AssetHolding]:
        return [h for h in self if h.spec.asset_class_id == class_id]

    def check_invariants(self) -> None:
        """Quantity held must equal the signed sum of buy/sell quantities."""
        for h in self:
            logged = h.held_quantity_from_log()
            if abs(logged - h.quantity) > QUANTITY_TOLERANCE * max(1.0, logged):
                raise LedgerError(
                    h.id, f"quantity {h.quantity} differs from log sum {logged}"
                )

    def snapshot(self) -> dict[str, dict[str, float]]:
        return {
            h.id: {"quantity": h.quantity, "price": h.price, "value": h.value}
            for h in self
        }


@dataclass
class LedgerMonthResult:
    """Output of :meth:`TaxLotLedger.apply_month`."""

    tax_due: float = 0.0
    cash_delta: float = 0.0
    realized: RealizedGains = field(default_factory=RealizedGains)
    settlement: TaxSettlement | None = None
    sales: list[SaleResult] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)


class TaxLotLedger:
    """
    Month-level driver of the portfolio ledger.

    Processing order inside a month:
        1. Reprice every asset from its factor level
        2. Vorabpauschale for the previous calendar year (January only)
        3. Cash distributions
        4. Pending orders: all sells, then all buys
        5. Tax settlement against the loss pots; tax is paid from cash
    """

    def __init__(self, currency_code: str = "EUR"):
        self.currency_code = currency_code

    def apply_month(
        self,
        portfolio: Portfolio,
        factor_levels: dict[str, float],
        pending_orders: Iterable[AssetOrder],
        tax_context: TaxContext,
        tax_profile: TaxProfile,
        t: np.datetime64,
    ) -> LedgerMonthResult:
        """
        Apply one month to the portfolio (mutated in place) and the tax context.

        Args:
            portfolio: Holdings owned by the current trial
            factor_levels: Factor id -> level after this month's step
            pending_orders: Orders produced by last month's rebalancing
            tax_context: Loss pots and allowance state of the trial
            tax_profile: Tax profile of the active lifecycle phase
            t: Simulated month

        Returns:
            LedgerMonthResult with tax due, net cash effect, transactions and events

        Raises:
            InsufficientLotQuantity, NoCostBasisAvailable: On an inconsistent sell
        """
        result = LedgerMonthResult()
        portfolio.reprice(factor_levels)

        if month_of_year(t) == 1:
            self._prepayments(portfolio, tax_profile, t, result)
        self._open_year(portfolio, t)
        self._distributions(portfolio, t, result)

        orders = list(pending_orders)
        for order in [o for o in orders if o.is_sell]:
            self._execute_sell(portfolio, order, t, result)
        for order in [o for o in orders if not o.is_sell]:
            self._execute_buy(portfolio, order, t, result)

        if not result.realized.is_empty():
            settlement = tax_context.settle(
                result.realized, tax_profile, year_of(t), self.currency_code
            )
            result.settlement = settlement
            result.tax_due = settlement.tax_due
            result.cash_delta -= settlement.tax_due
            if settlement.tax_due > 0:
                result.events.append(
                    Event(
                        t,
                        "tax",
                        f"Capital gains tax: {settlement.tax_due:,.2f}",
                        {
                            "tax_due": settlement.tax_due,
                            "taxable_base": settlement.taxable_base,
                            "allowance_used": settlement.allowance_used,
                        },
                    )
                )
        return result

    def _open_year(self, portfolio: Portfolio, t: np.datetime64) -> None:
        for h in portfolio:
            if h.year_open_month is None or month_of_year(t) == 1:
                h.year_open_price = h.price
                h.year_open_month = t
                h.year_distribution_per_unit = 0.0

    def _prepayments(
        self,
        portfolio: Portfolio,
        profile: TaxProfile,
        t: np.datetime64,
        result: LedgerMonthResult,
    ) -> None:
        """Vorabpauschale of the previous year, charged in January."""
        if profile.base_interest_rate <= 0:
            return
        for h in portfolio:
            if h.spec.tax_type not in FUND_TAX_TYPES or h.year_open_month is None:
                continue
            if h.quantity <= 0:
                continue
            months_held = min(12, months_between(h.year_open_month, t))
            base = (
                h.year_open_price
                * profile.base_interest_rate
                * PREPAYMENT_BASE_SHARE
                * months_held
                / 12.0
            )
            increase = h.price - h.year_open_price + h.year_distribution_per_unit
            per_unit = max(0.0, min(base, increase) - h.year_distribution_per_unit)
            amount = round_money(per_unit * h.quantity, self.currency_code)
            if amount <= 0:
                continue
            result.realized.add(amount, h.spec.tax_type)
            h.prepaid_base += amount
            result.transactions.append(
                h.record(t, TransactionType.TAX_PREPAYMENT, amount)
            )
            result.events.append(
                Event(
                    t,
                    "prepayment",
                    f"Vorabpauschale {h.id}: {amount:,.2f}",
                    {"asset_id": h.id, "amount": amount},
                )
            )

    def _distributions(
        self, portfolio: Portfolio, t: np.datetime64, result: LedgerMonthResult
    ) -> None:
        for h in portfolio:
            yield_m = h.spec.distribution_yield_pa / 12.0
            if yield_m <= 0 or h.quantity <= 0:
                continue
            amount = round_money(h.value * yield_m, self.currency_code)
            if amount <= 0:
                continue
            h.year_distribution_per_unit += h.price * yield_m
            result.realized.add(amount, h.spec.tax_type)
            result.cash_delta += amount
            result.transactions.append(h.record(t, TransactionType.DIVIDEND, amount))

    def _execute_sell(
        self,
        portfolio: Portfolio,
        order: AssetOrder,
        t: np.datetime64,
        result: LedgerMonthResult,
    ) -> None:
        holding = portfolio[order.asset_id]
        quantity = order.quantity
        if quantity is None:
            if holding.price <= 0:
                raise LedgerError(holding.id, f"cannot sell at price {holding.price}")
            quantity = -order.amount / holding.price
        sale = holding.sell(t, quantity)
        result.realized.add(sale.gain, holding.spec.tax_type)
        result.cash_delta += sale.proceeds
        result.sales.append(sale)
        result.transactions.append(holding.transactions[-1])
        result.events.append(
            Event(
                t,
                "sell",
                f"Sold {sale.quantity:,.4f} {holding.id} for {sale.proceeds:,.2f} "
                f"(gain {sale.gain:,.2f})",
                {
                    "asset_id": holding.id,
                    "quantity": sale.quantity,
                    "proceeds": sale.proceeds,
                    "gain": sale.gain,
                    "forced": order.forced,
                    "lots": [m.lot_id for m in sale.matches],
                },
            )
        )
        logger.debug("%s: sold %.6f units at %.4f", holding.id, sale.quantity, holding.price)

    def _execute_buy(
        self,
        portfolio: Portfolio,
        order: AssetOrder,
        t: np.datetime64,
        result: LedgerMonthResult,
    ) -> None:
        holding = portfolio[order.asset_id]
        if order.amount <= MONEY_TOLERANCE:
            return
        if holding.price <= 0:
            raise LedgerError(holding.id, f"cannot buy at price {holding.price}")
        tx = holding.buy(t, order.amount / holding.price)
        result.cash_delta -= tx.total_amount
        result.transactions.append(tx)
        result.events.append(
            Event(
                t,
                "buy",
                f"Bought {tx.quantity:,.4f} {holding.id} for {tx.total_amount:,.2f}",
                {"asset_id": holding.id, "quantity": tx.quantity, "amount": tx.total_amount},
            )
        )
