"""
German-style capital-gains taxation with partial exemption and loss pots.

Realized amounts are first reduced by the partial exemption of the asset's
fund type (Teilfreistellung), then netted per category:

- equity fund amounts belong to the *equity* category,
- everything else belongs to the *general* category.

Losses of a category go into that category's carryforward pot, and each pot
only ever offsets gains of its own category. The remaining positive base is
reduced by the unused part of the calendar year's tax-free allowance and taxed
at the phase's capital-gains rate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .currency import round_money
from .kinds import TaxCategory, TaxType
from .specs import SimulationParameters, TaxProfile

logger = logging.getLogger(__name__)

PARTIAL_EXEMPTION: dict[TaxType, float] = {
    TaxType.EQUITY_FUND: 0.30,
    TaxType.MIXED_FUND: 0.15,
    TaxType.BOND_FUND: 0.0,
    TaxType.NONE: 0.0,
}

# share of the base return that is deemed distributed (Vorabpauschale)
PREPAYMENT_BASE_SHARE = 0.7

FUND_TAX_TYPES = frozenset(
    {TaxType.EQUITY_FUND, TaxType.MIXED_FUND, TaxType.BOND_FUND}
)


def partial_exemption(tax_type: TaxType) -> float:
    """Exempt fraction of realized gains and distributions for a fund type."""
    return PARTIAL_EXEMPTION[TaxType(tax_type)]


def tax_category(tax_type: TaxType) -> TaxCategory:
    """Loss-pot category of a fund type."""
    if TaxType(tax_type) == TaxType.EQUITY_FUND:
        return TaxCategory.EQUITY
    return TaxCategory.GENERAL


@dataclass
class RealizedGains:
    """Taxable amounts (after partial exemption) collected during one month."""

    equity: float = 0.0
    general: float = 0.0

    def add(self, amount: float, tax_type: TaxType) -> float:
        """
        Book a realized gain/loss or distribution for ``tax_type``.

        Returns:
            The taxable part after partial exemption
        """
        taxable = amount * (1.0 - partial_exemption(tax_type))
        if tax_category(tax_type) == TaxCategory.EQUITY:
            self.equity += taxable
        else:
            self.general += taxable
        return taxable

    def is_empty(self) -> bool:
        return self.equity == 0.0 and self.general == 0.0


@dataclass
class TaxSettlement:
    """Outcome of settling one month's realized gains."""

    equity_gain: float = 0.0
    general_gain: float = 0.0
    offset_from_stocks: float = 0.0
    offset_from_general: float = 0.0
    loss_added_stocks: float = 0.0
    loss_added_general: float = 0.0
    allowance_used: float = 0.0
    taxable_base: float = 0.0
    tax_due: float = 0.0

    @property
    def offsets_applied(self) -> float:
        return self.offset_from_stocks + self.offset_from_general

    @property
    def losses_added(self) -> float:
        return self.loss_added_stocks + self.loss_added_general


@dataclass
class TaxContext:
    """
    Running tax state of one trial: the two loss pots and the allowance used
    in the current calendar year.

    Created once from :class:`SimulationParameters`, mutated every month a
    taxable event occurs, never reset mid-run.
    """

    loss_carryforward_general: float = 0.0
    loss_carryforward_stocks: float = 0.0
    allowance_year: int | None = None
    allowance_used: float = 0.0

    @classmethod
    def from_parameters(cls, parameters: SimulationParameters) -> TaxContext:
        return cls(
            loss_carryforward_general=parameters.initial_loss_carryforward_general,
            loss_carryforward_stocks=parameters.initial_loss_carryforward_stocks,
        )

    def remaining_allowance(self, profile: TaxProfile, year: int) -> float:
        if self.allowance_year != year:
            return profile.tax_free_allowance
        return max(0.0, profile.tax_free_allowance - self.allowance_used)

    def settle(
        self,
        gains: RealizedGains,
        profile: TaxProfile,
        year: int,
        currency_code: str = "EUR",
    ) -> TaxSettlement:
        """
        Net one month's realized gains against the loss pots and compute tax.

        Args:
            gains: Taxable amounts after partial exemption, per category
            profile: Tax profile of the active lifecycle phase
            year: Calendar year (the allowance resets every January)
            currency_code: Currency used to round the tax due

        Returns:
            TaxSettlement with offsets, new losses, allowance use and tax due
        """
        if self.allowance_year != year:
            self.allowance_year = year
            self.allowance_used = 0.0

        s = TaxSettlement(equity_gain=gains.equity, general_gain=gains.general)
        equity, general = gains.equity, gains.general

        if general < 0:
            s.loss_added_general = -general
            self.loss_carryforward_general += -general
            general = 0.0
        if equity < 0:
            s.loss_added_stocks = -equity
            self.loss_carryforward_stocks += -equity
            equity = 0.0

        offset = min(equity, self.loss_carryforward_stocks)
        equity -= offset
        self.loss_carryforward_stocks -= offset
        s.offset_from_stocks = offset

        offset = min(general, self.loss_carryforward_general)
        general -= offset
        self.loss_carryforward_general -= offset
        s.offset_from_general = offset

        base = equity + general
        allowance = min(base, self.remaining_allowance(profile, year))
        self.allowance_used += allowance
        s.allowance_used = allowance
        s.taxable_base = base - allowance
        s.tax_due = round_money(
            s.taxable_base * profile.capital_gains_tax_rate, currency_code
        )

        if s.tax_due > 0:
            logger.debug(
                "Tax settled for %d: base %.2f, due %.2f", year, s.taxable_base, s.tax_due
            )
        return s
