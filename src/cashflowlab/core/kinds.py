"""
CashflowLab kind constants (closed enumerations).

Every discriminator that drives behavior in the engine is a closed ``Enum``
so that dispatch happens in exactly one ``if`` chain per concern
(e.g. the factor discretization in :mod:`cashflowlab.core.factors`).
"""

from __future__ import annotations

from enum import Enum


class StochasticModel(str, Enum):
    """Stochastic process used to drive an economic factor."""

    GBM = "GeometricBrownianMotion"  # equities, indices, gold
    OU = "OrnsteinUhlenbeck"  # rates, inflation (mean reverting)

    @classmethod
    def parse(cls, value: str | StochasticModel) -> StochasticModel:
        """Accept both the enum value and short aliases ('gbm', 'ou')."""
        if isinstance(value, cls):
            return value
        aliases = {"gbm": cls.GBM, "ou": cls.OU}
        key = str(value).strip()
        if key.lower() in aliases:
            return aliases[key.lower()]
        return cls(key)


class TaxType(str, Enum):
    """German investment-fund classification (governs partial exemption)."""

    EQUITY_FUND = "EquityFund"  # equity quota > 51 %
    MIXED_FUND = "MixedFund"  # equity quota 25-51 %
    BOND_FUND = "BondFund"  # equity quota < 25 %
    NONE = "None"  # single stocks, crypto: fully taxable


class TaxCategory(str, Enum):
    """Loss-carryforward bucket a realized gain belongs to."""

    EQUITY = "equity"
    GENERAL = "general"


class TransactionType(str, Enum):
    """Kind of entry in an asset's transaction log."""

    BUY = "Buy"
    SELL = "Sell"
    DIVIDEND = "Dividend"
    TAX_PREPAYMENT = "TaxPrepayment"  # Vorabpauschale


class CashflowType(str, Enum):
    """Direction of a stream or event."""

    INCOME = "Income"
    EXPENSE = "Expense"


class CashflowInterval(str, Enum):
    """Payment cadence of a recurring stream."""

    MONTHLY = "Monthly"
    YEARLY = "Yearly"
