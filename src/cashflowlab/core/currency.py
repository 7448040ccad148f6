"""
Currency and precision handling for CashflowLab.

The engine carries a single currency code per scenario and never converts.
Money amounts are computed as floats and quantized to the currency's minor
unit wherever they leave the engine (tax due, order amounts, transaction
totals) so that reported values are reproducible.
"""

from __future__ import annotations

from decimal import ROUND_HALF_EVEN, ROUND_HALF_UP, Decimal
from enum import Enum


# amounts below this are treated as zero
MONEY_TOLERANCE = 1e-6


class RoundingPolicy(Enum):
    """Rounding policies for currency calculations."""

    BANKERS = ROUND_HALF_EVEN
    HALF_UP = ROUND_HALF_UP


class Currency:
    """
    Currency definition with precision and rounding rules.

    Attributes:
        code: ISO currency code (e.g., 'EUR', 'USD', 'JPY')
        decimals: Number of decimal places for this currency
        rounding: Rounding policy for calculations
    """

    def __init__(
        self,
        code: str,
        decimals: int = 2,
        rounding: RoundingPolicy = RoundingPolicy.BANKERS,
    ):
        self.code = code.upper()
        self.decimals = decimals
        self.rounding = rounding

    def quantize(self, amount: Decimal) -> Decimal:
        """Quantize amount to currency precision."""
        quantum = Decimal("1").scaleb(-self.decimals)
        return amount.quantize(quantum, rounding=self.rounding.value)

    def round(self, value: float) -> float:
        """Quantize a float amount and return it as float."""
        return float(self.quantize(Decimal(str(value))))

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency('{self.code}', decimals={self.decimals})"


EUR = Currency("EUR", decimals=2)
USD = Currency("USD", decimals=2)
JPY = Currency("JPY", decimals=0)
GBP = Currency("GBP", decimals=2)
CHF = Currency("CHF", decimals=2)

CURRENCIES: dict[str, Currency] = {
    "EUR": EUR,
    "USD": USD,
    "JPY": JPY,
    "GBP": GBP,
    "CHF": CHF,
}


def get_currency(code: str) -> Currency:
    """Get currency by code (unknown codes default to 2 decimal places)."""
    code = code.upper()
    if code not in CURRENCIES:
        return Currency(code, decimals=2)
    return CURRENCIES[code]


def round_money(value: float, currency_code: str = "EUR") -> float:
    """Round a money amount to the minor unit of ``currency_code``."""
    return get_currency(currency_code).round(value)
