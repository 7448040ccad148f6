"""
Error classes for CashflowLab.

Two families exist:

- :class:`ConfigError` and its subclasses are detected once, before any month
  is simulated. They are fatal for the whole run and never retried.
- :class:`LedgerError` and its subclasses are raised while a month executes.
  They are fatal for the current Monte Carlo trial only; the trial is marked
  failed and the remaining trials continue.
"""

from __future__ import annotations


class ConfigError(Exception):
    """
    Configuration error during scenario setup or validation.

    **Common Causes:**
    - A lifecycle phase references a profile id that does not exist
    - The correlation matrix is not positive definite
    - No lifecycle phase covers the household's age at simulation start
    - An asset references an unknown economic factor or asset class

    **Example Usage:**
        ```python
        from cashflowlab import Scenario
        from cashflowlab.core.errors import ConfigError

        try:
            Scenario.from_dict(cfg).run(trials=100, seed=42)
        except ConfigError as e:
            print(f"Configuration error: {e}")
        ```
    """

    pass


class InvalidCorrelationMatrix(ConfigError):
    """The assembled factor correlation matrix is not positive definite."""

    def __init__(self, message: str, factor_ids: tuple[str, ...] = ()):
        self.factor_ids = tuple(factor_ids)
        super().__init__(message)


class NoActivePhaseAtStart(ConfigError):
    """No lifecycle phase covers the household's age at simulation start."""

    def __init__(self, age_at_start: int, earliest_start_age: int | None):
        self.age_at_start = age_at_start
        self.earliest_start_age = earliest_start_age
        if earliest_start_age is None:
            msg = "No lifecycle phases are configured"
        else:
            msg = (
                f"No lifecycle phase is active at age {age_at_start}; "
                f"the earliest phase starts at age {earliest_start_age}"
            )
        super().__init__(msg)


class DanglingProfileReference(ConfigError):
    """A phase or asset references a profile/factor/class id that does not exist."""

    def __init__(self, owner_id: str, field_name: str, missing_id: str):
        self.owner_id = owner_id
        self.field_name = field_name
        self.missing_id = missing_id
        super().__init__(
            f"'{owner_id}' references unknown {field_name} '{missing_id}'"
        )


class LedgerError(Exception):
    """
    Runtime error raised while executing orders against the tax-lot ledger.

    Attributes:
        asset_id: The asset the failing order targeted
    """

    def __init__(self, asset_id: str, message: str):
        self.asset_id = asset_id
        super().__init__(f"[Asset {asset_id}] {message}")


class InsufficientLotQuantity(LedgerError):
    """A sell order asked for more units than the asset currently holds."""

    def __init__(self, asset_id: str, requested: float, held: float):
        self.requested = requested
        self.held = held
        super().__init__(
            asset_id,
            f"cannot sell {requested:.6f} units, only {held:.6f} held",
        )


class NoCostBasisAvailable(LedgerError):
    """A sell order targeted an asset that has no recorded buy lots."""

    def __init__(self, asset_id: str):
        super().__init__(asset_id, "sell requested but no buy lots are recorded")
