"""
Validation and reporting utilities for CashflowLab.

All configuration errors are detected here, once, before any month is
simulated.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import ConfigError, DanglingProfileReference, LedgerError
from .factors import positive_definiteness_error
from .ledger import Portfolio
from .rebalancing import WEIGHT_SUM_TOLERANCE

if TYPE_CHECKING:
    from .scenario import Scenario


@dataclass
class ValidationReport:
    """
    Structured validation report for scenario configuration.

    Errors are :class:`ConfigError` instances (fatal, the run must not
    start); warnings are human-readable strings for suspicious but legal
    settings.
    """

    errors: list[ConfigError] = None
    warnings: list[str] = None

    def __post_init__(self):
        """Initialize default empty lists."""
        if self.errors is None:
            self.errors = []
        if self.warnings is None:
            self.warnings = []

    def has_errors(self) -> bool:
        return bool(self.errors)

    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def is_valid(self) -> bool:
        """Check if validation passed (no errors, warnings are OK)."""
        return not self.has_errors()

    def get_exit_code(self) -> int:
        """
        Get appropriate CLI exit code.

        Returns:
            0: Valid (warnings allowed)
            1: Errors present
        """
        return 1 if self.has_errors() else 0

    def raise_first(self) -> None:
        """Raise the first recorded configuration error, if any."""
        if self.errors:
            raise self.errors[0]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errors": [
                {"type": type(e).__name__, "message": str(e)} for e in self.errors
            ],
            "warnings": list(self.warnings),
            "has_errors": self.has_errors(),
            "has_warnings": self.has_warnings(),
            "is_valid": self.is_valid(),
            "exit_code": self.get_exit_code(),
        }

    def __str__(self) -> str:
        """Human-readable string representation."""
        lines = []

        if self.is_valid():
            lines.append("✅ Validation passed")
        else:
            lines.append("❌ Validation failed")

        for error in self.errors:
            lines.append(f"Error ({type(error).__name__}): {error}")

        for warning in self.warnings:
            lines.append(f"Warning: {warning}")

        return "\n".join(lines)


def validate_scenario(scenario: Scenario) -> ValidationReport:
    """
    Run every configuration-time check on a scenario.

    Checks:
        - simulation end after simulation start
        - correlation entries reference known factors and lie in [-1, 1]
        - the correlation matrix is positive definite
        - phases and assets reference existing profiles, classes and factors
        - a lifecycle phase is active at simulation start
        - the initial transaction history of every asset is consistent

    Returns:
        ValidationReport with errors and warnings
    """
    report = ValidationReport()
    params = scenario.parameters

    if params.simulation_end <= params.simulation_start:
        report.errors.append(
            ConfigError(
                f"simulation_end {params.simulation_end} is not after "
                f"simulation_start {params.simulation_start}"
            )
        )

    factor_ids = {f.id for f in scenario.factors}
    for entry in scenario.correlations:
        pair = f"{entry.factor_a}~{entry.factor_b}"
        for fid in (entry.factor_a, entry.factor_b):
            if fid not in factor_ids:
                report.errors.append(
                    DanglingProfileReference(pair, "economic factor", fid)
                )
        if entry.factor_a == entry.factor_b:
            report.warnings.append(f"Correlation {pair} pairs a factor with itself; ignored")
        if not -1.0 <= entry.correlation <= 1.0:
            report.warnings.append(
                f"Correlation {pair} = {entry.correlation} outside [-1, 1]; clamped"
            )

    error = positive_definiteness_error(scenario.factors, scenario.correlations)
    if error is not None:
        report.errors.append(error)

    report.errors.extend(
        scenario.registry.dangling_references(scenario.phases, scenario.assets)
    )

    if not report.has_errors():
        try:
            scenario.schedule.active_phase(scenario.start_month)
        except ConfigError as exc:
            report.errors.append(exc)

    if not report.has_errors():
        try:
            Portfolio.from_specs(scenario.assets, scenario.factors)
        except LedgerError as exc:
            report.errors.append(ConfigError(f"Invalid initial portfolio: {exc}"))

    _collect_warnings(scenario, report)
    return report


def _collect_warnings(scenario: Scenario, report: ValidationReport) -> None:
    classes_with_savings = {
        a.asset_class_id for a in scenario.assets if a.is_active_savings_instrument
    }
    weighted: set[str] = set()
    for phase in scenario.phases:
        if phase.allocation_profile_id:
            try:
                profile = scenario.registry.allocation_profile(
                    phase.allocation_profile_id
                )
            except ConfigError:
                continue  # reported as a dangling reference
            weights = dict(profile.weights)
        else:
            weights = {c.id: c.target_weight for c in scenario.asset_classes}
        weights.update(phase.allocation_overrides)
        total = sum(weights.values())
        if weights and abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            report.warnings.append(
                f"Target weights of phase '{phase.id}' sum to {total:.4f}; "
                "they will be normalized"
            )
        weighted.update(c for c, w in weights.items() if w > 0)

    for class_id in sorted(weighted - classes_with_savings):
        report.warnings.append(
            f"Asset class '{class_id}' has a target weight but no active "
            "savings instrument; buys for it will be dropped"
        )

    ages = [p.start_age for p in scenario.phases]
    if len(ages) != len(set(ages)):
        report.warnings.append("Several lifecycle phases share a start age")
