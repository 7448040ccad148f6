"""
Registry for indexing scenario profiles by id.

Provides lookup and dangling-reference detection for the simulation engine.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from .errors import ConfigError, DanglingProfileReference
from .specs import (
    AllocationProfile,
    AssetClass,
    AssetSpec,
    EconomicFactor,
    LifecyclePhase,
    StrategyProfile,
    TaxProfile,
)


def _index(items: Iterable, kind: str) -> dict:
    out = {}
    for item in items:
        if item.id in out:
            raise ConfigError(f"Duplicate {kind} id '{item.id}'")
        out[item.id] = item
    return out


class ProfileRegistry:
    """
    Id-indexed view of the profiles, classes and factors of one scenario.

    Lifecycle phases and assets refer to other configuration objects only by
    id; the registry resolves those ids and reports references that point
    nowhere.

    **Example Usage:**
        ```python
        registry = ProfileRegistry(
            tax_profiles=[TaxProfile(id="tax-de")],
            strategy_profiles=[StrategyProfile(id="build-up")],
            allocation_profiles=[AllocationProfile(id="growth", weights={"equity": 1.0})],
        )
        registry.tax_profile("tax-de")
        registry.dangling_references(phases, assets)  # -> []
        ```
    """

    def __init__(
        self,
        tax_profiles: Iterable[TaxProfile] = (),
        strategy_profiles: Iterable[StrategyProfile] = (),
        allocation_profiles: Iterable[AllocationProfile] = (),
        asset_classes: Iterable[AssetClass] = (),
        factors: Iterable[EconomicFactor] = (),
    ):
        self._tax = _index(tax_profiles, "tax profile")
        self._strategy = _index(strategy_profiles, "strategy profile")
        self._allocation = _index(allocation_profiles, "allocation profile")
        self._classes = _index(asset_classes, "asset class")
        self._factors = _index(factors, "economic factor")

    def tax_profile(self, id: str) -> TaxProfile:
        if id not in self._tax:
            raise ConfigError(f"Tax profile '{id}' not found in registry")
        return self._tax[id]

    def strategy_profile(self, id: str) -> StrategyProfile:
        if id not in self._strategy:
            raise ConfigError(f"Strategy profile '{id}' not found in registry")
        return self._strategy[id]

    def allocation_profile(self, id: str) -> AllocationProfile:
        if id not in self._allocation:
            raise ConfigError(f"Allocation profile '{id}' not found in registry")
        return self._allocation[id]

    def has_asset_class(self, id: str) -> bool:
        return id in self._classes

    def has_factor(self, id: str) -> bool:
        return id in self._factors

    def asset_classes(self) -> Iterator[AssetClass]:
        return iter(self._classes.values())

    def dangling_references(
        self,
        phases: Iterable[LifecyclePhase] = (),
        assets: Iterable[AssetSpec] = (),
    ) -> list[DanglingProfileReference]:
        """
        Collect every reference to a missing profile, class or factor.

        Returns:
            One DanglingProfileReference per broken reference (empty if none)
        """
        missing: list[DanglingProfileReference] = []
        for phase in phases:
            if phase.tax_profile_id not in self._tax:
                missing.append(
                    DanglingProfileReference(phase.id, "tax profile", phase.tax_profile_id)
                )
            if phase.strategy_profile_id not in self._strategy:
                missing.append(
                    DanglingProfileReference(
                        phase.id, "strategy profile", phase.strategy_profile_id
                    )
                )
            if (
                phase.allocation_profile_id
                and phase.allocation_profile_id not in self._allocation
            ):
                missing.append(
                    DanglingProfileReference(
                        phase.id, "allocation profile", phase.allocation_profile_id
                    )
                )
            for class_id in phase.allocation_overrides:
                if self._classes and not self.has_asset_class(class_id):
                    missing.append(
                        DanglingProfileReference(phase.id, "asset class", class_id)
                    )
        for asset in assets:
            if not self.has_factor(asset.economic_factor_id):
                missing.append(
                    DanglingProfileReference(
                        asset.id, "economic factor", asset.economic_factor_id
                    )
                )
            if self._classes and not self.has_asset_class(asset.asset_class_id):
                missing.append(
                    DanglingProfileReference(asset.id, "asset class", asset.asset_class_id)
                )
        return missing
