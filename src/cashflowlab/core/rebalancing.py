"""
Allocation and rebalancing engine.

Given the portfolio value per asset class after this month's cashflows, the
engine works out the lifecycle target allocation (blending toward the next
phase along its glide path) and emits class-level orders:

1. Forced sells covering the liquidation demand, taken from over-weight
   classes first. They ignore the minimum transaction amount.
2. Discretionary orders: a full rebalance to target when any class weight
   drifts beyond the strategy threshold, otherwise only the investable cash
   surplus is spread over under-weight classes.
3. Discretionary orders smaller than ``minimum_transaction_amount`` are
   dropped. If that leaves the month short of the liquidation demand, buys
   are scaled down by the shortfall.

Class orders are then routed to assets: sells proportionally to each asset's
value, buys evenly across the class's active savings instruments.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field

import numpy as np

from .currency import MONEY_TOLERANCE
from .events import Event
from .ledger import AssetOrder, Portfolio
from .lifecycle import GlidePosition
from .registry import ProfileRegistry
from .specs import LifecyclePhase, StrategyProfile

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-9
WEIGHT_SUM_TOLERANCE = 1e-6  # allocation inputs are rounded percentages


@dataclass(frozen=True)
class ClassOrder:
    """Signed currency amount to trade in one asset class."""

    asset_class_id: str
    amount: float
    forced: bool = False


@dataclass
class RebalanceDecision:
    """Class orders plus the figures they were derived from."""

    orders: list[ClassOrder] = field(default_factory=list)
    target_weights: dict[str, float] = field(default_factory=dict)
    current_weights: dict[str, float] = field(default_factory=dict)
    max_drift: float = 0.0
    full_rebalance: bool = False
    unmet_demand: float = 0.0


def normalize_weights(weights: Mapping[str, float], owner: str = "") -> dict[str, float]:
    """
    Scale weights to sum to one.

    Negative weights are treated as zero. A sum that is off by more than
    ``WEIGHT_SUM_TOLERANCE`` triggers a warning before rescaling.
    """
    clean = {k: max(0.0, float(v)) for k, v in weights.items()}
    total = sum(clean.values())
    if total <= WEIGHT_TOLERANCE:
        return clean
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        warnings.warn(
            f"Target weights{' of ' + owner if owner else ''} sum to {total:.4f}; "
            "normalizing to 1",
            stacklevel=2,
        )
    return {k: v / total for k, v in clean.items()}


def phase_weights(phase: LifecyclePhase, registry: ProfileRegistry) -> dict[str, float]:
    """Allocation of a phase: its profile (or the class base weights) plus overrides."""
    if phase.allocation_profile_id:
        weights = dict(registry.allocation_profile(phase.allocation_profile_id).weights)
    else:
        weights = {c.id: c.target_weight for c in registry.asset_classes()}
    weights.update(phase.allocation_overrides)
    return normalize_weights(weights, owner=f"phase '{phase.id}'")


def glidepath_fraction(months_into: int, glidepath_months: int) -> float:
    """``months_into / glidepath_months`` clamped to [0, 1]; 0 without a glide path."""
    if glidepath_months <= 0:
        return 0.0
    return float(np.clip(months_into / glidepath_months, 0.0, 1.0))


def interpolate_weights(
    active: Mapping[str, float], upcoming: Mapping[str, float], fraction: float
) -> dict[str, float]:
    """Linear blend; the endpoints return exact copies of the inputs."""
    if fraction <= 0.0:
        return dict(active)
    if fraction >= 1.0:
        return dict(upcoming)
    keys = sorted(set(active) | set(upcoming))
    return {
        k: (1.0 - fraction) * active.get(k, 0.0) + fraction * upcoming.get(k, 0.0)
        for k in keys
    }


def target_weights(
    active_phase: LifecyclePhase,
    next_phase: LifecyclePhase | None,
    months_into_glidepath: int,
    registry: ProfileRegistry,
    cache: dict[str, dict[str, float]] | None = None,
) -> dict[str, float]:
    """
    Target allocation for the month, blended along the next phase's glide path.

    ``cache`` (phase id -> normalized weights) avoids re-deriving and
    re-warning about the same phase allocation every month.
    """

    def weights_of(phase: LifecyclePhase) -> dict[str, float]:
        if cache is None:
            return phase_weights(phase, registry)
        if phase.id not in cache:
            cache[phase.id] = phase_weights(phase, registry)
        return cache[phase.id]

    active = weights_of(active_phase)
    if next_phase is None:
        return dict(active)
    fraction = glidepath_fraction(months_into_glidepath, next_phase.glidepath_months)
    if fraction <= 0.0:
        return dict(active)
    return interpolate_weights(active, weights_of(next_phase), fraction)


def targets_for_position(
    position: GlidePosition,
    registry: ProfileRegistry,
    cache: dict[str, dict[str, float]] | None = None,
) -> dict[str, float]:
    return target_weights(
        position.active, position.next, position.months_into, registry, cache
    )


def _allocate_liquidation(
    classes: list[str],
    values: Mapping[str, float],
    diffs: Mapping[str, float],
    demand: float,
) -> tuple[dict[str, float], float]:
    """
    Split ``demand`` into per-class sells.

    Over-weight classes give up their excess first (largest excess first);
    any remainder is taken from the remaining value of all classes, the least
    under-weight first.

    Returns:
        (class id -> positive sell amount, unmet demand)
    """
    sells = {c: 0.0 for c in classes}
    need = demand
    by_diff = sorted(classes, key=lambda c: (diffs[c], c))

    for c in by_diff:
        if need <= MONEY_TOLERANCE:
            break
        excess = max(0.0, -diffs[c])
        take = min(excess, values.get(c, 0.0), need)
        sells[c] += take
        need -= take

    for c in by_diff:
        if need <= MONEY_TOLERANCE:
            break
        take = min(values.get(c, 0.0) - sells[c], need)
        if take > 0:
            sells[c] += take
            need -= take

    return sells, need if need > MONEY_TOLERANCE else 0.0


def compute_orders(
    value_by_class: Mapping[str, float],
    weights: Mapping[str, float],
    strategy: StrategyProfile,
    liquidation_demand: float = 0.0,
    investable_cash: float = 0.0,
) -> RebalanceDecision:
    """
    Derive class orders for one month.

    Args:
        value_by_class: Current market value per asset class
        weights: Target weight per asset class (sums to 1)
        strategy: Strategy profile of the active phase
        liquidation_demand: Shortfall below the cash reserve target (>= 0)
        investable_cash: Cash above the reserve target (>= 0)

    Returns:
        RebalanceDecision with the orders and the drift figures
    """
    classes = sorted(set(value_by_class) | set(weights))
    values = {c: float(value_by_class.get(c, 0.0)) for c in classes}
    targets = {c: float(weights.get(c, 0.0)) for c in classes}
    portfolio_value = sum(values.values())

    decision = RebalanceDecision(target_weights=targets)
    if portfolio_value > MONEY_TOLERANCE:
        decision.current_weights = {c: values[c] / portfolio_value for c in classes}
        decision.max_drift = max(
            (abs(decision.current_weights[c] - targets[c]) for c in classes),
            default=0.0,
        )
    else:
        decision.current_weights = {c: 0.0 for c in classes}

    total = max(0.0, portfolio_value + investable_cash - liquidation_demand)
    diffs = {c: targets[c] * total - values[c] for c in classes}

    forced: dict[str, float] = {c: 0.0 for c in classes}
    if liquidation_demand > MONEY_TOLERANCE:
        forced, decision.unmet_demand = _allocate_liquidation(
            classes, values, diffs, liquidation_demand
        )
    after = {c: values[c] - forced[c] for c in classes}
    remaining_diffs = {c: targets[c] * total - after[c] for c in classes}

    discretionary = {c: 0.0 for c in classes}
    decision.full_rebalance = (
        portfolio_value > MONEY_TOLERANCE
        and decision.max_drift > strategy.rebalancing_threshold + WEIGHT_TOLERANCE
    )
    if decision.full_rebalance:
        discretionary = remaining_diffs
    elif investable_cash > MONEY_TOLERANCE:
        deficits = {c: max(0.0, d) for c, d in remaining_diffs.items()}
        deficit_total = sum(deficits.values())
        if deficit_total > MONEY_TOLERANCE:
            budget = min(investable_cash, deficit_total)
            discretionary = {c: budget * d / deficit_total for c, d in deficits.items()}

    minimum = strategy.minimum_transaction_amount
    for c in classes:
        forced_sell = forced[c]
        amount = discretionary[c] - forced_sell
        if forced_sell > MONEY_TOLERANCE and amount < -MONEY_TOLERANCE:
            # the forced part is never dropped by the size guard
            decision.orders.append(ClassOrder(c, amount, forced=True))
        elif abs(amount) >= minimum and abs(amount) > MONEY_TOLERANCE:
            decision.orders.append(ClassOrder(c, amount))
        elif abs(amount) > MONEY_TOLERANCE:
            logger.debug("Order for %s below minimum (%.2f < %.2f)", c, abs(amount), minimum)

    required = liquidation_demand - decision.unmet_demand
    raised = -sum(o.amount for o in decision.orders)
    if required > MONEY_TOLERANCE and raised < required - MONEY_TOLERANCE:
        decision.orders = _shrink_buys(decision.orders, required - raised, minimum)
    return decision


def _shrink_buys(
    orders: list[ClassOrder], shortfall: float, minimum: float
) -> list[ClassOrder]:
    """
    Scale buys down so the month's orders still raise the liquidation demand.

    Dropping small discretionary sells through the size guard can leave buys
    that were meant to be paid for by those sells.
    """
    buy_total = sum(o.amount for o in orders if o.amount > 0)
    if buy_total <= MONEY_TOLERANCE:
        return orders
    scale = max(0.0, (buy_total - shortfall) / buy_total)
    out = []
    for o in orders:
        if o.amount <= 0:
            out.append(o)
            continue
        amount = o.amount * scale
        if amount >= minimum and amount > MONEY_TOLERANCE:
            out.append(ClassOrder(o.asset_class_id, amount))
        else:
            logger.debug("Buy for %s dropped to cover liquidation demand", o.asset_class_id)
    return out


def route_orders(
    class_orders: list[ClassOrder],
    portfolio: Portfolio,
    t: np.datetime64 | None = None,
) -> tuple[list[AssetOrder], list[Event]]:
    """
    Split class orders into asset orders.

    Sells are spread over the class's holdings in proportion to their value
    and converted to unit quantities at the current price. Buys go only to
    the class's active savings instruments, split evenly; a buy for a class
    without one is dropped and reported as an event.
    """
    orders: list[AssetOrder] = []
    events: list[Event] = []
    for order in class_orders:
        holdings = portfolio.holdings_in_class(order.asset_class_id)
        if order.amount < 0:
            held = [h for h in holdings if h.value > 0]
            class_value = sum(h.value for h in held)
            if class_value <= MONEY_TOLERANCE:
                continue
            to_sell = min(-order.amount, class_value)
            for h in held:
                amount = to_sell * h.value / class_value
                if amount >= h.value - MONEY_TOLERANCE:
                    quantity = h.quantity
                else:
                    quantity = min(h.quantity, amount / h.price)
                if quantity <= 0:
                    continue
                orders.append(
                    AssetOrder(
                        h.id,
                        order.asset_class_id,
                        -amount,
                        quantity=quantity,
                        forced=order.forced,
                    )
                )
        else:
            savings = [h for h in holdings if h.spec.is_active_savings_instrument]
            if not savings:
                events.append(
                    Event(
                        t,
                        "buy_dropped",
                        f"No active savings instrument in class "
                        f"'{order.asset_class_id}'; buy of {order.amount:,.2f} dropped",
                        {"asset_class_id": order.asset_class_id, "amount": order.amount},
                    )
                )
                continue
            share = order.amount / len(savings)
            for h in savings:
                orders.append(AssetOrder(h.id, order.asset_class_id, share))
    return orders, events
