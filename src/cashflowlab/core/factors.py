"""
Correlated factor path generation.

One call to :meth:`FactorPathGenerator.advance` moves every economic factor
forward by one month:

1. The correlation matrix M is assembled once, with factors ordered by id
   (ordinal string order) and pairwise entries clamped to [-1, 1].
2. Its lower Cholesky factor L (L @ L.T == M) is computed once, at
   configuration time. A matrix that is not positive definite raises
   :class:`~cashflowlab.core.errors.InvalidCorrelationMatrix`.
3. Per month an independent standard-normal vector z is drawn; entry i of z
   belongs to the i-th factor in id order.
4. Correlated shocks are L @ z.
5. Each factor applies its model's monthly discretization:

   - GBM: ``x * exp((mu - sigma^2 / 2) * dt + sigma * sqrt(dt) * shock)``
   - OU:  ``x + theta * (mu - x) * dt + sigma * sqrt(dt) * shock``

For a fixed seed and configuration the path is exactly reproducible.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

import numpy as np

from .errors import InvalidCorrelationMatrix
from .kinds import StochasticModel
from .specs import CorrelationSpec, EconomicFactor

logger = logging.getLogger(__name__)

DT = 1.0 / 12.0  # one month in years
CHOLESKY_TOLERANCE = 1e-12  # smallest admissible pivot of L


def order_factors(factors: Iterable[EconomicFactor]) -> list[EconomicFactor]:
    """Sort factors by id; this order fixes the mapping of z entries to factors."""
    return sorted(factors, key=lambda f: f.id)


def build_correlation_matrix(
    factors: Sequence[EconomicFactor],
    correlations: Iterable[CorrelationSpec],
) -> tuple[tuple[str, ...], np.ndarray]:
    """
    Assemble the symmetric N x N correlation matrix.

    Unspecified pairs default to 0, the diagonal is 1. Entries that name an
    unknown factor or pair a factor with itself are skipped (unknown ids are
    reported by scenario validation).

    Args:
        factors: Economic factors in any order
        correlations: Pairwise correlation entries

    Returns:
        (ordered factor ids, matrix)
    """
    ordered = order_factors(factors)
    ids = tuple(f.id for f in ordered)
    index = {fid: i for i, fid in enumerate(ids)}

    n = len(ids)
    m = np.eye(n)
    for entry in correlations:
        ia = index.get(entry.factor_a)
        ib = index.get(entry.factor_b)
        if ia is None or ib is None or ia == ib:
            continue
        c = float(np.clip(entry.correlation, -1.0, 1.0))
        m[ia, ib] = c
        m[ib, ia] = c
    return ids, m


def cholesky_lower(m: np.ndarray, factor_ids: Sequence[str] = ()) -> np.ndarray:
    """
    Lower-triangular Cholesky factor of a correlation matrix.

    Raises:
        InvalidCorrelationMatrix: If the matrix is not positive definite
    """
    if m.size == 0:
        return np.zeros((0, 0))
    try:
        lower = np.linalg.cholesky(m)
    except np.linalg.LinAlgError as exc:
        raise InvalidCorrelationMatrix(
            "Correlation matrix is not positive definite; "
            "adjust contradictory correlations",
            tuple(factor_ids),
        ) from exc
    if np.any(np.diag(lower) <= CHOLESKY_TOLERANCE):
        raise InvalidCorrelationMatrix(
            "Correlation matrix is singular (perfectly dependent factors)",
            tuple(factor_ids),
        )
    return lower


def positive_definiteness_error(
    factors: Sequence[EconomicFactor], correlations: Iterable[CorrelationSpec]
) -> InvalidCorrelationMatrix | None:
    """Return the validation error for the configured matrix, or None."""
    ids, m = build_correlation_matrix(factors, correlations)
    try:
        cholesky_lower(m, ids)
    except InvalidCorrelationMatrix as exc:
        return exc
    return None


class FactorPathGenerator:
    """
    Monthly stepper for a fixed set of economic factors.

    The generator holds only configuration (parameters and the Cholesky
    factor); factor levels live in the trial's
    :class:`~cashflowlab.core.context.SimulationState` and are passed in.

    Example:
        ```python
        gen = FactorPathGenerator(factors, correlations)
        rng = np.random.default_rng(42)
        levels = gen.initial_levels()
        levels = gen.advance(levels, rng)
        ```
    """

    def __init__(
        self,
        factors: Iterable[EconomicFactor],
        correlations: Iterable[CorrelationSpec] = (),
    ):
        self.factors = order_factors(factors)
        self.ids, self.correlation = build_correlation_matrix(
            self.factors, correlations
        )
        self.lower = cholesky_lower(self.correlation, self.ids)
        self.index = {fid: i for i, fid in enumerate(self.ids)}

        self._mu = np.array([f.expected_return for f in self.factors], dtype=float)
        self._sigma = np.array([f.volatility for f in self.factors], dtype=float)
        self._theta = np.array(
            [f.mean_reversion_speed for f in self.factors], dtype=float
        )
        self._is_gbm = np.array(
            [f.model == StochasticModel.GBM for f in self.factors], dtype=bool
        )
        logger.debug("Factor generator configured for %s", ", ".join(self.ids))

    def __len__(self) -> int:
        return len(self.ids)

    def initial_levels(self) -> np.ndarray:
        return np.array([f.initial_value for f in self.factors], dtype=float)

    def draw_shocks(self, rng: np.random.Generator) -> np.ndarray:
        """Draw one month of correlated standard-normal shocks (L @ z)."""
        z = rng.standard_normal(len(self.ids))
        return self.lower @ z

    def step(self, levels: np.ndarray, shocks: np.ndarray) -> np.ndarray:
        """Apply each factor's monthly discretization for given correlated shocks."""
        sqrt_dt = np.sqrt(DT)
        new_levels = np.empty_like(levels, dtype=float)
        for i, factor in enumerate(self.factors):
            mu, sigma = self._mu[i], self._sigma[i]
            if factor.model == StochasticModel.GBM:
                new_levels[i] = levels[i] * np.exp(
                    (mu - 0.5 * sigma**2) * DT + sigma * sqrt_dt * shocks[i]
                )
            elif factor.model == StochasticModel.OU:
                new_levels[i] = (
                    levels[i]
                    + self._theta[i] * (mu - levels[i]) * DT
                    + sigma * sqrt_dt * shocks[i]
                )
            else:
                raise ValueError(f"Unknown stochastic model: {factor.model}")
        return new_levels

    def advance(
        self,
        levels: np.ndarray,
        rng: np.random.Generator | None = None,
        z: np.ndarray | None = None,
    ) -> np.ndarray:
        """
        Advance all factors by one month.

        Args:
            levels: Current levels in factor-id order
            rng: Random generator for the independent draw
            z: Pre-drawn independent normals (overrides ``rng``; used for replay)

        Returns:
            New levels in factor-id order
        """
        if z is None:
            if rng is None:
                raise ValueError("advance() needs either rng or z")
            shocks = self.draw_shocks(rng)
        else:
            shocks = self.lower @ np.asarray(z, dtype=float)
        return self.step(levels, shocks)

    def index_step(self, index: np.ndarray, levels: np.ndarray) -> np.ndarray:
        """
        Update the cashflow indexation multipliers after a step.

        GBM factors index by ``level / initial``; OU factors (rates) compound
        ``1 + level * dt`` month by month.
        """
        initial = self.initial_levels()
        out = np.where(
            self._is_gbm,
            np.divide(levels, initial, out=np.ones_like(levels), where=initial != 0),
            index * (1.0 + levels * DT),
        )
        return out

    def as_dict(self, levels: np.ndarray) -> dict[str, float]:
        return {fid: float(levels[i]) for i, fid in enumerate(self.ids)}
