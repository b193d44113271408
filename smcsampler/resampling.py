"""
Resampling methods for the particle system.

Methods:
- multinomial: M-trial multinomial draw over the normalised weights
- residual: floor(M * w_i) guaranteed copies plus a multinomial remainder
- stratified: one fresh uniform offset per stratum
- systematic: one uniform offset shared by every stratum (lowest variance)

Every method returns a replication-count vector that sums to exactly M.
Helpers convert counts to parent indices, and to the in-place index
layout used to resample a population without a second buffer.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .config import ResampleMode
from .exceptions import DegenerateWeightsError
from .models import Particle, T
from .population import ParticlePopulation
from .rng import RandomSource
from .utils import check_log_weights

logger = logging.getLogger(__name__)


# ============================================================================
# Weight preparation
# ============================================================================

def normalized_weights(log_weights: np.ndarray) -> np.ndarray:
    """
    Probabilities from log-weights via the max-shifted exponential.

    Raises:
        DegenerateWeightsError: if the weights cannot be normalised
    """
    log_weights = check_log_weights(log_weights)
    w = np.exp(log_weights - np.max(log_weights))
    return w / w.sum()


def _as_probabilities(weights: np.ndarray) -> np.ndarray:
    weights = np.asarray(weights, dtype=np.float64)
    if weights.ndim != 1 or weights.size == 0:
        raise ValueError("weights must be a non-empty 1-d array")
    if np.any(~np.isfinite(weights)) or np.any(weights < 0):
        raise DegenerateWeightsError("weights must be finite and non-negative")
    total = weights.sum()
    if total <= 0:
        raise DegenerateWeightsError("all particle weights are zero")
    return weights / total


# ============================================================================
# Count-vector samplers
# ============================================================================

def multinomial_counts(weights: np.ndarray, m: int, rng: RandomSource) -> np.ndarray:
    """
    Multinomial resampling (simplest, highest variance).

    Args:
        weights: Non-negative particle weights (shape: [N])
        m: Number of offspring
        rng: Random source

    Returns:
        Replication counts (shape: [N], sum m)
    """
    p = _as_probabilities(weights)
    return rng.multinomial(m, p)


def split_residual(weights: np.ndarray, m: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split m * w_i into guaranteed copies and fractional remainders.

    Returns:
        Tuple of (floor(m * w_i) counts, remainders m * w_i - floor)
    """
    p = _as_probabilities(weights)
    expected = m * p
    floors = np.floor(expected).astype(np.int64)
    # Rounding in m * p can push the floors past m by one on huge inputs
    excess = int(floors.sum()) - m
    if excess > 0:
        floors[np.argsort(expected - floors)[:excess]] -= 1
    remainders = np.clip(expected - floors, 0.0, None)
    return floors, remainders


def residual_counts(weights: np.ndarray, m: int, rng: RandomSource) -> np.ndarray:
    """
    Residual resampling.

    Each particle gets floor(m * w_i) copies deterministically; the
    leftover m - sum(floor) slots are drawn multinomially from the
    fractional remainders. Lower variance than pure multinomial.
    """
    floors, remainders = split_residual(weights, m)
    n_left = m - int(floors.sum())
    if n_left == 0:
        return floors
    return floors + rng.multinomial(n_left, remainders)


def _strata_counts(p: np.ndarray, positions: np.ndarray) -> np.ndarray:
    n = len(p)
    cdf = np.cumsum(p)
    # Strict '>' comparison: first index whose cumulative weight exceeds the position
    indices = np.searchsorted(cdf, positions, side="right")
    # Rounding can leave cdf[-1] just below a position; fall back to the
    # last particle with positive weight
    last = int(np.flatnonzero(p > 0)[-1])
    indices = np.minimum(indices, last)
    return np.bincount(indices, minlength=n).astype(np.int64)


def stratified_counts(weights: np.ndarray, m: int, rng: RandomSource) -> np.ndarray:
    """
    Stratified resampling.

    [0, 1) is split into m strata; stratum j draws its own offset
    u_j ~ U[0, 1/m) and selects the particle whose cumulative weight
    first exceeds j/m + u_j.
    """
    p = _as_probabilities(weights)
    if m == 0:
        return np.zeros(len(p), dtype=np.int64)
    positions = np.arange(m) / m + rng.uniform(0.0, 1.0 / m, size=m)
    return _strata_counts(p, positions)


def systematic_counts(weights: np.ndarray, m: int, rng: RandomSource) -> np.ndarray:
    """
    Systematic resampling.

    Same as stratified, but a single offset u ~ U[0, 1/m) is reused for
    every stratum. Lowest variance; draws are correlated across strata.
    """
    p = _as_probabilities(weights)
    if m == 0:
        return np.zeros(len(p), dtype=np.int64)
    positions = np.arange(m) / m + rng.uniform(0.0, 1.0 / m)
    return _strata_counts(p, positions)


_COUNT_SAMPLERS = {
    ResampleMode.MULTINOMIAL: multinomial_counts,
    ResampleMode.RESIDUAL: residual_counts,
    ResampleMode.STRATIFIED: stratified_counts,
    ResampleMode.SYSTEMATIC: systematic_counts,
}


def sample_counts(
    mode: ResampleMode,
    weights: np.ndarray,
    m: int,
    rng: RandomSource
) -> np.ndarray:
    """
    Generic count-vector sampler.

    Args:
        mode: One of the four fixed-size resampling modes
        weights: Non-negative particle weights
        m: Number of offspring
        rng: Random source

    Returns:
        Replication counts summing to m
    """
    try:
        sampler = _COUNT_SAMPLERS[ResampleMode(mode)]
    except (KeyError, ValueError):
        raise ValueError(f"Unknown resample method: {mode}")
    return sampler(weights, m, rng)


def resample_indices(
    mode: ResampleMode,
    weights: np.ndarray,
    m: int,
    rng: RandomSource
) -> np.ndarray:
    """Sorted parent indices (shape: [m])."""
    return counts_to_indices(sample_counts(mode, weights, m, rng))


# ============================================================================
# Count / index conversion
# ============================================================================

def counts_to_indices(counts: np.ndarray) -> np.ndarray:
    """Parent index per offspring, in ascending parent order."""
    counts = np.asarray(counts, dtype=np.int64)
    return np.repeat(np.arange(len(counts)), counts)


def indices_to_counts(indices: np.ndarray, n: int) -> np.ndarray:
    return np.bincount(np.asarray(indices, dtype=np.int64), minlength=n).astype(np.int64)


def counts_to_inplace_indices(counts: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Index layout for in-place resampling.

    A particle with at least one offspring keeps its own slot; its extra
    copies fill the zero-count slots in index order. Parent slots are
    therefore never write targets, and slot i reads from out[i].

    Args:
        counts: Replication counts summing to len(counts)
        out: Optional preallocated output array

    Returns:
        Parent index for every slot
    """
    counts = np.asarray(counts, dtype=np.int64)
    n = len(counts)
    if int(counts.sum()) != n:
        raise ValueError(f"counts sum to {int(counts.sum())}, expected {n}")

    if out is None:
        out = np.empty(n, dtype=np.int64)
    out[:] = np.arange(n)

    free_slots = np.flatnonzero(counts == 0)
    extra_parents = counts_to_indices(np.maximum(counts - 1, 0))
    out[free_slots] = extra_parents
    return out


# ============================================================================
# Resampler (stateful)
# ============================================================================

@dataclass
class ResamplingWorkspace:
    """Scratch arrays reused across resampling calls; contents are transient."""
    size: int
    weights: np.ndarray = field(init=False)
    counts: np.ndarray = field(init=False)
    indices: np.ndarray = field(init=False)

    def __post_init__(self):
        self.resize(self.size)

    def resize(self, size: int):
        self.size = size
        self.weights = np.zeros(size, dtype=np.float64)
        self.counts = np.zeros(size, dtype=np.int64)
        self.indices = np.zeros(size, dtype=np.int64)


class Resampler:
    """
    Fixed-size resampling of a particle population.

    Owns the resampling workspace; each call is a function of the current
    weights and the random source passed in.
    """

    def __init__(self, n_particles: int):
        self.workspace = ResamplingWorkspace(n_particles)

    def resample_population(
        self,
        population: ParticlePopulation,
        mode: ResampleMode,
        rng: RandomSource
    ) -> np.ndarray:
        """
        Resample a population in place; all weights are reset to 0.

        Returns:
            Parent index of every slot
        """
        n = len(population)
        ws = self.workspace
        if ws.size != n:
            ws.resize(n)

        ws.weights[:] = normalized_weights(population.log_weights)
        ws.counts[:] = sample_counts(mode, ws.weights, n, rng)
        counts_to_inplace_indices(ws.counts, out=ws.indices)

        population.replicate(ws.indices)

        if logger.isEnabledFor(logging.DEBUG):
            stats = compute_resampling_stats(ws.weights, ws.indices)
            logger.debug(f"Resampled ({ResampleMode(mode).value}): {stats}")
        return ws.indices.copy()

    def downsample(
        self,
        particles: List[Particle[T]],
        m: int,
        rng: RandomSource,
        mode: ResampleMode = ResampleMode.STRATIFIED,
    ) -> Tuple[List[Particle[T]], np.ndarray]:
        """
        Draw m equally weighted particles from a (larger) particle list.

        Returns:
            Tuple of (new particles with log-weight 0, parent indices)
        """
        weights = normalized_weights(np.array([p.log_weight for p in particles]))
        indices = resample_indices(mode, weights, m, rng)
        new_particles = []
        for idx in indices:
            child = particles[idx].copy()
            child.set_log_weight(0.0)
            new_particles.append(child)
        return new_particles, indices


# ============================================================================
# Utility Functions
# ============================================================================

def count_unique_particles(indices: np.ndarray) -> int:
    """Count number of unique particles after resampling."""
    return len(np.unique(indices))


def compute_resampling_stats(
    weights: np.ndarray,
    indices: np.ndarray
) -> dict:
    """
    Compute statistics about resampling.

    Args:
        weights: Normalised weights before resampling
        indices: Selected parent indices

    Returns:
        Dictionary with statistics
    """
    n_unique = count_unique_particles(indices)
    n_selected = len(indices)

    _, counts = np.unique(indices, return_counts=True)
    max_copies = int(np.max(counts))

    selected_weights = weights[indices]

    return {
        "n_unique": n_unique,
        "n_selected": n_selected,
        "diversity": n_unique / n_selected,
        "max_copies": max_copies,
        "selected_weight_mean": float(np.mean(selected_weights)),
        "selected_weight_std": float(np.std(selected_weights)),
    }
