"""
Particle population with log-weight bookkeeping.

Log-weights are kept relative to the running maximum: after normalize()
the largest log-weight is exactly 0, so exponentials never overflow.
Ratios between weights are unchanged by the shift.
"""

from typing import Generic, Iterator, List, Sequence

import numpy as np

from .exceptions import InvariantViolationError
from .models import Particle, T
from .utils import check_log_weights, compute_ess


class ParticlePopulation(Generic[T]):
    def __init__(self, particles: Sequence[Particle[T]] = ()):
        self.particles: List[Particle[T]] = list(particles)

    def __len__(self) -> int:
        return len(self.particles)

    def __getitem__(self, idx) -> Particle[T]:
        return self.particles[idx]

    def __setitem__(self, idx, particle: Particle[T]):
        self.particles[idx] = particle

    def __iter__(self) -> Iterator[Particle[T]]:
        return iter(self.particles)

    @property
    def log_weights(self) -> np.ndarray:
        return np.array([p.log_weight for p in self.particles], dtype=np.float64)

    @property
    def values(self) -> List[T]:
        return [p.value for p in self.particles]

    def replace(self, particles: Sequence[Particle[T]]):
        self.particles = list(particles)

    def extend(self, particles: Sequence[Particle[T]]):
        self.particles.extend(particles)

    def snapshot(self) -> List[Particle[T]]:
        """Deep copies of every particle."""
        return [p.copy() for p in self.particles]

    def max_log_weight(self) -> float:
        log_weights = check_log_weights(self.log_weights)
        return float(np.max(log_weights))

    def shift(self, delta: float):
        for p in self.particles:
            p.add_to_log_weight(delta)

    def normalize(self) -> float:
        """
        Shift log-weights so the maximum is 0.

        Returns:
            The maximum log-weight before the shift

        Raises:
            DegenerateWeightsError: on NaN/+inf weights or all-zero weights
        """
        if not self.particles:
            return 0.0
        max_log_weight = self.max_log_weight()
        self.shift(-max_log_weight)
        return max_log_weight

    def reset_weights(self):
        for p in self.particles:
            p.set_log_weight(0.0)

    def ess(self) -> float:
        return compute_ess(self.log_weights)

    def replicate(self, indices: np.ndarray):
        """
        Replicate parents in place and reset every weight to 0.

        Slot i receives a copy of particle indices[i]. A parent slot must
        never be overwritten, so it is never read after being written.
        """
        indices = np.asarray(indices)
        n = len(self.particles)
        if len(indices) != n:
            raise InvariantViolationError(
                f"index vector has length {len(indices)}, population has {n}"
            )

        overwritten = indices != np.arange(n)
        if np.any(overwritten[indices[overwritten]]):
            raise InvariantViolationError("in-place remap would read an overwritten slot")

        for i in np.flatnonzero(overwritten):
            self.particles[i] = self.particles[indices[i]].copy()
        self.reset_weights()

    def check_size(self, n_particles: int):
        if len(self.particles) != n_particles:
            raise InvariantViolationError(
                f"population holds {len(self.particles)} particles, expected {n_particles}"
            )

