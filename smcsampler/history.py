"""
In-memory history of the particle system.

Stores one snapshot per generation; used to undo an iteration and to
estimate path-sampling integrals over the sequence of distributions.
"""

import logging
from typing import Callable, Generic, List, Sequence

import numpy as np

from .exceptions import MissingHistoryError
from .models import HistoryEntry, Particle, T
from .utils import normalize_log_weights

logger = logging.getLogger(__name__)

PathIntegrand = Callable[[int, Particle], float]
WidthFn = Callable[[int], float]


class HistoryStore(Generic[T]):
    def __init__(self):
        self.entries: List[HistoryEntry[T]] = []

    def __len__(self) -> int:
        return len(self.entries)

    def push(
        self,
        n_particles: int,
        particles: Sequence[Particle[T]],
        n_accepted: int,
        resampled: bool,
        time: int = 0,
    ):
        self.entries.append(HistoryEntry(
            n_particles=n_particles,
            particles=[p.copy() for p in particles],
            n_accepted=n_accepted,
            resampled=resampled,
            time=time,
        ))

    def pop(self) -> HistoryEntry[T]:
        if not self.entries:
            raise MissingHistoryError("the history of the particle system is empty")
        return self.entries.pop()

    def clear(self):
        self.entries = []

    def integrate_path_sampling(self, integrand: PathIntegrand, width: WidthFn) -> float:
        """
        Trapezoidal path-sampling integral over the stored generations.

        For each generation t the integrand is averaged under the particle
        weights of that generation, giving f_t. The estimate is

            sum_{t >= 1} 0.5 * (f_{t-1} + f_t) * width(t)

        which approximates the log ratio of normalising constants between
        the first and last distribution of the sequence.

        Args:
            integrand: (t, particle) -> value for generation t
            width: t -> distance between generations t-1 and t

        Returns:
            Path-sampling estimate (0.0 for fewer than two generations)
        """
        if not self.entries:
            raise MissingHistoryError("the history of the particle system is empty")

        averages = []
        for t, entry in enumerate(self.entries):
            probs, _ = normalize_log_weights(np.array([p.log_weight for p in entry.particles]))
            values = np.array([integrand(t, p) for p in entry.particles], dtype=np.float64)
            averages.append(float(np.dot(probs, values)))

        total = 0.0
        for t in range(1, len(averages)):
            total += 0.5 * (averages[t - 1] + averages[t]) * width(t)

        logger.debug(f"Path sampling over {len(averages)} generations: {total:.6g}")
        return total
