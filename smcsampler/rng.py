"""
Random number streams for the particle system.

Every parallel task draws from its own stream, derived deterministically
from a master seed and a key (stage, generation, particle index, ...).
Streams never share state, so results do not depend on the number of
worker threads or on scheduling order.
"""

from typing import List, Optional, Sequence

import numpy as np

# Stream key prefixes, one per consumer
INIT = 0
MOVE = 1
MCMC = 2
ADAPTIVE = 3
RESAMPLE = 4


class RandomSource:
    """
    Thin wrapper around a numpy Generator with stream splitting.

    Args:
        seed: Master seed (None draws fresh OS entropy once)
        spawn_key: Key identifying this stream below the master seed
    """

    def __init__(self, seed: Optional[int] = None, spawn_key: Sequence[int] = ()):
        self.seed_sequence = np.random.SeedSequence(seed, spawn_key=tuple(spawn_key))
        self.generator = np.random.default_rng(self.seed_sequence)

    @property
    def entropy(self):
        return self.seed_sequence.entropy

    @property
    def spawn_key(self):
        return self.seed_sequence.spawn_key

    def stream(self, *key: int) -> "RandomSource":
        """Independent child stream for the given key."""
        return RandomSource(self.entropy, self.spawn_key + tuple(int(k) for k in key))

    def uniform(self, low: float = 0.0, high: float = 1.0, size=None):
        return self.generator.uniform(low, high, size)

    def normal(self, loc: float = 0.0, scale: float = 1.0, size=None):
        return self.generator.normal(loc, scale, size)

    def integers(self, low, high=None, size=None):
        return self.generator.integers(low, high, size)

    def multinomial(self, n: int, weights: np.ndarray) -> np.ndarray:
        """
        Draw a multinomial count vector.

        Args:
            n: Total number of draws
            weights: Non-negative category weights (normalised here)

        Returns:
            Counts per category, summing to n
        """
        weights = np.asarray(weights, dtype=np.float64)
        if n == 0:
            return np.zeros(len(weights), dtype=np.int64)
        p = weights / weights.sum()
        return self.generator.multinomial(int(n), p).astype(np.int64)


def split_stream(master_seed: Optional[int], *key: int) -> RandomSource:
    """Stream for `key` below `master_seed`."""
    return RandomSource(master_seed, spawn_key=key)


def split_streams(master_seed: Optional[int], n: int) -> List[RandomSource]:
    """One independent stream per worker index 0..n-1."""
    root = RandomSource(master_seed)
    return [root.stream(i) for i in range(n)]
