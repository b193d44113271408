from copy import deepcopy
from dataclasses import dataclass, field
from typing import Generic, List, TypeVar

import numpy as np

T = TypeVar("T")


@dataclass
class Particle(Generic[T]):
    """A sample value with its unnormalised log-weight."""
    value: T
    log_weight: float = 0.0

    @property
    def weight(self) -> float:
        return float(np.exp(self.log_weight))

    def set_log_weight(self, log_weight: float):
        self.log_weight = float(log_weight)

    def add_to_log_weight(self, delta: float):
        self.log_weight += delta

    def set_weight(self, weight: float):
        self.log_weight = float(np.log(weight)) if weight > 0 else -np.inf

    def multiply_weight_by(self, factor: float):
        self.log_weight += float(np.log(factor)) if factor > 0 else -np.inf

    def copy(self) -> "Particle[T]":
        return Particle(value=deepcopy(self.value), log_weight=self.log_weight)

    def __str__(self) -> str:
        return f"{self.value!r}, {self.weight}"


@dataclass
class HistoryEntry(Generic[T]):
    """
    Snapshot of one generation of the particle system.

    Particles are deep copies, so later moves never alter stored history.
    """
    n_particles: int
    particles: List[Particle[T]] = field(default_factory=list)
    n_accepted: int = 0
    resampled: bool = False
    time: int = 0
