"""
Adaptive (variable-size) population control.

Instead of resampling a degenerate population of fixed size, the
population is grown in rounds. Each round propagates a fresh copy of the
generation's starting particles and appends the result, until the ESS of
the grown population reaches the threshold or the population cap is hit.
The grown population is then stratified back down to N particles.

Log-weights of all rounds are kept relative to a single global maximum,
so particles from different rounds stay directly comparable.
"""

import logging
import warnings
from dataclasses import dataclass
from typing import Generic, List, Optional, Tuple

import numpy as np

from .config import DEFAULT_MAX_POPULATION
from .diagnostics import DiagnosticsRecorder
from .exceptions import DegenerateWeightsError, PopulationCapWarning
from .models import Particle, T
from .moves import MoveSet
from .resampling import Resampler
from .rng import ADAPTIVE, RESAMPLE, RandomSource
from .utils import compute_ess, parallel_map

logger = logging.getLogger(__name__)


@dataclass
class AdaptiveResult(Generic[T]):
    particles: List[Particle[T]]
    ess: float
    rounds: int
    grown_size: int
    # Index into the starting particles for each survivor; None if not resampled
    parents: Optional[np.ndarray]
    resampled: bool
    cap_hit: bool


def _round_max(particles: List[Particle]) -> float:
    log_weights = np.array([p.log_weight for p in particles], dtype=np.float64)
    if np.any(np.isnan(log_weights)) or np.any(np.isposinf(log_weights)):
        raise DegenerateWeightsError("propagated log-weights contain NaN or +inf")
    return float(np.max(log_weights))


class AdaptivePopulationController:
    """
    Grows the population until ESS >= threshold or the cap is reached.

    Args:
        moves: Move set used to propagate each round
        n_particles: Target population size N
        threshold: Absolute ESS threshold
        max_population: Hard cap on the grown population size
        n_threads: Worker threads for propagation
        resampler: Resampler used for downsampling
        diagnostics: Optional sink receiving the ESS of every round
    """

    def __init__(
        self,
        moves: MoveSet,
        n_particles: int,
        threshold: float,
        max_population: int = DEFAULT_MAX_POPULATION,
        n_threads: int = 1,
        resampler: Optional[Resampler] = None,
        diagnostics: Optional[DiagnosticsRecorder] = None,
    ):
        self.moves = moves
        self.n_particles = n_particles
        self.threshold = threshold
        self.max_population = max_population
        self.n_threads = n_threads
        self.resampler = resampler or Resampler(n_particles)
        self.diagnostics = diagnostics

    def _propagate_round(
        self,
        basis: List[Particle],
        time: int,
        round_idx: int,
        rng: RandomSource
    ) -> List[Particle]:
        new_particles = [p.copy() for p in basis]

        def step(i: int):
            self.moves.move(time, new_particles[i], rng.stream(ADAPTIVE, time, round_idx, i))

        parallel_map(step, len(new_particles), self.n_threads)
        return new_particles

    def grow(
        self,
        basis: List[Particle[T]],
        time: int,
        rng: RandomSource,
        first_round: Optional[Tuple[List[Particle[T]], float]] = None,
    ) -> AdaptiveResult[T]:
        """
        Grow, then downsample, the population for one generation.

        Args:
            basis: Deep copies of the particles at the start of the generation
            time: Generation index the moves propagate to
            rng: Root random source; per-particle streams are derived from it
            first_round: Already propagated round and the maximum log-weight
                that was subtracted from it, if the caller has one

        Returns:
            AdaptiveResult with exactly N particles (or fewer if never grown)
        """
        n = len(basis)
        grown: List[Particle[T]] = []
        global_max = -np.inf
        rounds = 0
        ess = 0.0
        cap_hit = False

        if self.diagnostics is not None:
            self.diagnostics.clear()

        if first_round is not None:
            particles, global_max = first_round
            grown = list(particles)
            rounds = 1
            ess = compute_ess(np.array([p.log_weight for p in grown]))
            self._record(ess, len(grown))

        while rounds == 0 or ess < self.threshold:
            if rounds > 0 and len(grown) + n > self.max_population:
                cap_hit = True
                break

            new_particles = self._propagate_round(basis, time, rounds, rng)
            local_max = _round_max(new_particles)

            if not grown:
                global_max = local_max

            if local_max > global_max:
                if np.isfinite(global_max):
                    for p in grown:
                        p.add_to_log_weight(global_max - local_max)
                for p in new_particles:
                    p.add_to_log_weight(-local_max)
                global_max = local_max
            elif np.isfinite(global_max):
                for p in new_particles:
                    p.add_to_log_weight(-global_max)

            grown.extend(new_particles)
            rounds += 1

            ess = compute_ess(np.array([p.log_weight for p in grown]))
            self._record(ess, len(grown))

        if cap_hit:
            message = (
                f"Population cap of {self.max_population} reached with ESS {ess:.2f} "
                f"below threshold {self.threshold:.2f}"
            )
            logger.warning(message)
            warnings.warn(message, PopulationCapWarning, stacklevel=3)

        grown_size = len(grown)
        if grown_size > self.n_particles:
            logger.info(f"Downsampling from {grown_size} to {self.n_particles} particles")
            particles, indices = self.resampler.downsample(
                grown, self.n_particles, rng.stream(RESAMPLE, time)
            )
            return AdaptiveResult(
                particles=particles,
                ess=ess,
                rounds=rounds,
                grown_size=grown_size,
                parents=indices % n,
                resampled=True,
                cap_hit=cap_hit,
            )

        return AdaptiveResult(
            particles=grown,
            ess=ess,
            rounds=rounds,
            grown_size=grown_size,
            parents=None,
            resampled=False,
            cap_hit=cap_hit,
        )

    def _record(self, ess: float, size: int):
        logger.debug(f"Adaptive round: ESS = {ess:.2f}, N = {size}")
        if self.diagnostics is not None:
            self.diagnostics.record(ess, size)
