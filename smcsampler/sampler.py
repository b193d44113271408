"""
Sequential Monte Carlo sampler: the iteration controller of a particle system.

Each call to iterate() advances the population by one generation:
1. Append the current population to the history (if stored)
2. Propagate every particle with the move set
3. Shift log-weights so the maximum is 0
4. Compute the ESS and resample when it falls below the threshold
5. Run one MCMC step per particle
6. Advance the evolution time

Problem-specific behaviour lives entirely in the MoveSet; the sampler
never inspects particle values.
"""

import logging
from dataclasses import dataclass
from typing import IO, Callable, Generic, List, Optional, Union

import numpy as np
from tqdm import tqdm

from .adaptive import AdaptivePopulationController, AdaptiveResult
from .config import (
    DEFAULT_MAX_POPULATION,
    Config,
    HistoryMode,
    ResampleMode,
    resolve_threshold,
)
from .diagnostics import DiagnosticsRecorder
from .exceptions import MissingHistoryError
from .history import HistoryStore, PathIntegrand, WidthFn
from .lineage import GraphLineage, LineageRecorder
from .models import Particle, T
from .moves import MoveSet
from .population import ParticlePopulation
from .resampling import Resampler
from .rng import INIT, MCMC, MOVE, RESAMPLE, RandomSource
from .utils import TimingStats, normalize_log_weights, parallel_map, setup_logging

logger = logging.getLogger(__name__)


@dataclass
class SamplerState:
    """Bookkeeping of the particle system; only the sampler mutates it."""
    n_particles: int
    time: int = 0
    resample_mode: ResampleMode = ResampleMode.STRATIFIED
    resample_threshold: float = 0.0
    history_mode: HistoryMode = HistoryMode.NONE
    n_accepted: int = 0
    resampled: bool = False
    population_cap_hit: bool = False
    n_threads: int = 1


class Sampler(Generic[T]):
    """
    Interacting particle system for SMC sampling.

    Args:
        n_particles: Number of particles N
        history_mode: Whether to store every generation (HistoryMode.RAM)
        moves: Move set; may also be supplied later with set_moves()
        seed: Master seed for all random streams (None: fresh entropy)
        resample_mode: Resampling algorithm, or ADAPTIVE
        resample_threshold: ESS threshold; values below 1 are a fraction of N
        n_threads: Worker threads for propagation and MCMC
        max_population: Cap on the population during adaptive growth
        adaptive_mcmc: Run the MCMC pass after adaptive growth in iterate()
        lineage: Optional recorder of particle ancestry
        diagnostics: Optional sink for per-round adaptive ESS values
    """

    def __init__(
        self,
        n_particles: int,
        history_mode: HistoryMode = HistoryMode.NONE,
        moves: Optional[MoveSet[T]] = None,
        seed: Optional[int] = None,
        resample_mode: ResampleMode = ResampleMode.STRATIFIED,
        resample_threshold: float = 0.5,
        n_threads: int = 1,
        max_population: int = DEFAULT_MAX_POPULATION,
        adaptive_mcmc: bool = True,
        lineage: Optional[LineageRecorder] = None,
        diagnostics: Optional[DiagnosticsRecorder] = None,
    ):
        if n_particles < 1:
            raise ValueError(f"n_particles must be positive, got {n_particles}")
        if max_population < n_particles:
            raise ValueError(
                f"max_population ({max_population}) must be at least n_particles ({n_particles})"
            )

        self.moves = moves
        self.max_population = max_population
        self.adaptive_mcmc = adaptive_mcmc
        self.lineage = lineage
        self.diagnostics = diagnostics

        self.state = SamplerState(n_particles=n_particles, history_mode=HistoryMode(history_mode))
        self.set_resample_params(resample_mode, resample_threshold)
        self.set_n_threads(n_threads)

        self.population: ParticlePopulation[T] = ParticlePopulation(
            [Particle(value=None) for _ in range(n_particles)]
        )
        self.resampler = Resampler(n_particles)
        self.history: HistoryStore[T] = HistoryStore()
        self.timing = TimingStats()
        self._rng = RandomSource(seed)

    @classmethod
    def from_config(
        cls,
        config: Config,
        moves: Optional[MoveSet[T]] = None,
        lineage: Optional[LineageRecorder] = None,
        diagnostics: Optional[DiagnosticsRecorder] = None,
    ) -> "Sampler[T]":
        setup_logging("DEBUG" if config.system.debug else config.system.log_level)
        sc = config.sampler
        if lineage is None and sc.lineage:
            lineage = GraphLineage()
        return cls(
            n_particles=sc.n_particles,
            history_mode=sc.history,
            moves=moves,
            seed=config.system.seed,
            resample_mode=sc.resample.mode,
            resample_threshold=sc.resample.threshold,
            n_threads=sc.n_threads,
            max_population=sc.max_population,
            adaptive_mcmc=sc.adaptive_mcmc,
            lineage=lineage,
            diagnostics=diagnostics,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_moves(self, moves: MoveSet[T]):
        self.moves = moves

    def set_resample_params(self, mode: Union[ResampleMode, str], threshold: float):
        """
        Configure the resampling algorithm and the ESS threshold.

        A threshold in [0, 1) is a fraction of N; larger values are an
        absolute effective sample size.
        """
        if threshold < 0:
            raise ValueError(f"resampling threshold must be non-negative, got {threshold}")
        self.state.resample_mode = ResampleMode(mode)
        self.state.resample_threshold = resolve_threshold(threshold, self.state.n_particles)

    def set_n_threads(self, n_threads: int):
        if n_threads < 1:
            raise ValueError(f"n_threads must be at least 1, got {n_threads}")
        self.state.n_threads = n_threads

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def time(self) -> int:
        return self.state.time

    @property
    def n_particles(self) -> int:
        return self.state.n_particles

    @property
    def history_enabled(self) -> bool:
        return self.state.history_mode != HistoryMode.NONE

    def get_ess(self) -> float:
        return self.population.ess()

    def _particle(self, n: int) -> Particle[T]:
        if not 0 <= n < len(self.population):
            raise IndexError(f"particle index {n} out of range for {len(self.population)} particles")
        return self.population[n]

    def particle_value(self, n: int) -> T:
        return self._particle(n).value

    def particle_log_weight(self, n: int) -> float:
        return self._particle(n).log_weight

    def particle_weight(self, n: int) -> float:
        return self._particle(n).weight

    def integrate(self, integrand: Callable[[T], float]) -> float:
        """Weighted average of integrand(value) over the current particles."""
        probs, _ = normalize_log_weights(self.population.log_weights)
        values = np.array([integrand(v) for v in self.population.values], dtype=np.float64)
        return float(np.dot(probs, values))

    def integrate_path_sampling(self, integrand: PathIntegrand, width: WidthFn) -> float:
        """
        Path-sampling integral over every generation up to the current one.

        Raises:
            MissingHistoryError: if the history is not stored
        """
        if not self.history_enabled:
            raise MissingHistoryError(
                "The path sampling integral cannot be computed as the history of the system was not stored."
            )

        pushed = self._push_history()
        try:
            return self.history.integrate_path_sampling(integrand, width)
        finally:
            if pushed:
                self.history.pop()

    def stream_particle(self, out: IO[str], n: int) -> IO[str]:
        out.write(f"{self._particle(n)}\n")
        return out

    def stream_particles(self, out: IO[str]) -> IO[str]:
        for p in self.population:
            out.write(f"{p}\n")
        return out

    def write_lineage(self, out: IO[str]) -> IO[str]:
        if not isinstance(self.lineage, GraphLineage):
            raise ValueError("lineage graph recording is not enabled")
        return self.lineage.write_dot(out)

    def __str__(self) -> str:
        lines = [
            "Sampler Configuration:",
            "======================",
            f"Evolution Time:   {self.time}",
            f"Particle Set Size:{self.n_particles}",
            "",
            "Particle Set:",
        ]
        lines.extend(str(p) for p in self.population)
        lines.append("")
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------------
    # Evolution
    # ------------------------------------------------------------------

    def _require_moves(self) -> MoveSet[T]:
        if self.moves is None:
            raise ValueError("no move set has been supplied to the sampler")
        return self.moves

    def initialise(self):
        """
        Draw generation 0 from the move set and reset the evolution time.
        """
        moves = self._require_moves()
        n = self.state.n_particles

        self.state.time = 0
        particles = parallel_map(
            lambda i: moves.initialise(self._rng.stream(INIT, i)), n, self.state.n_threads
        )
        self.population.replace(particles)
        self.state.n_accepted = 0
        self.state.resampled = False
        self.state.population_cap_hit = False

        if self.history_enabled:
            self.history.clear()
            self._push_history()

        if self.lineage is not None:
            self.lineage.record_initial(n)

        logger.info(
            f"Initialised {n} particles "
            f"(resample={self.state.resample_mode.value}, "
            f"threshold={self.state.resample_threshold:.2f}, threads={self.state.n_threads})"
        )

    def iterate(self):
        """Perform one iteration of the sampler."""
        self.iterate_ess()

    def iterate_until(self, terminate: int, progress: bool = False):
        """Iterate until the evolution time reaches `terminate`."""
        for _ in tqdm(range(self.state.time, terminate), desc="Iterating", disable=not progress):
            self.iterate()

    def iterate_ess(self) -> float:
        """
        Perform one iteration and return the ESS measured after propagation.

        In ADAPTIVE mode a degenerate generation is replenished by adaptive
        growth instead of fixed-size resampling; the MCMC pass then only
        runs after growth (and only if adaptive_mcmc is set).

        The generation is built on copies of the particles and committed
        only once every step has succeeded. If a move raises, or the
        weights degenerate, the sampler is left exactly as it was.
        """
        moves = self._require_moves()
        st = self.state
        self.population.check_size(st.n_particles)
        t_next = st.time + 1

        adaptive = st.resample_mode == ResampleMode.ADAPTIVE
        basis = self.population.snapshot() if adaptive else None
        working = ParticlePopulation(self.population.snapshot())

        with self.timing.time("move"):
            self._move_particles(moves, working.particles, t_next)
        max_log_weight = working.normalize()

        ess = working.ess()
        parents = None
        resampled = False
        cap_hit = False
        grown = False

        if ess < st.resample_threshold:
            resampled = True
            if adaptive:
                result = self._grow(
                    basis, t_next, first_round=(working.particles, max_log_weight)
                )
                working.replace(result.particles)
                parents = result.parents
                cap_hit = result.cap_hit
                grown = True
            else:
                with self.timing.time("resample"):
                    parents = self.resampler.resample_population(
                        working, st.resample_mode, self._rng.stream(RESAMPLE, t_next)
                    )
                logger.debug(f"Resampled at time {t_next} (ESS={ess:.2f})")

        n_accepted = 0
        if not adaptive or (grown and self.adaptive_mcmc):
            n_accepted = self._mcmc_pass(moves, working.particles, t_next)

        self._commit_generation(working, parents, n_accepted, resampled, cap_hit)
        logger.debug(
            f"Time {st.time}: ESS={ess:.2f}/{st.n_particles}, "
            f"resampled={st.resampled}, accepted={st.n_accepted}"
        )
        return ess

    def iterate_ess_variable(self, diagnostics: Optional[DiagnosticsRecorder] = None) -> float:
        """
        Perform one iteration with adaptive population growth.

        Rounds of propagated copies of the current particles are added
        until the ESS reaches the threshold (or the population cap), the
        population is stratified back to N, and an MCMC pass follows.
        Nothing is committed if any step raises.

        Returns:
            ESS of the grown population before downsampling
        """
        moves = self._require_moves()
        st = self.state
        self.population.check_size(st.n_particles)
        t_next = st.time + 1

        result = self._grow(self.population.snapshot(), t_next, diagnostics=diagnostics)
        working = ParticlePopulation(result.particles)
        n_accepted = self._mcmc_pass(moves, working.particles, t_next)

        self._commit_generation(working, result.parents, n_accepted, result.resampled, result.cap_hit)
        logger.info(
            f"Time {st.time}: ESS={result.ess:.2f}, grown to {result.grown_size} "
            f"in {result.rounds} rounds, accepted={st.n_accepted}"
        )
        return result.ess

    def iterate_back(self):
        """
        Undo the most recent iteration using the stored history.

        Raises:
            MissingHistoryError: if the history is not stored, or holds no
                earlier generation
        """
        if not self.history_enabled:
            raise MissingHistoryError(
                "An attempt to undo an iteration was made; unfortunately, the system history has not been stored."
            )
        if self.state.time == 0:
            raise MissingHistoryError("There is no earlier generation to return to.")

        entry = self.history.pop()
        self.state.n_particles = entry.n_particles
        self.population.replace(entry.particles)
        self.state.n_accepted = entry.n_accepted
        self.state.resampled = entry.resampled
        self.state.time -= 1

        if self.lineage is not None:
            self.lineage.truncate(self.state.time)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _push_history(self) -> bool:
        """Store the current generation unless it is already the newest entry."""
        if not self.history_enabled:
            return False
        entries = self.history.entries
        if entries and entries[-1].time == self.state.time:
            return False
        self.history.push(
            self.state.n_particles,
            self.population.particles,
            self.state.n_accepted,
            self.state.resampled,
            time=self.state.time,
        )
        return True

    def _move_particles(self, moves: MoveSet[T], particles: List[Particle[T]], time: int):
        def step(i: int):
            moves.move(time, particles[i], self._rng.stream(MOVE, time, i))

        parallel_map(step, len(particles), self.state.n_threads)

    def _mcmc_pass(self, moves: MoveSet[T], particles: List[Particle[T]], time: int) -> int:
        def step(i: int) -> bool:
            return bool(moves.mcmc(time, particles[i], self._rng.stream(MCMC, time, i)))

        with self.timing.time("mcmc"):
            accepted = parallel_map(step, len(particles), self.state.n_threads)
        return int(sum(accepted))

    def _grow(
        self,
        basis: List[Particle[T]],
        time: int,
        first_round=None,
        diagnostics: Optional[DiagnosticsRecorder] = None,
    ) -> AdaptiveResult[T]:
        controller = AdaptivePopulationController(
            moves=self._require_moves(),
            n_particles=self.state.n_particles,
            threshold=self.state.resample_threshold,
            max_population=self.max_population,
            n_threads=self.state.n_threads,
            resampler=self.resampler,
            diagnostics=self.diagnostics if diagnostics is None else diagnostics,
        )
        with self.timing.time("adaptive"):
            return controller.grow(basis, time, self._rng, first_round=first_round)

    def _commit_generation(
        self,
        working: ParticlePopulation[T],
        parents: Optional[np.ndarray],
        n_accepted: int,
        resampled: bool,
        cap_hit: bool,
    ):
        """Store the outgoing generation, then install the new one and advance T."""
        st = self.state
        working.check_size(st.n_particles)

        self._push_history()
        self.population.replace(working.particles)
        st.n_accepted = n_accepted
        st.resampled = resampled
        st.population_cap_hit = cap_hit

        if self.lineage is not None:
            self.lineage.record_generation(st.time + 1, parents, st.n_particles)
        st.time += 1
