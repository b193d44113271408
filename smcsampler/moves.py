"""
Problem-specific moves supplied to the sampler.
"""
from abc import ABC, abstractmethod
from typing import Callable, Generic, Optional, Sequence, Union

from .models import Particle, T
from .rng import RandomSource


InitFn = Callable[[RandomSource], Particle]
MoveFn = Callable[[int, Particle, RandomSource], None]
MCMCFn = Callable[[int, Particle, RandomSource], bool]
SelectFn = Callable[[int, Particle, RandomSource], int]


class MoveSet(ABC, Generic[T]):
    """
    Initialisation, propagation and MCMC moves for one problem.

    Moves receive the particle they act on and a random stream owned by
    that call; they must not touch any other particle.
    """

    @abstractmethod
    def initialise(self, rng: RandomSource) -> Particle[T]:
        pass

    @abstractmethod
    def move(self, time: int, particle: Particle[T], rng: RandomSource) -> None:
        """Propagate particle to `time`, updating its value and log-weight in place."""
        pass

    def mcmc(self, time: int, particle: Particle[T], rng: RandomSource) -> bool:
        """One MCMC refinement step; returns whether the proposal was accepted."""
        return False


class FunctionMoveSet(MoveSet[T]):
    """
    Move set built from plain callables.

    Args:
        init: rng -> Particle
        move: (time, particle, rng) -> None, or a list of such moves
        mcmc: (time, particle, rng) -> bool, or a list applied in turn
        select: (time, particle, rng) -> index into `move` when a list is given
    """

    def __init__(
        self,
        init: InitFn,
        move: Union[MoveFn, Sequence[MoveFn]],
        mcmc: Optional[Union[MCMCFn, Sequence[MCMCFn]]] = None,
        select: Optional[SelectFn] = None,
    ):
        self._init = init
        self._moves = list(move) if isinstance(move, (list, tuple)) else [move]
        if mcmc is None:
            self._mcmc = []
        else:
            self._mcmc = list(mcmc) if isinstance(mcmc, (list, tuple)) else [mcmc]
        if len(self._moves) > 1 and select is None:
            raise ValueError("a selection function is required for more than one move")
        self._select = select

    def initialise(self, rng: RandomSource) -> Particle[T]:
        return self._init(rng)

    def move(self, time: int, particle: Particle[T], rng: RandomSource) -> None:
        if self._select is None:
            self._moves[0](time, particle, rng)
            return
        idx = self._select(time, particle, rng)
        self._moves[idx](time, particle, rng)

    def mcmc(self, time: int, particle: Particle[T], rng: RandomSource) -> bool:
        accepted = False
        for step in self._mcmc:
            if step(time, particle, rng):
                accepted = True
        return accepted
