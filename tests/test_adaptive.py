"""
Unit tests for adaptive population growth.

The test move gives weight 1 to the copy of starting particle 0 and
weight 0 to every other copy, so each round adds exactly one unit of
ESS and the number of rounds is known in advance.
"""

import numpy as np
import pytest

from smcsampler.adaptive import AdaptivePopulationController
from smcsampler.diagnostics import DiagnosticsRecorder
from smcsampler.exceptions import DegenerateWeightsError, PopulationCapWarning
from smcsampler.models import Particle
from smcsampler.moves import FunctionMoveSet
from smcsampler.rng import RandomSource

N = 10


def one_survivor_move(t, particle, rng):
    particle.set_log_weight(0.0 if particle.value == 0 else -np.inf)


def make_controller(move, threshold, max_population=100_000, n_threads=1, diagnostics=None):
    moves = FunctionMoveSet(init=lambda rng: Particle(0), move=move)
    return AdaptivePopulationController(
        moves,
        n_particles=N,
        threshold=threshold,
        max_population=max_population,
        n_threads=n_threads,
        diagnostics=diagnostics,
    )


def make_basis():
    return [Particle(i, 0.0) for i in range(N)]


class TestGrowth:
    """Tests for the round loop."""

    def test_predicted_rounds(self):
        diagnostics = DiagnosticsRecorder()
        controller = make_controller(one_survivor_move, threshold=5, diagnostics=diagnostics)
        result = controller.grow(make_basis(), 1, RandomSource(0))

        assert result.rounds == 5
        assert result.grown_size == 5 * N
        assert result.ess == pytest.approx(5.0)
        assert not result.cap_hit
        assert diagnostics.ess == pytest.approx([1.0, 2.0, 3.0, 4.0, 5.0])
        assert diagnostics.population_sizes == [10, 20, 30, 40, 50]

    def test_downsampled_to_n(self):
        controller = make_controller(one_survivor_move, threshold=5)
        result = controller.grow(make_basis(), 1, RandomSource(0))

        assert result.resampled
        assert len(result.particles) == N
        assert all(p.value == 0 for p in result.particles)
        assert all(p.log_weight == 0.0 for p in result.particles)
        np.testing.assert_array_equal(result.parents, np.zeros(N))

    def test_single_round_when_threshold_met(self):
        controller = make_controller(lambda t, p, rng: None, threshold=5)
        result = controller.grow(make_basis(), 1, RandomSource(0))

        assert result.rounds == 1
        assert result.ess == N
        assert not result.resampled
        assert result.parents is None
        assert len(result.particles) == N

    def test_basis_not_modified(self):
        basis = make_basis()
        make_controller(one_survivor_move, threshold=3).grow(basis, 1, RandomSource(0))
        assert all(p.log_weight == 0.0 for p in basis)

    def test_renormalised_against_global_max(self):
        """A later round with a larger maximum rescales earlier rounds."""
        calls = []

        def rising_move(t, particle, rng):
            if particle.value == 0:
                calls.append(1)
                particle.set_log_weight(float(len(calls)))
            else:
                particle.set_log_weight(-np.inf)

        controller = make_controller(rising_move, threshold=1.5)
        result = controller.grow(make_basis(), 1, RandomSource(0))

        # Weights e^1 and e^2 relative to e^2
        expected = (np.exp(-1.0) + 1.0) ** 2 / (np.exp(-2.0) + 1.0)
        assert result.rounds == 2
        assert result.ess == pytest.approx(expected)


class TestCap:
    """Tests for the population cap."""

    def test_cap_stops_growth(self):
        controller = make_controller(one_survivor_move, threshold=9, max_population=35)
        with pytest.warns(PopulationCapWarning):
            result = controller.grow(make_basis(), 1, RandomSource(0))

        assert result.cap_hit
        assert result.rounds == 3
        assert result.grown_size <= 35
        assert result.ess == pytest.approx(3.0)
        assert len(result.particles) == N

    def test_cap_equal_to_n(self):
        controller = make_controller(one_survivor_move, threshold=2, max_population=N)
        with pytest.warns(PopulationCapWarning):
            result = controller.grow(make_basis(), 1, RandomSource(0))

        assert result.rounds == 1
        assert result.grown_size == N
        assert not result.resampled


class TestFirstRound:
    """Tests for continuing from an already propagated round."""

    def test_first_round_counts_as_round(self):
        basis = make_basis()
        first = [p.copy() for p in basis]
        for p in first:
            one_survivor_move(1, p, None)

        controller = make_controller(one_survivor_move, threshold=4)
        result = controller.grow(basis, 1, RandomSource(0), first_round=(first, 0.0))

        assert result.rounds == 4
        assert result.grown_size == 4 * N


class TestDeterminism:
    """Tests for thread-count independence and weight checks."""

    def test_threads_do_not_change_result(self):
        def noisy_move(t, particle, rng):
            particle.value = particle.value + rng.normal()
            particle.set_log_weight(-0.5 * particle.value ** 2 * 10)

        results = []
        for n_threads in (1, 4):
            controller = make_controller(noisy_move, threshold=8, n_threads=n_threads)
            results.append(controller.grow(make_basis(), 1, RandomSource(7)))

        np.testing.assert_array_equal(
            [p.value for p in results[0].particles],
            [p.value for p in results[1].particles],
        )
        assert results[0].rounds == results[1].rounds

    def test_nan_weight_raises(self):
        def nan_move(t, particle, rng):
            particle.set_log_weight(np.nan)

        with pytest.raises(DegenerateWeightsError):
            make_controller(nan_move, threshold=5).grow(make_basis(), 1, RandomSource(0))

    def test_all_zero_weights_raise(self):
        def zero_move(t, particle, rng):
            particle.set_log_weight(-np.inf)

        with pytest.raises(DegenerateWeightsError):
            make_controller(zero_move, threshold=5).grow(make_basis(), 1, RandomSource(0))
