"""
Unit tests for particles and the particle population.
"""

import numpy as np
import pytest

from smcsampler.exceptions import DegenerateWeightsError, InvariantViolationError
from smcsampler.models import Particle
from smcsampler.population import ParticlePopulation


def make_population(log_weights):
    return ParticlePopulation([Particle(i, lw) for i, lw in enumerate(log_weights)])


class TestParticle:
    """Tests for weight accessors on a single particle."""

    def test_weight(self):
        p = Particle("x", np.log(2.0))
        assert p.weight == pytest.approx(2.0)

    def test_weight_updates(self):
        p = Particle("x")
        p.add_to_log_weight(1.5)
        p.multiply_weight_by(np.exp(0.5))
        assert p.log_weight == pytest.approx(2.0)

        p.set_weight(0.0)
        assert p.log_weight == -np.inf
        assert p.weight == 0.0

    def test_copy_is_deep(self):
        p = Particle({"a": [1, 2]}, -1.0)
        q = p.copy()
        q.value["a"].append(3)
        assert p.value == {"a": [1, 2]}
        assert q.log_weight == -1.0

    def test_str(self):
        assert str(Particle(3, 0.0)) == "3, 1.0"


class TestNormalize:
    """Tests for the max-shift normalisation."""

    def test_max_becomes_zero(self):
        population = make_population([-3.0, 2.0, 0.5])
        m = population.normalize()
        assert m == 2.0
        np.testing.assert_allclose(population.log_weights, [-5.0, 0.0, -1.5])

    def test_ratios_preserved(self):
        population = make_population([1000.0, 999.0])
        population.normalize()
        w = np.exp(population.log_weights)
        assert w[1] / w[0] == pytest.approx(np.exp(-1.0))

    def test_zero_weight_particles_stay_zero(self):
        population = make_population([-np.inf, 4.0])
        population.normalize()
        assert population[0].log_weight == -np.inf
        assert population[1].log_weight == 0.0

    @pytest.mark.parametrize("bad", [[0.0, np.nan], [np.inf, 0.0], [-np.inf, -np.inf]])
    def test_degenerate(self, bad):
        with pytest.raises(DegenerateWeightsError):
            make_population(bad).normalize()

    def test_empty(self):
        assert ParticlePopulation().normalize() == 0.0


class TestPopulation:
    """Tests for population bookkeeping."""

    def test_ess(self):
        assert make_population([0.0] * 5).ess() == 5.0

    def test_snapshot_is_independent(self):
        population = ParticlePopulation([Particle([1])])
        snap = population.snapshot()
        population[0].value.append(2)
        population[0].set_log_weight(-1.0)
        assert snap[0].value == [1]
        assert snap[0].log_weight == 0.0

    def test_replicate(self):
        population = make_population([0.0, -1.0, -2.0, -3.0])
        population.replicate(np.array([0, 0, 2, 2]))
        assert population.values == [0, 0, 2, 2]
        np.testing.assert_array_equal(population.log_weights, np.zeros(4))
        assert population[0] is not population[1]

    def test_replicate_length_mismatch(self):
        with pytest.raises(InvariantViolationError):
            make_population([0.0, 0.0]).replicate(np.array([0]))

    def test_check_size(self):
        population = make_population([0.0, 0.0])
        population.check_size(2)
        with pytest.raises(InvariantViolationError):
            population.check_size(3)
