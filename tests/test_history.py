"""
Unit tests for the history store, lineage graph and diagnostics sink.
"""

import io

import numpy as np
import pytest

from smcsampler.diagnostics import DiagnosticsRecorder
from smcsampler.exceptions import MissingHistoryError
from smcsampler.history import HistoryStore
from smcsampler.lineage import GraphLineage
from smcsampler.models import Particle


class TestHistoryStore:
    """Tests for push / pop of generations."""

    def test_round_trip(self):
        store = HistoryStore()
        particles = [Particle([1.0], 0.0), Particle([2.0], -1.0)]
        store.push(2, particles, n_accepted=1, resampled=True, time=4)

        entry = store.pop()
        assert entry.n_particles == 2
        assert entry.n_accepted == 1
        assert entry.resampled is True
        assert entry.time == 4
        assert [p.value for p in entry.particles] == [[1.0], [2.0]]
        assert [p.log_weight for p in entry.particles] == [0.0, -1.0]
        assert len(store) == 0

    def test_push_stores_copies(self):
        store = HistoryStore()
        particles = [Particle([1.0])]
        store.push(1, particles, 0, False)
        particles[0].value.append(5.0)
        particles[0].set_log_weight(-7.0)

        entry = store.pop()
        assert entry.particles[0].value == [1.0]
        assert entry.particles[0].log_weight == 0.0

    def test_pop_is_lifo(self):
        store = HistoryStore()
        for t in range(3):
            store.push(1, [Particle(t)], 0, False, time=t)
        assert [store.pop().time for _ in range(3)] == [2, 1, 0]

    def test_pop_empty(self):
        with pytest.raises(MissingHistoryError):
            HistoryStore().pop()


class TestPathSampling:
    """Tests for the trapezoidal path-sampling integral."""

    def test_trapezoid(self):
        """Constant-value generations 1, 2, 4 with unit widths give 1.5 + 3."""
        store = HistoryStore()
        for t, value in enumerate([1.0, 2.0, 4.0]):
            store.push(2, [Particle(value, 0.0), Particle(value, -2.0)], 0, False, time=t)

        result = store.integrate_path_sampling(lambda t, p: p.value, lambda t: 1.0)
        assert result == pytest.approx(4.5)

    def test_weighted_average(self):
        """Zero-weight particles do not contribute to a generation's average."""
        store = HistoryStore()
        store.push(2, [Particle(0.0, 0.0), Particle(100.0, -np.inf)], 0, False, time=0)
        store.push(2, [Particle(2.0, 0.0), Particle(100.0, -np.inf)], 0, False, time=1)

        result = store.integrate_path_sampling(lambda t, p: p.value, lambda t: 0.5)
        assert result == pytest.approx(0.5)

    def test_width_receives_generation(self):
        store = HistoryStore()
        for t in range(3):
            store.push(1, [Particle(1.0)], 0, False, time=t)

        widths = []
        store.integrate_path_sampling(lambda t, p: p.value, lambda t: widths.append(t) or 1.0)
        assert widths == [1, 2]

    def test_empty(self):
        with pytest.raises(MissingHistoryError):
            HistoryStore().integrate_path_sampling(lambda t, p: 0.0, lambda t: 1.0)


class TestGraphLineage:
    """Tests for ancestry recording."""

    def test_identity_generation(self):
        lineage = GraphLineage()
        lineage.record_initial(2)
        lineage.record_generation(1, None, 2)
        assert lineage.edges == [((0, 0), (1, 0)), ((0, 1), (1, 1))]

    def test_resampled_generation(self):
        lineage = GraphLineage()
        lineage.record_initial(3)
        lineage.record_generation(1, np.array([2, 2, 0]), 3)
        assert lineage.children((0, 2)) == [(1, 0), (1, 1)]
        assert lineage.ancestry((1, 2)) == [(0, 0), (1, 2)]

    def test_truncate(self):
        lineage = GraphLineage()
        lineage.record_initial(1)
        lineage.record_generation(1, None, 1)
        lineage.record_generation(2, None, 1)
        lineage.truncate(1)
        assert lineage.vertices == [(0, 0), (1, 0)]
        assert len(lineage.edges) == 1

    def test_dot_output(self):
        lineage = GraphLineage()
        lineage.record_initial(1)
        lineage.record_generation(1, None, 1)
        out = lineage.write_dot(io.StringIO())
        assert out.getvalue() == 'digraph G {\n0 [label="0,0"];\n1 [label="1,0"];\n0->1 ;\n}\n'


class TestDiagnosticsRecorder:
    """Tests for the adaptive diagnostics sink."""

    def test_record_and_clear(self):
        diagnostics = DiagnosticsRecorder()
        diagnostics.record(1.5, 10)
        diagnostics.record(3.0, 20)
        assert len(diagnostics) == 2
        assert diagnostics.get_statistics() == {
            "ess_history": [1.5, 3.0],
            "population_size_history": [10, 20],
        }
        diagnostics.clear()
        assert len(diagnostics) == 0
