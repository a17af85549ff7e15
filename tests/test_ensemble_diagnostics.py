"""
Tests for bunch aggregates: averages, spread, energies, angular momentum.
"""

import numpy as np
import pytest

from emsim.bunch import Bunch
from emsim.constants import COULOMB_CONSTANT
from emsim.core import EnsembleDiagnostics


def _bunch(positions, velocities, masses=1.0, charges=1.0):
    return Bunch(np.array(positions, dtype=float), np.array(velocities, dtype=float),
                 masses=masses, charges=charges)


class TestAveragesAndSpread:
    """Test cached averages and spreads."""

    def test_recompute_averages(self):
        bunch = _bunch([[1.0, 0.0, 0.0], [-3.0, 2.0, 0.0]], [[0.0, 1.0, 0.0], [0.0, 3.0, 0.0]])
        EnsembleDiagnostics().recompute_averages(bunch)
        np.testing.assert_allclose(bunch.average_position, [-1.0, 1.0, 0.0])
        np.testing.assert_allclose(bunch.average_velocity, [0.0, 2.0, 0.0])

    def test_spread_is_max_deviation(self):
        """Spread is the largest |x_i - <x>| along the axis."""
        bunch = _bunch([[1.0, 0.0, 0.0], [-3.0, 0.0, 0.0], [0.0, 0.0, 0.0]], np.zeros((3, 3)))
        diagnostics = EnsembleDiagnostics()
        diagnostics.recompute_averages(bunch)
        assert diagnostics.spread(bunch, 0) == pytest.approx(7.0 / 3.0)
        np.testing.assert_allclose(diagnostics.spreads(bunch), [7.0 / 3.0, 0.0, 0.0])

    def test_spread_uses_cached_average(self):
        """A stale average gives a stale spread until recomputed."""
        bunch = _bunch([[1.0, 0.0, 0.0], [-1.0, 0.0, 0.0]], np.zeros((2, 3)))
        diagnostics = EnsembleDiagnostics()
        diagnostics.recompute_averages(bunch)
        bunch.positions += 10.0
        assert diagnostics.spread(bunch, 0) == pytest.approx(11.0)
        diagnostics.recompute_averages(bunch)
        assert diagnostics.spread(bunch, 0) == pytest.approx(1.0)

    def test_invalid_axis(self):
        bunch = _bunch([[0.0, 0.0, 0.0]], [[0.0, 0.0, 0.0]])
        with pytest.raises(ValueError, match="axis must be 0, 1 or 2"):
            EnsembleDiagnostics.spread(bunch, 3)


class TestEnergy:
    """Test kinetic and potential energy."""

    def test_kinetic_and_magnetic_potential(self):
        """PE = -q/2 B . ((r - c) x v)."""
        bunch = _bunch([[1.0, 0.0, 0.0]], [[0.0, 3.0, 0.0]], masses=2.0, charges=1.0)
        energies = EnsembleDiagnostics().compute_energy(
            bunch, 0.0, np.zeros(3), np.array([0.0, 0.0, 2.0])
        )
        assert energies['kinetic'] == pytest.approx(9.0)
        assert energies['potential'] == pytest.approx(-3.0)
        assert energies['total'] == pytest.approx(6.0)
        assert bunch.total_energy == pytest.approx(6.0)
        np.testing.assert_allclose(bunch.kinetic_energy, [9.0])

    def test_coulomb_potential(self):
        """PE = k q Q / |r - c| with no background field."""
        bunch = _bunch([[3.0, 0.0, 0.0]], [[0.0, 0.0, 0.0]], charges=2.0)
        energies = EnsembleDiagnostics().compute_energy(
            bunch, 1e-9, np.array([1.0, 0.0, 0.0]), np.zeros(3)
        )
        assert energies['potential'] == pytest.approx(COULOMB_CONSTANT * 2.0 * 1e-9 / 2.0)
        assert energies['kinetic'] == 0.0


class TestAngularMomentum:
    """Vector sum before magnitude."""

    def test_opposite_contributions_cancel(self):
        """Two particles circulating in opposite senses give L = 0."""
        bunch = _bunch([[1.0, 0.0, 0.0], [-1.0, 0.0, 0.0]], [[0.0, 1.0, 0.0], [0.0, 1.0, 0.0]])
        assert EnsembleDiagnostics.angular_momentum(bunch, np.zeros(3)) == pytest.approx(0.0)
        assert bunch.angular_momentum == pytest.approx(0.0)

    def test_same_sense_adds(self):
        """Symmetric particles with opposite velocities circulate together."""
        bunch = _bunch([[1.0, 0.0, 0.0], [-1.0, 0.0, 0.0]], [[0.0, 1.0, 0.0], [0.0, -1.0, 0.0]],
                       masses=3.0)
        assert EnsembleDiagnostics.angular_momentum(bunch, np.zeros(3)) == pytest.approx(6.0)

    def test_about_centre(self):
        """Measured about the given centre, not the origin."""
        bunch = _bunch([[0.0, 0.0, 0.0]], [[0.0, 2.0, 0.0]])
        assert EnsembleDiagnostics.angular_momentum(bunch, np.array([1.0, 0.0, 0.0])) == \
            pytest.approx(2.0)


class TestEnergyGain:
    """Analytic cyclotron energy gain."""

    def test_synchronous_gain(self):
        """2 q V sin(phi) at t = 0, summed over particles."""
        bunch = _bunch(np.zeros((2, 3)), [[0.0, 1.0, 0.0]] * 2, charges=0.5)
        gain = EnsembleDiagnostics.synchronous_energy_gain(bunch, 0.0, 3.0, 1.0, np.pi / 2)
        assert gain == pytest.approx(2 * 2.0 * 0.5 * 3.0)

    def test_phase_offset_from_position(self):
        """A particle displaced along y picks up dphi = y q B / (v_y m)."""
        bunch = _bunch([[0.0, 0.5, 0.0]], [[0.0, 1.0, 0.0]])
        gain = EnsembleDiagnostics.energy_gain(bunch, 0.0, 1.0, 1.0, 0.0)
        assert gain == pytest.approx(2.0 * np.sin(0.5))

    def test_matches_synchronous_on_axis(self):
        bunch = _bunch([[0.3, 0.0, 0.0]], [[0.0, 1.0, 0.0]])
        args = (0.7, 2.0, 1.5, 0.25)
        assert EnsembleDiagnostics.energy_gain(bunch, *args) == pytest.approx(
            EnsembleDiagnostics.synchronous_energy_gain(bunch, *args)
        )


class TestHistory:
    """Time-series bookkeeping."""

    def test_compute_records_initial_values(self):
        """E_initial and L_initial come from the first compute()."""
        diagnostics = EnsembleDiagnostics()
        bunch = _bunch([[1.0, 0.0, 0.0]], [[0.0, 1.0, 0.0]])
        first = diagnostics.compute(bunch, 0.0, np.zeros(3), np.zeros(3))
        bunch.velocities *= 2.0
        diagnostics.compute(bunch, 0.0, np.zeros(3), np.zeros(3))
        assert diagnostics.E_initial == pytest.approx(first['total'])
        assert diagnostics.L_initial == pytest.approx(1.0)

    def test_time_series_and_metric(self):
        diagnostics = EnsembleDiagnostics()
        bunch = _bunch([[1.0, 0.0, 0.0]], [[0.0, 1.0, 0.0]])
        for t, scale in ((0.0, 1.0), (1.0, 1.1)):
            bunch.velocities = np.array([[0.0, scale, 0.0]])
            diagnostics.append_to_history(t, diagnostics.compute(bunch, 0.0, np.zeros(3), np.zeros(3)))

        series = diagnostics.get_time_series('kinetic')
        np.testing.assert_allclose(series['time'], [0.0, 1.0])
        np.testing.assert_allclose(series['kinetic'], [0.5, 0.605])
        assert diagnostics.energy_conservation_metric() == pytest.approx(0.21)

        with pytest.raises(ValueError, match="not found"):
            diagnostics.get_time_series('entropy')

        diagnostics.reset_history()
        assert diagnostics.energy_conservation_metric() == 0.0
        with pytest.raises(ValueError, match="No diagnostic history"):
            diagnostics.get_time_series('kinetic')
