"""
Tests for particle containers and bunch generation.

Validates:
- ParticleState validation and copying
- Bunch construction, broadcasting and deep copies
- BunchGenerator sampling and re-alignment
"""

import numpy as np
import pytest

from emsim.bunch import Bunch, ParticleState
from emsim.ICs import BunchGenerator
from emsim.constants import PROTON_MASS, ELEMENTARY_CHARGE


class TestParticleState:
    """Test single-particle state."""

    def test_defaults_are_zero_vectors(self):
        """Kinematic vectors default to zero."""
        p = ParticleState(mass=1.0, charge=2.0)
        np.testing.assert_array_equal(p.position, np.zeros(3))
        np.testing.assert_array_equal(p.velocity, np.zeros(3))
        np.testing.assert_array_equal(p.acceleration, np.zeros(3))

    def test_non_positive_mass_rejected(self):
        """Mass must be strictly positive."""
        with pytest.raises(ValueError, match="mass must be positive"):
            ParticleState(mass=0.0, charge=1.0)
        with pytest.raises(ValueError):
            ParticleState(mass=-1.0, charge=1.0)

    def test_wrong_vector_shape_rejected(self):
        """Vectors must have three components."""
        with pytest.raises(ValueError, match="3-vector"):
            ParticleState(mass=1.0, charge=1.0, position=[1.0, 2.0])

    def test_copy_is_independent(self):
        """Mutating a copy does not affect the original."""
        p = ParticleState(mass=1.0, charge=1.0, position=[1.0, 2.0, 3.0])
        q = p.copy()
        q.position[0] = 99.0
        assert p.position[0] == 1.0

    def test_kinetic_energy(self):
        """0.5 m v^2, cached on the particle."""
        p = ParticleState(mass=2.0, charge=1.0, velocity=[3.0, 4.0, 0.0])
        assert p.compute_kinetic_energy() == pytest.approx(25.0)
        assert p.kinetic_energy == pytest.approx(25.0)


class TestBunch:
    """Test the struct-of-arrays ensemble."""

    def test_scalar_mass_and_charge_broadcast(self):
        """Scalars are broadcast to every particle."""
        bunch = Bunch(np.zeros((4, 3)), np.zeros((4, 3)), masses=2.0, charges=-1.0)
        assert len(bunch) == 4
        np.testing.assert_array_equal(bunch.masses, np.full(4, 2.0))
        np.testing.assert_array_equal(bunch.charges, np.full(4, -1.0))

    def test_shape_mismatch_rejected(self):
        """Velocities must match positions."""
        with pytest.raises(ValueError, match="does not match"):
            Bunch(np.zeros((3, 3)), np.zeros((2, 3)), masses=1.0, charges=1.0)

    def test_non_positive_mass_rejected(self):
        """Every particle mass must be positive."""
        with pytest.raises(ValueError):
            Bunch(np.zeros((2, 3)), np.zeros((2, 3)), masses=np.array([1.0, 0.0]), charges=1.0)

    def test_copy_shares_no_arrays(self):
        """A stage copy can be mutated without touching the base."""
        bunch = Bunch(np.ones((2, 3)), np.ones((2, 3)), masses=1.0, charges=1.0)
        stage = bunch.copy()
        stage.positions += 1.0
        stage.velocities *= 5.0
        stage.accelerations[:] = 7.0
        np.testing.assert_array_equal(bunch.positions, np.ones((2, 3)))
        np.testing.assert_array_equal(bunch.velocities, np.ones((2, 3)))
        np.testing.assert_array_equal(bunch.accelerations, np.zeros((2, 3)))

    def test_with_state(self):
        """with_state returns a copy carrying new kinematics."""
        bunch = Bunch(np.zeros((1, 3)), np.zeros((1, 3)), masses=1.0, charges=1.0)
        moved = bunch.with_state(np.ones((1, 3)), 2.0 * np.ones((1, 3)))
        np.testing.assert_array_equal(moved.positions, np.ones((1, 3)))
        np.testing.assert_array_equal(bunch.positions, np.zeros((1, 3)))

    def test_from_particles_round_trip(self):
        """Particles survive conversion to a bunch and back."""
        particles = [
            ParticleState(mass=1.0, charge=1.0, position=[1.0, 0.0, 0.0]),
            ParticleState(mass=2.0, charge=-1.0, velocity=[0.0, 1.0, 0.0]),
        ]
        bunch = Bunch.from_particles(particles)
        back = bunch.particles()
        assert back[1].mass == 2.0
        np.testing.assert_array_equal(back[0].position, [1.0, 0.0, 0.0])
        np.testing.assert_array_equal(back[1].velocity, [0.0, 1.0, 0.0])

    def test_realign_centres_bunch(self):
        """realign() moves the average position to the origin."""
        bunch = Bunch(np.array([[1.0, 2.0, 3.0], [3.0, 4.0, 5.0]]), np.zeros((2, 3)),
                      masses=1.0, charges=1.0)
        bunch.realign()
        np.testing.assert_allclose(bunch.positions.mean(axis=0), np.zeros(3), atol=1e-15)

    def test_is_finite(self):
        """Non-finite positions or velocities are detected."""
        bunch = Bunch(np.zeros((2, 3)), np.zeros((2, 3)), masses=1.0, charges=1.0)
        assert bunch.is_finite()
        bunch.velocities[1, 2] = np.nan
        assert not bunch.is_finite()


class TestBunchGenerator:
    """Test randomised bunch construction."""

    def test_zero_spread_gives_nominal_particles(self):
        """Without spread every particle sits at the origin moving along +y."""
        bunch = BunchGenerator().generate(5, speed=0.1)
        np.testing.assert_array_equal(bunch.positions, np.zeros((5, 3)))
        np.testing.assert_allclose(bunch.velocities[:, 1], 0.1)
        np.testing.assert_array_equal(bunch.velocities[:, [0, 2]], np.zeros((5, 2)))
        assert bunch.masses[0] == PROTON_MASS
        assert bunch.charges[0] == ELEMENTARY_CHARGE

    def test_positions_within_spread_and_realigned(self):
        """Samples stay within twice the half-width after centring, mean zero."""
        spread = np.array([0.1, 0.2, 0.0])
        bunch = BunchGenerator(random_seed=1).generate(200, spread=spread)
        np.testing.assert_allclose(bunch.positions.mean(axis=0), np.zeros(3), atol=1e-15)
        assert np.all(np.abs(bunch.positions) <= 2.0 * spread + 1e-15)
        assert np.ptp(bunch.positions[:, 1]) > 0.2

    def test_speed_band(self):
        """y-speeds lie in [v - dv, v + dv]."""
        bunch = BunchGenerator(random_seed=3).generate(
            500, speed=10.0, velocity_spread_fraction=0.1
        )
        assert bunch.velocities[:, 1].min() >= 9.0
        assert bunch.velocities[:, 1].max() <= 11.0

    def test_seed_reproducible(self):
        """Same seed, same bunch."""
        a = BunchGenerator(random_seed=7).generate(10, spread=(1.0, 1.0, 1.0))
        b = BunchGenerator(random_seed=7).generate(10, spread=(1.0, 1.0, 1.0))
        np.testing.assert_array_equal(a.positions, b.positions)

    def test_invalid_arguments(self):
        """Bad counts, spreads or masses are rejected."""
        with pytest.raises(ValueError):
            BunchGenerator().generate(0)
        with pytest.raises(ValueError):
            BunchGenerator().generate(2, spread=(-1.0, 0.0, 0.0))
        with pytest.raises(ValueError):
            BunchGenerator(mass=0.0)
