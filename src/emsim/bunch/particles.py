"""
Particle and bunch state containers.

A Bunch stores the integrable quantities of every particle as (N, 3) float64
arrays, so stepping and force evaluation are vectorised over the whole bunch.
ParticleState is the single-particle view used for construction templates and
for inspecting individual particles.

Integrator stages are built with Bunch.copy(), which never shares an array with
the bunch it was taken from.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union
import numpy as np
import numpy.typing as npt

# Type alias for clarity
NDArrayFloat = npt.NDArray[np.float64]


def _as_vector(value) -> NDArrayFloat:
    vec = np.array(value, dtype=np.float64)
    if vec.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {vec.shape}")
    return vec


@dataclass
class ParticleState:
    """
    Integrable state of one charged particle.

    Attributes
    ----------
    mass : float
        Particle mass [kg], strictly positive.
    charge : float
        Particle charge [C].
    position, velocity, acceleration : NDArrayFloat, shape (3,)
        Kinematic state in SI units.
    kinetic_energy, potential_energy : float
        Cached energies, only meaningful right after an explicit recompute.
    """
    mass: float
    charge: float
    position: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    velocity: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    acceleration: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    kinetic_energy: float = 0.0
    potential_energy: float = 0.0

    def __post_init__(self):
        if not self.mass > 0.0:
            raise ValueError(f"particle mass must be positive, got {self.mass}")
        self.mass = float(self.mass)
        self.charge = float(self.charge)
        self.position = _as_vector(self.position)
        self.velocity = _as_vector(self.velocity)
        self.acceleration = _as_vector(self.acceleration)

    def copy(self) -> "ParticleState":
        """Independent deep copy."""
        return ParticleState(
            mass=self.mass,
            charge=self.charge,
            position=self.position.copy(),
            velocity=self.velocity.copy(),
            acceleration=self.acceleration.copy(),
            kinetic_energy=self.kinetic_energy,
            potential_energy=self.potential_energy,
        )

    def compute_kinetic_energy(self) -> float:
        """Recompute and cache 0.5 m |v|^2."""
        self.kinetic_energy = 0.5 * self.mass * float(np.dot(self.velocity, self.velocity))
        return self.kinetic_energy


class Bunch:
    """
    Ensemble of charged particles evolving in a shared field.

    Attributes
    ----------
    n_particles : int
        Number of particles.
    positions : NDArrayFloat, shape (N, 3)
        Positions [m].
    velocities : NDArrayFloat, shape (N, 3)
        Velocities [m/s].
    accelerations : NDArrayFloat, shape (N, 3)
        Accelerations from the last force evaluation [m/s^2].
    masses : NDArrayFloat, shape (N,)
        Particle masses [kg].
    charges : NDArrayFloat, shape (N,)
        Particle charges [C].
    kinetic_energy, potential_energy : NDArrayFloat, shape (N,)
        Per-particle cached energies.
    average_position, average_velocity : NDArrayFloat, shape (3,)
        Aggregates, stale after any mutation until recomputed by
        EnsembleDiagnostics.
    total_kinetic, total_potential, total_energy, angular_momentum : float
        Aggregates, same caveat.

    Notes
    -----
    Mutating particles and recomputing aggregates are two separate phases; the
    stepping code never refreshes aggregates on its own.
    """

    def __init__(
        self,
        positions: NDArrayFloat,
        velocities: NDArrayFloat,
        masses: Union[float, NDArrayFloat],
        charges: Union[float, NDArrayFloat],
        accelerations: Optional[NDArrayFloat] = None
    ):
        """
        Initialize bunch.

        Parameters
        ----------
        positions : NDArrayFloat, shape (N, 3)
            Initial positions.
        velocities : NDArrayFloat, shape (N, 3)
            Initial velocities.
        masses : float or NDArrayFloat, shape (N,)
            Particle masses; a scalar is broadcast to every particle.
        charges : float or NDArrayFloat, shape (N,)
            Particle charges; a scalar is broadcast to every particle.
        accelerations : NDArrayFloat, shape (N, 3), optional
            Initial accelerations. If None, initialized to zeros.
        """
        self.positions = np.array(positions, dtype=np.float64).reshape(-1, 3)
        self.n_particles = self.positions.shape[0]
        n = self.n_particles

        self.velocities = np.array(velocities, dtype=np.float64).reshape(-1, 3)
        if self.velocities.shape != (n, 3):
            raise ValueError(
                f"velocities shape {self.velocities.shape} does not match positions ({n}, 3)"
            )
        self.accelerations = (
            np.array(accelerations, dtype=np.float64).reshape(n, 3) if accelerations is not None
            else np.zeros((n, 3), dtype=np.float64)
        )
        self.masses = np.array(np.broadcast_to(masses, (n,)), dtype=np.float64)
        self.charges = np.array(np.broadcast_to(charges, (n,)), dtype=np.float64)

        if np.any(~(self.masses > 0.0)):
            raise ValueError("all particle masses must be positive")

        self.kinetic_energy = np.zeros(n, dtype=np.float64)
        self.potential_energy = np.zeros(n, dtype=np.float64)

        self.average_position = np.zeros(3, dtype=np.float64)
        self.average_velocity = np.zeros(3, dtype=np.float64)
        self.total_kinetic = 0.0
        self.total_potential = 0.0
        self.total_energy = 0.0
        self.angular_momentum = 0.0

    @classmethod
    def from_particles(cls, particles: Sequence[ParticleState]) -> "Bunch":
        """Build a bunch from individual particle states."""
        if len(particles) == 0:
            raise ValueError("a bunch needs at least one particle")
        return cls(
            positions=np.array([p.position for p in particles]),
            velocities=np.array([p.velocity for p in particles]),
            masses=np.array([p.mass for p in particles]),
            charges=np.array([p.charge for p in particles]),
            accelerations=np.array([p.acceleration for p in particles]),
        )

    def __len__(self) -> int:
        return self.n_particles

    def copy(self) -> "Bunch":
        """
        Deep copy of the bunch, aggregates included.

        Returns
        -------
        bunch : Bunch
            Snapshot sharing no array with self.
        """
        new = Bunch.__new__(Bunch)
        new.n_particles = self.n_particles
        new.positions = self.positions.copy()
        new.velocities = self.velocities.copy()
        new.accelerations = self.accelerations.copy()
        new.masses = self.masses.copy()
        new.charges = self.charges.copy()
        new.kinetic_energy = self.kinetic_energy.copy()
        new.potential_energy = self.potential_energy.copy()
        new.average_position = self.average_position.copy()
        new.average_velocity = self.average_velocity.copy()
        new.total_kinetic = self.total_kinetic
        new.total_potential = self.total_potential
        new.total_energy = self.total_energy
        new.angular_momentum = self.angular_momentum
        return new

    def with_state(self, positions: NDArrayFloat, velocities: NDArrayFloat) -> "Bunch":
        """Deep copy carrying the given positions and velocities."""
        new = self.copy()
        new.positions = np.array(positions, dtype=np.float64)
        new.velocities = np.array(velocities, dtype=np.float64)
        return new

    def particle(self, index: int) -> ParticleState:
        """Snapshot of one particle as a ParticleState."""
        return ParticleState(
            mass=self.masses[index],
            charge=self.charges[index],
            position=self.positions[index].copy(),
            velocity=self.velocities[index].copy(),
            acceleration=self.accelerations[index].copy(),
            kinetic_energy=float(self.kinetic_energy[index]),
            potential_energy=float(self.potential_energy[index]),
        )

    def particles(self) -> List[ParticleState]:
        return [self.particle(i) for i in range(self.n_particles)]

    def realign(self) -> None:
        """Shift positions so that the bunch average sits at the origin."""
        self.positions -= self.positions.mean(axis=0)

    def is_finite(self) -> bool:
        """True if every position and velocity is finite."""
        return bool(np.all(np.isfinite(self.positions)) and np.all(np.isfinite(self.velocities)))

    def __repr__(self) -> str:
        return f"Bunch(n_particles={self.n_particles})"
