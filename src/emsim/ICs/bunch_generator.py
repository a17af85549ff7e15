"""
Randomised bunch initial conditions.

Particles are copies of a nominal particle at the origin moving along +y,
displaced uniformly within a box of half-widths (s_x, s_y, s_z) and given a
y-speed drawn uniformly from [v - dv, v + dv], dv = fraction * v. The bunch is
then re-aligned so that its average position sits at the origin.
"""

import numpy as np
from typing import Optional, Sequence
from emsim.core.interfaces import ICGenerator
from emsim.bunch.particles import Bunch, ParticleState
from emsim.constants import ELEMENTARY_CHARGE, PROTON_MASS


class BunchGenerator(ICGenerator):
    """
    Generate a bunch around a nominal particle.

    Attributes
    ----------
    mass : float
        Particle mass [kg].
    charge : float
        Particle charge [C].
    random_seed : Optional[int]
        Seed for numpy's global generator; None leaves it untouched.
    """

    def __init__(
        self,
        mass: float = PROTON_MASS,
        charge: float = ELEMENTARY_CHARGE,
        random_seed: Optional[int] = 42
    ):
        """
        Initialize bunch generator.

        Parameters
        ----------
        mass : float, default proton mass
            Particle mass [kg], must be positive.
        charge : float, default elementary charge
            Particle charge [C].
        random_seed : Optional[int], default 42
            Set to None for non-reproducible placement.
        """
        # Validates mass
        self.template = ParticleState(mass=mass, charge=charge)
        self.mass = self.template.mass
        self.charge = self.template.charge
        self.random_seed = random_seed

    def generate(
        self,
        n_particles: int,
        spread: Sequence[float] = (0.0, 0.0, 0.0),
        speed: float = 0.1,
        velocity_spread_fraction: float = 0.0,
        realign: bool = True,
        **kwargs
    ) -> Bunch:
        """
        Generate a bunch.

        Parameters
        ----------
        n_particles : int
            Number of particles (>= 1).
        spread : sequence of 3 floats
            Half-widths of the uniform position box [m].
        speed : float
            Nominal speed along +y [m/s].
        velocity_spread_fraction : float
            Half-width of the uniform speed distribution as a fraction of speed.
        realign : bool, default True
            Subtract the average position after sampling.

        Returns
        -------
        bunch : Bunch
        """
        if n_particles < 1:
            raise ValueError(f"n_particles must be at least 1, got {n_particles}")
        spread = np.asarray(spread, dtype=np.float64).reshape(3)
        if np.any(spread < 0.0):
            raise ValueError(f"spreads must be non-negative, got {spread}")
        if velocity_spread_fraction < 0.0:
            raise ValueError(
                f"velocity_spread_fraction must be non-negative, got {velocity_spread_fraction}"
            )

        if self.random_seed is not None:
            np.random.seed(self.random_seed)

        positions = np.random.uniform(-1.0, 1.0, (n_particles, 3)) * spread

        dv = velocity_spread_fraction * speed
        velocities = np.zeros((n_particles, 3))
        velocities[:, 1] = np.random.uniform(speed - dv, speed + dv, n_particles)

        bunch = Bunch(
            positions=positions,
            velocities=velocities,
            masses=self.mass,
            charges=self.charge,
        )
        if realign:
            bunch.realign()
        return bunch
