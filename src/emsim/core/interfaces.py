"""
Abstract base classes defining interfaces for pluggable EMSim modules.

The driver only talks to force models, integrators and initial-condition
generators through these contracts, so any of them can be swapped without
touching the run loop.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
import numpy as np
import numpy.typing as npt


# Type aliases for clarity
NDArrayFloat = npt.NDArray[np.float64]


class ForceModel(ABC):
    """
    Abstract base class for force models.

    Implementations: LorentzForceModel (uniform, failing, point-charge and
    oscillating-gap contributions).
    """

    @abstractmethod
    def compute_acceleration(
        self,
        positions: NDArrayFloat,
        velocities: NDArrayFloat,
        charges: NDArrayFloat,
        masses: NDArrayFloat,
    ) -> NDArrayFloat:
        """
        Compute instantaneous accelerations for a set of particles.

        Parameters
        ----------
        positions : NDArrayFloat, shape (N, 3)
            Particle positions [m].
        velocities : NDArrayFloat, shape (N, 3)
            Particle velocities [m/s].
        charges : NDArrayFloat, shape (N,)
            Particle charges [C].
        masses : NDArrayFloat, shape (N,)
            Particle masses [kg].

        Returns
        -------
        accel : NDArrayFloat, shape (N, 3)
            Accelerations [m/s^2].
        """
        pass

    @abstractmethod
    def update_time(self, t: float) -> None:
        """
        Advance any time-dependent field state to time t.

        Force evaluation never advances time implicitly; the driver calls this
        once per iteration before the first evaluation.
        """
        pass

    def apply(self, bunch: Any) -> None:
        """Evaluate accelerations for every particle of a bunch, in place."""
        bunch.accelerations = self.compute_acceleration(
            bunch.positions, bunch.velocities, bunch.charges, bunch.masses
        )


class TimeIntegrator(ABC):
    """
    Abstract base class for time integration schemes.

    Implementations: Euler, Euler-Cromer, Heun, Velocity-Verlet, RK4, RKF45.
    """

    @abstractmethod
    def step(
        self,
        bunch: Any,
        dt: float,
        force_model: ForceModel,
        **kwargs
    ) -> None:
        """
        Advance a bunch by one timestep.

        The bunch's accelerations must already have been set by the force
        model for the current state.

        Parameters
        ----------
        bunch : Bunch
            Bunch to evolve in place.
        dt : float
            Timestep [s].
        force_model : ForceModel
            Used for every auxiliary stage evaluation.
        **kwargs : integrator-specific parameters.
        """
        pass

    def estimate_timestep(
        self,
        bunch: Any,
        dt: float,
        **kwargs
    ) -> Optional[float]:
        """
        Candidate timestep for the next iteration.

        Fixed-step schemes return None; adaptive schemes return a candidate
        that the driver still has to clamp.
        """
        return None

    @property
    @abstractmethod
    def name(self) -> str:
        """Return human-readable integrator name."""
        pass


class ICGenerator(ABC):
    """
    Abstract base class for initial conditions generators.

    Implementations: BunchGenerator.
    """

    @abstractmethod
    def generate(
        self,
        n_particles: int,
        **kwargs
    ) -> Any:
        """
        Generate an initial bunch.

        Parameters
        ----------
        n_particles : int
            Number of particles to generate.
        **kwargs : generator-specific parameters (spreads, speed, ...).

        Returns
        -------
        bunch : Bunch
            Freshly constructed bunch.
        """
        pass
