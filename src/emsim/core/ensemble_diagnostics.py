"""
Ensemble aggregation and conserved-quantity diagnostics for EMSim.

Computes bunch averages, per-axis spread, energies, angular momentum and the
analytic cyclotron energy-gain estimates used to validate the integration.

    KE_i = 0.5 m_i |v_i|^2
    PE_i = k_e q_i Q / |r_i - c| - 0.5 q_i B . ((r_i - c) x v_i)
    L    = | sum_i m_i (r_i - c) x v_i |
    dE_i = 2 q_i V sin(w t + phi + dphi_i),  w = q_i B / m_i,
           dphi_i = y_i q_i B / (v_y,i m_i)

Angular momentum is summed as a vector before taking the magnitude; opposite
orbits cancel.

Usage:
    >>> diagnostics = EnsembleDiagnostics()
    >>> diagnostics.recompute_averages(bunch)
    >>> energies = diagnostics.compute_energy(bunch, Q, centre, B)
"""

import numpy as np
from typing import Any, Dict, List, Optional
import numpy.typing as npt

from emsim.constants import COULOMB_CONSTANT

# Type aliases
NDArrayFloat = npt.NDArray[np.float64]


class EnsembleDiagnostics:
    """
    Bunch-level aggregates and their history.

    Every method is a pure read of the particle arrays, except that results are
    cached back onto the bunch (averages, per-particle and total energies,
    angular momentum) for the driver and writers to pick up.

    Attributes
    ----------
    history : List[Dict[str, Any]]
        Time-series of conserved-quantity snapshots.
    E_initial : Optional[float]
        Total energy at the first snapshot.
    L_initial : Optional[float]
        Angular momentum at the first snapshot.
    """

    def __init__(self):
        """Initialize ensemble diagnostics tracker."""
        self.history: List[Dict[str, Any]] = []
        self.E_initial: Optional[float] = None
        self.L_initial: Optional[float] = None

    @staticmethod
    def average_position(bunch: Any) -> NDArrayFloat:
        return bunch.positions.mean(axis=0)

    @staticmethod
    def average_velocity(bunch: Any) -> NDArrayFloat:
        return bunch.velocities.mean(axis=0)

    def recompute_averages(self, bunch: Any) -> None:
        """Refresh the cached average position and velocity of a bunch."""
        bunch.average_position = self.average_position(bunch)
        bunch.average_velocity = self.average_velocity(bunch)

    @staticmethod
    def spread(bunch: Any, axis: int) -> float:
        """
        Maximum absolute deviation from the average position along one axis.

        Uses the bunch's cached average position, so call recompute_averages()
        after mutating the particles.

        Parameters
        ----------
        bunch : Bunch
        axis : int
            0, 1 or 2 for x, y, z.

        Returns
        -------
        spread : float
            Spread [m].
        """
        if axis not in (0, 1, 2):
            raise ValueError(f"axis must be 0, 1 or 2, got {axis}")
        deviation = bunch.positions[:, axis] - bunch.average_position[axis]
        return float(np.max(np.abs(deviation)))

    def spreads(self, bunch: Any) -> NDArrayFloat:
        """Spread along x, y and z, shape (3,)."""
        return np.array([self.spread(bunch, axis) for axis in range(3)])

    def compute_energy(
        self,
        bunch: Any,
        point_charge: float,
        centre: NDArrayFloat,
        magnetic_field: NDArrayFloat
    ) -> Dict[str, float]:
        """
        Recompute per-particle and total kinetic, potential and total energy.

        Parameters
        ----------
        bunch : Bunch
            Bunch whose energy caches are refreshed.
        point_charge : float
            Charge Q at the orbit centre [C]; zero disables the Coulomb term.
        centre : NDArrayFloat, shape (3,)
            Orbit centre [m].
        magnetic_field : NDArrayFloat, shape (3,)
            Background field [T] for the vector-potential term.

        Returns
        -------
        energies : Dict[str, float]
            'kinetic', 'potential' and 'total' [J].
        """
        centre = np.asarray(centre, dtype=np.float64)
        magnetic_field = np.asarray(magnetic_field, dtype=np.float64)

        v_sq = np.sum(bunch.velocities**2, axis=1)
        kinetic = 0.5 * bunch.masses * v_sq

        displacement = bunch.positions - centre
        if point_charge != 0.0:
            dist = np.linalg.norm(displacement, axis=1)
            u_electric = COULOMB_CONSTANT * bunch.charges * point_charge / dist
        else:
            u_electric = np.zeros(bunch.n_particles)
        r_cross_v = np.cross(displacement, bunch.velocities)
        u_magnetic = -0.5 * bunch.charges * (r_cross_v @ magnetic_field)
        potential = u_electric + u_magnetic

        bunch.kinetic_energy = kinetic
        bunch.potential_energy = potential
        bunch.total_kinetic = float(np.sum(kinetic))
        bunch.total_potential = float(np.sum(potential))
        bunch.total_energy = bunch.total_kinetic + bunch.total_potential

        return {
            'kinetic': bunch.total_kinetic,
            'potential': bunch.total_potential,
            'total': bunch.total_energy,
        }

    @staticmethod
    def angular_momentum(bunch: Any, centre: NDArrayFloat) -> float:
        """
        Magnitude of the total angular momentum about the orbit centre.

        Per-particle vectors are summed first, then the magnitude is taken.
        Caches the result on the bunch.
        """
        displacement = bunch.positions - np.asarray(centre, dtype=np.float64)
        L_vec = np.sum(
            bunch.masses[:, np.newaxis] * np.cross(displacement, bunch.velocities),
            axis=0
        )
        bunch.angular_momentum = float(np.linalg.norm(L_vec))
        return bunch.angular_momentum

    @staticmethod
    def energy_gain(
        bunch: Any,
        t: float,
        voltage: float,
        magnetic_strength: float,
        phase: float
    ) -> float:
        """
        Analytic energy gain of one turn through both gap crossings.

        Parameters
        ----------
        bunch : Bunch
        t : float
            Time of the turn [s].
        voltage : float
            Accelerating voltage V = 2 E l [V].
        magnetic_strength : float
            |B| [T].
        phase : float
            Field phase [rad].

        Returns
        -------
        dE : float
            Sum over particles of 2 q V sin(w t + phi + dphi) [J].

        Notes
        -----
        The phase correction divides by v_y; a particle with v_y = 0 yields a
        non-finite gain that is returned as is.
        """
        omega = bunch.charges * magnetic_strength / bunch.masses
        with np.errstate(divide="ignore", invalid="ignore"):
            dphase = (
                bunch.positions[:, 1] * bunch.charges * magnetic_strength
                / (bunch.velocities[:, 1] * bunch.masses)
            )
        dE = 2.0 * bunch.charges * voltage * np.sin(omega * t + phase + dphase)
        return float(np.sum(dE))

    @staticmethod
    def synchronous_energy_gain(
        bunch: Any,
        t: float,
        voltage: float,
        magnetic_strength: float,
        phase: float
    ) -> float:
        """Energy gain of a perfectly synchronous bunch, 2 q V sin(w t + phi) summed [J]."""
        omega = bunch.charges * magnetic_strength / bunch.masses
        dE = 2.0 * bunch.charges * voltage * np.sin(omega * t + phase)
        return float(np.sum(dE))

    def compute(
        self,
        bunch: Any,
        point_charge: float,
        centre: NDArrayFloat,
        magnetic_field: NDArrayFloat
    ) -> Dict[str, Any]:
        """
        Recompute every aggregate of the bunch.

        Returns
        -------
        diagnostics : Dict[str, Any]
            Averages, spreads, energies and angular momentum.
        """
        self.recompute_averages(bunch)
        diagnostics: Dict[str, Any] = {
            'average_position': bunch.average_position.copy(),
            'average_velocity': bunch.average_velocity.copy(),
            'spread': self.spreads(bunch),
        }
        diagnostics.update(self.compute_energy(bunch, point_charge, centre, magnetic_field))
        diagnostics['angular_momentum'] = self.angular_momentum(bunch, centre)

        if self.E_initial is None:
            self.E_initial = diagnostics['total']
        if self.L_initial is None:
            self.L_initial = diagnostics['angular_momentum']

        return diagnostics

    def append_to_history(self, time: float, diagnostics: Dict[str, Any]) -> None:
        """
        Append diagnostics snapshot to time-series history.

        Parameters
        ----------
        time : float
            Simulation time.
        diagnostics : Dict[str, Any]
            Diagnostics dictionary from compute().
        """
        snapshot = {'time': time, **diagnostics}
        self.history.append(snapshot)

    def get_time_series(self, quantity: str) -> Dict[str, np.ndarray]:
        """
        Extract time-series of a specific quantity.

        Raises
        ------
        ValueError
            If quantity not found in history or history is empty.
        """
        if not self.history:
            raise ValueError("No diagnostic history available")

        if quantity not in self.history[0]:
            available = list(self.history[0].keys())
            raise ValueError(f"Quantity '{quantity}' not found. Available: {available}")

        times = np.array([snap['time'] for snap in self.history])
        values = np.array([snap[quantity] for snap in self.history])

        return {'time': times, quantity: values}

    def energy_conservation_metric(self) -> float:
        """
        Maximum |dE/E0| over the history.

        Returns 0.0 if history is empty or E_initial is zero.
        """
        if not self.history or self.E_initial is None or self.E_initial == 0:
            return 0.0

        E_values = np.array([snap['total'] for snap in self.history])
        relative_error = np.abs(E_values - self.E_initial) / abs(self.E_initial)

        return float(np.max(relative_error))

    def reset_history(self) -> None:
        """Clear history and initial values."""
        self.history = []
        self.E_initial = None
        self.L_initial = None

    def __repr__(self) -> str:
        return f"EnsembleDiagnostics(snapshots={len(self.history)})"
