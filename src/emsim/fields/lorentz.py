"""
Lorentz force model for charged-particle bunches.

A single force model combines up to four field sources, selected by the flags
of a FieldConfiguration:

1. Uniform magnetic field:   a = (q/m) v x B
2. Failing field:            B scaled by 0.9 where x < 0 (per particle)
3. Static point charge:      a += (q/m) k_e Q r / |r|^3,  r = x - x_Q
4. Cyclotron gap:            a += (q/m) (E(t) + v x B(t)) inside |y| < l

Contributions are summed. The oscillating gap field is only advanced through an
explicit update_time() call, so every stage of one iteration sees the same
field values.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import numpy as np

from emsim.constants import COULOMB_CONSTANT
from emsim.core.interfaces import ForceModel, NDArrayFloat
from emsim.bunch.particles import ParticleState


# Magnetic field fraction on the weak (x < 0) side of a failing field
FAILING_FIELD_FACTOR = 0.9


@dataclass(frozen=True)
class FieldConfiguration:
    """
    Orthogonal field capabilities.

    Attributes
    ----------
    uniform_magnetic : bool
        Constant background magnetic field.
    failing_field : bool
        Background field reduced to 90% in the x < 0 half-space. Implies a
        background field even if uniform_magnetic is off.
    point_charge : bool
        Coulomb field of a static point charge at the orbit centre.
    cyclotron_gap : bool
        Oscillating accelerating field inside the gap band. A cyclotron also
        needs the background field, so this flag enables it as well.
    """
    uniform_magnetic: bool = False
    failing_field: bool = False
    point_charge: bool = False
    cyclotron_gap: bool = False

    @property
    def background_magnetic(self) -> bool:
        """Whether a background magnetic field acts on the bunch."""
        return self.uniform_magnetic or self.failing_field or self.cyclotron_gap

    @property
    def any_enabled(self) -> bool:
        return self.background_magnetic or self.point_charge

    def describe(self) -> str:
        names = [
            name for name, enabled in (
                ("uniform_magnetic", self.uniform_magnetic),
                ("failing_field", self.failing_field),
                ("point_charge", self.point_charge),
                ("cyclotron_gap", self.cyclotron_gap),
            ) if enabled
        ]
        return "+".join(names) if names else "none"


@dataclass
class PointCharge:
    """Static source charge. The charge may be reassigned after creation."""
    position: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    charge: float = 0.0

    def __post_init__(self):
        self.position = np.array(self.position, dtype=np.float64).reshape(3)
        self.charge = float(self.charge)


@dataclass
class OscillatingField:
    """
    Sinusoidal electric and magnetic field, component by component:

        E_i(t) = E0_i sin(w_i t + phi_i)
        B_i(t) = B0_i sin(w_i t + phi_i)

    The current values only change when update() is called.
    """
    electric_amplitude: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    magnetic_amplitude: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    electric_frequency: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    magnetic_frequency: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    electric_phase: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    magnetic_phase: NDArrayFloat = field(default_factory=lambda: np.zeros(3))
    time: float = 0.0

    def __post_init__(self):
        for name in (
            "electric_amplitude", "magnetic_amplitude",
            "electric_frequency", "magnetic_frequency",
            "electric_phase", "magnetic_phase",
        ):
            setattr(self, name, np.array(getattr(self, name), dtype=np.float64).reshape(3))
        self.electric = np.zeros(3)
        self.magnetic = np.zeros(3)
        self.update(self.time)

    def update(self, t: float) -> Tuple[NDArrayFloat, NDArrayFloat]:
        """
        Set the field to its value at time t.

        Returns
        -------
        electric, magnetic : NDArrayFloat, shape (3,)
            Field values at t.
        """
        self.time = float(t)
        self.electric = self.electric_amplitude * np.sin(
            self.electric_frequency * t + self.electric_phase
        )
        self.magnetic = self.magnetic_amplitude * np.sin(
            self.magnetic_frequency * t + self.magnetic_phase
        )
        return self.electric, self.magnetic


class LorentzForceModel(ForceModel):
    """
    Lorentz force from a composable set of field sources.

    Parameters
    ----------
    config : FieldConfiguration
        Which sources are active.
    magnetic_field : array_like, shape (3,)
        Background magnetic field B [T].
    point_charge : PointCharge, optional
        Required when config.point_charge is set.
    oscillating_field : OscillatingField, optional
        Required when config.cyclotron_gap is set.
    gap_half_width : float
        Half width l of the accelerating gap [m]; the field acts where the
        gap-axis coordinate lies strictly inside (-l, l).
    gap_axis : int
        Coordinate index measured against the gap (1 = y).
    """

    def __init__(
        self,
        config: FieldConfiguration,
        magnetic_field=(0.0, 0.0, 0.0),
        point_charge: Optional[PointCharge] = None,
        oscillating_field: Optional[OscillatingField] = None,
        gap_half_width: float = 0.0,
        gap_axis: int = 1
    ):
        if config.point_charge and point_charge is None:
            raise ValueError("point_charge capability enabled but no PointCharge given")
        if config.cyclotron_gap and oscillating_field is None:
            raise ValueError("cyclotron_gap capability enabled but no OscillatingField given")
        if gap_half_width < 0.0:
            raise ValueError(f"gap_half_width must be non-negative, got {gap_half_width}")
        if gap_axis not in (0, 1, 2):
            raise ValueError(f"gap_axis must be 0, 1 or 2, got {gap_axis}")

        self.config = config
        self.magnetic_field = np.array(magnetic_field, dtype=np.float64).reshape(3)
        self.point_charge = point_charge
        self.oscillating_field = oscillating_field
        self.gap_half_width = float(gap_half_width)
        self.gap_axis = gap_axis

    def update_time(self, t: float) -> None:
        if self.oscillating_field is not None:
            self.oscillating_field.update(t)

    def background_field(self, positions: NDArrayFloat) -> NDArrayFloat:
        """
        Background magnetic field at each position, shape (N, 3).

        Zero everywhere when no background capability is enabled.
        """
        n = positions.shape[0]
        if not self.config.background_magnetic:
            return np.zeros((n, 3))
        B = np.broadcast_to(self.magnetic_field, (n, 3))
        if self.config.failing_field:
            scale = np.where(positions[:, 0] >= 0.0, 1.0, FAILING_FIELD_FACTOR)
            B = B * scale[:, np.newaxis]
        return B

    def point_charge_field(self, positions: NDArrayFloat) -> NDArrayFloat:
        """Coulomb field of the point charge at each position, shape (N, 3)."""
        r = positions - self.point_charge.position
        dist = np.linalg.norm(r, axis=1)[:, np.newaxis]
        return COULOMB_CONSTANT * self.point_charge.charge * r / dist**3

    def in_gap(self, positions: NDArrayFloat) -> np.ndarray:
        """Boolean mask of particles strictly inside the accelerating gap."""
        return np.abs(positions[:, self.gap_axis]) < self.gap_half_width

    def compute_acceleration(
        self,
        positions: NDArrayFloat,
        velocities: NDArrayFloat,
        charges: NDArrayFloat,
        masses: NDArrayFloat,
    ) -> NDArrayFloat:
        """
        Sum the accelerations of every enabled source.

        Parameters
        ----------
        positions, velocities : NDArrayFloat, shape (N, 3)
        charges, masses : NDArrayFloat, shape (N,)

        Returns
        -------
        accel : NDArrayFloat, shape (N, 3)
            (q/m) (E + v x B) summed over sources.

        Notes
        -----
        A particle sitting exactly on the point charge yields non-finite
        values; they are returned unchanged for the driver to detect.
        """
        q_over_m = (charges / masses)[:, np.newaxis]
        accel = np.zeros_like(positions)

        if self.config.background_magnetic:
            accel += q_over_m * np.cross(velocities, self.background_field(positions))

        if self.config.point_charge:
            accel += q_over_m * self.point_charge_field(positions)

        if self.config.cyclotron_gap:
            mask = self.in_gap(positions)
            if np.any(mask):
                E_t = self.oscillating_field.electric
                B_t = self.oscillating_field.magnetic
                accel[mask] += q_over_m[mask] * (E_t + np.cross(velocities[mask], B_t))

        return accel

    def acceleration(self, particle: ParticleState) -> NDArrayFloat:
        """
        Acceleration of a single particle, shape (3,).

        Does not modify the particle.
        """
        accel = self.compute_acceleration(
            particle.position[np.newaxis, :],
            particle.velocity[np.newaxis, :],
            np.array([particle.charge]),
            np.array([particle.mass]),
        )
        return accel[0]
