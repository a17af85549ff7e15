"""
Simulation driver for EMSim.

This module implements the Simulation class that advances a bunch of charged
particles through the configured fields, detects completed turns and decides
when a run ends.

Design:
- Simulation orchestrates pluggable components (ForceModel, TimeIntegrator)
- Each component is swappable via dependency injection
- Field sources are selected by capability flags in SimulationConfig

One iteration:
1. Snapshot the bunch-average x-velocity
2. Advance the field time and evaluate the force on the bunch
3. Apply the integrator
4. Recompute bunch averages and advance time by the dt just used
5. Apply the RKF45 step recommendation if it lies within [dt_min, dt_max]
6. A turn is complete when <v_x> went from <= 0 to >= 0 during the iteration
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field, asdict
from enum import Enum
import math
import warnings
import numpy as np
import numpy.typing as npt
import time as time_module
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from emsim.constants import (
    COULOMB_CONSTANT,
    ELEMENTARY_CHARGE,
    PROTON_MASS,
    SPEED_OF_LIGHT,
    LIGHT_SPEED_FRACTION_LIMIT,
)
from emsim.core.interfaces import ForceModel, TimeIntegrator
from emsim.core.ensemble_diagnostics import EnsembleDiagnostics
from emsim.bunch import Bunch
from emsim.fields import FieldConfiguration, LorentzForceModel, OscillatingField, PointCharge
from emsim.integration import Algorithm, get_integrator, clamp_timestep
from emsim.ICs import BunchGenerator


NDArrayFloat = npt.NDArray[np.float64]

# Relative band within which y-spread counts as equal to x-spread
SPREAD_SETTLE_TOLERANCE = 0.1

TERMINATION_REASONS = (
    "turn_count",
    "light_speed_fraction",
    "spread_settled",
    "max_turns",
    "max_iterations",
)


class NumericalDivergenceError(RuntimeError):
    """The bunch state became non-finite during a run."""


class SimulationConfig(BaseModel):
    """
    Configuration for an EMSim run with Pydantic validation.

    Attributes
    ----------
    algorithm : str
        One of "euler", "euler_cromer", "heun", "verlet", "rk4", "rkf45".
    dt : float
        Initial (for RKF45) or fixed timestep [s].
    adaptive_tolerance : float
        RKF45 relative tolerance.
    dt_min, dt_max : float
        Range in which an RKF45 recommendation is accepted [s].
    turn_count : int
        Turns to complete in standard mode.
    spread_units : str
        "radius": spreads are fractions of the orbit radius; "metres": absolute.
    run_mode : str
        "standard", "failing_field" (stop once y-spread matches x-spread) or
        "acceleration" (stop at 0.1 c).
    rkf45_acceptance : str
        "error_biased" (default) or "fifth_order".
    """

    # Integration
    algorithm: str = Field(default="euler_cromer", description="Integration algorithm")
    dt: float = Field(default=1e-6, gt=0.0, description="Timestep [s]")
    adaptive_tolerance: float = Field(default=0.01, gt=0.0, description="RKF45 tolerance")
    dt_min: float = Field(default=1e-7, gt=0.0, description="Smallest accepted RKF45 step [s]")
    dt_max: float = Field(default=0.01, gt=0.0, description="Largest accepted RKF45 step [s]")
    rkf45_acceptance: str = Field(
        default="error_biased",
        description="RKF45 acceptance policy: 'error_biased' or 'fifth_order'"
    )

    # Run control
    turn_count: int = Field(default=10, gt=0, description="Number of turns to simulate")
    max_turns: int = Field(default=100000, gt=0, description="Hard cap on turns")
    max_iterations: int = Field(default=100_000_000, gt=0, description="Hard cap on iterations")
    run_mode: str = Field(
        default="standard",
        description="Run mode: 'standard', 'failing_field' or 'acceleration'"
    )

    # Bunch
    particle_count: int = Field(default=100, gt=0, description="Number of particles")
    spread_x: float = Field(default=0.0, ge=0.0, description="Initial half-width in x")
    spread_y: float = Field(default=0.0, ge=0.0, description="Initial half-width in y")
    spread_z: float = Field(default=0.0, ge=0.0, description="Initial half-width in z")
    spread_units: str = Field(default="radius", description="'radius' or 'metres'")
    initial_speed: float = Field(default=0.1, gt=0.0, description="Nominal speed [m/s]")
    velocity_spread_fraction: float = Field(
        default=0.0,
        ge=0.0,
        lt=1.0,
        description="Half-width of the speed distribution as a fraction of speed"
    )
    particle_charge: float = Field(default=ELEMENTARY_CHARGE, description="Particle charge [C]")
    particle_mass: float = Field(default=PROTON_MASS, gt=0.0, description="Particle mass [kg]")

    # Fields
    uniform_magnetic: bool = Field(default=True, description="Uniform magnetic field")
    failing_field: bool = Field(default=False, description="10% weaker field for x < 0")
    point_charge: bool = Field(default=False, description="Point charge at the orbit centre")
    cyclotron_gap: bool = Field(default=False, description="Oscillating accelerating gap")
    magnetic_strength: float = Field(default=1e-7, gt=0.0, description="|B| [T]")
    electric_strength: float = Field(default=1e-7, ge=0.0, description="Gap field amplitude [V/m]")
    phase: float = Field(default=math.pi / 2.0, description="Gap field phase [rad]")
    gap_fraction: float = Field(
        default=0.05,
        gt=0.0,
        lt=1.0,
        description="Gap half-width as a fraction of the orbit radius"
    )

    # Output
    write_frequency: int = Field(default=1_000_000, gt=0, description="Iterations between snapshots")
    print_frequency: int = Field(default=1_000_000, gt=0, description="Iterations between progress logs")
    print_turns: bool = Field(default=True, description="Report completed turns")
    turn_report_interval: int = Field(default=1, gt=0, description="Turns between turn reports")
    write_positions: bool = Field(default=True, description="Write particle positions")
    write_spread: bool = Field(default=True, description="Write bunch spreads")
    write_conserved: bool = Field(default=True, description="Write conserved quantities")
    output_dir: Optional[str] = Field(default=None, description="Output directory path")

    # Misc
    random_seed: Optional[int] = Field(
        default=42,
        description="Random seed for reproducibility"
    )
    verbose: bool = Field(
        default=True,
        description="Enable verbose logging"
    )

    model_config = ConfigDict(
        validate_assignment=True,
        extra="forbid",  # Raise error on unknown fields
    )

    @field_validator('algorithm', mode='before')
    @classmethod
    def validate_algorithm(cls, v: Any) -> str:
        """Validate algorithm name."""
        valid = [a.value for a in Algorithm]
        if isinstance(v, Algorithm):
            return v.value
        if v not in valid:
            raise ValueError(f"algorithm must be one of {valid}, got '{v}'")
        return v

    @field_validator('run_mode')
    @classmethod
    def validate_run_mode(cls, v: str) -> str:
        """Validate run mode."""
        valid_modes = ["standard", "failing_field", "acceleration"]
        if v not in valid_modes:
            raise ValueError(f"run_mode must be one of {valid_modes}, got '{v}'")
        return v

    @field_validator('spread_units')
    @classmethod
    def validate_spread_units(cls, v: str) -> str:
        """Validate spread units."""
        valid_units = ["radius", "metres"]
        if v not in valid_units:
            raise ValueError(f"spread_units must be one of {valid_units}, got '{v}'")
        return v

    @field_validator('rkf45_acceptance')
    @classmethod
    def validate_acceptance(cls, v: str) -> str:
        """Validate RKF45 acceptance policy."""
        valid_policies = ["error_biased", "fifth_order"]
        if v not in valid_policies:
            raise ValueError(f"rkf45_acceptance must be one of {valid_policies}, got '{v}'")
        return v

    @field_validator('particle_charge')
    @classmethod
    def validate_charge(cls, v: float) -> float:
        """A neutral particle never turns."""
        if v == 0.0:
            raise ValueError("particle_charge must be non-zero")
        return v

    @model_validator(mode='after')
    def validate_configuration_consistency(self):
        """
        Cross-field validation to ensure parameter consistency.

        1. dt_max > dt_min
        2. failing_field run mode needs the failing field
        3. At least one field source
        4. RKF45 starting step inside its own acceptance range
        5. Acceleration mode without a gap never accelerates
        """
        if self.dt_max <= self.dt_min:
            raise ValueError(
                f"dt_max ({self.dt_max}) must be greater than dt_min ({self.dt_min})"
            )

        if self.run_mode == "failing_field" and not self.failing_field:
            raise ValueError("run_mode='failing_field' requires failing_field=True")

        if not (self.uniform_magnetic or self.failing_field
                or self.point_charge or self.cyclotron_gap):
            raise ValueError(
                "At least one field source (uniform_magnetic, failing_field, "
                "point_charge, cyclotron_gap) must be enabled"
            )

        if self.algorithm == Algorithm.RKF45.value and not (self.dt_min <= self.dt <= self.dt_max):
            warnings.warn(
                f"RKF45 starting step dt={self.dt} lies outside [dt_min, dt_max] = "
                f"[{self.dt_min}, {self.dt_max}]; recommendations are still clamped to that range."
            )

        if self.run_mode == "acceleration" and not self.cyclotron_gap:
            warnings.warn(
                "Acceleration run mode without cyclotron_gap: the bunch is never "
                "accelerated and the run only ends at max_turns."
            )

        return self

    @property
    def field_configuration(self) -> FieldConfiguration:
        return FieldConfiguration(
            uniform_magnetic=self.uniform_magnetic,
            failing_field=self.failing_field,
            point_charge=self.point_charge,
            cyclotron_gap=self.cyclotron_gap,
        )

    @property
    def spreads(self) -> NDArrayFloat:
        return np.array([self.spread_x, self.spread_y, self.spread_z])


@dataclass
class OrbitGeometry:
    """
    Reference orbit derived from a configuration.

    A particle starting at the origin with velocity (0, v, 0) in B = (0, 0, B)
    circles the centre (R, 0, 0), R = m v / (q B), with period T = 2 pi m / (|q| B).
    """
    magnetic_field: NDArrayFloat
    period: float
    angular_frequency: float
    radius: float
    centre: NDArrayFloat
    gap_half_width: float
    voltage: float
    point_charge: float

    @classmethod
    def from_config(cls, config: SimulationConfig) -> "OrbitGeometry":
        m = config.particle_mass
        q = config.particle_charge
        B = config.magnetic_strength
        v = config.initial_speed

        period = 2.0 * math.pi * m / (abs(q) * B)
        radius = m * v / (q * B)
        gap_half_width = config.gap_fraction * abs(radius)

        Q = 0.0
        if config.point_charge:
            # Charge whose Coulomb pull reproduces the magnetic orbit
            Q = -(m**2 * v**3) / (COULOMB_CONSTANT * q**2 * B)

        return cls(
            magnetic_field=np.array([0.0, 0.0, B]),
            period=period,
            angular_frequency=2.0 * math.pi / period,
            radius=radius,
            centre=np.array([radius, 0.0, 0.0]),
            gap_half_width=gap_half_width,
            voltage=2.0 * config.electric_strength * gap_half_width,
            point_charge=Q,
        )


class RunStatus(str, Enum):
    RUNNING = "running"
    TURN_BOUNDARY = "turn_boundary"
    TERMINATED = "terminated"


@dataclass
class RunState:
    """
    Current state of a run.
    """
    time: float = 0.0
    iteration: int = 0
    turns_completed: int = 0
    dt: float = 1e-6
    expected_energy_gain: float = 0.0
    status: RunStatus = RunStatus.RUNNING
    termination_reason: Optional[str] = None

    # Adaptive step bookkeeping
    last_dt_candidate: Optional[float] = None
    last_dt_limiter: str = "none"
    rejected_dt_updates: int = 0

    # Turn bookkeeping
    last_turn_time: float = 0.0
    last_turn_speed: float = 0.0

    # Initial conserved quantities
    initial_kinetic: Optional[float] = None
    initial_potential: Optional[float] = None
    initial_energy: Optional[float] = None
    initial_angular_momentum: Optional[float] = None

    # Timing
    wall_time_start: float = field(default_factory=time_module.time)
    wall_time_elapsed: float = 0.0

    snapshot_count: int = 0


@dataclass
class IterationSnapshot:
    """Bunch state at one written iteration."""
    iteration: int
    time: float
    dt: float
    positions: NDArrayFloat
    average_position: NDArrayFloat
    average_velocity: NDArrayFloat
    spread: NDArrayFloat
    kinetic: float
    potential: float
    total: float
    angular_momentum: float


@dataclass
class TurnRecord:
    """Bookkeeping for one completed turn."""
    turn: int
    time: float
    period: float
    speed: float
    delta_v: float
    expected_delta_v: float
    energy_gain: float
    spread: NDArrayFloat


@dataclass
class RunSummary:
    """
    End-of-run comparison against the analytic expectations.

    Percentages are taken against the signed reference value, so errors
    relative to a negative initial energy (point-charge orbits) come out
    negative.

    Potential energies include the magnetic term -q/2 B.((r - c) x v) only
    when a background magnetic field is enabled; a point-charge-only run
    reports the Coulomb term alone.
    """
    algorithm: str
    fields: str
    termination_reason: str
    iterations: int
    turns_completed: int
    simulated_time: float
    final_dt: float
    simulated_period: float
    expected_period: float
    period_error: float
    period_error_percent: float
    initial_kinetic: float
    initial_potential: float
    initial_energy: float
    initial_angular_momentum: float
    final_kinetic: float
    final_potential: float
    final_energy: float
    final_angular_momentum: float
    delta_kinetic: float
    delta_kinetic_percent: float
    energy_error: float
    energy_error_percent: float
    angular_momentum_error: float
    angular_momentum_error_percent: float
    expected_energy_gain: float
    expected_energy_gain_percent: float
    synchronous_energy_gain: float
    synchronous_energy_gain_percent: float
    energy_gain_difference: float
    simulation_error_percent: float
    rejected_dt_updates: int
    wall_time: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def determine_turn_end(start_vx: float, end_vx: float) -> bool:
    """
    True if the average x-velocity crossed zero upwards during an iteration.

    The bunch starts moving along +y with the centre at +x, so <v_x> rises
    through zero exactly once per revolution, back at the starting phase.
    """
    return end_vx >= 0.0 and start_vx <= 0.0


def spread_settled(spread_x: float, spread_y: float,
                   tolerance: float = SPREAD_SETTLE_TOLERANCE) -> bool:
    """True if spread_y lies within +/- tolerance of spread_x."""
    return (1.0 - tolerance) * spread_x <= spread_y <= (1.0 + tolerance) * spread_x


def expected_delta_v(speed: float, energy_gain: float, mass: float, n_particles: int) -> float:
    """
    Speed gain per particle if the bunch absorbs energy_gain evenly.

        dv = sqrt(v^2 + 2 dE / (m N)) - v

    Returns nan when the bunch would lose more than its kinetic energy.
    """
    arg = speed**2 + 2.0 * energy_gain / (mass * n_particles)
    if arg < 0.0:
        return float('nan')
    return math.sqrt(arg) - speed


def _percent(part: float, whole: float) -> float:
    if whole == 0.0:
        return float('nan')
    return 100.0 * part / whole


def build_force_model(config: SimulationConfig, geometry: OrbitGeometry) -> LorentzForceModel:
    """
    Assemble the Lorentz force model for a configuration.

    The point charge sits at the orbit centre. The gap field points along y
    and oscillates at the cyclotron frequency with the configured phase.
    """
    fields = config.field_configuration

    point_charge = None
    if fields.point_charge:
        point_charge = PointCharge(position=geometry.centre, charge=geometry.point_charge)

    oscillating_field = None
    if fields.cyclotron_gap:
        oscillating_field = OscillatingField(
            electric_amplitude=(0.0, config.electric_strength, 0.0),
            electric_frequency=(0.0, geometry.angular_frequency, 0.0),
            electric_phase=(0.0, config.phase, 0.0),
        )

    return LorentzForceModel(
        fields,
        magnetic_field=geometry.magnetic_field,
        point_charge=point_charge,
        oscillating_field=oscillating_field,
        gap_half_width=geometry.gap_half_width,
        gap_axis=1,
    )


def build_bunch(config: SimulationConfig, geometry: OrbitGeometry) -> Bunch:
    """Generate the initial bunch described by a configuration."""
    scale = abs(geometry.radius) if config.spread_units == "radius" else 1.0
    generator = BunchGenerator(
        mass=config.particle_mass,
        charge=config.particle_charge,
        random_seed=config.random_seed,
    )
    return generator.generate(
        n_particles=config.particle_count,
        spread=config.spreads * scale,
        speed=config.initial_speed,
        velocity_spread_fraction=config.velocity_spread_fraction,
    )


class Simulation:
    """
    Run driver: advances a bunch turn by turn until a termination condition.

    Architecture:
        Simulation orchestrates:
        - Bunch (particle data)
        - ForceModel (Lorentz force from the enabled sources)
        - TimeIntegrator (Euler ... RKF45)
        - EnsembleDiagnostics (aggregates, energies, gains)
        - Optional writer receiving snapshots and turn records

    Usage:
        >>> config = SimulationConfig(algorithm="rk4", dt=1e-4, turn_count=2)
        >>> sim = Simulation(config)
        >>> summary = sim.run()
        >>> print(summary.period_error_percent)
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        bunch: Optional[Bunch] = None,
        force_model: Optional[ForceModel] = None,
        integrator: Optional[TimeIntegrator] = None,
        writer: Optional[Any] = None,
    ):
        """
        Initialize run.

        Parameters
        ----------
        config : SimulationConfig, optional
            Run configuration; defaults are used if omitted.
        bunch : Bunch, optional
            Initial bunch. Generated from the configuration if omitted.
        force_model : ForceModel, optional
            Built from the configuration if omitted.
        integrator : TimeIntegrator, optional
            Built from config.algorithm if omitted.
        writer : optional
            Object with write_snapshot(), write_turn() and finalize() methods.
        """
        self.config = config if config is not None else SimulationConfig()
        self.state = RunState(dt=self.config.dt)
        self.geometry = OrbitGeometry.from_config(self.config)

        self.bunch = bunch if bunch is not None else build_bunch(self.config, self.geometry)
        self.force_model = (
            force_model if force_model is not None
            else build_force_model(self.config, self.geometry)
        )
        self.integrator = (
            integrator if integrator is not None
            else get_integrator(
                self.config.algorithm,
                tolerance=self.config.adaptive_tolerance,
                policy=self.config.rkf45_acceptance,
            )
        )
        self.writer = writer
        self.diagnostics = EnsembleDiagnostics()

        self.snapshots: List[IterationSnapshot] = []
        self.turns: List[TurnRecord] = []

        # Background field used by the magnetic potential-energy term
        if self.config.field_configuration.background_magnetic:
            self.energy_field = self.geometry.magnetic_field
        else:
            self.energy_field = np.zeros(3)

        if self.config.verbose:
            self._log(f"Initialized EMSim run ({self.config.field_configuration.describe()})")
            self._log(f"  Particles: {self.bunch.n_particles}")
            self._log(f"  Algorithm: {self.integrator.name}")
            self._log(f"  Expected period: {self.geometry.period:.6e} s")
            self._log(f"  Orbit radius: {self.geometry.radius:.6e} m")

    def _log(self, message: str):
        """Log message if verbose."""
        if self.config.verbose:
            print(f"[{self.state.time:.4f}] {message}")

    def compute_diagnostics(self) -> Dict[str, Any]:
        """Recompute every bunch aggregate, energies and angular momentum included."""
        return self.diagnostics.compute(
            self.bunch,
            self.geometry.point_charge,
            self.geometry.centre,
            self.energy_field,
        )

    def _apply_timestep_limits(self, candidate_dt: Optional[float], used_dt: float) -> float:
        """Accept an adaptive step candidate or keep the step just used."""
        new_dt, limiter = clamp_timestep(
            candidate_dt, used_dt, self.config.dt_min, self.config.dt_max
        )

        previous_limiter = self.state.last_dt_limiter
        self.state.last_dt_candidate = candidate_dt
        self.state.last_dt_limiter = limiter

        if limiter not in ('none', 'fixed'):
            self.state.rejected_dt_updates += 1
            if limiter != previous_limiter:
                self._log(
                    "dt recommendation rejected (%s): proposed %.3e, keeping %.3e"
                    % (limiter, candidate_dt, new_dt)
                )

        return new_dt

    def step(self) -> bool:
        """
        Advance the run by one iteration.

        Returns
        -------
        turn_completed : bool
            True if this iteration completed a turn.

        Raises
        ------
        NumericalDivergenceError
            If any position or velocity became non-finite.
        """
        bunch = self.bunch
        self.state.iteration += 1
        self.state.status = RunStatus.RUNNING

        self.diagnostics.recompute_averages(bunch)
        start_vx = float(bunch.average_velocity[0])

        self.force_model.update_time(self.state.time)
        self.force_model.apply(bunch)

        dt = self.state.dt
        self.integrator.step(bunch, dt, self.force_model)

        if not bunch.is_finite():
            self._log(f"ERROR: Non-finite bunch state at iteration {self.state.iteration}")
            raise NumericalDivergenceError(
                f"Bunch state became non-finite at iteration {self.state.iteration} "
                f"(t={self.state.time:.6e} s, dt={dt:.3e} s)"
            )

        self.diagnostics.recompute_averages(bunch)
        self.state.time += dt

        candidate = self.integrator.estimate_timestep(bunch, dt)
        self.state.dt = self._apply_timestep_limits(candidate, dt)

        if self.state.iteration % self.config.write_frequency == 0:
            self.record_snapshot()

        if self.state.iteration % self.config.print_frequency == 0:
            self._log_progress()

        end_vx = float(bunch.average_velocity[0])
        turn_completed = self.state.iteration > 1 and determine_turn_end(start_vx, end_vx)
        if turn_completed:
            self._complete_turn()

        return turn_completed

    def _complete_turn(self) -> None:
        """Turn-boundary bookkeeping: counters, expected gain, turn record."""
        bunch = self.bunch
        self.state.turns_completed += 1
        self.state.status = RunStatus.TURN_BOUNDARY

        gain = self.diagnostics.energy_gain(
            bunch,
            self.state.time,
            self.geometry.voltage,
            self.config.magnetic_strength,
            self.config.phase,
        )
        self.state.expected_energy_gain += gain

        speed = float(np.linalg.norm(bunch.average_velocity))
        record = TurnRecord(
            turn=self.state.turns_completed,
            time=self.state.time,
            period=self.state.time / self.state.turns_completed,
            speed=speed,
            delta_v=speed - self.state.last_turn_speed,
            expected_delta_v=expected_delta_v(
                self.state.last_turn_speed, gain,
                float(bunch.masses[0]), bunch.n_particles
            ),
            energy_gain=gain,
            spread=self.diagnostics.spreads(bunch),
        )
        self.turns.append(record)
        self.state.last_turn_time = self.state.time
        self.state.last_turn_speed = speed

        if self.writer is not None:
            self.writer.write_turn(record)

        if self.config.print_turns and record.turn % self.config.turn_report_interval == 0:
            self.record_snapshot()
            self._log(
                f"Turn {record.turn:6d}  "
                f"T_sim={record.period:.6e}  "
                f"|v|={record.speed:.6e}  "
                f"dv={record.delta_v:.3e}  "
                f"dv_exp={record.expected_delta_v:.3e}"
            )

    def _log_progress(self) -> None:
        diag = self.compute_diagnostics()
        msg = (
            f"Iter {self.state.iteration:9d}  "
            f"turns={self.state.turns_completed}  "
            f"|r|={np.linalg.norm(diag['average_position']):.4e}  "
            f"|v|={np.linalg.norm(diag['average_velocity']):.4e}  "
            f"E_tot={diag['total']:.6e}"
        )
        if self.config.algorithm == Algorithm.RKF45.value:
            msg += f"  dt={self.state.dt:.2e}"
        self._log(msg)

    def record_snapshot(self) -> IterationSnapshot:
        """
        Capture the current bunch state and forward it to the writer.
        """
        diag = self.compute_diagnostics()
        snapshot = IterationSnapshot(
            iteration=self.state.iteration,
            time=self.state.time,
            dt=self.state.dt,
            positions=self.bunch.positions.copy(),
            average_position=diag['average_position'],
            average_velocity=diag['average_velocity'],
            spread=diag['spread'],
            kinetic=diag['kinetic'],
            potential=diag['potential'],
            total=diag['total'],
            angular_momentum=diag['angular_momentum'],
        )
        self.snapshots.append(snapshot)
        self.diagnostics.append_to_history(self.state.time, {
            'kinetic': diag['kinetic'],
            'potential': diag['potential'],
            'total': diag['total'],
            'angular_momentum': diag['angular_momentum'],
        })
        self.state.snapshot_count += 1

        if self.writer is not None:
            self.writer.write_snapshot(snapshot)

        return snapshot

    def check_termination(self) -> Optional[str]:
        """
        Termination reason, or None if the run continues.
        """
        mode = self.config.run_mode
        turns = self.state.turns_completed

        if mode == "standard" and turns >= self.config.turn_count:
            return "turn_count"
        if mode == "acceleration":
            speed = float(np.linalg.norm(self.bunch.average_velocity))
            if speed >= LIGHT_SPEED_FRACTION_LIMIT * SPEED_OF_LIGHT:
                return "light_speed_fraction"
        if mode == "failing_field":
            spreads = self.diagnostics.spreads(self.bunch)
            if spread_settled(spreads[0], spreads[1]):
                return "spread_settled"
        if turns >= self.config.max_turns:
            return "max_turns"
        if self.state.iteration >= self.config.max_iterations:
            return "max_iterations"
        return None

    def summarize(self, reason: str) -> RunSummary:
        """
        Compare the final state with the initial state and analytic expectations.
        """
        diag = self.compute_diagnostics()
        state = self.state
        fields = self.config.field_configuration

        turns = state.turns_completed
        simulated_period = state.time / turns if turns > 0 else float('nan')
        period_error = abs(self.geometry.period - simulated_period)

        delta_kinetic = diag['kinetic'] - state.initial_kinetic
        energy_error = abs(state.initial_energy - diag['total'])
        L_error = abs(state.initial_angular_momentum - diag['angular_momentum'])

        synchronous = turns * self.diagnostics.synchronous_energy_gain(
            self.bunch, state.time, self.geometry.voltage,
            self.config.magnetic_strength, self.config.phase
        )
        gain_difference = abs(delta_kinetic - state.expected_energy_gain)

        simulation_error = 0.0
        if fields.cyclotron_gap:
            simulation_error = _percent(gain_difference, state.expected_energy_gain)
        if fields.uniform_magnetic or fields.point_charge:
            simulation_error = _percent(energy_error, state.initial_energy)

        state.wall_time_elapsed = time_module.time() - state.wall_time_start

        return RunSummary(
            algorithm=self.integrator.name,
            fields=fields.describe(),
            termination_reason=reason,
            iterations=state.iteration,
            turns_completed=turns,
            simulated_time=state.time,
            final_dt=state.dt,
            simulated_period=simulated_period,
            expected_period=self.geometry.period,
            period_error=period_error,
            period_error_percent=_percent(period_error, self.geometry.period),
            initial_kinetic=state.initial_kinetic,
            initial_potential=state.initial_potential,
            initial_energy=state.initial_energy,
            initial_angular_momentum=state.initial_angular_momentum,
            final_kinetic=diag['kinetic'],
            final_potential=diag['potential'],
            final_energy=diag['total'],
            final_angular_momentum=diag['angular_momentum'],
            delta_kinetic=delta_kinetic,
            delta_kinetic_percent=_percent(delta_kinetic, state.initial_kinetic),
            energy_error=energy_error,
            energy_error_percent=_percent(energy_error, state.initial_energy),
            angular_momentum_error=L_error,
            angular_momentum_error_percent=_percent(L_error, state.initial_angular_momentum),
            expected_energy_gain=state.expected_energy_gain,
            expected_energy_gain_percent=_percent(state.expected_energy_gain, state.initial_kinetic),
            synchronous_energy_gain=synchronous,
            synchronous_energy_gain_percent=_percent(synchronous, state.initial_kinetic),
            energy_gain_difference=gain_difference,
            simulation_error_percent=simulation_error,
            rejected_dt_updates=state.rejected_dt_updates,
            wall_time=state.wall_time_elapsed,
        )

    def _log_summary(self, summary: RunSummary) -> None:
        self._log("=" * 60)
        self._log(f"Run complete ({summary.termination_reason})")
        self._log(f"  Iterations: {summary.iterations}")
        self._log(f"  Turns: {summary.turns_completed}")
        self._log(f"  Wall time: {summary.wall_time:.2f} s")
        self._log(f"  Simulated period: {summary.simulated_period:.6e} s")
        self._log(f"  Expected period:  {summary.expected_period:.6e} s")
        self._log(f"  Period error: {summary.period_error_percent:.4e} %")
        self._log(f"  KE: {summary.initial_kinetic:.6e} -> {summary.final_kinetic:.6e} J "
                  f"({summary.delta_kinetic_percent:.4e} %)")
        self._log(f"  E:  {summary.initial_energy:.6e} -> {summary.final_energy:.6e} J "
                  f"({summary.energy_error_percent:.4e} %)")
        self._log(f"  L:  {summary.initial_angular_momentum:.6e} -> "
                  f"{summary.final_angular_momentum:.6e} kg m^2/s "
                  f"({summary.angular_momentum_error_percent:.4e} %)")
        if self.config.cyclotron_gap:
            self._log(f"  Expected gain: {summary.expected_energy_gain:.6e} J "
                      f"({summary.expected_energy_gain_percent:.4e} %)")
            self._log(f"  Synchronous gain: {summary.synchronous_energy_gain:.6e} J "
                      f"({summary.synchronous_energy_gain_percent:.4e} %)")
        self._log(f"  Simulation error: {summary.simulation_error_percent:.4e} %")
        self._log("=" * 60)

    def run(self) -> RunSummary:
        """
        Run until a termination condition is met.

        Returns
        -------
        summary : RunSummary
        """
        self._log("=" * 60)
        self._log("Starting simulation")
        self._log("=" * 60)

        # Initial conserved quantities
        initial = self.compute_diagnostics()
        self.state.initial_kinetic = initial['kinetic']
        self.state.initial_potential = initial['potential']
        self.state.initial_energy = initial['total']
        self.state.initial_angular_momentum = initial['angular_momentum']
        self.state.last_turn_speed = float(np.linalg.norm(self.bunch.average_velocity))
        self._log(f"Initial energy: {self.state.initial_energy:.6e}")

        # Output files are closed even if a step raises
        summary = None
        try:
            self.record_snapshot()

            reason = None
            while reason is None:
                self.step()
                reason = self.check_termination()

            self.state.status = RunStatus.TERMINATED
            self.state.termination_reason = reason
            if reason in ("max_turns", "max_iterations"):
                self._log(f"WARNING: Safety cap reached ({reason})")

            summary = self.summarize(reason)
        finally:
            if self.writer is not None:
                self.writer.finalize(summary)

        self._log_summary(summary)
        return summary
