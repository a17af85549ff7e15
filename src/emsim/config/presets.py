"""
Preset experiments.

Each preset expands into one or more run configurations, plus, for parameter
sweeps, the columns of the session table and a function producing one row per
completed run. Presets are numbered 1-12 in menu order; `user` (1) runs the
given configuration unchanged.

Usage:
    >>> preset = get_preset("phase_scan")
    >>> for config in preset.configs:
    ...     summary = Simulation(config).run()
    ...     row = preset.session_row(config, summary)
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import math
import numpy as np

from emsim.core.simulation import SimulationConfig, RunSummary


# Progress logging off for sweeps
SILENT_FREQUENCY = 1_000_000_000

# Fields a preset inherits from the configuration it is built on
AMBIENT_FIELDS = (
    'output_dir',
    'verbose',
    'random_seed',
    'max_turns',
    'max_iterations',
    'rkf45_acceptance',
)

SessionRow = Callable[[SimulationConfig, RunSummary], List[float]]


@dataclass
class Preset:
    """
    A named experiment.

    Attributes
    ----------
    name : str
    mode : int
        Menu number, 1-12.
    description : str
    configs : List[SimulationConfig]
        Runs in execution order.
    session_columns : List[str], optional
        Column names of the sweep session table; None if the preset writes none.
    session_row : callable, optional
        (config, summary) -> row values matching session_columns.
    session_group : callable, optional
        config -> label; consecutive runs with the same label share a session table.
    """
    name: str
    mode: int
    description: str
    configs: List[SimulationConfig]
    session_columns: Optional[List[str]] = None
    session_row: Optional[SessionRow] = None
    session_group: Optional[Callable[[SimulationConfig], str]] = None

    @property
    def is_sweep(self) -> bool:
        return self.session_columns is not None

    def __len__(self) -> int:
        return len(self.configs)

    def group_of(self, config: SimulationConfig) -> str:
        """Session table label of one run."""
        if self.session_group is None:
            return self.name
        return self.session_group(config)


def _fields(uniform: bool = False, failing: bool = False,
            point: bool = False, cyclotron: bool = False) -> Dict[str, bool]:
    return {
        'uniform_magnetic': uniform,
        'failing_field': failing,
        'point_charge': point,
        'cyclotron_gap': cyclotron,
    }


def _derive(base: SimulationConfig, **updates: Any) -> SimulationConfig:
    """Default configuration carrying base's ambient fields, with updates applied."""
    values = {name: getattr(base, name) for name in AMBIENT_FIELDS}
    values.update(updates)
    return SimulationConfig(**values)


def _log_sweep(scale: float, step: float, limit: float) -> List[float]:
    """scale * 10^(step * i) for i = 0, 1, ... up to and including limit."""
    values = []
    value = scale
    while (value <= limit * (1 + 1e-9)) if step > 0 else (value >= limit * (1 - 1e-9)):
        values.append(value)
        value = scale * 10.0 ** (step * len(values))
    return values


def _field_label(config: SimulationConfig) -> str:
    return "cyclotron" if config.cyclotron_gap else "non-cyclotron"


def _user(base: SimulationConfig) -> Preset:
    return Preset("user", 1, "Run the given configuration", [base])


def _spread_axes(base: SimulationConfig) -> Preset:
    configs = []
    for axis in "xyz":
        configs.append(_derive(
            base,
            algorithm="euler_cromer",
            spread_units="metres",
            **{f"spread_{axis}": 0.1},
            **_fields(uniform=True),
        ))
    return Preset(
        "spread_axes", 2,
        "0.1 m spread along each axis in turn, uniform magnetic field",
        configs,
    )


def _failing_field(base: SimulationConfig) -> Preset:
    config = _derive(
        base,
        algorithm="euler_cromer",
        run_mode="failing_field",
        dt=1e-6,
        spread_x=0.1,
        spread_units="metres",
        print_frequency=20000,
        write_positions=False,
        write_conserved=False,
        **_fields(failing=True),
    )
    return Preset(
        "failing_field", 3,
        "Failing field until the y-spread matches the x-spread",
        [config],
    )


def _euler_comparison(base: SimulationConfig, point: bool) -> List[SimulationConfig]:
    return [
        _derive(
            base,
            algorithm=algorithm,
            particle_count=1,
            dt=1e-5,
            turn_count=100,
            write_frequency=10000,
            **_fields(uniform=not point, point=point),
        )
        for algorithm in ("euler", "euler_cromer")
    ]


def _euler_comparison_magnetic(base: SimulationConfig) -> Preset:
    return Preset(
        "euler_comparison_magnetic", 4,
        "Euler vs Euler-Cromer, single proton in a uniform magnetic field",
        _euler_comparison(base, point=False),
    )


def _euler_comparison_point_charge(base: SimulationConfig) -> Preset:
    return Preset(
        "euler_comparison_point_charge", 5,
        "Euler vs Euler-Cromer, single proton around a point charge",
        _euler_comparison(base, point=True),
    )


def _cyclotron(base: SimulationConfig) -> Preset:
    config = _derive(
        base,
        algorithm="heun",
        particle_count=1,
        dt=1e-7,
        turn_count=100,
        **_fields(cyclotron=True),
    )
    return Preset("cyclotron", 6, "Single proton, 100 turns of a cyclotron", [config])


def _sweep(base: SimulationConfig, **updates: Any) -> SimulationConfig:
    """Cyclotron sweep run: no per-run files, no progress lines."""
    values = dict(
        write_positions=False,
        write_spread=False,
        write_conserved=False,
        print_frequency=SILENT_FREQUENCY,
    )
    values.update(_fields(cyclotron=True))
    values.update(updates)
    return _derive(base, **values)


def _phase_scan(base: SimulationConfig) -> Preset:
    configs = [
        _sweep(
            base,
            algorithm="heun",
            particle_count=1,
            dt=1e-5,
            turn_count=100,
            print_turns=False,
            phase=i * math.pi / 50.0,
        )
        for i in range(101)
    ]
    return Preset(
        "phase_scan", 7,
        "Energy gain against gap field phase, 0 to 2 pi",
        configs,
        session_columns=["Phase/pi", "Percent dKE", "Percent expected dE"],
        session_row=lambda c, s: [
            c.phase / math.pi, s.delta_kinetic_percent, s.expected_energy_gain_percent
        ],
    )


def _position_spread_scan(base: SimulationConfig) -> Preset:
    spreads = _log_sweep(1e-8, 0.1, 0.1)
    configs = []
    for axis in "xyz":
        # y and z sweeps start one step in, as x already covers the smallest spread
        values = spreads if axis == "x" else spreads[1:]
        for spread in values:
            configs.append(_sweep(
                base,
                algorithm="heun",
                particle_count=50,
                dt=1e-5,
                turn_count=10,
                initial_speed=0.1,
                velocity_spread_fraction=0.1,
                **{f"spread_{axis}": spread},
            ))
    return Preset(
        "position_spread_scan", 8,
        "Energy gain against initial spread along each axis",
        configs,
        session_columns=["Spread", "Percent dKE"],
        session_row=lambda c, s: [
            float(np.max(c.spreads)), s.delta_kinetic_percent
        ],
        session_group=lambda c: 'xyz'[int(np.argmax(c.spreads))] + "_spreadTest",
    )


def _velocity_spread_scan(base: SimulationConfig) -> Preset:
    fractions = _log_sweep(1e-8, 0.1, 0.5)
    configs = []
    for failing in (False, True):
        for fraction in fractions:
            configs.append(_sweep(
                base,
                algorithm="heun",
                particle_count=50,
                turn_count=50,
                initial_speed=1e3,
                dt=1e-4,
                spread_x=0.01,
                spread_y=0.01,
                spread_z=0.01,
                velocity_spread_fraction=fraction,
                failing_field=failing,
            ))
    return Preset(
        "velocity_spread_scan", 9,
        "Energy gain against initial speed spread, with and without a failing field",
        configs,
        session_columns=["v_sigma", "Percent dKE"],
        session_row=lambda c, s: [
            c.velocity_spread_fraction * c.initial_speed, s.delta_kinetic_percent
        ],
        session_group=lambda c: (
            "EnergiesTest_defective-cyclotron" if c.failing_field else "EnergiesTest_cyclotron"
        ),
    )


def _light_speed_acceleration(base: SimulationConfig) -> Preset:
    config = _derive(
        base,
        algorithm="heun",
        run_mode="acceleration",
        particle_count=1,
        dt=1e-4,
        magnetic_strength=1e-7,
        electric_strength=1e-6,
        initial_speed=1e3,
        turn_report_interval=100,
        write_positions=False,
        write_spread=False,
        write_conserved=False,
        print_frequency=SILENT_FREQUENCY,
        **_fields(cyclotron=True),
    )
    return Preset(
        "light_speed_acceleration", 10,
        "Accelerate a proton from 1 km/s to 0.1 c",
        [config],
    )


def _algorithm_timestep_scan(base: SimulationConfig) -> Preset:
    timesteps = _log_sweep(1e-2, -0.05, 1e-6)
    configs = []
    for cyclotron in (True, False):
        for algorithm in ("euler", "euler_cromer", "heun", "verlet", "rk4"):
            for dt in timesteps:
                configs.append(_sweep(
                    base,
                    algorithm=algorithm,
                    particle_count=1,
                    turn_count=50,
                    initial_speed=0.1,
                    dt=dt,
                    dt_min=1e-6,
                    print_turns=False,
                    write_frequency=SILENT_FREQUENCY,
                    **_fields(uniform=not cyclotron, cyclotron=cyclotron),
                ))
    return Preset(
        "algorithm_timestep_scan", 11,
        "Accuracy and cost of each fixed-step algorithm against dt",
        configs,
        session_columns=["dt", "Simulation error %", "Computation time"],
        session_row=lambda c, s: [c.dt, s.simulation_error_percent, s.wall_time],
        session_group=lambda c: f"{c.algorithm}_{_field_label(c)}_test",
    )


def _tolerance_scan(base: SimulationConfig) -> Preset:
    tolerances = _log_sweep(0.5, -0.1, 1e-3)
    configs = []
    for cyclotron in (True, False):
        for tol in tolerances:
            configs.append(_sweep(
                base,
                algorithm="rkf45",
                particle_count=1,
                turn_count=50,
                dt=1e-4,
                dt_min=1e-6,
                dt_max=5e-3,
                adaptive_tolerance=tol,
                **_fields(uniform=not cyclotron, cyclotron=cyclotron),
            ))
    return Preset(
        "tolerance_scan", 12,
        "RKF45 accuracy and cost against tolerance",
        configs,
        session_columns=["Tolerance", "Final dt", "Simulation error %", "Computation time"],
        session_row=lambda c, s: [
            c.adaptive_tolerance, s.final_dt, s.simulation_error_percent, s.wall_time
        ],
        session_group=lambda c: f"RKF45_testing_{_field_label(c)}",
    )


PRESET_BUILDERS: Dict[str, Callable[[SimulationConfig], Preset]] = {
    "user": _user,
    "spread_axes": _spread_axes,
    "failing_field": _failing_field,
    "euler_comparison_magnetic": _euler_comparison_magnetic,
    "euler_comparison_point_charge": _euler_comparison_point_charge,
    "cyclotron": _cyclotron,
    "phase_scan": _phase_scan,
    "position_spread_scan": _position_spread_scan,
    "velocity_spread_scan": _velocity_spread_scan,
    "light_speed_acceleration": _light_speed_acceleration,
    "algorithm_timestep_scan": _algorithm_timestep_scan,
    "tolerance_scan": _tolerance_scan,
}


def list_presets() -> List[str]:
    """Preset names in menu order."""
    return list(PRESET_BUILDERS)


def get_preset(name: Any, base: Optional[SimulationConfig] = None) -> Preset:
    """
    Build a preset.

    Parameters
    ----------
    name : str or int
        Preset name, or its menu number 1-12.
    base : SimulationConfig, optional
        Configuration for the `user` preset; other presets only inherit its
        output, logging, seed and safety-cap settings.

    Returns
    -------
    preset : Preset

    Raises
    ------
    ValueError
        Unknown name or number.
    """
    names = list_presets()
    if isinstance(name, int):
        if not 1 <= name <= len(names):
            raise ValueError(f"preset number must be in 1..{len(names)}, got {name}")
        name = names[name - 1]
    if name not in PRESET_BUILDERS:
        raise ValueError(f"preset must be one of {names}, got '{name}'")

    if base is None:
        base = SimulationConfig()
    return PRESET_BUILDERS[name](base)
