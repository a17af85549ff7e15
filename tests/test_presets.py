"""
Tests for preset experiments.
"""

import math
from types import SimpleNamespace

import numpy as np
import pytest

from emsim.core import SimulationConfig
from emsim.config import Preset, get_preset, list_presets


def _summary(**values):
    defaults = dict(delta_kinetic_percent=1.5, expected_energy_gain_percent=2.5,
                    simulation_error_percent=0.1, wall_time=3.0, final_dt=1e-4)
    defaults.update(values)
    return SimpleNamespace(**defaults)


class TestRegistry:
    """Names and menu numbers."""

    def test_twelve_presets_in_menu_order(self):
        names = list_presets()
        assert len(names) == 12
        assert names[0] == "user"
        assert names[6] == "phase_scan"
        assert names[-1] == "tolerance_scan"

    def test_lookup_by_number(self):
        preset = get_preset(3)
        assert preset.name == "failing_field"
        assert preset.mode == 3

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="preset must be one of"):
            get_preset("grand_tour")
        with pytest.raises(ValueError, match="preset number must be in"):
            get_preset(13)

    def test_user_preset_runs_base(self):
        base = SimulationConfig(algorithm="rk4", dt=1e-4, verbose=False)
        preset = get_preset("user", base)
        assert preset.configs == [base]
        assert not preset.is_sweep
        assert preset.group_of(base) == "user"

    def test_ambient_fields_inherited(self, tmp_path):
        """Presets keep the caller's output, logging and seed settings."""
        base = SimulationConfig(output_dir=str(tmp_path), verbose=False, random_seed=3)
        for config in get_preset("cyclotron", base).configs:
            assert config.output_dir == str(tmp_path)
            assert config.verbose is False
            assert config.random_seed == 3
            assert config.algorithm == "heun"


class TestSingleRunPresets:
    """Presets that expand to a handful of runs."""

    def test_spread_axes(self):
        configs = get_preset("spread_axes").configs
        assert [list(c.spreads) for c in configs] == [
            [0.1, 0.0, 0.0], [0.0, 0.1, 0.0], [0.0, 0.0, 0.1]
        ]
        assert all(c.spread_units == "metres" for c in configs)

    def test_failing_field(self):
        (config,) = get_preset("failing_field").configs
        assert config.run_mode == "failing_field"
        assert config.failing_field and not config.uniform_magnetic
        assert not config.write_positions and config.write_spread

    def test_euler_comparisons(self):
        magnetic = get_preset("euler_comparison_magnetic").configs
        point = get_preset("euler_comparison_point_charge").configs
        assert [c.algorithm for c in magnetic] == ["euler", "euler_cromer"]
        assert all(c.uniform_magnetic and not c.point_charge for c in magnetic)
        assert all(c.point_charge and not c.uniform_magnetic for c in point)

    def test_light_speed_acceleration(self):
        (config,) = get_preset("light_speed_acceleration").configs
        assert config.run_mode == "acceleration"
        assert config.cyclotron_gap
        assert config.electric_strength == 1e-6
        assert config.initial_speed == 1e3


class TestSweeps:
    """Parameter sweeps and their session tables."""

    def test_phase_scan(self):
        preset = get_preset("phase_scan")
        assert preset.is_sweep
        assert len(preset) == 101
        assert preset.configs[0].phase == 0.0
        assert preset.configs[-1].phase == pytest.approx(2 * math.pi)
        row = preset.session_row(preset.configs[50], _summary())
        assert row == pytest.approx([1.0, 1.5, 2.5])
        assert len(row) == len(preset.session_columns)

    def test_position_spread_scan(self):
        preset = get_preset("position_spread_scan")
        assert len(preset) == 71 + 70 + 70
        first, last = preset.configs[0], preset.configs[-1]
        assert first.spread_x == pytest.approx(1e-8)
        assert last.spread_z == pytest.approx(0.1)
        assert preset.group_of(first) == "x_spreadTest"
        assert preset.group_of(last) == "z_spreadTest"

    def test_velocity_spread_scan(self):
        preset = get_preset("velocity_spread_scan")
        half = len(preset) // 2
        assert not preset.configs[0].failing_field
        assert preset.configs[half].failing_field
        assert max(c.velocity_spread_fraction for c in preset.configs) <= 0.5
        assert preset.group_of(preset.configs[half]) == "EnergiesTest_defective-cyclotron"

    def test_algorithm_timestep_scan(self):
        preset = get_preset("algorithm_timestep_scan")
        assert len(preset) == 2 * 5 * 81
        dts = [c.dt for c in preset.configs[:81]]
        assert dts[0] == pytest.approx(1e-2)
        assert dts[-1] == pytest.approx(1e-6)
        assert all(a > b for a, b in zip(dts, dts[1:]))
        assert preset.group_of(preset.configs[0]) == "euler_cyclotron_test"
        assert preset.group_of(preset.configs[-1]) == "rk4_non-cyclotron_test"

    def test_tolerance_scan(self):
        preset = get_preset("tolerance_scan")
        assert len(preset) == 2 * 27
        tolerances = [c.adaptive_tolerance for c in preset.configs[:27]]
        assert tolerances[0] == 0.5
        assert min(tolerances) >= 1e-3
        assert all(c.algorithm == "rkf45" for c in preset.configs)
        row = preset.session_row(preset.configs[0], _summary())
        assert row == pytest.approx([0.5, 1e-4, 0.1, 3.0])

    def test_sweeps_write_no_per_run_files(self):
        for name in ("phase_scan", "tolerance_scan"):
            config = get_preset(name).configs[0]
            assert not (config.write_positions or config.write_spread or config.write_conserved)


def test_custom_preset_grouping():
    """Without a group function every run shares the preset's table."""
    config = SimulationConfig(verbose=False)
    preset = Preset("custom", 1, "test", [config], session_columns=["dt"],
                    session_row=lambda c, s: [c.dt])
    assert preset.is_sweep
    assert preset.group_of(config) == "custom"
    assert np.isclose(preset.session_row(config, None)[0], 1e-6)
