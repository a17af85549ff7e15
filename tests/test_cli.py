"""
Tests for the command-line entrypoint (scripts/run_simulation.py).
"""

import importlib.util
from pathlib import Path

import pytest

from emsim.core import SimulationConfig
from emsim.config import Preset
from emsim.io import read_table


SCRIPT = Path(__file__).parent.parent / "scripts" / "run_simulation.py"
PERIOD = 0.6558


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("run_simulation", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestArguments:
    """Parser and override mapping."""

    def test_overrides_map_to_fields(self, cli):
        args = cli.build_parser().parse_args(
            ["--algorithm", "rkf45", "--tolerance", "1e-3", "--turns", "2", "-n", "5", "-q"]
        )
        assert cli.config_overrides(args) == {
            'algorithm': 'rkf45',
            'adaptive_tolerance': 1e-3,
            'turn_count': 2,
            'particle_count': 5,
            'verbose': False,
        }

    def test_no_overrides(self, cli):
        args = cli.build_parser().parse_args([])
        assert cli.config_overrides(args) == {}
        assert cli.build_base_config(args) == SimulationConfig()

    def test_config_file_with_overrides(self, cli, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text("integration:\n  algorithm: heun\n  dt: 1.0e-4\n")
        args = cli.build_parser().parse_args(["--config", str(path), "--dt", "5e-5"])
        config = cli.build_base_config(args)
        assert config.algorithm == "heun"
        assert config.dt == 5e-5

    def test_preset_by_number_or_name(self, cli):
        base = SimulationConfig(verbose=False)
        assert cli.resolve_preset("7", base).name == "phase_scan"
        assert cli.resolve_preset("phase_scan", base).mode == 7


def test_list_presets(cli, capsys):
    assert cli.main(["--list-presets"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 12
    assert lines[0].split() == ["1", "user"]


def test_single_run_writes_files(cli, tmp_path):
    """A user run with an output directory leaves the per-run tables and summary."""
    status = cli.main([
        "--algorithm", "euler_cromer", "--dt", str(PERIOD / 200), "--turns", "1",
        "--particles", "1", "--quiet", "--output-dir", str(tmp_path),
    ])
    assert status == 0
    names = sorted(p.name.split("_EMSim_output")[-1] for p in tmp_path.iterdir())
    assert names == ["_consv.txt", "_pos.txt", "_spread.txt", "_summary.json"]


def test_sweep_writes_session_table(cli, tmp_path):
    """Sweeps write one session row per run and no per-run files."""
    configs = [
        SimulationConfig(dt=PERIOD / n, turn_count=1, output_dir=str(tmp_path), verbose=False)
        for n in (100, 200)
    ]
    preset = Preset("custom", 1, "dt sweep", configs, session_columns=["dt", "Turns"],
                    session_row=lambda c, s: [c.dt, s.turns_completed])

    summaries = cli.run_preset(preset, quiet=True)

    assert len(summaries) == 2
    (session,) = tmp_path.iterdir()
    assert session.name.endswith("_custom.txt")
    table = read_table(session)
    assert table['dt'] == pytest.approx([PERIOD / 100, PERIOD / 200])
    assert table['Turns'] == pytest.approx([1.0, 1.0])
