"""
Tests for run output files (TSV tables, session tables, summary JSON).
"""

import json
from datetime import datetime
from types import SimpleNamespace

import numpy as np
import pytest

from emsim.core import Simulation, SimulationConfig
from emsim.io import DiagnosticsWriter, SessionWriter, parameter_header, read_table, timestamp


STAMP = "18_10_2026--at--09-30"
PERIOD = 0.6558


def _snapshot(time, scale=1.0):
    return SimpleNamespace(
        time=time,
        average_position=np.array([1.0, 2.0, 3.0]) * scale,
        spread=np.array([0.1, 0.2, 0.3]) * scale,
        kinetic=4.0 * scale,
        potential=-1.0 * scale,
        total=3.0 * scale,
        angular_momentum=5.0 * scale,
    )


class TestHeader:
    """Commented parameter header."""

    def test_timestamp_format(self):
        assert timestamp(datetime(2026, 10, 18, 9, 30)) == STAMP

    def test_header_contents(self):
        config = SimulationConfig(algorithm="rkf45", dt=1e-4, adaptive_tolerance=1e-3)
        lines = parameter_header(config, mode=12, stamp=STAMP)
        assert lines[0] == "# EMSIM OUTPUT FILE"
        assert all(line.startswith("#") for line in lines)
        text = "\n".join(lines)
        assert STAMP in text
        assert "Mode               : 12" in text
        assert "Tolerance          : 0.001" in text
        assert "Spread in x        : 0.0 R" in text

    def test_no_tolerance_line_for_fixed_step(self):
        lines = parameter_header(SimulationConfig(), stamp=STAMP)
        assert not any("Tolerance" in line for line in lines)


class TestDiagnosticsWriter:
    """Per-run files."""

    def test_files_follow_flags(self, tmp_path):
        """Uniform-field runs get position, spread and conserved files but no boost file."""
        writer = DiagnosticsWriter(tmp_path, SimulationConfig(), stamp=STAMP)
        writer.finalize()
        assert writer.path('position').exists()
        assert writer.path('spread').exists()
        assert writer.path('conserved').exists()
        assert not writer.path('boost').exists()
        assert writer.path('position').name == f"{STAMP}_EMSim_output_pos.txt"

    def test_disabled_outputs(self, tmp_path):
        config = SimulationConfig(write_positions=False, write_conserved=False)
        writer = DiagnosticsWriter(tmp_path, config, stamp=STAMP)
        writer.write_snapshot(_snapshot(0.0))
        writer.finalize()
        assert not writer.path('position').exists()
        assert not writer.path('conserved').exists()
        assert writer.rows_written == {'spread': 1}

    def test_snapshot_rows(self, tmp_path):
        """Rows read back with their column headings."""
        with DiagnosticsWriter(tmp_path, SimulationConfig(), stamp=STAMP) as writer:
            writer.write_snapshot(_snapshot(0.0))
            writer.write_snapshot(_snapshot(0.5, scale=2.0))

        positions = read_table(writer.path('position'))
        np.testing.assert_allclose(positions['x'], [1.0, 2.0])
        np.testing.assert_allclose(positions['z'], [3.0, 6.0])

        spread = read_table(writer.path('spread'))
        np.testing.assert_allclose(spread['Spread in y'], [0.2, 0.4])

        conserved = read_table(writer.path('conserved'))
        assert list(conserved) == ['Time', 'KE', 'PE', 'E', 'L']
        np.testing.assert_allclose(conserved['Time'], [0.0, 0.5])
        np.testing.assert_allclose(conserved['E'], [3.0, 6.0])

    def test_full_precision(self, tmp_path):
        """Floats are written with repr precision."""
        value = 1.0 / 3.0
        with DiagnosticsWriter(tmp_path, SimulationConfig(), stamp=STAMP) as writer:
            writer.write_snapshot(_snapshot(value))
        assert read_table(writer.path('conserved'))['Time'][0] == value

    def test_boost_file_for_cyclotron(self, tmp_path):
        config = SimulationConfig(cyclotron_gap=True)
        with DiagnosticsWriter(tmp_path, config, label="cyc", stamp=STAMP) as writer:
            writer.write_turn(SimpleNamespace(turn=1, delta_v=0.25))
            writer.write_turn(SimpleNamespace(turn=2, delta_v=0.125))
        boost = read_table(writer.path('boost'))
        np.testing.assert_allclose(boost['Turn Num'], [1, 2])
        np.testing.assert_allclose(boost['deltaV'], [0.25, 0.125])

    def test_unknown_kind(self, tmp_path):
        writer = DiagnosticsWriter(tmp_path, SimulationConfig(), stamp=STAMP)
        writer.finalize()
        with pytest.raises(ValueError, match="kind must be one of"):
            writer.path('velocity')

    def test_run_writes_summary(self, tmp_path):
        """A finished run leaves its summary and configuration in JSON."""
        config = SimulationConfig(dt=PERIOD / 200, turn_count=1, particle_count=1,
                                  write_frequency=50, verbose=False)
        writer = DiagnosticsWriter(tmp_path, config, stamp=STAMP)
        summary = Simulation(config, writer=writer).run()

        with open(writer.summary_path) as f:
            payload = json.load(f)
        assert payload['summary']['turns_completed'] == 1
        assert payload['config']['dt'] == config.dt
        assert payload['summary']['termination_reason'] == summary.termination_reason

        conserved = read_table(writer.path('conserved'))
        assert conserved['Time'][0] == 0.0
        assert len(conserved['Time']) == writer.rows_written['conserved']
        assert len(conserved['Time']) >= 3
        assert all(f.closed for f in writer.files.values())


class TestSessionWriter:
    """One row per sweep run."""

    def test_rows(self, tmp_path):
        with SessionWriter(tmp_path, ["dt", "Simulation error %"], SimulationConfig(),
                           label="euler_cyclotron_test", mode=11, stamp=STAMP) as session:
            session.write_row([1e-3, 0.5])
            session.write_row([1e-4, 0.05])

        assert session.path.name == f"{STAMP}_euler_cyclotron_test.txt"
        table = read_table(session.path)
        np.testing.assert_allclose(table['dt'], [1e-3, 1e-4])
        np.testing.assert_allclose(table['Simulation error %'], [0.5, 0.05])
        assert session.rows_written == 2

    def test_row_length_checked(self, tmp_path):
        session = SessionWriter(tmp_path, ["Tolerance", "Final dt"], SimulationConfig(), stamp=STAMP)
        with pytest.raises(ValueError, match="2 columns"):
            session.write_row([0.1])
        session.close()

    def test_empty_table(self, tmp_path):
        session = SessionWriter(tmp_path, ["Spread", "Percent dKE"], SimulationConfig(), stamp=STAMP)
        session.close()
        table = read_table(session.path)
        assert table['Spread'].shape == (0,)
