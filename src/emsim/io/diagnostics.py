"""
Tab-separated text output for EMSim runs.

Every file starts with a commented parameter header describing the run,
followed by a column heading line and one tab-separated row per record:

    <prefix>_pos.txt      average position        x  y  z
    <prefix>_spread.txt   bunch spread            Spread in x  Spread in y  Spread in z
    <prefix>_consv.txt    conserved quantities    Time  KE  PE  E  L
    <prefix>_boost.txt    per-turn speed change   Turn Num  deltaV   (cyclotron only)
    <prefix>_summary.json end-of-run summary and configuration

Parameter sweeps additionally write one session table with a row per run.

Usage:
    >>> writer = DiagnosticsWriter("output", config)
    >>> summary = Simulation(config, writer=writer).run()   # calls finalize()
"""

import numpy as np
import csv
import json
from pathlib import Path
from typing import Dict, Any, Optional, List, Sequence, Union
from datetime import datetime


TIMESTAMP_FORMAT = "%d_%m_%Y--at--%H-%M"

COLUMN_HEADINGS = {
    'position': ['x', 'y', 'z'],
    'spread': ['Spread in x', 'Spread in y', 'Spread in z'],
    'conserved': ['Time', 'KE', 'PE', 'E', 'L'],
    'boost': ['Turn Num', 'deltaV'],
}

FILE_SUFFIXES = {
    'position': '_pos.txt',
    'spread': '_spread.txt',
    'conserved': '_consv.txt',
    'boost': '_boost.txt',
}


def timestamp(when: Optional[datetime] = None) -> str:
    """File-name friendly timestamp, e.g. 18_10_2026--at--14-05."""
    return (when or datetime.now()).strftime(TIMESTAMP_FORMAT)


def parameter_header(config: Any, mode: int = 1, stamp: Optional[str] = None) -> List[str]:
    """
    Commented header lines describing a run configuration.

    Parameters
    ----------
    config : SimulationConfig
    mode : int
        Preset menu number.
    stamp : str, optional
        Timestamp to record; now if omitted.

    Returns
    -------
    lines : List[str]
        Lines without trailing newlines, each starting with '#'.
    """
    rule = "# " + "-" * 28
    lines = [
        "# EMSIM OUTPUT FILE",
        "# PARAMETERS OF SIMULATION RUN",
        rule,
        f"# Time               : {stamp or timestamp()}",
        rule,
        f"# Mode               : {mode}",
        f"# Magnetic field?    : {config.uniform_magnetic}",
        f"# Failing field?     : {config.failing_field}",
        f"# Point charge?      : {config.point_charge}",
        f"# Cyclotron Set-up?  : {config.cyclotron_gap}",
        f"# Magnetic strength  : {config.magnetic_strength} T",
        f"# Electric strength  : {config.electric_strength} N/C",
        f"# Phase              : {config.phase}",
        f"# Algorithm          : {config.algorithm}",
        f"# Time-step          : {config.dt} s",
    ]
    if config.algorithm == "rkf45":
        lines.append(f"# Tolerance          : {config.adaptive_tolerance}")
    units = "R" if config.spread_units == "radius" else "m"
    lines += [
        f"# Number of Turns    : {config.turn_count}",
        f"# Number of particles: {config.particle_count}",
        f"# Spread in x        : {config.spread_x} {units}",
        f"# Spread in y        : {config.spread_y} {units}",
        f"# Spread in z        : {config.spread_z} {units}",
        f"# Initial average v  : {config.initial_speed} m/s",
        f"# Initial v_sigma    : {config.velocity_spread_fraction * config.initial_speed} m/s",
        rule,
    ]
    return lines


class DiagnosticsWriter:
    """
    Per-run text output writer.

    Receives IterationSnapshot and TurnRecord objects from the driver and
    appends them to tab-separated files. Which files exist follows the
    configuration's write_positions / write_spread / write_conserved flags;
    the boost file is only opened for cyclotron runs.

    Parameters
    ----------
    output_dir : str or Path
        Directory for output files (created if missing).
    config : SimulationConfig
        Configuration of the run, recorded in every header.
    label : str, optional
        Run label appended to the timestamp in file names.
    mode : int, optional
        Preset menu number recorded in the header.
    stamp : str, optional
        Timestamp used for the header and file names.

    Attributes
    ----------
    output_dir : Path
    prefix : str
        Common file-name prefix, "<stamp>_<label>".
    files : Dict[str, Any]
        Open file handles by kind.
    writers : Dict[str, Any]
        csv writers by kind.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        config: Any,
        label: str = "EMSim_output",
        mode: int = 1,
        stamp: Optional[str] = None
    ):
        self.output_dir = Path(output_dir)
        self.config = config
        self.mode = mode
        self.stamp = stamp or timestamp()
        self.prefix = f"{self.stamp}_{label}"

        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.files: Dict[str, Any] = {}
        self.writers: Dict[str, Any] = {}
        self.rows_written: Dict[str, int] = {}
        self.summary_path: Optional[Path] = None

        self._initialize_files()

    def _enabled_kinds(self) -> List[str]:
        kinds = []
        if self.config.write_positions:
            kinds.append('position')
        if self.config.write_spread:
            kinds.append('spread')
        if self.config.write_conserved:
            kinds.append('conserved')
        if self.config.cyclotron_gap:
            kinds.append('boost')
        return kinds

    def _initialize_files(self) -> None:
        """Open one file per enabled kind and write its header."""
        header = parameter_header(self.config, self.mode, self.stamp)
        for kind in self._enabled_kinds():
            path = self.output_dir / f"{self.prefix}{FILE_SUFFIXES[kind]}"
            self.files[kind] = open(path, 'w', newline='')
            for line in header:
                self.files[kind].write(line + "\n")
            self.writers[kind] = csv.writer(self.files[kind], delimiter='\t')
            self.writers[kind].writerow(COLUMN_HEADINGS[kind])
            self.files[kind].flush()
            self.rows_written[kind] = 0

    def path(self, kind: str) -> Path:
        """Path of the file for one kind ('position', 'spread', 'conserved', 'boost')."""
        if kind not in FILE_SUFFIXES:
            raise ValueError(f"kind must be one of {list(FILE_SUFFIXES)}, got '{kind}'")
        return self.output_dir / f"{self.prefix}{FILE_SUFFIXES[kind]}"

    def _write(self, kind: str, row: Sequence[Any]) -> None:
        if kind not in self.writers:
            return
        self.writers[kind].writerow([repr(float(v)) if not isinstance(v, int) else v for v in row])
        self.rows_written[kind] += 1

    def write_snapshot(self, snapshot: Any) -> None:
        """
        Write one IterationSnapshot.

        Parameters
        ----------
        snapshot : IterationSnapshot
            Average position, spread and conserved quantities are written.
        """
        self._write('position', snapshot.average_position)
        self._write('spread', snapshot.spread)
        self._write('conserved', [
            snapshot.time,
            snapshot.kinetic,
            snapshot.potential,
            snapshot.total,
            snapshot.angular_momentum,
        ])

    def write_turn(self, record: Any) -> None:
        """Write the speed change of one completed turn to the boost file."""
        self._write('boost', [record.turn, record.delta_v])

    def finalize(self, summary: Any = None) -> None:
        """
        Close files and write the run summary.

        Parameters
        ----------
        summary : RunSummary, optional
            Written to <prefix>_summary.json together with the configuration.
        """
        for file_handle in self.files.values():
            if not file_handle.closed:
                file_handle.close()

        if summary is not None:
            self.summary_path = self.output_dir / f"{self.prefix}_summary.json"
            payload = {
                'timestamp': self.stamp,
                'mode': self.mode,
                'config': self.config.model_dump(),
                'summary': summary.as_dict(),
            }
            with open(self.summary_path, 'w') as f:
                json.dump(payload, f, indent=2, default=_json_serializer)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.finalize()

    def __repr__(self) -> str:
        """String representation."""
        return f"DiagnosticsWriter(output_dir='{self.output_dir}', prefix='{self.prefix}')"


class SessionWriter:
    """
    One table per parameter sweep, one row per completed run.

    Parameters
    ----------
    output_dir : str or Path
        Directory for the session file (created if missing).
    columns : Sequence[str]
        Column headings.
    config : SimulationConfig
        First run of the sweep, recorded in the header.
    label : str, optional
        File label; the file is <stamp>_<label>.txt.
    mode : int, optional
        Preset menu number recorded in the header.
    stamp : str, optional
        Timestamp for header and file name.
    """

    def __init__(
        self,
        output_dir: Union[str, Path],
        columns: Sequence[str],
        config: Any,
        label: str = "session",
        mode: int = 1,
        stamp: Optional[str] = None
    ):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.columns = list(columns)
        self.stamp = stamp or timestamp()
        self.path = self.output_dir / f"{self.stamp}_{label}.txt"
        self.rows_written = 0

        self.file = open(self.path, 'w', newline='')
        for line in parameter_header(config, mode, self.stamp):
            self.file.write(line + "\n")
        self.writer = csv.writer(self.file, delimiter='\t')
        self.writer.writerow(self.columns)
        self.file.flush()

    def write_row(self, values: Sequence[float]) -> None:
        """Append one run's values; must match the column count."""
        if len(values) != len(self.columns):
            raise ValueError(
                f"row has {len(values)} values for {len(self.columns)} columns"
            )
        self.writer.writerow([repr(float(v)) for v in values])
        self.file.flush()
        self.rows_written += 1

    def close(self) -> None:
        if not self.file.closed:
            self.file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return f"SessionWriter(path='{self.path}', rows={self.rows_written})"


def read_table(path: Union[str, Path]) -> Dict[str, np.ndarray]:
    """
    Read a file written by DiagnosticsWriter or SessionWriter.

    Returns
    -------
    columns : Dict[str, np.ndarray]
        Column heading -> values.
    """
    with open(path, 'r', newline='') as f:
        lines = [line for line in f if not line.startswith('#')]
    reader = csv.reader(lines, delimiter='\t')
    headings = next(reader)
    rows = [[float(v) for v in row] for row in reader if row]
    data = np.array(rows, dtype=np.float64).reshape(len(rows), len(headings))
    return {name: data[:, i] for i, name in enumerate(headings)}


def _json_serializer(obj):
    """JSON serializer for numpy types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, (np.float32, np.float64)):
        return float(obj)
    elif isinstance(obj, (np.int32, np.int64)):
        return int(obj)
    else:
        return str(obj)
