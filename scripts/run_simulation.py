#!/usr/bin/env python3
"""
Command-line entrypoint for EMSim runs.

Runs a single configuration (preset "user") or one of the preset experiments:
1. Build the base configuration from a YAML/JSON file and command-line options
2. Expand the chosen preset into its runs
3. Run each configuration, writing tab-separated output files
4. For parameter sweeps, collect one session-table row per run

Usage:
    python scripts/run_simulation.py
    python scripts/run_simulation.py --algorithm rk4 --dt 1e-4 --turns 2
    python scripts/run_simulation.py --preset phase_scan --output-dir output
    python scripts/run_simulation.py --config configs/cyclotron.yaml --plot
    python scripts/run_simulation.py --list-presets
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add src to path if running from repository root
src_path = Path(__file__).parent.parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from emsim.core import Simulation, SimulationConfig, RunSummary
from emsim.config import load_config, get_preset, list_presets, Preset
from emsim.io import DiagnosticsWriter, SessionWriter, timestamp


def build_parser() -> argparse.ArgumentParser:
    """Command-line parser."""
    parser = argparse.ArgumentParser(
        description="Integrate charged-particle bunches through electromagnetic fields",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("--config", "-c", type=str, default=None,
                        help="YAML or JSON configuration file")
    parser.add_argument("--preset", "-p", type=str, default="user",
                        help="Preset name or menu number (see --list-presets)")
    parser.add_argument("--list-presets", action="store_true",
                        help="List presets and exit")

    # Overrides
    parser.add_argument("--algorithm", "-a", type=str, default=None,
                        help="euler, euler_cromer, heun, verlet, rk4 or rkf45")
    parser.add_argument("--dt", type=float, default=None,
                        help="Timestep [s]")
    parser.add_argument("--tolerance", type=float, default=None,
                        help="RKF45 tolerance")
    parser.add_argument("--turns", type=int, default=None,
                        help="Number of turns")
    parser.add_argument("--particles", "-n", type=int, default=None,
                        help="Number of particles")
    parser.add_argument("--output-dir", "-o", type=str, default=None,
                        help="Output directory; no files are written if omitted")

    # Misc
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed")
    parser.add_argument("--plot", action="store_true",
                        help="Save energy, orbit and spread plots of each run")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Suppress verbose output")

    return parser


def config_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """SimulationConfig fields set on the command line."""
    overrides: Dict[str, Any] = {}
    for option, field_name in (
        ("algorithm", "algorithm"),
        ("dt", "dt"),
        ("tolerance", "adaptive_tolerance"),
        ("turns", "turn_count"),
        ("particles", "particle_count"),
        ("output_dir", "output_dir"),
        ("seed", "random_seed"),
    ):
        value = getattr(args, option)
        if value is not None:
            overrides[field_name] = value
    if args.quiet:
        overrides["verbose"] = False
    return overrides


def build_base_config(args: argparse.Namespace) -> SimulationConfig:
    overrides = config_overrides(args)
    if args.config:
        return load_config(args.config, **overrides)
    return SimulationConfig(**overrides)


def resolve_preset(name: str, base: SimulationConfig) -> Preset:
    """Accept a preset name or its menu number."""
    if name.isdigit():
        return get_preset(int(name), base)
    return get_preset(name, base)


def run_preset(preset: Preset, plot: bool = False, quiet: bool = False) -> List[RunSummary]:
    """
    Run every configuration of a preset.

    Per-run files go to config.output_dir when it is set. Sweeps write their
    session tables there instead of per-run files.
    """
    summaries = []
    session: Optional[SessionWriter] = None
    session_label: Optional[str] = None
    stamp = timestamp()

    try:
        for index, config in enumerate(preset.configs, start=1):
            if not quiet:
                print(f"\nRun {index}/{len(preset)}: {preset.name} ({config.algorithm}, dt={config.dt:.3e})")

            writer = None
            if config.output_dir and not preset.is_sweep:
                label = "EMSim_output" if len(preset) == 1 else f"{preset.name}_run{index:03d}"
                writer = DiagnosticsWriter(
                    config.output_dir, config, label=label, mode=preset.mode, stamp=stamp
                )

            try:
                sim = Simulation(config, writer=writer)
                summary = sim.run()
            finally:
                if writer is not None:
                    writer.finalize()
            summaries.append(summary)

            if preset.is_sweep and config.output_dir:
                group = preset.group_of(config)
                if group != session_label:
                    if session is not None:
                        session.close()
                    session = SessionWriter(
                        config.output_dir, preset.session_columns, config,
                        label=group, mode=preset.mode, stamp=stamp
                    )
                    session_label = group
                session.write_row(preset.session_row(config, summary))

            if plot and config.output_dir:
                from emsim.visualization import save_run_plots
                save_run_plots(sim, config.output_dir, prefix=f"{stamp}_{preset.name}_run{index:03d}")
    finally:
        if session is not None:
            session.close()

    return summaries


def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list_presets:
        for number, name in enumerate(list_presets(), start=1):
            print(f"{number:3d}  {name}")
        return 0

    base = build_base_config(args)
    preset = resolve_preset(args.preset, base)

    if not args.quiet:
        print("=" * 70)
        print("EMSim: charged-particle bunches in electromagnetic fields")
        print("=" * 70)
        print(f"Preset: {preset.mode} ({preset.name}) - {preset.description}")
        print(f"Runs: {len(preset)}")

    summaries = run_preset(preset, plot=args.plot, quiet=args.quiet)

    if not args.quiet:
        print("\n" + "=" * 70)
        print("Simulation complete!")
        for summary in summaries[-5:]:
            print(f"  {summary.algorithm:15s} turns={summary.turns_completed:6d}  "
                  f"period error={summary.period_error_percent:.3e} %  "
                  f"simulation error={summary.simulation_error_percent:.3e} %")
        if base.output_dir:
            print(f"Output directory: {base.output_dir}")
        print("=" * 70)

    return 0


if __name__ == "__main__":
    sys.exit(main())
