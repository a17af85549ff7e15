#!/usr/bin/env python3
"""
Example 2: Cyclotron acceleration

Loads configs/cyclotron.yaml, runs a single proton through 100 turns of a
cyclotron gap and compares the kinetic energy gained with the analytic
expectation 2 q V sin(phi) per turn.

Writes the usual tab-separated output files plus energy, orbit and spread
plots to output/cyclotron.

Run from project root:
    python examples/02_cyclotron_demo.py
"""

from pathlib import Path
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from emsim.config import load_config
from emsim.core import Simulation
from emsim.io import DiagnosticsWriter

try:
    from emsim.visualization import save_run_plots
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False
    print("Warning: matplotlib not available, skipping plots")


def main():
    config_path = Path(__file__).parent.parent / "configs" / "cyclotron.yaml"
    config = load_config(config_path, turn_report_interval=25)

    writer = DiagnosticsWriter(config.output_dir, config, label="cyclotron_demo", mode=6)
    sim = Simulation(config, writer=writer)
    summary = sim.run()

    print()
    print("=" * 60)
    print("Cyclotron energy gain")
    print("=" * 60)
    print(f"Turns completed:          {summary.turns_completed}")
    print(f"Kinetic energy change:    {summary.delta_kinetic_percent:.4e} %")
    print(f"Expected (phase-shifted): {summary.expected_energy_gain_percent:.4e} %")
    print(f"Expected (synchronous):   {summary.synchronous_energy_gain_percent:.4e} %")
    print(f"Simulation error:         {summary.simulation_error_percent:.4e} %")

    if sim.turns:
        first, last = sim.turns[0], sim.turns[-1]
        print(f"Speed gain, turn {first.turn}: {first.delta_v:.4e} m/s")
        print(f"Speed gain, turn {last.turn}: {last.delta_v:.4e} m/s")

    if HAS_MATPLOTLIB:
        for path in save_run_plots(sim, config.output_dir, prefix=writer.prefix):
            print(f"Saved {path}")


if __name__ == "__main__":
    main()
