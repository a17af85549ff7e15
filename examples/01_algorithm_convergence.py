#!/usr/bin/env python3
"""
Example 1: Convergence of the fixed-step integrators

Runs one turn of a single proton in a uniform magnetic field with every
fixed-step algorithm and a range of timesteps, and plots the percentage
kinetic-energy change at the end of the turn against dt.

The magnetic force does no work, so any change in kinetic energy is
integration error. Expected slopes on the log-log plot:
- Euler, Euler-Cromer, Verlet: 1
- Heun: 2
- RK4: 4

Run from project root:
    python examples/01_algorithm_convergence.py
"""

import numpy as np
import matplotlib.pyplot as plt
from pathlib import Path
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from emsim.core import Simulation, SimulationConfig, OrbitGeometry

ALGORITHMS = ["euler", "euler_cromer", "heun", "verlet", "rk4"]


def convergence_table(steps_per_turn=(50, 100, 200, 400, 800)):
    """
    Percentage kinetic-energy change after one turn per algorithm and dt.

    Returns
    -------
    dts : np.ndarray
    errors : dict
        Algorithm -> |dKE| percentages, one per dt.
    """
    period = OrbitGeometry.from_config(SimulationConfig()).period
    dts = period / np.array(steps_per_turn, dtype=float)

    errors = {}
    for algorithm in ALGORITHMS:
        errors[algorithm] = []
        for dt in dts:
            config = SimulationConfig(algorithm=algorithm, dt=dt, turn_count=1,
                                      particle_count=1, verbose=False)
            summary = Simulation(config).run()
            errors[algorithm].append(abs(summary.delta_kinetic_percent))
        print(f"{algorithm:15s} " + "  ".join(f"{e:.3e}" for e in errors[algorithm]))

    return dts, errors


def fitted_orders(dts, errors):
    """Slope of log|dKE| against log dt per algorithm."""
    return {
        algorithm: np.polyfit(np.log(dts), np.log(values), 1)[0]
        for algorithm, values in errors.items()
    }


def main():
    print("=" * 60)
    print("Fixed-step integrator convergence, one turn, B = 1e-7 T")
    print("=" * 60)

    dts, errors = convergence_table()

    print("\nFitted orders:")
    for algorithm, order in fitted_orders(dts, errors).items():
        print(f"  {algorithm:15s} {order:5.2f}")

    fig, ax = plt.subplots(figsize=(8, 6))
    for algorithm, values in errors.items():
        ax.loglog(dts, values, 'o-', label=algorithm)
    ax.set_xlabel('dt [s]')
    ax.set_ylabel('|dKE| after one turn [%]')
    ax.grid(True, which='both', alpha=0.3)
    ax.legend()

    output_dir = Path("output")
    output_dir.mkdir(exist_ok=True)
    fig.savefig(output_dir / "algorithm_convergence.png", dpi=150, bbox_inches='tight')
    print(f"\nSaved {output_dir / 'algorithm_convergence.png'}")


if __name__ == "__main__":
    main()
