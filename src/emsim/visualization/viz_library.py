"""
Visualization Library

Pre-configured matplotlib plots for EMSim runs:
- Conserved-quantity history (KE, PE, E, L) with relative energy drift
- Orbit of the bunch-average position
- Bunch spread history
- Parameter-sweep session tables

Architecture:
- MatplotlibVisualizer: static plots
- Convenience functions for one-line plotting from a finished Simulation
"""

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
from matplotlib.axes import Axes
from typing import Any, Dict, List, Optional, Sequence, Tuple
from pathlib import Path

# Type aliases
NDArrayFloat = np.ndarray


class MatplotlibVisualizer:
    """
    Matplotlib-based plots for EMSim diagnostics.
    """

    @staticmethod
    def plot_conserved_quantities(
        times: NDArrayFloat,
        history: Dict[str, NDArrayFloat],
        title: str = "Conserved Quantities",
        figsize: Tuple[float, float] = (10, 8),
        save_path: Optional[str] = None
    ) -> Tuple[Figure, Tuple[Axes, Axes]]:
        """
        Plot energy components and angular momentum against time.

        Parameters
        ----------
        times : np.ndarray
            Time array [s].
        history : dict
            Keys 'kinetic', 'potential', 'total' and 'angular_momentum'.
        title : str, optional
            Plot title.
        figsize : tuple, optional
            Figure size.
        save_path : str, optional
            Path to save figure.

        Returns
        -------
        fig : Figure
        axes : tuple of Axes
            (ax_energy, ax_drift)
        """
        fig, (ax1, ax2) = plt.subplots(2, 1, figsize=figsize, sharex=True)

        ax1.plot(times, history['kinetic'], 'r-', label='Kinetic', linewidth=2)
        ax1.plot(times, history['potential'], 'b-', label='Potential', linewidth=2)
        ax1.plot(times, history['total'], 'k--', label='Total', linewidth=2.5)
        ax1.set_ylabel('Energy [J]', fontsize=12)
        ax1.set_title(title, fontsize=14, fontweight='bold')
        ax1.legend(loc='best', fontsize=10)
        ax1.grid(True, alpha=0.3)

        total = np.asarray(history['total'], dtype=np.float64)
        L = np.asarray(history['angular_momentum'], dtype=np.float64)
        with np.errstate(divide='ignore', invalid='ignore'):
            energy_drift = (total - total[0]) / abs(total[0])
            L_drift = (L - L[0]) / abs(L[0])

        ax2.plot(times, energy_drift, 'k-', label='ΔE / E₀', linewidth=2)
        ax2.plot(times, L_drift, 'g-', label='ΔL / L₀', linewidth=1.5)
        ax2.axhline(y=0, color='r', linestyle='--', alpha=0.5, linewidth=1.5)
        ax2.set_xlabel('Time [s]', fontsize=12)
        ax2.set_ylabel('Relative drift', fontsize=12)
        ax2.legend(loc='best', fontsize=10)
        ax2.grid(True, alpha=0.3)

        plt.tight_layout()

        if save_path:
            plt.savefig(save_path, dpi=150, bbox_inches='tight')

        return fig, (ax1, ax2)

    @staticmethod
    def plot_orbit(
        positions: NDArrayFloat,
        centre: Optional[NDArrayFloat] = None,
        title: str = "Bunch Orbit",
        figsize: Tuple[float, float] = (8, 8),
        save_path: Optional[str] = None
    ) -> Tuple[Figure, Axes]:
        """
        Plot the x-y path of the bunch-average position.

        Parameters
        ----------
        positions : np.ndarray, shape (N_times, 3)
            Average positions along the run.
        centre : np.ndarray, shape (3,), optional
            Orbit centre, marked if given.
        """
        fig, ax = plt.subplots(figsize=figsize)

        x, y = positions[:, 0], positions[:, 1]
        ax.plot(x, y, color='blue', linewidth=2, alpha=0.7)
        ax.scatter([x[0]], [y[0]], color='green', s=100, marker='o', label='Start', zorder=10)
        ax.scatter([x[-1]], [y[-1]], color='red', s=100, marker='x', label='End', zorder=10)

        if centre is not None:
            ax.scatter([centre[0]], [centre[1]], color='black', s=200, marker='*',
                       label='Centre', zorder=10)

        ax.set_xlabel('x [m]', fontsize=12)
        ax.set_ylabel('y [m]', fontsize=12)
        ax.set_title(title, fontsize=14, fontweight='bold')
        ax.set_aspect('equal')
        ax.legend()
        ax.grid(True, alpha=0.3)

        plt.tight_layout()

        if save_path:
            plt.savefig(save_path, dpi=150, bbox_inches='tight')

        return fig, ax

    @staticmethod
    def plot_spread(
        times: NDArrayFloat,
        spreads: NDArrayFloat,
        title: str = "Bunch Spread",
        figsize: Tuple[float, float] = (10, 5),
        save_path: Optional[str] = None
    ) -> Tuple[Figure, Axes]:
        """Plot the spread along each axis, spreads of shape (N_times, 3)."""
        fig, ax = plt.subplots(figsize=figsize)

        for i, (axis, colour) in enumerate(zip("xyz", ('r', 'g', 'b'))):
            ax.plot(times, spreads[:, i], color=colour, label=f'Spread in {axis}', linewidth=2)

        ax.set_xlabel('Time [s]', fontsize=12)
        ax.set_ylabel('Spread [m]', fontsize=12)
        ax.set_title(title, fontsize=14, fontweight='bold')
        ax.legend(loc='best', fontsize=10)
        ax.grid(True, alpha=0.3)

        plt.tight_layout()

        if save_path:
            plt.savefig(save_path, dpi=150, bbox_inches='tight')

        return fig, ax

    @staticmethod
    def plot_session(
        table: Dict[str, NDArrayFloat],
        x_column: str,
        y_column: str,
        log_x: bool = False,
        log_y: bool = False,
        figsize: Tuple[float, float] = (8, 6),
        save_path: Optional[str] = None
    ) -> Tuple[Figure, Axes]:
        """
        Plot one column of a sweep session table against another.

        Parameters
        ----------
        table : dict
            Column name -> values, as returned by emsim.io.read_table().
        x_column, y_column : str
            Columns to plot.
        log_x, log_y : bool
            Logarithmic axes.
        """
        fig, ax = plt.subplots(figsize=figsize)

        ax.plot(table[x_column], table[y_column], 'ko-', markersize=4, linewidth=1)
        if log_x:
            ax.set_xscale('log')
        if log_y:
            ax.set_yscale('log')

        ax.set_xlabel(x_column, fontsize=12)
        ax.set_ylabel(y_column, fontsize=12)
        ax.grid(True, alpha=0.3, which='both')

        plt.tight_layout()

        if save_path:
            plt.savefig(save_path, dpi=150, bbox_inches='tight')

        return fig, ax


# Convenience functions

def snapshot_arrays(snapshots: Sequence[Any]) -> Dict[str, NDArrayFloat]:
    """Stack a list of IterationSnapshot records into arrays keyed by field."""
    if not snapshots:
        raise ValueError("No snapshots to plot")
    return {
        'time': np.array([s.time for s in snapshots]),
        'average_position': np.array([s.average_position for s in snapshots]),
        'spread': np.array([s.spread for s in snapshots]),
        'kinetic': np.array([s.kinetic for s in snapshots]),
        'potential': np.array([s.potential for s in snapshots]),
        'total': np.array([s.total for s in snapshots]),
        'angular_momentum': np.array([s.angular_momentum for s in snapshots]),
    }


def quick_energy_plot(
    snapshots: Sequence[Any],
    save_path: Optional[str] = None
) -> Tuple[Figure, Tuple[Axes, Axes]]:
    """
    Conserved-quantity plot of a run (one-liner).

    Examples
    --------
    >>> sim = Simulation(config)
    >>> sim.run()
    >>> fig, axes = quick_energy_plot(sim.snapshots, 'energy.png')
    """
    arrays = snapshot_arrays(snapshots)
    return MatplotlibVisualizer.plot_conserved_quantities(
        arrays['time'], arrays, save_path=save_path
    )


def quick_orbit_plot(
    snapshots: Sequence[Any],
    centre: Optional[NDArrayFloat] = None,
    save_path: Optional[str] = None
) -> Tuple[Figure, Axes]:
    """
    Average-position orbit of a run (one-liner).

    Examples
    --------
    >>> fig, ax = quick_orbit_plot(sim.snapshots, sim.geometry.centre, 'orbit.png')
    """
    arrays = snapshot_arrays(snapshots)
    return MatplotlibVisualizer.plot_orbit(
        arrays['average_position'], centre=centre, save_path=save_path
    )


def quick_spread_plot(
    snapshots: Sequence[Any],
    save_path: Optional[str] = None
) -> Tuple[Figure, Axes]:
    """Spread history of a run (one-liner)."""
    arrays = snapshot_arrays(snapshots)
    return MatplotlibVisualizer.plot_spread(arrays['time'], arrays['spread'], save_path=save_path)


def save_run_plots(simulation: Any, output_dir: str, prefix: str = "run") -> List[str]:
    """
    Write energy, orbit and spread plots of a finished run.

    Returns
    -------
    paths : List[str]
        Saved figure paths.
    """
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)

    paths = []
    for name, plot in (
        ("energy", lambda p: quick_energy_plot(simulation.snapshots, p)),
        ("orbit", lambda p: quick_orbit_plot(simulation.snapshots, simulation.geometry.centre, p)),
        ("spread", lambda p: quick_spread_plot(simulation.snapshots, p)),
    ):
        path = str(directory / f"{prefix}_{name}.png")
        fig, _ = plot(path)
        plt.close(fig)
        paths.append(path)
    return paths
