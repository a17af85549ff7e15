"""
Visualization module: matplotlib quick-look plots (requires the viz extra).
"""

from emsim.visualization.viz_library import (
    MatplotlibVisualizer,
    quick_energy_plot,
    quick_orbit_plot,
    quick_spread_plot,
    save_run_plots,
    snapshot_arrays,
)

__all__ = [
    'MatplotlibVisualizer',
    'quick_energy_plot',
    'quick_orbit_plot',
    'quick_spread_plot',
    'save_run_plots',
    'snapshot_arrays',
]
