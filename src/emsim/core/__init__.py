"""
Core module: interfaces, ensemble diagnostics and the run driver.
"""

from emsim.core.interfaces import (
    ForceModel,
    TimeIntegrator,
    ICGenerator,
    NDArrayFloat,
)
from emsim.core.ensemble_diagnostics import EnsembleDiagnostics
from emsim.core.simulation import (
    Simulation,
    SimulationConfig,
    OrbitGeometry,
    RunState,
    RunStatus,
    RunSummary,
    IterationSnapshot,
    TurnRecord,
    NumericalDivergenceError,
    build_bunch,
    build_force_model,
    determine_turn_end,
    expected_delta_v,
    spread_settled,
)

__all__ = [
    "ForceModel",
    "TimeIntegrator",
    "ICGenerator",
    "NDArrayFloat",
    "EnsembleDiagnostics",
    "Simulation",
    "SimulationConfig",
    "OrbitGeometry",
    "RunState",
    "RunStatus",
    "RunSummary",
    "IterationSnapshot",
    "TurnRecord",
    "NumericalDivergenceError",
    "build_bunch",
    "build_force_model",
    "determine_turn_end",
    "expected_delta_v",
    "spread_settled",
]
