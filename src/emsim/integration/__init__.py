"""
Integration module: time integrators and adaptive step control.
"""

from emsim.integration.explicit import (
    EulerIntegrator,
    EulerCromerIntegrator,
    HeunIntegrator,
    VelocityVerletIntegrator,
)
from emsim.integration.runge_kutta import RK4Integrator, RKF45Integrator
from emsim.integration.algorithms import Algorithm, get_integrator
from emsim.integration.timestep_control import (
    adapt_step,
    clamp_timestep,
    get_timestep_diagnostics,
)

__all__ = [
    "EulerIntegrator",
    "EulerCromerIntegrator",
    "HeunIntegrator",
    "VelocityVerletIntegrator",
    "RK4Integrator",
    "RKF45Integrator",
    "Algorithm",
    "get_integrator",
    "adapt_step",
    "clamp_timestep",
    "get_timestep_diagnostics",
]
