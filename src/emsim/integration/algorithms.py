"""
Algorithm selection: tagged variant over the six steppers.
"""

from enum import Enum
from typing import Union

from emsim.core.interfaces import TimeIntegrator
from emsim.integration.explicit import (
    EulerIntegrator,
    EulerCromerIntegrator,
    HeunIntegrator,
    VelocityVerletIntegrator,
)
from emsim.integration.runge_kutta import RK4Integrator, RKF45Integrator


class Algorithm(str, Enum):
    """Available integration schemes."""
    EULER = "euler"
    EULER_CROMER = "euler_cromer"
    HEUN = "heun"
    VERLET = "verlet"
    RK4 = "rk4"
    RKF45 = "rkf45"

    @property
    def is_adaptive(self) -> bool:
        return self is Algorithm.RKF45

    @classmethod
    def from_code(cls, code: int) -> "Algorithm":
        """Map the numeric menu codes 1-6 to an algorithm."""
        order = list(cls)
        if not 1 <= code <= len(order):
            raise ValueError(f"algorithm code must be in 1..{len(order)}, got {code}")
        return order[code - 1]


def get_integrator(
    algorithm: Union[Algorithm, str],
    tolerance: float = 0.01,
    policy: str = "error_biased"
) -> TimeIntegrator:
    """
    Build the integrator for an algorithm.

    Parameters
    ----------
    algorithm : Algorithm or str
        Scheme to use.
    tolerance : float
        RKF45 relative tolerance (ignored by fixed-step schemes).
    policy : str
        RKF45 acceptance policy (ignored by fixed-step schemes).

    Returns
    -------
    integrator : TimeIntegrator
    """
    try:
        algorithm = Algorithm(algorithm)
    except ValueError:
        valid = [a.value for a in Algorithm]
        raise ValueError(f"algorithm must be one of {valid}, got '{algorithm}'") from None

    if algorithm is Algorithm.EULER:
        return EulerIntegrator()
    if algorithm is Algorithm.EULER_CROMER:
        return EulerCromerIntegrator()
    if algorithm is Algorithm.HEUN:
        return HeunIntegrator()
    if algorithm is Algorithm.VERLET:
        return VelocityVerletIntegrator()
    if algorithm is Algorithm.RK4:
        return RK4Integrator()
    return RKF45Integrator(tolerance=tolerance, policy=policy)
