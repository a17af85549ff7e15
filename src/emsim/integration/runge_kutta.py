"""
Runge-Kutta integrators: classical RK4 and embedded RKF45.

Each stage is built on an independent Bunch copy. A stage "advance" from the
base state uses the derivative (velocity, acceleration) evaluated at a probe
state:

    advance(base, probe):  v = v_base + dt a_probe;  x = x_base + dt v_probe

so its increment is k = (dt v_probe, dt a_probe). The first stage of both
schemes is an Euler-Cromer step of the base state.

RK4:
    k1 = EC(base)
    k2 = advance(base, base + k1/2)
    k3 = advance(base, base + k2/2)
    k4 = advance(base, base + k3)
    x_new = base + (k1 + 2 k2 + 2 k3 + k4) / 6

RKF45 probes base + sum_j s_ij k_j with the Fehlberg stage weights below, then
hands the six increments to timestep_control.adapt_step().
"""

from typing import Any, List, Optional, Sequence, Tuple
import numpy as np

from emsim.core.interfaces import TimeIntegrator, ForceModel, NDArrayFloat
from emsim.integration.explicit import euler_cromer_advance
from emsim.integration.timestep_control import (
    AdaptiveStepResult,
    ACCEPTANCE_POLICIES,
    adapt_step,
    combine_increments,
)


RK4_WEIGHTS = (1.0 / 6.0, 2.0 / 6.0, 2.0 / 6.0, 1.0 / 6.0)

# Fehlberg stage weights: probe point for stage i is base + sum_j s_ij k_j
RKF45_STAGE_WEIGHTS = (
    (1.0 / 4.0,),
    (3.0 / 32.0, 9.0 / 32.0),
    (1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0),
    (439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0),
    (-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0),
)

Increment = Tuple[NDArrayFloat, NDArrayFloat]


def euler_cromer_increment(base: Any, dt: float) -> Increment:
    """Increment of an Euler-Cromer step taken on a copy of base."""
    stage = base.copy()
    euler_cromer_advance(stage, dt)
    return stage.positions - base.positions, stage.velocities - base.velocities


def probe_increment(
    base: Any,
    increments: Sequence[Increment],
    weights: Sequence[float],
    dt: float,
    force_model: ForceModel
) -> Increment:
    """
    Increment from the derivative at base + sum_j w_j k_j.

    The probe is a fresh copy; base is not modified.
    """
    positions, velocities = combine_increments(
        base.positions, base.velocities, increments, weights
    )
    probe = base.with_state(positions, velocities)
    force_model.apply(probe)
    return dt * probe.velocities, dt * probe.accelerations


class RK4Integrator(TimeIntegrator):
    """
    Classical fourth-order Runge-Kutta.

    Three extra force evaluations per step (at the two midpoints and the
    endpoint); the base acceleration comes from the driver.
    """

    def step(self, bunch: Any, dt: float, force_model: ForceModel, **kwargs) -> None:
        """
        Advance the bunch by one RK4 step.

        Parameters
        ----------
        bunch : Bunch
            Bunch with accelerations set for its current state.
        dt : float
            Timestep [s].
        force_model : ForceModel
            Evaluated on the three probe copies.
        """
        k1 = euler_cromer_increment(bunch, dt)
        k2 = probe_increment(bunch, [k1], [0.5], dt, force_model)
        k3 = probe_increment(bunch, [k2], [0.5], dt, force_model)
        k4 = probe_increment(bunch, [k3], [1.0], dt, force_model)

        bunch.positions, bunch.velocities = combine_increments(
            bunch.positions, bunch.velocities, [k1, k2, k3, k4], RK4_WEIGHTS
        )

    @property
    def name(self) -> str:
        return "RK4"


class RKF45Integrator(TimeIntegrator):
    """
    Runge-Kutta-Fehlberg 4(5) with an embedded error estimate.

    Attributes
    ----------
    tolerance : float
        Relative tolerance for acceptance and step recommendation.
    policy : str
        Acceptance policy, see timestep_control.
    last_result : AdaptiveStepResult or None
        Outcome of the most recent step.
    """

    def __init__(self, tolerance: float = 0.01, policy: str = "error_biased"):
        """
        Initialize RKF45 integrator.

        Parameters
        ----------
        tolerance : float, default 0.01
            Relative tolerance (> 0).
        policy : str, default "error_biased"
            "error_biased" or "fifth_order".
        """
        if tolerance <= 0.0:
            raise ValueError(f"tolerance must be positive, got {tolerance}")
        if policy not in ACCEPTANCE_POLICIES:
            raise ValueError(f"policy must be one of {list(ACCEPTANCE_POLICIES)}, got '{policy}'")
        self.tolerance = tolerance
        self.policy = policy
        self.last_result: Optional[AdaptiveStepResult] = None

    def stage_increments(self, bunch: Any, dt: float, force_model: ForceModel) -> List[Increment]:
        """Compute the six Fehlberg increments k1..k6 from the bunch state."""
        increments = [euler_cromer_increment(bunch, dt)]
        for weights in RKF45_STAGE_WEIGHTS:
            increments.append(
                probe_increment(bunch, increments, weights, dt, force_model)
            )
        return increments

    def step(self, bunch: Any, dt: float, force_model: ForceModel, **kwargs) -> None:
        increments = self.stage_increments(bunch, dt, force_model)
        result = adapt_step(
            bunch.positions,
            bunch.velocities,
            increments,
            dt,
            kwargs.get('tolerance', self.tolerance),
            policy=self.policy,
        )
        bunch.positions = result.positions
        bunch.velocities = result.velocities
        self.last_result = result

    def estimate_timestep(self, bunch: Any, dt: float, **kwargs) -> Optional[float]:
        """Recommended next step from the last embedded error estimate."""
        if self.last_result is None:
            return None
        return self.last_result.recommended_dt

    @property
    def name(self) -> str:
        return "RKF45"
