"""
Adaptive step control for the embedded Runge-Kutta-Fehlberg 4(5) pair.

Given the six stage increments of an RKF45 step, this module:

1. Builds the order-4 endpoint y and order-5 endpoint z
2. Estimates the local error per particle as |y - z| (position and velocity)
3. Chooses, per particle and per quantity, which endpoint is adopted
4. Recommends the next timestep

    dt_opt = dt * < 0.5 * [ (tol dt / 2 e_x)^(1/4) + (tol dt / 2 e_v)^(1/4) ] >

where <.> averages over particles. The recommendation is only a candidate; the
driver applies it through clamp_timestep(), which keeps the previous step when
the candidate falls outside [dt_min, dt_max].

Design Notes
------------
Standalone functions rather than classes; the RKF45 integrator and the driver
call them directly.

The default acceptance policy ("error_biased") adopts z when the disagreement
is large and y when it is small. Textbook RKF45 always adopts the higher order
solution; that behaviour is available as the "fifth_order" policy.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
import numpy as np

from emsim.core.interfaces import NDArrayFloat


# Combination weights applied to the increments [k1, k2, k3, k4, k5, k6];
# k2 does not enter either endpoint. 2197/4101 is kept exactly as used in
# the validation runs.
ORDER4_WEIGHTS = (25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4101.0, -0.2, 0.0)
ORDER5_WEIGHTS = (16.0 / 135.0, 0.0, 6656.0 / 12825.0, 28561.0 / 56430.0, -9.0 / 50.0, 2.0 / 55.0)

ACCEPTANCE_POLICIES = ("error_biased", "fifth_order")

Increment = Tuple[NDArrayFloat, NDArrayFloat]


@dataclass
class AdaptiveStepResult:
    """
    Outcome of one embedded-pair evaluation.

    Attributes
    ----------
    positions, velocities : NDArrayFloat, shape (N, 3)
        Adopted endpoint.
    position_error, velocity_error : NDArrayFloat, shape (N,)
        |y - z| per particle.
    fifth_order_position, fifth_order_velocity : ndarray of bool, shape (N,)
        Which particles adopted the order-5 value.
    step_factor : float
        Bunch-averaged ratio dt_opt / dt (inf when every error vanishes).
    recommended_dt : float
        Candidate next timestep, dt * step_factor.
    """
    positions: NDArrayFloat
    velocities: NDArrayFloat
    position_error: NDArrayFloat
    velocity_error: NDArrayFloat
    fifth_order_position: np.ndarray
    fifth_order_velocity: np.ndarray
    step_factor: float
    recommended_dt: float


def combine_increments(
    base_positions: NDArrayFloat,
    base_velocities: NDArrayFloat,
    increments: Sequence[Increment],
    weights: Sequence[float]
) -> Tuple[NDArrayFloat, NDArrayFloat]:
    """
    Base state plus a weighted sum of stage increments.

    Parameters
    ----------
    base_positions, base_velocities : NDArrayFloat, shape (N, 3)
        State at the start of the step.
    increments : sequence of (dx, dv)
        Stage increments, each pair of shape (N, 3).
    weights : sequence of float
        One weight per increment.

    Returns
    -------
    positions, velocities : NDArrayFloat, shape (N, 3)
    """
    if len(increments) != len(weights):
        raise ValueError(
            f"got {len(increments)} increments for {len(weights)} weights"
        )
    positions = base_positions.copy()
    velocities = base_velocities.copy()
    for (dx, dv), w in zip(increments, weights):
        if w == 0.0:
            continue
        positions += w * dx
        velocities += w * dv
    return positions, velocities


def optimal_step_factor(error: NDArrayFloat, dt: float, tolerance: float) -> NDArrayFloat:
    """
    Per-particle (tol dt / 2 e)^(1/4).

    A zero error gives an infinite factor, which the clamp later rejects.
    """
    with np.errstate(divide="ignore"):
        return np.power((tolerance * dt) / (2.0 * error), 0.25)


def adapt_step(
    base_positions: NDArrayFloat,
    base_velocities: NDArrayFloat,
    increments: Sequence[Increment],
    dt: float,
    tolerance: float,
    policy: str = "error_biased"
) -> AdaptiveStepResult:
    """
    Evaluate the embedded pair and pick the adopted state.

    Parameters
    ----------
    base_positions, base_velocities : NDArrayFloat, shape (N, 3)
        State at the start of the step.
    increments : sequence of (dx, dv)
        The six stage increments [k1, ..., k6].
    dt : float
        Step that produced the increments [s].
    tolerance : float
        Relative tolerance, > 0.
    policy : str
        "error_biased" or "fifth_order".

    Returns
    -------
    result : AdaptiveStepResult
    """
    if tolerance <= 0.0:
        raise ValueError(f"tolerance must be positive, got {tolerance}")
    if policy not in ACCEPTANCE_POLICIES:
        raise ValueError(f"policy must be one of {list(ACCEPTANCE_POLICIES)}, got '{policy}'")

    y_pos, y_vel = combine_increments(base_positions, base_velocities, increments, ORDER4_WEIGHTS)
    z_pos, z_vel = combine_increments(base_positions, base_velocities, increments, ORDER5_WEIGHTS)

    pos_err = np.linalg.norm(y_pos - z_pos, axis=1)
    vel_err = np.linalg.norm(y_vel - z_vel, axis=1)

    if policy == "fifth_order":
        use_z_pos = np.ones(pos_err.shape, dtype=bool)
        use_z_vel = np.ones(vel_err.shape, dtype=bool)
    else:
        use_z_pos = pos_err >= tolerance * np.linalg.norm(z_pos, axis=1)
        use_z_vel = vel_err >= tolerance * np.linalg.norm(z_vel, axis=1)

    positions = np.where(use_z_pos[:, np.newaxis], z_pos, y_pos)
    velocities = np.where(use_z_vel[:, np.newaxis], z_vel, y_vel)

    per_particle = 0.5 * (
        optimal_step_factor(pos_err, dt, tolerance)
        + optimal_step_factor(vel_err, dt, tolerance)
    )
    step_factor = float(np.mean(per_particle))

    return AdaptiveStepResult(
        positions=positions,
        velocities=velocities,
        position_error=pos_err,
        velocity_error=vel_err,
        fifth_order_position=use_z_pos,
        fifth_order_velocity=use_z_vel,
        step_factor=step_factor,
        recommended_dt=dt * step_factor,
    )


def clamp_timestep(
    candidate_dt: Optional[float],
    previous_dt: float,
    dt_min: float,
    dt_max: float
) -> Tuple[float, str]:
    """
    Accept a candidate timestep only if it lies within [dt_min, dt_max].

    Parameters
    ----------
    candidate_dt : float or None
        Proposed step; None means the integrator made no proposal.
    previous_dt : float
        Step used for the iteration just completed.
    dt_min, dt_max : float
        Inclusive bounds.

    Returns
    -------
    dt : float
        Candidate if accepted, otherwise previous_dt.
    limiter : str
        'none', 'fixed', 'dt_min', 'dt_max' or 'non_finite'.
    """
    if candidate_dt is None:
        return previous_dt, 'fixed'
    if not np.isfinite(candidate_dt):
        return previous_dt, 'non_finite'
    if candidate_dt < dt_min:
        return previous_dt, 'dt_min'
    if candidate_dt > dt_max:
        return previous_dt, 'dt_max'
    return float(candidate_dt), 'none'


def get_timestep_diagnostics(result: AdaptiveStepResult) -> dict:
    """
    Summary statistics of an adaptive step, for logging.

    Returns
    -------
    diagnostics : dict
        Max/mean errors, fraction of particles on the order-5 solution,
        step factor and recommended dt.
    """
    n = max(result.position_error.size, 1)
    return {
        'max_position_error': float(np.max(result.position_error)) if result.position_error.size else 0.0,
        'max_velocity_error': float(np.max(result.velocity_error)) if result.velocity_error.size else 0.0,
        'mean_position_error': float(np.mean(result.position_error)) if result.position_error.size else 0.0,
        'mean_velocity_error': float(np.mean(result.velocity_error)) if result.velocity_error.size else 0.0,
        'fifth_order_position_fraction': float(np.sum(result.fifth_order_position)) / n,
        'fifth_order_velocity_fraction': float(np.sum(result.fifth_order_velocity)) / n,
        'step_factor': result.step_factor,
        'recommended_dt': result.recommended_dt,
    }
