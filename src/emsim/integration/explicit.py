"""
Low-order explicit integrators: Euler, Euler-Cromer, Heun and Velocity-Verlet.

All schemes advance a Bunch in place using the accelerations already set by the
force model for the current state:

    Euler:          x += v dt;             v += a dt
    Euler-Cromer:   v += a dt;             x += v dt
    Heun:           predictor = Euler-Cromer copy, force re-evaluated there;
                    x += dt/2 (v + v_p);   v += dt/2 (a + a_p)
    Velocity-Verlet x += v dt + a dt^2/2;  a' = a(x', v);  v += dt/2 (a + a')

Heun and Verlet evaluate their second force on a detached copy so the bunch's
own accelerations are never overwritten mid-step.

Notes
-----
For a velocity-dependent force such as v x B, Verlet's second evaluation still
sees the old velocity, so the scheme is only first order there. It is second
order for position-dependent forces (point charge).
"""

from typing import Any
import numpy as np

from emsim.core.interfaces import TimeIntegrator, ForceModel


def euler_advance(bunch: Any, dt: float) -> None:
    """Forward Euler update using the old velocity for the position."""
    new_positions = bunch.positions + dt * bunch.velocities
    bunch.velocities = bunch.velocities + dt * bunch.accelerations
    bunch.positions = new_positions


def euler_cromer_advance(bunch: Any, dt: float) -> None:
    """Semi-implicit Euler: velocity first, then position with the new velocity."""
    bunch.velocities = bunch.velocities + dt * bunch.accelerations
    bunch.positions = bunch.positions + dt * bunch.velocities


class EulerIntegrator(TimeIntegrator):
    """Explicit (forward) Euler scheme, first order."""

    def step(self, bunch: Any, dt: float, force_model: ForceModel, **kwargs) -> None:
        euler_advance(bunch, dt)

    @property
    def name(self) -> str:
        return "Euler"


class EulerCromerIntegrator(TimeIntegrator):
    """
    Euler-Cromer (semi-implicit Euler) scheme.

    The velocity update must happen before the position update; reversing the
    order turns this back into forward Euler.
    """

    def step(self, bunch: Any, dt: float, force_model: ForceModel, **kwargs) -> None:
        euler_cromer_advance(bunch, dt)

    @property
    def name(self) -> str:
        return "Euler-Cromer"


class HeunIntegrator(TimeIntegrator):
    """
    Heun's predictor-corrector scheme (explicit trapezoid), second order.

    Performs exactly one extra force evaluation per step, at the Euler-Cromer
    predicted endpoint.
    """

    def step(self, bunch: Any, dt: float, force_model: ForceModel, **kwargs) -> None:
        """
        Advance the bunch by one Heun step.

        Parameters
        ----------
        bunch : Bunch
            Bunch with accelerations set for its current state.
        dt : float
            Timestep [s].
        force_model : ForceModel
            Evaluated once, on the predictor copy.
        """
        predictor = bunch.copy()
        euler_cromer_advance(predictor, dt)
        force_model.apply(predictor)

        new_positions = bunch.positions + 0.5 * dt * (bunch.velocities + predictor.velocities)
        new_velocities = bunch.velocities + 0.5 * dt * (bunch.accelerations + predictor.accelerations)
        bunch.positions = new_positions
        bunch.velocities = new_velocities

    @property
    def name(self) -> str:
        return "Heun"


class VelocityVerletIntegrator(TimeIntegrator):
    """
    Velocity-Verlet scheme.

    Two phases: the position update is finalised first, then the force is
    re-evaluated at the new position before the velocity half-step average.
    """

    def step(self, bunch: Any, dt: float, force_model: ForceModel, **kwargs) -> None:
        old_accel = bunch.accelerations.copy()
        bunch.positions = bunch.positions + dt * bunch.velocities + 0.5 * dt**2 * old_accel

        probe = bunch.copy()
        force_model.apply(probe)

        bunch.velocities = bunch.velocities + 0.5 * dt * (old_accel + probe.accelerations)

    @property
    def name(self) -> str:
        return "Velocity-Verlet"
