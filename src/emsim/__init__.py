"""
EMSim: explicit integration of charged-particle bunches in electromagnetic fields.

A bunch of charged particles is advanced through uniform, failing, point-charge
and oscillating cyclotron-gap fields with one of six explicit steppers, while
energy, angular momentum and bunch spread are tracked against the analytic
cyclotron expectations.
"""

__version__ = "1.0.0"

from emsim.core import (
    Simulation,
    SimulationConfig,
    RunState,
    EnsembleDiagnostics,
)
from emsim.bunch import Bunch, ParticleState
from emsim.fields import FieldConfiguration, LorentzForceModel, OscillatingField, PointCharge
from emsim.integration import Algorithm, get_integrator

__all__ = [
    "Simulation",
    "SimulationConfig",
    "RunState",
    "EnsembleDiagnostics",
    "Bunch",
    "ParticleState",
    "FieldConfiguration",
    "LorentzForceModel",
    "OscillatingField",
    "PointCharge",
    "Algorithm",
    "get_integrator",
]
