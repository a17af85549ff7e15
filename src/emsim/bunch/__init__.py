"""
Bunch module: particle state containers.
"""

from emsim.bunch.particles import Bunch, ParticleState

__all__ = ["Bunch", "ParticleState"]
