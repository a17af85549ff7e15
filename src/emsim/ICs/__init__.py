"""
Initial conditions module: bunch generators.
"""

from emsim.ICs.bunch_generator import BunchGenerator

__all__ = ["BunchGenerator"]
