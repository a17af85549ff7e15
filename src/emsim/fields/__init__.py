"""
Fields module: electromagnetic sources and the Lorentz force model.
"""

from emsim.fields.lorentz import (
    FieldConfiguration,
    LorentzForceModel,
    OscillatingField,
    PointCharge,
    FAILING_FIELD_FACTOR,
)

__all__ = [
    "FieldConfiguration",
    "LorentzForceModel",
    "OscillatingField",
    "PointCharge",
    "FAILING_FIELD_FACTOR",
]
