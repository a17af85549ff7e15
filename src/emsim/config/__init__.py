"""
Configuration module: parameter management and preset experiments.

Provides YAML/JSON configuration loading and the twelve preset experiments.
"""

from emsim.config.loaders import (
    load_config,
    save_config,
    config_from_dict,
    flatten_config,
)
from emsim.config.presets import (
    Preset,
    get_preset,
    list_presets,
)

__all__ = [
    'load_config',
    'save_config',
    'config_from_dict',
    'flatten_config',
    'Preset',
    'get_preset',
    'list_presets',
]
