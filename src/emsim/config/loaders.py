"""
Configuration loaders for YAML and JSON files.

This module provides functions to load and validate run configurations
from YAML/JSON files with support for nested sections and short aliases.
"""

from typing import Dict, Any, Union
from pathlib import Path
import math
import yaml
import json

from emsim.core.simulation import SimulationConfig


# Section -> {file key: SimulationConfig field}
FIELD_MAPPINGS = {
    'integration': {
        'algorithm': 'algorithm',
        'dt': 'dt',
        'tolerance': 'adaptive_tolerance',
        'dt_min': 'dt_min',
        'dt_max': 'dt_max',
        'acceptance': 'rkf45_acceptance',
    },
    'bunch': {
        'particles': 'particle_count',
        'spread_x': 'spread_x',
        'spread_y': 'spread_y',
        'spread_z': 'spread_z',
        'spread_units': 'spread_units',
        'speed': 'initial_speed',
        'velocity_spread': 'velocity_spread_fraction',
        'charge': 'particle_charge',
        'mass': 'particle_mass',
    },
    'fields': {
        'uniform_magnetic': 'uniform_magnetic',
        'failing_field': 'failing_field',
        'point_charge': 'point_charge',
        'cyclotron_gap': 'cyclotron_gap',
        'B': 'magnetic_strength',
        'E': 'electric_strength',
        'phase': 'phase',
        'gap_fraction': 'gap_fraction',
    },
    'run': {
        'mode': 'run_mode',
        'turns': 'turn_count',
        'max_turns': 'max_turns',
        'max_iterations': 'max_iterations',
        'random_seed': 'random_seed',
    },
    'output': {
        'dir': 'output_dir',
        'write_frequency': 'write_frequency',
        'print_frequency': 'print_frequency',
        'print_turns': 'print_turns',
        'turn_report_interval': 'turn_report_interval',
        'positions': 'write_positions',
        'spread': 'write_spread',
        'conserved': 'write_conserved',
        'verbose': 'verbose',
    },
}


def load_config(filename: Union[str, Path], **overrides) -> SimulationConfig:
    """
    Load run configuration from YAML or JSON file.

    Supports nested sections and flattens them to match SimulationConfig fields.
    Also supports command-line style overrides.

    Parameters
    ----------
    filename : str or Path
        Path to configuration file (.yaml, .yml, or .json)
    **overrides : keyword arguments
        Override specific config values (e.g., algorithm="rk4", dt=1e-4)

    Returns
    -------
    config : SimulationConfig
        Validated configuration

    Raises
    ------
    FileNotFoundError
        If configuration file does not exist
    ValueError
        If file format is unsupported or config is invalid

    Examples
    --------
    >>> config = load_config("cyclotron.yaml")
    >>> config = load_config("config.yaml", algorithm="rkf45", dt=1e-4)
    """
    filepath = Path(filename)

    if not filepath.exists():
        raise FileNotFoundError(f"Configuration file not found: {filepath}")

    suffix = filepath.suffix.lower()
    if suffix in ['.yaml', '.yml']:
        config_dict = load_yaml(filepath)
    elif suffix == '.json':
        config_dict = load_json(filepath)
    else:
        raise ValueError(
            f"Unsupported config file format: {suffix}. "
            "Use .yaml, .yml, or .json"
        )

    flat_config = flatten_config(config_dict)
    flat_config.update(overrides)

    try:
        config = SimulationConfig(**flat_config)
    except Exception as e:
        raise ValueError(
            f"Configuration validation failed for {filepath}: {e}"
        ) from e

    return config


def load_yaml(filepath: Path) -> Dict[str, Any]:
    """Load YAML configuration file; an empty file gives an empty dict."""
    with open(filepath, 'r') as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        config_dict = {}

    return config_dict


def load_json(filepath: Path) -> Dict[str, Any]:
    """Load JSON configuration file."""
    with open(filepath, 'r') as f:
        config_dict = json.load(f)

    return config_dict


def flatten_config(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """
    Flatten nested configuration dictionary.

    Converts nested structures like:
        {'fields': {'B': 1e-7, 'cyclotron_gap': True}}
    to:
        {'magnetic_strength': 1e-7, 'cyclotron_gap': True}

    Also handles two shorthands:
        bunch.spread: [sx, sy, sz]   -> spread_x, spread_y, spread_z
        fields.phase_pi: p           -> phase = p * pi

    Parameters
    ----------
    config_dict : Dict[str, Any]
        Nested configuration dictionary

    Returns
    -------
    flat_dict : Dict[str, Any]
        Flattened configuration dictionary
    """
    flat = {}

    for key, value in config_dict.items():
        if key in FIELD_MAPPINGS and isinstance(value, dict):
            mapping = FIELD_MAPPINGS[key]
            for subkey, subvalue in value.items():
                if subkey in mapping:
                    flat[mapping[subkey]] = subvalue
                elif subkey == 'spread' and isinstance(subvalue, (list, tuple)):
                    if len(subvalue) != 3:
                        raise ValueError(f"spread must have 3 components, got {subvalue}")
                    flat['spread_x'], flat['spread_y'], flat['spread_z'] = subvalue
                elif subkey == 'phase_pi':
                    flat['phase'] = float(subvalue) * math.pi
                else:
                    # Pass through unmapped keys
                    flat[subkey] = subvalue
        elif isinstance(value, dict):
            flat.update(flatten_config(value))
        else:
            flat[key] = value

    return flat


def _nest(config_dict: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Inverse of flatten_config for every mapped field."""
    organized: Dict[str, Dict[str, Any]] = {}
    for section, mapping in FIELD_MAPPINGS.items():
        organized[section] = {
            file_key: config_dict[field_name]
            for file_key, field_name in mapping.items()
        }
    return organized


def save_config(config: SimulationConfig, filename: Union[str, Path]) -> None:
    """
    Save SimulationConfig to a YAML or JSON file.

    The file is written in the nested layout load_config() reads.

    Parameters
    ----------
    config : SimulationConfig
        Configuration to save
    filename : str or Path
        Output file path (.yaml, .yml or .json)
    """
    filepath = Path(filename)
    organized = _nest(config.model_dump())

    suffix = filepath.suffix.lower()
    if suffix in ['.yaml', '.yml']:
        with open(filepath, 'w') as f:
            yaml.dump(organized, f, default_flow_style=False, sort_keys=False)
    elif suffix == '.json':
        with open(filepath, 'w') as f:
            json.dump(organized, f, indent=2)
    else:
        raise ValueError(f"Unsupported output format: {suffix}. Use .yaml or .json")


def config_from_dict(config_dict: Dict[str, Any], **overrides) -> SimulationConfig:
    """
    Create SimulationConfig from a (possibly nested) dictionary.

    Parameters
    ----------
    config_dict : Dict[str, Any]
        Configuration dictionary
    **overrides
        Flat field values applied last.

    Returns
    -------
    config : SimulationConfig
        Validated configuration
    """
    flat = flatten_config(config_dict)
    flat.update(overrides)
    return SimulationConfig(**flat)
