"""
YAML configuration loader with schema validation.

Loads the simulation and flocking sections of a config file into
dataclasses, validating against a JSON schema when one is available.
"""

import yaml
import json
from pathlib import Path
from typing import Dict, Optional
import jsonschema

from .data_types import SimulationConfig
from .flocking import FlockingParams

SCHEMA_FILENAME = "simulation.schema.json"


class ConfigLoadError(Exception):
    """Raised when config loading or validation fails"""
    pass


def load_yaml(file_path: Path) -> dict:
    """Load YAML file and return parsed dict"""
    if not file_path.exists():
        raise ConfigLoadError(f"File not found: {file_path}")

    try:
        with open(file_path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"YAML parse error in {file_path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Expected a mapping at top level of {file_path}")
    return data


def validate_against_schema(data: dict, schema_path: Path, data_path: Path):
    """Validate data dict against JSON schema"""
    if not schema_path.exists():
        # Schema validation optional
        return

    try:
        with open(schema_path, 'r') as f:
            schema = json.load(f)
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        raise ConfigLoadError(f"Validation error in {data_path}: {e.message}")
    except json.JSONDecodeError as e:
        raise ConfigLoadError(f"Invalid JSON schema {schema_path}: {e}")


def _load_document(file_path: Path, schema_dir: Optional[Path]) -> dict:
    file_path = Path(file_path)
    data = load_yaml(file_path)

    if schema_dir:
        validate_against_schema(data, Path(schema_dir) / SCHEMA_FILENAME, file_path)

    return data


def _build(cls, section: dict, file_path: Path):
    try:
        return cls(**section)
    except (TypeError, ValueError) as e:
        raise ConfigLoadError(f"Invalid {cls.__name__} in {file_path}: {e}")


def load_config(file_path: Path, schema_dir: Optional[Path] = None) -> SimulationConfig:
    """Load the `simulation` section of a config file"""
    data = _load_document(file_path, schema_dir)
    return _build(SimulationConfig, data.get('simulation') or {}, file_path)


def load_flocking_params(file_path: Path, schema_dir: Optional[Path] = None) -> FlockingParams:
    """Load the `flocking` section of a config file"""
    data = _load_document(file_path, schema_dir)
    return _build(FlockingParams, data.get('flocking') or {}, file_path)


def load_all(file_path: Path, schema_dir: Optional[Path] = None) -> Dict[str, object]:
    """
    Load every section of a config file.

    Args:
        file_path: Path to YAML config
        schema_dir: Optional directory holding simulation.schema.json

    Returns:
        Dict with keys: simulation, flocking
    """
    data = _load_document(file_path, schema_dir)
    return {
        'simulation': _build(SimulationConfig, data.get('simulation') or {}, file_path),
        'flocking': _build(FlockingParams, data.get('flocking') or {}, file_path),
    }
