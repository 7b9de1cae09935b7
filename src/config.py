"""Configuration loading and validation module.

This module handles all YAML configuration loading and provides a typed
Config dataclass consumed by all other modules.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import yaml


DEVICE_TYPES = ("simulated", "sysfs")

# Frequencies above this would floor the sampling period to 0 microseconds
MAX_FREQUENCY_HZ = 1_000_000


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


@dataclass
class SamplingConfig:
    """Sampling behavior configuration."""
    frequency_hz: int


@dataclass
class OutputConfig:
    """Trace file output configuration."""
    directory: str = "."
    prefix: str = "power-trace"


@dataclass
class DeviceConfig:
    """A single monitored device."""
    id: str
    type: str = "simulated"
    path: Optional[str] = None
    seed: Optional[int] = None
    attributes: Dict[str, str] = field(default_factory=dict)


@dataclass
class Config:
    """Root configuration dataclass."""
    sampling: SamplingConfig
    output: OutputConfig
    devices: List[DeviceConfig]


def _get_nested(data: dict, path: str, required: bool = True, default: Any = None) -> Any:
    """Get a nested value from a dictionary using dot notation.

    Args:
        data: The dictionary to search
        path: Dot-separated path to the value (e.g., "sampling.frequency_hz")
        required: If True, raises ConfigError when value is missing
        default: Default value if not required and missing

    Returns:
        The value at the path, or default if not required and missing

    Raises:
        ConfigError: If required value is missing
    """
    keys = path.split(".")
    current = data

    for key in keys:
        if not isinstance(current, dict):
            if required:
                raise ConfigError(f"Configuration path '{path}' is not a valid nested structure")
            return default
        if key not in current:
            if required:
                raise ConfigError(f"Missing required configuration field: {path}")
            return default
        current = current[key]

    return current


def _validate_type(value: Any, expected_type: type, field_name: str) -> None:
    """Validate that a value is of the expected type.

    Args:
        value: The value to validate
        expected_type: The expected type
        field_name: Name of the field for error messages

    Raises:
        ConfigError: If value is not of the expected type
    """
    if expected_type is list:
        if not isinstance(value, list):
            raise ConfigError(
                f"Field '{field_name}' must be a list, got {type(value).__name__}"
            )
    elif expected_type is dict:
        if not isinstance(value, dict):
            raise ConfigError(
                f"Field '{field_name}' must be a mapping, got {type(value).__name__}"
            )
    elif expected_type is int:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConfigError(
                f"Field '{field_name}' must be an integer, got {type(value).__name__}"
            )
    elif expected_type is str:
        if not isinstance(value, str):
            raise ConfigError(
                f"Field '{field_name}' must be a string, got {type(value).__name__}"
            )
    else:
        if not isinstance(value, expected_type):
            raise ConfigError(
                f"Field '{field_name}' must be of type {expected_type.__name__}, got {type(value).__name__}"
            )


def validate_frequency(frequency_hz: Any, field_name: str = "sampling.frequency_hz") -> None:
    """Validate a sampling frequency in Hz.

    Raises:
        ConfigError: If the frequency is not a positive number small enough
            to yield a period of at least one microsecond
    """
    if isinstance(frequency_hz, bool) or not isinstance(frequency_hz, (int, float)):
        raise ConfigError(
            f"Field '{field_name}' must be a number, got {type(frequency_hz).__name__}"
        )
    if not frequency_hz > 0:
        raise ConfigError(f"{field_name} must be > 0")
    if frequency_hz > MAX_FREQUENCY_HZ:
        raise ConfigError(f"{field_name} must be <= {MAX_FREQUENCY_HZ}")


def _load_device(entry: Any, index: int) -> DeviceConfig:
    """Validate one entry of the devices list."""
    prefix = f"devices[{index}]"
    _validate_type(entry, dict, prefix)

    device_id = _get_nested(entry, "id")
    _validate_type(device_id, str, f"{prefix}.id")
    if not device_id:
        raise ConfigError(f"{prefix}.id must not be empty")

    device_type = _get_nested(entry, "type", required=False, default="simulated")
    _validate_type(device_type, str, f"{prefix}.type")
    if device_type not in DEVICE_TYPES:
        raise ConfigError(
            f"{prefix}.type must be one of {', '.join(DEVICE_TYPES)}, got {device_type!r}"
        )

    path = _get_nested(entry, "path", required=False, default=None)
    if path is not None:
        _validate_type(path, str, f"{prefix}.path")
    if device_type == "sysfs" and not path:
        raise ConfigError(f"{prefix}.path is required for sysfs devices")

    seed = _get_nested(entry, "seed", required=False, default=None)
    if seed is not None:
        _validate_type(seed, int, f"{prefix}.seed")

    attributes = _get_nested(entry, "attributes", required=False, default={})
    _validate_type(attributes, dict, f"{prefix}.attributes")
    for name, attribute in attributes.items():
        _validate_type(name, str, f"{prefix}.attributes key")
        _validate_type(attribute, str, f"{prefix}.attributes.{name}")

    return DeviceConfig(
        id=device_id,
        type=device_type,
        path=path,
        seed=seed,
        attributes=dict(attributes),
    )


def load_config(path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Config: Validated configuration object

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a YAML dictionary")

    # Sampling configuration
    sampling_data = _get_nested(data, "sampling")
    frequency_hz = _get_nested(sampling_data, "frequency_hz")
    _validate_type(frequency_hz, int, "sampling.frequency_hz")
    validate_frequency(frequency_hz)

    sampling = SamplingConfig(frequency_hz=frequency_hz)

    # Output configuration
    output_data = _get_nested(data, "output", required=False, default={})

    directory = _get_nested(output_data, "directory", required=False, default=".")
    _validate_type(directory, str, "output.directory")

    prefix = _get_nested(output_data, "prefix", required=False, default="power-trace")
    _validate_type(prefix, str, "output.prefix")
    if not prefix:
        raise ConfigError("output.prefix must not be empty")
    if "/" in prefix:
        raise ConfigError("output.prefix must not contain a path separator")

    output = OutputConfig(directory=directory, prefix=prefix)

    # Devices configuration
    devices_data = _get_nested(data, "devices")
    _validate_type(devices_data, list, "devices")
    if not devices_data:
        raise ConfigError("devices must list at least one device")

    devices = [_load_device(entry, i) for i, entry in enumerate(devices_data)]

    seen = set()
    for device in devices:
        if device.id in seen:
            raise ConfigError(f"Duplicate device id: {device.id}")
        seen.add(device.id)

    return Config(
        sampling=sampling,
        output=output,
        devices=devices,
    )
