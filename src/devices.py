"""Device abstraction module.

Monitored devices are the targets the samplers poll. Each device exposes a
unique name and a power status snapshot. Two implementations are provided:
a simulated card for development and testing, and a card whose sensors are
published as sysfs attribute files by its kernel driver.
"""

import dataclasses
import logging
import os
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import ConfigError, DeviceConfig

logger = logging.getLogger(__name__)


class DeviceError(Exception):
    """Raised when a device status query fails."""
    pass


@dataclass(frozen=True)
class PowerInfo:
    """Power rail snapshot of an accelerator card.

    Voltages are in millivolts and currents in milliamps. time_stamp is the
    device's own clock, not the host wall clock.
    """
    time_stamp: int
    vint: int
    current: int
    vaux: int
    vbram: int
    v12_pex: int
    v12_aux: int
    pex_curr: int
    aux_curr: int
    v3v3_pex: int
    v3v3_aux: int
    ddr_vpp_bottom: int
    ddr_vpp_top: int
    sys_5v5: int
    v1v2_top: int
    v1v8_top: int
    v0v85: int
    mgt_0v9: int
    v12_sw: int
    mgt_vtt: int
    v1v2_bottom: int


POWER_FIELDS = [f.name for f in dataclasses.fields(PowerInfo)]
RAIL_FIELDS = POWER_FIELDS[1:]


class Device(ABC):
    """A monitored device. Must outlive any sampler that references it."""

    @property
    @abstractmethod
    def unique_name(self) -> str:
        """Identifier used to name this device's trace file."""
        ...

    @abstractmethod
    def get_power_info(self) -> PowerInfo:
        """Query one power status snapshot. May block briefly.

        Raises:
            DeviceError: If the device could not be read
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.unique_name!r})"


# Nominal readings and noise (standard deviation) for the simulated card
SIMULATED_RAILS: Dict[str, tuple] = {
    "vint": (850, 5),
    "current": (9500, 400),
    "vaux": (1800, 8),
    "vbram": (850, 5),
    "v12_pex": (12100, 40),
    "v12_aux": (12100, 40),
    "pex_curr": (2400, 120),
    "aux_curr": (1600, 90),
    "v3v3_pex": (3300, 15),
    "v3v3_aux": (3300, 15),
    "ddr_vpp_bottom": (2500, 10),
    "ddr_vpp_top": (2500, 10),
    "sys_5v5": (5500, 20),
    "v1v2_top": (1200, 6),
    "v1v8_top": (1800, 8),
    "v0v85": (850, 5),
    "mgt_0v9": (900, 5),
    "v12_sw": (12000, 40),
    "mgt_vtt": (1200, 6),
    "v1v2_bottom": (1200, 6),
}


class SimulatedDevice(Device):
    """Generates plausible power readings around nominal rail values.

    Readings are Gaussian noise around SIMULATED_RAILS, clamped at zero.
    The device timestamp counts nanoseconds since the device was created.
    """

    def __init__(self, unique_name: str, seed: Optional[int] = None) -> None:
        self._unique_name = unique_name
        self._random = random.Random(seed)
        self._created_at = time.monotonic_ns()

    @property
    def unique_name(self) -> str:
        return self._unique_name

    def get_power_info(self) -> PowerInfo:
        readings = {
            name: max(0, int(round(self._random.gauss(nominal, noise))))
            for name, (nominal, noise) in SIMULATED_RAILS.items()
        }
        return PowerInfo(time_stamp=time.monotonic_ns() - self._created_at, **readings)


# Default sysfs attribute per rail, as published by the card's management
# controller driver
SYSFS_ATTRIBUTES: Dict[str, str] = {
    "vint": "xmc_vccint_vol",
    "current": "xmc_vccint_curr",
    "vaux": "xmc_vccaux",
    "vbram": "xmc_vccbram",
    "v12_pex": "xmc_12v_pex_vol",
    "v12_aux": "xmc_12v_aux_vol",
    "pex_curr": "xmc_12v_pex_curr",
    "aux_curr": "xmc_12v_aux_curr",
    "v3v3_pex": "xmc_3v3_pex_vol",
    "v3v3_aux": "xmc_3v3_aux_vol",
    "ddr_vpp_bottom": "xmc_ddr_vpp_btm",
    "ddr_vpp_top": "xmc_ddr_vpp_top",
    "sys_5v5": "xmc_sys_5v5",
    "v1v2_top": "xmc_1v2_top",
    "v1v8_top": "xmc_1v8",
    "v0v85": "xmc_0v85",
    "mgt_0v9": "xmc_mgt0v9avcc",
    "v12_sw": "xmc_12v_sw",
    "mgt_vtt": "xmc_mgtavtt",
    "v1v2_bottom": "xmc_vcc1v2_btm",
}


class SysfsDevice(Device):
    """Reads power rails from integer sysfs attribute files.

    A rail whose attribute file does not exist reads as 0, since not every
    card fits every sensor. Any other read or parse failure raises
    DeviceError so the sample is skipped rather than written with a
    misleading value.
    """

    def __init__(
        self,
        unique_name: str,
        path: str,
        attributes: Optional[Dict[str, str]] = None,
    ) -> None:
        """Initialize the device.

        Args:
            unique_name: Identifier for the trace file name
            path: Directory holding the sensor attribute files
            attributes: Per-rail overrides of SYSFS_ATTRIBUTES

        Raises:
            ConfigError: If an override names an unknown rail
        """
        attributes = attributes or {}
        unknown = sorted(set(attributes) - set(RAIL_FIELDS))
        if unknown:
            raise ConfigError(
                f"Unknown power rail(s) for device {unique_name}: {', '.join(unknown)}"
            )

        self._unique_name = unique_name
        self._path = path
        self._attributes = dict(SYSFS_ATTRIBUTES)
        self._attributes.update(attributes)

    @property
    def unique_name(self) -> str:
        return self._unique_name

    @property
    def path(self) -> str:
        return self._path

    def get_power_info(self) -> PowerInfo:
        readings = {
            name: self._read_attribute(attribute)
            for name, attribute in self._attributes.items()
        }
        return PowerInfo(time_stamp=time.monotonic_ns(), **readings)

    def _read_attribute(self, attribute: str) -> int:
        """Read one integer attribute file.

        Raises:
            DeviceError: If the file cannot be read or does not hold an integer
        """
        attribute_path = os.path.join(self._path, attribute)
        try:
            with open(attribute_path, "r") as f:
                raw = f.read().strip()
        except FileNotFoundError:
            return 0
        except OSError as e:
            raise DeviceError(f"Cannot read {attribute_path}: {e}")

        try:
            # Some drivers report "<value> <unit>" or several space separated
            # readings; the first field is the instantaneous value
            return int(raw.split()[0])
        except (IndexError, ValueError):
            raise DeviceError(f"Unexpected value in {attribute_path}: {raw!r}")


def build_device(device_config: DeviceConfig) -> Device:
    """Construct a single device from its configuration.

    Raises:
        ConfigError: If the device type is unknown or its settings invalid
    """
    if device_config.type == "simulated":
        return SimulatedDevice(device_config.id, seed=device_config.seed)
    if device_config.type == "sysfs":
        if not device_config.path:
            raise ConfigError(f"Device {device_config.id} requires a sysfs path")
        if not os.path.isdir(device_config.path):
            logger.warning(
                f"Sysfs path for device {device_config.id} does not exist: "
                f"{device_config.path!r}"
            )
        return SysfsDevice(
            device_config.id, device_config.path, attributes=device_config.attributes
        )
    raise ConfigError(f"Unknown device type for {device_config.id}: {device_config.type!r}")


def build_devices(device_configs: List[DeviceConfig]) -> List[Device]:
    """Construct the monitored devices, preserving configuration order.

    Args:
        device_configs: Device entries from the configuration file

    Returns:
        List of devices, one per entry
    """
    devices = [build_device(device_config) for device_config in device_configs]
    logger.info(
        f"Monitoring {len(devices)} device(s): "
        f"{', '.join(d.unique_name for d in devices)}"
    )
    return devices
