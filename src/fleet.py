"""Fleet coordinator module.

Runs one sampler per monitored device and starts or stops them as a unit.
Engines are independent: a device that fails to launch does not prevent
the others from sampling.
"""

import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional

from config import ConfigError
from devices import Device
from engine import LaunchError, SamplerHooks, SamplingEngine
from sampler import PowerSampler

logger = logging.getLogger(__name__)

SamplerFactory = Callable[[Device], SamplerHooks]


class FleetCoordinator:
    """Owns one SamplingEngine per device.

    The set of devices is fixed at construction. launch() and terminate()
    visit engines sequentially in device order on the caller's thread, so
    total terminate latency is the sum of each engine's shutdown time.

    Usage::

        with FleetCoordinator(devices, frequency_hz=100) as fleet:
            failures = fleet.launch()
            ...
        # every engine is terminated and its trace file closed here
    """

    def __init__(
        self,
        devices: Iterable[Device],
        frequency_hz: Any,
        directory: str = ".",
        prefix: str = "power-trace",
        sampler_factory: Optional[SamplerFactory] = None,
    ) -> None:
        """Initialize the coordinator and build every engine.

        Args:
            devices: Devices to monitor; must outlive the coordinator
            frequency_hz: Sampling frequency shared by all engines
            directory: Directory for the trace files
            prefix: Trace file name prefix
            sampler_factory: Builds the sampler for a device (defaults to a
                PowerSampler writing into directory with prefix)

        Raises:
            ConfigError: If two devices share a unique name or the frequency
                is invalid
        """
        if sampler_factory is None:
            def sampler_factory(device: Device) -> SamplerHooks:
                return PowerSampler(device, directory=directory, prefix=prefix)

        self._engines: "OrderedDict[str, SamplingEngine]" = OrderedDict()
        self._failures: Dict[str, Exception] = {}

        for device in devices:
            name = device.unique_name
            if name in self._engines:
                raise ConfigError(f"Duplicate device name: {name}")
            self._engines[name] = SamplingEngine(
                sampler_factory(device), frequency_hz, name=name
            )

    @property
    def engines(self) -> "OrderedDict[str, SamplingEngine]":
        """Engines keyed by device name, in launch order."""
        return OrderedDict(self._engines)

    @property
    def failed_targets(self) -> List[str]:
        """Devices whose engine failed during the last launch()."""
        return list(self._failures)

    @property
    def running_targets(self) -> List[str]:
        return [name for name, engine in self._engines.items() if engine.is_running]

    def launch(self) -> Dict[str, Exception]:
        """Launch every engine in order.

        A failure is logged and recorded, and the remaining engines are
        still launched; engines already running stay running.

        Returns:
            Mapping of device name to the exception that prevented its launch.
            Empty if every engine launched.
        """
        logger.info(f"Launching power profile for {len(self._engines)} device(s)...")
        self._failures = {}

        for name, engine in self._engines.items():
            try:
                engine.launch()
            except LaunchError as e:
                logger.error(str(e))
                self._failures[name] = e
            except Exception as e:
                logger.exception(f"Unexpected error launching sampler {name}")
                self._failures[name] = e

        if self._failures:
            logger.warning(
                f"{len(self._failures)} of {len(self._engines)} sampler(s) failed to launch: "
                f"{', '.join(self._failures)}"
            )
        return dict(self._failures)

    def terminate(self) -> None:
        """Terminate every engine in order, waiting for each to stop.

        Engines that are not running are skipped. An error from one engine
        is logged and does not stop the rest from being terminated.
        """
        for name, engine in self._engines.items():
            try:
                engine.terminate()
            except Exception:
                logger.exception(f"Error terminating sampler {name}")

    def close(self) -> None:
        self.terminate()

    def __enter__(self) -> "FleetCoordinator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def get_stats(self) -> Dict[str, Any]:
        """Return per-engine statistics keyed by device name."""
        return {name: engine.get_stats() for name, engine in self._engines.items()}
