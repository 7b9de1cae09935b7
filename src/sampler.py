"""Sampler strategy module.

Samplers plug into a SamplingEngine and know how to acquire one status
snapshot from a device and persist it as a row of a CSV trace file.
"""

import logging
import os
from abc import abstractmethod
from typing import Any, Optional

from devices import Device
from engine import SamplerHooks
from schema import POWER_SCHEMA, TraceSchema
from sink import CsvTraceSink

logger = logging.getLogger(__name__)


def trace_path(directory: str, prefix: str, unique_name: str) -> str:
    """Return the trace file path for a device: <directory>/<prefix>-<name>.csv"""
    return os.path.join(directory, f"{prefix}-{unique_name}.csv")


class TraceSampler(SamplerHooks):
    """Writes one CSV row per sample for a single device.

    The trace file is opened (truncated) when the engine launches and
    closed after the engine has terminated. Subclasses provide
    read_status(), which returns a snapshot the schema can read.
    """

    def __init__(self, target: Device, schema: TraceSchema, path: str) -> None:
        """Initialize the sampler.

        Args:
            target: Device to poll; borrowed, not owned
            schema: Columns to read from each status snapshot
            path: Trace file path
        """
        self._target = target
        self._schema = schema
        self._sink = CsvTraceSink(path, schema.header)

    @property
    def name(self) -> str:
        return self._target.unique_name

    @property
    def target(self) -> Device:
        return self._target

    @property
    def schema(self) -> TraceSchema:
        return self._schema

    @property
    def path(self) -> str:
        return str(self._sink.path)

    @abstractmethod
    def read_status(self) -> Any:
        """Query the device for one status snapshot."""
        ...

    def will_launch(self) -> None:
        logger.info(f"open {self._sink.path}")
        self._sink.open()

    def sample_once(self) -> None:
        status = self.read_status()
        record = self._schema.capture(status)
        self._sink.write(self._schema.format_row(record))

    def did_terminate(self) -> None:
        self._sink.close()


class PowerSampler(TraceSampler):
    """Traces a device's power rails to <prefix>-<unique_name>.csv"""

    def __init__(
        self,
        target: Device,
        directory: str = ".",
        prefix: str = "power-trace",
        schema: Optional[TraceSchema] = None,
    ) -> None:
        super().__init__(
            target,
            schema or POWER_SCHEMA,
            trace_path(directory, prefix, target.unique_name),
        )

    def read_status(self) -> Any:
        return self._target.get_power_info()
