"""Pytest configuration and shared fixtures."""

import pytest
import sys
import os
import threading

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from devices import Device, PowerInfo, RAIL_FIELDS, DeviceError


def make_power_info(time_stamp: int = 0, value: int = 1000) -> PowerInfo:
    """Build a PowerInfo with every rail set to the same value."""
    return PowerInfo(time_stamp=time_stamp, **{name: value for name in RAIL_FIELDS})


class FakeDevice(Device):
    """In-memory device returning a counter-based snapshot.

    fail_on is a set of call numbers (1-based) that raise DeviceError.
    """

    def __init__(self, unique_name: str, fail_on=None, delay: float = 0.0):
        self._unique_name = unique_name
        self._fail_on = set(fail_on or ())
        self._delay = delay
        self._lock = threading.Lock()
        self.calls = 0

    @property
    def unique_name(self) -> str:
        return self._unique_name

    def get_power_info(self) -> PowerInfo:
        with self._lock:
            self.calls += 1
            call = self.calls
        if self._delay:
            threading.Event().wait(self._delay)
        if call in self._fail_on:
            raise DeviceError(f"{self._unique_name}: sensor read failed on call {call}")
        return make_power_info(time_stamp=call, value=call * 10)


def read_trace(path):
    """Return (header, rows) of a trace file, each split on commas."""
    with open(path, "r") as f:
        lines = f.read().splitlines()
    header = lines[0].split(",")
    rows = [line.split(",") for line in lines[1:]]
    return header, rows


@pytest.fixture
def fake_device():
    """Provide a FakeDevice named dev0."""
    return FakeDevice("dev0")


@pytest.fixture
def trace_dir(tmp_path):
    """Provide a directory for trace files as a string."""
    return str(tmp_path)
