"""Tests for fleet.py module."""

import os
import time

import pytest

from conftest import FakeDevice, read_trace
from config import ConfigError
from engine import EngineState, LaunchError, SamplerHooks
from fleet import FleetCoordinator
from sampler import PowerSampler


def trace_files(directory):
    return sorted(name for name in os.listdir(directory) if name.endswith(".csv"))


class TestFleetConstruction:
    """Tests for building the fleet."""

    def test_one_engine_per_device_in_order(self, trace_dir):
        devices = [FakeDevice("dev1"), FakeDevice("dev0"), FakeDevice("dev2")]

        fleet = FleetCoordinator(devices, 10, directory=trace_dir)

        assert list(fleet.engines) == ["dev1", "dev0", "dev2"]
        assert all(e.frequency_hz == 10 for e in fleet.engines.values())
        assert all(e.state is EngineState.IDLE for e in fleet.engines.values())

    def test_duplicate_device_names_rejected(self, trace_dir):
        with pytest.raises(ConfigError, match="dev0"):
            FleetCoordinator([FakeDevice("dev0"), FakeDevice("dev0")], 10, directory=trace_dir)

    def test_invalid_frequency_rejected(self, trace_dir):
        with pytest.raises(ConfigError):
            FleetCoordinator([FakeDevice("dev0")], 0, directory=trace_dir)

    def test_construction_does_not_touch_files(self, trace_dir):
        FleetCoordinator([FakeDevice("dev0")], 10, directory=trace_dir)

        assert trace_files(trace_dir) == []


class TestFleetLifecycle:
    """Tests for launch/terminate across all engines."""

    def test_two_devices_give_two_independent_files(self, trace_dir):
        devices = [FakeDevice("dev0"), FakeDevice("dev1")]
        fleet = FleetCoordinator(devices, 100, directory=trace_dir)

        failures = fleet.launch()
        time.sleep(0.15)
        fleet.terminate()

        assert failures == {}
        assert trace_files(trace_dir) == ["power-trace-dev0.csv", "power-trace-dev1.csv"]
        for device in devices:
            header, rows = read_trace(os.path.join(trace_dir, f"power-trace-{device.unique_name}.csv"))
            assert len(rows) == fleet.engines[device.unique_name].sample_count
            assert all(len(row) == len(header) for row in rows)
            # Device timestamps in each file come from that file's device only
            assert [int(row[1]) for row in rows] == list(range(1, len(rows) + 1))

    def test_every_file_has_header_even_without_samples(self, trace_dir):
        devices = [FakeDevice(f"dev{i}") for i in range(3)]
        fleet = FleetCoordinator(devices, 0.5, directory=trace_dir)

        fleet.launch()
        fleet.terminate()

        assert len(trace_files(trace_dir)) == 3
        for name in trace_files(trace_dir):
            header, _ = read_trace(os.path.join(trace_dir, name))
            assert header[0] == "timestamp"

    def test_terminate_stops_every_engine(self, trace_dir):
        fleet = FleetCoordinator([FakeDevice("dev0"), FakeDevice("dev1")], 100, directory=trace_dir)

        fleet.launch()
        assert fleet.running_targets == ["dev0", "dev1"]
        fleet.terminate()

        assert fleet.running_targets == []
        assert all(e.state is EngineState.STOPPED for e in fleet.engines.values())

    def test_engine_that_stops_itself_is_not_running(self, trace_dir):
        terminated = []

        class OneShot(PowerSampler):
            def should_stop_early(self):
                return self.name == "dev0" and self.target.calls >= 1

            def did_terminate(self):
                terminated.append(self.name)
                super().did_terminate()

        fleet = FleetCoordinator(
            [FakeDevice("dev0"), FakeDevice("dev1")],
            100,
            sampler_factory=lambda d: OneShot(d, directory=trace_dir),
        )
        fleet.launch()
        try:
            deadline = time.monotonic() + 2
            while fleet.running_targets != ["dev1"] and time.monotonic() < deadline:
                time.sleep(0.01)

            assert fleet.running_targets == ["dev1"]
            assert fleet.get_stats()["dev0"]["sampling"] is False
        finally:
            fleet.terminate()

        assert fleet.running_targets == []
        assert terminated == ["dev0", "dev1"]
        _, rows = read_trace(os.path.join(trace_dir, "power-trace-dev0.csv"))
        assert len(rows) == 1

    def test_terminate_without_launch_is_safe(self, trace_dir):
        fleet = FleetCoordinator([FakeDevice("dev0")], 10, directory=trace_dir)

        fleet.terminate()
        fleet.terminate()

        assert fleet.engines["dev0"].state is EngineState.IDLE

    def test_context_manager_terminates(self, trace_dir):
        with FleetCoordinator([FakeDevice("dev0")], 100, directory=trace_dir) as fleet:
            fleet.launch()

        assert fleet.engines["dev0"].state is EngineState.STOPPED

    def test_stats_per_engine(self, trace_dir):
        fleet = FleetCoordinator([FakeDevice("dev0")], 100, directory=trace_dir)

        stats = fleet.get_stats()

        assert stats["dev0"]["state"] == "IDLE"
        assert stats["dev0"]["interval_us"] == 10_000


class TestFleetPartialFailure:
    """Tests for a fleet where some engines cannot launch."""

    def test_failed_launch_does_not_stop_other_engines(self, tmp_path):
        good_dir = tmp_path / "good"
        good_dir.mkdir()
        missing_dir = str(tmp_path / "missing")

        def factory(device):
            directory = missing_dir if device.unique_name == "bad" else str(good_dir)
            return PowerSampler(device, directory=directory)

        devices = [FakeDevice("dev0"), FakeDevice("bad"), FakeDevice("dev1")]
        fleet = FleetCoordinator(devices, 100, sampler_factory=factory)

        failures = fleet.launch()
        try:
            assert list(failures) == ["bad"]
            assert isinstance(failures["bad"], LaunchError)
            assert fleet.failed_targets == ["bad"]
            assert fleet.running_targets == ["dev0", "dev1"]
            assert fleet.engines["bad"].state is EngineState.FAILED
        finally:
            fleet.terminate()

        assert trace_files(str(good_dir)) == ["power-trace-dev0.csv", "power-trace-dev1.csv"]

    def test_did_launch_failure_is_reported_and_not_running(self, trace_dir):
        class LoudSampler(PowerSampler):
            def did_launch(self):
                if self.name == "bad":
                    raise RuntimeError("announce failed")

        devices = [FakeDevice("dev0"), FakeDevice("bad")]
        fleet = FleetCoordinator(
            devices, 100, sampler_factory=lambda d: LoudSampler(d, directory=trace_dir)
        )

        failures = fleet.launch()
        try:
            assert isinstance(failures["bad"], LaunchError)
            assert fleet.failed_targets == ["bad"]
            assert fleet.running_targets == ["dev0"]
            assert fleet.engines["bad"].state is EngineState.FAILED
        finally:
            fleet.terminate()

        # The failed engine's trace file was closed by its own terminate
        header, _ = read_trace(os.path.join(trace_dir, "power-trace-bad.csv"))
        assert header[0] == "timestamp"

    def test_terminate_error_does_not_skip_remaining_engines(self, trace_dir):
        stopped = []

        class Hooks(SamplerHooks):
            def __init__(self, device):
                self.name = device.unique_name

            def sample_once(self):
                pass

            def did_terminate(self):
                stopped.append(self.name)
                if self.name == "dev0":
                    raise RuntimeError("close failed")

        fleet = FleetCoordinator(
            [FakeDevice("dev0"), FakeDevice("dev1")], 100, sampler_factory=Hooks
        )
        fleet.launch()
        fleet.terminate()

        assert stopped == ["dev0", "dev1"]
        assert fleet.running_targets == []

    def test_custom_sampler_factory(self, trace_dir):
        fleet = FleetCoordinator(
            [FakeDevice("dev0")],
            100,
            sampler_factory=lambda d: PowerSampler(d, directory=trace_dir, prefix="rails"),
        )

        fleet.launch()
        fleet.terminate()

        assert trace_files(trace_dir) == ["rails-dev0.csv"]
