"""Sampling engine module.

Owns the background sampling thread and its lifecycle. A concrete sampler
plugs into the engine by implementing SamplerHooks; the engine drives the
hooks from a fixed interval loop and never needs to know what is sampled.

Lifecycle per engine:

    IDLE --launch--> RUNNING --terminate--> STOPPING --join--> STOPPED

A launch whose setup hook fails leaves the engine FAILED. Both STOPPED and
FAILED engines may be launched again.
"""

import enum
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from config import ConfigError, validate_frequency

logger = logging.getLogger(__name__)


class EngineState(enum.Enum):
    """Lifecycle state of a SamplingEngine."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"


class EngineStateError(Exception):
    """Raised when a lifecycle call is not valid in the current state."""
    pass


class LaunchError(Exception):
    """Raised when an engine could not be launched.

    Attributes:
        name: Name of the engine that failed
        cause: The underlying exception
    """

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"Failed to launch sampler {name}: {cause}")
        self.name = name
        self.cause = cause


class SamplerHooks(ABC):
    """Capability set a concrete sampler provides to a SamplingEngine.

    Every hook is a no-op by default except sample_once(), which is
    abstract. Hooks run on the caller's thread (launch/terminate hooks)
    or on the engine thread (all loop hooks).
    """

    name = "sampler"

    def will_launch(self) -> None:
        """Called by launch() before the thread starts. May raise."""

    def did_launch(self) -> None:
        """Called by launch() after the thread has started."""

    def will_terminate(self) -> None:
        """Called by terminate() before the stop signal is sent."""

    def did_terminate(self) -> None:
        """Called by terminate() after the thread has been joined."""

    def will_sample(self) -> None:
        """Called on the engine thread before the first sample."""

    def did_sample(self) -> None:
        """Called on the engine thread after the loop has exited."""

    def will_sample_once(self) -> None:
        pass

    @abstractmethod
    def sample_once(self) -> None:
        """Acquire and persist a single sample."""
        ...

    def did_sample_once(self) -> None:
        pass

    def will_pause(self) -> None:
        pass

    def did_pause(self) -> None:
        pass

    def should_stop_early(self) -> bool:
        """Return True to end the sampling loop before terminate()."""
        return False


class SamplingEngine:
    """Runs a sampler's hooks on a background thread at a fixed frequency.

    The loop checks a per-launch stop event before every sample. A
    terminate() request can race one in-flight sample, which is allowed to
    complete; nothing is sampled after terminate() returns.

    The thread is a daemon, so a launched engine is only stopped cleanly by
    terminate(), close() or leaving a `with` block; at interpreter exit it is
    abandoned and its trace file is not closed.
    """

    def __init__(
        self, sampler: SamplerHooks, frequency_hz: Any, name: Optional[str] = None
    ) -> None:
        """Initialize the engine.

        Args:
            sampler: Hook implementation driven by this engine
            frequency_hz: Sampling frequency in Hz
            name: Name used for the thread and log messages (defaults to the
                sampler's name)

        Raises:
            ConfigError: If frequency_hz is not a positive number or is too
                high to give a period of at least one microsecond
        """
        try:
            validate_frequency(frequency_hz, "frequency_hz")
        except ConfigError as e:
            raise ConfigError(f"Invalid sampling frequency for {name or sampler.name}: {e}")

        self._sampler = sampler
        self._name = name or sampler.name
        self._frequency_hz = frequency_hz
        self._interval_us = int(1_000_000 // frequency_hz)

        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state = EngineState.IDLE

        self._sample_count = 0
        self._error_count = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def sampler(self) -> SamplerHooks:
        return self._sampler

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def frequency_hz(self) -> Any:
        return self._frequency_hz

    @property
    def interval_us(self) -> int:
        """Sampling period in whole microseconds."""
        return self._interval_us

    @property
    def is_running(self) -> bool:
        """True while the sampling loop is live.

        An engine whose loop ended on its own (should_stop_early() or a hook
        error) is not running, although its state stays RUNNING until
        terminate() joins the thread and runs the teardown hooks.
        """
        thread = self._thread
        return (
            self._state is EngineState.RUNNING
            and thread is not None
            and thread.is_alive()
        )

    @property
    def sample_count(self) -> int:
        """Samples taken since the last launch."""
        return self._sample_count

    @property
    def error_count(self) -> int:
        """Failed samples since the last launch."""
        return self._error_count

    def launch(self) -> None:
        """Start the background sampling thread and return immediately.

        Raises:
            EngineStateError: If the engine is already running
            LaunchError: If a launch hook fails or the thread cannot be
                started. A did_launch() failure terminates the new thread
                first, leaving the engine FAILED and not running
        """
        with self._lifecycle_lock:
            if self._state in (EngineState.RUNNING, EngineState.STOPPING):
                if self._thread is not None and not self._thread.is_alive():
                    raise EngineStateError(
                        f"Sampler {self._name} has stopped sampling, "
                        f"terminate() it before launching again"
                    )
                raise EngineStateError(f"Sampler {self._name} is already running")

            try:
                self._sampler.will_launch()
            except Exception as e:
                self._state = EngineState.FAILED
                raise LaunchError(self._name, e) from e

            self._stop_event = threading.Event()
            self._sample_count = 0
            self._error_count = 0
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name=f"sampler-{self._name}",
                daemon=True,
            )
            self._state = EngineState.RUNNING

            try:
                self._thread.start()
            except RuntimeError as e:
                self._thread = None
                self._state = EngineState.FAILED
                self._sampler.did_terminate()
                raise LaunchError(self._name, e) from e

        logger.info(
            f"Sampler {self._name} launched at {self._frequency_hz} Hz "
            f"(interval {self._interval_us}us)"
        )
        try:
            self._sampler.did_launch()
        except Exception as e:
            try:
                self.terminate()
            except Exception:
                logger.exception(f"Sampler {self._name} failed to stop after did_launch error")
            with self._lifecycle_lock:
                self._state = EngineState.FAILED
            raise LaunchError(self._name, e) from e

    def terminate(self) -> bool:
        """Stop the sampling thread and wait for it to exit.

        A no-op on an engine that is not running (never launched, already
        terminated, or failed to launch).

        Returns:
            True if a running engine was stopped, False if it was a no-op

        Raises:
            EngineStateError: If called from the engine's own thread
        """
        if self._thread is not None and threading.current_thread() is self._thread:
            raise EngineStateError(
                f"Sampler {self._name} cannot be terminated from its own thread"
            )

        with self._lifecycle_lock:
            if self._state is not EngineState.RUNNING:
                logger.debug(f"Sampler {self._name} is {self._state.value}, nothing to terminate")
                return False

            try:
                self._sampler.will_terminate()
            finally:
                self._state = EngineState.STOPPING
                self._stop_event.set()
                self._thread.join()
                self._thread = None
                try:
                    self._sampler.did_terminate()
                finally:
                    self._state = EngineState.STOPPED

        logger.info(
            f"Sampler {self._name} terminated "
            f"(samples={self._sample_count}, errors={self._error_count})"
        )
        return True

    def close(self) -> None:
        """Terminate the engine if it is still running."""
        self.terminate()

    def __enter__(self) -> "SamplingEngine":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def get_stats(self) -> Dict[str, Any]:
        """Return engine statistics."""
        return {
            "name": self._name,
            "state": self._state.value,
            "sampling": self.is_running,
            "frequency_hz": self._frequency_hz,
            "interval_us": self._interval_us,
            "samples": self._sample_count,
            "errors": self._error_count,
        }

    def _run(self, stop_event: threading.Event) -> None:
        """Sampling loop executed on the engine thread.

        Args:
            stop_event: Stop signal for this launch only
        """
        sampler = self._sampler
        interval_seconds = self._interval_us / 1_000_000

        try:
            sampler.will_sample()
            while not stop_event.is_set() and not sampler.should_stop_early():
                cycle_start = time.monotonic()

                sampler.will_sample_once()
                try:
                    sampler.sample_once()
                except Exception as e:
                    self._error_count += 1
                    logger.warning(f"Sampler {self._name} skipped a sample: {e}")
                else:
                    self._sample_count += 1
                sampler.did_sample_once()

                # Sleep for remainder of the sampling interval
                sampler.will_pause()
                elapsed = time.monotonic() - cycle_start
                sleep_time = interval_seconds - elapsed
                if sleep_time > 0:
                    stop_event.wait(timeout=sleep_time)
                sampler.did_pause()
        except Exception:
            logger.exception(f"Sampler {self._name} stopped by an unexpected error")
        finally:
            try:
                sampler.did_sample()
            except Exception:
                logger.exception(f"Sampler {self._name} failed while finishing its loop")
