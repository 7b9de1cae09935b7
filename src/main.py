"""Main entry point module.

Handles CLI arguments, sampler lifecycle, signal handling, and clean shutdown.
"""

import argparse
import logging
import os
import signal
import sys
import threading
import time
from typing import Any, Optional

import config as config_module
import devices as devices_module
import fleet


logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL_SECONDS = 30


def setup_logging(level: int = logging.INFO) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def positive_float(value: str) -> float:
    """argparse type for a strictly positive number of seconds."""
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not a number")
    if not number > 0:
        raise argparse.ArgumentTypeError(f"{value!r} must be > 0")
    return number


def build_fleet(cfg: config_module.Config) -> fleet.FleetCoordinator:
    """Build the devices and the coordinator described by the configuration."""
    devices = devices_module.build_devices(cfg.devices)
    return fleet.FleetCoordinator(
        devices,
        cfg.sampling.frequency_hz,
        directory=cfg.output.directory,
        prefix=cfg.output.prefix,
    )


def wait_for_shutdown(
    shutdown_event: threading.Event,
    coordinator: fleet.FleetCoordinator,
    duration: Optional[float] = None,
) -> None:
    """Block until shutdown is requested or duration seconds have passed.

    Logs a heartbeat with per-sampler statistics at DEBUG level. Also
    returns at a heartbeat once no sampler is still sampling.
    """
    deadline = None if duration is None else time.monotonic() + duration

    while True:
        timeout = HEARTBEAT_INTERVAL_SECONDS
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.info(f"Sampling duration of {duration}s elapsed")
                return
            timeout = min(timeout, remaining)

        if shutdown_event.wait(timeout=timeout):
            return

        stats = coordinator.get_stats()
        logger.debug(
            "Heartbeat: "
            + ", ".join(
                f"{name}={s['state']}/{s['samples']} samples/{s['errors']} errors"
                for name, s in stats.items()
            )
        )

        if not coordinator.running_targets:
            logger.warning("No sampler is running, shutting down")
            return


def main() -> int:
    """Main entry point.

    Returns:
        Exit code (0 for clean shutdown)
    """
    # Parse CLI arguments
    parser = argparse.ArgumentParser(description="Device power trace sampler")
    parser.add_argument(
        "--config", required=True, help="Path to configuration YAML file"
    )
    parser.add_argument(
        "--duration",
        type=positive_float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    # Setup logging
    log_level = logging.DEBUG if args.debug else logging.INFO
    setup_logging(log_level)

    # Load configuration first
    try:
        cfg = config_module.load_config(args.config)
        logger.info(f"Configuration loaded from {args.config}")
    except config_module.ConfigError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 1

    # Validate output directory exists
    output_dir = os.path.abspath(cfg.output.directory)
    if not os.path.isdir(output_dir):
        logger.error(
            f"Output directory does not exist: {output_dir!r} "
            f"(from output.directory: {cfg.output.directory!r})"
        )
        return 1

    # Build devices and one sampler per device
    try:
        coordinator = build_fleet(cfg)
    except config_module.ConfigError as e:
        logger.error(f"Failed to set up devices: {e}")
        return 1

    # Create shutdown event
    shutdown_event = threading.Event()

    # Setup signal handlers
    def handle_signal(signum: int, frame: Any) -> None:
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    with coordinator:
        failures = coordinator.launch()
        if len(failures) == len(coordinator.engines):
            logger.error("No sampler could be launched")
            return 1

        try:
            wait_for_shutdown(shutdown_event, coordinator, args.duration)
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
            shutdown_event.set()

        # Shutdown
        logger.info("Shutting down samplers...")

    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
