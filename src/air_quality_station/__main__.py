"""
Canonical entry point for the air_quality_station package.

Usage:
    air-quality-station sensor --environment production
    air-quality-station web --port 8080
    air-quality-station all --environment testing --test-mode
"""

import argparse
import logging
import os
import sys

from air_quality_station import station
from air_quality_station.config.environments import Settings, get_settings
from air_quality_station.domain.errors import StoreOpenError
from air_quality_station.sensing.serial_device import SerialDevice, open_serial_device
from air_quality_station.utils.mocks import FakeSDS011


def make_test_device(settings: Settings) -> SerialDevice:
    """Device backed by a fake SDS011 streaming a slowly rising PM level."""
    values = [(100 + 5 * i, 150 + 7 * i) for i in range(60)]
    return SerialDevice(lambda: FakeSDS011(values), idle_timeout=settings.SERIAL_IDLE_TIMEOUT_SEC)


def main() -> None:
    """Main entry point for air_quality_station."""
    parser = argparse.ArgumentParser(description="Air Quality Station - SDS011 ingestion and query API")
    parser.add_argument(
        "command",
        choices=["sensor", "web", "all"],
        help="Starts the sensor, the web API, or both",
    )
    parser.add_argument(
        "--environment",
        choices=["production", "development", "testing"],
        default="development",
        help="Environment to run in",
    )
    parser.add_argument("--host", help="Host to bind to (overrides config)")
    parser.add_argument("-p", "--port", type=int, help="Port to listen on (overrides config)")
    parser.add_argument(
        "--test-mode", action="store_true", help="Run in test mode with mocked hardware"
    )

    args = parser.parse_args()

    # Set environment variable for config
    os.environ["AIR_QUALITY_ENV"] = args.environment

    config = get_settings()
    station.setup_logging(config)
    log = logging.getLogger(__name__)

    device_factory = make_test_device if args.test_mode else open_serial_device

    log.info("Starting air quality station...")
    log.info(f"Environment: {args.environment}")
    log.info(f"Database: {config.DB_PATH}")
    if args.test_mode:
        log.info("Running sensor in TEST mode...")

    try:
        if args.command == "sensor":
            code = station.run_sensor(config, device_factory)
        elif args.command == "web":
            code = station.run_web(config, args.host, args.port)
        else:
            code = station.run_all(config, args.host, args.port, device_factory)
    except StoreOpenError as exc:
        log.error("Could not open sample store: %s", exc)
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
