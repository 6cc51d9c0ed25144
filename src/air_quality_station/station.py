import logging
import signal
import threading
from datetime import timedelta
from typing import Callable, Optional

import uvicorn

from air_quality_station.adapters.api.main import create_app
from air_quality_station.application.query_readings import QueryService
from air_quality_station.config.environments import Settings
from air_quality_station.domain.ports import Device
from air_quality_station.poller import IngestionLoop
from air_quality_station.sensing.serial_device import open_serial_device
from air_quality_station.store.sample_store import SampleStore

log = logging.getLogger(__name__)

DeviceFactory = Callable[[Settings], Device]


def setup_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def open_store(settings: Settings) -> SampleStore:
    return SampleStore.open_path(settings.DB_PATH, lock_timeout=settings.DB_LOCK_TIMEOUT_SEC)


def make_query_service(
    store: SampleStore, settings: Settings, stop_event: Optional[threading.Event] = None
) -> QueryService:
    return QueryService(
        store,
        default_window=timedelta(minutes=settings.QUERY_DEFAULT_WINDOW_MIN),
        cancel=stop_event,
    )


def bootstrap_sensor(
    store: SampleStore,
    settings: Settings,
    stop_event: threading.Event,
    device_factory: DeviceFactory = open_serial_device,
    on_fault: Optional[Callable[[BaseException], None]] = None,
) -> IngestionLoop:
    log.info(f"Starting sensor in {settings.ENVIRONMENT.value} environment")
    log.info(f"Serial port: {settings.SERIAL_PORT} @ {settings.SERIAL_BAUDRATE}")
    log.info(f"Read Interval: {settings.READ_INTERVAL_SEC}s")

    loop = IngestionLoop(
        device_factory(settings),
        store,
        settings.READ_INTERVAL_SEC,
        read_size=settings.FRAME_READ_SIZE,
        stop_event=stop_event,
        on_fault=on_fault,
    )
    loop.start()
    return loop


def make_web_server(
    store: SampleStore,
    settings: Settings,
    stop_event: threading.Event,
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> uvicorn.Server:
    app = create_app(make_query_service(store, settings, stop_event))
    config = uvicorn.Config(
        app,
        host=host or settings.API_HOST,
        port=port or settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
    return uvicorn.Server(config)


def _install_stop_handlers(stop_event: threading.Event) -> None:
    def sigterm_handler(signum, frame):
        log.info("Received shutdown signal, stopping sensor...")
        stop_event.set()

    signal.signal(signal.SIGTERM, sigterm_handler)
    signal.signal(signal.SIGINT, sigterm_handler)


def run_sensor(settings: Settings, device_factory: DeviceFactory = open_serial_device) -> int:
    stop_event = threading.Event()
    with open_store(settings) as store:
        loop = bootstrap_sensor(store, settings, stop_event, device_factory)
        _install_stop_handlers(stop_event)
        while loop.is_alive():
            loop.join(timeout=0.5)
    return 1 if loop.fault is not None else 0


def run_web(settings: Settings, host: Optional[str] = None, port: Optional[int] = None) -> int:
    stop_event = threading.Event()
    with open_store(settings) as store:
        server = make_web_server(store, settings, stop_event, host, port)
        log.info(f"Starting server on {server.config.host}:{server.config.port}...")
        try:
            server.run()
        finally:
            stop_event.set()
    return 0


def run_all(
    settings: Settings,
    host: Optional[str] = None,
    port: Optional[int] = None,
    device_factory: DeviceFactory = open_serial_device,
) -> int:
    """Run ingestion and the query API in one process over one store."""
    stop_event = threading.Event()
    with open_store(settings) as store:
        server = make_web_server(store, settings, stop_event, host, port)

        def on_fault(exc: BaseException) -> None:
            log.error("Sensor handler failed, shutting down: %s", exc)
            server.should_exit = True

        loop = bootstrap_sensor(store, settings, stop_event, device_factory, on_fault=on_fault)
        try:
            server.run()
        finally:
            stop_event.set()
            loop.join()
    return 1 if loop.fault is not None else 0
