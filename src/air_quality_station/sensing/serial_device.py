import logging
import threading
import time
from typing import Callable, Optional, Protocol

import serial

from air_quality_station.config.environments import Settings
from air_quality_station.domain.errors import DeviceBusyError, ReadCancelled, TransportError

logger = logging.getLogger(__name__)


class SerialLike(Protocol):
    """Minimum pyserial surface the device needs.

    ``read`` must return at most ``n`` bytes and an empty result when its
    timeout expires without data.
    """

    def read(self, n: int) -> bytes: ...

    def reset_input_buffer(self) -> None: ...

    def close(self) -> None: ...


class SerialDevice:
    """Exclusive, cancellable byte source on top of a serial port.

    The SDS011 streams a frame every second, so the input buffer is flushed
    before each read to get a fresh frame instead of one queued since the
    previous tick. A read blocks until data arrives, ``cancel`` is set, or the
    port has been silent for ``idle_timeout`` seconds; in the last case an
    empty result is returned to signal that the endpoint is gone.
    """

    def __init__(
        self,
        port_factory: Callable[[], SerialLike],
        *,
        idle_timeout: float = 60.0,
        flush_before_read: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._port_factory = port_factory
        self.idle_timeout = idle_timeout
        self.flush_before_read = flush_before_read
        self._clock = clock
        self._port: Optional[SerialLike] = None
        self._owner_lock = threading.Lock()

    @property
    def acquired(self) -> bool:
        return self._port is not None

    def acquire(self) -> None:
        """Open the port and take exclusive ownership of it."""
        if not self._owner_lock.acquire(blocking=False):
            raise DeviceBusyError("Device is already owned by another ingestion loop")
        try:
            self._port = self._port_factory()
        except (serial.SerialException, OSError) as exc:
            self._owner_lock.release()
            raise TransportError(f"Could not open serial port: {exc}", terminal=True) from exc
        logger.info("Serial device acquired")

    def release(self) -> None:
        if self._port is None:
            return
        try:
            self._port.close()
        except (serial.SerialException, OSError) as exc:
            logger.warning("Error while closing serial port: %s", exc)
        finally:
            self._port = None
            self._owner_lock.release()
        logger.info("Serial device released")

    def read(self, size: int, cancel: Optional[threading.Event] = None) -> bytes:
        """Block until up to *size* bytes are available.

        Raises:
            ReadCancelled: If *cancel* was set while waiting.
            TransportError: On a port level I/O error (non-terminal).
        """
        if self._port is None:
            raise TransportError("Device has not been acquired", terminal=True)

        try:
            if self.flush_before_read:
                self._port.reset_input_buffer()

            deadline = self._clock() + self.idle_timeout
            while True:
                if cancel is not None and cancel.is_set():
                    raise ReadCancelled("Read abandoned on shutdown")
                data = self._port.read(size)
                if data:
                    logger.debug("Read %d bytes: %s", len(data), data.hex())
                    return data
                if self._clock() >= deadline:
                    logger.warning("No data from device for %.1fs", self.idle_timeout)
                    return b""
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"Read returned an error: {exc}") from exc


def open_serial_device(settings: Settings) -> SerialDevice:
    """Create the device for the configured port; the port opens on ``acquire()``."""

    def open_port() -> serial.Serial:
        logger.info("Opening serial port %s at %d baud", settings.SERIAL_PORT, settings.SERIAL_BAUDRATE)
        return serial.Serial(
            settings.SERIAL_PORT,
            baudrate=settings.SERIAL_BAUDRATE,
            timeout=settings.SERIAL_READ_TIMEOUT_SEC,
        )

    return SerialDevice(open_port, idle_timeout=settings.SERIAL_IDLE_TIMEOUT_SEC)
