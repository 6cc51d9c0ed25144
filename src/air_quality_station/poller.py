import logging
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from air_quality_station.domain.errors import (
    AirQualityError,
    DecodeError,
    ReadCancelled,
    StoreError,
    TransportError,
)
from air_quality_station.domain.ports import Device, ReadingStore
from air_quality_station.sensing.sds011 import SDS011Reading, decode

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    DECODING = "decoding"
    PERSISTING = "persisting"
    FAULTED = "faulted"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IngestionLoop(threading.Thread):
    """Reads a frame every ``interval_s`` seconds, decodes it and appends it to the store.

    Bad frames, transport hiccups and failed writes are logged and the loop
    waits for the next tick. A zero-length read means the device endpoint is
    gone: the loop enters ``FAULTED``, records the error in ``fault`` and exits.
    The device is acquired when the thread starts and released when it ends.
    """

    def __init__(
        self,
        device: Device,
        store: ReadingStore,
        interval_s: float,
        *,
        read_size: int = 10,
        decoder: Callable[[bytes], SDS011Reading] = decode,
        now: Callable[[], datetime] = utc_now,
        stop_event: Optional[threading.Event] = None,
        on_fault: Optional[Callable[[BaseException], None]] = None,
    ):
        super().__init__(name="ingestion-loop", daemon=True)
        self.device = device
        self.store = store
        self.interval_s = interval_s
        self.read_size = read_size
        self.decoder = decoder
        self._now = now
        self.s_stop = stop_event or threading.Event()
        self._on_fault = on_fault

        self.state = LoopState.IDLE
        self.fault: Optional[BaseException] = None
        self.transport_errors = 0
        self.decode_errors = 0
        self.write_errors = 0
        self.persisted = 0

    def stop(self) -> None:
        self.s_stop.set()

    def raise_if_faulted(self) -> None:
        if self.fault is not None:
            raise self.fault

    def tick(self) -> Optional[int]:
        """Run one read-decode-persist cycle.

        Returns:
            The id of the persisted reading, or None if the tick was skipped.

        Raises:
            TransportError: If the device reported a terminal failure.
            ReadCancelled: If shutdown interrupted the read.
        """
        try:
            return self._cycle()
        finally:
            if self.state is not LoopState.FAULTED:
                self.state = LoopState.IDLE

    def _cycle(self) -> Optional[int]:
        self.state = LoopState.READING
        try:
            data = self.device.read(self.read_size, cancel=self.s_stop)
        except TransportError as exc:
            if exc.terminal:
                raise
            self.transport_errors += 1
            logger.error("Read returned an error, retrying next tick: %s", exc)
            return None

        if not data:
            raise TransportError("Device returned 0 bytes of data", terminal=True)

        self.state = LoopState.DECODING
        try:
            reading = self.decoder(data)
        except DecodeError as exc:
            self.decode_errors += 1
            logger.error("Dropping frame %s: %s", data[:10].hex(), exc)
            return None

        logger.info("pm2.5: %.2f", reading.pm25)
        logger.info("pm10: %.2f", reading.pm10)

        self.state = LoopState.PERSISTING
        try:
            row_id = self.store.append(reading.pm25, reading.pm10, self._now())
        except StoreError as exc:
            self.write_errors += 1
            logger.error("Reading lost: %s", exc)
            return None

        self.persisted += 1
        logger.info("Successfully wrote reading %s to database", row_id)
        return row_id

    def _enter_fault(self, exc: BaseException) -> None:
        self.state = LoopState.FAULTED
        self.fault = exc
        if self._on_fault is not None:
            self._on_fault(exc)

    def run(self) -> None:
        logger.info("Starting read cycle with a %s second delay between reads", self.interval_s)
        try:
            self.device.acquire()
        except AirQualityError as exc:
            logger.error("Could not acquire device: %s", exc)
            self._enter_fault(exc)
            return

        try:
            next_tick = time.monotonic() + self.interval_s
            while not self.s_stop.is_set():
                now = time.monotonic()
                if now < next_tick:
                    self.s_stop.wait(next_tick - now)
                    continue

                # skip ticks missed while a read was blocking
                while next_tick <= now:
                    next_tick += self.interval_s

                try:
                    self.tick()
                except ReadCancelled:
                    logger.info("Read cancelled by shutdown")
                    break
                except TransportError as exc:
                    logger.error("Ingestion stopped, device endpoint lost: %s", exc)
                    self._enter_fault(exc)
                    break
                except Exception as exc:
                    logger.exception("Ingestion stopped by an unexpected error")
                    self._enter_fault(exc)
                    break
        finally:
            self.device.release()
            logger.info("Ingestion loop stopped (persisted=%d)", self.persisted)
