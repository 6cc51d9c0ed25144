import threading
import time
from datetime import datetime, timezone
from typing import List, Optional, Union
from unittest.mock import Mock

import pytest

from air_quality_station.domain.errors import (
    DeviceBusyError,
    ReadCancelled,
    StoreWriteError,
    TransportError,
)
from air_quality_station.poller import IngestionLoop, LoopState
from air_quality_station.sensing.sds011 import encode_frame
from air_quality_station.store.sample_store import SampleStore

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
GOOD = encode_frame(100, 150)
BAD_CHECKSUM = GOOD[:8] + bytes([(GOOD[8] + 1) & 0xFF]) + GOOD[9:]


class ScriptedDevice:
    """Device returning scripted reads; blocks until cancelled once the script runs out."""

    def __init__(self, responses: List[Union[bytes, Exception]], acquire_error: Optional[Exception] = None):
        self.responses = list(responses)
        self.acquire_error = acquire_error
        self.acquired = False
        self.released = False
        self.reads = 0

    def acquire(self) -> None:
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired = True

    def read(self, size: int, cancel: Optional[threading.Event] = None) -> bytes:
        self.reads += 1
        if not self.responses:
            assert cancel is not None
            cancel.wait()
            raise ReadCancelled("cancelled")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response[:size]

    def release(self) -> None:
        self.released = True


@pytest.fixture
def store(tmp_path):
    s = SampleStore.open_path(str(tmp_path / "airquality.db"))
    yield s
    s.close()


def make_loop(device, store, interval_s: float = 60.0, **kwargs) -> IngestionLoop:
    return IngestionLoop(device, store, interval_s, now=lambda: NOW, **kwargs)


def test_tick_persists_valid_frame(store):
    loop = make_loop(ScriptedDevice([GOOD]), store)

    row_id = loop.tick()

    assert row_id == 1
    assert loop.state is LoopState.IDLE
    assert loop.persisted == 1
    [key] = store.all_keys()
    assert key.startswith("2024-03-01T12:00:00.000000Z/")


def test_tick_drops_corrupt_frame():
    store = Mock()
    loop = make_loop(ScriptedDevice([BAD_CHECKSUM, GOOD[1:] + GOOD[:1]]), store)

    assert loop.tick() is None
    assert loop.tick() is None

    store.append.assert_not_called()
    assert loop.decode_errors == 2
    assert loop.state is LoopState.IDLE


def test_tick_drops_short_read():
    store = Mock()
    loop = make_loop(ScriptedDevice([GOOD[:4]]), store)

    assert loop.tick() is None
    store.append.assert_not_called()


def test_transport_error_is_retried_next_tick(store):
    loop = make_loop(ScriptedDevice([TransportError("Read returned an error"), GOOD]), store)

    assert loop.tick() is None
    assert loop.transport_errors == 1
    assert loop.tick() == 1


def test_zero_byte_read_is_terminal():
    loop = make_loop(ScriptedDevice([b""]), Mock())

    with pytest.raises(TransportError) as exc_info:
        loop.tick()

    assert exc_info.value.terminal


def test_store_write_error_is_not_terminal():
    store = Mock()
    store.append.side_effect = [StoreWriteError("disk full"), 7]
    loop = make_loop(ScriptedDevice([GOOD, GOOD]), store)

    assert loop.tick() is None
    assert loop.write_errors == 1
    assert loop.tick() == 7
    store.append.assert_called_with(10.0, 15.0, NOW)


def test_run_persists_readings_and_releases_device(store):
    device = ScriptedDevice([GOOD, GOOD, GOOD])
    loop = make_loop(device, store, interval_s=0.02)

    loop.start()
    deadline = time.monotonic() + 2.0
    while store.count() < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    loop.stop()
    loop.join(timeout=1.0)

    assert not loop.is_alive()
    assert store.count() == 3
    assert device.acquired and device.released
    assert loop.fault is None


def test_run_stops_on_dead_endpoint(store):
    device = ScriptedDevice([GOOD, b""])
    faults = []
    loop = make_loop(device, store, interval_s=0.01, on_fault=faults.append)

    loop.start()
    loop.join(timeout=2.0)

    assert not loop.is_alive()
    assert loop.state is LoopState.FAULTED
    assert isinstance(loop.fault, TransportError)
    assert faults == [loop.fault]
    assert device.released
    assert store.count() == 1
    with pytest.raises(TransportError):
        loop.raise_if_faulted()


def test_stop_abandons_blocking_read(store):
    device = ScriptedDevice([])
    loop = make_loop(device, store, interval_s=0.01)

    loop.start()
    deadline = time.monotonic() + 2.0
    while device.reads == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    loop.stop()
    loop.join(timeout=1.0)

    assert not loop.is_alive()
    assert loop.fault is None
    assert device.released


def test_acquire_failure_faults_loop(store):
    device = ScriptedDevice([GOOD], acquire_error=DeviceBusyError("busy"))
    loop = make_loop(device, store, interval_s=0.01)

    loop.start()
    loop.join(timeout=1.0)

    assert isinstance(loop.fault, DeviceBusyError)
    assert device.reads == 0


def test_stop_before_start_reads_nothing(store):
    device = ScriptedDevice([GOOD])
    loop = make_loop(device, store, interval_s=0.01)
    loop.stop()

    loop.start()
    loop.join(timeout=1.0)

    assert device.reads == 0
    assert device.released


def test_loop_runs_as_daemon(store):
    loop = make_loop(ScriptedDevice([]), store)

    assert loop.daemon


def test_unopened_store_does_not_stop_ingestion(tmp_path):
    closed_store = SampleStore(str(tmp_path / "airquality.db"))
    device = ScriptedDevice([GOOD, GOOD, GOOD])
    loop = make_loop(device, closed_store, interval_s=0.01)

    loop.start()
    deadline = time.monotonic() + 2.0
    while loop.write_errors < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    still_running = loop.is_alive()
    loop.stop()
    loop.join(timeout=1.0)

    assert still_running
    assert loop.write_errors == 3
    assert loop.fault is None
    assert loop.persisted == 0
