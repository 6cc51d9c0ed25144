import time
from datetime import datetime, timedelta, timezone

import pytest

from air_quality_station.application.query_readings import QueryService
from air_quality_station.poller import IngestionLoop, LoopState
from air_quality_station.sensing.serial_device import SerialDevice
from air_quality_station.store.sample_store import SampleStore
from air_quality_station.utils.mocks import BadChecksumFakeSDS011, BadHeaderFakeSDS011, FakeSDS011

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class SteppingClock:
    def __init__(self, start: datetime, step: timedelta):
        self._next = start
        self._step = step

    def __call__(self) -> datetime:
        current = self._next
        self._next += self._step
        return current


@pytest.fixture
def store(tmp_path):
    s = SampleStore.open_path(str(tmp_path / "airquality.db"))
    yield s
    s.close()


def test_frames_flow_from_device_to_query(store):
    device = SerialDevice(lambda: FakeSDS011([(100, 200), (125, 250), (99, 198)]))
    loop = IngestionLoop(device, store, 1.0, now=SteppingClock(T0, timedelta(seconds=1)))
    device.acquire()
    try:
        ids = [loop.tick() for _ in range(3)]
    finally:
        device.release()

    service = QueryService(store, now=lambda: T0 + timedelta(minutes=1))
    readings = service.range(T0, T0 + timedelta(seconds=2))

    assert ids == [1, 2, 3]
    assert [(r.pm25, r.pm10) for r in readings] == [(10.0, 20.0), (12.5, 25.0), (9.9, 19.8)]
    assert service.range(T0 + timedelta(seconds=3), T0 + timedelta(seconds=4)) == []


@pytest.mark.parametrize("fake", [BadChecksumFakeSDS011, BadHeaderFakeSDS011])
def test_corrupt_frames_never_reach_the_store(store, fake):
    device = SerialDevice(lambda: fake([(100, 200)]))
    loop = IngestionLoop(device, store, 1.0)
    device.acquire()
    try:
        assert loop.tick() is None
        assert loop.tick() is None
    finally:
        device.release()

    assert store.count() == 0
    assert loop.decode_errors == 2


def test_silent_device_faults_running_loop(store):
    port = FakeSDS011([(100, 200)], exhaust=True)
    device = SerialDevice(lambda: port, idle_timeout=0.05)
    loop = IngestionLoop(device, store, 0.01)

    loop.start()
    loop.join(timeout=3.0)

    assert not loop.is_alive()
    assert loop.state is LoopState.FAULTED
    assert store.count() == 1
    assert port.closed


def test_restart_continues_sequence(tmp_path):
    path = str(tmp_path / "airquality.db")
    for expected in (1, 2):
        with SampleStore(path) as store:
            device = SerialDevice(FakeSDS011)
            loop = IngestionLoop(device, store, 1.0)
            device.acquire()
            try:
                assert loop.tick() == expected
            finally:
                device.release()


def test_running_loop_and_queries_share_store(store):
    device = SerialDevice(lambda: FakeSDS011([(100 + i, 200) for i in range(50)]))
    loop = IngestionLoop(device, store, 0.01)
    service = QueryService(store)

    loop.start()
    deadline = time.monotonic() + 3.0
    while store.count() < 5 and time.monotonic() < deadline:
        service.range()
        time.sleep(0.01)
    loop.stop()
    loop.join(timeout=2.0)

    readings = service.range()
    assert len(readings) >= 5
    assert [r.id for r in readings] == sorted(r.id for r in readings)
    assert loop.fault is None
