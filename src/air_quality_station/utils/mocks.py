from typing import Iterable, List, Optional, Tuple

import serial

from air_quality_station.sensing.sds011 import encode_frame


class FakeSDS011:
    """Serial-port stand-in that streams SDS011 measurement frames.

    Each ``read`` returns the next frame (truncated to ``n`` bytes). Once
    the configured raw values are used up the last one is repeated, unless
    ``exhaust`` is set, in which case reads return ``b""`` like a port
    whose timeout expired.

    Attributes:
        reads: Number of read calls served.
        flushes: Number of ``reset_input_buffer`` calls.
        closed: Whether ``close`` was called.
    """

    def __init__(
        self,
        raw_values: Optional[Iterable[Tuple[int, int]]] = None,
        *,
        exhaust: bool = False,
    ):
        self._values: List[Tuple[int, int]] = list(raw_values or [(100, 150)])
        self._exhaust = exhaust
        self._index = 0
        self.reads = 0
        self.flushes = 0
        self.closed = False

    def _next_frame(self) -> bytes:
        if self._index >= len(self._values):
            if self._exhaust:
                return b""
            self._index = len(self._values) - 1
        pm25_raw, pm10_raw = self._values[self._index]
        self._index += 1
        return self._frame(pm25_raw, pm10_raw)

    def _frame(self, pm25_raw: int, pm10_raw: int) -> bytes:
        return encode_frame(pm25_raw, pm10_raw)

    def read(self, n: int) -> bytes:
        self.reads += 1
        return self._next_frame()[:n]

    def reset_input_buffer(self) -> None:
        """Reset the input buffer (pyserial compatibility)."""
        self.flushes += 1

    def close(self) -> None:
        self.closed = True


class BadChecksumFakeSDS011(FakeSDS011):
    """Mock that returns frames with bad checksums for testing error handling."""

    def _frame(self, pm25_raw: int, pm10_raw: int) -> bytes:
        frame = bytearray(super()._frame(pm25_raw, pm10_raw))
        frame[8] = (frame[8] + 1) & 0xFF
        return bytes(frame)


class BadHeaderFakeSDS011(FakeSDS011):
    """Mock that returns frames starting mid-stream (wrong header)."""

    def _frame(self, pm25_raw: int, pm10_raw: int) -> bytes:
        frame = super()._frame(pm25_raw, pm10_raw)
        return frame[1:] + frame[:1]


class SilentFakeSDS011(FakeSDS011):
    """Mock whose reads always time out."""

    def read(self, n: int) -> bytes:
        self.reads += 1
        return b""


class FlakyFakeSDS011(FakeSDS011):
    """Mock that raises ``SerialException`` on the first ``failures`` reads."""

    def __init__(self, *args, failures: int = 1, **kwargs):
        super().__init__(*args, **kwargs)
        self._failures = failures

    def read(self, n: int) -> bytes:
        if self._failures > 0:
            self._failures -= 1
            self.reads += 1
            raise serial.SerialException("device reports readiness to read but returned no data")
        return super().read(n)
