class AirQualityError(Exception):
    """Base class for every error raised by the station core."""


# ───────── sensor frames ─────────
class DecodeError(AirQualityError):
    """A frame could not be decoded; the data is dropped, ingestion continues."""


class FrameTooShort(DecodeError):
    def __init__(self, length: int, required: int):
        self.length = length
        self.required = required
        super().__init__(f"Frame too short: got {length} bytes, need {required}")


class InvalidHeader(DecodeError):
    def __init__(self, observed: bytes):
        self.observed = bytes(observed)
        super().__init__(f"Invalid header: {self.observed[0]} {self.observed[1]}")


class ChecksumMismatch(DecodeError):
    def __init__(self, computed: int, expected: int):
        self.computed = computed
        self.expected = expected
        super().__init__(f"Checksum error: {computed} != {expected}")


# ───────── device transport ─────────
class TransportError(AirQualityError):
    """A device read failed.

    ``terminal`` is True when the endpoint is considered dead (a zero-length
    read); anything else is retried on the next tick.
    """

    def __init__(self, message: str, *, terminal: bool = False):
        self.terminal = terminal
        super().__init__(message)


class ReadCancelled(AirQualityError):
    """A blocking device read was abandoned because shutdown was requested."""


class DeviceBusyError(AirQualityError):
    """The device is already owned by another ingestion loop."""


# ───────── sample store ─────────
class StoreError(AirQualityError):
    pass


class StoreOpenError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass


class StoreReadError(StoreError):
    pass


class ScanCancelled(StoreReadError):
    pass


# ───────── queries ─────────
class InvalidTimeRange(AirQualityError):
    def __init__(self, bound: str, value: str):
        self.bound = bound
        self.value = value
        super().__init__(f"Could not parse {bound} time: {value!r}")
