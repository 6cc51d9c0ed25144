import threading
from datetime import datetime
from typing import List, Optional, Protocol

from air_quality_station.domain.models import Reading


class Device(Protocol):
    """Byte-stream source exclusively owned by one ingestion loop."""

    def acquire(self) -> None: ...

    def read(self, size: int, cancel: Optional[threading.Event] = None) -> bytes: ...

    def release(self) -> None: ...


class ReadingStore(Protocol):
    def append(self, pm25: float, pm10: float, now: Optional[datetime] = None) -> int: ...

    def range_scan(
        self, start_key: str, end_key: str, cancel: Optional[threading.Event] = None
    ) -> List[Reading]: ...

    def all_keys(self, cancel: Optional[threading.Event] = None) -> List[str]: ...
