# air_quality_station/application/query_readings.py

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Union

from air_quality_station.domain.errors import InvalidTimeRange
from air_quality_station.domain.models import Reading, parse_timestamp, to_utc
from air_quality_station.domain.ports import ReadingStore
from air_quality_station.store.sample_store import end_key, start_key

TimeBound = Union[str, datetime, None]

DEFAULT_WINDOW = timedelta(minutes=15)


def _resolve(bound: str, value: TimeBound, default: datetime) -> datetime:
    if value is None or value == "":
        return default
    if isinstance(value, datetime):
        return to_utc(value)
    # keys from all_keys() carry a "/<id>" suffix after the timestamp
    text, sep, suffix = str(value).partition("/")
    if sep and not suffix.isdigit():
        raise InvalidTimeRange(bound, str(value))
    try:
        return parse_timestamp(text)
    except (TypeError, ValueError) as exc:
        raise InvalidTimeRange(bound, str(value)) from exc


class QueryService:
    """Read-only view of the sample store for the dashboard."""

    def __init__(
        self,
        store: ReadingStore,
        *,
        default_window: timedelta = DEFAULT_WINDOW,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        cancel: Optional[threading.Event] = None,
    ):
        self.store = store
        self.default_window = default_window
        self._now = now
        self._cancel = cancel

    def range(self, start: TimeBound = None, end: TimeBound = None) -> List[Reading]:
        """Readings with ``start <= created_at <= end``, ascending by id.

        A missing bound falls back to the default window ending now. Bounds
        are RFC 3339 text, keys as returned by ``all_keys``, or datetimes;
        naive datetimes are UTC.

        Raises:
            InvalidTimeRange: If a bound cannot be parsed.
            StoreReadError: If the scan fails or is cancelled.
        """
        now = to_utc(self._now())
        start_at = _resolve("start", start, now - self.default_window)
        end_at = _resolve("end", end, now)
        if start_at > end_at:
            return []

        readings = self.store.range_scan(start_key(start_at), end_key(end_at), cancel=self._cancel)
        return sorted(readings, key=lambda r: r.id)

    def all_keys(self) -> List[str]:
        return self.store.all_keys(cancel=self._cancel)
