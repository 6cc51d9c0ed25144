import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from air_quality_station.domain.errors import (
    ScanCancelled,
    StoreError,
    StoreOpenError,
    StoreReadError,
    StoreWriteError,
)
from air_quality_station.domain.models import Reading, format_timestamp, to_utc
from air_quality_station.store.sqlalchemy_models import Base, BucketORM, SampleORM

logger = logging.getLogger(__name__)

ID_WIDTH = 20
BUCKET = "airquality"


def make_key(created_at: datetime, reading_id: int) -> str:
    """Key a reading by time first and id second.

    The timestamp is fixed width, so bytewise order is chronological, and the
    id suffix keeps two readings from the same instant apart.
    """
    return f"{format_timestamp(created_at)}/{reading_id:0{ID_WIDTH}d}"


def start_key(moment: datetime) -> str:
    """Smallest key at or after *moment*."""
    return format_timestamp(moment)


def end_key(moment: datetime) -> str:
    """Largest key at *moment*, making the upper bound inclusive."""
    return f"{format_timestamp(moment)}/{'9' * ID_WIDTH}"


def _on_connect(dbapi_conn, _record) -> None:
    # pysqlite must not issue its own BEGIN; _on_begin does it instead
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _on_begin(conn) -> None:
    mode = conn.get_execution_options().get("sqlite_begin", "DEFERRED")
    conn.exec_driver_sql(f"BEGIN {mode}")


class SampleStore:
    """Append-only, ordered store of readings in an embedded SQLite file.

    Each write runs in one `BEGIN IMMEDIATE` transaction, so writers on any
    connection to the file are serialised by SQLite itself; within the process
    they also queue on a lock. Readers run concurrently and see committed data
    only (WAL mode). Both waits are bounded by ``lock_timeout``.
    """

    def __init__(self, path: str, *, lock_timeout: float = 1.0, bucket: str = BUCKET):
        self.path = path
        self.lock_timeout = lock_timeout
        self.bucket = bucket
        self._engine = None
        self._sessions: Optional[sessionmaker] = None
        self._write_sessions: Optional[sessionmaker] = None
        self._write_lock = threading.Lock()

    @classmethod
    def open_path(cls, path: str, *, lock_timeout: float = 1.0) -> "SampleStore":
        store = cls(path, lock_timeout=lock_timeout)
        store.open()
        return store

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> None:
        """Open (or reopen) the store file, creating its schema if needed.

        Existing data and the sequence counter are kept.

        Raises:
            StoreOpenError: If the file cannot be opened or initialised.
        """
        if self.is_open:
            return

        logger.info("Opening sample store at %s", self.path)
        kwargs: dict = {
            "future": True,
            "connect_args": {"timeout": self.lock_timeout, "check_same_thread": False},
        }
        if self.path == ":memory:":
            kwargs["poolclass"] = StaticPool

        try:
            engine = create_engine(f"sqlite:///{self.path}", **kwargs)
            event.listen(engine, "connect", _on_connect)
            event.listen(engine, "begin", _on_begin)
            Base.metadata.create_all(bind=engine)
        except SQLAlchemyError as exc:
            raise StoreOpenError(f"Could not open database: {exc}") from exc

        self._engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        # write transactions take the database write lock up front, so the
        # sequence read below cannot race another connection
        self._write_sessions = sessionmaker(
            bind=engine.execution_options(sqlite_begin="IMMEDIATE"),
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info("Sample store open, last sequence=%s", self.last_sequence())

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        self._sessions = None
        self._write_sessions = None
        logger.info("Sample store closed")

    def __enter__(self) -> "SampleStore":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _session(self) -> Session:
        if self._sessions is None:
            raise StoreError("Sample store is not open")
        return self._sessions()

    # WRITE side
    def append(self, pm25: float, pm10: float, now: Optional[datetime] = None) -> int:
        """Persist a reading and return the id assigned to it.

        Raises:
            StoreWriteError: If the transaction cannot commit. Not retried.
        """
        created_at = to_utc(now) if now is not None else datetime.now(timezone.utc)
        if self._write_sessions is None:
            raise StoreWriteError("Sample store is not open")

        if not self._write_lock.acquire(timeout=self.lock_timeout):
            raise StoreWriteError(
                f"Timed out after {self.lock_timeout}s waiting for the write lock"
            )
        try:
            with self._write_sessions() as session, session.begin():
                bucket = session.get(BucketORM, self.bucket)
                if bucket is None:
                    bucket = BucketORM()
                    bucket.name = self.bucket
                    bucket.sequence = 0
                    session.add(bucket)

                bucket.sequence += 1
                reading = Reading(
                    id=bucket.sequence,
                    pm25=pm25,
                    pm10=pm10,
                    created_at=created_at,
                )

                row = SampleORM()
                row.bucket = self.bucket
                row.key = make_key(created_at, reading.id)
                row.value = reading.to_string()
                session.add(row)
        except SQLAlchemyError as exc:
            raise StoreWriteError(f"Could not write to database: {exc}") from exc
        finally:
            self._write_lock.release()

        logger.debug("Appended reading id=%s key=%s", reading.id, row.key)
        return reading.id

    # READ side
    def range_scan(
        self, start: str, end: str, cancel: Optional[threading.Event] = None
    ) -> List[Reading]:
        """Return readings with ``start <= key <= end`` in ascending key order.

        Raises:
            ScanCancelled: If *cancel* is set during the scan.
            StoreReadError: On engine errors or an undecodable record.
        """
        stmt = (
            select(SampleORM.key, SampleORM.value)
            .where(SampleORM.bucket == self.bucket)
            .where(SampleORM.key >= start)
            .where(SampleORM.key <= end)
            .order_by(SampleORM.key.asc())
        )
        readings: List[Reading] = []
        try:
            with self._session() as session:
                for key, value in session.execute(stmt):
                    if cancel is not None and cancel.is_set():
                        raise ScanCancelled("Range scan cancelled")
                    try:
                        readings.append(Reading.from_string(value))
                    except (ValueError, KeyError, TypeError) as exc:
                        raise StoreReadError(f"Corrupt record at key {key}: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreReadError(f"Could not read from database: {exc}") from exc

        logger.debug("Range scan [%s, %s] returned %d readings", start, end, len(readings))
        return readings

    def all_keys(self, cancel: Optional[threading.Event] = None) -> List[str]:
        stmt = (
            select(SampleORM.key)
            .where(SampleORM.bucket == self.bucket)
            .order_by(SampleORM.key.asc())
        )
        keys: List[str] = []
        try:
            with self._session() as session:
                for key in session.scalars(stmt):
                    if cancel is not None and cancel.is_set():
                        raise ScanCancelled("Key scan cancelled")
                    keys.append(key)
        except SQLAlchemyError as exc:
            raise StoreReadError(f"Could not read from database: {exc}") from exc
        return keys

    def count(self) -> int:
        stmt = select(func.count()).select_from(SampleORM).where(SampleORM.bucket == self.bucket)
        try:
            with self._session() as session:
                return session.scalar(stmt) or 0
        except SQLAlchemyError as exc:
            raise StoreReadError(f"Could not read from database: {exc}") from exc

    def last_sequence(self) -> int:
        try:
            with self._session() as session:
                bucket = session.get(BucketORM, self.bucket)
                return bucket.sequence if bucket is not None else 0
        except SQLAlchemyError as exc:
            raise StoreReadError(f"Could not read from database: {exc}") from exc

    def get_stats(self) -> dict:
        stats = {
            "path": self.path,
            "total_entries": self.count(),
            "last_sequence": self.last_sequence(),
        }
        logger.info("Store stats: %s", stats)
        return stats
