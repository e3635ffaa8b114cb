"""Record sinks (output backends).

Every sink writes one record per `write()` call and releases its resources on
`close()`, which is safe to call more than once. Line-oriented sinks emit one
compact JSON document per line (JSONL).

Sinks guard their mutable state with a lock, since SDK clients are commonly
shared across worker threads.
"""

from __future__ import annotations

import errno
import json
import logging
import os
import re
import select
import stat
import sys
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol, TextIO

import duckdb

from .exceptions import ShuntlyConfigError, ShuntlyError
from .models import ShuntlyRecord, utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES_FILE = 10 * 1024 * 1024
DEFAULT_MAX_BYTES_DIR = 100 * 1024 * 1024
ROTATING_SUFFIX = ".jsonl"
ROTATING_NAME_FORMAT = "%Y-%m-%dT%H-%M-%S.%fZ"
# Only files named by `SinkRotating` itself are candidates for pruning.
_ROTATED_NAME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}\.\d{6}Z" + re.escape(ROTATING_SUFFIX) + "$")


class Sink(Protocol):
    """A synchronous destination for capture records."""

    def write(self, record: ShuntlyRecord) -> None:
        """Emit a single record."""

    def close(self) -> None:
        """Release any underlying resources (idempotent)."""


def _line(record: ShuntlyRecord) -> str:
    return record.to_json() + "\n"


class SinkMemory:
    """Keeps records in a list; used by tests and interactive sessions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[ShuntlyRecord] = []

    def write(self, record: ShuntlyRecord) -> None:
        """Store a record."""
        with self._lock:
            self._records.append(record)

    def close(self) -> None:
        """No-op."""

    def snapshot(self) -> Sequence[ShuntlyRecord]:
        """Return a copy of the records written so far."""
        with self._lock:
            return list(self._records)


class SinkStream:
    """Writes JSON lines to a text stream (stderr by default).

    The stream is never closed by the sink.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def write(self, record: ShuntlyRecord) -> None:
        # Resolve stderr lazily so redirected/captured stderr is honoured.
        stream = self._stream if self._stream is not None else sys.stderr
        with self._lock:
            stream.write(_line(record))
            stream.flush()

    def close(self) -> None:
        """No-op: the stream belongs to the caller."""


class SinkFile:
    """Appends JSON lines to a single file, opened lazily."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._file: TextIO | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_open(self) -> TextIO:
        if self._file is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self._path, "a", encoding="utf-8")
        return self._file

    def write(self, record: ShuntlyRecord) -> None:
        line = _line(record)
        with self._lock:
            f = self._ensure_open()
            f.write(line)
            f.flush()

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None


class SinkPipe:
    """Writes JSON lines to a named pipe (FIFO).

    - The FIFO is created on first use if missing.
    - With no reader attached, records are dropped silently.
    - If the reader disconnects, the descriptor is closed and the record dropped;
      the next write tries to reopen.
    - If the pipe is full before any byte of a record is written, the record is
      dropped without blocking.
    - Once part of a line is in the pipe, the rest is written as the reader
      drains it (polling every `poll_interval` seconds), so the reader never
      sees a torn line. Only a disconnect ends that wait early.

    POSIX only.
    """

    def __init__(self, path: str | Path, *, poll_interval: float = 0.1) -> None:
        self._path = Path(path)
        self._poll_interval = poll_interval
        self._fd: int | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_fifo(self) -> None:
        try:
            st = os.stat(self._path)
        except FileNotFoundError:
            try:
                os.mkfifo(self._path)
            except FileExistsError:
                return
            logger.debug("Created FIFO %s", self._path)
            return
        if not stat.S_ISFIFO(st.st_mode):
            raise ShuntlyConfigError(f"{self._path} exists and is not a FIFO")

    def _ensure_open(self) -> int | None:
        if self._fd is not None:
            return self._fd
        self._ensure_fifo()
        try:
            self._fd = os.open(self._path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError as exc:
            if exc.errno == errno.ENXIO:
                # No reader connected.
                return None
            raise
        logger.debug("Opened FIFO %s for writing", self._path)
        return self._fd

    def _wait_writable(self, fd: int) -> None:
        select.select([], [fd], [], self._poll_interval)

    def _close_fd(self) -> None:
        if self._fd is not None:
            try:
                os.close(self._fd)
            finally:
                self._fd = None

    def write(self, record: ShuntlyRecord) -> None:
        data = _line(record).encode("utf-8")
        with self._lock:
            fd = self._ensure_open()
            if fd is None:
                return
            view = memoryview(data)
            written = 0
            while written < len(data):
                try:
                    written += os.write(fd, view[written:])
                except BrokenPipeError:
                    logger.debug("Reader disconnected from %s; dropping record", self._path)
                    self._close_fd()
                    return
                except BlockingIOError:
                    if written == 0:
                        logger.debug("FIFO %s is full; dropping record", self._path)
                        return
                    self._wait_writable(fd)

    def close(self) -> None:
        with self._lock:
            self._close_fd()


class SinkRotating:
    """Appends JSON lines to timestamp-named files in a directory, with rotation and pruning.

    - A new file is started once the current one holds `max_bytes_file` bytes.
      The check happens before each write, so a file can exceed the limit by
      one record.
    - On rotation, the oldest timestamp-named files are deleted until they
      total at most `max_bytes_dir` bytes. Other files in the directory are
      neither counted nor deleted. The current file is never deleted. A
      `max_bytes_dir` of zero or less disables pruning.

    File names are UTC timestamps with microseconds, so sorting by name sorts by
    creation time.
    """

    def __init__(
        self,
        directory: str | Path,
        *,
        max_bytes_file: int = DEFAULT_MAX_BYTES_FILE,
        max_bytes_dir: int = DEFAULT_MAX_BYTES_DIR,
    ) -> None:
        if max_bytes_file <= 0:
            raise ShuntlyConfigError(f"max_bytes_file must be > 0. Got: {max_bytes_file}")
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._max_bytes_file = max_bytes_file
        self._max_bytes_dir = max_bytes_dir
        self._lock = threading.Lock()

        self._file: TextIO | None = None
        self._path: Path | None = None
        self._bytes = 0
        self._last_ts: datetime | None = None

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def current_path(self) -> Path | None:
        """The file currently open for append, if any."""
        return self._path

    def _next_timestamp(self) -> datetime:
        ts = utc_now()
        # Keep names strictly increasing even if the clock steps backwards.
        if self._last_ts is not None and ts <= self._last_ts:
            ts = self._last_ts + timedelta(microseconds=1)
        return ts

    def _open_new(self) -> TextIO:
        ts = self._next_timestamp()
        while True:
            path = self._dir / f"{ts.strftime(ROTATING_NAME_FORMAT)}{ROTATING_SUFFIX}"
            try:
                f = open(path, "x", encoding="utf-8")
            except FileExistsError:
                ts += timedelta(microseconds=1)
                continue
            break
        self._last_ts = ts
        self._file = f
        self._path = path
        self._bytes = 0
        logger.debug("Opened log file %s", path)
        return f

    def _close_current(self) -> None:
        if self._file is not None:
            self._file.close()
        self._file = None
        self._path = None
        self._bytes = 0

    def _prune(self) -> None:
        if self._max_bytes_dir <= 0:
            return

        sized: list[tuple[Path, int]] = []
        for path in sorted(p for p in self._dir.iterdir() if _ROTATED_NAME.match(p.name)):
            try:
                sized.append((path, path.stat().st_size))
            except FileNotFoundError:
                continue

        total = sum(size for _, size in sized)
        for path, size in sized:
            if total <= self._max_bytes_dir:
                break
            if path == self._path:
                continue
            path.unlink(missing_ok=True)
            total -= size
            logger.debug("Pruned log file %s (%d bytes)", path, size)

    def write(self, record: ShuntlyRecord) -> None:
        line = _line(record)
        size = len(line.encode("utf-8"))
        with self._lock:
            f = self._file
            if f is None:
                f = self._open_new()
            elif self._bytes >= self._max_bytes_file:
                self._prune()
                self._close_current()
                f = self._open_new()
            f.write(line)
            f.flush()
            self._bytes += size

    def close(self) -> None:
        with self._lock:
            self._close_current()


class SinkMany:
    """Writes each record to several sinks, in order."""

    def __init__(self, sinks: Iterable[Sink]) -> None:
        self._sinks: list[Sink] = list(sinks)

    @property
    def sinks(self) -> Sequence[Sink]:
        return tuple(self._sinks)

    def write(self, record: ShuntlyRecord) -> None:
        for sink in self._sinks:
            sink.write(record)

    def close(self) -> None:
        for sink in self._sinks:
            sink.close()


@dataclass(frozen=True)
class DuckDBOptions:
    path: Path
    table: str = "shuntly_records"


class SinkDuckDB:
    """DuckDB sink for durable, queryable local persistence.

    Request and response payloads are stored as JSON text.
    """

    def __init__(self, *, path: str | Path, table: str = "shuntly_records") -> None:
        """Create (or open) a DuckDB-backed sink at the given path."""
        if not table.isidentifier():
            raise ShuntlyConfigError(f"Invalid DuckDB table name: {table!r}")
        self._opts = DuckDBOptions(path=Path(path), table=table)
        self._opts.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        conn = duckdb.connect(str(self._opts.path))
        self._ensure_schema(conn)
        self._conn: duckdb.DuckDBPyConnection | None = conn

    @property
    def table(self) -> str:
        return self._opts.table

    def _ensure_schema(self, conn: duckdb.DuckDBPyConnection) -> None:
        """Create the backing table if it does not exist yet."""
        create_sql = f"""
        create table if not exists {self._opts.table} (
          timestamp varchar not null,
          hostname varchar not null,
          username varchar not null,
          pid integer not null,
          client varchar not null,
          method varchar not null,
          request_json varchar not null,
          response_json varchar,
          duration_ms double not null,
          error varchar
        )
        """
        with self._lock:
            conn.execute(create_sql)

    def write(self, record: ShuntlyRecord) -> None:
        """Insert a single record."""
        data = record.to_dict()
        request_json = json.dumps(data["request"], separators=(",", ":"), default=str)
        response_json = None if data["response"] is None else json.dumps(data["response"], separators=(",", ":"), default=str)
        insert_sql = f"""
        insert into {self._opts.table}
        (timestamp, hostname, username, pid, client, method, request_json, response_json, duration_ms, error)
        values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        with self._lock:
            if self._conn is None:
                raise ShuntlyError(f"DuckDB sink for {self._opts.path} is closed")
            self._conn.execute(
                insert_sql,
                [
                    record.timestamp,
                    record.hostname,
                    record.user,
                    record.pid,
                    record.client,
                    record.method,
                    request_json,
                    response_json,
                    record.duration_ms,
                    record.error,
                ],
            )

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
