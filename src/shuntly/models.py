"""Capture record model.

A record is built once per intercepted invocation and is immutable afterwards.
It carries:
- Process identity (host, user, pid) stamped at build time.
- What was called (client + method labels) and with what (request).
- How it ended (response or error) and how long it took.
"""

from __future__ import annotations

import dataclasses
import getpass
import json
import os
import socket
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(tz=timezone.utc)


def format_timestamp(ts: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision (`...T12:00:00.123Z`)."""
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _current_user() -> str:
    """Best-effort login name (containers often have no passwd entry)."""
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def serialize_response(obj: Any) -> Any:
    """Recursively convert a response value into JSON-friendly structures.

    Values exposing a conversion hook (pydantic `model_dump()`, `to_dict()`,
    namedtuple `_asdict()`, dataclasses) are converted first. Anything left
    unconverted is stringified later by the JSON encoder.

    There is no cycle detection: a self-referencing structure raises
    `RecursionError`.
    """
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if not isinstance(obj, type):
        model_dump = getattr(obj, "model_dump", None)
        if callable(model_dump):
            return serialize_response(model_dump())
        to_dict = getattr(obj, "to_dict", None)
        if callable(to_dict):
            return serialize_response(to_dict())
        if dataclasses.is_dataclass(obj):
            return serialize_response(dataclasses.asdict(obj))
    if isinstance(obj, tuple) and hasattr(obj, "_asdict"):
        return serialize_response(obj._asdict())
    if isinstance(obj, Mapping):
        return {(k if isinstance(k, str) else str(k)): serialize_response(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [serialize_response(v) for v in obj]
    if isinstance(obj, SimpleNamespace):
        return serialize_response(vars(obj))
    return obj


class ShuntlyRecord(BaseModel):
    """A structured record of one intercepted invocation."""

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    # Capture start, ISO-8601 UTC with milliseconds.
    timestamp: str

    # Process identity.
    hostname: str
    user: str
    pid: int

    # What was called.
    client: str
    method: str
    request: dict[Any, Any] = Field(default_factory=dict)

    # How it ended. `response` is None whenever `error` is set.
    response: Any = None
    duration_ms: float = Field(alias="durationMs")
    error: str | None = None

    @classmethod
    def build(
        cls,
        *,
        client: str,
        method: str,
        request: Mapping[Any, Any],
        response: Any = None,
        duration_ms: float | None = None,
        error: str | None = None,
        started: float | None = None,
        timestamp: datetime | None = None,
    ) -> ShuntlyRecord:
        """Build a record, stamping process identity.

        Args:
            client: Client label (class name or derived function label).
            method: Dotted method path or function name.
            request: The request mapping.
            response: The resolved value, or the list of streamed items.
            duration_ms: Elapsed milliseconds. Computed from `started` when omitted.
            error: `"<ExceptionType>: <message>"` for failed calls.
            started: A `time.perf_counter()` reading taken when the call started.
            timestamp: When the call started; defaults to now.
        """
        if duration_ms is None:
            duration_ms = (time.perf_counter() - started) * 1000.0 if started is not None else 0.0
        return cls(
            timestamp=format_timestamp(timestamp or utc_now()),
            hostname=socket.gethostname(),
            user=_current_user(),
            pid=os.getpid(),
            client=client,
            method=method,
            request=dict(request),
            response=response,
            duration_ms=duration_ms,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the wire shape (camelCase `durationMs`, serialized payloads)."""
        return {
            "timestamp": self.timestamp,
            "hostname": self.hostname,
            "user": self.user,
            "pid": self.pid,
            "client": self.client,
            "method": self.method,
            "request": serialize_response(self.request),
            "response": serialize_response(self.response),
            "durationMs": self.duration_ms,
            "error": self.error,
        }

    def to_json(self) -> str:
        """Return the record as a single line of compact JSON."""
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)


def format_error(exc: BaseException) -> str:
    """Render an exception as `"<ExceptionType>: <message>"`."""
    return f"{type(exc).__name__}: {exc}"
