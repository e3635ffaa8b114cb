"""shuntly: record every call made through an SDK client.

This package provides:
- `shunt()`: patch a client's methods (or wrap a function) so each invocation is
  captured as a `ShuntlyRecord`, including streamed responses.
- Sinks that emit records as JSON lines to a stream, a file, a named pipe, or a
  rotating directory of size-bounded files (plus in-memory and DuckDB sinks).

Capture is observational: return values and exceptions reach the caller unchanged.
"""

from .config import ShuntlyConfig, build_sink, configure_logging, load_config
from .exceptions import ShuntlyConfigError, ShuntlyError
from .models import ShuntlyRecord, serialize_response
from .outcome import Deferred, Immediate, Outcome, Sequence, classify
from .registry import DEFAULT_REGISTRY, MethodRegistry, resolve_qualified
from .shunt import Interceptor, shunt, unshunt
from .sinks import (
    Sink,
    SinkDuckDB,
    SinkFile,
    SinkMany,
    SinkMemory,
    SinkPipe,
    SinkRotating,
    SinkStream,
)
from .streams import TappedAsyncStream, TappedStream

__all__ = [
    "DEFAULT_REGISTRY",
    "Deferred",
    "Immediate",
    "Interceptor",
    "MethodRegistry",
    "Outcome",
    "Sequence",
    "ShuntlyConfig",
    "ShuntlyConfigError",
    "ShuntlyError",
    "ShuntlyRecord",
    "Sink",
    "SinkDuckDB",
    "SinkFile",
    "SinkMany",
    "SinkMemory",
    "SinkPipe",
    "SinkRotating",
    "SinkStream",
    "TappedAsyncStream",
    "TappedStream",
    "build_sink",
    "classify",
    "configure_logging",
    "load_config",
    "resolve_qualified",
    "serialize_response",
    "shunt",
    "unshunt",
]
