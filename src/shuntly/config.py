"""Configuration loading and validation.

This module is responsible for:

- Loading `.env` into the process environment (without overriding existing vars).
- Converting `SHUNTLY_*` environment variables into a strongly-typed Pydantic model.
- Building the configured sink, and setting up shuntly's own diagnostic logging.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Literal, TypeVar

import dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from .exceptions import ShuntlyConfigError
from .sinks import (
    DEFAULT_MAX_BYTES_DIR,
    DEFAULT_MAX_BYTES_FILE,
    Sink,
    SinkDuckDB,
    SinkFile,
    SinkPipe,
    SinkRotating,
    SinkStream,
)

_T = TypeVar("_T", int, float)

SinkKind = Literal["stream", "file", "pipe", "rotating", "duckdb"]

LOGGER_NAME = "shuntly"


def _get_env_str(name: str, default: str) -> str:
    """Read a string env var with a default."""
    value = os.getenv(name, "").strip()
    return value or default


def _get_env_number(name: str, default: _T, cast: type[_T]) -> _T:
    """Read an int/float env var with a default."""
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a {cast.__name__}. Got: {raw!r}") from exc


class ShuntlyConfig(BaseModel):
    """Where capture records go, and how shuntly logs about itself."""

    sink: SinkKind = Field(default="stream", description="Sink kind")
    path: Path | None = Field(default=None, description="File, FIFO, directory or database path")
    max_bytes_file: int = Field(default=DEFAULT_MAX_BYTES_FILE, description="Rotate after this many bytes")
    max_bytes_dir: int = Field(
        default=DEFAULT_MAX_BYTES_DIR, description="Prune rotated files above this total (<= 0 disables)"
    )
    log_level: str = Field(default="WARNING", description="Level for shuntly's own logger")

    @field_validator("max_bytes_file")
    def validate_max_bytes_file(cls, v: int) -> int:
        """A rotating file must be allowed to hold at least one byte."""
        if v <= 0:
            raise ValueError(f"SHUNTLY_MAX_BYTES_FILE must be > 0. Got: {v}")
        return v

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate a logging level name."""
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"SHUNTLY_LOG_LEVEL must be a logging level name. Got: {v!r}")
        return level

    @model_validator(mode="after")
    def validate_path_required(self) -> ShuntlyConfig:
        """Every sink except `stream` writes somewhere on disk."""
        if self.sink != "stream" and self.path is None:
            raise ValueError(f"SHUNTLY_PATH is required for SHUNTLY_SINK={self.sink}.")
        return self


def load_config() -> ShuntlyConfig:
    """Load shuntly configuration from environment variables.

    Notes:
    - Calls `dotenv.load_dotenv()` so local `.env` values are visible to the process.
    - Raises `ValueError` with actionable messages for malformed values.
    """
    # Load variables from `.env` into the process environment (without overriding
    # already-set env vars).
    dotenv.load_dotenv()

    raw_path = os.getenv("SHUNTLY_PATH", "").strip()
    return ShuntlyConfig(
        sink=_get_env_str("SHUNTLY_SINK", "stream").lower(),
        path=Path(raw_path).expanduser() if raw_path else None,
        max_bytes_file=_get_env_number("SHUNTLY_MAX_BYTES_FILE", DEFAULT_MAX_BYTES_FILE, int),
        max_bytes_dir=_get_env_number("SHUNTLY_MAX_BYTES_DIR", DEFAULT_MAX_BYTES_DIR, int),
        log_level=_get_env_str("SHUNTLY_LOG_LEVEL", "WARNING"),
    )


def build_sink(config: ShuntlyConfig) -> Sink:
    """Construct the sink described by `config`."""
    if config.sink == "stream":
        return SinkStream()
    if config.path is None:
        raise ShuntlyConfigError(f"A path is required for the {config.sink!r} sink.")
    if config.sink == "file":
        return SinkFile(config.path)
    if config.sink == "pipe":
        return SinkPipe(config.path)
    if config.sink == "rotating":
        return SinkRotating(
            config.path,
            max_bytes_file=config.max_bytes_file,
            max_bytes_dir=config.max_bytes_dir,
        )
    return SinkDuckDB(path=config.path)


def configure_logging(level: str | int = logging.WARNING) -> logging.Logger:
    """Send shuntly's own diagnostics (rotation, pruning, pipe drops) to stderr.

    Replaces any handlers previously attached by this function.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    return logger
