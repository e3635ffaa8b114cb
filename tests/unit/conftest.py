from __future__ import annotations

import logging
from typing import Any

import pytest


@pytest.fixture
def sink():
    """An in-memory sink to assert on captured records."""
    from shuntly import SinkMemory

    return SinkMemory()


@pytest.fixture
def make_record():
    """Factory for small, valid records; keyword arguments override defaults."""
    from shuntly import ShuntlyRecord

    def _make(**overrides: Any) -> ShuntlyRecord:
        params: dict[str, Any] = {
            "client": "test.Client",
            "method": "do.thing",
            "request": {"a": 1},
            "response": {"b": 2},
            "duration_ms": 5.0,
        }
        params.update(overrides)
        return ShuntlyRecord.build(**params)

    return _make


@pytest.fixture(autouse=True)
def _reset_shuntly_logger():
    """Undo `configure_logging()` side effects between tests."""
    logger = logging.getLogger("shuntly")
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
