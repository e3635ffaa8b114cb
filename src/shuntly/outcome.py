"""Classification of call results.

Every value returned by an intercepted call is classified into exactly one
variant, and the interceptor dispatches on it:

- `Immediate`: a plain value, recorded right away.
- `Deferred`: an awaitable; classified again once it resolves.
- `Sequence`: an async iterable, or a sync iterator; tapped and recorded when
  iteration completes.

Only iterators (objects with `__next__`) count as sync sequences. Lists,
dicts and pydantic models are iterable too, but they are values, not streams.
"""

from __future__ import annotations

import inspect
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Immediate:
    value: Any


@dataclass(frozen=True)
class Deferred:
    awaitable: Any


@dataclass(frozen=True)
class Sequence:
    iterable: Any
    is_async: bool


Outcome = Immediate | Deferred | Sequence


def is_async_iterable(value: Any) -> bool:
    return value is not None and not isinstance(value, type) and callable(getattr(value, "__aiter__", None))


def classify(value: Any) -> Outcome:
    """Classify a call result (see module docstring)."""
    if inspect.isawaitable(value):
        return Deferred(value)
    if is_async_iterable(value):
        return Sequence(value, is_async=True)
    if isinstance(value, Iterator):
        return Sequence(value, is_async=False)
    return Immediate(value)
